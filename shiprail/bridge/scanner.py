"""VulnerabilityScanner — scan the pushed artifact and report findings.

The scanner always targets the digest-pinned reference that was pushed,
never the local build context, so what is scanned is what is deployed.

One ``SeverityReport`` feeds two serializations:

- ``render_report_json``  — machine-readable, for downstream tooling.
- ``render_report_table`` — human-readable Rich table, for operators.
"""

from __future__ import annotations

import io
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from rich.console import Console
from rich.table import Table

from shiprail.bridge.process import run_tool
from shiprail.core.errors import ScanUnavailable
from shiprail.models.artifacts import ArtifactReference
from shiprail.models.severity import Finding, Severity, SeverityReport

logger = logging.getLogger(__name__)

_SEVERITY_STYLES: dict[Severity, str] = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.UNKNOWN: "dim",
}


@runtime_checkable
class VulnerabilityScanner(Protocol):
    """Protocol for scanner backends."""

    def scan(self, artifact: ArtifactReference, *, timeout: float) -> SeverityReport:
        """Scan the pushed *artifact*.

        Returns a report (possibly empty).  Raises ``ScanUnavailable`` when
        no report could be produced.
        """
        ...


class TrivyScanner:
    """Runs ``trivy image --format json`` against the pushed digest.

    Parameters
    ----------
    binary:
        Path or name of the trivy executable.
    credential_ref:
        Name of an env var holding ``user:token`` for the registry; exported
        to trivy as ``TRIVY_USERNAME`` / ``TRIVY_PASSWORD``.
    environ:
        Environment to resolve credentials from.  Defaults to ``os.environ``.
    """

    name = "trivy"

    def __init__(
        self,
        *,
        binary: str = "trivy",
        credential_ref: str = "",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.binary = binary
        self.credential_ref = credential_ref
        self._environ = environ if environ is not None else os.environ

    def scan(self, artifact: ArtifactReference, *, timeout: float) -> SeverityReport:
        args = [
            self.binary, "image",
            "--format", "json",
            "--quiet",
            "--timeout", f"{max(int(timeout), 1)}s",
            artifact.pinned_ref,
        ]
        logger.info("Scanning %s", artifact.pinned_ref)
        result = run_tool(args, timeout=timeout, env=self._scan_env())
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited {result.returncode}"
            raise ScanUnavailable(
                f"{self.binary} could not scan {artifact.pinned_ref}: {reason}",
                diagnostics=result.diagnostics,
            )
        report = parse_trivy_report(result.stdout, artifact, scanner=self.name)
        logger.info(
            "Scan of %s produced %d finding(s)", artifact.ref(), len(report.findings)
        )
        return report

    def _scan_env(self) -> dict[str, str]:
        env = dict(self._environ)
        credential = env.get(self.credential_ref, "") if self.credential_ref else ""
        if ":" in credential:
            user, token = credential.split(":", 1)
            env["TRIVY_USERNAME"] = user
            env["TRIVY_PASSWORD"] = token
        return env


def parse_trivy_report(
    raw: str, artifact: ArtifactReference, *, scanner: str = "trivy"
) -> SeverityReport:
    """Parse trivy's JSON output into a ``SeverityReport``.

    Finding order follows trivy's ``Results`` / ``Vulnerabilities`` order.
    Output that is not a trivy JSON document raises ``ScanUnavailable``.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ScanUnavailable(
            f"Scanner output is not valid JSON: {exc}", diagnostics=raw
        ) from exc
    if not isinstance(data, dict):
        raise ScanUnavailable(
            f"Scanner output must be a JSON object, got {type(data).__name__}",
            diagnostics=raw,
        )

    findings: list[Finding] = []
    for result in data.get("Results") or []:
        target = result.get("Target", "")
        for vuln in result.get("Vulnerabilities") or []:
            findings.append(
                Finding(
                    finding_id=vuln.get("VulnerabilityID", "UNKNOWN-ID"),
                    severity=Severity.parse(vuln.get("Severity", "")),
                    component=vuln.get("PkgName") or target,
                    installed_version=vuln.get("InstalledVersion", ""),
                    fixed_version=vuln.get("FixedVersion", ""),
                    title=vuln.get("Title", ""),
                )
            )
    return SeverityReport(artifact=artifact, findings=tuple(findings), scanner=scanner)


# ---------------------------------------------------------------------------
# Serializations
# ---------------------------------------------------------------------------


def report_payload(report: SeverityReport) -> dict[str, Any]:
    """Structured form of a report with a per-severity summary."""
    payload = report.model_dump(mode="json")
    payload["summary"] = {
        sev.value: count for sev, count in report.count_by_severity().items()
    }
    return payload


def render_report_json(report: SeverityReport) -> str:
    """Machine-readable serialization (stable key order)."""
    return json.dumps(report_payload(report), indent=2, sort_keys=True)


def render_report_table(report: SeverityReport, *, width: int = 120) -> str:
    """Human-readable serialization: a plain-text Rich table."""
    table = Table(title=f"Vulnerabilities: {report.artifact.ref()}")
    table.add_column("Severity")
    table.add_column("ID", style="cyan")
    table.add_column("Component")
    table.add_column("Installed")
    table.add_column("Fixed")

    for finding in report.findings:
        table.add_row(
            f"[{_SEVERITY_STYLES[finding.severity]}]{finding.severity.value}[/]",
            finding.finding_id,
            finding.component,
            finding.installed_version,
            finding.fixed_version,
        )

    buffer = io.StringIO()
    console = Console(file=buffer, width=width, color_system=None, force_terminal=False)
    console.print(table)
    counts = ", ".join(
        f"{sev.value}: {n}" for sev, n in report.count_by_severity().items()
    )
    console.print(f"Total: {len(report.findings)} ({counts})")
    return buffer.getvalue()


def write_report_files(report: SeverityReport, directory: Path) -> tuple[Path, Path]:
    """Write both serializations under *directory*; returns (json_path, table_path)."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    stem = f"{report.artifact.repository.replace('/', '_')}-{report.artifact.immutable_tag}"
    json_path = directory / f"{stem}.json"
    table_path = directory / f"{stem}.txt"
    json_path.write_text(render_report_json(report), encoding="utf-8")
    table_path.write_text(render_report_table(report), encoding="utf-8")
    return json_path, table_path
