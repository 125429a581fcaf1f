"""``shiprail demo`` — run the pipeline end to end against in-memory fakes.

Three commits go through the same orchestrator: one clean, one with a
CRITICAL finding, and one whose build fails.  The GitOps manifest is
printed before and after so the effect of each run is visible.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

from shiprail.bridge.memory import (
    InMemoryBuilder,
    InMemoryRegistry,
    InMemoryRepository,
    InMemoryScanner,
)
from shiprail.core.errors import BuildFailure
from shiprail.core.manifest_patcher import ManifestPatcher
from shiprail.core.orchestrator import GitOpsUpdateFlow, PipelineOrchestrator
from shiprail.models.artifacts import BuildContext
from shiprail.models.config import (
    FieldLocator,
    GitOpsTarget,
    PipelineConfig,
    RegistryTarget,
)
from shiprail.models.runs import TriggerEvent
from shiprail.models.severity import Finding, Severity
from shiprail.monitor.renderer import RunRenderer

console = Console()

DEMO_MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: devops-radar
spec:
  template:
    spec:
      containers:
        - name: devops-radar
          image: ghcr.io/acme/devops-radar:0000000
          ports:
            - containerPort: 8080
"""


def demo_cmd(
    ledger_db: str = typer.Option(
        ".shiprail/demo-ledger.db",
        "--ledger",
        help="Path to the ledger SQLite database (uses demo-specific default).",
    ),
    report_dir: str = typer.Option(
        "",
        "--reports",
        help="Directory for scan reports (none written if empty).",
    ),
) -> None:
    """Run three sample commits through build, scan, gate and propagate."""
    registry_target = RegistryTarget(namespace="acme", image_name="devops-radar")
    gitops_target = GitOpsTarget(
        repository="acme/deployments",
        locator=FieldLocator(image_name="devops-radar"),
    )
    config = PipelineConfig(
        registry=registry_target,
        gitops=gitops_target,
        ledger_path=Path(ledger_db),
        report_dir=Path(report_dir) if report_dir else None,
    )

    repository = InMemoryRepository({gitops_target.file_path: DEMO_MANIFEST})
    builder = InMemoryBuilder(
        InMemoryRegistry(),
        registry_target,
        failures={
            "ghi9012": BuildFailure(
                "docker build exited with status 1",
                diagnostics="Step 4/9 : RUN pip install -r requirements.txt\n"
                "ERROR: No matching distribution found for radar-core==9.9",
            )
        },
    )
    scanner = InMemoryScanner(
        {
            "def5678": [
                Finding(
                    finding_id="CVE-2024-3094",
                    severity=Severity.CRITICAL,
                    component="xz-utils",
                    installed_version="5.6.0",
                    fixed_version="5.6.2",
                    title="Backdoor in liblzma",
                ),
                Finding(
                    finding_id="CVE-2023-4911",
                    severity=Severity.HIGH,
                    component="glibc",
                    installed_version="2.37",
                    fixed_version="2.37-12",
                ),
            ]
        }
    )
    orchestrator = PipelineOrchestrator(
        builder,
        scanner,
        gitops=GitOpsUpdateFlow(ManifestPatcher(lambda _: repository), gitops_target),
        config=config,
    )
    renderer = RunRenderer(console=console)

    console.print()
    console.print(
        Panel(
            "[bold]Shiprail Demo Pipeline[/bold]\n\n"
            "abc1234 is clean, def5678 carries a CRITICAL CVE, "
            "ghi9012 fails to build.",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    _print_manifest("Manifest before", repository.files[gitops_target.file_path])

    for commit in ("abc1234", "def5678", "ghi9012"):
        event = TriggerEvent(
            commit_id=commit, branch="main", context=BuildContext(location="./app")
        )
        run = orchestrator.handle_event(event)
        if run is not None:
            renderer.print_run(run)

    _print_manifest("Manifest after", repository.files[gitops_target.file_path])
    console.print(
        f"[dim]GitOps commits: {repository.commit_count - 1}; "
        f"ledger: {orchestrator.ledger.path}[/dim]"
    )
    renderer.print_history(orchestrator.ledger.get_outcomes(limit=3))


def _print_manifest(title: str, content: str) -> None:
    console.print(Panel(Syntax(content, "yaml"), title=title, border_style="blue"))
