"""Vulnerability severity, scan findings, reports, and gate decisions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shiprail.models.artifacts import ArtifactReference


class Severity(str, Enum):
    """Finding severity with a fixed total order.

    ``UNKNOWN < LOW < MEDIUM < HIGH < CRITICAL``.  Comparisons use the
    rank, not the string value.
    """

    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str) -> Severity:
        """Case-insensitive lookup; unrecognised labels map to UNKNOWN."""
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Finding(BaseModel):
    """One issue reported by the scanner."""

    model_config = ConfigDict(frozen=True)

    finding_id: str  # e.g. "CVE-2024-3094"
    severity: Severity
    component: str  # affected package / component name
    installed_version: str = ""
    fixed_version: str = ""
    title: str = ""


class SeverityReport(BaseModel):
    """Output of one scan.  Findings keep the scanner's order.

    Produced once per scan and never modified; both serializations
    (JSON and table) are rendered from this object.
    """

    model_config = ConfigDict(frozen=True)

    artifact: ArtifactReference
    findings: tuple[Finding, ...] = ()
    scanner: str = ""
    scanned_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_empty(self) -> bool:
        return not self.findings

    def count_by_severity(self) -> dict[Severity, int]:
        """Finding counts for every severity level, highest first."""
        counts = {sev: 0 for sev in sorted(Severity, reverse=True)}
        for finding in self.findings:
            counts[finding.severity] += 1
        return counts

    def highest_severity(self) -> Severity | None:
        if not self.findings:
            return None
        return max(f.severity for f in self.findings)


class GateDecision(BaseModel):
    """Pass/fail verdict of the security gate for one report."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    threshold: Severity
    blocking_findings: tuple[Finding, ...] = ()

    @property
    def verdict(self) -> str:
        return "pass" if self.passed else "fail"

    def summary(self) -> str:
        if self.passed:
            return f"No findings at or above {self.threshold.value}."
        ids = ", ".join(f.finding_id for f in self.blocking_findings[:5])
        more = len(self.blocking_findings) - 5
        suffix = f" (+{more} more)" if more > 0 else ""
        return (
            f"{len(self.blocking_findings)} finding(s) at or above "
            f"{self.threshold.value}: {ids}{suffix}"
        )
