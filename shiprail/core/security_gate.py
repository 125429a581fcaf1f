"""Security gate — policy decision over a scan report.

Pure and deterministic: a report fails if and only if at least one finding
has severity >= the policy threshold.  An empty report always passes.
"""

from __future__ import annotations

import logging

from shiprail.models.config import GatePolicy
from shiprail.models.severity import GateDecision, SeverityReport

logger = logging.getLogger(__name__)


class SecurityGate:
    """Evaluates severity reports against a ``GatePolicy``."""

    def evaluate(self, report: SeverityReport, policy: GatePolicy) -> GateDecision:
        threshold = policy.fail_threshold
        blocking = tuple(f for f in report.findings if f.severity >= threshold)
        decision = GateDecision(
            passed=not blocking,
            threshold=threshold,
            blocking_findings=blocking,
        )
        logger.info(
            "Gate %s for %s: %d finding(s), %d at or above %s",
            decision.verdict,
            report.artifact.ref(),
            len(report.findings),
            len(blocking),
            threshold.value,
        )
        return decision
