"""Tests for SecurityGate — threshold semantics and monotonicity."""

from __future__ import annotations

import pytest

from shiprail.core.errors import InvalidPolicy
from shiprail.core.security_gate import SecurityGate
from shiprail.models.config import GatePolicy
from shiprail.models.severity import Severity

THRESHOLDS = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class TestSeverityOrder:
    def test_total_order(self):
        assert Severity.UNKNOWN < Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL

    def test_max_uses_rank_not_string(self):
        # Alphabetically "MEDIUM" > "CRITICAL"; by rank it is lower.
        assert max([Severity.MEDIUM, Severity.CRITICAL]) == Severity.CRITICAL

    def test_parse_unknown_label(self):
        assert Severity.parse("negligible") == Severity.UNKNOWN
        assert Severity.parse("high") == Severity.HIGH


class TestEvaluate:
    @pytest.mark.parametrize("threshold", THRESHOLDS)
    def test_empty_report_always_passes(self, make_report, threshold):
        decision = SecurityGate().evaluate(make_report(), GatePolicy(fail_threshold=threshold))
        assert decision.passed
        assert decision.blocking_findings == ()

    def test_critical_fails_default_policy(self, make_report):
        decision = SecurityGate().evaluate(
            make_report(Severity.LOW, Severity.CRITICAL), GatePolicy()
        )
        assert not decision.passed
        assert [f.severity for f in decision.blocking_findings] == [Severity.CRITICAL]
        assert decision.verdict == "fail"

    def test_high_passes_critical_threshold(self, make_report):
        decision = SecurityGate().evaluate(make_report(Severity.HIGH), GatePolicy())
        assert decision.passed

    def test_finding_equal_to_threshold_fails(self, make_report):
        decision = SecurityGate().evaluate(
            make_report(Severity.HIGH), GatePolicy(fail_threshold=Severity.HIGH)
        )
        assert not decision.passed

    def test_unknown_findings_never_block(self, make_report):
        decision = SecurityGate().evaluate(
            make_report(Severity.UNKNOWN, Severity.UNKNOWN),
            GatePolicy(fail_threshold=Severity.LOW),
        )
        assert decision.passed

    @pytest.mark.parametrize(
        "severities",
        [
            (Severity.LOW,),
            (Severity.MEDIUM, Severity.UNKNOWN),
            (Severity.HIGH, Severity.LOW),
            (Severity.CRITICAL,),
        ],
    )
    def test_monotonic_in_threshold(self, make_report, severities):
        """Raising the threshold never turns a pass into a fail."""
        report = make_report(*severities)
        gate = SecurityGate()
        verdicts = [gate.evaluate(report, GatePolicy(fail_threshold=t)).passed for t in THRESHOLDS]
        first_pass = verdicts.index(True) if True in verdicts else len(verdicts)
        assert all(verdicts[first_pass:])

    @pytest.mark.parametrize("threshold", THRESHOLDS)
    def test_adding_finding_at_threshold_turns_pass_into_fail(self, make_report, threshold):
        policy = GatePolicy(fail_threshold=threshold)
        below = [s for s in THRESHOLDS if s < threshold]
        passing = make_report(Severity.UNKNOWN, *below)
        assert SecurityGate().evaluate(passing, policy).passed

        extra = make_report(threshold).findings[0].model_copy(update={"finding_id": "CVE-2024-9999"})
        grown = passing.model_copy(update={"findings": passing.findings + (extra,)})
        decision = SecurityGate().evaluate(grown, policy)
        assert not decision.passed
        assert [f.finding_id for f in decision.blocking_findings] == ["CVE-2024-9999"]

    @pytest.mark.parametrize("threshold", THRESHOLDS)
    def test_removing_findings_at_threshold_turns_fail_into_pass(self, make_report, threshold):
        policy = GatePolicy(fail_threshold=threshold)
        failing = make_report(*THRESHOLDS, Severity.UNKNOWN)
        assert not SecurityGate().evaluate(failing, policy).passed

        kept = tuple(f for f in failing.findings if f.severity < threshold)
        filtered = failing.model_copy(update={"findings": kept})
        decision = SecurityGate().evaluate(filtered, policy)
        assert decision.passed
        assert decision.blocking_findings == ()

    def test_deterministic(self, make_report):
        report = make_report(Severity.MEDIUM, Severity.HIGH)
        policy = GatePolicy(fail_threshold=Severity.MEDIUM)
        assert SecurityGate().evaluate(report, policy) == SecurityGate().evaluate(report, policy)

    def test_summary_lists_blocking_ids(self, make_report):
        decision = SecurityGate().evaluate(
            make_report(Severity.CRITICAL, Severity.CRITICAL), GatePolicy()
        )
        assert "2 finding(s)" in decision.summary()
        assert "CVE-2024-1000" in decision.summary()


class TestPolicy:
    def test_unknown_threshold_rejected(self):
        with pytest.raises(InvalidPolicy):
            GatePolicy(fail_threshold=Severity.UNKNOWN)

    def test_unknown_threshold_string_rejected(self):
        with pytest.raises(InvalidPolicy):
            GatePolicy(fail_threshold="unknown")

    def test_unrecognised_threshold_rejected(self):
        with pytest.raises(InvalidPolicy, match="Unrecognised"):
            GatePolicy(fail_threshold="SEVERE")

    def test_threshold_parsed_case_insensitively(self):
        assert GatePolicy(fail_threshold="high").fail_threshold == Severity.HIGH
