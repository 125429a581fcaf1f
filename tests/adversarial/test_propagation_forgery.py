"""Adversarial tests — GitOps updates without a passing gate."""

from __future__ import annotations

import pytest

from shiprail.core.errors import InvalidInput
from shiprail.models.runs import PropagationTrigger
from shiprail.models.severity import Finding, GateDecision, Severity

PASSED = GateDecision(passed=True, threshold=Severity.CRITICAL)
FAILED = GateDecision(
    passed=False,
    threshold=Severity.CRITICAL,
    blocking_findings=(
        Finding(finding_id="CVE-2024-3094", severity=Severity.CRITICAL, component="xz"),
    ),
)


class TestPropagationTrigger:
    def test_failed_gate_cannot_build_trigger(self):
        with pytest.raises(InvalidInput, match="did not pass"):
            PropagationTrigger(immutable_tag="def5678", commit_id="def5678", gate_decision=FAILED)

    @pytest.mark.parametrize("tag", ["", "latest"])
    def test_mutable_or_empty_tag_refused(self, tag):
        with pytest.raises(InvalidInput):
            PropagationTrigger(immutable_tag=tag, commit_id="abc1234", gate_decision=PASSED)

    def test_tag_must_match_artifact(self, artifact):
        with pytest.raises(InvalidInput, match="does not match"):
            PropagationTrigger(
                immutable_tag="fff0000",
                commit_id="abc1234",
                gate_decision=PASSED,
                artifact=artifact,
            )

    def test_trigger_is_frozen(self, artifact):
        trigger = PropagationTrigger(
            immutable_tag="abc1234", commit_id="abc1234", gate_decision=PASSED, artifact=artifact
        )
        with pytest.raises(Exception):
            trigger.gate_decision = FAILED


class TestRecordedPropagation:
    def test_forged_outcome_for_other_commit_ignored(self, make_orchestrator, make_event):
        orchestrator = make_orchestrator()
        orchestrator.run(make_event("abc1234"))
        # Cleared tag exists, but not for this commit.
        with pytest.raises(InvalidInput):
            orchestrator.propagate_recorded("def5678", "abc1234")

    def test_build_failed_commit_cannot_propagate(
        self, make_orchestrator, make_event, registry, registry_target, repository
    ):
        from shiprail.bridge.memory import InMemoryBuilder
        from shiprail.core.errors import BuildFailure

        builder = InMemoryBuilder(
            registry, registry_target, failures={"ghi9012": BuildFailure("exit 1")}
        )
        orchestrator = make_orchestrator(builder=builder)
        orchestrator.run(make_event("ghi9012"))
        with pytest.raises(InvalidInput):
            orchestrator.propagate_recorded("ghi9012", "ghi9012")
        assert repository.commit_count == 1
