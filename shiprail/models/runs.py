"""Pipeline run state machine models (trigger -> build -> scan -> gate -> propagate)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shiprail.core.errors import ErrorKind, InvalidInput
from shiprail.models.artifacts import ArtifactReference, BuildContext
from shiprail.models.severity import GateDecision, SeverityReport


class RunState(str, Enum):
    """Every state a PipelineRun can occupy."""

    PENDING = "pending"
    BUILDING = "building"
    BUILD_FAILED = "build_failed"
    BUILT = "built"
    SCANNING = "scanning"
    SCAN_UNAVAILABLE = "scan_unavailable"
    SCANNED = "scanned"
    GATING = "gating"
    GATED = "gated"
    GATE_PASSED = "gate_passed"
    PROPAGATING = "propagating"
    PROPAGATE_FAILED = "propagate_failed"
    SUCCEEDED = "succeeded"


class RunStatus(str, Enum):
    """Coarse status reported for a run record."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    GATED = "gated"


# Strictly forward: no state is ever re-entered.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.BUILDING},
    RunState.BUILDING: {RunState.BUILT, RunState.BUILD_FAILED},
    RunState.BUILT: {RunState.SCANNING},
    RunState.SCANNING: {RunState.SCANNED, RunState.SCAN_UNAVAILABLE},
    RunState.SCANNED: {RunState.GATING},
    RunState.GATING: {RunState.GATE_PASSED, RunState.GATED},
    RunState.GATE_PASSED: {RunState.PROPAGATING},
    RunState.PROPAGATING: {RunState.SUCCEEDED, RunState.PROPAGATE_FAILED},
    RunState.BUILD_FAILED: set(),
    RunState.SCAN_UNAVAILABLE: set(),
    RunState.GATED: set(),
    RunState.PROPAGATE_FAILED: set(),
    RunState.SUCCEEDED: set(),
}

TERMINAL_STATES: frozenset[RunState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


def status_for(state: RunState) -> RunStatus:
    """Map a fine-grained state onto the coarse run status."""
    if state == RunState.PENDING:
        return RunStatus.PENDING
    if state == RunState.SUCCEEDED:
        return RunStatus.SUCCEEDED
    if state == RunState.GATED:
        return RunStatus.GATED
    if state in TERMINAL_STATES:
        return RunStatus.FAILED
    return RunStatus.RUNNING


class TriggerEvent(BaseModel):
    """A commit pushed to a branch, as delivered by the source-control platform."""

    model_config = ConfigDict(frozen=True)

    commit_id: str
    branch: str
    context: BuildContext

    @model_validator(mode="after")
    def _require_fields(self) -> TriggerEvent:
        if not self.commit_id.strip():
            raise InvalidInput("Trigger event has an empty commit identifier")
        if not self.branch.strip():
            raise InvalidInput("Trigger event has an empty branch name")
        if not self.context.location.strip():
            raise InvalidInput("Trigger event has an empty build-context location")
        return self


class PropagationTrigger(BaseModel):
    """Downstream event emitted on GATE_PASSED and consumed by the GitOps update.

    Cannot be constructed without a passing gate decision, so the GitOps
    update never runs for an artifact that was not cleared by the gate.
    """

    model_config = ConfigDict(frozen=True)

    immutable_tag: str
    commit_id: str
    gate_decision: GateDecision
    artifact: ArtifactReference | None = None
    trigger_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    @model_validator(mode="after")
    def _require_passed_gate(self) -> PropagationTrigger:
        if not self.gate_decision.passed:
            raise InvalidInput(
                f"Refusing to propagate {self.immutable_tag!r}: security gate did not pass"
            )
        if not self.immutable_tag or self.immutable_tag == "latest":
            raise InvalidInput(
                "Propagation requires the immutable commit tag, not a mutable tag"
            )
        if self.artifact is not None and self.artifact.immutable_tag != self.immutable_tag:
            raise InvalidInput(
                f"Tag {self.immutable_tag!r} does not match artifact tag "
                f"{self.artifact.immutable_tag!r}"
            )
        return self


class StageTiming(BaseModel):
    """Wall-clock bounds of one stage of a run."""

    model_config = ConfigDict(frozen=True)

    stage: str  # "build", "scan", "gate", "propagate"
    started_at: datetime
    finished_at: datetime

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0


class FailureReason(BaseModel):
    """Classified reason a run stopped, with the tool's raw output kept separate."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    diagnostics: str = ""  # verbatim external tool output


class PipelineRun(BaseModel):
    """One end-to-end execution for a trigger commit.

    Only the orchestrator produces new versions (via ``model_copy``); once
    ``state`` is terminal the run is final.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(
        default_factory=lambda: (
            f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"
        )
    )
    commit_id: str
    branch: str
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    state: RunState = RunState.PENDING
    tags: tuple[str, ...] = ()
    artifact: ArtifactReference | None = None
    report: SeverityReport | None = None
    gate_decision: GateDecision | None = None
    patch_commit_id: str | None = None
    timings: tuple[StageTiming, ...] = ()
    failure: FailureReason | None = None

    @property
    def status(self) -> RunStatus:
        return status_for(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.SUCCEEDED
