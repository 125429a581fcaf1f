"""Shiprail data models — all Pydantic v2, all frozen (immutable)."""

from shiprail.models.artifacts import ArtifactReference, BuildContext
from shiprail.models.config import (
    FieldLocator,
    GatePolicy,
    GitOpsTarget,
    PipelineConfig,
    RegistryTarget,
)
from shiprail.models.ledger import LedgerEntry, RunOutcomeRecord
from shiprail.models.manifest import FetchedFile, ManifestPatch, PatchOutcome
from shiprail.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    FailureReason,
    PipelineRun,
    PropagationTrigger,
    RunState,
    RunStatus,
    StageTiming,
    TriggerEvent,
)
from shiprail.models.severity import Finding, GateDecision, Severity, SeverityReport

__all__ = [
    # artifacts
    "ArtifactReference",
    "BuildContext",
    # severity
    "Severity",
    "Finding",
    "SeverityReport",
    "GateDecision",
    # config
    "GatePolicy",
    "RegistryTarget",
    "FieldLocator",
    "GitOpsTarget",
    "PipelineConfig",
    # runs
    "RunState",
    "RunStatus",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "TriggerEvent",
    "PropagationTrigger",
    "StageTiming",
    "FailureReason",
    "PipelineRun",
    # manifest
    "FetchedFile",
    "ManifestPatch",
    "PatchOutcome",
    # ledger
    "LedgerEntry",
    "RunOutcomeRecord",
]
