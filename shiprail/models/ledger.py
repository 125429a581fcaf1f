"""Run ledger records (append-only, hash-chained).

Two record kinds live in the ledger:

- ``LedgerEntry`` — one per state transition of a run, hash-chained per run.
- ``RunOutcomeRecord`` — one per finished run, for audit and reporting.

Neither is ever updated or deleted once written.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from shiprail.models.runs import FailureReason, RunState, RunStatus, StageTiming


class LedgerEntry(BaseModel):
    """A single state transition in the Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    commit_id: str = ""
    state_transition: str  # "from_state->to_state", e.g. "pending->building"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: str = ""  # short note, e.g. tags or failure kind
    schema_version: str = "2026-10"
    previous_entry_hash: str = ""  # SHA-256 of previous entry in this run
    entry_hash: str = ""  # computed on append, seals this entry


class RunOutcomeRecord(BaseModel):
    """Audit record of one finished run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    commit_id: str
    branch: str
    final_state: RunState
    status: RunStatus
    started_at: datetime
    finished_at: datetime
    timings: list[StageTiming] = []
    artifact_tags: list[str] = []
    artifact_digest: str = ""
    gate_decision: str = ""  # "pass", "fail" or "" when the gate never ran
    gate_threshold: str = ""
    patch_commit_id: str = ""
    failure: FailureReason | None = None
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
