"""Pipeline orchestrator — trigger -> build -> scan -> gate -> GitOps update.

The ``PipelineOrchestrator`` drives one ``PipelineRun`` per accepted trigger
through the strictly forward state machine in ``models.runs``.  Each stage
consumes the previous stage's output, so stages within a run are
sequential; separate runs may execute concurrently (``run_many``) and share
only the ledger and the GitOps branch.

Propagation is a second flow (``GitOpsUpdateFlow``) entered only on
GATE_PASSED.  It takes a ``PropagationTrigger``, which cannot be built
without a passing gate decision and the immutable tag, so the GitOps
update never runs on its own authority.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from shiprail.bridge.builder import ArtifactBuilder
from shiprail.bridge.repository import GitCliRepository
from shiprail.bridge.scanner import VulnerabilityScanner, render_report_table, write_report_files
from shiprail.core.config_guard import enforce_pipeline_constraints
from shiprail.core.errors import (
    ErrorKind,
    InvalidInput,
    PipelineError,
    PushFailure,
    ScanUnavailable,
)
from shiprail.core.manifest_patcher import ManifestPatcher
from shiprail.core.run_ledger import RunLedger
from shiprail.core.run_machine import RunStateMachine
from shiprail.core.security_gate import SecurityGate
from shiprail.core.tag_resolver import TagResolver
from shiprail.models.config import GitOpsTarget, PipelineConfig
from shiprail.models.ledger import LedgerEntry, RunOutcomeRecord
from shiprail.models.manifest import PatchOutcome
from shiprail.models.runs import (
    FailureReason,
    PipelineRun,
    PropagationTrigger,
    RunState,
    StageTiming,
    TriggerEvent,
)
from shiprail.models.severity import GateDecision, Severity

logger = logging.getLogger(__name__)

PropagationListener = Callable[[PropagationTrigger], None]


class GitOpsUpdateFlow:
    """Points the GitOps manifest at a gate-cleared immutable tag.

    Parameters
    ----------
    patcher:
        The manifest patcher (owns retry-on-conflict).
    target:
        Repository, file and field to rewrite.
    """

    def __init__(self, patcher: ManifestPatcher, target: GitOpsTarget) -> None:
        self.patcher = patcher
        self.target = target

    @classmethod
    def from_config(cls, config: PipelineConfig) -> GitOpsUpdateFlow:
        """Build a git-backed flow from ``config.gitops``."""
        if config.gitops is None:
            raise InvalidInput(
                "No GitOps target configured. Set SHIPRAIL_GITOPS_REPOSITORY."
            )
        target = config.gitops

        def _factory(repository: str) -> GitCliRepository:
            return GitCliRepository(
                repository,
                branch=target.branch,
                remote_template=target.remote_template,
                credential_ref=target.credential_ref,
                timeout=config.patch_timeout_seconds,
            )

        patcher = ManifestPatcher(
            _factory,
            max_retries=config.patch_max_retries,
            timeout=config.patch_timeout_seconds,
            backoff=1.0,
        )
        return cls(patcher, target)

    def run(self, trigger: PropagationTrigger) -> PatchOutcome:
        logger.info(
            "Propagating %s (commit %s) to %s:%s",
            trigger.immutable_tag,
            trigger.commit_id,
            self.target.repository,
            self.target.file_path,
        )
        return self.patcher.patch(
            self.target.repository,
            self.target.file_path,
            self.target.locator,
            trigger.immutable_tag,
        )


class PipelineOrchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    builder:
        Builds and pushes the image under every resolved tag.
    scanner:
        Scans the pushed artifact.
    gitops:
        The GitOps update flow; built from ``config.gitops`` when omitted.
    config:
        Frozen pipeline configuration.  Validated on construction.
    ledger:
        Run ledger; opened at ``config.ledger_path`` when omitted.
    production:
        Apply the production checks of the configuration guard.
    """

    def __init__(
        self,
        builder: ArtifactBuilder,
        scanner: VulnerabilityScanner,
        *,
        gitops: GitOpsUpdateFlow | None = None,
        config: PipelineConfig | None = None,
        ledger: RunLedger | None = None,
        production: bool = False,
    ) -> None:
        self.config = config or PipelineConfig()
        enforce_pipeline_constraints(self.config, production=production)

        self.builder = builder
        self.scanner = scanner
        self.gitops = gitops or GitOpsUpdateFlow.from_config(self.config)
        self.ledger = ledger or RunLedger(self.config.ledger_path)
        self.machine = RunStateMachine(self.ledger)
        self.tag_resolver = TagResolver(self.config.short_tag_length)
        self.gate = SecurityGate()
        self._listeners: list[PropagationListener] = []

    def on_propagation(self, listener: PropagationListener) -> None:
        """Register a callback invoked with every emitted ``PropagationTrigger``."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_event(self, event: TriggerEvent) -> PipelineRun | None:
        """Run the pipeline for *event*, or return None if its branch is not tracked."""
        if event.branch != self.config.tracked_branch:
            logger.info(
                "Ignoring %s on untracked branch %s (tracking %s)",
                event.commit_id, event.branch, self.config.tracked_branch,
            )
            return None
        return self.run(event)

    def run_many(self, events: Iterable[TriggerEvent]) -> list[PipelineRun | None]:
        """Handle several events concurrently; results follow input order."""
        events = list(events)
        workers = min(self.config.max_concurrent_runs, max(len(events), 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="run") as pool:
            futures = [pool.submit(self.handle_event, event) for event in events]
            return [future.result() for future in futures]

    def run(self, event: TriggerEvent) -> PipelineRun:
        """Execute one run to a terminal state and record its outcome.

        Raises ``InvalidInput`` (before any external call) for a malformed
        commit identifier.  Every other failure ends the run in the
        matching terminal state instead of raising.
        """
        tags = self.tag_resolver.resolve(event.commit_id)
        policy = self.config.policy

        run = PipelineRun(commit_id=event.commit_id, branch=event.branch, tags=tags)
        self.machine.initialize_run(run.run_id)
        logger.info(
            "Run %s started for %s on %s (tags %s)",
            run.run_id, event.commit_id, event.branch, ", ".join(tags),
        )

        # --- Build ------------------------------------------------------
        run = self._advance(run, RunState.BUILDING, detail=",".join(tags))
        started = _now()
        try:
            artifact = self.builder.build(
                event.context, tags, timeout=self.config.build_timeout_seconds
            )
            if set(artifact.tags) != set(tags):
                raise PushFailure(
                    f"Registry reported tags {list(artifact.tags)}, expected {list(tags)}"
                )
        except PipelineError as exc:
            run = self._timed(run, "build", started)
            return self._finish(run, RunState.BUILD_FAILED, exc)
        except Exception as exc:
            run = self._timed(run, "build", started)
            self._finish(run, RunState.BUILD_FAILED, _unexpected(ErrorKind.BUILD_FAILURE, exc))
            raise
        run = self._timed(run, "build", started).model_copy(update={"artifact": artifact})
        run = self._advance(run, RunState.BUILT, detail=artifact.digest)

        # --- Scan -------------------------------------------------------
        run = self._advance(run, RunState.SCANNING, detail=artifact.pinned_ref)
        started = _now()
        try:
            report = self.scanner.scan(artifact, timeout=self.config.scan_timeout_seconds)
            if report.artifact.digest != artifact.digest:
                raise ScanUnavailable(
                    f"Scanner reported on {report.artifact.digest}, "
                    f"expected pushed digest {artifact.digest}"
                )
        except PipelineError as exc:
            run = self._timed(run, "scan", started)
            return self._finish(run, RunState.SCAN_UNAVAILABLE, exc)
        except Exception as exc:
            run = self._timed(run, "scan", started)
            self._finish(
                run, RunState.SCAN_UNAVAILABLE, _unexpected(ErrorKind.SCAN_UNAVAILABLE, exc)
            )
            raise
        run = self._timed(run, "scan", started).model_copy(update={"report": report})
        self._write_reports(run)
        run = self._advance(run, RunState.SCANNED, detail=f"{len(report.findings)} finding(s)")

        # --- Gate -------------------------------------------------------
        run = self._advance(run, RunState.GATING, detail=policy.fail_threshold.value)
        started = _now()
        decision = self.gate.evaluate(report, policy)
        run = self._timed(run, "gate", started).model_copy(update={"gate_decision": decision})
        if not decision.passed:
            return self._finish(
                run,
                RunState.GATED,
                FailureReason(
                    kind=ErrorKind.GATED,
                    message=decision.summary(),
                    diagnostics=render_report_table(report),
                ),
            )
        run = self._advance(run, RunState.GATE_PASSED, detail=decision.summary())

        # --- Propagate --------------------------------------------------
        trigger = PropagationTrigger(
            immutable_tag=artifact.immutable_tag,
            commit_id=run.commit_id,
            gate_decision=decision,
            artifact=artifact,
        )
        self._emit(trigger)
        run = self._advance(run, RunState.PROPAGATING, detail=trigger.trigger_id)
        started = _now()
        try:
            outcome = self.gitops.run(trigger)
        except PipelineError as exc:
            run = self._timed(run, "propagate", started)
            return self._finish(run, RunState.PROPAGATE_FAILED, exc)
        except Exception as exc:
            run = self._timed(run, "propagate", started)
            self._finish(
                run, RunState.PROPAGATE_FAILED, _unexpected(ErrorKind.PROPAGATE_FAILED, exc)
            )
            raise
        run = self._timed(run, "propagate", started).model_copy(
            update={"patch_commit_id": outcome.commit_id}
        )
        return self._finish(run, RunState.SUCCEEDED)

    def propagate_recorded(self, commit_id: str, immutable_tag: str) -> PatchOutcome:
        """Re-run the GitOps update for a previously gate-cleared artifact.

        Only an outcome in the ledger whose gate passed for *immutable_tag*
        authorises this; otherwise ``InvalidInput`` is raised.
        """
        record = next(
            (
                r for r in self.ledger.find_outcomes(commit_id)
                if r.gate_decision == "pass" and immutable_tag in r.artifact_tags
            ),
            None,
        )
        if record is None:
            raise InvalidInput(
                f"No run for commit {commit_id!r} passed the gate with tag {immutable_tag!r}"
            )

        trigger = PropagationTrigger(
            immutable_tag=immutable_tag,
            commit_id=commit_id,
            gate_decision=GateDecision(
                passed=True, threshold=Severity(record.gate_threshold)
            ),
        )
        self._emit(trigger)
        audit_id = f"propagate-{trigger.trigger_id}"
        try:
            outcome = self.gitops.run(trigger)
        except PipelineError as exc:
            self.ledger.append(
                LedgerEntry(
                    run_id=audit_id,
                    commit_id=commit_id,
                    state_transition=f"{RunState.GATE_PASSED.value}->{RunState.PROPAGATE_FAILED.value}",
                    detail=f"{exc.kind.value}: {exc.message}",
                )
            )
            raise
        self.ledger.append(
            LedgerEntry(
                run_id=audit_id,
                commit_id=commit_id,
                state_transition=f"{RunState.GATE_PASSED.value}->{RunState.SUCCEEDED.value}",
                detail=f"from {record.run_id}; commit {outcome.commit_id}",
            )
        )
        return outcome

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _advance(self, run: PipelineRun, state: RunState, *, detail: str = "") -> PipelineRun:
        self.machine.transition(run.run_id, state, commit_id=run.commit_id, detail=detail)
        return run.model_copy(update={"state": state})

    @staticmethod
    def _timed(run: PipelineRun, stage: str, started: datetime) -> PipelineRun:
        timing = StageTiming(stage=stage, started_at=started, finished_at=_now())
        return run.model_copy(update={"timings": run.timings + (timing,)})

    def _finish(
        self,
        run: PipelineRun,
        state: RunState,
        failure: PipelineError | FailureReason | None = None,
    ) -> PipelineRun:
        """Move *run* to a terminal state and append its outcome record."""
        if isinstance(failure, PipelineError):
            failure = FailureReason(
                kind=failure.kind,
                message=failure.message,
                diagnostics=failure.diagnostics,
            )
        detail = f"{failure.kind.value}: {failure.message}" if failure else ""
        self.machine.transition(run.run_id, state, commit_id=run.commit_id, detail=detail)
        run = run.model_copy(
            update={"state": state, "failure": failure, "finished_at": _now()}
        )

        if failure is not None and state != RunState.GATED:
            logger.error(
                "Run %s (%s) ended %s: %s",
                run.run_id, run.commit_id, state.value, failure.message,
            )
        elif state == RunState.GATED:
            logger.warning(
                "Run %s (%s) stopped by security gate: %s",
                run.run_id, run.commit_id, failure.message if failure else "",
            )

        self.ledger.record_outcome(_outcome_record(run))
        return run

    def _emit(self, trigger: PropagationTrigger) -> None:
        for listener in self._listeners:
            try:
                listener(trigger)
            except Exception:
                logger.exception("Propagation listener %r failed", listener)

    def _write_reports(self, run: PipelineRun) -> None:
        if self.config.report_dir is None or run.report is None:
            return
        try:
            json_path, table_path = write_report_files(run.report, Path(self.config.report_dir))
        except OSError as exc:
            logger.error("Could not write scan reports for %s: %s", run.run_id, exc)
            return
        logger.info("Scan reports written: %s, %s", json_path, table_path)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unexpected(kind: ErrorKind, exc: Exception) -> FailureReason:
    return FailureReason(kind=kind, message=f"Unexpected error: {exc}", diagnostics=repr(exc))


def _outcome_record(run: PipelineRun) -> RunOutcomeRecord:
    decision = run.gate_decision
    return RunOutcomeRecord(
        run_id=run.run_id,
        commit_id=run.commit_id,
        branch=run.branch,
        final_state=run.state,
        status=run.status,
        started_at=run.started_at,
        finished_at=run.finished_at or _now(),
        timings=list(run.timings),
        artifact_tags=list(run.artifact.tags) if run.artifact else [],
        artifact_digest=run.artifact.digest if run.artifact else "",
        gate_decision=decision.verdict if decision else "",
        gate_threshold=decision.threshold.value if decision else "",
        patch_commit_id=run.patch_commit_id or "",
        failure=run.failure,
    )
