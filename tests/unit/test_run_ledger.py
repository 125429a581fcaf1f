"""Tests for RunLedger — append-only hash chain and outcome records."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from shiprail.core.run_ledger import LedgerIntegrityError, RunLedger
from shiprail.models.ledger import LedgerEntry, RunOutcomeRecord
from shiprail.models.runs import RunState, RunStatus


def _outcome(run_id: str, commit_id: str = "abc1234", **overrides) -> RunOutcomeRecord:
    now = datetime.now(timezone.utc)
    fields = dict(
        run_id=run_id,
        commit_id=commit_id,
        branch="main",
        final_state=RunState.SUCCEEDED,
        status=RunStatus.SUCCEEDED,
        started_at=now,
        finished_at=now,
        artifact_tags=[commit_id[:7], "latest"],
        gate_decision="pass",
        gate_threshold="CRITICAL",
    )
    fields.update(overrides)
    return RunOutcomeRecord(**fields)


class TestAppend:
    def test_first_entry_has_empty_previous_hash(self, ledger, run_id):
        sealed = ledger.append(LedgerEntry(run_id=run_id, state_transition="pending->building"))
        assert sealed.previous_entry_hash == ""
        assert len(sealed.entry_hash) == 64

    def test_entries_chain(self, ledger, run_id):
        first = ledger.append(LedgerEntry(run_id=run_id, state_transition="pending->building"))
        second = ledger.append(LedgerEntry(run_id=run_id, state_transition="building->built"))
        assert second.previous_entry_hash == first.entry_hash

    def test_chains_are_per_run(self, ledger):
        ledger.append(LedgerEntry(run_id="run-a", state_transition="pending->building"))
        other = ledger.append(LedgerEntry(run_id="run-b", state_transition="pending->building"))
        assert other.previous_entry_hash == ""

    def test_entries_returned_in_order(self, ledger, run_id):
        transitions = ["pending->building", "building->built", "built->scanning"]
        for t in transitions:
            ledger.append(LedgerEntry(run_id=run_id, state_transition=t))
        assert [e.state_transition for e in ledger.get_run_entries(run_id)] == transitions

    def test_verify_chain(self, ledger, run_id):
        for t in ["pending->building", "building->build_failed"]:
            ledger.append(LedgerEntry(run_id=run_id, state_transition=t, detail="x"))
        assert ledger.verify_chain(run_id) is True

    def test_all_run_ids_most_recent_first(self, ledger):
        ledger.append(LedgerEntry(run_id="run-a", state_transition="pending->building"))
        ledger.append(LedgerEntry(run_id="run-b", state_transition="pending->building"))
        assert ledger.get_all_run_ids() == ["run-b", "run-a"]

    def test_concurrent_appends_keep_chain_valid(self, ledger, run_id):
        def worker(n: int) -> None:
            for i in range(10):
                ledger.append(
                    LedgerEntry(run_id=run_id, state_transition="a->b", detail=f"{n}-{i}")
                )

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(ledger.get_run_entries(run_id)) == 40
        assert ledger.verify_chain(run_id)

    def test_persists_across_instances(self, tmp_dir, run_id):
        path = tmp_dir / "persist.db"
        RunLedger(path).append(LedgerEntry(run_id=run_id, state_transition="pending->building"))
        assert len(RunLedger(path).get_run_entries(run_id)) == 1


class TestOutcomes:
    def test_record_and_read_back(self, ledger):
        record = _outcome("run-1")
        ledger.record_outcome(record)
        assert ledger.get_outcome("run-1") == record

    def test_missing_outcome(self, ledger):
        assert ledger.get_outcome("nope") is None

    def test_duplicate_outcome_rejected(self, ledger):
        ledger.record_outcome(_outcome("run-1"))
        with pytest.raises(LedgerIntegrityError, match="already recorded"):
            ledger.record_outcome(_outcome("run-1"))

    def test_outcomes_most_recent_first(self, ledger):
        for i in range(3):
            ledger.record_outcome(_outcome(f"run-{i}"))
        assert [r.run_id for r in ledger.get_outcomes()] == ["run-2", "run-1", "run-0"]
        assert len(ledger.get_outcomes(limit=2)) == 2

    def test_find_by_commit(self, ledger):
        ledger.record_outcome(_outcome("run-1", commit_id="abc1234"))
        ledger.record_outcome(_outcome("run-2", commit_id="def5678"))
        ledger.record_outcome(
            _outcome(
                "run-3",
                commit_id="abc1234",
                final_state=RunState.PROPAGATE_FAILED,
                status=RunStatus.FAILED,
            )
        )
        assert [r.run_id for r in ledger.find_outcomes("abc1234")] == ["run-3", "run-1"]
