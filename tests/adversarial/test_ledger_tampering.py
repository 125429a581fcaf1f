"""Adversarial tests — ledger tampering and chain integrity.

These tests verify that the Run Ledger detects:
1. Corrupted entry hashes (tampered content)
2. Broken chain links (deleted entries)
3. Rewritten transition payloads
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from shiprail.core.run_ledger import LedgerIntegrityError, RunLedger
from shiprail.models.ledger import LedgerEntry

TRANSITIONS = [
    "pending->building",
    "building->built",
    "built->scanning",
    "scanning->scanned",
    "scanned->gating",
]


class TestLedgerTamperDetection:
    """Direct SQLite manipulation to simulate an attacker with DB access."""

    @pytest.fixture
    def seeded_ledger(self, tmp_path: Path) -> tuple[RunLedger, str]:
        """Seed a ledger with 5 entries for a single run."""
        ledger = RunLedger(tmp_path / "ledger.db")
        run_id = "run-adversarial-001"
        for transition in TRANSITIONS:
            ledger.append(
                LedgerEntry(run_id=run_id, commit_id="def5678", state_transition=transition)
            )
        return ledger, run_id

    def _execute(self, ledger: RunLedger, sql: str, *params) -> None:
        conn = sqlite3.connect(str(ledger.path))
        conn.execute(sql, params)
        conn.commit()
        conn.close()

    def test_untampered_chain_valid(self, seeded_ledger):
        ledger, run_id = seeded_ledger
        assert ledger.verify_chain(run_id)

    def test_corrupted_entry_hash_detected(self, seeded_ledger):
        ledger, run_id = seeded_ledger
        self._execute(
            ledger,
            "UPDATE run_ledger SET entry_hash = 'TAMPERED' "
            "WHERE id = (SELECT id FROM run_ledger WHERE run_id = ? ORDER BY id ASC LIMIT 1 OFFSET 2)",
            run_id,
        )
        with pytest.raises(LedgerIntegrityError, match="(Chain broken|Tampered)"):
            ledger.verify_chain(run_id)

    def test_rewritten_outcome_detected(self, seeded_ledger):
        """Turning a gated run into a passed one must break the chain."""
        ledger, run_id = seeded_ledger
        self._execute(
            ledger,
            "UPDATE run_ledger SET state_transition = 'gating->gate_passed' "
            "WHERE id = (SELECT MAX(id) FROM run_ledger WHERE run_id = ?)",
            run_id,
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            ledger.verify_chain(run_id)

    def test_deleted_entry_detected(self, seeded_ledger):
        ledger, run_id = seeded_ledger
        self._execute(
            ledger,
            "DELETE FROM run_ledger "
            "WHERE id = (SELECT id FROM run_ledger WHERE run_id = ? ORDER BY id ASC LIMIT 1 OFFSET 1)",
            run_id,
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            ledger.verify_chain(run_id)

    def test_swapped_commit_detected(self, seeded_ledger):
        ledger, run_id = seeded_ledger
        self._execute(
            ledger,
            "UPDATE run_ledger SET commit_id = 'abc1234' WHERE run_id = ?",
            run_id,
        )
        with pytest.raises(LedgerIntegrityError):
            ledger.verify_chain(run_id)
