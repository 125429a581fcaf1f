"""Append-only, hash-chained Run Ledger backed by SQLite.

Two tables:

- ``run_ledger``   one sealed ``LedgerEntry`` per state transition.  Each
  entry carries the SHA-256 of the previous entry of the same run, so a
  run's history can be verified end to end with ``verify_chain``.
- ``run_outcomes`` one ``RunOutcomeRecord`` per finished run, stored as
  JSON next to the columns used for lookup.

``append()`` and ``record_outcome()`` are the only writes; there is no
update and no delete.  Writes are serialized by a lock so concurrent runs
can share one ledger file; WAL mode keeps readers unblocked.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from shiprail.core.hasher import compute_entry_hash
from shiprail.models.ledger import LedgerEntry, RunOutcomeRecord

# Column order of run_ledger after the autoincrement id.
_ENTRY_COLUMNS = (
    "entry_id",
    "run_id",
    "commit_id",
    "state_transition",
    "timestamp_utc",
    "detail",
    "schema_version",
    "previous_entry_hash",
    "entry_hash",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS run_ledger (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        entry_id            TEXT NOT NULL UNIQUE,
        run_id              TEXT NOT NULL,
        commit_id           TEXT NOT NULL DEFAULT '',
        state_transition    TEXT NOT NULL,
        timestamp_utc       TEXT NOT NULL,
        detail              TEXT NOT NULL DEFAULT '',
        schema_version      TEXT NOT NULL,
        previous_entry_hash TEXT NOT NULL DEFAULT '',
        entry_hash          TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS run_outcomes (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id       TEXT NOT NULL UNIQUE,
        commit_id    TEXT NOT NULL,
        final_state  TEXT NOT NULL,
        recorded_at  TEXT NOT NULL,
        record_json  TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_run ON run_ledger(run_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_outcome_commit ON run_outcomes(commit_id, id)",
)


class LedgerIntegrityError(RuntimeError):
    """The ledger refused a write, or a stored hash chain does not verify."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        SQLite database file.  Parent directories are created as needed.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        with self._session() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Short-lived connection: commit on success, always closed."""
        conn = sqlite3.connect(str(self._db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto its run's chain and store it.

        Returns the stored entry with ``previous_entry_hash`` and
        ``entry_hash`` filled in.
        """
        with self._write_lock, self._session() as conn:
            tip = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            sealed = _seal(entry, tip["entry_hash"] if tip else "")
            values = sealed.model_dump(mode="json")
            conn.execute(
                f"INSERT INTO run_ledger ({', '.join(_ENTRY_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _ENTRY_COLUMNS)})",
                tuple(values[column] for column in _ENTRY_COLUMNS),
            )
        return sealed

    def record_outcome(self, record: RunOutcomeRecord) -> RunOutcomeRecord:
        """Store the outcome of a finished run.

        A run has exactly one outcome; a second one for the same ``run_id``
        raises ``LedgerIntegrityError``.
        """
        with self._write_lock, self._session() as conn:
            try:
                conn.execute(
                    "INSERT INTO run_outcomes "
                    "(run_id, commit_id, final_state, recorded_at, record_json) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        record.run_id,
                        record.commit_id,
                        record.final_state.value,
                        record.recorded_at.isoformat(),
                        record.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise LedgerIntegrityError(
                    f"Outcome for run {record.run_id} is already recorded"
                ) from exc
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Every transition of *run_id*, oldest first."""
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM run_ledger "
                "WHERE run_id = ? ORDER BY id",
                (run_id,),
            ).fetchall()
        return [LedgerEntry(**dict(row)) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Distinct run ids, most recently written first."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [row["run_id"] for row in rows]

    def get_outcomes(self, limit: int = 50) -> list[RunOutcomeRecord]:
        """The latest *limit* outcome records, most recent first."""
        return self._outcomes("ORDER BY id DESC LIMIT ?", (limit,))

    def get_outcome(self, run_id: str) -> RunOutcomeRecord | None:
        found = self._outcomes("WHERE run_id = ?", (run_id,))
        return found[0] if found else None

    def find_outcomes(self, commit_id: str) -> list[RunOutcomeRecord]:
        """Every outcome recorded for *commit_id*, most recent first."""
        return self._outcomes("WHERE commit_id = ? ORDER BY id DESC", (commit_id,))

    def _outcomes(self, clause: str, params: tuple) -> list[RunOutcomeRecord]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT record_json FROM run_outcomes {clause}", params
            ).fetchall()
        return [RunOutcomeRecord.model_validate_json(row["record_json"]) for row in rows]

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every link of *run_id*'s chain.

        Returns True, or raises ``LedgerIntegrityError`` naming the first
        entry that does not verify.
        """
        expected_previous = ""
        for position, entry in enumerate(self.get_run_entries(run_id), start=1):
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id} (#{position} of {run_id}): "
                    f"links to {entry.previous_entry_hash[:16]!r}, "
                    f"expected {expected_previous[:16]!r}"
                )
            recomputed = compute_entry_hash(entry.model_dump(mode="json"))
            if recomputed != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id} (#{position} of {run_id}): "
                    f"content hashes to {recomputed[:16]!r}, "
                    f"stored {entry.entry_hash[:16]!r}"
                )
            expected_previous = entry.entry_hash
        return True


def _seal(entry: LedgerEntry, previous_hash: str) -> LedgerEntry:
    """Link *entry* to *previous_hash* and compute its own hash."""
    linked = entry.model_copy(update={"previous_entry_hash": previous_hash, "entry_hash": ""})
    return linked.model_copy(
        update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
    )
