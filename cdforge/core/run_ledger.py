"""Append-only, hash-chained Run Ledger backed by SQLite.

Every stage transition, rollout step and teardown guard decision of every
run lands here; the Build Monitor only ever reads it back.

Each run has its own chain: an entry's ``previous_entry_hash`` is the
``entry_hash`` of the run's preceding entry (empty for the first), and
its ``entry_hash`` is the SHA-256 of its canonical JSON with the hash
field left out. Rows are only ever inserted. Stages finish on worker
threads, so sealing and inserting happen under one lock per ledger.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from cdforge.core.hasher import compute_entry_hash
from cdforge.models.ledger import LedgerEntry

logger = logging.getLogger(__name__)

# Column order for inserts and selects; names match LedgerEntry fields.
_FIELDS: tuple[str, ...] = (
    "entry_id",
    "run_id",
    "stage_id",
    "state_transition",
    "timestamp_utc",
    "input_hash",
    "output_hash",
    "artifact_references",
    "detail",
    "pipeline_version",
    "previous_entry_hash",
    "entry_hash",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_references   TEXT NOT NULL DEFAULT '[]',
    detail                TEXT NOT NULL DEFAULT '',
    pipeline_version      TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_run_ledger_run ON run_ledger(run_id, id);
"""

_SELECT_RUN = (
    f"SELECT {', '.join(_FIELDS)} FROM run_ledger WHERE run_id = ? ORDER BY id ASC"
)
_INSERT = (
    f"INSERT INTO run_ledger ({', '.join(_FIELDS)}) "
    f"VALUES ({', '.join('?' for _ in _FIELDS)})"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when a run's hash chain does not verify."""


def _seal(entry: LedgerEntry, previous_hash: str) -> LedgerEntry:
    linked = entry.model_copy(
        update={"previous_entry_hash": previous_hash, "entry_hash": ""}
    )
    return linked.model_copy(
        update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
    )


def _to_row(entry: LedgerEntry) -> tuple[Any, ...]:
    data = entry.model_dump(mode="json")
    data["artifact_references"] = json.dumps(data["artifact_references"])
    return tuple(data[name] for name in _FIELDS)


def _from_row(row: sqlite3.Row) -> LedgerEntry:
    data = dict(zip(_FIELDS, row))
    data["artifact_references"] = json.loads(data["artifact_references"])
    return LedgerEntry.model_validate(data)


class RunLedger:
    """SQLite-backed Run Ledger.

    Parameters
    ----------
    db_path:
        Database file; it and its parent directory are created on demand.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._append_lock = threading.Lock()
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
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
        """Link *entry* to its run's chain, seal it and store it.

        Returns the sealed copy. This is the only way rows enter the
        ledger; nothing updates or deletes them.
        """
        with self._append_lock, self._connection() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            sealed = _seal(entry, row[0] if row else "")
            conn.execute(_INSERT, _to_row(sealed))
        logger.debug(
            "ledger %s %s %s", sealed.run_id, sealed.stage_id, sealed.state_transition
        )
        return sealed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Every entry of *run_id* in append order."""
        with self._connection() as conn:
            rows = conn.execute(_SELECT_RUN, (run_id,)).fetchall()
        return [_from_row(row) for row in rows]

    def get_stage_history(self, run_id: str, stage_id: str) -> list[LedgerEntry]:
        return [e for e in self.get_run_entries(run_id) if e.stage_id == stage_id]

    def get_all_run_ids(self) -> list[str]:
        """Distinct run ids, the run with the newest entry first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [run_id for (run_id,) in rows]

    def verify_chain(self, run_id: str) -> bool:
        """Re-derive every link and seal of *run_id*.

        Returns True for an intact (or empty) chain and raises
        ``LedgerIntegrityError`` naming the first bad entry otherwise.
        """
        previous_hash = ""
        for position, entry in enumerate(self.get_run_entries(run_id)):
            if entry.previous_entry_hash != previous_hash:
                raise LedgerIntegrityError(
                    f"Run {run_id}: entry {position} ({entry.entry_id}) links to "
                    f"{entry.previous_entry_hash!r}, expected {previous_hash!r}"
                )
            expected = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected:
                raise LedgerIntegrityError(
                    f"Run {run_id}: entry {position} ({entry.entry_id}) was altered; "
                    f"sealed as {entry.entry_hash!r}, content hashes to {expected!r}"
                )
            previous_hash = entry.entry_hash
        return True
