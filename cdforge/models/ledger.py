"""Canonical Run Ledger entry model (append-only, hash-chained).

The Run Ledger is the audit trail for every pipeline run. It is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- Event-driven (one entry per state transition)
- Stage-aware (entries are scoped to run_id + stage_id)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger.

    The Build Monitor is a projection of these entries. It does not
    compute truth — it displays it.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str  # pipeline stage, or "rollout:<step_id>" for rollout steps
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content-addressed keys
    detail: str = ""  # failure or skip reason
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry
