"""MonitorProjection — pure read-only view over the RunLedger.

The Build Monitor is a PROJECTION of the Run Ledger.  It does not compute
truth — it displays it.  Every call re-reads from the ledger.  The
MonitorProjection class never maintains its own state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cdforge.core.run_ledger import LedgerIntegrityError, RunLedger
from cdforge.models.ledger import LedgerEntry
from cdforge.models.rollout import DEFAULT_ROLLOUT_PLAN, RolloutStep
from cdforge.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    SATISFIED_STATES,
    StageDefinition,
    StageState,
)

ROLLOUT_PREFIX = "rollout:"


class StageStatus(BaseModel):
    """Point-in-time status of a single pipeline stage or rollout step.

    Derived entirely from ledger entries — never stored independently.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""
    artifact_refs: list[str] = []


class MonitorSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of a pipeline run.

    Every field is derived by re-reading the ledger.  This model is
    never persisted — it is computed fresh on every ``snapshot()`` call.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_version: str = "0.1.0"
    stages: list[StageStatus] = []
    rollout_steps: list[StageStatus] = []
    artifact_count: int = 0
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        """Number of stages that passed or were skipped."""
        return sum(1 for s in self.stages if s.state in SATISFIED_STATES)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def blocked_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.BLOCKED]

    @property
    def running_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.RUNNING]


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    stage_definitions:
        Pipeline stage definitions for display names and ordering.
        Defaults to ``DEFAULT_STAGE_DEFINITIONS``.
    rollout_plan:
        Rollout steps, in plan order. Defaults to ``DEFAULT_ROLLOUT_PLAN``.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
        rollout_plan: list[RolloutStep] | None = None,
    ) -> None:
        self._ledger = ledger
        definitions = stage_definitions or DEFAULT_STAGE_DEFINITIONS
        self._stage_defs = {sd.stage_id: sd for sd in definitions}
        # Keep ordered list for consistent snapshot ordering
        self._stage_order = [
            sd.stage_id for sd in sorted(definitions, key=lambda sd: sd.ordinal)
        ]
        self._step_order = [s.step_id for s in (rollout_plan or DEFAULT_ROLLOUT_PLAN)]

    def snapshot(self, run_id: str) -> MonitorSnapshot:
        """Produce a point-in-time snapshot of the pipeline run.

        Re-reads the ledger completely — no cached state.
        """
        entries = self._ledger.get_run_entries(run_id)
        replayed = self._compute_states(entries)

        stages = [
            self._status(sid, self._stage_defs[sid].display_name, replayed.get(sid, {}))
            for sid in self._stage_order
        ]
        rollout_steps = [
            self._status(step_id, step_id, replayed.get(f"{ROLLOUT_PREFIX}{step_id}", {}))
            for step_id in self._step_order
        ]

        return MonitorSnapshot(
            run_id=run_id,
            pipeline_version=entries[-1].pipeline_version if entries else "0.1.0",
            stages=stages,
            rollout_steps=rollout_steps,
            artifact_count=self._count_artifacts(entries),
            chain_valid=self._check_chain_valid(run_id),
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
        )

    @staticmethod
    def _status(stage_id: str, display_name: str, info: dict[str, Any]) -> StageStatus:
        return StageStatus(
            stage_id=stage_id,
            display_name=display_name,
            state=info.get("state", StageState.NOT_STARTED),
            entered_at=info.get("entered_at"),
            detail=info.get("detail", ""),
            artifact_refs=info.get("artifact_refs", []),
        )

    def _compute_states(self, entries: list[LedgerEntry]) -> dict[str, dict[str, Any]]:
        """Replay ledger entries to compute current states.

        Returns a dict: stage_id -> {state, entered_at, detail, artifact_refs}
        """
        result: dict[str, dict[str, Any]] = {}

        for entry in entries:
            info = result.setdefault(
                entry.stage_id,
                {"state": StageState.NOT_STARTED, "entered_at": None, "detail": "",
                 "artifact_refs": []},
            )
            if "->" in entry.state_transition:
                _, to_state_str = entry.state_transition.split("->", 1)
                try:
                    info["state"] = StageState(to_state_str)
                except ValueError:
                    continue
                info["entered_at"] = entry.timestamp_utc
                info["detail"] = entry.detail
            if entry.artifact_references:
                info["artifact_refs"].extend(entry.artifact_references)

        return result

    def _count_artifacts(self, entries: list[LedgerEntry]) -> int:
        """Count unique artifact references across all entries."""
        refs: set[str] = set()
        for entry in entries:
            refs.update(entry.artifact_references)
        return len(refs)

    def _check_chain_valid(self, run_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
