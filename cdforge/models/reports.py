"""Pipeline run report — what a caller sees when a run finishes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cdforge.models.stages import StageState


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    FILTERED = "filtered"  # trigger did not match any filter; nothing ran


class FailureSummary(BaseModel):
    """The first fatal error of a run and the environment it hit."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    error_type: str
    message: str
    metadata: dict[str, str] = {}


class PipelineReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    status: RunStatus
    metadata: dict[str, str] = {}
    stage_states: dict[str, StageState] = {}
    rollout_steps: dict[str, StageState] = {}
    first_failure: FailureSummary | None = None
    namespace_deleted: bool = False
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.PASSED
