"""cdforge data models — all Pydantic v2, all frozen (immutable)."""

from cdforge.models.artifacts import (
    ArtifactBundle,
    ArtifactGroup,
    ArtifactKind,
    ArtifactRef,
    CacheKey,
)
from cdforge.models.config import PipelineConfig
from cdforge.models.ledger import LedgerEntry
from cdforge.models.publish import (
    CHART_MATRIX,
    IMAGE_MATRIX,
    ChartSpec,
    EntryResult,
    ImageSpec,
    MatrixResult,
)
from cdforge.models.reports import FailureSummary, PipelineReport, RunStatus
from cdforge.models.rollout import (
    DEFAULT_ROLLOUT_PLAN,
    IngestColor,
    ReleaseConfig,
    ReleaseLine,
    RolloutPhase,
    RolloutStep,
    StepKind,
    TestConfig,
)
from cdforge.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    StageClass,
    StageDefinition,
    StageState,
)
from cdforge.models.trigger import EnvironmentMetadata, EventKind, TriggerContext

__all__ = [
    # trigger
    "EventKind",
    "TriggerContext",
    "EnvironmentMetadata",
    # stages
    "StageState",
    "StageClass",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    # artifacts
    "ArtifactGroup",
    "ArtifactKind",
    "ArtifactRef",
    "ArtifactBundle",
    "CacheKey",
    # publish
    "ImageSpec",
    "ChartSpec",
    "EntryResult",
    "MatrixResult",
    "IMAGE_MATRIX",
    "CHART_MATRIX",
    # rollout
    "IngestColor",
    "ReleaseLine",
    "StepKind",
    "RolloutPhase",
    "RolloutStep",
    "ReleaseConfig",
    "TestConfig",
    "DEFAULT_ROLLOUT_PLAN",
    # ledger
    "LedgerEntry",
    # reports
    "RunStatus",
    "FailureSummary",
    "PipelineReport",
    # config
    "PipelineConfig",
]
