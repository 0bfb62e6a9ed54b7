"""Stage state machine models — deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from cdforge.models.trigger import EventKind


class StageState(str, Enum):
    """Strict state model for each pipeline stage."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


# Valid state transitions — enforced structurally by StageMachine.
# Every state except NOT_STARTED and RUNNING is terminal: nothing is
# retried within a run. A running stage ends CANCELLED only when it
# notices itself superseded.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {
        StageState.RUNNING,
        StageState.BLOCKED,
        StageState.SKIPPED,
        StageState.CANCELLED,
    },
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED, StageState.CANCELLED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
    StageState.SKIPPED: set(),
    StageState.CANCELLED: set(),
}

# States that let dependents proceed.
SATISFIED_STATES: frozenset[StageState] = frozenset(
    {StageState.PASSED, StageState.SKIPPED}
)

TERMINAL_STATES: frozenset[StageState] = frozenset(
    s for s, targets in VALID_TRANSITIONS.items() if not targets
)


class StageClass(str, Enum):
    """Opt-out class a stage belongs to.

    Each class maps to at most one commit-message marker.
    """

    METADATA = "metadata"
    BUILD = "build"
    DOCKER = "docker"
    CHARTS = "charts"
    ENVIRONMENT = "environment"
    ROLLOUT = "rollout"


class StageDefinition(BaseModel):
    """Defines a pipeline stage and its prerequisites.

    The prerequisite list encodes the DAG: a stage cannot enter RUNNING
    unless every prerequisite is PASSED or SKIPPED.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: float
    stage_class: StageClass
    prerequisites: list[str] = []
    only_on_events: frozenset[EventKind] | None = None  # None -> every event


# The standard pipeline graph.
DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="metadata",
        display_name="Environment Info",
        ordinal=0.0,
        stage_class=StageClass.METADATA,
    ),
    StageDefinition(
        stage_id="build_enclave",
        display_name="Build Hardware/Enclave Binaries",
        ordinal=1.0,
        stage_class=StageClass.BUILD,
    ),
    StageDefinition(
        stage_id="build_gateway",
        display_name="Build Gateway Binaries",
        ordinal=1.1,
        stage_class=StageClass.BUILD,
    ),
    StageDefinition(
        stage_id="docker_base",
        display_name="Refresh Runtime Base Image",
        ordinal=1.2,
        stage_class=StageClass.DOCKER,
    ),
    StageDefinition(
        stage_id="images",
        display_name="Publish Images",
        ordinal=2.0,
        stage_class=StageClass.DOCKER,
        prerequisites=["metadata", "build_enclave", "build_gateway", "docker_base"],
    ),
    StageDefinition(
        stage_id="charts",
        display_name="Publish Charts",
        ordinal=3.0,
        stage_class=StageClass.CHARTS,
        prerequisites=["metadata", "images"],
    ),
    StageDefinition(
        stage_id="dev_reset",
        display_name="Reset Namespace",
        ordinal=0.5,
        stage_class=StageClass.ENVIRONMENT,
        prerequisites=["metadata"],
    ),
    StageDefinition(
        stage_id="rollout",
        display_name="Staged Rollout",
        ordinal=4.0,
        stage_class=StageClass.ROLLOUT,
        prerequisites=["dev_reset", "charts"],
    ),
    StageDefinition(
        stage_id="cleanup",
        display_name="Delete Namespace",
        ordinal=5.0,
        stage_class=StageClass.ENVIRONMENT,
        prerequisites=["rollout"],
        only_on_events=frozenset({EventKind.PULL_REQUEST}),
    ),
]
