"""Staged rollout plan models.

A rollout plan is an ordered list of ``RolloutStep`` values. Every step
targets the same namespace; deploy steps install a release line at a
block version, upgrade steps move the running network to a higher block
version in place, and test steps verify the currently deployed state.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class IngestColor(str, Enum):
    BLUE = "blue"
    GREEN = "green"


class ReleaseLine(str, Enum):
    """Which release is deployed by a phase.

    ``CURRENT`` is the build produced by this run; the others are fixed
    tags from configuration.
    """

    RELEASE_1X = "release_1x"
    RELEASE_2X = "release_2x"
    CURRENT = "current"


class StepKind(str, Enum):
    DEPLOY = "deploy"
    TEST = "test"
    UPGRADE = "upgrade"


class RolloutPhase(BaseModel):
    """The network configuration a step deploys, upgrades to, or tests."""

    model_config = ConfigDict(frozen=True)

    block_version: int
    ingest_color: IngestColor
    minting_enabled: bool
    release_line: ReleaseLine


class RolloutStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    kind: StepKind
    phase: RolloutPhase
    fog_distribution: bool = False  # test steps only


class ReleaseConfig(BaseModel):
    """Payload for deploy and upgrade calls on the control plane."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    version_tag: str
    block_version: int
    ingest_color: IngestColor
    minting_enabled: bool
    chart_repo: str = ""
    docker_org: str = ""


# Block versions the test suite has checks for.
TESTED_BLOCK_VERSIONS: frozenset[int] = frozenset({0, 2, 3})


class TestConfig(BaseModel):
    """Payload for test calls on the control plane."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    namespace: str
    ingest_color: IngestColor
    testing_block_v0: bool = False
    testing_block_v2: bool = False
    testing_block_v3: bool = False
    fog_distribution: bool = False

    @classmethod
    def for_block(
        cls,
        namespace: str,
        ingest_color: IngestColor,
        block_version: int,
        *,
        fog_distribution: bool = False,
    ) -> TestConfig:
        if block_version not in TESTED_BLOCK_VERSIONS:
            raise ValueError(f"No test suite for block version {block_version}")
        return cls(
            namespace=namespace,
            ingest_color=ingest_color,
            testing_block_v0=block_version == 0,
            testing_block_v2=block_version == 2,
            testing_block_v3=block_version == 3,
            fog_distribution=fog_distribution,
        )


def _phase(
    block: int, color: IngestColor, minting: bool, line: ReleaseLine
) -> RolloutPhase:
    return RolloutPhase(
        block_version=block,
        ingest_color=color,
        minting_enabled=minting,
        release_line=line,
    )


_V1_BV0 = _phase(0, IngestColor.BLUE, False, ReleaseLine.RELEASE_1X)
_V2_BV0 = _phase(0, IngestColor.GREEN, True, ReleaseLine.RELEASE_2X)
_V2_BV2 = _phase(2, IngestColor.GREEN, True, ReleaseLine.RELEASE_2X)
_CURRENT_BV2 = _phase(2, IngestColor.BLUE, True, ReleaseLine.CURRENT)
_CURRENT_BV3 = _phase(3, IngestColor.BLUE, True, ReleaseLine.CURRENT)

# Old release line at block 0, release line 2 upgraded 0 -> 2 in place,
# then the current build deployed at block 2 and upgraded to block 3.
DEFAULT_ROLLOUT_PLAN: list[RolloutStep] = [
    RolloutStep(step_id="deploy_v1_bv0", kind=StepKind.DEPLOY, phase=_V1_BV0),
    RolloutStep(
        step_id="test_v1_bv0", kind=StepKind.TEST, phase=_V1_BV0, fog_distribution=True
    ),
    RolloutStep(step_id="deploy_v2_bv0", kind=StepKind.DEPLOY, phase=_V2_BV0),
    RolloutStep(step_id="test_v2_bv0", kind=StepKind.TEST, phase=_V2_BV0),
    RolloutStep(step_id="upgrade_v2_bv2", kind=StepKind.UPGRADE, phase=_V2_BV2),
    RolloutStep(step_id="test_v2_bv2", kind=StepKind.TEST, phase=_V2_BV2),
    RolloutStep(step_id="deploy_current_bv2", kind=StepKind.DEPLOY, phase=_CURRENT_BV2),
    RolloutStep(step_id="test_current_bv2", kind=StepKind.TEST, phase=_CURRENT_BV2),
    RolloutStep(step_id="upgrade_current_bv3", kind=StepKind.UPGRADE, phase=_CURRENT_BV3),
    RolloutStep(step_id="test_current_bv3", kind=StepKind.TEST, phase=_CURRENT_BV3),
]
