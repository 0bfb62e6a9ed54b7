"""cdforge pipeline stages — registry mapping stage_id to stage class.

Usage::

    from cdforge.stages import STAGE_REGISTRY, get_stage

    stage = get_stage("images")
    result = stage.run_stage(context)
"""

from __future__ import annotations

from cdforge.stages.base import BaseStage, RunContext, StageExecutionError, StageResult
from cdforge.stages.build_enclave import EnclaveBuildStage
from cdforge.stages.build_gateway import GatewayBuildStage
from cdforge.stages.charts import ChartPublishStage
from cdforge.stages.docker_base import DockerBaseStage
from cdforge.stages.environment import CleanupStage, DevResetStage
from cdforge.stages.images import ImagePublishStage
from cdforge.stages.metadata import MetadataStage
from cdforge.stages.rollout import RolloutStage

# ---------------------------------------------------------------------------
# Stage registry: stage_id -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "metadata": MetadataStage,
    "build_enclave": EnclaveBuildStage,
    "build_gateway": GatewayBuildStage,
    "docker_base": DockerBaseStage,
    "images": ImagePublishStage,
    "charts": ChartPublishStage,
    "dev_reset": DevResetStage,
    "rollout": RolloutStage,
    "cleanup": CleanupStage,
}


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    # Base
    "BaseStage",
    "RunContext",
    "StageExecutionError",
    "StageResult",
    # Registry
    "STAGE_REGISTRY",
    "get_stage",
    # Concrete stages
    "MetadataStage",
    "EnclaveBuildStage",
    "GatewayBuildStage",
    "DockerBaseStage",
    "ImagePublishStage",
    "ChartPublishStage",
    "DevResetStage",
    "RolloutStage",
    "CleanupStage",
]
