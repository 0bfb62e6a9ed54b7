"""Environment Info — publishes the resolved run metadata.

The metadata itself is resolved by the orchestrator before any stage is
scheduled, so a malformed trigger never reaches the DAG. This stage
makes the values visible to operators and records them in the ledger.
"""

from __future__ import annotations

import logging
from typing import Any

from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext

logger = logging.getLogger(__name__)


class MetadataStage(BaseStage):
    stage_class = StageClass.METADATA

    @property
    def stage_id(self) -> str:
        return "metadata"

    @property
    def display_name(self) -> str:
        return "Environment Info"

    def execute(self, context: RunContext) -> dict[str, Any]:
        details = {
            "chart_repo": context.config.chart_repo,
            "namespace": context.metadata.namespace,
            "version": context.metadata.version_tag,
            "docker_tag": context.metadata.image_tag,
            "docker_org": context.config.docker_org,
            "release_1x_tag": context.config.release_1x_tag,
            "release_2x_tag": context.config.release_2x_tag,
        }
        for key, value in details.items():
            logger.info("%s: %s", key, value)
        return details
