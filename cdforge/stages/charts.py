"""Publish Charts — every chart versioned identically to the run's version tag.

Charts may reference any image, so the stage refuses to start unless the
whole image matrix was published in this run.
"""

from __future__ import annotations

from typing import Any

from cdforge.core.errors import MissingArtifactError, PublishFailure
from cdforge.core.matrix import publish_matrix
from cdforge.models.publish import ChartSpec
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext


class ChartPublishStage(BaseStage):
    stage_class = StageClass.CHARTS

    @property
    def stage_id(self) -> str:
        return "charts"

    @property
    def display_name(self) -> str:
        return "Publish Charts"

    def execute(self, context: RunContext) -> dict[str, Any]:
        config = context.config
        published = set(context.published_images)
        missing = [name for name in config.image_matrix if name not in published]
        if missing:
            raise MissingArtifactError(
                f"{len(published & set(config.image_matrix))} of {len(config.image_matrix)} "
                f"images were published; missing: {', '.join(missing)}",
                stage_id=self.stage_id,
            )

        version = context.metadata.version_tag
        chart_root = config.source_root / config.chart_dir
        registry = context.collaborators.chart_registry

        def publish(spec: ChartSpec) -> tuple[bool, str]:
            result = registry.publish(
                chart_root / spec.chart_name, spec.app_version, spec.chart_version
            )
            return result.ok, "" if result.ok else result.detail

        specs = [
            ChartSpec(chart_name=name, app_version=version, chart_version=version)
            for name in config.chart_matrix
        ]
        matrix = publish_matrix(specs, publish, config.max_parallel)
        context.set_published_charts(matrix.published_keys)

        if not matrix.succeeded:
            raise PublishFailure(
                f"{len(matrix.failed_keys)} of {len(specs)} charts failed: "
                f"{', '.join(matrix.failed_keys)}",
                stage_id=self.stage_id,
                failed_entries=matrix.failed_keys,
            )
        return {"version": version, "charts": matrix.published_keys}
