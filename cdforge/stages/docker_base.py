"""Refresh Runtime Base Image — ``<org>/runtime-base`` at ``sha-<sha>`` and ``latest``."""

from __future__ import annotations

from typing import Any

from cdforge.core.errors import PublishFailure
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext
from cdforge.stages.images import image_ref

RUNTIME_BASE_IMAGE = "runtime-base"


class DockerBaseStage(BaseStage):
    stage_class = StageClass.DOCKER

    @property
    def stage_id(self) -> str:
        return "docker_base"

    @property
    def display_name(self) -> str:
        return "Refresh Runtime Base Image"

    def execute(self, context: RunContext) -> dict[str, Any]:
        config = context.config
        org = config.docker_org
        tags = [image_ref(org, RUNTIME_BASE_IMAGE, "latest")]
        if context.metadata.short_sha:
            tags.insert(0, image_ref(org, RUNTIME_BASE_IMAGE, f"sha-{context.metadata.short_sha}"))

        dockerfiles = config.source_root / config.dockerfile_dir
        result = context.collaborators.image_registry.publish(
            RUNTIME_BASE_IMAGE,
            tags,
            config.source_root,
            {"REPO_ORG": org},
            dockerfile=dockerfiles / f"Dockerfile.{RUNTIME_BASE_IMAGE}",
        )
        if not result.ok:
            raise PublishFailure(
                f"Runtime base image failed: {result.detail}",
                stage_id=self.stage_id,
                failed_entries=[RUNTIME_BASE_IMAGE],
            )
        return {"tags": tags}
