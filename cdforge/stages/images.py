"""Publish Images — one image per matrix entry, tagged with the run's version.

Both artifact bundles are materialized into a build context under the
run's work directory (``rust_build_artifacts/`` and
``go_build_artifacts/``). Each image reads and writes a layer cache
scoped to ``<org>/<image>:buildcache-<namespace>``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from cdforge.core.errors import MissingArtifactError, PublishFailure
from cdforge.core.matrix import publish_matrix
from cdforge.models.artifacts import ArtifactBundle, ArtifactGroup
from cdforge.models.publish import ImageSpec
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext

logger = logging.getLogger(__name__)

RUST_BIN_PATH = "rust_build_artifacts"
GO_BIN_PATH = "go_build_artifacts"


def image_ref(org: str, image_name: str, tag: str) -> str:
    return f"{org}/{image_name}:{tag}"


def layer_cache_ref(org: str, image_name: str, namespace: str) -> str:
    return f"{org}/{image_name}:buildcache-{namespace}"


class ImagePublishStage(BaseStage):
    stage_class = StageClass.DOCKER

    @property
    def stage_id(self) -> str:
        return "images"

    @property
    def display_name(self) -> str:
        return "Publish Images"

    def _require_bundles(self, context: RunContext) -> dict[ArtifactGroup, ArtifactBundle]:
        bundles = {g: context.bundle(g) for g in (ArtifactGroup.ENCLAVE, ArtifactGroup.GATEWAY)}
        missing = [g.value for g, b in bundles.items() if b is None]
        if missing:
            raise MissingArtifactError(
                f"No {' and '.join(missing)} artifacts were built in this run; "
                f"refusing to publish images from stale binaries",
                stage_id=self.stage_id,
            )
        return bundles  # type: ignore[return-value]

    def _build_context(
        self, context: RunContext, bundles: dict[ArtifactGroup, ArtifactBundle]
    ) -> Path:
        root = context.work_dir / "docker-context"
        if root.exists():
            shutil.rmtree(root)
        layout = {ArtifactGroup.ENCLAVE: RUST_BIN_PATH, ArtifactGroup.GATEWAY: GO_BIN_PATH}
        for group, bundle in bundles.items():
            dest = root / layout[group]
            for ref in bundle.artifacts:
                context.cache.blobs.materialize(ref, dest)
        return root

    def execute(self, context: RunContext) -> dict[str, Any]:
        bundles = self._require_bundles(context)
        build_context = self._build_context(context, bundles)

        config = context.config
        org = config.docker_org
        tag = context.metadata.image_tag
        namespace = context.metadata.namespace
        dockerfiles = config.source_root / config.dockerfile_dir
        build_args = {
            "REPO_ORG": org,
            "RUST_BIN_PATH": RUST_BIN_PATH,
            "GO_BIN_PATH": GO_BIN_PATH,
        }
        registry = context.collaborators.image_registry

        def publish(spec: ImageSpec) -> tuple[bool, str]:
            result = registry.publish(
                spec.image_name,
                [image_ref(org, spec.image_name, spec.tag)],
                build_context,
                build_args,
                dockerfile=dockerfiles / f"Dockerfile.{spec.image_name}",
                cache_ref=layer_cache_ref(org, spec.image_name, namespace),
            )
            return result.ok, "" if result.ok else result.detail

        specs = [ImageSpec(image_name=name, tag=tag) for name in config.image_matrix]
        matrix = publish_matrix(specs, publish, config.max_parallel)
        context.set_published_images(matrix.published_keys)

        if not matrix.succeeded:
            raise PublishFailure(
                f"{len(matrix.failed_keys)} of {len(specs)} images failed: "
                f"{', '.join(matrix.failed_keys)}",
                stage_id=self.stage_id,
                failed_entries=matrix.failed_keys,
            )
        return {
            "tag": tag,
            "images": [image_ref(org, name, tag) for name in matrix.published_keys],
        }
