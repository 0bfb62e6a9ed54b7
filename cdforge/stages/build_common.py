"""Shared cache-gated build lifecycle for the two artifact groups.

On a cache hit the toolchain is never invoked and the stored bundle is
reused as-is. On a miss the toolchain builds the group's fixed target
list into a fresh output directory; every target must produce at least
one file, otherwise the stage fails with ``BuildFailure``.
"""

from __future__ import annotations

import abc
import logging
import shutil
from pathlib import Path
from typing import Any

from cdforge.collaborators.base import BuildOutput, Toolchain
from cdforge.core.errors import BuildFailure
from cdforge.core.hasher import fingerprint_tree
from cdforge.models.artifacts import ArtifactGroup, ArtifactKind, CacheKey
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext

logger = logging.getLogger(__name__)


class ArtifactBuildStage(BaseStage):
    """Base for the enclave and gateway build stages."""

    stage_class = StageClass.BUILD
    group: ArtifactGroup

    @abc.abstractmethod
    def targets(self, context: RunContext) -> list[str]:
        """Fixed, ordered target list handed to the toolchain."""

    @abc.abstractmethod
    def fingerprint_patterns(self, context: RunContext) -> list[str]:
        """Globs under the source root that feed the cache fingerprint."""

    @abc.abstractmethod
    def toolchain(self, context: RunContext) -> Toolchain:
        """The collaborator that builds this group."""

    def extra_outputs(
        self, context: RunContext, output_dir: Path, output: BuildOutput
    ) -> list[tuple[Path, ArtifactKind]]:
        """Additional files to cache beyond the per-target executables."""
        return []

    def cache_key(self, context: RunContext) -> CacheKey:
        return CacheKey(
            group=self.group,
            cache_buster=context.config.cache_buster,
            fingerprint=fingerprint_tree(
                context.config.source_root, self.fingerprint_patterns(context)
            ),
        )

    def execute(self, context: RunContext) -> dict[str, Any]:
        key = self.cache_key(context)
        lookup = context.cache.lookup(key)
        if lookup.hit and lookup.bundle is not None:
            context.set_bundle(lookup.bundle)
            return {
                "group": self.group.value,
                "cache_hit": True,
                "cache_key": key.digest,
                "artifacts": lookup.bundle.names(),
                "artifact_references": [a.content_address for a in lookup.bundle.artifacts],
            }

        output_dir = context.work_dir / "build" / self.group.value
        if output_dir.exists():
            shutil.rmtree(output_dir)
        output_dir.mkdir(parents=True)

        targets = self.targets(context)
        output = self.toolchain(context).build(targets, output_dir)
        if not output.ok:
            raise BuildFailure(
                f"{self.group.value} toolchain exited with code {output.returncode}: "
                f"{output.stderr.strip()[-500:]}",
                stage_id=self.stage_id,
            )

        missing = [t for t in targets if not output.produced.get(t)]
        if missing:
            raise BuildFailure(
                f"{self.group.value} toolchain produced no output for: {', '.join(missing)}",
                stage_id=self.stage_id,
            )

        files: list[tuple[Path, ArtifactKind]] = []
        for target in targets:
            for name in output.produced[target]:
                path = output_dir / name
                if not path.is_file():
                    raise BuildFailure(
                        f"Expected output {name} for {target} is missing",
                        stage_id=self.stage_id,
                    )
                files.append((path, ArtifactKind.EXECUTABLE))
        files.extend(self.extra_outputs(context, output_dir, output))

        bundle = context.cache.store(key, files)
        context.set_bundle(bundle)
        return {
            "group": self.group.value,
            "cache_hit": False,
            "cache_key": key.digest,
            "artifacts": bundle.names(),
            "artifact_references": [a.content_address for a in bundle.artifacts],
        }
