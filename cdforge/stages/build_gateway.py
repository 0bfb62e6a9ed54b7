"""Build Gateway Binaries — the grpc-proxy built by the go toolchain."""

from __future__ import annotations

from cdforge.collaborators.base import Toolchain
from cdforge.models.artifacts import ArtifactGroup
from cdforge.stages.base import RunContext
from cdforge.stages.build_common import ArtifactBuildStage


class GatewayBuildStage(ArtifactBuildStage):
    group = ArtifactGroup.GATEWAY

    @property
    def stage_id(self) -> str:
        return "build_gateway"

    @property
    def display_name(self) -> str:
        return "Build Gateway Binaries"

    def targets(self, context: RunContext) -> list[str]:
        return list(context.config.gateway_targets)

    def fingerprint_patterns(self, context: RunContext) -> list[str]:
        return list(context.config.gateway_fingerprint_patterns)

    def toolchain(self, context: RunContext) -> Toolchain:
        return context.collaborators.gateway_toolchain
