"""Build Hardware/Enclave Binaries — cargo build plus enclave measurements.

For each signed enclave ``X.signed.so`` the measurement tool writes
``X.css``; both are cached alongside the executables.
"""

from __future__ import annotations

from pathlib import Path

from cdforge.collaborators.base import BuildOutput, Toolchain
from cdforge.core.errors import BuildFailure
from cdforge.models.artifacts import ArtifactGroup, ArtifactKind
from cdforge.stages.base import RunContext
from cdforge.stages.build_common import ArtifactBuildStage

SIGNED_SUFFIX = ".signed.so"
MEASUREMENT_SUFFIX = ".css"


def measurement_name(signed_object: str) -> str:
    """``libview-enclave.signed.so`` -> ``libview-enclave.css``."""
    if not signed_object.endswith(SIGNED_SUFFIX):
        raise ValueError(f"{signed_object!r} is not a signed enclave object")
    return signed_object[: -len(SIGNED_SUFFIX)] + MEASUREMENT_SUFFIX


class EnclaveBuildStage(ArtifactBuildStage):
    group = ArtifactGroup.ENCLAVE

    @property
    def stage_id(self) -> str:
        return "build_enclave"

    @property
    def display_name(self) -> str:
        return "Build Hardware/Enclave Binaries"

    def targets(self, context: RunContext) -> list[str]:
        return list(context.config.enclave_targets)

    def fingerprint_patterns(self, context: RunContext) -> list[str]:
        return list(context.config.enclave_fingerprint_patterns)

    def toolchain(self, context: RunContext) -> Toolchain:
        return context.collaborators.enclave_toolchain

    def extra_outputs(
        self, context: RunContext, output_dir: Path, output: BuildOutput
    ) -> list[tuple[Path, ArtifactKind]]:
        expected = [f"{name}{SIGNED_SUFFIX}" for name in context.config.enclave_signed_targets]
        missing = [
            name
            for name in expected
            if name not in output.signed_objects or not (output_dir / name).is_file()
        ]
        if missing:
            raise BuildFailure(
                f"Signed enclaves missing from build output: {', '.join(missing)}",
                stage_id=self.stage_id,
            )

        tool = context.collaborators.measurement_tool
        files: list[tuple[Path, ArtifactKind]] = []
        for name in sorted(output.signed_objects):
            signed = output_dir / name
            css = output_dir / measurement_name(name)
            result = tool.measure(signed, css)
            if not result.ok or not css.is_file():
                raise BuildFailure(
                    f"Measurement of {name} failed: {result.detail}",
                    stage_id=self.stage_id,
                )
            files.append((signed, ArtifactKind.SIGNED_ENCLAVE))
            files.append((css, ArtifactKind.MEASUREMENT))
        return files
