"""cdforge collaborators — adapters for the toolchains, registries and cluster."""

from cdforge.collaborators.base import (
    BuildOutput,
    ChartRegistry,
    ClusterControlPlane,
    Collaborators,
    CommandResult,
    Credentials,
    ImageRegistry,
    MeasurementTool,
    Toolchain,
)
from cdforge.collaborators.recording import CallLog, recording_collaborators
from cdforge.collaborators.shell import shell_collaborators

__all__ = [
    "BuildOutput",
    "CallLog",
    "ChartRegistry",
    "ClusterControlPlane",
    "Collaborators",
    "CommandResult",
    "Credentials",
    "ImageRegistry",
    "MeasurementTool",
    "Toolchain",
    "recording_collaborators",
    "shell_collaborators",
]
