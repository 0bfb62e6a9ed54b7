"""Collaborator protocols — the external systems the pipeline drives.

Defines the ``Toolchain``, ``MeasurementTool``, ``ImageRegistry``,
``ChartRegistry`` and ``ClusterControlPlane`` Protocols. Any object with
the right methods satisfies them; the shell-backed implementations live
in ``cdforge.collaborators.shell`` and the recording implementations used
for dry runs and tests in ``cdforge.collaborators.recording``.

Credentials are carried as ``SecretStr`` values and only unwrapped when a
subprocess environment is built. They are never logged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, SecretStr

from cdforge.models.rollout import ReleaseConfig, TestConfig


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class CommandResult(BaseModel):
    """Outcome of one collaborator call."""

    model_config = ConfigDict(frozen=True)

    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def detail(self) -> str:
        """Last non-empty line of stderr, or the exit code."""
        lines = [ln for ln in self.stderr.splitlines() if ln.strip()]
        return lines[-1] if lines else f"exit code {self.returncode}"


class BuildOutput(BaseModel):
    """What a toolchain produced in its output directory.

    ``produced`` maps each requested target to the file names it wrote;
    ``signed_objects`` lists ``*.signed.so`` files for the enclave group.
    """

    model_config = ConfigDict(frozen=True)

    returncode: int = 0
    stderr: str = ""
    produced: dict[str, list[str]] = {}
    signed_objects: list[str] = []

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Credentials(BaseModel):
    """Opaque bearer values handed to collaborators unmodified."""

    model_config = ConfigDict(frozen=True)

    registry_username: str = ""
    registry_password: SecretStr = SecretStr("")
    chart_repo_username: str = ""
    chart_repo_password: SecretStr = SecretStr("")
    cluster_token: SecretStr = SecretStr("")
    enclave_signing_key_path: str = ""
    deploy_secrets: dict[str, SecretStr] = {}

    def registry_env(self) -> dict[str, str]:
        return {
            "REGISTRY_USERNAME": self.registry_username,
            "REGISTRY_PASSWORD": self.registry_password.get_secret_value(),
        }

    def chart_repo_env(self) -> dict[str, str]:
        return {
            "HELM_REPO_USERNAME": self.chart_repo_username,
            "HELM_REPO_PASSWORD": self.chart_repo_password.get_secret_value(),
        }

    def cluster_env(self) -> dict[str, str]:
        env = {"CLUSTER_TOKEN": self.cluster_token.get_secret_value()}
        env.update({k: v.get_secret_value() for k, v in self.deploy_secrets.items()})
        return env


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Toolchain(Protocol):
    """Builds a fixed, ordered list of targets into *output_dir*."""

    def build(self, targets: list[str], output_dir: Path) -> BuildOutput: ...


@runtime_checkable
class MeasurementTool(Protocol):
    """Writes the measurement of one signed enclave object to *output_path*."""

    def measure(self, signed_object: Path, output_path: Path) -> CommandResult: ...


@runtime_checkable
class ImageRegistry(Protocol):
    """Builds and pushes one image.

    ``cache_ref`` names the persistent layer cache to read from and write
    to; an empty value disables the cache.
    """

    def publish(
        self,
        image_name: str,
        tags: list[str],
        build_context: Path,
        build_args: dict[str, str],
        *,
        dockerfile: Path,
        cache_ref: str = "",
    ) -> CommandResult: ...


@runtime_checkable
class ChartRegistry(Protocol):
    """Packages and publishes one chart. Republishing a version succeeds."""

    def publish(
        self, chart_path: Path, app_version: str, chart_version: str
    ) -> CommandResult: ...


@runtime_checkable
class ClusterControlPlane(Protocol):
    def reset_namespace(self, name: str, delete: bool) -> CommandResult: ...

    def deploy(self, namespace: str, release: ReleaseConfig) -> CommandResult: ...

    def run_tests(self, namespace: str, test: TestConfig) -> CommandResult: ...

    def upgrade(self, namespace: str, release: ReleaseConfig) -> CommandResult: ...


class Collaborators:
    """The full set of collaborators one run uses.

    Parameters
    ----------
    enclave_toolchain, gateway_toolchain:
        Build the two artifact groups.
    measurement_tool:
        Derives one measurement file per signed enclave.
    image_registry, chart_registry:
        Publish targets for the image and chart matrices.
    control_plane:
        The cluster the rollout runs against.
    """

    def __init__(
        self,
        *,
        enclave_toolchain: Toolchain,
        gateway_toolchain: Toolchain,
        measurement_tool: MeasurementTool,
        image_registry: ImageRegistry,
        chart_registry: ChartRegistry,
        control_plane: ClusterControlPlane,
    ) -> None:
        self.enclave_toolchain = enclave_toolchain
        self.gateway_toolchain = gateway_toolchain
        self.measurement_tool = measurement_tool
        self.image_registry = image_registry
        self.chart_registry = chart_registry
        self.control_plane = control_plane
