"""Subprocess-backed collaborators: cargo, go, sgx_sign, docker, helm, kubectl.

Each class is a thin wrapper around one CLI. Commands are run through an
injectable ``runner`` so they can be exercised without the tools
installed. Secrets reach the child process through its environment and
never appear on the command line or in logs.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from cdforge.collaborators.base import BuildOutput, Collaborators, CommandResult, Credentials
from cdforge.models.config import PipelineConfig
from cdforge.models.rollout import ReleaseConfig, TestConfig

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str], dict[str, str] | None, Path | None], CommandResult]

SIGNED_SUFFIX = ".signed.so"


def default_runner(
    cmd: Sequence[str], env: dict[str, str] | None = None, cwd: Path | None = None
) -> CommandResult:
    """Run *cmd*, capturing output. Never raises on a nonzero exit."""
    logger.debug("running: %s", " ".join(cmd))
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)
    try:
        completed = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            errors="replace",
            env=full_env,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError as exc:
        return CommandResult(returncode=127, stderr=f"{cmd[0]}: {exc}")
    return CommandResult(
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def _cargo_package_name(package_id: str) -> str:
    """Extract the package name from either cargo package-id format.

    ``"mc-foo 1.0.0 (path+file:///src/foo)"`` or
    ``"path+file:///src/foo#mc-foo@1.0.0"`` / ``"path+file:///src/mc-foo#1.0.0"``.
    """
    if "#" not in package_id:
        return package_id.split(" ", 1)[0]
    location, fragment = package_id.rsplit("#", 1)
    if "@" in fragment:
        return fragment.split("@", 1)[0]
    return location.rstrip("/").rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Toolchains
# ---------------------------------------------------------------------------


class CargoToolchain:
    """``cargo build --release -p <target>...`` for the enclave group.

    Executables are attributed to packages from cargo's JSON messages;
    signed enclaves are collected from the release directory.
    """

    def __init__(
        self,
        source_root: Path,
        *,
        credentials: Credentials | None = None,
        runner: Runner = default_runner,
    ) -> None:
        self._root = Path(source_root)
        self._credentials = credentials or Credentials()
        self._runner = runner

    def _env(self) -> dict[str, str]:
        env = {"SGX_MODE": "HW", "IAS_MODE": "DEV", "MOB_RELEASE": "1"}
        key_path = self._credentials.enclave_signing_key_path
        if key_path:
            for enclave in ("CONSENSUS", "LEDGER", "VIEW", "INGEST"):
                env[f"{enclave}_ENCLAVE_PRIVKEY"] = key_path
        return env

    def build(self, targets: list[str], output_dir: Path) -> BuildOutput:
        cmd = ["cargo", "build", "--release", "--message-format=json-render-diagnostics"]
        for target in targets:
            cmd.extend(["-p", target])
        result = self._runner(cmd, self._env(), self._root)
        if not result.ok:
            return BuildOutput(returncode=result.returncode, stderr=result.stderr)

        output_dir.mkdir(parents=True, exist_ok=True)
        produced: dict[str, list[str]] = {t: [] for t in targets}
        for line in result.stdout.splitlines():
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                continue
            if message.get("reason") != "compiler-artifact" or not message.get("executable"):
                continue
            package = _cargo_package_name(message.get("package_id", ""))
            if package not in produced:
                continue
            exe = Path(message["executable"])
            shutil.copy2(exe, output_dir / exe.name)
            produced[package].append(exe.name)

        signed: list[str] = []
        for so in sorted((self._root / "target" / "release").glob(f"*{SIGNED_SUFFIX}")):
            shutil.copy2(so, output_dir / so.name)
            signed.append(so.name)

        return BuildOutput(
            returncode=0, stderr=result.stderr, produced=produced, signed_objects=signed
        )


class GoToolchain:
    """Runs ``./build.sh`` in the gateway directory and collects binaries."""

    def __init__(
        self,
        source_root: Path,
        *,
        gateway_dir: str = "go-grpc-gateway",
        runner: Runner = default_runner,
    ) -> None:
        self._dir = Path(source_root) / gateway_dir
        self._runner = runner

    def build(self, targets: list[str], output_dir: Path) -> BuildOutput:
        for script in ("./install_tools.sh", "./build.sh"):
            result = self._runner([script], None, self._dir)
            if not result.ok:
                return BuildOutput(returncode=result.returncode, stderr=result.stderr)

        output_dir.mkdir(parents=True, exist_ok=True)
        produced: dict[str, list[str]] = {}
        for target in targets:
            binary = self._dir / target
            produced[target] = []
            if binary.is_file():
                shutil.copy2(binary, output_dir / target)
                produced[target].append(target)
        return BuildOutput(returncode=0, produced=produced)


class SgxSignMeasurementTool:
    """``sgx_sign dump`` — writes the enclave's css measurement file."""

    def __init__(self, *, binary: str = "sgx_sign", runner: Runner = default_runner) -> None:
        self._binary = binary
        self._runner = runner

    def measure(self, signed_object: Path, output_path: Path) -> CommandResult:
        cmd = [
            self._binary,
            "dump",
            "-enclave",
            str(signed_object),
            "-dumpfile",
            os.devnull,
            "-cssfile",
            str(output_path),
        ]
        return self._runner(cmd, None, None)


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


class DockerBuildxRegistry:
    """``docker buildx build --push`` with a registry-backed layer cache."""

    def __init__(
        self,
        *,
        credentials: Credentials | None = None,
        runner: Runner = default_runner,
    ) -> None:
        self._credentials = credentials or Credentials()
        self._runner = runner

    def publish(
        self,
        image_name: str,
        tags: list[str],
        build_context: Path,
        build_args: dict[str, str],
        *,
        dockerfile: Path,
        cache_ref: str = "",
    ) -> CommandResult:
        cmd = ["docker", "buildx", "build", "--push", "--file", str(dockerfile)]
        for tag in tags:
            cmd.extend(["--tag", tag])
        for name, value in sorted(build_args.items()):
            cmd.extend(["--build-arg", f"{name}={value}"])
        if cache_ref:
            cmd.extend(["--cache-from", f"type=registry,ref={cache_ref}"])
            cmd.extend(["--cache-to", f"type=registry,ref={cache_ref}"])
        cmd.append(str(build_context))
        return self._runner(cmd, self._credentials.registry_env(), None)


class HelmChartRegistry:
    """``helm package`` + ``helm cm-push`` to a chart museum repository.

    The repository accepts an identical re-push of an existing version,
    so republishing is not an error.
    """

    def __init__(
        self,
        chart_repo: str,
        work_dir: Path,
        *,
        credentials: Credentials | None = None,
        runner: Runner = default_runner,
    ) -> None:
        self._repo = chart_repo
        self._work_dir = Path(work_dir)
        self._credentials = credentials or Credentials()
        self._runner = runner

    def publish(self, chart_path: Path, app_version: str, chart_version: str) -> CommandResult:
        self._work_dir.mkdir(parents=True, exist_ok=True)
        deps = self._runner(["helm", "dependency", "update", str(chart_path)], None, None)
        if not deps.ok:
            return deps
        package = self._runner(
            [
                "helm",
                "package",
                str(chart_path),
                "--app-version",
                app_version,
                "--version",
                chart_version,
                "--destination",
                str(self._work_dir),
            ],
            None,
            None,
        )
        if not package.ok:
            return package
        archive = self._work_dir / f"{Path(chart_path).name}-{chart_version}.tgz"
        return self._runner(
            ["helm", "cm-push", "--force", str(archive), self._repo],
            self._credentials.chart_repo_env(),
            None,
        )


# ---------------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------------


class KubectlHelmControlPlane:
    """Drives the cluster with ``kubectl`` and ``helm``.

    Deploys install every chart of the release line at the given version;
    upgrades re-run the consensus charts with the new block version; tests
    install the test-client chart and wait for its job to complete.
    """

    DEPLOY_CHARTS = (
        "mc-core-common-config",
        "consensus-node-config",
        "consensus-node",
        "fog-ingest-config",
        "fog-ingest",
        "fog-services-config",
        "fog-services",
        "mobilecoind",
        "watcher",
    )
    UPGRADE_CHARTS = ("consensus-node-config", "consensus-node")
    TEST_CHART = "fog-test-client"

    def __init__(
        self,
        chart_repo: str,
        *,
        credentials: Credentials | None = None,
        timeout: str = "20m",
        runner: Runner = default_runner,
    ) -> None:
        self._repo = chart_repo.rstrip("/")
        self._credentials = credentials or Credentials()
        self._timeout = timeout
        self._runner = runner

    def _run(self, cmd: list[str]) -> CommandResult:
        return self._runner(cmd, self._credentials.cluster_env(), None)

    def reset_namespace(self, name: str, delete: bool) -> CommandResult:
        if delete:
            return self._run(
                ["kubectl", "delete", "namespace", name, "--ignore-not-found", "--wait"]
            )
        listing = self._run(["helm", "list", "--namespace", name, "--short", "--all"])
        if not listing.ok:
            return listing
        for release in listing.stdout.split():
            uninstall = self._run(
                ["helm", "uninstall", release, "--namespace", name, "--wait"]
            )
            if not uninstall.ok:
                return uninstall
        return self._run(
            ["kubectl", "delete", "pvc,jobs", "--all", "--namespace", name, "--ignore-not-found"]
        )

    def _release_values(self, release: ReleaseConfig) -> list[str]:
        values = {
            "global.blockVersion": str(release.block_version),
            "global.ingestColor": release.ingest_color.value,
            "global.mintingEnabled": str(release.minting_enabled).lower(),
            "image.org": release.docker_org,
            "image.tag": release.version_tag,
        }
        args: list[str] = []
        for key, value in values.items():
            args.extend(["--set", f"{key}={value}"])
        return args

    def _install(self, chart: str, namespace: str, release: ReleaseConfig) -> CommandResult:
        return self._run(
            [
                "helm",
                "upgrade",
                "--install",
                chart,
                chart,
                "--repo",
                self._repo,
                "--version",
                release.version_tag,
                "--namespace",
                namespace,
                "--create-namespace",
                "--wait",
                "--timeout",
                self._timeout,
                *self._release_values(release),
            ]
        )

    def deploy(self, namespace: str, release: ReleaseConfig) -> CommandResult:
        for chart in self.DEPLOY_CHARTS:
            result = self._install(chart, namespace, release)
            if not result.ok:
                return result
        return CommandResult()

    def upgrade(self, namespace: str, release: ReleaseConfig) -> CommandResult:
        for chart in self.UPGRADE_CHARTS:
            result = self._install(chart, namespace, release)
            if not result.ok:
                return result
        return CommandResult()

    def run_tests(self, namespace: str, test: TestConfig) -> CommandResult:
        self._run(
            ["kubectl", "delete", "job", "--selector", f"app={self.TEST_CHART}",
             "--namespace", namespace, "--ignore-not-found"]
        )
        installed = self._run(
            [
                "helm",
                "upgrade",
                "--install",
                self.TEST_CHART,
                self.TEST_CHART,
                "--repo",
                self._repo,
                "--namespace",
                namespace,
                "--set",
                f"ingestColor={test.ingest_color.value}",
                "--set",
                f"testing.blockV0={str(test.testing_block_v0).lower()}",
                "--set",
                f"testing.blockV2={str(test.testing_block_v2).lower()}",
                "--set",
                f"testing.blockV3={str(test.testing_block_v3).lower()}",
                "--set",
                f"fogDistribution={str(test.fog_distribution).lower()}",
            ]
        )
        if not installed.ok:
            return installed
        return self._run(
            [
                "kubectl",
                "wait",
                "--for=condition=complete",
                "job",
                "--selector",
                f"app={self.TEST_CHART}",
                "--namespace",
                namespace,
                f"--timeout={self._timeout}",
            ]
        )


def shell_collaborators(
    config: PipelineConfig, credentials: Credentials | None = None
) -> Collaborators:
    """The production collaborator set for *config*."""
    credentials = credentials or Credentials()
    return Collaborators(
        enclave_toolchain=CargoToolchain(config.source_root, credentials=credentials),
        gateway_toolchain=GoToolchain(config.source_root),
        measurement_tool=SgxSignMeasurementTool(),
        image_registry=DockerBuildxRegistry(credentials=credentials),
        chart_registry=HelmChartRegistry(
            config.chart_repo,
            config.artifact_cache_path.parent / "charts",
            credentials=credentials,
        ),
        control_plane=KubectlHelmControlPlane(config.chart_repo, credentials=credentials),
    )
