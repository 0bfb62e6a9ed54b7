"""Recording collaborators — in-process stand-ins used for dry runs.

They write placeholder outputs so downstream stages see a complete
artifact set, and record every call in ``calls`` so a dry run can show
exactly what would have been executed. Individual operations can be made
to fail through ``fail_on`` keys: ``build:<toolchain>``, ``target:<name>``,
``measure:<file>``, ``image:<name>``, ``chart:<name>``, ``reset``,
``delete``, ``deploy:<block>:<color>``, ``upgrade:<block>``, ``test:<block>``.
"""

from __future__ import annotations

import threading
from pathlib import Path

from cdforge.collaborators.base import BuildOutput, Collaborators, CommandResult
from cdforge.models.config import ENCLAVE_SIGNED_TARGETS
from cdforge.models.rollout import ReleaseConfig, TestConfig

SIGNED_SUFFIX = ".signed.so"


class CallLog:
    """Thread-safe, ordered record of collaborator calls."""

    def __init__(self) -> None:
        self._calls: list[tuple[str, ...]] = []
        self._lock = threading.Lock()

    def add(self, *call: str) -> None:
        with self._lock:
            self._calls.append(call)

    @property
    def calls(self) -> list[tuple[str, ...]]:
        with self._lock:
            return list(self._calls)

    def named(self, name: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == name]


class _Recorder:
    def __init__(self, log: CallLog | None = None, fail_on: set[str] | None = None) -> None:
        self.log = log or CallLog()
        self.fail_on = set(fail_on or ())

    def _result(self, key: str) -> CommandResult:
        if key in self.fail_on:
            return CommandResult(returncode=1, stderr=f"simulated failure: {key}")
        return CommandResult()


class RecordingToolchain(_Recorder):
    """Writes one placeholder file per target plus requested signed objects."""

    def __init__(
        self,
        name: str,
        *,
        signed_objects: list[str] | None = None,
        log: CallLog | None = None,
        fail_on: set[str] | None = None,
    ) -> None:
        super().__init__(log, fail_on)
        self.name = name
        self._signed = list(signed_objects or [])

    def build(self, targets: list[str], output_dir: Path) -> BuildOutput:
        self.log.add("build", self.name, *targets)
        if f"build:{self.name}" in self.fail_on:
            return BuildOutput(returncode=101, stderr=f"simulated {self.name} build failure")
        output_dir.mkdir(parents=True, exist_ok=True)
        produced: dict[str, list[str]] = {}
        for target in targets:
            if f"target:{target}" in self.fail_on:
                produced[target] = []
                continue
            (output_dir / target).write_bytes(f"{self.name}:{target}".encode())
            produced[target] = [target]
        signed = []
        for enclave in self._signed:
            file_name = f"{enclave}{SIGNED_SUFFIX}"
            (output_dir / file_name).write_bytes(f"signed:{enclave}".encode())
            signed.append(file_name)
        return BuildOutput(produced=produced, signed_objects=signed)


class RecordingMeasurementTool(_Recorder):
    def measure(self, signed_object: Path, output_path: Path) -> CommandResult:
        self.log.add("measure", signed_object.name)
        result = self._result(f"measure:{signed_object.name}")
        if result.ok:
            output_path.write_bytes(b"css:" + signed_object.read_bytes())
        return result


class RecordingImageRegistry(_Recorder):
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
        self.log.add("image", image_name, *tags)
        return self._result(f"image:{image_name}")


class RecordingChartRegistry(_Recorder):
    def publish(self, chart_path: Path, app_version: str, chart_version: str) -> CommandResult:
        self.log.add("chart", Path(chart_path).name, app_version, chart_version)
        return self._result(f"chart:{Path(chart_path).name}")


class RecordingControlPlane(_Recorder):
    """Records namespace operations; see the module docstring for keys."""

    def reset_namespace(self, name: str, delete: bool) -> CommandResult:
        op = "delete" if delete else "reset"
        self.log.add(op, name)
        return self._result(op)

    def deploy(self, namespace: str, release: ReleaseConfig) -> CommandResult:
        self.log.add(
            "deploy",
            namespace,
            release.version_tag,
            str(release.block_version),
            release.ingest_color.value,
        )
        return self._result(f"deploy:{release.block_version}:{release.ingest_color.value}")

    def upgrade(self, namespace: str, release: ReleaseConfig) -> CommandResult:
        self.log.add("upgrade", namespace, release.version_tag, str(release.block_version))
        return self._result(f"upgrade:{release.block_version}")

    def run_tests(self, namespace: str, test: TestConfig) -> CommandResult:
        block = 0 if test.testing_block_v0 else 2 if test.testing_block_v2 else 3
        self.log.add("test", namespace, str(block), test.ingest_color.value)
        return self._result(f"test:{block}")


def recording_collaborators(
    *,
    log: CallLog | None = None,
    fail_on: set[str] | None = None,
    signed_objects: list[str] | None = None,
) -> Collaborators:
    """A full set of recording collaborators sharing one call log."""
    log = log or CallLog()
    if signed_objects is None:
        signed_objects = list(ENCLAVE_SIGNED_TARGETS)
    return Collaborators(
        enclave_toolchain=RecordingToolchain(
            "enclave", signed_objects=signed_objects, log=log, fail_on=fail_on
        ),
        gateway_toolchain=RecordingToolchain("gateway", log=log, fail_on=fail_on),
        measurement_tool=RecordingMeasurementTool(log, fail_on),
        image_registry=RecordingImageRegistry(log, fail_on),
        chart_registry=RecordingChartRegistry(log, fail_on),
        control_plane=RecordingControlPlane(log, fail_on),
    )
