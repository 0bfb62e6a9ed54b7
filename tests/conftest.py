"""Shared test fixtures for cdforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from cdforge.collaborators import CallLog, Collaborators, recording_collaborators
from cdforge.core.artifact_cache import ArtifactCache
from cdforge.core.artifact_store import ContentAddressedStore
from cdforge.core.gate import resolve_run_options
from cdforge.core.metadata_resolver import resolve_metadata
from cdforge.core.prerequisite_graph import PrerequisiteGraph
from cdforge.core.run_ledger import RunLedger
from cdforge.core.stage_machine import StageMachine
from cdforge.models.config import PipelineConfig
from cdforge.models.stages import DEFAULT_STAGE_DEFINITIONS
from cdforge.models.trigger import EventKind, TriggerContext
from cdforge.stages.base import RunContext


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def cache(tmp_dir: Path) -> ArtifactCache:
    return ArtifactCache(tmp_dir / "cache")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the default pipeline stages."""
    return PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    """Provide a StageMachine wired to test ledger and graph."""
    return StageMachine(ledger, graph)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "cd-test-run-001"


# ---------------------------------------------------------------------------
# Source tree and configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def source_root(tmp_dir: Path) -> Path:
    """A tiny source tree the build fingerprints can hash."""
    root = tmp_dir / "src"
    (root / "consensus").mkdir(parents=True)
    (root / "Cargo.lock").write_text("# lock\n")
    (root / "consensus" / "Cargo.toml").write_text("[package]\nname = 'consensus'\n")
    (root / "consensus" / "lib.rs").write_text("pub fn run() {}\n")
    (root / "go-grpc-gateway").mkdir()
    (root / "go-grpc-gateway" / "main.go").write_text("package main\n")
    return root


@pytest.fixture
def pipeline_config(tmp_dir: Path, source_root: Path) -> PipelineConfig:
    """A PipelineConfig with every path under the temp directory."""
    state = tmp_dir / "state"
    return PipelineConfig(
        source_root=source_root,
        artifact_cache_path=state / "cache",
        ledger_db_path=state / "ledger.db",
        run_registry_path=state / "groups",
        work_dir=state / "work",
        cache_buster="test-buster",
        max_parallel=4,
    )


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def make_collaborators(call_log: CallLog) -> Callable[..., Collaborators]:
    """Factory fixture: recording collaborators sharing ``call_log``."""

    def _factory(fail_on: set[str] | None = None, **kwargs: Any) -> Collaborators:
        return recording_collaborators(log=call_log, fail_on=fail_on, **kwargs)

    return _factory


# ---------------------------------------------------------------------------
# Trigger factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_trigger() -> Callable[..., TriggerContext]:
    """Factory fixture: build a TriggerContext with sensible defaults."""

    def _factory(**overrides: Any) -> TriggerContext:
        defaults: dict[str, Any] = {
            "actor": "alice",
            "event": EventKind.PUSH,
            "ref": "refs/heads/main",
            "sha": "0123456789abcdef0123456789abcdef01234567",
            "run_number": 7,
        }
        defaults.update(overrides)
        return TriggerContext(**defaults)

    return _factory


@pytest.fixture
def pr_trigger(make_trigger: Callable[..., TriggerContext]) -> TriggerContext:
    """A pull request from feature/widgets into main."""
    return make_trigger(
        event=EventKind.PULL_REQUEST,
        ref="refs/pull/42/merge",
        head_ref="feature/widgets",
        base_ref="main",
    )


@pytest.fixture
def make_context(
    pipeline_config: PipelineConfig,
    ledger: RunLedger,
    make_collaborators: Callable[..., Collaborators],
    make_trigger: Callable[..., TriggerContext],
    run_id: str,
) -> Callable[..., RunContext]:
    """Factory fixture: a RunContext wired to recording collaborators."""

    def _factory(
        trigger: TriggerContext | None = None,
        collaborators: Collaborators | None = None,
        config: PipelineConfig | None = None,
        **kwargs: Any,
    ) -> RunContext:
        trigger = trigger or make_trigger()
        config = config or pipeline_config
        return RunContext(
            run_id=run_id,
            trigger=trigger,
            metadata=resolve_metadata(trigger),
            options=resolve_run_options(trigger),
            config=config,
            collaborators=collaborators or make_collaborators(),
            cache=ArtifactCache(config.artifact_cache_path),
            ledger=ledger,
            work_dir=config.work_dir / run_id,
            **kwargs,
        )

    return _factory
