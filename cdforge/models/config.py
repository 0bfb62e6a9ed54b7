"""Pipeline and run configuration models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from cdforge.config import ProdConfig
from cdforge.models.publish import CHART_MATRIX, IMAGE_MATRIX
from cdforge.models.rollout import DEFAULT_ROLLOUT_PLAN, RolloutStep
from cdforge.models.stages import DEFAULT_STAGE_DEFINITIONS, StageDefinition

# Cargo packages built for the hardware/enclave group.
ENCLAVE_BUILD_TARGETS: list[str] = [
    "mc-admin-http-gateway",
    "mc-consensus-mint-client",
    "mc-consensus-service",
    "mc-fog-distribution",
    "mc-fog-ingest-server",
    "mc-fog-ingest-client",
    "mc-fog-ledger-server",
    "mc-fog-report-cli",
    "mc-fog-report-server",
    "mc-fog-sql-recovery-db",
    "mc-fog-test-client",
    "mc-fog-view-server",
    "mc-ledger-distribution",
    "mc-ledger-from-archive",
    "mc-ledger-migration",
    "mc-mobilecoind",
    "mc-mobilecoind-json",
    "mc-util-generate-sample-ledger",
    "mc-util-grpc-admin-tool",
    "mc-util-grpc-token-generator",
    "mc-util-keyfile",
    "mc-util-seeded-ed25519-key-gen",
    "mc-watcher",
]

# Enclaves signed during the hardware build; each yields "<name>.signed.so".
ENCLAVE_SIGNED_TARGETS: list[str] = [
    "libconsensus-enclave",
    "libingest-enclave",
    "libledger-enclave",
    "libview-enclave",
]

GATEWAY_BUILD_TARGETS: list[str] = ["grpc-proxy"]

# Source globs hashed into each group's cache fingerprint.
ENCLAVE_FINGERPRINT_PATTERNS: list[str] = [
    "Cargo.lock",
    "**/Cargo.toml",
    "**/*.rs",
    "**/*.proto",
    "**/*.edl",
    "rust-toolchain",
]
GATEWAY_FINGERPRINT_PATTERNS: list[str] = [
    "go-grpc-gateway/**/*",
    "**/*.proto",
]


class PipelineConfig(BaseModel):
    """Project-level configuration for the pipeline.

    Fixed matrices and target lists live here; per-environment values are
    copied in from ``ProdConfig`` by ``from_settings``.
    """

    model_config = ConfigDict(frozen=True)

    project_name: str = "cdforge"
    source_root: Path = Path(".")
    artifact_cache_path: Path = Path(".cdforge/cache")
    ledger_db_path: Path = Path(".cdforge/ledger.db")
    run_registry_path: Path = Path(".cdforge/groups")
    work_dir: Path = Path(".cdforge/work")

    cache_buster: str = ""
    docker_org: str = "mobilecoin"
    chart_repo: str = (
        "https://harbor.mobilecoin.com/chartrepo/mobilecoinfoundation-public"
    )
    release_1x_tag: str = "v1.1.3-dev"
    release_2x_tag: str = "v2.1.0-pre1"
    dependency_bot_actor: str = "dependabot[bot]"
    max_parallel: int = 4
    always_teardown_on_pr: bool = False

    image_matrix: list[str] = list(IMAGE_MATRIX)
    chart_matrix: list[str] = list(CHART_MATRIX)
    enclave_targets: list[str] = list(ENCLAVE_BUILD_TARGETS)
    enclave_signed_targets: list[str] = list(ENCLAVE_SIGNED_TARGETS)
    gateway_targets: list[str] = list(GATEWAY_BUILD_TARGETS)
    enclave_fingerprint_patterns: list[str] = list(ENCLAVE_FINGERPRINT_PATTERNS)
    gateway_fingerprint_patterns: list[str] = list(GATEWAY_FINGERPRINT_PATTERNS)

    stage_definitions: list[StageDefinition] = list(DEFAULT_STAGE_DEFINITIONS)
    rollout_plan: list[RolloutStep] = list(DEFAULT_ROLLOUT_PLAN)

    dockerfile_dir: str = ".internal-ci/docker"
    chart_dir: str = ".internal-ci/helm"

    @classmethod
    def from_settings(cls, settings: ProdConfig, **overrides: object) -> PipelineConfig:
        """Build a PipelineConfig from env-driven settings."""
        values: dict[str, object] = {
            "source_root": settings.source_root,
            "artifact_cache_path": settings.artifact_cache_path,
            "ledger_db_path": settings.ledger_path,
            "run_registry_path": settings.run_registry_path,
            "work_dir": settings.state_dir / "work",
            "cache_buster": settings.cache_buster,
            "docker_org": settings.docker_org,
            "chart_repo": settings.chart_repo,
            "release_1x_tag": settings.release_1x_tag,
            "release_2x_tag": settings.release_2x_tag,
            "dependency_bot_actor": settings.dependency_bot_actor,
            "max_parallel": settings.max_parallel,
            "always_teardown_on_pr": settings.always_teardown_on_pr,
        }
        values.update(overrides)
        return cls(**values)
