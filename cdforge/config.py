"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
CDFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from cdforge.collaborators.base import Credentials


class ProdConfig(BaseSettings):
    """Pipeline runtime configuration with environment variable overrides.

    All settings can be overridden via CDFORGE_* environment variables
    or a .env file in the project root.

    Examples
    --------
    Override via environment::

        export CDFORGE_ENVIRONMENT=production
        export CDFORGE_CACHE_BUSTER=2026-10-01
        export CDFORGE_MAX_PARALLEL=8

    Or via .env file::

        CDFORGE_LOG_LEVEL=DEBUG
        CDFORGE_ALWAYS_TEARDOWN_ON_PR=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CDFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    state_dir: Path = Path(".cdforge")
    ledger_path: Path = Path(".cdforge/ledger.db")
    artifact_cache_path: Path = Path(".cdforge/cache")
    run_registry_path: Path = Path(".cdforge/groups")
    source_root: Path = Path(".")

    # Cache invalidation — changing this forces every artifact group to rebuild
    cache_buster: str = ""

    # Registries and release lines
    docker_org: str = "mobilecoin"
    chart_repo: str = (
        "https://harbor.mobilecoin.com/chartrepo/mobilecoinfoundation-public"
    )
    release_1x_tag: str = "v1.1.3-dev"
    release_2x_tag: str = "v2.1.0-pre1"

    # Gating
    dependency_bot_actor: str = "dependabot[bot]"

    # Scheduling
    max_parallel: int = 4

    # Teardown policy for pull-request runs that fail mid-rollout
    always_teardown_on_pr: bool = False

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton — import as `from cdforge.config import config`
config = ProdConfig()


class CredentialSettings(BaseSettings):
    """Collaborator credentials read from CDFORGE_* environment variables.

    Values stay wrapped in ``SecretStr`` until a collaborator builds a
    subprocess environment from them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CDFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    registry_username: str = ""
    registry_password: SecretStr = SecretStr("")
    chart_repo_username: str = ""
    chart_repo_password: SecretStr = SecretStr("")
    cluster_token: SecretStr = SecretStr("")
    enclave_signing_key_path: str = ""

    def to_credentials(self) -> Credentials:
        from cdforge.collaborators.base import Credentials

        return Credentials(**dict(self))
