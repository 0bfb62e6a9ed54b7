"""Helpers shared by the cdforge CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from cdforge.config import ProdConfig
from cdforge.models.config import PipelineConfig
from cdforge.models.trigger import EventKind, TriggerContext


def configure_logging(level: str) -> None:
    """Route every ``cdforge.*`` logger through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def pipeline_config(settings: ProdConfig, state_dir: Path | None = None) -> PipelineConfig:
    """PipelineConfig from env settings, with all state under *state_dir* if given."""
    if state_dir is None:
        return PipelineConfig.from_settings(settings)
    return PipelineConfig.from_settings(
        settings,
        ledger_db_path=state_dir / "ledger.db",
        artifact_cache_path=state_dir / "cache",
        run_registry_path=state_dir / "groups",
        work_dir=state_dir / "work",
    )


def build_trigger(
    *,
    event: EventKind,
    ref: str,
    actor: str,
    message: str = "",
    head_ref: str = "",
    base_ref: str = "",
    sha: str = "",
    run_number: int = 0,
) -> TriggerContext:
    return TriggerContext(
        actor=actor,
        event=event,
        ref=ref,
        message=message,
        head_ref=head_ref,
        base_ref=base_ref,
        sha=sha,
        run_number=run_number,
    )
