"""``cdforge metadata`` — show what a trigger resolves to without running anything."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cdforge.cli.common import build_trigger
from cdforge.config import ProdConfig
from cdforge.core.errors import ResolutionError
from cdforge.core.gate import resolve_run_options
from cdforge.core.metadata_resolver import resolve_metadata
from cdforge.core.run_registry import concurrency_group
from cdforge.models.stages import StageClass
from cdforge.models.trigger import EventKind

console = Console()


def metadata_cmd(
    ref: str = typer.Option(..., "--ref", "-r", help="Git ref that triggered the run."),
    event: EventKind = typer.Option(EventKind.PUSH, "--event", "-e"),
    actor: str = typer.Option("cdforge", "--actor", "-a"),
    message: str = typer.Option("", "--message", "-m"),
    head_ref: str = typer.Option("", "--head-ref"),
    sha: str = typer.Option("", "--sha"),
    run_number: int = typer.Option(0, "--run-number"),
) -> None:
    """Resolve namespace, version and gate switches for a trigger."""
    settings = ProdConfig()
    trigger = build_trigger(
        event=event,
        ref=ref,
        actor=actor,
        message=message,
        head_ref=head_ref,
        sha=sha,
        run_number=run_number,
    )
    try:
        metadata = resolve_metadata(trigger)
    except ResolutionError as exc:
        console.print(f"[bold red]Cannot resolve metadata:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    options = resolve_run_options(trigger, bot_actor=settings.dependency_bot_actor)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in metadata.snapshot().items():
        table.add_row(key, value)
    table.add_row("concurrency_group", concurrency_group(metadata.namespace))
    for stage_class in StageClass:
        reason = options.skip_reason(stage_class)
        table.add_row(
            f"run {stage_class.value}",
            f"[yellow]no[/yellow] ({escape(reason)})" if reason else "[green]yes[/green]",
        )
    console.print(table)
