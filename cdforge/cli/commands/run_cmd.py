"""``cdforge run`` — run the whole pipeline for one trigger.

With ``--dry-run`` every external system is replaced by a recording
collaborator: nothing is built, pushed or deployed, and the calls that
would have been made are listed instead.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cdforge.cli.common import build_trigger, pipeline_config
from cdforge.collaborators import CallLog, recording_collaborators
from cdforge.config import ProdConfig
from cdforge.core.orchestrator import Orchestrator
from cdforge.models.reports import RunStatus
from cdforge.models.trigger import EventKind
from cdforge.monitor.projection import MonitorProjection
from cdforge.monitor.renderer import MonitorRenderer

console = Console()


def print_call_log(log: CallLog) -> None:
    table = Table(title="Recorded collaborator calls", header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Call", style="cyan")
    table.add_column("Arguments")
    for i, call in enumerate(log.calls):
        table.add_row(str(i), call[0], " ".join(call[1:]))
    console.print(table)


def run_cmd(
    ref: str = typer.Option(
        ...,
        "--ref",
        "-r",
        help="Git ref that triggered the run, e.g. refs/heads/main or refs/tags/v1.2.3.",
    ),
    event: EventKind = typer.Option(
        EventKind.PUSH,
        "--event",
        "-e",
        help="Kind of event that started the run.",
    ),
    actor: str = typer.Option("cdforge", "--actor", "-a", help="Who triggered the run."),
    message: str = typer.Option("", "--message", "-m", help="Commit message."),
    head_ref: str = typer.Option("", "--head-ref", help="Pull request source branch."),
    base_ref: str = typer.Option("", "--base-ref", help="Pull request target branch."),
    sha: str = typer.Option("", "--sha", help="Commit SHA."),
    run_number: int = typer.Option(0, "--run-number", help="CI run number."),
    changed: list[str] = typer.Option(
        None,
        "--changed",
        "-c",
        help="A changed path (repeatable). Docs-only changes do not start a run.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Use recording collaborators instead of the real toolchains and cluster.",
    ),
    state_dir: Path = typer.Option(
        None,
        "--state-dir",
        help="Keep the ledger, cache and work files here instead of the configured paths.",
    ),
) -> None:
    """Run the staged build, publish and rollout pipeline."""
    settings = ProdConfig()
    config = pipeline_config(settings, state_dir)
    trigger = build_trigger(
        event=event,
        ref=ref,
        actor=actor,
        message=message,
        head_ref=head_ref,
        base_ref=base_ref,
        sha=sha,
        run_number=run_number,
    )

    call_log = CallLog()
    collaborators = recording_collaborators(log=call_log) if dry_run else None
    orchestrator = Orchestrator(
        config=config, prod_config=settings, collaborators=collaborators
    )

    report = orchestrator.run(trigger, changed or None)
    renderer = MonitorRenderer(console=console)

    if report.status == RunStatus.FILTERED:
        console.print("[dim]Trigger matched no filter; nothing to run.[/dim]")
        return

    renderer.print_snapshot(MonitorProjection(orchestrator.ledger).snapshot(report.run_id))
    if dry_run:
        print_call_log(call_log)
    renderer.print_report(report)

    if not report.succeeded:
        raise typer.Exit(code=1)
