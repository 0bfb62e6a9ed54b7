"""``cdforge demo`` — run a complete pull-request pipeline against recording collaborators.

Nothing external is touched: builds write placeholder files, and every
registry push, deploy and test is recorded instead of executed.  Failures
can be injected with ``--fail`` to watch blocking and teardown play out.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from cdforge.cli.commands.run_cmd import print_call_log
from cdforge.cli.common import pipeline_config
from cdforge.collaborators import CallLog, recording_collaborators
from cdforge.config import ProdConfig
from cdforge.core.orchestrator import Orchestrator
from cdforge.models.trigger import EventKind, TriggerContext
from cdforge.monitor.projection import MonitorProjection
from cdforge.monitor.renderer import MonitorRenderer

console = Console()


def demo_cmd(
    state_dir: Path = typer.Option(
        Path(".cdforge/demo"),
        "--state-dir",
        help="Where the demo keeps its ledger, cache and work files.",
    ),
    fail: list[str] = typer.Option(
        None,
        "--fail",
        "-f",
        help="Make a recorded call fail, e.g. 'test:2' or 'image:mobilecoind' (repeatable).",
    ),
    teardown: bool = typer.Option(
        False,
        "--teardown",
        help="Delete the namespace even when the rollout fails.",
    ),
    show_calls: bool = typer.Option(
        False, "--calls", help="List every recorded collaborator call."
    ),
) -> None:
    """Run a complete demo pipeline with recording collaborators.

    Runs a pull request trigger end to end and shows the Build Monitor
    and run report.
    """
    settings = ProdConfig()
    config = pipeline_config(settings, state_dir).model_copy(
        update={"always_teardown_on_pr": teardown}
    )
    call_log = CallLog()
    orchestrator = Orchestrator(
        config=config,
        prod_config=settings,
        collaborators=recording_collaborators(log=call_log, fail_on=set(fail or [])),
    )
    trigger = TriggerContext(
        actor="demo-user",
        event=EventKind.PULL_REQUEST,
        ref="refs/pull/1/merge",
        head_ref="feature/demo",
        base_ref="main",
        sha="0123456789abcdef0123456789abcdef01234567",
        run_number=1,
    )

    console.print()
    console.print(
        Panel(
            "[bold]cdforge Demo Pipeline[/bold]\n\n"
            f"Pull request run for [cyan]{trigger.head_ref}[/cyan] "
            "against recording collaborators.",
            border_style="cyan",
            padding=(1, 2),
        )
    )

    report = orchestrator.run(trigger)
    renderer = MonitorRenderer(console=console)
    renderer.print_snapshot(MonitorProjection(orchestrator.ledger).snapshot(report.run_id))
    if show_calls:
        print_call_log(call_log)
    renderer.print_report(report)
    renderer.print_chain_verification(report.run_id, orchestrator.verify_chain())

    if not report.succeeded:
        raise typer.Exit(code=1)
