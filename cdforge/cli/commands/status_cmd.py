"""``cdforge status RUN_ID`` — show the Build Monitor for a pipeline run.

Displays the current state of all stages and rollout steps, artifact
counts, and hash chain status.  Supports continuous live mode and chain
verification.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from cdforge.config import ProdConfig
from cdforge.core.run_ledger import LedgerIntegrityError, RunLedger
from cdforge.monitor.projection import MonitorProjection
from cdforge.monitor.renderer import MonitorRenderer

console = Console()


def status_cmd(
    run_id: str = typer.Argument(
        None,
        help="The pipeline run ID to show. Lists known runs if omitted.",
    ),
    live: bool = typer.Option(
        False,
        "--live",
        "-L",
        help="Enable continuous live monitoring mode (Ctrl+C to exit).",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    refresh_hz: float = typer.Option(
        2.0,
        "--refresh",
        help="Refresh rate in Hz for live mode.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database. Defaults to CDFORGE_LEDGER_PATH.",
    ),
) -> None:
    """Show the Build Monitor for a pipeline run.

    The Build Monitor is a pure read-only projection over the Run Ledger.
    It never maintains its own state — every display re-reads the ledger.
    """
    db_path = ledger_db or ProdConfig().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Start a run first with: cdforge run[/dim]")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    projection = MonitorProjection(ledger)
    renderer = MonitorRenderer(console=console)

    all_runs = ledger.get_all_run_ids()
    if run_id is None or not ledger.get_run_entries(run_id):
        if run_id is not None:
            console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        if run_id is not None:
            raise typer.Exit(code=1)
        return

    if verify_chain:
        console.print("[bold cyan]Verifying hash chain...[/bold cyan]")
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {escape(str(exc))}")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        console.print()
        if not valid:
            raise typer.Exit(code=1)

    if live:
        console.print(
            f"[dim]Live monitoring run {run_id} at {refresh_hz} Hz. Press Ctrl+C to exit.[/dim]"
        )
        console.print()
        renderer.render_live(run_id, projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot(run_id))
