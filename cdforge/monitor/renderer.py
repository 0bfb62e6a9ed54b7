"""Rich terminal renderer for the cdforge Build Monitor.

Turns ``MonitorSnapshot`` and ``PipelineReport`` into Rich renderables,
with color-coded states and optional continuous ``Rich.Live`` mode.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- yellow    : RUNNING
- dim       : NOT_STARTED
- cyan      : SKIPPED
- bold red  : BLOCKED
- magenta   : CANCELLED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cdforge.models.reports import PipelineReport, RunStatus
from cdforge.models.stages import StageState

if TYPE_CHECKING:
    from cdforge.monitor.projection import MonitorProjection, MonitorSnapshot, StageStatus


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.SKIPPED: "cyan",
    StageState.BLOCKED: "bold red",
    StageState.CANCELLED: "magenta",
}

_STATE_ICONS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.SKIPPED: "[cyan]SKIPPED[/cyan]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
    StageState.CANCELLED: "[magenta]CANCELLED[/magenta]",
}

_STATUS_STYLES: dict[RunStatus, str] = {
    RunStatus.PASSED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "magenta",
    RunStatus.FILTERED: "dim",
}


class MonitorRenderer:
    """Renders snapshots and run reports as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single snapshot render
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: MonitorSnapshot) -> Panel:
        """Render a MonitorSnapshot as a Rich Panel of stage and rollout tables."""
        chain_status = (
            "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        )
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]Version:[/bold] {snapshot.pipeline_version}",
                f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
                f"[bold]Artifacts:[/bold] {snapshot.artifact_count}",
                f"[bold]Chain:[/bold] {chain_status}",
            ]
        )

        parts: list = [self._build_table("Stage", snapshot.stages)]
        if any(s.state != StageState.NOT_STARTED for s in snapshot.rollout_steps):
            parts.extend([Text(""), self._build_table("Rollout step", snapshot.rollout_steps)])
        parts.extend([Text(""), Text.from_markup(summary)])

        return Panel(
            Group(*parts),
            title="[bold]cdforge Build Monitor[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_table(self, label: str, rows: list[StageStatus]) -> Table:
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            show_lines=False,
            pad_edge=True,
        )
        table.add_column("#", style="dim", width=5, justify="right")
        table.add_column(label, min_width=25)
        table.add_column("State", min_width=14, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Artifacts", justify="right", width=10)

        for i, row in enumerate(rows):
            name_style = _STATE_STYLES.get(row.state, "")
            details_parts: list[str] = []
            if row.detail:
                details_parts.append(escape(row.detail))
            if row.entered_at:
                details_parts.append(f"[dim]{row.entered_at.strftime('%H:%M:%S')}[/dim]")
            details = " | ".join(details_parts) if details_parts else "[dim]-[/dim]"
            artifact_count = str(len(row.artifact_refs)) if row.artifact_refs else "[dim]0[/dim]"

            table.add_row(
                str(i),
                f"[{name_style}]{row.display_name}[/{name_style}]",
                _STATE_ICONS.get(row.state, row.state.value),
                details,
                artifact_count,
            )
        return table

    # ------------------------------------------------------------------
    # Run report
    # ------------------------------------------------------------------

    def render_report(self, report: PipelineReport) -> Panel:
        """Summarize a finished run; on failure, show the first fatal error
        and the namespace/version it hit."""
        style = _STATUS_STYLES[report.status]
        lines = [
            f"[bold]Run:[/bold] {report.run_id}",
            f"[bold]Status:[/bold] [{style}]{report.status.value.upper()}[/{style}]",
        ]
        if report.metadata:
            lines.append(
                f"[bold]Namespace:[/bold] {report.metadata.get('namespace', '')}  "
                f"[bold]Version:[/bold] {escape(report.metadata.get('version_tag', ''))}"
            )
        if report.namespace_deleted:
            lines.append("[bold]Namespace deleted:[/bold] yes")

        failure = report.first_failure
        if failure is not None:
            lines.extend(
                [
                    "",
                    f"[bold red]First failure:[/bold red] {failure.stage_id} "
                    f"({failure.error_type})",
                    escape(failure.message),
                ]
            )
            for key, value in failure.metadata.items():
                lines.append(f"  [dim]{key}[/dim] = {escape(value)}")

        return Panel(
            Text.from_markup("\n".join(lines)),
            title="[bold]Run Report[/bold]",
            border_style=style,
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        run_id: str,
        projection: MonitorProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> None:
        """Continuously render the Build Monitor in Rich Live mode.

        Re-reads the ledger on every refresh cycle.  Press Ctrl+C to stop.
        """
        interval = 1.0 / max(refresh_hz, 0.1)

        with Live(
            console=self.console,
            refresh_per_second=refresh_hz,
            transient=False,
        ) as live:
            try:
                while True:
                    live.update(self.render_snapshot(projection.snapshot(run_id)))
                    time.sleep(interval)
            except KeyboardInterrupt:
                # Final snapshot on exit
                live.update(self.render_snapshot(projection.snapshot(run_id)))

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: MonitorSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_report(self, report: PipelineReport) -> None:
        self.console.print(self.render_report(report))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
