"""Main Typer application — imports and registers all CLI commands.

Entry point: ``cdforge`` (configured via pyproject.toml scripts).

Commands: run, metadata, plan, status, reset, demo.
"""

from __future__ import annotations

import typer

from cdforge.cli.commands.demo import demo_cmd
from cdforge.cli.commands.metadata_cmd import metadata_cmd
from cdforge.cli.commands.plan_cmd import plan_cmd
from cdforge.cli.commands.reset_cmd import reset_cmd
from cdforge.cli.commands.run_cmd import run_cmd
from cdforge.cli.commands.status_cmd import status_cmd
from cdforge.cli.common import configure_logging
from cdforge.config import ProdConfig

app = typer.Typer(
    name="cdforge",
    help="cdforge: staged build, publish and rollout pipeline orchestrator.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level. Defaults to CDFORGE_LOG_LEVEL.",
    ),
) -> None:
    configure_logging(log_level or ProdConfig().log_level)


# Register subcommands
app.command(name="run", help="Run the pipeline for one trigger.")(run_cmd)
app.command(name="metadata", help="Show what a trigger resolves to.")(metadata_cmd)
app.command(name="plan", help="Show the stage graph and rollout plan.")(plan_cmd)
app.command(name="status", help="Show Build Monitor for a run.")(status_cmd)
app.command(name="reset", help="Reset or delete a namespace.")(reset_cmd)
app.command(name="demo", help="Run a demo pipeline against recording collaborators.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
