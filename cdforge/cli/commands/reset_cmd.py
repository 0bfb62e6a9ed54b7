"""``cdforge reset NAMESPACE`` — clear or delete a dev namespace by hand."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape

from cdforge.cli.commands.run_cmd import print_call_log
from cdforge.cli.common import pipeline_config
from cdforge.collaborators import CallLog, recording_collaborators, shell_collaborators
from cdforge.config import CredentialSettings, ProdConfig
from cdforge.core.environment import EnvironmentLifecycleManager, EnvironmentResetError

console = Console()


def reset_cmd(
    namespace: str = typer.Argument(..., help="Namespace to reset."),
    delete: bool = typer.Option(
        False, "--delete", help="Delete the namespace instead of clearing it."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Record the control-plane calls without running them."
    ),
) -> None:
    """Clear stale releases and volumes from NAMESPACE, or delete it with --delete."""
    call_log = CallLog()
    if dry_run:
        collaborators = recording_collaborators(log=call_log)
    else:
        collaborators = shell_collaborators(
            pipeline_config(ProdConfig()), CredentialSettings().to_credentials()
        )

    manager = EnvironmentLifecycleManager(collaborators.control_plane)
    try:
        manager.reset(namespace, delete_namespace=delete)
    except EnvironmentResetError as exc:
        console.print(f"[bold red]{escape(str(exc))}[/bold red]")
        raise typer.Exit(code=1)

    action = "deleted" if delete else "reset"
    console.print(f"[green]Namespace {namespace} {action}.[/green]")
    if dry_run:
        print_call_log(call_log)
