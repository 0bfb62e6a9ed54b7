"""cdforge CLI — Typer-based command-line interface.

Provides the ``cdforge`` command with subcommands for running the
pipeline, inspecting trigger metadata and the plan, monitoring runs,
resetting namespaces and running a demo.

All output uses Rich for formatted terminal display.
"""
