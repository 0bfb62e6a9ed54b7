"""``cdforge plan`` — print the stage graph and the rollout plan."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from cdforge.core.prerequisite_graph import PrerequisiteGraph
from cdforge.core.rollout import validate_plan
from cdforge.models.config import PipelineConfig

console = Console()


def plan_cmd() -> None:
    """Show stages in execution order and every rollout step."""
    config = PipelineConfig()
    graph = PrerequisiteGraph(config.stage_definitions)
    validate_plan(config.rollout_plan)

    stages = Table(title="Stages", header_style="bold cyan")
    stages.add_column("Stage")
    stages.add_column("Name")
    stages.add_column("Class")
    stages.add_column("Needs")
    stages.add_column("Events")
    for stage_id in graph.stage_ids:
        definition = graph.get_stage_definition(stage_id)
        events = (
            ", ".join(sorted(e.value for e in definition.only_on_events))
            if definition.only_on_events is not None
            else "all"
        )
        stages.add_row(
            stage_id,
            definition.display_name,
            definition.stage_class.value,
            ", ".join(definition.prerequisites) or "-",
            events,
        )

    rollout = Table(title="Rollout plan", header_style="bold cyan")
    rollout.add_column("Step")
    rollout.add_column("Kind")
    rollout.add_column("Block", justify="right")
    rollout.add_column("Ingest")
    rollout.add_column("Minting")
    rollout.add_column("Release")
    for step in config.rollout_plan:
        rollout.add_row(
            step.step_id,
            step.kind.value,
            str(step.phase.block_version),
            step.phase.ingest_color.value,
            "yes" if step.phase.minting_enabled else "no",
            step.phase.release_line.value,
        )

    console.print(stages)
    console.print(rollout)
