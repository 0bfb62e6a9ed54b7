"""Staged Rollout — runs the rollout plan as a single DAG node.

The current build is only deployable when the full chart matrix was
published in this run; otherwise the first step that needs it fails with
``MissingArtifactError``.
"""

from __future__ import annotations

from typing import Any

from cdforge.core.rollout import RolloutStateMachine
from cdforge.models.rollout import ReleaseLine
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext


class RolloutStage(BaseStage):
    stage_class = StageClass.ROLLOUT

    @property
    def stage_id(self) -> str:
        return "rollout"

    @property
    def display_name(self) -> str:
        return "Staged Rollout"

    def release_tags(self, context: RunContext) -> dict[ReleaseLine, str]:
        config = context.config
        charts_complete = set(config.chart_matrix) <= set(context.published_charts)
        return {
            ReleaseLine.RELEASE_1X: config.release_1x_tag,
            ReleaseLine.RELEASE_2X: config.release_2x_tag,
            ReleaseLine.CURRENT: context.metadata.version_tag if charts_complete else "",
        }

    def execute(self, context: RunContext) -> dict[str, Any]:
        machine = RolloutStateMachine(
            context.collaborators.control_plane,
            context.config.rollout_plan,
            namespace=context.metadata.namespace,
            release_tags=self.release_tags(context),
            chart_repo=context.config.chart_repo,
            docker_org=context.config.docker_org,
            ledger=context.ledger,
            run_id=context.run_id,
            cancel_token=context.cancel_token,
        )
        try:
            states = machine.run()
        finally:
            context.set_rollout_states(machine.step_states)
        return {
            "namespace": context.metadata.namespace,
            "steps": {step_id: state.value for step_id, state in states.items()},
        }
