"""Namespace stages — reset before the rollout, delete after a PR rollout."""

from __future__ import annotations

from typing import Any

from cdforge.core.environment import EnvironmentLifecycleManager
from cdforge.models.stages import StageClass
from cdforge.stages.base import BaseStage, RunContext


class DevResetStage(BaseStage):
    """Clears stale workloads from the run's namespace, keeping the namespace."""

    stage_class = StageClass.ENVIRONMENT

    @property
    def stage_id(self) -> str:
        return "dev_reset"

    @property
    def display_name(self) -> str:
        return "Reset Namespace"

    def execute(self, context: RunContext) -> dict[str, Any]:
        namespace = context.metadata.namespace
        EnvironmentLifecycleManager(context.collaborators.control_plane).reset(
            namespace, delete_namespace=False, stage_id=self.stage_id
        )
        return {"namespace": namespace, "deleted": False}


class CleanupStage(BaseStage):
    """Deletes the namespace once the whole rollout has passed.

    Scheduled only for pull-request runs; trunk namespaces are reused.
    """

    stage_class = StageClass.ENVIRONMENT

    @property
    def stage_id(self) -> str:
        return "cleanup"

    @property
    def display_name(self) -> str:
        return "Delete Namespace"

    def execute(self, context: RunContext) -> dict[str, Any]:
        namespace = context.metadata.namespace
        EnvironmentLifecycleManager(context.collaborators.control_plane).teardown(
            namespace, stage_id=self.stage_id
        )
        context.namespace_deleted = True
        return {"namespace": namespace, "deleted": True}
