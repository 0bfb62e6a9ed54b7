"""Environment lifecycle manager — namespace reset and teardown.

``reset(namespace, delete_namespace=False)`` clears stale workloads but
keeps the namespace; ``delete_namespace=True`` removes it entirely. Both
are idempotent: resetting a namespace that is already clean, or deleting
one that does not exist, succeeds. Namespaces are created implicitly by
the first deploy.
"""

from __future__ import annotations

import logging

from cdforge.collaborators.base import ClusterControlPlane
from cdforge.core.errors import PipelineError

logger = logging.getLogger(__name__)


class EnvironmentResetError(PipelineError):
    """Raised when the control plane rejects a reset or delete."""


class EnvironmentLifecycleManager:
    """Resets and deletes namespaces through the cluster control plane."""

    def __init__(self, control_plane: ClusterControlPlane) -> None:
        self._control_plane = control_plane

    def reset(
        self, namespace: str, delete_namespace: bool = False, *, stage_id: str = ""
    ) -> None:
        action = "delete" if delete_namespace else "reset"
        logger.info("%s namespace %s", action, namespace)
        result = self._control_plane.reset_namespace(namespace, delete_namespace)
        if not result.ok:
            raise EnvironmentResetError(
                f"Namespace {action} failed for {namespace}: {result.detail}",
                stage_id=stage_id,
            )

    def teardown(self, namespace: str, *, stage_id: str = "") -> None:
        """Delete the namespace. Used only at the end of pull-request runs."""
        self.reset(namespace, delete_namespace=True, stage_id=stage_id)
