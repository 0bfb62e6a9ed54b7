"""Trigger filter — which events start a pipeline run at all.

Pull requests run when they target a trunk or release branch; pushes run
on trunk, feature and release branches and on version tags. A change set
made only of Markdown files never starts a run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from fnmatch import fnmatchcase

from pydantic import BaseModel, ConfigDict

from cdforge.models.trigger import EventKind, TriggerContext

logger = logging.getLogger(__name__)


class TriggerFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    pull_request_branches: list[str] = ["master", "main", "release/*"]
    push_branches: list[str] = ["master", "main", "feature/*", "release/*"]
    tags: list[str] = ["v[0-9]*", "release/[0-9]*", "release/v[0-9]*"]
    paths_ignore: list[str] = ["*.md"]

    def _branch_matches(self, branch: str, patterns: list[str]) -> bool:
        return any(fnmatchcase(branch, p) for p in patterns)

    def _only_ignored_paths(self, changed_paths: Iterable[str] | None) -> bool:
        if changed_paths is None:
            return False
        paths = list(changed_paths)
        return bool(paths) and all(
            any(fnmatchcase(path, p) for p in self.paths_ignore) for path in paths
        )

    def accepts(
        self, trigger: TriggerContext, changed_paths: Iterable[str] | None = None
    ) -> bool:
        """Return True if *trigger* should start a run.

        ``changed_paths`` is None when the change set is unknown, which
        never filters a run out.
        """
        if trigger.event == EventKind.MANUAL:
            return True

        if self._only_ignored_paths(changed_paths):
            logger.info("trigger filtered: only ignored paths changed")
            return False

        ref = trigger.ref
        if ref.startswith("refs/tags/"):
            accepted = self._branch_matches(ref[len("refs/tags/"):], self.tags)
        elif trigger.event == EventKind.PULL_REQUEST:
            accepted = self._branch_matches(trigger.base_ref, self.pull_request_branches)
        elif ref.startswith("refs/heads/"):
            accepted = self._branch_matches(ref[len("refs/heads/"):], self.push_branches)
        else:
            accepted = False

        if not accepted:
            logger.info("trigger filtered: %s on %s", trigger.event.value, ref)
        return accepted
