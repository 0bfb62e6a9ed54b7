"""Single-flight run registry — one active run per namespace.

A run claims its concurrency group when it starts. Claiming replaces any
previous claimant, and the previous run notices at its next stage
boundary that it is no longer current and cancels itself. The namespace
is therefore only ever mutated by the newest run for it. Pushes and pull
requests from the same branch, and branch names that normalize to the
same label, share one group.

Claims are files under ``{base_path}/{sha256(group)}.json`` replaced
atomically, so runs in separate processes see each other.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from cdforge.core.errors import PipelineCancelledError
from cdforge.core.hasher import sha256_hex

logger = logging.getLogger(__name__)


def concurrency_group(namespace: str) -> str:
    """Concurrency group for the runs that would mutate *namespace*."""
    return f"cdforge-{namespace}"


class CancelToken:
    """Checked by the scheduler and the rollout between units of work."""

    def __init__(self, registry: RunRegistry, group: str, run_id: str) -> None:
        self._registry = registry
        self.group = group
        self.run_id = run_id
        self._local = threading.Event()

    def cancel(self) -> None:
        """Cancel this run from inside the process."""
        self._local.set()

    @property
    def cancelled(self) -> bool:
        if self._local.is_set():
            return True
        if not self._registry.is_current(self.group, self.run_id):
            self._local.set()
            return True
        return False

    def raise_if_cancelled(self, stage_id: str = "") -> None:
        if self.cancelled:
            raise PipelineCancelledError(
                f"Run {self.run_id} superseded in group {self.group}",
                stage_id=stage_id,
            )


class RunRegistry:
    """File-backed registry of the active run per concurrency group.

    Parameters
    ----------
    base_path:
        Directory holding one claim file per group.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _claim_path(self, group: str) -> Path:
        return self._base / f"{sha256_hex(group.encode('utf-8'))}.json"

    def active_run(self, group: str) -> str | None:
        path = self._claim_path(group)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        return data.get("run_id")

    def is_current(self, group: str, run_id: str) -> bool:
        return self.active_run(group) == run_id

    def claim(self, group: str, run_id: str) -> CancelToken:
        """Make *run_id* the active run for *group*, superseding any other."""
        previous = self.active_run(group)
        path = self._claim_path(group)
        fd, tmp_name = tempfile.mkstemp(dir=self._base, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"group": group, "run_id": run_id}, fh)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        if previous and previous != run_id:
            logger.warning(
                "run %s supersedes in-flight run %s for %s", run_id, previous, group
            )
        return CancelToken(self, group, run_id)

    def release(self, group: str, run_id: str) -> None:
        """Drop the claim if *run_id* still holds it."""
        if self.is_current(group, run_id):
            self._claim_path(group).unlink(missing_ok=True)
