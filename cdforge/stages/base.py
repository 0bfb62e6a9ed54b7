"""Abstract base stage with enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable** — it enforces the canonical
lifecycle ordering:

    compute_input_hash -> execute -> compute_output_hash -> record

State transitions (RUNNING, PASSED, FAILED) are owned by the scheduler;
a stage only does its work and reports what it produced.
"""

from __future__ import annotations

import abc
import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, final

from cdforge.collaborators.base import Collaborators
from cdforge.core.artifact_cache import ArtifactCache
from cdforge.core.errors import PipelineError
from cdforge.core.gate import RunOptions
from cdforge.core.hasher import compute_input_hash, compute_output_hash
from cdforge.core.run_ledger import RunLedger
from cdforge.core.run_registry import CancelToken
from cdforge.models.artifacts import ArtifactBundle, ArtifactGroup
from cdforge.models.config import PipelineConfig
from cdforge.models.stages import StageClass, StageState
from cdforge.models.trigger import EnvironmentMetadata, TriggerContext

logger = logging.getLogger(__name__)


class StageExecutionError(PipelineError):
    """Raised when a stage fails with an error outside the pipeline taxonomy."""


class StageResult:
    """What ``run_stage`` hands back to the scheduler."""

    __slots__ = ("output", "input_hash", "output_hash", "artifact_references")

    def __init__(
        self,
        output: dict[str, Any],
        input_hash: str,
        output_hash: str,
        artifact_references: list[str],
    ) -> None:
        self.output = output
        self.input_hash = input_hash
        self.output_hash = output_hash
        self.artifact_references = artifact_references


class RunContext:
    """Run-wide state shared by every stage of one run.

    Inputs (trigger, metadata, options, config, collaborators) are fixed
    when the run starts. Outputs are written by stages from worker
    threads through the ``set_*`` methods, which take a lock.
    """

    def __init__(
        self,
        *,
        run_id: str,
        trigger: TriggerContext,
        metadata: EnvironmentMetadata,
        options: RunOptions,
        config: PipelineConfig,
        collaborators: Collaborators,
        cache: ArtifactCache,
        ledger: RunLedger,
        work_dir: Path,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.run_id = run_id
        self.trigger = trigger
        self.metadata = metadata
        self.options = options
        self.config = config
        self.collaborators = collaborators
        self.cache = cache
        self.ledger = ledger
        self.work_dir = Path(work_dir)
        self.cancel_token = cancel_token

        self._lock = threading.Lock()
        self._bundles: dict[ArtifactGroup, ArtifactBundle] = {}
        self._published_images: list[str] = []
        self._published_charts: list[str] = []
        self._rollout_states: dict[str, StageState] = {}
        self._output_hashes: dict[str, str] = {}
        self.namespace_deleted = False

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def set_bundle(self, bundle: ArtifactBundle) -> None:
        with self._lock:
            self._bundles[bundle.group] = bundle

    def bundle(self, group: ArtifactGroup) -> ArtifactBundle | None:
        with self._lock:
            return self._bundles.get(group)

    def set_published_images(self, names: list[str]) -> None:
        with self._lock:
            self._published_images = list(names)

    @property
    def published_images(self) -> list[str]:
        with self._lock:
            return list(self._published_images)

    def set_published_charts(self, names: list[str]) -> None:
        with self._lock:
            self._published_charts = list(names)

    @property
    def published_charts(self) -> list[str]:
        with self._lock:
            return list(self._published_charts)

    def set_rollout_states(self, states: dict[str, StageState]) -> None:
        with self._lock:
            self._rollout_states = dict(states)

    @property
    def rollout_states(self) -> dict[str, StageState]:
        with self._lock:
            return dict(self._rollout_states)

    def record_output_hash(self, stage_id: str, output_hash: str) -> None:
        with self._lock:
            self._output_hashes[stage_id] = output_hash

    def output_hashes(self) -> dict[str, str]:
        with self._lock:
            return dict(self._output_hashes)


class BaseStage(abc.ABC):
    """Abstract base for all cdforge pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``   — unique identifier (e.g. ``"images"``).
        * ``display_name`` — human-readable name shown in the Build Monitor.
        * ``execute(context)`` — the stage's core logic.

    Subclasses **must not** override ``run_stage()``.
    """

    stage_class: ClassVar[StageClass]

    # ------------------------------------------------------------------
    # Abstract interface — subclasses implement these
    # ------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        """Unique stage identifier (e.g. ``'build_enclave'``)."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        """Human-readable display name for the Build Monitor."""
        ...

    @abc.abstractmethod
    def execute(self, context: RunContext) -> dict[str, Any]:
        """Execute the stage's core logic.

        Returns a JSON-serializable result dict. An optional
        ``artifact_references`` key lists content addresses the stage
        produced or reused.
        """
        ...

    # ------------------------------------------------------------------
    # Lifecycle — NOT overridable
    # ------------------------------------------------------------------

    @final
    def run_stage(self, context: RunContext) -> StageResult:
        """Execute the full stage lifecycle.  **Do not override.**

        Pipeline errors propagate with their type intact; anything else
        is wrapped in ``StageExecutionError``.
        """
        input_hash = self._compute_input_hash(context)
        logger.info("%s [%s] started", self.display_name, self.stage_id)

        try:
            output = self.execute(context)
        except PipelineError as exc:
            if not exc.stage_id:
                exc.stage_id = self.stage_id
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise
        except Exception as exc:
            logger.exception("%s [%s] execution failed", self.display_name, self.stage_id)
            raise StageExecutionError(
                f"Stage {self.stage_id} failed: {exc}", stage_id=self.stage_id
            ) from exc

        output_hash = self._compute_output_hash(output)
        context.record_output_hash(self.stage_id, output_hash)
        logger.info(
            "%s [%s] passed — input=%s output=%s",
            self.display_name,
            self.stage_id,
            input_hash[:12],
            output_hash[:12],
        )
        return StageResult(
            output=output,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=list(output.get("artifact_references", [])),
        )

    # ------------------------------------------------------------------
    # Lifecycle helpers (not overridable)
    # ------------------------------------------------------------------

    @final
    def _compute_input_hash(self, context: RunContext) -> str:
        """SHA-256 of canonical(stage_id + run inputs + prerequisite outputs)."""
        prerequisites = next(
            (sd.prerequisites for sd in context.config.stage_definitions
             if sd.stage_id == self.stage_id),
            [],
        )
        prior = context.output_hashes()
        inputs: dict[str, Any] = {
            "run_id": context.run_id,
            "metadata": context.metadata.snapshot(),
            "options": context.options.model_dump(mode="json"),
            "prior_output_hashes": {p: prior.get(p, "") for p in prerequisites},
        }
        return compute_input_hash(self.stage_id, inputs)

    @final
    def _compute_output_hash(self, output: dict[str, Any]) -> str:
        return compute_output_hash(self.stage_id, output)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
