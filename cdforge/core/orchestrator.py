"""Pipeline orchestrator — the central coordinator for cdforge runs.

The Orchestrator wires together the RunLedger, StageMachine, PrerequisiteGraph,
ArtifactCache, RunRegistry and DagScheduler into a single pipeline
execution engine.

A run goes through, in order:
1. the trigger filter (a filtered trigger runs nothing);
2. metadata resolution (a ResolutionError aborts before any stage);
3. gate resolution, once, into ``RunOptions``;
4. a single-flight claim on the namespace's concurrency group;
5. DAG scheduling of every stage;
6. the optional pull-request teardown guard.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from cdforge.collaborators.base import Collaborators
from cdforge.collaborators.shell import shell_collaborators
from cdforge.config import CredentialSettings, ProdConfig
from cdforge.core.artifact_cache import ArtifactCache
from cdforge.core.environment import EnvironmentLifecycleManager
from cdforge.core.errors import PipelineError, ResolutionError
from cdforge.core.gate import resolve_run_options
from cdforge.core.metadata_resolver import resolve_metadata
from cdforge.core.prerequisite_graph import PrerequisiteGraph
from cdforge.core.production_guard import enforce_production_constraints
from cdforge.core.rollout import validate_plan
from cdforge.core.run_ledger import RunLedger
from cdforge.core.run_registry import RunRegistry, concurrency_group
from cdforge.core.scheduler import DagScheduler, SchedulerResult
from cdforge.core.stage_machine import StageMachine
from cdforge.core.trigger_filter import TriggerFilter
from cdforge.models.config import PipelineConfig
from cdforge.models.ledger import LedgerEntry
from cdforge.models.reports import FailureSummary, PipelineReport, RunStatus
from cdforge.models.stages import StageState
from cdforge.models.trigger import EnvironmentMetadata, TriggerContext
from cdforge.stages import STAGE_REGISTRY, RunContext

logger = logging.getLogger(__name__)

TEARDOWN_GUARD_ID = "teardown_guard"


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"cd-{ts}-{uuid.uuid4().hex[:6]}"


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    config:
        Pipeline configuration. Built from ``prod_config`` if not provided.
    run_id:
        Identifier for the run. Generated if None.
    prod_config:
        Env-driven settings; checked by the production guard.
    collaborators:
        External systems. Defaults to the shell-backed set.
    trigger_filter:
        Which triggers start a run. Defaults to the standard filter.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        run_id: str | None = None,
        *,
        prod_config: ProdConfig | None = None,
        collaborators: Collaborators | None = None,
        trigger_filter: TriggerFilter | None = None,
    ) -> None:
        self._prod_config = prod_config or ProdConfig()

        # Production guard — fails hard if production constraints are violated
        enforce_production_constraints(self._prod_config)

        self.config = config or PipelineConfig.from_settings(self._prod_config)
        validate_plan(self.config.rollout_plan)

        # Core subsystems
        self.ledger = RunLedger(self.config.ledger_db_path)
        self.cache = ArtifactCache(self.config.artifact_cache_path)
        self.graph = PrerequisiteGraph(self.config.stage_definitions)
        self.stage_machine = StageMachine(self.ledger, self.graph)
        self.registry = RunRegistry(self.config.run_registry_path)
        self.collaborators = collaborators or shell_collaborators(
            self.config, CredentialSettings().to_credentials()
        )
        self.trigger_filter = trigger_filter or TriggerFilter()

        self.run_id = run_id or new_run_id()
        self.stages = {sid: STAGE_REGISTRY[sid]() for sid in self.graph.stage_ids}

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(
        self,
        trigger: TriggerContext,
        changed_paths: Iterable[str] | None = None,
    ) -> PipelineReport:
        """Run the whole pipeline for *trigger* and report the outcome."""
        if not self.trigger_filter.accepts(trigger, changed_paths):
            return PipelineReport(run_id=self.run_id, status=RunStatus.FILTERED)

        logger.info(
            "run %s started: %s %s by %s",
            self.run_id,
            trigger.event.value,
            trigger.ref,
            trigger.actor,
        )

        try:
            metadata = resolve_metadata(trigger)
        except ResolutionError as exc:
            return self._abort_unresolved(exc)

        options = resolve_run_options(trigger, bot_actor=self.config.dependency_bot_actor)
        group = concurrency_group(metadata.namespace)
        token = self.registry.claim(group, self.run_id)

        context = RunContext(
            run_id=self.run_id,
            trigger=trigger,
            metadata=metadata,
            options=options,
            config=self.config,
            collaborators=self.collaborators,
            cache=self.cache,
            ledger=self.ledger,
            work_dir=self.config.work_dir / self.run_id,
            cancel_token=token,
        )
        scheduler = DagScheduler(
            self.stage_machine, self.stages, max_parallel=self.config.max_parallel
        )
        try:
            result = scheduler.run(context, token)
            if self._needs_teardown_guard(context, result):
                self._teardown_guard(context)
        finally:
            self.registry.release(group, self.run_id)

        return self._report(context, metadata, result)

    def _abort_unresolved(self, exc: ResolutionError) -> PipelineReport:
        logger.error("run %s aborted: %s", self.run_id, exc)
        self.stage_machine.initialize_run(self.run_id)
        self.stage_machine.transition(self.run_id, "metadata", StageState.RUNNING)
        self.stage_machine.transition(
            self.run_id, "metadata", StageState.FAILED, detail=str(exc)
        )
        for stage_id, state in self.stage_machine.get_all_states(self.run_id).items():
            if state == StageState.NOT_STARTED:
                self.stage_machine.transition(
                    self.run_id, stage_id, StageState.BLOCKED, detail="metadata unresolved"
                )
        return PipelineReport(
            run_id=self.run_id,
            status=RunStatus.FAILED,
            stage_states=self.stage_machine.get_all_states(self.run_id),
            first_failure=FailureSummary(
                stage_id=exc.stage_id or "metadata",
                error_type=type(exc).__name__,
                message=str(exc),
            ),
        )

    # ------------------------------------------------------------------
    # Teardown guard
    # ------------------------------------------------------------------

    def _needs_teardown_guard(self, context: RunContext, result: SchedulerResult) -> bool:
        if not (self.config.always_teardown_on_pr and context.trigger.is_pull_request):
            return False
        if context.namespace_deleted or result.cancelled:
            return False
        return (
            result.states.get("dev_reset") == StageState.PASSED
            and result.states.get("rollout") in (StageState.FAILED, StageState.BLOCKED)
        )

    def _teardown_guard(self, context: RunContext) -> None:
        """Best-effort namespace deletion after a failed pull-request rollout."""
        namespace = context.metadata.namespace
        logger.warning("teardown guard: deleting %s after failed rollout", namespace)
        manager = EnvironmentLifecycleManager(self.collaborators.control_plane)
        try:
            manager.teardown(namespace, stage_id=TEARDOWN_GUARD_ID)
        except PipelineError as exc:
            logger.error("teardown guard could not delete %s: %s", namespace, exc)
            transition, detail = "not_started->failed", str(exc)
        else:
            context.namespace_deleted = True
            transition, detail = "not_started->passed", f"deleted {namespace}"
        self.ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                stage_id=TEARDOWN_GUARD_ID,
                state_transition=transition,
                detail=detail,
            )
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _report(
        self,
        context: RunContext,
        metadata: EnvironmentMetadata,
        result: SchedulerResult,
    ) -> PipelineReport:
        if result.failures:
            status = RunStatus.FAILED
        elif result.cancelled:
            status = RunStatus.CANCELLED
        else:
            status = RunStatus.PASSED

        first_failure = None
        if result.first_failure is not None:
            exc = result.first_failure
            first_failure = FailureSummary(
                stage_id=exc.stage_id,
                error_type=type(exc).__name__,
                message=str(exc),
                metadata=metadata.snapshot(),
            )

        report = PipelineReport(
            run_id=self.run_id,
            status=status,
            metadata=metadata.snapshot(),
            stage_states=result.states,
            rollout_steps=context.rollout_states,
            first_failure=first_failure,
            namespace_deleted=context.namespace_deleted,
        )
        logger.info("run %s %s", self.run_id, status.value)
        return report

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        """Return current state of all stages."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for the current run."""
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's ledger."""
        return self.ledger.verify_chain(self.run_id)
