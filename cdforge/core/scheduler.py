"""DAG scheduler — topological stage execution with bounded concurrency.

Ready stages (every prerequisite PASSED or SKIPPED) are submitted to a
worker pool of ``max_parallel`` threads. A stage whose class is gated off
for this run, or whose definition excludes the trigger's event kind,
completes as SKIPPED without running. A failure blocks every transitive
dependent; independent branches keep running.

The cancel token is checked at every stage boundary. Once the run is
superseded nothing new is submitted, in-flight stages are allowed to
finish, and every stage that never started ends CANCELLED.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from cdforge.core.errors import PipelineCancelledError, PipelineError
from cdforge.core.gate import RunOptions
from cdforge.core.run_registry import CancelToken
from cdforge.core.stage_machine import StageMachine
from cdforge.models.stages import StageDefinition, StageState
from cdforge.models.trigger import EventKind
from cdforge.stages.base import BaseStage, RunContext, StageResult

logger = logging.getLogger(__name__)


class SchedulerResult:
    """Final stage states plus every failure, in the order they happened."""

    def __init__(
        self,
        states: dict[str, StageState],
        failures: list[PipelineError],
        cancelled: bool,
    ) -> None:
        self.states = states
        self.failures = failures
        self.cancelled = cancelled

    @property
    def first_failure(self) -> PipelineError | None:
        return self.failures[0] if self.failures else None

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.cancelled


class DagScheduler:
    """Runs registered stages over the prerequisite graph.

    Parameters
    ----------
    stage_machine:
        Owns stage states and the graph; records every transition.
    stages:
        stage_id -> stage instance. Every graph node must have one.
    max_parallel:
        Worker pool size.
    """

    def __init__(
        self,
        stage_machine: StageMachine,
        stages: dict[str, BaseStage],
        *,
        max_parallel: int = 4,
    ) -> None:
        missing = [sid for sid in stage_machine.graph.stage_ids if sid not in stages]
        if missing:
            raise ValueError(f"No stage registered for: {missing}")
        self._machine = stage_machine
        self._stages = stages
        self._max_parallel = max(1, max_parallel)

    @staticmethod
    def skip_reason(
        definition: StageDefinition, event: EventKind, options: RunOptions
    ) -> str:
        if definition.only_on_events is not None and event not in definition.only_on_events:
            return f"not run for {event.value} events"
        return options.skip_reason(definition.stage_class)

    def run(
        self,
        context: RunContext,
        cancel_token: CancelToken | None = None,
    ) -> SchedulerResult:
        run_id = context.run_id
        graph = self._machine.graph
        self._machine.initialize_run(run_id)

        failures: list[PipelineError] = []
        in_flight: dict[Future[StageResult], str] = {}
        cancelled = False

        with ThreadPoolExecutor(
            max_workers=self._max_parallel, thread_name_prefix="stage"
        ) as pool:
            while True:
                if not cancelled and cancel_token is not None and cancel_token.cancelled:
                    logger.warning("run %s superseded; no further stages start", run_id)
                    cancelled = True

                if not cancelled:
                    self._submit_ready(context, pool, in_flight)

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    stage_id = in_flight.pop(future)
                    error = self._finish(run_id, stage_id, future)
                    if isinstance(error, PipelineCancelledError):
                        cancelled = True
                    elif error is not None:
                        failures.append(error)

        if cancelled:
            for stage_id, state in self._machine.get_all_states(run_id).items():
                if state == StageState.NOT_STARTED:
                    self._machine.transition(
                        run_id, stage_id, StageState.CANCELLED, detail="run superseded"
                    )

        states = self._machine.get_all_states(run_id)
        logger.info(
            "run %s finished: %s",
            run_id,
            ", ".join(f"{sid}={states[sid].value}" for sid in graph.stage_ids),
        )
        return SchedulerResult(states=states, failures=failures, cancelled=cancelled)

    def _submit_ready(
        self,
        context: RunContext,
        pool: ThreadPoolExecutor,
        in_flight: dict[Future[StageResult], str],
    ) -> None:
        """Submit every ready stage, resolving skips until none are left."""
        run_id = context.run_id
        graph = self._machine.graph
        progressed = True
        while progressed:
            progressed = False
            for stage_id in self._machine.ready_stages(run_id):
                definition = graph.get_stage_definition(stage_id)
                reason = self.skip_reason(definition, context.trigger.event, context.options)
                if reason:
                    logger.info("%s skipped: %s", stage_id, reason)
                    self._machine.transition(
                        run_id, stage_id, StageState.SKIPPED, detail=reason
                    )
                    progressed = True
                    continue

                self._machine.transition(run_id, stage_id, StageState.RUNNING)
                in_flight[pool.submit(self._stages[stage_id].run_stage, context)] = stage_id

    def _finish(
        self, run_id: str, stage_id: str, future: Future[StageResult]
    ) -> PipelineError | None:
        try:
            result = future.result()
        except PipelineCancelledError as exc:
            self._machine.transition(
                run_id, stage_id, StageState.CANCELLED, detail=str(exc)
            )
            return exc
        except PipelineError as exc:
            if not exc.stage_id:
                exc.stage_id = stage_id
            self._machine.transition(
                run_id,
                stage_id,
                StageState.FAILED,
                detail=f"{type(exc).__name__}: {exc}",
            )
            return exc

        self._machine.transition(
            run_id,
            stage_id,
            StageState.PASSED,
            input_hash=result.input_hash,
            output_hash=result.output_hash,
            artifact_references=result.artifact_references,
        )
        return None
