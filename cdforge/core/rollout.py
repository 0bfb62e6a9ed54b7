"""Staged rollout state machine.

Walks a rollout plan strictly in order against one shared namespace:
deploy a release line, test it, upgrade it in place, test again, and so
on. The first failing step halts the machine; nothing is retried and the
namespace is left as the failing step found it.

Every step transition is written to the Run Ledger under
``rollout:<step_id>``.
"""

from __future__ import annotations

import logging

from cdforge.collaborators.base import ClusterControlPlane, CommandResult
from cdforge.core.errors import (
    DeployFailure,
    MissingArtifactError,
    RolloutFailure,
    TestFailure,
    UpgradeFailure,
)
from cdforge.core.run_ledger import RunLedger
from cdforge.core.run_registry import CancelToken
from cdforge.models.ledger import LedgerEntry
from cdforge.models.rollout import (
    TESTED_BLOCK_VERSIONS,
    ReleaseConfig,
    ReleaseLine,
    RolloutPhase,
    RolloutStep,
    StepKind,
    TestConfig,
)
from cdforge.models.stages import StageState

logger = logging.getLogger(__name__)

ROLLOUT_STAGE_ID = "rollout"


class InvalidRolloutPlanError(ValueError):
    """Raised when a rollout plan breaks an ordering rule."""


def validate_plan(plan: list[RolloutStep]) -> None:
    """Check a plan before any step runs.

    Rules:
    - step ids are unique and the first step is a deploy;
    - block versions never decrease across the plan;
    - consecutive deploys use different ingest colors;
    - an upgrade raises the block version of the running release line
      without changing its color;
    - a test checks exactly what is currently deployed, at a block
      version the test suite covers.
    """
    if not plan:
        raise InvalidRolloutPlanError("Rollout plan is empty")

    ids = [s.step_id for s in plan]
    if len(set(ids)) != len(ids):
        raise InvalidRolloutPlanError(f"Duplicate step ids in rollout plan: {ids}")
    if plan[0].kind != StepKind.DEPLOY:
        raise InvalidRolloutPlanError(
            f"Rollout plan must start with a deploy, not {plan[0].kind.value}"
        )

    for prev, step in zip(plan, plan[1:]):
        if step.phase.block_version < prev.phase.block_version:
            raise InvalidRolloutPlanError(
                f"Block version decreases at {step.step_id}: "
                f"{prev.phase.block_version} -> {step.phase.block_version}"
            )

    deploys = [s for s in plan if s.kind == StepKind.DEPLOY]
    for prev, step in zip(deploys, deploys[1:]):
        if step.phase.ingest_color == prev.phase.ingest_color:
            raise InvalidRolloutPlanError(
                f"Consecutive deploys {prev.step_id} and {step.step_id} "
                f"both target ingest color {step.phase.ingest_color.value}"
            )

    deployed: RolloutPhase = plan[0].phase
    for step in plan[1:]:
        if step.kind == StepKind.DEPLOY:
            deployed = step.phase
        elif step.kind == StepKind.UPGRADE:
            if step.phase.block_version <= deployed.block_version:
                raise InvalidRolloutPlanError(
                    f"Upgrade {step.step_id} does not raise the block version"
                )
            if (
                step.phase.ingest_color != deployed.ingest_color
                or step.phase.release_line != deployed.release_line
            ):
                raise InvalidRolloutPlanError(
                    f"Upgrade {step.step_id} changes more than the block version"
                )
            deployed = step.phase
        elif step.phase != deployed:
            raise InvalidRolloutPlanError(
                f"Test {step.step_id} does not match the deployed phase"
            )
        elif step.phase.block_version not in TESTED_BLOCK_VERSIONS:
            raise InvalidRolloutPlanError(
                f"Test {step.step_id} checks block version "
                f"{step.phase.block_version}, which has no test suite"
            )


class RolloutStateMachine:
    """Runs a validated rollout plan against one namespace.

    Parameters
    ----------
    control_plane:
        The cluster collaborator.
    plan:
        Ordered rollout steps; validated at construction.
    namespace:
        The namespace every step targets.
    release_tags:
        Version tag per release line. A line mapped to an empty tag has
        no published artifacts in this run.
    chart_repo, docker_org:
        Passed through to every deploy and upgrade.
    ledger, run_id:
        Where step transitions are recorded.
    cancel_token:
        Checked before every step.
    """

    def __init__(
        self,
        control_plane: ClusterControlPlane,
        plan: list[RolloutStep],
        *,
        namespace: str,
        release_tags: dict[ReleaseLine, str],
        chart_repo: str = "",
        docker_org: str = "",
        ledger: RunLedger | None = None,
        run_id: str = "",
        cancel_token: CancelToken | None = None,
    ) -> None:
        validate_plan(plan)
        self._control_plane = control_plane
        self._plan = list(plan)
        self._namespace = namespace
        self._release_tags = dict(release_tags)
        self._chart_repo = chart_repo
        self._docker_org = docker_org
        self._ledger = ledger
        self._run_id = run_id
        self._cancel_token = cancel_token
        self.step_states: dict[str, StageState] = {
            s.step_id: StageState.NOT_STARTED for s in self._plan
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self) -> dict[str, StageState]:
        """Run every step in order.

        Raises the failing step's ``RolloutFailure`` subclass,
        ``MissingArtifactError`` when a release line has nothing
        published, or ``PipelineCancelledError`` when superseded. Steps
        after the halt are marked BLOCKED (or CANCELLED).
        """
        for index, step in enumerate(self._plan):
            if self._cancel_token is not None and self._cancel_token.cancelled:
                self._close_remaining(index, StageState.CANCELLED, "run superseded")
                self._cancel_token.raise_if_cancelled(ROLLOUT_STAGE_ID)

            self._transition(step.step_id, StageState.RUNNING)
            try:
                self._execute(step)
            except (RolloutFailure, MissingArtifactError) as exc:
                self._halt(index, step, str(exc))
                raise
            except Exception as exc:
                self._halt(index, step, f"{type(exc).__name__}: {exc}")
                raise
            self._transition(step.step_id, StageState.PASSED)

        return dict(self.step_states)

    def _execute(self, step: RolloutStep) -> None:
        logger.info(
            "rollout %s: %s block=%d color=%s line=%s",
            step.step_id,
            step.kind.value,
            step.phase.block_version,
            step.phase.ingest_color.value,
            step.phase.release_line.value,
        )
        if step.kind == StepKind.TEST:
            test = TestConfig.for_block(
                self._namespace,
                step.phase.ingest_color,
                step.phase.block_version,
                fog_distribution=step.fog_distribution,
            )
            self._check(self._control_plane.run_tests(self._namespace, test), step, TestFailure)
            return

        release = self._release_config(step)
        if step.kind == StepKind.DEPLOY:
            self._check(self._control_plane.deploy(self._namespace, release), step, DeployFailure)
        else:
            self._check(self._control_plane.upgrade(self._namespace, release), step, UpgradeFailure)

    def _release_config(self, step: RolloutStep) -> ReleaseConfig:
        version_tag = self._release_tags.get(step.phase.release_line, "")
        if not version_tag:
            raise MissingArtifactError(
                f"{step.step_id} needs the {step.phase.release_line.value} release, "
                f"which was not published in this run",
                stage_id=ROLLOUT_STAGE_ID,
            )
        return ReleaseConfig(
            namespace=self._namespace,
            version_tag=version_tag,
            block_version=step.phase.block_version,
            ingest_color=step.phase.ingest_color,
            minting_enabled=step.phase.minting_enabled,
            chart_repo=self._chart_repo,
            docker_org=self._docker_org,
        )

    def _check(
        self, result: CommandResult, step: RolloutStep, error: type[RolloutFailure]
    ) -> None:
        if not result.ok:
            raise error(
                f"{step.kind.value} step {step.step_id} failed in "
                f"{self._namespace}: {result.detail}",
                stage_id=ROLLOUT_STAGE_ID,
                step_id=step.step_id,
            )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, step_id: str, target: StageState, detail: str = "") -> None:
        current = self.step_states[step_id]
        self.step_states[step_id] = target
        if target == StageState.FAILED:
            logger.error("rollout %s failed: %s", step_id, detail)
        elif target != StageState.RUNNING:
            logger.info("rollout %s %s", step_id, target.value)
        if self._ledger is not None:
            self._ledger.append(
                LedgerEntry(
                    run_id=self._run_id,
                    stage_id=f"{ROLLOUT_STAGE_ID}:{step_id}",
                    state_transition=f"{current.value}->{target.value}",
                    detail=detail,
                )
            )

    def _halt(self, index: int, step: RolloutStep, detail: str) -> None:
        self._transition(step.step_id, StageState.FAILED, detail)
        self._close_remaining(index + 1, StageState.BLOCKED, f"{step.step_id} failed")

    def _close_remaining(self, start: int, state: StageState, detail: str) -> None:
        for step in self._plan[start:]:
            if self.step_states[step.step_id] == StageState.NOT_STARTED:
                self._transition(step.step_id, state, detail)
