"""Adversarial tests — state machine and prerequisite bypass attempts.

These tests verify that:
1. Invalid state transitions are always rejected
2. Prerequisites cannot be bypassed
3. Cascade blocking is thorough (no orphaned stages)
4. Terminal states cannot be exited
"""

from __future__ import annotations

import pytest

from cdforge.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from cdforge.core.run_ledger import RunLedger
from cdforge.core.stage_machine import InvalidTransitionError, StageMachine
from cdforge.models.stages import DEFAULT_STAGE_DEFINITIONS, StageState

_ROOTS = ["metadata", "build_enclave", "build_gateway", "docker_base"]


@pytest.fixture
def sm(tmp_path) -> tuple[StageMachine, str]:
    ledger = RunLedger(tmp_path / "ledger.db")
    graph = PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)
    machine = StageMachine(ledger, graph)
    run_id = "cd-adversarial-sm"
    machine.initialize_run(run_id)
    return machine, run_id


def _pass(machine: StageMachine, run_id: str, *stage_ids: str) -> None:
    for sid in stage_ids:
        machine.transition(run_id, sid, StageState.RUNNING)
        machine.transition(run_id, sid, StageState.PASSED)


class TestPrerequisiteBypassAttempts:
    """Try to start stages without satisfying prerequisites."""

    def test_cannot_publish_images_before_builds(self, sm):
        machine, run_id = sm
        _pass(machine, run_id, "metadata", "docker_base")
        with pytest.raises(PrerequisiteNotMetError, match="build_enclave"):
            machine.transition(run_id, "images", StageState.RUNNING)

    def test_cannot_publish_charts_before_images(self, sm):
        machine, run_id = sm
        _pass(machine, run_id, *_ROOTS)
        with pytest.raises(PrerequisiteNotMetError, match="images"):
            machine.transition(run_id, "charts", StageState.RUNNING)

    def test_cannot_roll_out_without_reset(self, sm):
        """Charts alone are not enough: the namespace must be reset first."""
        machine, run_id = sm
        _pass(machine, run_id, *_ROOTS, "images", "charts")
        with pytest.raises(PrerequisiteNotMetError, match="dev_reset"):
            machine.transition(run_id, "rollout", StageState.RUNNING)

    def test_cannot_clean_up_before_rollout(self, sm):
        machine, run_id = sm
        with pytest.raises(PrerequisiteNotMetError):
            machine.transition(run_id, "cleanup", StageState.RUNNING)

    def test_blocked_prerequisite_does_not_satisfy(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "build_gateway", StageState.RUNNING)
        machine.transition(run_id, "build_gateway", StageState.FAILED)
        _pass(machine, run_id, "metadata", "build_enclave", "docker_base")
        assert machine.get_current_state(run_id, "images") == StageState.BLOCKED
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "images", StageState.RUNNING)


class TestInvalidTransitionAttempts:
    """Try to make transitions that violate the VALID_TRANSITIONS table."""

    def test_cannot_go_not_started_to_passed(self, sm):
        machine, run_id = sm
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "metadata", StageState.PASSED)

    def test_cannot_go_not_started_to_failed(self, sm):
        machine, run_id = sm
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "metadata", StageState.FAILED)

    @pytest.mark.parametrize(
        "terminal", [StageState.PASSED, StageState.FAILED, StageState.CANCELLED]
    )
    def test_terminal_states_cannot_be_exited(self, sm, terminal):
        machine, run_id = sm
        machine.transition(run_id, "build_gateway", StageState.RUNNING)
        machine.transition(run_id, "build_gateway", terminal)
        for target in StageState:
            with pytest.raises(InvalidTransitionError):
                machine.transition(run_id, "build_gateway", target)

    def test_skipped_stage_cannot_run(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "build_enclave", StageState.SKIPPED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "build_enclave", StageState.RUNNING)

    def test_no_retry_after_failure(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "metadata", StageState.RUNNING)
        machine.transition(run_id, "metadata", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "metadata", StageState.RUNNING)


class TestCascadeCompleteness:
    def test_failed_build_blocks_every_downstream_stage(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "build_enclave", StageState.RUNNING)
        machine.transition(run_id, "build_enclave", StageState.FAILED)
        states = machine.get_all_states(run_id)
        for sid in ["images", "charts", "rollout", "cleanup"]:
            assert states[sid] == StageState.BLOCKED, sid
        # Independent branches are untouched
        for sid in ["metadata", "build_gateway", "docker_base", "dev_reset"]:
            assert states[sid] == StageState.NOT_STARTED, sid

    def test_failed_metadata_blocks_everything_downstream(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "metadata", StageState.RUNNING)
        machine.transition(run_id, "metadata", StageState.FAILED)
        states = machine.get_all_states(run_id)
        for sid in ["images", "charts", "dev_reset", "rollout", "cleanup"]:
            assert states[sid] == StageState.BLOCKED, sid

    def test_cascade_is_recorded_in_ledger(self, sm, tmp_path):
        machine, run_id = sm
        machine.transition(run_id, "dev_reset", StageState.BLOCKED)
        machine.transition(run_id, "metadata", StageState.RUNNING)
        machine.transition(run_id, "metadata", StageState.FAILED)

        # A fresh machine over the same ledger rebuilds identical states
        fresh = StageMachine(
            RunLedger(tmp_path / "ledger.db"), PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)
        )
        assert fresh.get_all_states(run_id) == machine.get_all_states(run_id)
