"""Tests for MonitorProjection — pure read-only view over the RunLedger.

Verifies that:
1. MonitorProjection re-derives state from the ledger (no cached state).
2. Rollout steps are projected separately from stages.
3. Chain validity is checked without raising.
"""

from __future__ import annotations

import sqlite3

from cdforge.core.run_ledger import RunLedger
from cdforge.core.stage_machine import StageMachine
from cdforge.models.ledger import LedgerEntry
from cdforge.models.stages import StageState
from cdforge.monitor.projection import MonitorProjection


class TestMonitorSnapshotBasic:
    def test_empty_run_produces_snapshot(self, ledger: RunLedger):
        snap = MonitorProjection(ledger).snapshot("nonexistent-run")
        assert snap.run_id == "nonexistent-run"
        assert snap.total_stages == 9
        assert snap.completed_count == 0
        assert snap.chain_valid is True
        assert all(s.state == StageState.NOT_STARTED for s in snap.rollout_steps)

    def test_stages_ordered_by_ordinal(self, ledger: RunLedger):
        snap = MonitorProjection(ledger).snapshot("r")
        ids = [s.stage_id for s in snap.stages]
        assert ids[0] == "metadata"
        assert ids[-1] == "cleanup"
        assert ids.index("dev_reset") < ids.index("build_enclave")

    def test_snapshot_reflects_ledger_entries(
        self, ledger: RunLedger, stage_machine: StageMachine, run_id: str
    ):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "metadata", StageState.RUNNING)
        stage_machine.transition(
            run_id, "metadata", StageState.PASSED, artifact_references=["sha256:aa"]
        )
        stage_machine.transition(
            run_id, "build_enclave", StageState.SKIPPED, detail="opted out with [skip build]"
        )

        snap = MonitorProjection(ledger).snapshot(run_id)
        by_id = {s.stage_id: s for s in snap.stages}
        assert by_id["metadata"].state == StageState.PASSED
        assert by_id["metadata"].artifact_refs == ["sha256:aa"]
        assert by_id["build_enclave"].state == StageState.SKIPPED
        assert by_id["build_enclave"].detail == "opted out with [skip build]"
        assert snap.completed_count == 2
        assert snap.artifact_count == 1

    def test_projection_holds_no_state(
        self, ledger: RunLedger, stage_machine: StageMachine, run_id: str
    ):
        projection = MonitorProjection(ledger)
        stage_machine.initialize_run(run_id)
        assert projection.snapshot(run_id).running_stages == []

        stage_machine.transition(run_id, "metadata", StageState.RUNNING)
        assert [s.stage_id for s in projection.snapshot(run_id).running_stages] == ["metadata"]

    def test_failed_and_blocked(self, ledger: RunLedger, stage_machine: StageMachine, run_id):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "docker_base", StageState.RUNNING)
        stage_machine.transition(run_id, "docker_base", StageState.FAILED, detail="boom")

        snap = MonitorProjection(ledger).snapshot(run_id)
        assert [s.stage_id for s in snap.failed_stages] == ["docker_base"]
        assert {s.stage_id for s in snap.blocked_stages} == {
            "images",
            "charts",
            "rollout",
            "cleanup",
        }

    def test_rollout_steps_projected(self, ledger: RunLedger, run_id: str):
        ledger.append(LedgerEntry(
            run_id=run_id,
            stage_id="rollout:deploy_v1_bv0",
            state_transition="not_started->running",
        ))
        ledger.append(LedgerEntry(
            run_id=run_id,
            stage_id="rollout:deploy_v1_bv0",
            state_transition="running->passed",
        ))

        snap = MonitorProjection(ledger).snapshot(run_id)
        steps = {s.stage_id: s for s in snap.rollout_steps}
        assert len(steps) == 10
        assert steps["deploy_v1_bv0"].state == StageState.PASSED
        assert steps["test_v1_bv0"].state == StageState.NOT_STARTED
        # Step entries never leak into the stage list
        assert all(not s.stage_id.startswith("rollout:") for s in snap.stages)

    def test_unknown_target_state_ignored(self, ledger: RunLedger, run_id: str):
        ledger.append(LedgerEntry(
            run_id=run_id, stage_id="metadata", state_transition="not_started->waived"
        ))
        snap = MonitorProjection(ledger).snapshot(run_id)
        assert snap.stages[0].state == StageState.NOT_STARTED


class TestChainValidity:
    def test_tampered_chain_reported_not_raised(
        self, ledger: RunLedger, stage_machine: StageMachine, run_id: str
    ):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "metadata", StageState.RUNNING)

        with sqlite3.connect(str(ledger._db_path)) as conn:
            conn.execute("UPDATE run_ledger SET detail = 'forged' WHERE run_id = ?", (run_id,))
            conn.commit()

        assert MonitorProjection(ledger).snapshot(run_id).chain_valid is False
