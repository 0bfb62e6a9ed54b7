"""Unit tests for the MonitorRenderer — panels, state styling, run reports."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from rich.console import Console
from rich.panel import Panel

from cdforge.models.reports import FailureSummary, PipelineReport, RunStatus
from cdforge.models.stages import StageState
from cdforge.monitor.projection import MonitorSnapshot, StageStatus
from cdforge.monitor.renderer import _STATE_ICONS, _STATE_STYLES, MonitorRenderer


def _make_snapshot(
    chain_valid: bool = True,
    stages: list[StageStatus] | None = None,
    rollout_steps: list[StageStatus] | None = None,
) -> MonitorSnapshot:
    default_stages = stages or [
        StageStatus(stage_id="metadata", display_name="Environment Info", state=StageState.PASSED),
        StageStatus(
            stage_id="build_enclave",
            display_name="Build Hardware/Enclave Binaries",
            state=StageState.SKIPPED,
            detail="opted out with [skip build]",
        ),
    ]
    return MonitorSnapshot(
        run_id="cd-test-run-001",
        stages=default_stages,
        rollout_steps=rollout_steps or [],
        chain_valid=chain_valid,
        last_updated=datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc),
    )


def _render_text(renderable) -> str:
    console = Console(record=True, width=160, color_system=None)
    console.print(renderable)
    return console.export_text()


class TestStateMaps:
    @pytest.mark.parametrize("state", list(StageState))
    def test_every_state_styled(self, state: StageState):
        assert state in _STATE_STYLES
        assert state in _STATE_ICONS


class TestRenderSnapshot:
    def test_returns_panel(self):
        assert isinstance(MonitorRenderer().render_snapshot(_make_snapshot()), Panel)

    def test_stage_rows_and_summary(self):
        text = _render_text(MonitorRenderer().render_snapshot(_make_snapshot()))
        assert "cdforge Build Monitor" in text
        assert "Environment Info" in text
        assert "PASSED" in text
        assert "SKIPPED" in text
        assert "Progress: 2/2" in text
        assert "valid" in text

    def test_detail_markup_escaped(self):
        text = _render_text(MonitorRenderer().render_snapshot(_make_snapshot()))
        assert "[skip build]" in text

    def test_broken_chain(self):
        text = _render_text(MonitorRenderer().render_snapshot(_make_snapshot(chain_valid=False)))
        assert "BROKEN" in text

    def test_rollout_table_hidden_until_started(self):
        idle = [StageStatus(stage_id="deploy_v1_bv0", display_name="deploy_v1_bv0")]
        text = _render_text(MonitorRenderer().render_snapshot(_make_snapshot(rollout_steps=idle)))
        assert "Rollout step" not in text

    def test_rollout_table_shown_once_started(self):
        steps = [
            StageStatus(
                stage_id="deploy_v1_bv0", display_name="deploy_v1_bv0", state=StageState.PASSED
            ),
            StageStatus(
                stage_id="test_v1_bv0", display_name="test_v1_bv0", state=StageState.FAILED
            ),
        ]
        text = _render_text(MonitorRenderer().render_snapshot(_make_snapshot(rollout_steps=steps)))
        assert "Rollout step" in text
        assert "test_v1_bv0" in text
        assert "FAILED" in text


class TestRenderReport:
    def test_passed_report(self):
        report = PipelineReport(
            run_id="r1",
            status=RunStatus.PASSED,
            metadata={"namespace": "feature-widgets", "version_tag": "v0.0.0-feature-widgets.7"},
            namespace_deleted=True,
        )
        text = _render_text(MonitorRenderer().render_report(report))
        assert "Run Report" in text
        assert "PASSED" in text
        assert "feature-widgets" in text
        assert "Namespace deleted: yes" in text
        assert "First failure" not in text

    def test_failure_shows_stage_and_environment(self):
        report = PipelineReport(
            run_id="r1",
            status=RunStatus.FAILED,
            metadata={"namespace": "main"},
            first_failure=FailureSummary(
                stage_id="rollout",
                error_type="TestFailure",
                message="test step test_current_bv3 failed in main: [oops]",
                metadata={"namespace": "main", "version_tag": "v0.0.0-main.7"},
            ),
        )
        text = _render_text(MonitorRenderer().render_report(report))
        assert "FAILED" in text
        assert "First failure: rollout (TestFailure)" in text
        assert "[oops]" in text
        assert "version_tag = v0.0.0-main.7" in text

    @pytest.mark.parametrize("status", list(RunStatus))
    def test_every_status_renders(self, status: RunStatus):
        report = PipelineReport(run_id="r1", status=status)
        assert status.value.upper() in _render_text(MonitorRenderer().render_report(report))


class TestPrinting:
    def test_print_chain_verification(self):
        console = Console(record=True, width=120, color_system=None)
        renderer = MonitorRenderer(console)
        renderer.print_chain_verification("r1", True)
        renderer.print_chain_verification("r2", False)
        text = console.export_text()
        assert "Hash chain for run r1 is valid." in text
        assert "Hash chain for run r2 is BROKEN!" in text

    def test_print_snapshot_and_report(self):
        console = Console(record=True, width=160, color_system=None)
        renderer = MonitorRenderer(console)
        renderer.print_snapshot(_make_snapshot())
        renderer.print_report(PipelineReport(run_id="r1", status=RunStatus.CANCELLED))
        text = console.export_text()
        assert "cdforge Build Monitor" in text
        assert "CANCELLED" in text
