"""Unit tests for the CLI — command registration and behavior via typer.testing.CliRunner.

Every test runs from an empty temp directory with CDFORGE_* variables
cleared, and pipeline runs use ``--dry-run`` or the demo command so no
external tool is invoked.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cdforge.cli.app import app
from cdforge.core.run_ledger import RunLedger

runner = CliRunner()

SHA = "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in list(os.environ):
        if name.startswith("CDFORGE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _dry_run(state_dir: Path, *extra: str):
    return runner.invoke(
        app,
        [
            "--log-level",
            "WARNING",
            "run",
            "--ref",
            "refs/heads/main",
            "--sha",
            SHA,
            "--run-number",
            "7",
            "--dry-run",
            "--state-dir",
            str(state_dir),
            *extra,
        ],
    )


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_commands_registered(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "metadata", "plan", "status", "reset", "demo"):
            assert command in result.output


class TestPlanCommand:
    def test_shows_stages_and_rollout(self):
        result = runner.invoke(app, ["plan"])
        assert result.exit_code == 0
        assert "Stages" in result.output
        assert "Rollout plan" in result.output
        assert "cleanup" in result.output
        assert "deploy_v1_bv0" in result.output
        assert "upgrade_current_bv3" in result.output


class TestMetadataCommand:
    def test_push_to_main(self):
        result = runner.invoke(
            app, ["metadata", "--ref", "refs/heads/main", "--sha", SHA, "--run-number", "7"]
        )
        assert result.exit_code == 0
        assert "v0.0.0-main.7.sha-0123456" in result.output
        assert "cdforge-main" in result.output

    def test_pull_request_namespace(self):
        result = runner.invoke(
            app,
            [
                "metadata",
                "--event",
                "pull_request",
                "--ref",
                "refs/pull/42/merge",
                "--head-ref",
                "feature/widgets",
            ],
        )
        assert result.exit_code == 0
        assert "feature-widgets" in result.output
        assert "cdforge-feature-widgets" in result.output

    def test_skip_marker_reported(self):
        result = runner.invoke(
            app, ["metadata", "--ref", "refs/heads/main", "--message", "docs [skip charts]"]
        )
        assert result.exit_code == 0
        assert "opted out with [skip charts]" in result.output

    def test_bot_actor_reported(self):
        result = runner.invoke(
            app, ["metadata", "--ref", "refs/heads/main", "--actor", "dependabot[bot]"]
        )
        assert result.exit_code == 0
        assert "dependency bot" in result.output

    def test_malformed_ref(self):
        result = runner.invoke(app, ["metadata", "--ref", "garbage"])
        assert result.exit_code == 1
        assert "Cannot resolve metadata" in result.output

    def test_error_keeps_bracketed_ref_text(self):
        result = runner.invoke(app, ["metadata", "--ref", "[bold]garbage"])
        assert result.exit_code == 1
        assert "[bold]garbage" in result.output


class TestRunCommand:
    def test_dry_run_passes(self, isolated: Path):
        state = isolated / "state"
        result = _dry_run(state)

        assert result.exit_code == 0, result.output
        assert "Recorded collaborator calls" in result.output
        assert "PASSED" in result.output
        assert (state / "ledger.db").exists()

    def test_dry_run_records_run_in_ledger(self, isolated: Path):
        state = isolated / "state"
        _dry_run(state)
        (run_id,) = RunLedger(state / "ledger.db").get_all_run_ids()
        assert run_id.startswith("cd-")
        assert RunLedger(state / "ledger.db").verify_chain(run_id) is True

    def test_filtered_trigger(self, isolated: Path):
        result = runner.invoke(
            app,
            ["run", "--ref", "refs/heads/experiment", "--dry-run", "--state-dir", str(isolated)],
        )
        assert result.exit_code == 0
        assert "nothing to run" in result.output

    def test_docs_only_change_filtered(self, isolated: Path):
        result = _dry_run(isolated / "state", "--changed", "README.md")
        assert result.exit_code == 0
        assert "nothing to run" in result.output

    def test_ref_required(self):
        result = runner.invoke(app, ["run"])
        assert result.exit_code != 0


class TestStatusCommand:
    def test_missing_ledger(self, isolated: Path):
        result = runner.invoke(app, ["status", "--ledger", str(isolated / "nope.db")])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_lists_runs(self, isolated: Path):
        state = isolated / "state"
        _dry_run(state)
        result = runner.invoke(app, ["status", "--ledger", str(state / "ledger.db")])
        assert result.exit_code == 0
        assert "Available runs" in result.output

    def test_unknown_run(self, isolated: Path):
        state = isolated / "state"
        _dry_run(state)
        result = runner.invoke(app, ["status", "cd-missing", "--ledger", str(state / "ledger.db")])
        assert result.exit_code == 1
        assert "Run not found" in result.output

    def test_snapshot_with_chain_verification(self, isolated: Path):
        state = isolated / "state"
        _dry_run(state)
        (run_id,) = RunLedger(state / "ledger.db").get_all_run_ids()

        result = runner.invoke(
            app, ["status", run_id, "--verify-chain", "--ledger", str(state / "ledger.db")]
        )
        assert result.exit_code == 0
        assert "valid" in result.output
        assert "cdforge Build Monitor" in result.output


class TestResetCommand:
    def test_dry_run_reset(self):
        result = runner.invoke(app, ["reset", "main", "--dry-run"])
        assert result.exit_code == 0
        assert "Namespace main reset." in result.output
        assert "reset" in result.output

    def test_dry_run_delete(self):
        result = runner.invoke(app, ["reset", "feature-widgets", "--delete", "--dry-run"])
        assert result.exit_code == 0
        assert "deleted" in result.output


class TestDemoCommand:
    def test_demo_passes(self, isolated: Path):
        result = runner.invoke(
            app, ["--log-level", "WARNING", "demo", "--state-dir", str(isolated / "demo")]
        )
        assert result.exit_code == 0, result.output
        assert "cdforge Demo Pipeline" in result.output
        assert "Namespace deleted: yes" in result.output
        assert "is valid" in result.output

    def test_demo_injected_failure(self, isolated: Path):
        result = runner.invoke(
            app,
            [
                "--log-level",
                "WARNING",
                "demo",
                "--state-dir",
                str(isolated / "demo"),
                "--fail",
                "test:2",
                "--calls",
            ],
        )
        assert result.exit_code == 1
        assert "FAILED" in result.output
        assert "TestFailure" in result.output
        assert "Recorded collaborator calls" in result.output
