"""Tests for the concrete pipeline stages, run directly against recording collaborators."""

from __future__ import annotations

import pytest

from cdforge.collaborators import CallLog
from cdforge.core.errors import BuildFailure, MissingArtifactError, PublishFailure, TestFailure
from cdforge.core.environment import EnvironmentResetError
from cdforge.models.artifacts import ArtifactGroup, ArtifactKind
from cdforge.models.publish import CHART_MATRIX, IMAGE_MATRIX
from cdforge.models.stages import StageState
from cdforge.stages import STAGE_REGISTRY, get_stage
from cdforge.stages.build_common import ArtifactBuildStage
from cdforge.stages.build_enclave import measurement_name

VERSION = "v0.0.0-main.7.sha-0123456"


def _build_all(context) -> None:
    get_stage("build_enclave").run_stage(context)
    get_stage("build_gateway").run_stage(context)


class TestStageRegistry:
    def test_every_stage_registered(self, graph):
        assert sorted(STAGE_REGISTRY) == sorted(graph.stage_ids)

    def test_stage_ids_match_registry_keys(self):
        for stage_id in STAGE_REGISTRY:
            assert get_stage(stage_id).stage_id == stage_id

    def test_unknown_stage(self):
        with pytest.raises(KeyError, match="Unknown stage_id"):
            get_stage("ghost")

    def test_build_base_is_abstract(self):
        class HalfBuild(ArtifactBuildStage):
            group = ArtifactGroup.GATEWAY

            @property
            def stage_id(self) -> str:
                return "half"

            @property
            def display_name(self) -> str:
                return "Half"

            def targets(self, context):
                return ["grpc-proxy"]

        with pytest.raises(TypeError):
            HalfBuild()


class TestMetadataStage:
    def test_reports_resolved_values(self, make_context):
        result = get_stage("metadata").run_stage(make_context())
        assert result.output["namespace"] == "main"
        assert result.output["version"] == VERSION
        assert result.output["docker_org"] == "mobilecoin"
        assert result.input_hash and result.output_hash


class TestBuildStages:
    def test_enclave_build_and_measure(self, make_context, call_log: CallLog, pipeline_config):
        context = make_context()
        result = get_stage("build_enclave").run_stage(context)

        assert result.output["cache_hit"] is False
        bundle = context.bundle(ArtifactGroup.ENCLAVE)
        assert len(bundle.by_kind(ArtifactKind.EXECUTABLE)) == len(pipeline_config.enclave_targets)
        assert len(bundle.by_kind(ArtifactKind.SIGNED_ENCLAVE)) == 4
        assert "libview-enclave.css" in bundle.names()
        assert call_log.named("build") == [("build", "enclave", *pipeline_config.enclave_targets)]
        assert len(call_log.named("measure")) == 4
        assert result.artifact_references == [a.content_address for a in bundle.artifacts]

    def test_second_run_hits_cache(self, make_context, call_log: CallLog):
        get_stage("build_gateway").run_stage(make_context())
        context = make_context()
        result = get_stage("build_gateway").run_stage(context)

        assert result.output["cache_hit"] is True
        assert len(call_log.named("build")) == 1
        assert context.bundle(ArtifactGroup.GATEWAY).names() == ["grpc-proxy"]

    def test_cache_buster_forces_rebuild(self, make_context, call_log: CallLog, pipeline_config):
        get_stage("build_gateway").run_stage(make_context())
        busted = pipeline_config.model_copy(update={"cache_buster": "other"})
        result = get_stage("build_gateway").run_stage(make_context(config=busted))

        assert result.output["cache_hit"] is False
        assert len(call_log.named("build")) == 2

    def test_source_change_forces_rebuild(self, make_context, call_log: CallLog, source_root):
        get_stage("build_gateway").run_stage(make_context())
        (source_root / "go-grpc-gateway" / "main.go").write_text("package main // v2\n")
        result = get_stage("build_gateway").run_stage(make_context())
        assert result.output["cache_hit"] is False

    def test_toolchain_failure(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"build:gateway"}))
        with pytest.raises(BuildFailure, match="exited with code") as exc_info:
            get_stage("build_gateway").run_stage(context)
        assert exc_info.value.stage_id == "build_gateway"
        assert context.bundle(ArtifactGroup.GATEWAY) is None

    def test_missing_target_output(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"target:mc-watcher"}))
        with pytest.raises(BuildFailure, match="no output for: mc-watcher"):
            get_stage("build_enclave").run_stage(context)

    def test_missing_signed_enclave(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(signed_objects=[]))
        with pytest.raises(BuildFailure, match="Signed enclaves missing"):
            get_stage("build_enclave").run_stage(context)

    def test_measurement_failure(self, make_context, make_collaborators):
        collaborators = make_collaborators(fail_on={"measure:libview-enclave.signed.so"})
        with pytest.raises(BuildFailure, match="Measurement of libview-enclave.signed.so"):
            get_stage("build_enclave").run_stage(make_context(collaborators=collaborators))

    def test_failed_build_is_not_cached(self, make_context, make_collaborators, call_log):
        broken = make_collaborators(fail_on={"build:gateway"})
        with pytest.raises(BuildFailure):
            get_stage("build_gateway").run_stage(make_context(collaborators=broken))
        result = get_stage("build_gateway").run_stage(make_context())
        assert result.output["cache_hit"] is False

    def test_measurement_name(self):
        assert measurement_name("libview-enclave.signed.so") == "libview-enclave.css"
        with pytest.raises(ValueError):
            measurement_name("libview-enclave.so")


class TestDockerBaseStage:
    def test_tags(self, make_context, call_log: CallLog):
        get_stage("docker_base").run_stage(make_context())
        assert call_log.calls == [
            (
                "image",
                "runtime-base",
                "mobilecoin/runtime-base:sha-0123456",
                "mobilecoin/runtime-base:latest",
            )
        ]

    def test_failure(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"image:runtime-base"}))
        with pytest.raises(PublishFailure) as exc_info:
            get_stage("docker_base").run_stage(context)
        assert exc_info.value.failed_entries == ["runtime-base"]


class TestImagePublishStage:
    def test_requires_fresh_bundles(self, make_context):
        with pytest.raises(MissingArtifactError, match="enclave and gateway"):
            get_stage("images").run_stage(make_context())

    def test_publishes_matrix(self, make_context, call_log: CallLog):
        context = make_context()
        _build_all(context)
        get_stage("images").run_stage(context)

        images = call_log.named("image")
        assert sorted(c[1] for c in images) == sorted(IMAGE_MATRIX)
        assert ("image", "watcher", f"mobilecoin/watcher:{VERSION}") in images
        assert context.published_images == IMAGE_MATRIX

    def test_build_context_layout(self, make_context):
        context = make_context()
        _build_all(context)
        get_stage("images").run_stage(context)

        root = context.work_dir / "docker-context"
        assert (root / "rust_build_artifacts" / "mc-watcher").is_file()
        assert (root / "rust_build_artifacts" / "libview-enclave.css").is_file()
        assert (root / "go_build_artifacts" / "grpc-proxy").is_file()

    def test_failed_entry_does_not_stop_siblings(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"image:watcher"}))
        _build_all(context)
        with pytest.raises(PublishFailure, match="1 of 10 images failed") as exc_info:
            get_stage("images").run_stage(context)
        assert exc_info.value.failed_entries == ["watcher"]
        assert len(context.published_images) == len(IMAGE_MATRIX) - 1


class TestChartPublishStage:
    def test_requires_every_image(self, make_context):
        context = make_context()
        context.set_published_images(IMAGE_MATRIX[:-1])
        with pytest.raises(MissingArtifactError, match="missing: watcher"):
            get_stage("charts").run_stage(context)

    def test_charts_versioned_like_images(self, make_context, call_log: CallLog):
        context = make_context()
        context.set_published_images(IMAGE_MATRIX)
        get_stage("charts").run_stage(context)

        charts = call_log.named("chart")
        assert sorted(c[1] for c in charts) == sorted(CHART_MATRIX)
        assert all(c[2:] == (VERSION, VERSION) for c in charts)
        assert context.published_charts == CHART_MATRIX

    def test_chart_failure(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"chart:watcher"}))
        context.set_published_images(IMAGE_MATRIX)
        with pytest.raises(PublishFailure) as exc_info:
            get_stage("charts").run_stage(context)
        assert exc_info.value.failed_entries == ["watcher"]


class TestEnvironmentStages:
    def test_dev_reset_keeps_namespace(self, make_context, call_log: CallLog):
        result = get_stage("dev_reset").run_stage(make_context())
        assert call_log.calls == [("reset", "main")]
        assert result.output == {"namespace": "main", "deleted": False}

    def test_dev_reset_failure(self, make_context, make_collaborators):
        context = make_context(collaborators=make_collaborators(fail_on={"reset"}))
        with pytest.raises(EnvironmentResetError):
            get_stage("dev_reset").run_stage(context)

    def test_cleanup_deletes_pr_namespace(self, make_context, pr_trigger, call_log: CallLog):
        context = make_context(trigger=pr_trigger)
        get_stage("cleanup").run_stage(context)
        assert call_log.calls == [("delete", "feature-widgets")]
        assert context.namespace_deleted is True


class TestRolloutStage:
    def test_full_rollout(self, make_context, call_log: CallLog):
        context = make_context()
        context.set_published_charts(CHART_MATRIX)
        result = get_stage("rollout").run_stage(context)

        assert all(v == "passed" for v in result.output["steps"].values())
        assert len(call_log.named("deploy")) == 3
        assert ("deploy", "main", VERSION, "2", "blue") in call_log.calls

    def test_incomplete_charts_fail_at_current_deploy(self, make_context, call_log: CallLog):
        context = make_context()
        context.set_published_charts(CHART_MATRIX[:-1])
        with pytest.raises(MissingArtifactError):
            get_stage("rollout").run_stage(context)

        states = context.rollout_states
        assert states["test_v2_bv2"] == StageState.PASSED
        assert states["deploy_current_bv2"] == StageState.FAILED
        assert states["test_current_bv3"] == StageState.BLOCKED

    def test_failure_keeps_step_states(self, make_context, make_collaborators):
        collaborators = make_collaborators(fail_on={"test:0"})
        context = make_context(collaborators=collaborators)
        context.set_published_charts(CHART_MATRIX)
        with pytest.raises(TestFailure):
            get_stage("rollout").run_stage(context)
        assert context.rollout_states["test_v1_bv0"] == StageState.FAILED

    def test_steps_written_to_ledger(self, make_context, ledger, run_id):
        context = make_context()
        context.set_published_charts(CHART_MATRIX)
        get_stage("rollout").run_stage(context)
        stage_ids = {e.stage_id for e in ledger.get_run_entries(run_id)}
        assert "rollout:upgrade_current_bv3" in stage_ids
