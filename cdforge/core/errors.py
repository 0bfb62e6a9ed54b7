"""Pipeline error taxonomy.

Every fatal pipeline condition is a ``PipelineError`` carrying the id of
the stage that raised it. A skipped stage is not an error; a later stage
that needs the skipped stage's output raises ``MissingArtifactError``.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for fatal pipeline conditions."""

    def __init__(self, message: str, *, stage_id: str = "") -> None:
        super().__init__(message)
        self.stage_id = stage_id


class ResolutionError(PipelineError):
    """Raised when the trigger context cannot be resolved into metadata.

    Aborts the run before any stage starts.
    """


class BuildFailure(PipelineError):
    """Raised when a toolchain or signing step exits nonzero or an
    expected output file is missing."""


class MissingArtifactError(PipelineError):
    """Raised when a stage needs artifacts that an earlier stage did not
    produce because it was skipped."""


class PublishFailure(PipelineError):
    """Raised when one or more entries of a publish matrix failed.

    Sibling entries have already been attempted by the time this is
    raised.
    """

    def __init__(
        self, message: str, *, stage_id: str = "", failed_entries: list[str] | None = None
    ) -> None:
        super().__init__(message, stage_id=stage_id)
        self.failed_entries = list(failed_entries or [])


class RolloutFailure(PipelineError):
    """Base for failures inside the staged rollout; halts the rollout."""

    def __init__(self, message: str, *, stage_id: str = "", step_id: str = "") -> None:
        super().__init__(message, stage_id=stage_id)
        self.step_id = step_id


class DeployFailure(RolloutFailure):
    """A deploy step failed."""


class TestFailure(RolloutFailure):
    """A test step failed."""

    __test__ = False  # not a pytest class


class UpgradeFailure(RolloutFailure):
    """An in-place block-version upgrade failed."""


class PipelineCancelledError(PipelineError):
    """Raised when a newer run for the same branch/PR has claimed the
    concurrency group."""
