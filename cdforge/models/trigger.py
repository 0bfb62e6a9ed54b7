"""Trigger context and derived run metadata (immutable)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class EventKind(str, Enum):
    """The kind of event that started a pipeline run."""

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    TAG = "tag"
    MANUAL = "manual"


class TriggerContext(BaseModel):
    """Everything the pipeline knows about why it is running.

    Supplied once per run and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    actor: str
    event: EventKind
    ref: str  # "refs/heads/main", "refs/tags/v1.2.3", "refs/pull/42/merge"
    message: str = ""
    head_ref: str = ""  # PR source branch
    base_ref: str = ""  # PR target branch
    sha: str = ""
    run_number: int = 0

    @property
    def is_pull_request(self) -> bool:
        return self.event == EventKind.PULL_REQUEST


class EnvironmentMetadata(BaseModel):
    """Namespace and version tags derived from a TriggerContext.

    Computed once by the metadata resolver and shared read-only by every
    downstream stage.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str
    version_tag: str
    image_tag: str
    short_sha: str = ""

    def snapshot(self) -> dict[str, str]:
        return self.model_dump(mode="json")
