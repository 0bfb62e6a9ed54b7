"""Conditional gate evaluator.

Decides, once per run, which stage classes execute. The commit message is
scanned exactly once in ``resolve_run_options``; stages receive the
resulting ``RunOptions`` as data and never look at the message.

Rules, in order:
1. A run triggered by the dependency bot suppresses every stage except
   metadata.
2. An opt-out marker in the message suppresses its own class only:
   ``[skip build]`` does not suppress image publishing.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from cdforge.models.stages import StageClass
from cdforge.models.trigger import TriggerContext

DEFAULT_BOT_ACTOR = "dependabot[bot]"

SKIP_MARKERS: dict[StageClass, str] = {
    StageClass.BUILD: "[skip build]",
    StageClass.DOCKER: "[skip docker]",
    StageClass.CHARTS: "[skip charts]",
}


class RunOptions(BaseModel):
    """Per-run execution switches resolved from the trigger."""

    model_config = ConfigDict(frozen=True)

    suppressed: bool = False
    skip_build: bool = False
    skip_docker: bool = False
    skip_charts: bool = False

    def should_run(self, stage_class: StageClass) -> bool:
        """Return True if a stage of *stage_class* should execute."""
        if stage_class == StageClass.METADATA:
            return True
        if self.suppressed:
            return False
        if stage_class == StageClass.BUILD:
            return not self.skip_build
        if stage_class == StageClass.DOCKER:
            return not self.skip_docker
        if stage_class == StageClass.CHARTS:
            return not self.skip_charts
        return True

    def skip_reason(self, stage_class: StageClass) -> str:
        if self.should_run(stage_class):
            return ""
        if self.suppressed:
            return "triggered by dependency bot"
        return f"opted out with {SKIP_MARKERS[stage_class]}"


def resolve_run_options(
    trigger: TriggerContext, *, bot_actor: str = DEFAULT_BOT_ACTOR
) -> RunOptions:
    """Scan the trigger once and return the run's switches."""
    message = trigger.message
    return RunOptions(
        suppressed=trigger.actor == bot_actor,
        skip_build=SKIP_MARKERS[StageClass.BUILD] in message,
        skip_docker=SKIP_MARKERS[StageClass.DOCKER] in message,
        skip_charts=SKIP_MARKERS[StageClass.CHARTS] in message,
    )


def should_run(
    stage_class: StageClass,
    trigger: TriggerContext,
    *,
    bot_actor: str = DEFAULT_BOT_ACTOR,
) -> bool:
    """One-shot form of ``resolve_run_options(trigger).should_run(...)``."""
    return resolve_run_options(trigger, bot_actor=bot_actor).should_run(stage_class)
