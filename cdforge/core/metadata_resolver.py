"""Metadata resolver — derives namespace and version tags from a trigger.

Pure function of the TriggerContext: re-running the same branch or pull
request always yields the same namespace, so a repeated run resets and
reuses the environment its predecessor created.

Rules
-----
* Namespace: the branch (or PR source branch, or tag name) lower-cased,
  every run of characters outside ``[a-z0-9]`` collapsed to ``-``, trimmed
  to a 63-character DNS label.
* Version tag, tag-triggered runs: ``v<semver>`` taken from the tag name
  (``v1.2.3``, ``release/1.2.3`` and ``1.2.3-rc.1`` are all accepted).
* Version tag, every other run:
  ``v<base>-<namespace>.<run_number>[.sha-<short sha>]`` where ``base`` is
  the semver of a ``release/X.Y.Z`` branch or ``0.0.0``.
* Image tag: the version tag restricted to registry tag characters.
"""

from __future__ import annotations

import re

from cdforge.core.errors import ResolutionError
from cdforge.models.trigger import EnvironmentMetadata, EventKind, TriggerContext

_HEADS = "refs/heads/"
_TAGS = "refs/tags/"
_PULL = "refs/pull/"

_SEMVER_IN_NAME = re.compile(
    r"^(?:.*/)?v?(?P<semver>\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?)$"
)
_RELEASE_BRANCH = re.compile(r"^release/v?(?P<base>\d+\.\d+(?:\.\d+)?)$")
_SHA = re.compile(r"^[0-9a-fA-F]{7,40}$")
_NON_LABEL = re.compile(r"[^a-z0-9]+")
_NON_IMAGE_TAG = re.compile(r"[^A-Za-z0-9_.-]")

MAX_NAMESPACE_LENGTH = 63
MAX_IMAGE_TAG_LENGTH = 128
SHORT_SHA_LENGTH = 7


def normalize_namespace(identity: str) -> str:
    """Normalize a branch/PR identity into a namespace label."""
    label = _NON_LABEL.sub("-", identity.lower()).strip("-")
    label = label[:MAX_NAMESPACE_LENGTH].rstrip("-")
    if not label:
        raise ResolutionError(
            f"Cannot derive a namespace from {identity!r}", stage_id="metadata"
        )
    return label


def _ref_name(trigger: TriggerContext) -> tuple[str, bool]:
    """Return (branch-or-tag name, is_tag) for the trigger's ref."""
    ref = trigger.ref.strip()
    if ref.startswith(_TAGS):
        return ref[len(_TAGS):], True
    if trigger.event == EventKind.TAG:
        raise ResolutionError(
            f"Tag event with non-tag ref {ref!r}", stage_id="metadata"
        )
    if ref.startswith(_HEADS):
        return ref[len(_HEADS):], False
    if ref.startswith(_PULL):
        if trigger.event != EventKind.PULL_REQUEST:
            raise ResolutionError(
                f"Pull request ref {ref!r} on a {trigger.event.value} event",
                stage_id="metadata",
            )
        if not trigger.head_ref:
            raise ResolutionError(
                "Pull request trigger is missing its source branch (head_ref)",
                stage_id="metadata",
            )
        return trigger.head_ref, False
    raise ResolutionError(f"Malformed ref {ref!r}", stage_id="metadata")


def _short_sha(sha: str) -> str:
    if not sha:
        return ""
    if not _SHA.match(sha):
        raise ResolutionError(f"Malformed commit sha {sha!r}", stage_id="metadata")
    return sha[:SHORT_SHA_LENGTH].lower()


def _tag_version(tag_name: str) -> str:
    match = _SEMVER_IN_NAME.match(tag_name)
    if not match:
        raise ResolutionError(
            f"Tag {tag_name!r} does not carry a semantic version", stage_id="metadata"
        )
    return f"v{match.group('semver')}"


def _branch_version(branch: str, namespace: str, run_number: int, short_sha: str) -> str:
    base = "0.0.0"
    release = _RELEASE_BRANCH.match(branch)
    if release:
        parts = release.group("base").split(".")
        base = ".".join(parts + ["0"] * (3 - len(parts)))
    version = f"v{base}-{namespace}.{run_number}"
    if short_sha:
        version += f".sha-{short_sha}"
    return version


def to_image_tag(version_tag: str) -> str:
    """Restrict a version tag to characters a container registry accepts."""
    tag = _NON_IMAGE_TAG.sub("-", version_tag.replace("+", "-"))
    return tag[:MAX_IMAGE_TAG_LENGTH]


def resolve_metadata(trigger: TriggerContext) -> EnvironmentMetadata:
    """Derive the EnvironmentMetadata for a run.

    Raises ``ResolutionError`` when the ref is malformed; nothing
    downstream can run without this value.
    """
    if trigger.run_number < 0:
        raise ResolutionError(
            f"Negative run number {trigger.run_number}", stage_id="metadata"
        )
    name, is_tag = _ref_name(trigger)
    if not name:
        raise ResolutionError(f"Empty ref name in {trigger.ref!r}", stage_id="metadata")

    namespace = normalize_namespace(name)
    short_sha = _short_sha(trigger.sha)

    if is_tag:
        version_tag = _tag_version(name)
    else:
        version_tag = _branch_version(name, namespace, trigger.run_number, short_sha)

    return EnvironmentMetadata(
        namespace=namespace,
        version_tag=version_tag,
        image_tag=to_image_tag(version_tag),
        short_sha=short_sha,
    )
