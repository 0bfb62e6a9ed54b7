"""Content-addressed artifact and cache-key models (immutable)."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cdforge.core.hasher import canonical_json_bytes, sha256_hex


class ArtifactGroup(str, Enum):
    """A set of binaries built together by one toolchain invocation."""

    ENCLAVE = "enclave"  # native/hardware binaries plus signed enclaves
    GATEWAY = "gateway"  # managed-runtime gateway binaries


class ArtifactKind(str, Enum):
    EXECUTABLE = "executable"
    SIGNED_ENCLAVE = "signed_enclave"
    MEASUREMENT = "measurement"


class ArtifactRef(BaseModel):
    """A reference to a content-addressed artifact.

    The content_address is the SHA-256 hex digest of the artifact bytes.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    kind: ArtifactKind = ArtifactKind.EXECUTABLE
    size_bytes: int = 0


class CacheKey(BaseModel):
    """Exact-match key for a build output.

    The fingerprint must be content-derived; two keys are equal only if
    the group, cache buster and source fingerprint all match.
    """

    model_config = ConfigDict(frozen=True)

    group: ArtifactGroup
    cache_buster: str
    fingerprint: str

    @property
    def digest(self) -> str:
        return sha256_hex(canonical_json_bytes(self.model_dump(mode="json")))


class ArtifactBundle(BaseModel):
    """Ordered build outputs for one artifact group."""

    model_config = ConfigDict(frozen=True)

    group: ArtifactGroup
    cache_key: CacheKey
    artifacts: list[ArtifactRef]
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def names(self) -> list[str]:
        return [a.name for a in self.artifacts]

    def by_kind(self, kind: ArtifactKind) -> list[ArtifactRef]:
        return [a for a in self.artifacts if a.kind == kind]
