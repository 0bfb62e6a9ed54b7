"""Artifact cache gate — exact-match lookup of build outputs by CacheKey.

Bundles are indexed at ``{base}/index/{group}/{cache_key.digest}.json``
and their files live in the content-addressed blob store. The index is
append-only: the first writer for a key wins and every later store for
the same key is an idempotent no-op that returns the existing bundle.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from cdforge.core.artifact_store import ContentAddressedStore
from cdforge.models.artifacts import ArtifactBundle, ArtifactKind, CacheKey

logger = logging.getLogger(__name__)


class CacheIntegrityError(RuntimeError):
    """Raised when an indexed bundle references missing or corrupt blobs."""


class CacheLookup(BaseModel):
    model_config = ConfigDict(frozen=True)

    hit: bool
    bundle: ArtifactBundle | None = None


class ArtifactCache:
    """Append-only cache of ArtifactBundles keyed by CacheKey.

    Safe for concurrent readers. Writers use create-exclusive on the index
    file, so two writers racing on one key never both succeed.

    Parameters
    ----------
    base_path:
        Root directory for the index and the blob store.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._index = self._base / "index"
        self._index.mkdir(parents=True, exist_ok=True)
        self.blobs = ContentAddressedStore(self._base)
        self._write_lock = threading.Lock()

    def _index_path(self, key: CacheKey) -> Path:
        return self._index / key.group.value / f"{key.digest}.json"

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, key: CacheKey) -> CacheLookup:
        """Return the bundle stored under *key*, if any.

        A hit is only reported when every referenced blob verifies.
        """
        path = self._index_path(key)
        if not path.exists():
            logger.info("cache miss group=%s key=%s", key.group.value, key.digest[:12])
            return CacheLookup(hit=False)

        bundle = ArtifactBundle.model_validate_json(path.read_text(encoding="utf-8"))
        if bundle.cache_key != key:
            raise CacheIntegrityError(
                f"Index entry {path.name} holds a bundle for a different key"
            )
        for ref in bundle.artifacts:
            if not self.blobs.verify(ref.content_address):
                raise CacheIntegrityError(
                    f"Cached artifact {ref.name} ({ref.content_address}) "
                    f"is missing or corrupt"
                )

        logger.info("cache hit group=%s key=%s", key.group.value, key.digest[:12])
        return CacheLookup(hit=True, bundle=bundle)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(
        self, key: CacheKey, files: list[tuple[Path, ArtifactKind]]
    ) -> ArtifactBundle:
        """Record the build outputs for *key* and return the bundle.

        If a bundle already exists for *key* it is returned unchanged and
        *files* are ignored.
        """
        refs = [self.blobs.store_file(path, kind=kind) for path, kind in files]
        bundle = ArtifactBundle(group=key.group, cache_key=key, artifacts=refs)

        path = self._index_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Written whole to a temp file, then hard-linked into place: the link
        # either creates the index entry atomically or fails because one exists.
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(bundle.model_dump_json())
            with self._write_lock:
                try:
                    os.link(tmp_name, path)
                except FileExistsError:
                    logger.info(
                        "cache entry already present group=%s key=%s; keeping existing",
                        key.group.value,
                        key.digest[:12],
                    )
                    return ArtifactBundle.model_validate_json(
                        path.read_text(encoding="utf-8")
                    )
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        logger.info(
            "cache stored group=%s key=%s artifacts=%d",
            key.group.value,
            key.digest[:12],
            len(refs),
        )
        return bundle

    def keys(self) -> list[str]:
        """Return every indexed key digest (all groups)."""
        return sorted(p.stem for p in self._index.glob("*/*.json"))
