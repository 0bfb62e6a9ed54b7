"""Content-addressed, immutable blob store backing the artifact cache.

Storage layout: {base_path}/blobs/{sha256[0:2]}/{sha256}.bin
No delete method — blobs are immutable once stored.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from cdforge.core.hasher import sha256_hex
from cdforge.models.artifacts import ArtifactKind, ArtifactRef


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored blob's hash does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, immutable blob store.

    Storing the same content twice is a no-op. Writes go through a
    temporary file and an atomic rename so concurrent writers of the same
    content never observe a partial blob.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path) / "blobs"
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        return content_address.removeprefix("sha256:")

    def _blob_path(self, digest: str) -> Path:
        return self._base / digest[:2] / f"{digest}.bin"

    def store(
        self,
        data: bytes,
        *,
        name: str,
        kind: ArtifactKind = ArtifactKind.EXECUTABLE,
    ) -> ArtifactRef:
        """Store *data* and return a reference to it."""
        digest = sha256_hex(data)
        path = self._blob_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing blob at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        return ArtifactRef(
            name=name,
            content_address=f"sha256:{digest}",
            kind=kind,
            size_bytes=len(data),
        )

    def store_file(
        self, path: Path, *, kind: ArtifactKind = ArtifactKind.EXECUTABLE
    ) -> ArtifactRef:
        """Store a file's bytes under its own file name."""
        return self.store(Path(path).read_bytes(), name=Path(path).name, kind=kind)

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve blob bytes by content address ("sha256:<hex>" or hex)."""
        path = self._blob_path(self._extract_digest(content_address))
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        return path.read_bytes()

    def exists(self, content_address: str) -> bool:
        return self._blob_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest

    def materialize(self, ref: ArtifactRef, dest_dir: Path) -> Path:
        """Write a stored blob back out as ``dest_dir/ref.name``."""
        dest = Path(dest_dir) / ref.name
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.retrieve(ref.content_address))
        if ref.kind == ArtifactKind.EXECUTABLE:
            dest.chmod(0o755)
        return dest
