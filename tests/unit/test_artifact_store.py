"""Tests for ContentAddressedStore and ArtifactCache — immutability, integrity,
exact-match lookup."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from cdforge.core.artifact_cache import ArtifactCache, CacheIntegrityError
from cdforge.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from cdforge.core.hasher import sha256_hex
from cdforge.models.artifacts import ArtifactGroup, ArtifactKind, CacheKey


class TestContentAddressedStore:
    def test_store_and_retrieve(self, artifact_store: ContentAddressedStore):
        data = b"mc-consensus-service"
        artifact = artifact_store.store(data, name="mc-consensus-service")
        assert artifact.content_address.startswith("sha256:")
        assert artifact.size_bytes == len(data)
        assert artifact_store.retrieve(artifact.content_address) == data

    def test_content_addressing(self, artifact_store: ContentAddressedStore):
        data = b"deterministic content"
        artifact = artifact_store.store(data, name="x")
        assert artifact.content_address == f"sha256:{sha256_hex(data)}"

    def test_idempotent_store(self, artifact_store: ContentAddressedStore):
        a1 = artifact_store.store(b"store me twice", name="first")
        a2 = artifact_store.store(b"store me twice", name="second")
        assert a1.content_address == a2.content_address
        assert a2.name == "second"

    def test_exists(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store(b"check existence", name="x")
        assert artifact_store.exists(artifact.content_address) is True
        assert artifact_store.exists("sha256:" + "0" * 64) is False

    def test_retrieve_nonexistent(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve("sha256:" + "0" * 64)

    def test_verify_detects_corruption(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact = artifact_store.store(b"original", name="x")
        digest = artifact.content_address.removeprefix("sha256:")
        blob = tmp_dir / "artifacts" / "blobs" / digest[:2] / f"{digest}.bin"
        blob.write_bytes(b"tampered")
        assert artifact_store.verify(artifact.content_address) is False
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.store(b"original", name="x")

    def test_materialize_restores_executable_bit(
        self, artifact_store: ContentAddressedStore, tmp_dir: Path
    ):
        ref = artifact_store.store(b"#!/bin/sh\n", name="mc-watcher")
        dest = artifact_store.materialize(ref, tmp_dir / "out")
        assert dest.read_bytes() == b"#!/bin/sh\n"
        assert dest.stat().st_mode & stat.S_IXUSR

    def test_materialize_keeps_measurements_plain(
        self, artifact_store: ContentAddressedStore, tmp_dir: Path
    ):
        ref = artifact_store.store(b"css", name="libview-enclave.css", kind=ArtifactKind.MEASUREMENT)
        dest = artifact_store.materialize(ref, tmp_dir / "out")
        assert not os.access(dest, os.X_OK)


def _key(fingerprint: str = "abc", buster: str = "b1") -> CacheKey:
    return CacheKey(group=ArtifactGroup.GATEWAY, cache_buster=buster, fingerprint=fingerprint)


class TestArtifactCache:
    def _files(self, tmp_dir: Path, content: bytes = b"proxy") -> list[tuple[Path, ArtifactKind]]:
        path = tmp_dir / "grpc-proxy"
        path.write_bytes(content)
        return [(path, ArtifactKind.EXECUTABLE)]

    def test_miss_then_hit(self, cache: ArtifactCache, tmp_dir: Path):
        key = _key()
        assert cache.lookup(key).hit is False
        stored = cache.store(key, self._files(tmp_dir))
        lookup = cache.lookup(key)
        assert lookup.hit is True
        assert lookup.bundle is not None
        assert lookup.bundle.names() == ["grpc-proxy"]
        assert lookup.bundle.artifacts == stored.artifacts

    def test_exact_match_only(self, cache: ArtifactCache, tmp_dir: Path):
        cache.store(_key(), self._files(tmp_dir))
        assert cache.lookup(_key(fingerprint="abd")).hit is False
        assert cache.lookup(_key(buster="b2")).hit is False

    def test_first_writer_wins(self, cache: ArtifactCache, tmp_dir: Path):
        key = _key()
        first = cache.store(key, self._files(tmp_dir, b"first"))
        second = cache.store(key, self._files(tmp_dir, b"second"))
        assert second.artifacts == first.artifacts
        assert cache.blobs.retrieve(cache.lookup(key).bundle.artifacts[0].content_address) == b"first"

    def test_cache_survives_reopen(self, cache: ArtifactCache, tmp_dir: Path):
        key = _key()
        cache.store(key, self._files(tmp_dir))
        assert ArtifactCache(tmp_dir / "cache").lookup(key).hit is True

    def test_corrupt_blob_is_not_a_hit(self, cache: ArtifactCache, tmp_dir: Path):
        key = _key()
        bundle = cache.store(key, self._files(tmp_dir))
        digest = bundle.artifacts[0].content_address.removeprefix("sha256:")
        (tmp_dir / "cache" / "blobs" / digest[:2] / f"{digest}.bin").write_bytes(b"rot")
        with pytest.raises(CacheIntegrityError):
            cache.lookup(key)

    def test_keys_lists_every_group(self, cache: ArtifactCache, tmp_dir: Path):
        cache.store(_key(), self._files(tmp_dir))
        enclave = CacheKey(group=ArtifactGroup.ENCLAVE, cache_buster="b1", fingerprint="abc")
        cache.store(enclave, self._files(tmp_dir))
        assert sorted(cache.keys()) == sorted([_key().digest, enclave.digest])
