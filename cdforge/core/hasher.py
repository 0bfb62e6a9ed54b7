"""Canonical hashing helpers for cache keys, content addressing and the ledger.

Every hash is derived from content, never from wall-clock time, so two
runs over the same inputs always agree.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

# Directories never hashed into a source fingerprint.
_FINGERPRINT_EXCLUDED_DIRS: frozenset[str] = frozenset(
    {".git", "target", "node_modules", ".cdforge", "__pycache__"}
)


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>" format used by the artifact store.
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def compute_input_hash(stage_id: str, inputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted inputs)."""
    payload = {"stage_id": stage_id, "inputs": inputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_output_hash(stage_id: str, outputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted outputs)."""
    payload = {"stage_id": stage_id, "outputs": outputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))


def _is_excluded(path: Path, root: Path) -> bool:
    return any(
        part in _FINGERPRINT_EXCLUDED_DIRS for part in path.relative_to(root).parts
    )


def fingerprint_tree(root: Path, patterns: Iterable[str]) -> str:
    """Content fingerprint of every file under *root* matching *patterns*.

    Each file contributes its POSIX relative path and the SHA-256 of its
    bytes; the list is sorted before hashing so traversal order does not
    matter. Renaming a file changes the fingerprint, touching its mtime
    does not.
    """
    root = Path(root)
    files: set[Path] = set()
    for pattern in patterns:
        for path in root.glob(pattern):
            if path.is_file() and not _is_excluded(path, root):
                files.add(path)

    entries = [
        [path.relative_to(root).as_posix(), sha256_hex(path.read_bytes())]
        for path in sorted(files)
    ]
    return sha256_hex(canonical_json_bytes(entries))
