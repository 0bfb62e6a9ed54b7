"""Data-driven publish matrix with per-entry failure containment.

Each spec in the matrix is published independently on a bounded worker
pool. A failing entry never stops its siblings; the caller gets one
``EntryResult`` per spec, in matrix order, and decides what an aggregate
failure means.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol, TypeVar

from cdforge.models.publish import EntryResult, MatrixResult

logger = logging.getLogger(__name__)


class _Keyed(Protocol):
    @property
    def key(self) -> str: ...


SpecT = TypeVar("SpecT", bound=_Keyed)

# A publish function returns (succeeded, detail) or raises.
PublishFn = Callable[[SpecT], tuple[bool, str]]


def _publish_one(spec: SpecT, publish_fn: PublishFn) -> EntryResult:
    try:
        ok, detail = publish_fn(spec)
    except Exception as exc:  # contained: one entry must not sink the matrix
        logger.exception("matrix entry %s raised", spec.key)
        return EntryResult(key=spec.key, succeeded=False, detail=f"{type(exc).__name__}: {exc}")

    if ok:
        logger.info("matrix entry %s published", spec.key)
    else:
        logger.error("matrix entry %s failed: %s", spec.key, detail)
    return EntryResult(key=spec.key, succeeded=ok, detail=detail)


def publish_matrix(
    specs: Sequence[SpecT],
    publish_fn: PublishFn,
    max_parallel: int = 4,
) -> MatrixResult:
    """Publish every spec and collect one result per entry.

    Parameters
    ----------
    specs:
        The matrix entries. Keys must be unique.
    publish_fn:
        Called once per spec from a worker thread.
    max_parallel:
        Upper bound on concurrently running entries.
    """
    keys = [s.key for s in specs]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate matrix keys: {keys}")
    if not specs:
        return MatrixResult(entries=[])

    workers = max(1, min(max_parallel, len(specs)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrix") as pool:
        futures = [pool.submit(_publish_one, spec, publish_fn) for spec in specs]
        entries = [f.result() for f in futures]

    result = MatrixResult(entries=entries)
    logger.info(
        "matrix finished: %d/%d published", len(result.published_keys), len(entries)
    )
    return result
