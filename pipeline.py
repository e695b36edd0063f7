"""
pipeline.py

Plumbing shared by the sync and report jobs: a bounded worker pool and
the rule for escalating a store failure to a run-level abort.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

from database import db
from errors import StoreError, StoreUnavailableError

logger = logging.getLogger("pipeline")

T = TypeVar("T")
R = TypeVar("R")


def map_bounded(func: Callable[[T], R], items: Iterable[T], max_workers: int,
                name: str = "job") -> list[R]:
    """Apply func to every item with at most max_workers threads.

    Results keep input order. `func` is expected to contain its own
    per-entity failures; anything it raises aborts the batch and cancels
    work that has not started yet.
    """
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=min(max_workers, len(items)),
                            thread_name_prefix=name) as pool:
        futures = [pool.submit(func, item) for item in items]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise


def escalate_if_unreachable(exc: StoreError) -> None:
    """Re-raise as StoreUnavailableError when the store itself is gone."""
    if isinstance(exc, StoreUnavailableError):
        raise exc
    if not db.ping():
        raise StoreUnavailableError(f"Store unreachable after: {exc}") from exc
