"""Bounded concurrent fan-out for independent store writes.

Each job runs in a worker thread; a failing job is logged and reported by key
but never cancels or fails its siblings. The call returns only after every job
has finished.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Hashable, Mapping

logger = logging.getLogger(__name__)


def run_concurrently(
    jobs: Mapping[Hashable, Callable[[], Any]],
    max_workers: int = 8,
) -> tuple[dict[Hashable, Any], dict[Hashable, Exception]]:
    """Run ``jobs`` concurrently and wait for all of them.

    Returns ``(results, errors)`` keyed by the job keys.
    """
    results: dict[Hashable, Any] = {}
    errors: dict[Hashable, Exception] = {}
    if not jobs:
        return results, errors

    workers = max(1, min(max_workers, len(jobs)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout") as pool:
        futures = {pool.submit(fn): key for key, fn in jobs.items()}
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as exc:
                logger.warning("Job %s failed: %s", key, exc)
                errors[key] = exc
    return results, errors
