"""Thread-pool helper shared by cross-validation and forest training."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from cartkit.exceptions import InvalidConfigurationError


def resolve_n_jobs(n_jobs: int) -> int:
    """Turn an `n_jobs` setting into a worker count.

    Args:
        n_jobs (int): Positive worker count, or -1 for one worker per CPU.

    Returns:
        int: Number of workers, at least 1.

    Raises:
        InvalidConfigurationError: If `n_jobs` is 0 or below -1.
    """
    if n_jobs == -1:
        return os.cpu_count() or 1
    if n_jobs < 1:
        raise InvalidConfigurationError(f"n_jobs must be a positive integer or -1, got {n_jobs}.")
    return n_jobs


def map_ordered[T, R](function: Callable[[T], R], items: Iterable[T], *, n_jobs: int = 1) -> list[R]:
    """Apply `function` to every item, returning results in input order.

    With one worker the items are processed inline. Otherwise all items run on
    a thread pool and the call returns once every one of them has finished.
    The first exception raised by a worker is re-raised.

    Args:
        function (Callable[[T], R]): Work to run per item.
        items (Iterable[T]): Inputs.
        n_jobs (int): Worker count, or -1 for one per CPU.

    Returns:
        list[R]: One result per item.
    """
    workers = resolve_n_jobs(n_jobs)
    if workers == 1:
        return [function(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cartkit") as executor:
        return list(executor.map(function, items))
