"""
Order-preserving thread pool mapping with bounded look-ahead.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Deque, Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_WINDOW_PER_WORKER = 4


def bounded_map(
    func: Callable[[T], R],
    items: Iterable[T],
    workers: int = 1,
    window: Optional[int] = None,
) -> Iterator[R]:
    """Apply ``func`` to every item, yielding results in input order.

    With more than one worker, at most ``window`` items (default
    ``4 * workers``) are submitted ahead of the result being yielded, so a
    streamed input is never read into memory as a whole.

    Args:
        func: Function applied to each item
        items: Input items, consumed lazily
        workers: Number of threads; 1 runs inline
        window: Maximum number of items in flight

    Returns:
        Iterator over ``func(item)`` in the order of ``items``
    """
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")
    if workers == 1:
        for item in items:
            yield func(item)
        return

    window = max(window or DEFAULT_WINDOW_PER_WORKER * workers, 1)
    pending: Deque[Future] = deque()
    with ThreadPoolExecutor(max_workers=workers) as executor:
        try:
            for item in items:
                pending.append(executor.submit(func, item))
                if len(pending) >= window:
                    yield pending.popleft().result()
            while pending:
                yield pending.popleft().result()
        finally:
            # Abandoned or failed iteration: drop work that has not started
            for future in pending:
                future.cancel()
