"""seqhmm chunked parallel reduction over a concurrent.futures executor."""

import os
import threading
from concurrent.futures import Executor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

from tqdm import tqdm

T = TypeVar('T')
A = TypeVar('A')


def _split_chunks(n_items: int, n_chunks: int) -> List[range]:
    """
    Split range(n_items) into at most n_chunks contiguous, near-equal ranges.

    Returns:
        List of non-empty ranges covering every index exactly once
    """
    n_chunks = max(1, min(n_chunks, n_items))
    base, extra = divmod(n_items, n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        end = start + base + (1 if i < extra else 0)
        chunks.append(range(start, end))
        start = end
    return chunks


def default_chunk_count(n_workers: Optional[int] = None) -> int:
    """One chunk per worker thread; one per CPU if the pool size is unknown."""
    return n_workers or os.cpu_count() or 1


def reduction(items: Sequence[T], executor: Executor,
              initializer: Callable[[], A],
              work: Callable[[A, T], None],
              combine: Callable[[A, A], None],
              n_chunks: Optional[int] = None,
              progress: Optional[tqdm] = None) -> A:
    """
    Map-then-combine over ``items`` on ``executor``.

    Each chunk of items is one task. A task builds a worker-local accumulator
    with ``initializer()``, calls ``work(local, item)`` for each of its items,
    then merges the local accumulator into the shared result with
    ``combine(result, local)``. One lock serializes both the merges and the
    progress bar updates; ``work`` must not touch shared mutable state.

    The merged result does not depend on chunking or completion order as long
    as ``combine`` is associative and commutative (up to floating-point
    summation order).

    Args:
        items: Inputs, one unit of work each
        executor: Thread pool running the tasks
        initializer: Creates an empty accumulator
        work: Folds one item into a worker-local accumulator
        combine: Merges the second accumulator into the first
        n_chunks: Number of tasks (default: one per CPU)
        progress: Optional tqdm bar advanced once per item

    Returns:
        The combined accumulator (``initializer()`` if items is empty)

    Raises:
        The first exception raised by any task; pending tasks are cancelled
    """
    result = initializer()
    if len(items) == 0:
        return result

    lock = threading.Lock()
    chunks = _split_chunks(len(items), n_chunks or default_chunk_count())

    def run_chunk(chunk: range) -> None:
        local = initializer()
        for idx in chunk:
            work(local, items[idx])
            if progress is not None:
                with lock:
                    progress.update(1)
        with lock:
            combine(result, local)

    futures = [executor.submit(run_chunk, chunk) for chunk in chunks]
    try:
        for future in as_completed(futures):
            future.result()
    except BaseException:
        for future in futures:
            future.cancel()
        raise

    return result
