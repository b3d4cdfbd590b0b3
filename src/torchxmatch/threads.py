"""
Fork/join thread dispatch.

``spin_off`` splits a range of independent work items into contiguous
chunks, runs one worker per chunk and blocks on a barrier shared with every
worker before handing back the per-worker results.
"""

import threading
from typing import Any, Callable, List, Optional, Sequence

from .logging import logger


def distribute_indices(num_items: int, num_threads: int) -> List[range]:
    """
    Split ``range(num_items)`` into at most ``num_threads`` contiguous chunks.

    Chunk sizes differ by at most one and earlier chunks are the larger ones.
    Empty chunks are never returned.
    """
    if num_items < 0:
        raise ValueError(f"num_items cannot be negative, got {num_items}")
    if num_threads < 1:
        raise ValueError(f"num_threads must be at least 1, got {num_threads}")
    if num_items == 0:
        return []

    nchunks = min(num_threads, num_items)
    base, extra = divmod(num_items, nchunks)
    chunks = []
    start = 0
    for i in range(nchunks):
        stop = start + base + (1 if i < extra else 0)
        chunks.append(range(start, stop))
        start = stop
    return chunks


def spin_off(worker: Callable[[Sequence[int], Any], Any], params: Any,
             num_items: int, num_threads: int,
             min_items_for_parallel: int = 0) -> List[Any]:
    """
    Run ``worker(indices, params)`` over ``num_items`` items in parallel.

    Parameters:
    -----------
    worker : callable
        Called once per chunk with the chunk's item indices and ``params``.
        Its return value is collected.
    params : Any
        Shared, read-only parameters for every worker.
    num_items : int
        Number of independent work items.
    num_threads : int
        Maximum number of workers.
    min_items_for_parallel : int
        Below this many items the work runs in the calling thread.

    Returns:
    --------
    list
        The worker results, in chunk order (ascending item index).
    """
    chunks = distribute_indices(num_items, num_threads)
    if not chunks:
        return []

    if len(chunks) == 1 or num_items < min_items_for_parallel:
        return [worker(range(num_items), params)]

    results: List[Any] = [None] * len(chunks)
    errors: List[Optional[BaseException]] = [None] * len(chunks)
    barrier = threading.Barrier(len(chunks) + 1)

    def run(slot: int, indices: range):
        try:
            results[slot] = worker(indices, params)
        except BaseException as e:
            errors[slot] = e
        finally:
            barrier.wait()

    threads = [
        threading.Thread(target=run, args=(slot, indices),
                         name=f"torchxmatch-worker-{slot}", daemon=True)
        for slot, indices in enumerate(chunks)
    ]
    logger.debug(f"spin_off: {num_items} items over {len(threads)} threads")
    for thread in threads:
        thread.start()

    # The caller is the last party of the barrier
    barrier.wait()
    for thread in threads:
        thread.join()

    for error in errors:
        if error is not None:
            raise error
    return results
