"""
Explicit work partitioning and thread-pool execution.

Work is split into an ordered list of independent tasks (one per chromosome,
grid point or chain). Tasks run on a `ThreadPoolExecutor`; the numeric kernels
they call release the GIL. Results are always returned in task order, so the
reduction that follows is single-threaded and deterministic.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

import numpy as np
from rich.progress import Progress

logger = logging.getLogger(__name__)


def resolve_n_workers(n_workers: Optional[int]) -> int:
    """Number of threads to use; `None` or values < 1 mean all available cores."""
    if n_workers is None or n_workers < 1:
        return os.cpu_count() or 1
    return int(n_workers)


def split_by_chromosome(chromosomes) -> List[np.ndarray]:
    """
    Partition variant indices into one task per chromosome.

    Returns
    -------
    List[np.ndarray]
        Index arrays, ordered by chromosome, each in increasing order.
    """
    chromosomes = np.asarray(chromosomes)
    return [np.flatnonzero(chromosomes == c) for c in np.unique(chromosomes)]


def run_tasks(
    func: Callable,
    tasks: Sequence,
    n_workers: Optional[int] = 1,
    description: Optional[str] = None,
    show_progress: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> list:
    """
    Apply `func` to every task and return the results in task order.

    With a single worker the tasks run sequentially in the calling thread.
    The first exception raised by a task (or a KeyboardInterrupt) is propagated
    after the tasks that have not started yet are cancelled and `cancel_event`,
    if given, is set so that running tasks can stop early.
    """
    n_workers = min(resolve_n_workers(n_workers), max(len(tasks), 1))
    results = [None] * len(tasks)

    with Progress(transient=True, disable=not show_progress) as progress:
        task_id = progress.add_task(f"[green]{description or 'Processing'}...", total=len(tasks))

        if n_workers == 1:
            try:
                for k, task in enumerate(tasks):
                    results[k] = func(task)
                    progress.advance(task_id)
            except BaseException:
                if cancel_event is not None:
                    cancel_event.set()
                raise
            return results

        logger.debug(f"Running {len(tasks)} tasks on {n_workers} threads")
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            future_to_index = {executor.submit(func, task): k for k, task in enumerate(tasks)}
            try:
                for future in as_completed(future_to_index):
                    results[future_to_index[future]] = future.result()
                    progress.advance(task_id)
            except BaseException:
                if cancel_event is not None:
                    cancel_event.set()
                for future in future_to_index:
                    future.cancel()
                raise

    return results
