"""
Fan-out / fan-in task groups.

Runs a mapping of named callables concurrently, waits for all of them
(join barrier) and returns a name -> outcome mapping. A shared timeout
applies to the whole group: tasks still running when it expires are
reported as SubtaskTimeout and tasks not yet started are cancelled.

Usage:
    from core.fanout import run_parallel

    outcomes = run_parallel({
        'vector': lambda: store.similarity_search(query, 10),
        'keyword': lambda: index.search(query, 10),
    }, timeout=2.0)

    if outcomes['vector'].ok:
        vector_results = outcomes['vector'].value
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import SubtaskTimeout

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """Result of one task in a group."""
    name: str
    value: Any = None
    error: Optional[BaseException] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def run_parallel(
    tasks: Dict[str, Callable[[], Any]],
    timeout: Optional[float] = None,
    max_workers: Optional[int] = None
) -> Dict[str, TaskOutcome]:
    """
    Run named tasks concurrently and join on all of them.

    Exceptions raised by a task are captured in its outcome rather than
    propagated, so the caller decides how to degrade.

    Args:
        tasks: Mapping of task name to zero-argument callable
        timeout: Shared deadline in seconds for the whole group
        max_workers: Thread pool size (default: one per task)

    Returns:
        Mapping of task name to TaskOutcome, in the order of `tasks`
    """
    if not tasks:
        return {}

    executor = ThreadPoolExecutor(
        max_workers=max_workers or len(tasks),
        thread_name_prefix='fanout'
    )

    start_times: Dict[str, float] = {}
    end_times: Dict[str, float] = {}

    def timed(name, func):
        def runner():
            start_times[name] = time.time()
            try:
                return func()
            finally:
                end_times[name] = time.time()
        return runner

    try:
        futures = {
            name: executor.submit(timed(name, func))
            for name, func in tasks.items()
        }
        group_start = time.time()
        wait(list(futures.values()), timeout=timeout)

        outcomes = {}
        for name, future in futures.items():
            started = start_times.get(name, group_start)
            if not future.done():
                future.cancel()
                logger.warning(f"Task '{name}' did not finish within {timeout}s")
                outcomes[name] = TaskOutcome(
                    name=name,
                    error=SubtaskTimeout(f"Task '{name}' timed out after {timeout}s", task=name),
                    duration_ms=(time.time() - started) * 1000,
                )
                continue

            error = future.exception()
            outcomes[name] = TaskOutcome(
                name=name,
                value=None if error else future.result(),
                error=error,
                duration_ms=(end_times.get(name, time.time()) - started) * 1000,
            )
        return outcomes

    finally:
        executor.shutdown(wait=False, cancel_futures=True)
