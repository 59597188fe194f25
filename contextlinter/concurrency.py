#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Bounded-concurrency helpers for async task factories.

start_with_concurrency() is the scheduler: a pool of workers pulls task
indexes in order and resolves one future per task. A failing task
resolves its future with the exception object instead of raising, so
one failure never cancels its siblings.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Sequence, Set, Union

TaskFactory = Callable[[], Awaitable[Any]]

_workers: Set["asyncio.Task[None]"] = set()


def start_with_concurrency(tasks: Sequence[TaskFactory], limit: int) -> List["asyncio.Future[Any]"]:
    """Start tasks with at most `limit` in flight; return one future per task.

    Must be called from a running event loop. Futures resolve as their
    task finishes, so callers can await them in input order while later
    tasks keep running.
    """
    loop = asyncio.get_running_loop()
    futures: List[asyncio.Future] = [loop.create_future() for _ in tasks]
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(tasks):
            index = next_index
            next_index += 1
            try:
                result: Any = await tasks[index]()
            except Exception as e:
                result = e
            futures[index].set_result(result)

    for _ in range(min(max(1, limit), len(tasks))):
        task = loop.create_task(worker())
        # The loop only holds weak references to tasks
        _workers.add(task)
        task.add_done_callback(_workers.discard)
    return futures


async def run_with_concurrency(tasks: Sequence[TaskFactory], limit: int) -> List[Union[Any, Exception]]:
    """Run all tasks with at most `limit` in flight; results in input order."""
    return list(await asyncio.gather(*start_with_concurrency(tasks, limit)))
