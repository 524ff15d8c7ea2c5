"""Background task management utilities.

This module provides utilities for running work concurrently in the
background outside request handlers and for joining on it later.
"""

import asyncio
from collections.abc import Callable, Sequence
import functools
import inspect
from typing import Any, ParamSpec, TypeVar

P = ParamSpec("P")
T = TypeVar("T")


# Reference: https://github.com/encode/starlette/blob/master/starlette/_utils.py
def is_async_callable(obj: Any) -> bool:
    """Check if an object is an async callable.

    Args:
        obj: The object to check.

    Returns:
        True if the object is async callable, False otherwise.
    """
    while isinstance(obj, functools.partial):
        obj = obj.func

    return inspect.iscoroutinefunction(obj) or (
        callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
    )


async def run_in_threadpool(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous function in a thread pool.

    Args:
        func: The synchronous function to run.
        *args: Positional arguments for the function.
        **kwargs: Keyword arguments for the function.

    Returns:
        The result of the function.
    """
    func = functools.partial(func, *args, **kwargs)
    return await asyncio.get_running_loop().run_in_executor(None, func)


class BackgroundTasks:
    """Tracks fire-and-forget tasks so they can be joined later.

    Unlike a plain ``asyncio.create_task`` call, the manager keeps a strong
    reference to every task until it finishes.
    """

    def __init__(self, tasks: Sequence[asyncio.Task] | None = None):
        self.tasks: set[asyncio.Task] = set(tasks) if tasks else set()

    def __len__(self) -> int:
        return len(self.tasks)

    def add_task(self, func: Callable[P, Any], *args: P.args, **kwargs: P.kwargs) -> asyncio.Task:
        """Schedule a function to run as a background task.

        Args:
            func: The function to run (can be sync or async).
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The created task.
        """
        coro = func(*args, **kwargs) if is_async_callable(func) else run_in_threadpool(func, *args, **kwargs)
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def join(self) -> None:
        """Wait until every tracked task, including ones added meanwhile, has finished."""
        while self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)
