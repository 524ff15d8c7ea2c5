from __future__ import annotations

from .background_task import BackgroundTasks, is_async_callable, run_in_threadpool
from .time import ensure_aware, utcnow

__all__ = [
    "BackgroundTasks",
    "ensure_aware",
    "is_async_callable",
    "run_in_threadpool",
    "utcnow",
]
