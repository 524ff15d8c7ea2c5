from functools import lru_cache

from ipecho.config import settings
from ipecho.scheduler import Scheduler


@lru_cache
def get_scheduler() -> Scheduler:
    """
    Get the process-wide scheduler instance
    """
    return Scheduler(tick_interval=settings.scheduler_tick_seconds)


def start_scheduler() -> None:
    get_scheduler().start()


async def stop_scheduler() -> None:
    await get_scheduler().stop()
