"""Named recurring-task runner.

The scheduler knows nothing about what its tasks do. A long-lived tick loop
wakes up every ``tick_interval`` seconds, and each task whose ``next_run_at``
has passed and which is not already running is dispatched as its own asyncio
task. Sync work units run in the default thread pool so they never block the
loop.

When an invocation finishes, the task's next trigger instant is recomputed
from its rule relative to the completion time. A scheduler that stalled past
several recurrence boundaries therefore fires a single catch-up run.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
import inspect
from typing import Any, TypeAlias

from ipecho.helpers import BackgroundTasks, ensure_aware, is_async_callable, run_in_threadpool, utcnow
from ipecho.log import system_logger

from .rules import IntervalRule, RecurrenceRule, ScheduleRuleInvalid, WeeklyRule, next_run, parse_rule

logger = system_logger("Scheduler")

TaskWork: TypeAlias = Callable[[], Awaitable[Any] | Any]


@dataclass(eq=False)
class ScheduledTask:
    """A registered task.

    Attributes:
        name: Unique task name.
        rule: The recurrence rule.
        work: Zero-argument callable (sync or async). Returning ``False`` or
            raising counts as failure.
        next_run_at: Next trigger instant (UTC).
        is_running: Whether an invocation is in flight.
        last_run_at: Completion time of the last invocation.
        last_succeeded: Outcome of the last invocation.
        run_count: Number of finished invocations.
    """

    name: str
    rule: RecurrenceRule
    work: TaskWork
    next_run_at: datetime
    is_running: bool = False
    last_run_at: datetime | None = None
    last_succeeded: bool | None = None
    run_count: int = 0


class Scheduler:
    """Runs named tasks according to their recurrence rules.

    ``stop()`` must not be called concurrently with ``start()``.
    """

    def __init__(self, tick_interval: float = 60.0, clock: Callable[[], datetime] = utcnow):
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        self.tick_interval = tick_interval
        self._clock = clock
        self._tasks: dict[str, ScheduledTask] = {}
        self._lock = asyncio.Lock()
        self._running = BackgroundTasks()
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None
        self._stopped = False

    @property
    def tasks(self) -> tuple[ScheduledTask, ...]:
        return tuple(self._tasks.values())

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def get_task(self, name: str) -> ScheduledTask | None:
        return self._tasks.get(name)

    def now(self) -> datetime:
        return ensure_aware(self._clock())

    def add_task(
        self,
        name: str,
        rule: RecurrenceRule | str,
        work: TaskWork,
        *,
        last_run_at: datetime | None = None,
    ) -> ScheduledTask | None:
        """Register a task.

        Args:
            name: Unique name. Registering an existing name replaces the old task.
            rule: A recurrence rule or its textual form (see ``parse_rule``).
            work: The unit of work.
            last_run_at: Last known trigger instant, used by interval rules to
                compute the first ``next_run_at``.

        Returns:
            The registered task, or None if the rule is invalid.
        """
        if isinstance(rule, str):
            try:
                rule = parse_rule(rule)
            except ScheduleRuleInvalid as e:
                logger.error(f"Rejected task '{name}': {e}")
                return None
        elif not isinstance(rule, IntervalRule | WeeklyRule):
            logger.error(f"Rejected task '{name}': unsupported rule {rule!r}")
            return None

        now = self.now()
        last = ensure_aware(last_run_at) if last_run_at is not None else None
        task = ScheduledTask(name=name, rule=rule, work=work, next_run_at=next_run(rule, now, last))
        if name in self._tasks:
            logger.warning(f"Task '{name}' is already registered, replacing it")
        self._tasks[name] = task
        logger.info(f"Added task '{name}' ({rule}), next run at {task.next_run_at.isoformat()}")
        return task

    def start(self) -> None:
        """Start the tick loop in the background. Requires a running event loop."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return
        if self._stopped:
            logger.warning("Scheduler has been stopped and cannot be restarted")
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(self._stop_event), name="scheduler-tick-loop")
        logger.info(f"Started with tick interval {self.tick_interval}s")

    async def stop(self) -> None:
        """Stop the tick loop and wait for in-flight invocations to finish."""
        if self._stopped:
            return
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
        await self.run_pending()
        logger.info("Stopped")

    async def run_pending(self) -> None:
        """Wait for every in-flight task invocation."""
        await self._running.join()

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Tick failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_interval)
            except TimeoutError:
                pass

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Dispatch every due task that is not already running.

        Args:
            now: The instant to evaluate against. Defaults to the scheduler clock.

        Returns:
            Names of the dispatched tasks.
        """
        now = ensure_aware(now) if now is not None else self.now()
        dispatched: list[str] = []
        async with self._lock:
            for task in self._tasks.values():
                if task.is_running or task.next_run_at > now:
                    continue
                task.is_running = True
                self._running.add_task(self._invoke, task)
                dispatched.append(task.name)
        return dispatched

    async def _invoke(self, task: ScheduledTask) -> None:
        logger.info(f"Running task '{task.name}'")
        succeeded = False
        try:
            if is_async_callable(task.work):
                result = await task.work()
            else:
                result = await run_in_threadpool(task.work)
            if inspect.isawaitable(result):
                result = await result
            succeeded = result is not False
            if succeeded:
                logger.success(f"Task '{task.name}' completed successfully")
            else:
                logger.error(f"Task '{task.name}' reported failure")
        except Exception:
            logger.exception(f"Task '{task.name}' failed")
        finally:
            async with self._lock:
                finished_at = self.now()
                task.last_run_at = finished_at
                task.last_succeeded = succeeded
                task.run_count += 1
                task.next_run_at = next_run(task.rule, finished_at)
                task.is_running = False
            logger.info(f"Task '{task.name}' next run at {task.next_run_at.isoformat()}")
