import asyncio
from datetime import UTC, datetime

from ipecho.geoip import DatasetPurpose, ManagerState
from ipecho.scheduler import Scheduler
from ipecho.tasks import geoip as geoip_tasks

from conftest import write_dataset
import pytest


@pytest.fixture
def manager(make_manager, monkeypatch):
    manager, _ = make_manager()
    monkeypatch.setattr(geoip_tasks, "get_geoip_manager", lambda: manager)
    return manager


def test_init_geoip_swallows_failures(manager, server) -> None:
    server.failing[DatasetPurpose.ASN] = 500

    asyncio.run(geoip_tasks.init_geoip())

    assert manager.state is ManagerState.DEGRADED
    assert manager.lookup().is_empty


def test_init_geoip_loads_databases(manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")

    asyncio.run(geoip_tasks.init_geoip())

    assert manager.is_ready
    assert server.requested == []


def test_update_geoip_database_reports_outcome(manager, server) -> None:
    assert asyncio.run(geoip_tasks.update_geoip_database()) is True

    server.failing[DatasetPurpose.COUNTRY] = 503
    assert asyncio.run(geoip_tasks.update_geoip_database()) is False
    assert manager.is_ready


def test_update_geoip_database_logs_unexpected_errors(monkeypatch) -> None:
    class BrokenManager:
        async def refresh(self) -> bool:
            raise RuntimeError("boom")

    monkeypatch.setattr(geoip_tasks, "get_geoip_manager", BrokenManager)

    assert asyncio.run(geoip_tasks.update_geoip_database()) is False


def test_schedule_geoip_updates_registers_weekly_task(monkeypatch, clock) -> None:
    scheduler = Scheduler(clock=clock)
    monkeypatch.setattr(geoip_tasks, "get_scheduler", lambda: scheduler)
    monkeypatch.setattr(geoip_tasks.settings, "geoip_update_day", 6)
    monkeypatch.setattr(geoip_tasks.settings, "geoip_update_hour", 3)
    monkeypatch.setattr(geoip_tasks.settings, "scheduler_timezone", "UTC")

    task = geoip_tasks.schedule_geoip_updates()

    assert task is scheduler.get_task(geoip_tasks.GEOIP_TASK_NAME)
    assert (task.rule.weekday, task.rule.hour, task.rule.minute) == (6, 3, 0)
    # Friday 10:00 -> Sunday 03:00
    assert task.next_run_at == datetime(2026, 10, 18, 3, 0, tzinfo=UTC)
    assert task.work is geoip_tasks.update_geoip_database
