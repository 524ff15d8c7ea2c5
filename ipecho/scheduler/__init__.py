"""Periodic task scheduling."""

from __future__ import annotations

from .rules import IntervalRule, RecurrenceRule, ScheduleRuleInvalid, WeeklyRule, next_run, parse_rule
from .scheduler import ScheduledTask, Scheduler

__all__ = [
    "IntervalRule",
    "RecurrenceRule",
    "ScheduleRuleInvalid",
    "ScheduledTask",
    "Scheduler",
    "WeeklyRule",
    "next_run",
    "parse_rule",
]
