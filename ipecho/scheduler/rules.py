"""Recurrence rules for scheduled tasks.

A rule is one of a small closed set of variants:

* ``IntervalRule``: run every fixed ``timedelta``.
* ``WeeklyRule``: run once a week at a given weekday and wall-clock time.

``next_run`` computes the next trigger instant for any rule and
``parse_rule`` turns the textual forms accepted in configuration into a rule,
rejecting anything it does not recognise.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo
import re
from typing import Final, TypeAlias

WEEKDAYS: Final[dict[str, int]] = {
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}

WEEKDAYS_FULL: Final[dict[str, str]] = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}

INTERVAL_UNITS: Final[dict[str, str]] = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}

_EVERY_RE = re.compile(r"^every\s+(\d+)\s*([smhdw])$")
_WEEKLY_RE = re.compile(r"^weekly\s+([a-z]+)\s+(\d{1,2}):(\d{2})$")
_CRON_RE = re.compile(r"^(\d{1,2})\s+(\d{1,2})\s+\*\s+\*\s+(\d)$")


class ScheduleRuleInvalid(ValueError):
    """Raised when a recurrence rule cannot be parsed or is out of range."""

    def __init__(self, rule: str, reason: str):
        self.rule = rule
        self.reason = reason
        super().__init__(f"Invalid schedule rule {rule!r}: {reason}")


@dataclass(frozen=True, slots=True)
class IntervalRule:
    every: timedelta

    def __post_init__(self) -> None:
        if self.every <= timedelta(0):
            raise ScheduleRuleInvalid(str(self.every), "interval must be positive")

    def __str__(self) -> str:
        return f"every {self.every}"


@dataclass(frozen=True, slots=True)
class WeeklyRule:
    weekday: int  # 0 = Monday ... 6 = Sunday
    hour: int
    minute: int = 0
    tz: tzinfo = field(default=UTC)

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ScheduleRuleInvalid(str(self.weekday), "weekday must be between 0 and 6")
        if not 0 <= self.hour <= 23:
            raise ScheduleRuleInvalid(str(self.hour), "hour must be between 0 and 23")
        if not 0 <= self.minute <= 59:
            raise ScheduleRuleInvalid(str(self.minute), "minute must be between 0 and 59")

    def __str__(self) -> str:
        day = next(name for name, idx in WEEKDAYS.items() if idx == self.weekday)
        return f"weekly {day} {self.hour:02d}:{self.minute:02d} ({self.tz})"


RecurrenceRule: TypeAlias = IntervalRule | WeeklyRule


def next_run(rule: RecurrenceRule, now: datetime, last: datetime | None = None) -> datetime:
    """Compute the next trigger instant of ``rule``.

    Args:
        rule: The recurrence rule.
        now: The current instant. Must be timezone-aware.
        last: The last trigger instant, if known. Only interval rules use it;
            the result may then lie in the past.

    Returns:
        The next trigger instant, in UTC.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    match rule:
        case IntervalRule(every=every):
            base = last if last is not None else now
            return (base + every).astimezone(UTC)
        case WeeklyRule(weekday=weekday, hour=hour, minute=minute, tz=tz):
            local_now = now.astimezone(tz)
            days_ahead = (weekday - local_now.weekday()) % 7
            candidate_date = local_now.date() + timedelta(days=days_ahead)
            candidate = datetime(
                candidate_date.year, candidate_date.month, candidate_date.day, hour, minute, tzinfo=tz
            )
            if candidate <= local_now:
                candidate_date += timedelta(days=7)
                candidate = datetime(
                    candidate_date.year, candidate_date.month, candidate_date.day, hour, minute, tzinfo=tz
                )
            return candidate.astimezone(UTC)
    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


def parse_rule(text: str, tz: tzinfo = UTC) -> RecurrenceRule:
    """Parse the textual form of a recurrence rule.

    Accepted forms::

        every 6h            interval, units s/m/h/d/w
        weekly sun 03:00    weekday (short or full name) and HH:MM
        0 3 * * 0           minute hour * * weekday (0 and 7 are Sunday)

    Args:
        text: The rule text.
        tz: Timezone for wall-clock based rules.

    Raises:
        ScheduleRuleInvalid: If the text matches none of the forms.
    """
    normalized = " ".join(text.strip().lower().split())
    if not normalized:
        raise ScheduleRuleInvalid(text, "empty rule")

    if match := _EVERY_RE.match(normalized):
        amount, unit = int(match.group(1)), match.group(2)
        if amount == 0:
            raise ScheduleRuleInvalid(text, "interval must be positive")
        return IntervalRule(timedelta(**{INTERVAL_UNITS[unit]: amount}))

    if match := _WEEKLY_RE.match(normalized):
        day_name = match.group(1)
        if day_name not in WEEKDAYS and day_name not in WEEKDAYS_FULL:
            raise ScheduleRuleInvalid(text, f"unknown weekday {day_name!r}")
        weekday = WEEKDAYS[WEEKDAYS_FULL.get(day_name, day_name)]
        return _weekly(text, weekday, int(match.group(2)), int(match.group(3)), tz)

    if match := _CRON_RE.match(normalized):
        minute, hour, cron_day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if cron_day > 7:
            raise ScheduleRuleInvalid(text, "cron weekday must be between 0 and 7")
        # cron counts from Sunday = 0
        return _weekly(text, (cron_day - 1) % 7, hour, minute, tz)

    raise ScheduleRuleInvalid(text, "unrecognised pattern")


def _weekly(text: str, weekday: int, hour: int, minute: int, tz: tzinfo) -> WeeklyRule:
    try:
        return WeeklyRule(weekday=weekday, hour=hour, minute=minute, tz=tz)
    except ScheduleRuleInvalid as e:
        raise ScheduleRuleInvalid(text, e.reason) from e
