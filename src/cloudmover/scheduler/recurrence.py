"""Next-run computation for scheduled tasks.

This module provides:
- Recurrence: The schedule part of a task
- compute_next_run: Next time a recurrence fires after a given instant
- describe_schedule: Human readable summary of a recurrence

Weekdays follow the 0=Sunday .. 6=Saturday numbering used by task payloads.
Times are wall-clock times in the task's timezone; results are UTC.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cloudmover.core.errors import InvalidInputError
from cloudmover.core.types import Frequency

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def load_zone(name: str) -> ZoneInfo:
    """Get a timezone by IANA name.

    Raises:
        InvalidInputError: If the name is unknown.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidInputError(f"Unknown timezone: {name}") from e


def _sunday_based(day: date) -> int:
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class Recurrence:
    """When a task runs.

    Attributes:
        frequency: hourly, daily, weekly, monthly or custom.
        hour: Hour of day (0-23), ignored for hourly.
        minute: Minute of the hour (0-59).
        day_of_week: Weekday for weekly schedules (0=Sunday).
        day_of_month: Day for monthly schedules (1-31, clamped to the
            length of the month).
        selected_days: Weekdays for custom schedules (0=Sunday).
        timezone: IANA timezone name.
    """

    frequency: Frequency
    hour: int = 8
    minute: int = 0
    day_of_week: int | None = None
    day_of_month: int | None = None
    selected_days: tuple[int, ...] = field(default_factory=tuple)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        """Validate fields."""
        object.__setattr__(self, "frequency", Frequency(self.frequency))
        if not 0 <= self.hour <= 23:
            raise InvalidInputError(f"hour must be between 0 and 23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise InvalidInputError(f"minute must be between 0 and 59, got {self.minute}")
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise InvalidInputError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise InvalidInputError(f"day_of_month must be between 1 and 31, got {self.day_of_month}")
        days = tuple(sorted(set(self.selected_days)))
        if any(not 0 <= d <= 6 for d in days):
            raise InvalidInputError(f"selected_days must be weekdays 0-6, got {list(days)}")
        object.__setattr__(self, "selected_days", days)
        load_zone(self.timezone)

    @property
    def zone(self) -> ZoneInfo:
        """Get the timezone of the schedule."""
        return load_zone(self.timezone)

    @classmethod
    def from_task(cls, task: Any) -> Recurrence:
        """Build from a ScheduledTask (or any object with the same fields)."""
        return cls(
            frequency=task.frequency,
            hour=task.hour if task.hour is not None else 8,
            minute=task.minute or 0,
            day_of_week=task.day_of_week,
            day_of_month=task.day_of_month,
            selected_days=tuple(task.selected_days or ()),
            timezone=task.timezone or "UTC",
        )


def _at(day: date, hour: int, minute: int, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=zone).astimezone(timezone.utc)


def _month_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _candidates(rec: Recurrence, local_now: datetime) -> Iterable[datetime]:
    """Yield run times in increasing order, starting at or before now."""
    zone = rec.zone
    today = local_now.date()

    if rec.frequency is Frequency.HOURLY:
        top = local_now.replace(minute=0, second=0, microsecond=0).astimezone(timezone.utc)
        for hours in range(1, 4):
            slot = (top + timedelta(hours=hours)).astimezone(zone).replace(minute=rec.minute)
            yield slot.astimezone(timezone.utc)
        return

    if rec.frequency is Frequency.DAILY:
        for days in range(3):
            yield _at(today + timedelta(days=days), rec.hour, rec.minute, zone)
        return

    if rec.frequency is Frequency.WEEKLY:
        target = rec.day_of_week if rec.day_of_week is not None else 1
        offset = (target - _sunday_based(today)) % 7
        for weeks in range(3):
            yield _at(today + timedelta(days=offset + 7 * weeks), rec.hour, rec.minute, zone)
        return

    if rec.frequency is Frequency.MONTHLY:
        target = rec.day_of_month or 1
        year, month = today.year, today.month
        for _ in range(3):
            yield _at(_month_day(year, month, target), rec.hour, rec.minute, zone)
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return

    # Custom
    if not rec.selected_days:
        yield _at(today + timedelta(days=1), rec.hour, rec.minute, zone)
        return
    for days in range(15):
        day = today + timedelta(days=days)
        if _sunday_based(day) in rec.selected_days:
            yield _at(day, rec.hour, rec.minute, zone)


def compute_next_run(schedule: Recurrence | Any, now: datetime | None = None) -> datetime:
    """Get the next time a schedule fires, strictly after ``now``.

    - hourly: the configured minute of the next hour
    - daily: today at hour:minute, or tomorrow if that has passed
    - weekly: the next configured weekday at hour:minute
    - monthly: the configured day this month, or next month if passed
    - custom: the nearest selected weekday at hour:minute (tomorrow at
      hour:minute when no day is selected)

    Args:
        schedule: Recurrence, or a ScheduledTask.
        now: Reference instant (default: current time). Naive values are
            taken as UTC.

    Returns:
        Next run time, timezone-aware UTC.

    Raises:
        InvalidInputError: If the schedule is invalid.
    """
    rec = schedule if isinstance(schedule, Recurrence) else Recurrence.from_task(schedule)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    return next(c for c in _candidates(rec, now.astimezone(rec.zone)) if c > now)


def describe_schedule(schedule: Recurrence | Any) -> str:
    """Summarize a schedule, e.g. ``Every Monday at 08:00 (Europe/Paris)``."""
    rec = schedule if isinstance(schedule, Recurrence) else Recurrence.from_task(schedule)
    at = f"{rec.hour:02d}:{rec.minute:02d}"

    if rec.frequency is Frequency.HOURLY:
        text = f"Every hour at minute {rec.minute}"
    elif rec.frequency is Frequency.DAILY:
        text = f"Every day at {at}"
    elif rec.frequency is Frequency.WEEKLY:
        day = rec.day_of_week if rec.day_of_week is not None else 1
        text = f"Every {DAY_NAMES[day]} at {at}"
    elif rec.frequency is Frequency.MONTHLY:
        text = f"On day {rec.day_of_month or 1} of every month at {at}"
    elif rec.selected_days:
        text = ", ".join(DAY_NAMES[d][:3] for d in rec.selected_days) + f" at {at}"
    else:
        text = f"Scheduled at {at}"
    return f"{text} ({rec.timezone})"
