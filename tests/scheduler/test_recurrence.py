"""Tests for schedule recurrence."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cloudmover.core.errors import InvalidInputError
from cloudmover.scheduler.recurrence import Recurrence, compute_next_run, describe_schedule
from cloudmover.store.models import ScheduledTask

# Monday
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _at(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestRecurrence:
    """Tests for Recurrence validation."""

    @pytest.mark.parametrize(
        "fields",
        [
            {"hour": 24},
            {"minute": 60},
            {"day_of_week": 7},
            {"day_of_month": 0},
            {"selected_days": (1, 8)},
            {"timezone": "Mars/Olympus_Mons"},
        ],
    )
    def test_rejects_invalid_fields(self, fields: dict) -> None:
        """Out of range fields should be rejected."""
        with pytest.raises(InvalidInputError):
            Recurrence("daily", **fields)

    def test_rejects_unknown_frequency(self) -> None:
        """An unknown frequency should be rejected."""
        with pytest.raises(ValueError):
            Recurrence("fortnightly")

    def test_selected_days_normalized(self) -> None:
        """Selected days should be deduplicated and sorted."""
        assert Recurrence("custom", selected_days=(3, 1, 3)).selected_days == (1, 3)

    def test_from_task(self) -> None:
        """Should read the schedule columns of a task."""
        task = ScheduledTask(frequency="weekly", hour=9, minute=15, day_of_week=5, timezone="Europe/Paris")
        rec = Recurrence.from_task(task)
        assert rec.hour == 9
        assert rec.minute == 15
        assert rec.day_of_week == 5
        assert rec.selected_days == ()
        assert rec.timezone == "Europe/Paris"


class TestComputeNextRun:
    """Tests for compute_next_run."""

    def test_hourly(self) -> None:
        """Hourly runs at the configured minute of the next hour."""
        rec = Recurrence("hourly", minute=30)
        assert compute_next_run(rec, _at(2024, 1, 1, 10, 5)) == _at(2024, 1, 1, 11, 30)
        assert compute_next_run(rec, _at(2024, 1, 1, 23, 45)) == _at(2024, 1, 2, 0, 30)

    def test_daily_later_today(self) -> None:
        """Daily runs today when the time has not passed."""
        assert compute_next_run(Recurrence("daily", hour=13), NOW) == _at(2024, 1, 1, 13, 0)

    def test_daily_tomorrow(self) -> None:
        """Daily runs tomorrow when the time has passed."""
        assert compute_next_run(Recurrence("daily", hour=8), NOW) == _at(2024, 1, 2, 8, 0)

    def test_strictly_after_now(self) -> None:
        """A slot equal to now should not be returned."""
        assert compute_next_run(Recurrence("daily", hour=12), NOW) == _at(2024, 1, 2, 12, 0)

    def test_daily_in_timezone(self) -> None:
        """Wall-clock time is taken in the task's timezone."""
        rec = Recurrence("daily", hour=8, timezone="Europe/Paris")
        assert compute_next_run(rec, _at(2024, 1, 1, 6, 0)) == _at(2024, 1, 1, 7, 0)
        assert compute_next_run(rec, _at(2024, 7, 1, 5, 0)) == _at(2024, 7, 1, 6, 0)

    def test_daily_across_dst_change(self) -> None:
        """The local time should hold across a daylight saving change."""
        rec = Recurrence("daily", hour=8, timezone="America/New_York")
        assert compute_next_run(rec, _at(2024, 3, 9, 14, 0)) == _at(2024, 3, 10, 12, 0)

    def test_weekly(self) -> None:
        """Weekly runs on the next configured weekday."""
        assert compute_next_run(Recurrence("weekly", day_of_week=3), NOW) == _at(2024, 1, 3, 8, 0)
        assert compute_next_run(Recurrence("weekly", day_of_week=1), NOW) == _at(2024, 1, 8, 8, 0)
        assert compute_next_run(Recurrence("weekly", day_of_week=1), _at(2024, 1, 1, 7, 0)) == _at(2024, 1, 1, 8, 0)

    def test_weekly_defaults_to_monday(self) -> None:
        """A weekly schedule without a weekday runs on Mondays."""
        assert compute_next_run(Recurrence("weekly"), NOW) == _at(2024, 1, 8, 8, 0)

    def test_monthly(self) -> None:
        """Monthly runs this month or the next."""
        rec = Recurrence("monthly", day_of_month=15)
        assert compute_next_run(rec, NOW) == _at(2024, 1, 15, 8, 0)
        assert compute_next_run(rec, _at(2024, 12, 20)) == _at(2025, 1, 15, 8, 0)

    def test_monthly_clamps_to_month_length(self) -> None:
        """A day past the end of the month runs on the last day."""
        rec = Recurrence("monthly", day_of_month=31)
        assert compute_next_run(rec, _at(2024, 2, 10)) == _at(2024, 2, 29, 8, 0)
        assert compute_next_run(rec, _at(2023, 2, 10)) == _at(2023, 2, 28, 8, 0)
        assert compute_next_run(rec, _at(2024, 2, 29, 9, 0)) == _at(2024, 3, 31, 8, 0)

    def test_custom_days(self) -> None:
        """Custom runs on the nearest selected weekday."""
        assert compute_next_run(Recurrence("custom", selected_days=(1, 3)), NOW) == _at(2024, 1, 3, 8, 0)
        assert compute_next_run(Recurrence("custom", selected_days=(1,)), NOW) == _at(2024, 1, 8, 8, 0)
        assert compute_next_run(Recurrence("custom", selected_days=(0,)), NOW) == _at(2024, 1, 7, 8, 0)

    def test_custom_without_days(self) -> None:
        """Custom without selected days runs tomorrow."""
        rec = Recurrence("custom")
        assert compute_next_run(rec, NOW) == _at(2024, 1, 2, 8, 0)
        assert compute_next_run(rec, _at(2024, 1, 1, 7, 0)) == _at(2024, 1, 2, 8, 0)

    def test_naive_now_is_utc(self) -> None:
        """Naive reference times are taken as UTC."""
        assert compute_next_run(Recurrence("daily", hour=13), datetime(2024, 1, 1, 12, 0)) == _at(2024, 1, 1, 13, 0)

    def test_accepts_task(self) -> None:
        """A ScheduledTask can be passed directly."""
        task = ScheduledTask(frequency="daily", hour=13, minute=0, timezone="UTC")
        assert compute_next_run(task, NOW) == _at(2024, 1, 1, 13, 0)

    @pytest.mark.parametrize(
        "rec",
        [
            Recurrence("hourly", minute=59),
            Recurrence("daily", hour=0),
            Recurrence("weekly", day_of_week=6, timezone="Asia/Kolkata"),
            Recurrence("monthly", day_of_month=31, timezone="Pacific/Auckland"),
            Recurrence("custom", selected_days=(2, 5), timezone="America/Los_Angeles"),
        ],
    )
    def test_always_future_and_stable(self, rec: Recurrence) -> None:
        """Results are after now, repeatable, and advance when chained."""
        now = NOW
        for _ in range(40):
            first = compute_next_run(rec, now)
            assert first > now
            assert compute_next_run(rec, now) == first
            assert first - now <= timedelta(days=32)
            now = first


class TestDescribeSchedule:
    """Tests for describe_schedule."""

    @pytest.mark.parametrize(
        ("rec", "expected"),
        [
            (Recurrence("hourly", minute=15), "Every hour at minute 15 (UTC)"),
            (Recurrence("daily", hour=7, minute=5), "Every day at 07:05 (UTC)"),
            (Recurrence("weekly", day_of_week=1, timezone="Europe/Paris"), "Every Monday at 08:00 (Europe/Paris)"),
            (Recurrence("monthly", day_of_month=31), "On day 31 of every month at 08:00 (UTC)"),
            (Recurrence("custom", selected_days=(3, 1)), "Mon, Wed at 08:00 (UTC)"),
            (Recurrence("custom"), "Scheduled at 08:00 (UTC)"),
        ],
    )
    def test_describe(self, rec: Recurrence, expected: str) -> None:
        """Should summarize each frequency."""
        assert describe_schedule(rec) == expected
