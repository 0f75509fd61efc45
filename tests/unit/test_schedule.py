"""Unit tests for notification schedules and the due-check evaluator.

Covers:
- ``build_schedule`` — variant construction, normalisation, invariant errors.
- ``is_due`` — realtime, daily, weekly and monthly minute-exact matching,
  inactive searches, timezone conversion and the same-minute guard.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from idxalerts.core.exceptions import ScheduleError
from idxalerts.core.schedule import (
    DailySchedule,
    Frequency,
    MonthlySchedule,
    RealtimeSchedule,
    Weekday,
    WeeklySchedule,
    build_schedule,
    is_due,
    local_wall_clock,
)

VANCOUVER = ZoneInfo("America/Vancouver")

# 2024-03-04 is a Monday.
MONDAY_0800 = datetime(2024, 3, 4, 8, 0)


# ---------------------------------------------------------------------------
# build_schedule
# ---------------------------------------------------------------------------


class TestBuildSchedule:
    def test_realtime_ignores_time_and_days(self) -> None:
        schedule = build_schedule("realtime", time="09:00", days=["monday"])
        assert isinstance(schedule, RealtimeSchedule)
        assert schedule.frequency == Frequency.REALTIME

    def test_daily_zero_pads_time(self) -> None:
        schedule = build_schedule("daily", time="8:05")
        assert isinstance(schedule, DailySchedule)
        assert schedule.time == "08:05"

    def test_frequency_is_case_insensitive(self) -> None:
        assert isinstance(build_schedule(" Monthly ", time="07:30"), MonthlySchedule)

    def test_weekly_normalises_days(self) -> None:
        schedule = build_schedule("weekly", time="08:00", days=["Monday", " friday", "monday"])
        assert isinstance(schedule, WeeklySchedule)
        assert schedule.days == (Weekday.MONDAY, Weekday.FRIDAY)

    def test_weekly_without_days_is_rejected(self) -> None:
        with pytest.raises(ScheduleError):
            build_schedule("weekly", time="08:00", days=[])

    def test_weekly_with_unknown_day_is_rejected(self) -> None:
        with pytest.raises(ScheduleError):
            build_schedule("weekly", time="08:00", days=["funday"])

    @pytest.mark.parametrize("frequency", ["daily", "weekly", "monthly"])
    def test_timed_schedule_requires_time(self, frequency: str) -> None:
        with pytest.raises(ScheduleError):
            build_schedule(frequency, time=None, days=["monday"])

    @pytest.mark.parametrize("bad_time", ["24:00", "12:60", "noon", "8", ""])
    def test_malformed_time_is_rejected(self, bad_time: str) -> None:
        with pytest.raises(ScheduleError):
            build_schedule("daily", time=bad_time)

    def test_unknown_frequency_is_rejected(self) -> None:
        with pytest.raises(ScheduleError):
            build_schedule("hourly", time="08:00")


# ---------------------------------------------------------------------------
# is_due
# ---------------------------------------------------------------------------


class TestIsDueWeekly:
    """Weekly schedule exactness on Monday at 08:00."""

    @pytest.fixture()
    def weekly(self, make_search):
        return make_search(schedule=build_schedule("weekly", time="08:00", days=["monday"]))

    def test_due_on_configured_day_and_minute(self, weekly) -> None:
        assert is_due(weekly, MONDAY_0800) is True

    def test_not_due_one_minute_late(self, weekly) -> None:
        assert is_due(weekly, MONDAY_0800 + timedelta(minutes=1)) is False

    def test_not_due_on_other_day(self, weekly) -> None:
        assert is_due(weekly, MONDAY_0800 + timedelta(days=1)) is False

    def test_seconds_within_the_minute_still_match(self, weekly) -> None:
        assert is_due(weekly, MONDAY_0800.replace(second=42)) is True

    def test_inactive_search_is_never_due(self, make_search) -> None:
        search = make_search(
            schedule=build_schedule("weekly", time="08:00", days=["monday"]),
            is_active=False,
        )
        assert is_due(search, MONDAY_0800) is False


class TestIsDueOtherFrequencies:
    def test_realtime_is_always_due(self, make_search) -> None:
        search = make_search()
        assert is_due(search, MONDAY_0800) is True
        assert is_due(search, MONDAY_0800 + timedelta(minutes=17)) is True

    def test_inactive_realtime_is_not_due(self, make_search) -> None:
        assert is_due(make_search(is_active=False), MONDAY_0800) is False

    def test_daily_matches_exact_minute_only(self, make_search) -> None:
        search = make_search(schedule=build_schedule("daily", time="08:00"))
        assert is_due(search, MONDAY_0800) is True
        assert is_due(search, MONDAY_0800 + timedelta(days=3)) is True
        assert is_due(search, MONDAY_0800 - timedelta(minutes=1)) is False

    @pytest.mark.parametrize(
        ("day", "expected"),
        [(1, True), (15, True), (2, False), (14, False), (31, False)],
    )
    def test_monthly_runs_on_first_and_fifteenth(self, make_search, day: int, expected: bool) -> None:
        search = make_search(schedule=build_schedule("monthly", time="09:30"))
        assert is_due(search, datetime(2024, 1, day, 9, 30)) is expected


class TestIsDueTimezone:
    def test_aware_now_is_converted_to_local_zone(self, make_search) -> None:
        search = make_search(schedule=build_schedule("daily", time="08:00"))
        # 08:00 in Vancouver (PST, UTC-8) on 2024-01-10 is 16:00 UTC.
        now = datetime(2024, 1, 10, 16, 0, tzinfo=UTC)
        assert is_due(search, now, tz=VANCOUVER) is True
        assert is_due(search, now, tz=UTC) is False

    def test_local_wall_clock_leaves_naive_values_untouched(self) -> None:
        naive = datetime(2024, 1, 10, 8, 0)
        assert local_wall_clock(naive, VANCOUVER) is naive


class TestSameMinuteGuard:
    def test_not_due_again_within_the_same_minute(self, make_search) -> None:
        now = datetime(2024, 1, 10, 16, 0, 30, tzinfo=UTC)
        search = make_search(
            schedule=build_schedule("daily", time="08:00"),
            last_run_at=datetime(2024, 1, 10, 16, 0, 5, tzinfo=UTC),
        )
        assert is_due(search, now, tz=VANCOUVER) is False

    def test_run_on_previous_day_does_not_block(self, make_search) -> None:
        now = datetime(2024, 1, 10, 16, 0, tzinfo=UTC)
        search = make_search(
            schedule=build_schedule("daily", time="08:00"),
            last_run_at=now - timedelta(days=1),
        )
        assert is_due(search, now, tz=VANCOUVER) is True

    def test_realtime_ignores_the_guard(self, make_search) -> None:
        now = datetime(2024, 1, 10, 16, 0, 30, tzinfo=UTC)
        search = make_search(last_run_at=now - timedelta(seconds=10))
        assert is_due(search, now, tz=VANCOUVER) is True

    def test_guard_emits_no_log_records(self, make_search, caplog) -> None:
        now = datetime(2024, 1, 10, 16, 0, 30, tzinfo=UTC)
        search = make_search(
            schedule=build_schedule("daily", time="08:00"),
            last_run_at=datetime(2024, 1, 10, 16, 0, 5, tzinfo=UTC),
        )

        with caplog.at_level(logging.DEBUG):
            assert is_due(search, now, tz=VANCOUVER) is False

        assert caplog.records == []
