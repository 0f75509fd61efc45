"""Notification schedules and the due-check evaluator.

A saved search's notification configuration is modelled as a tagged variant
keyed on ``frequency``::

    Realtime | Daily{time} | Weekly{time, days} | Monthly{time}

Each variant is a frozen pydantic model; :data:`Schedule` is the
discriminated union used by :class:`~idxalerts.core.models.SavedSearch`.
Invariants (``HH:MM`` shape, non-empty weekly days) are enforced when the
variant is built, so a :data:`Schedule` value is always runnable.

:func:`is_due` is a pure function of the search and an injected ``now``.  It
holds no process-local state, so restarts or several worker processes
always reach the same decision.

Minute-exact matching
---------------------
Daily, weekly and monthly schedules fire only when the local wall clock
reads exactly the configured ``HH:MM``.  The trigger must therefore tick at
least once per minute; :func:`~idxalerts.orchestrator.scheduler.run_continuous`
ticks on every minute boundary.  A scheduled search whose ``last_run_at``
already falls inside the current local minute is reported as not due, so two
ticks inside the same minute never run it twice.

Typical usage::

    from idxalerts.core.schedule import is_due

    due = [s for s in searches if is_due(s, now, tz=settings.tzinfo)]
"""

from __future__ import annotations

import re
from datetime import datetime, tzinfo
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any, Final, Literal, Union, assert_never

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from idxalerts.core.exceptions import ScheduleError

if TYPE_CHECKING:
    from idxalerts.core.models import SavedSearch

__all__ = [
    "Frequency",
    "Weekday",
    "MONTHLY_RUN_DAYS",
    "RealtimeSchedule",
    "DailySchedule",
    "WeeklySchedule",
    "MonthlySchedule",
    "Schedule",
    "build_schedule",
    "is_due",
    "local_wall_clock",
]

#: Days of the month on which ``monthly`` searches run.
MONTHLY_RUN_DAYS: Final[frozenset[int]] = frozenset({1, 15})

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Frequency(StrEnum):
    """Notification cadences a client can choose for a saved search."""

    REALTIME = "realtime"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Weekday(StrEnum):
    """Lowercase English weekday names, Monday first (``datetime.weekday()`` order)."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, moment: datetime) -> Weekday:
        """Return the weekday of *moment*."""
        return list(cls)[moment.weekday()]


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class RealtimeSchedule(BaseModel):
    """Run on every trigger tick; the trigger cadence is the only throttle."""

    model_config = {"frozen": True}

    frequency: Literal["realtime"] = "realtime"


class _TimedSchedule(BaseModel):
    """Shared ``time`` field for every wall-clock schedule."""

    model_config = {"frozen": True}

    time: str = Field(..., description="Local wall-clock time of day, HH:MM.")

    @field_validator("time", mode="before")
    @classmethod
    def _normalise_time(cls, v: object) -> object:
        """Accept ``H:MM`` or ``HH:MM`` and store the zero-padded form."""
        if not isinstance(v, str):
            return v
        m = _TIME_RE.match(v)
        if m is None:
            raise ValueError(f"notification time must be HH:MM, got {v!r}")
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            raise ValueError(f"notification time out of range: {v!r}")
        return f"{hour:02d}:{minute:02d}"


class DailySchedule(_TimedSchedule):
    """Run once a day at :attr:`time`."""

    frequency: Literal["daily"] = "daily"


class WeeklySchedule(_TimedSchedule):
    """Run at :attr:`time` on each of :attr:`days`."""

    frequency: Literal["weekly"] = "weekly"
    days: tuple[Weekday, ...] = Field(..., min_length=1)

    @field_validator("days", mode="before")
    @classmethod
    def _normalise_days(cls, v: object) -> object:
        """Lowercase, strip and de-duplicate day names, keeping first-seen order."""
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            seen: list[str] = []
            for day in v:
                name = str(day).strip().lower()
                if name and name not in seen:
                    seen.append(name)
            return tuple(seen)
        return v


class MonthlySchedule(_TimedSchedule):
    """Run at :attr:`time` on the 1st and 15th of every month."""

    frequency: Literal["monthly"] = "monthly"


Schedule = Annotated[
    Union[RealtimeSchedule, DailySchedule, WeeklySchedule, MonthlySchedule],
    Field(discriminator="frequency"),
]

_SCHEDULE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Schedule)


def build_schedule(
    frequency: str,
    time: str | None = None,
    days: list[str] | tuple[str, ...] | None = None,
) -> RealtimeSchedule | DailySchedule | WeeklySchedule | MonthlySchedule:
    """Build a :data:`Schedule` from the flat fields used by storage and APIs.

    Args:
        frequency: ``realtime`` / ``daily`` / ``weekly`` / ``monthly``.
        time: ``HH:MM``; required for every frequency except ``realtime``.
        days: Weekday names; required and non-empty for ``weekly``.

    Raises:
        ScheduleError: If the combination violates a schedule invariant.
    """
    payload: dict[str, Any] = {"frequency": (frequency or "").strip().lower()}
    if payload["frequency"] != Frequency.REALTIME:
        payload["time"] = time
    if payload["frequency"] == Frequency.WEEKLY:
        payload["days"] = list(days or [])
    try:
        return _SCHEDULE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ScheduleError(f"Invalid {frequency!r} schedule: {exc}") from exc


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


def local_wall_clock(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Return *moment* as local wall-clock time.

    Aware datetimes are converted to *tz* (when given); naive datetimes are
    taken to be local already and returned unchanged.
    """
    if moment.tzinfo is None or tz is None:
        return moment
    return moment.astimezone(tz)


def _minute_key(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def _ran_this_minute(
    last_run_at: datetime | None,
    local_now: datetime,
    tz: tzinfo | None,
) -> bool:
    if last_run_at is None:
        return False
    if local_now.tzinfo is None:
        last_local = local_wall_clock(last_run_at, tz).replace(tzinfo=None)
    elif last_run_at.tzinfo is None:
        last_local = last_run_at.replace(tzinfo=local_now.tzinfo)
    else:
        last_local = last_run_at.astimezone(local_now.tzinfo)
    return _minute_key(last_local) == _minute_key(local_now)


def is_due(search: SavedSearch, now: datetime, tz: tzinfo | None = None) -> bool:
    """Return ``True`` if *search* should run at *now*.

    Pure and deterministic: the result depends only on the search's
    persisted fields, *now*, and *tz*.

    Args:
        search: The saved search to evaluate.
        now: Reference instant.  Aware values are converted to *tz*; naive
            values are treated as local wall-clock time.
        tz: Local timezone for the wall-clock comparison.

    Returns:
        ``False`` for inactive searches.  ``True`` for realtime searches.
        For timed schedules, ``True`` only when the local ``HH:MM`` equals
        the configured time on a qualifying day and the search has not
        already run within the current minute.
    """
    if not search.is_active:
        return False

    local_now = local_wall_clock(now, tz)
    hhmm = local_now.strftime("%H:%M")
    schedule = search.schedule

    match schedule:
        case RealtimeSchedule():
            return True
        case DailySchedule():
            due = hhmm == schedule.time
        case WeeklySchedule():
            due = Weekday.of(local_now) in schedule.days and hhmm == schedule.time
        case MonthlySchedule():
            due = local_now.day in MONTHLY_RUN_DAYS and hhmm == schedule.time
        case _:
            assert_never(schedule)

    return due and not _ran_this_minute(search.last_run_at, local_now, tz)
