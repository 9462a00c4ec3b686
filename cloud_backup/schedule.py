"""Backup schedules: when a profile runs and the next concrete run instant.

A schedule is a frequency variant plus a 24-hour time of day:

    Schedule(enabled=True, frequency=Weekly(3), time="06:00")

Variant payloads are validated when the value is built, so ``next_run``
never has to report a malformed schedule.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Any, assert_never

from cloud_backup.errors import ScheduleValidationError

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# Every day-of-month 1-31 occurs within any 13 consecutive months
_MONTH_SEARCH_LIMIT = 13


def _check_int(name: str, value: Any, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScheduleValidationError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ScheduleValidationError(f"{name} must be {low}-{high}, got {value}")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    hour: int
    minute: int

    def __post_init__(self) -> None:
        _check_int("Hour", self.hour, 0, 23)
        _check_int("Minute", self.minute, 0, 59)

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse a 24-hour ``HH:MM`` string."""
        match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
        if match is None:
            raise ScheduleValidationError(f"Time must be HH:MM, got {value!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    def as_time(self) -> time:
        return time(self.hour, self.minute)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class Daily:
    pass


@dataclass(frozen=True)
class Weekly:
    """Day of week, 0-6 with Sunday = 0."""

    day: int

    def __post_init__(self) -> None:
        _check_int("Weekly day", self.day, 0, 6)


@dataclass(frozen=True)
class Monthly:
    """Day of month, 1-31. Months without that day are skipped."""

    day: int

    def __post_init__(self) -> None:
        _check_int("Monthly day", self.day, 1, 31)


Frequency = Daily | Weekly | Monthly


def frequency_to_wire(frequency: Frequency) -> str | dict[str, int]:
    match frequency:
        case Daily():
            return "Daily"
        case Weekly(day=day):
            return {"Weekly": day}
        case Monthly(day=day):
            return {"Monthly": day}
        case _:
            assert_never(frequency)


def frequency_from_wire(data: Any) -> Frequency:
    """Decode ``"Daily"``, ``{"Weekly": n}`` or ``{"Monthly": n}``."""
    if data == "Daily":
        return Daily()
    if isinstance(data, Mapping) and len(data) == 1:
        ((tag, payload),) = data.items()
        if tag == "Daily" and payload is None:
            return Daily()
        if tag == "Weekly":
            return Weekly(payload)
        if tag == "Monthly":
            return Monthly(payload)
    raise ScheduleValidationError(f"Unknown frequency: {data!r}")


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ScheduleValidationError(f"Invalid timestamp: {value!r}") from e


@dataclass(frozen=True)
class Schedule:
    enabled: bool
    frequency: Frequency
    time: TimeOfDay
    last_run: datetime | None = None
    next_run: datetime | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.time, str):
            object.__setattr__(self, "time", TimeOfDay.parse(self.time))
        elif not isinstance(self.time, TimeOfDay):
            raise ScheduleValidationError(f"Time must be HH:MM, got {self.time!r}")
        if not isinstance(self.frequency, (Daily, Weekly, Monthly)):
            raise ScheduleValidationError(f"Unknown frequency: {self.frequency!r}")

    def with_next_run(self, now: datetime) -> Schedule:
        """Copy with ``next_run`` computed from ``now``."""
        return replace(self, next_run=next_run(self, now))

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "frequency": frequency_to_wire(self.frequency),
            "time": str(self.time),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Schedule:
        try:
            enabled = data["enabled"]
            frequency = data["frequency"]
            time_str = data["time"]
        except KeyError as e:
            raise ScheduleValidationError(f"Schedule is missing '{e.args[0]}'") from e

        return cls(
            enabled=bool(enabled),
            frequency=frequency_from_wire(frequency),
            time=time_str,
            last_run=_parse_timestamp(data.get("last_run")),
            next_run=_parse_timestamp(data.get("next_run")),
        )


def _at(day: date, tod: TimeOfDay, like: datetime) -> datetime:
    return datetime.combine(day, tod.as_time(), tzinfo=like.tzinfo)


def next_run(schedule: Schedule, from_: datetime) -> datetime | None:
    """First instant strictly after ``from_`` matching the schedule.

    Computed in the wall clock of ``from_``. Returns None for a disabled
    schedule.
    """
    if not schedule.enabled:
        return None

    tod = schedule.time
    today = from_.date()

    match schedule.frequency:
        case Daily():
            candidate = _at(today, tod, from_)
            if candidate <= from_:
                candidate = _at(today + timedelta(days=1), tod, from_)
            return candidate

        case Weekly(day=day):
            # isoweekday: Monday=1..Sunday=7, so % 7 gives Sunday=0
            days_ahead = (day - today.isoweekday() % 7) % 7
            target = today + timedelta(days=days_ahead)
            candidate = _at(target, tod, from_)
            if candidate <= from_:
                candidate = _at(target + timedelta(days=7), tod, from_)
            return candidate

        case Monthly(day=day):
            year, month = today.year, today.month
            for _ in range(_MONTH_SEARCH_LIMIT):
                try:
                    candidate = _at(date(year, month, day), tod, from_)
                except ValueError:
                    candidate = None
                if candidate is not None and candidate > from_:
                    return candidate
                year, month = (year + 1, 1) if month == 12 else (year, month + 1)
            raise RuntimeError(f"No month within {_MONTH_SEARCH_LIMIT} has day {day}")

        case _:
            assert_never(schedule.frequency)
