"""Flight plan update status calculations.

Flight plans have to be refreshed four hours before STD. Which refresh slot a
departure belongs to depends on the quarter of the day its STD falls in, so
the deadline is looked up in :data:`UPDATE_DEADLINE_BANDS` rather than derived
from the STD directly. All inputs are interpreted in UTC.
"""
from __future__ import annotations

import numbers
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Optional

import pandas as pd
from dateutil import parser as dateparse

from date_window import normalize_flight_date
from schedule_records import FlightRecord, cell_text


class StatusKind(str, Enum):
    SATISFIED = "satisfied"
    TOO_FAR = "too_far"
    URGENT_NOW = "urgent_now"
    ACTION_DUE = "action_due"
    ACTION_PENDING = "action_pending"
    ERROR = "error"


URGENT_WINDOW_HOURS = 3.0
LOOKAHEAD_HOURS = 24.0


def _clock(hours: int, minutes: int) -> float:
    return hours + minutes / 60


@dataclass(frozen=True)
class DeadlineBand:
    start: float
    end: float
    deadline: float

    def contains(self, std_hours: float) -> bool:
        return self.start <= std_hours < self.end


# Airline policy constants: STD bands [start, end) and the UTC hour by which
# the flight plan must be updated. Night departures (19:10-01:10) share the
# previous afternoon's 16:05 slot.
BAND_BOUNDARY_0110 = _clock(1, 10)
BAND_BOUNDARY_0710 = _clock(7, 10)
BAND_BOUNDARY_1310 = _clock(13, 10)
BAND_BOUNDARY_1910 = _clock(19, 10)

DEADLINE_0405 = _clock(4, 5)
DEADLINE_1005 = _clock(10, 5)
DEADLINE_1605 = _clock(16, 5)
DEADLINE_2205 = _clock(22, 5)

UPDATE_DEADLINE_BANDS: tuple[DeadlineBand, ...] = (
    DeadlineBand(0.0, BAND_BOUNDARY_0110, DEADLINE_1605),
    DeadlineBand(BAND_BOUNDARY_0110, BAND_BOUNDARY_0710, DEADLINE_2205),
    DeadlineBand(BAND_BOUNDARY_0710, BAND_BOUNDARY_1310, DEADLINE_0405),
    DeadlineBand(BAND_BOUNDARY_1310, BAND_BOUNDARY_1910, DEADLINE_1005),
    DeadlineBand(BAND_BOUNDARY_1910, 24.0, DEADLINE_1605),
)

STATUS_LABELS = {
    StatusKind.SATISFIED: "OK",
    StatusKind.TOO_FAR: "TOO FAR",
    StatusKind.URGENT_NOW: "UPDATE NOW!!!!",
    StatusKind.ACTION_DUE: "UPDATE",
    StatusKind.ACTION_PENDING: "UPDATE IN {remaining} H",
    StatusKind.ERROR: "ERROR: {detail}",
}


@dataclass(frozen=True)
class FlightStatus:
    kind: StatusKind
    hours_until: Optional[float] = None
    deadline_hour: Optional[float] = None
    remaining_hours: Optional[float] = None
    detail: str = ""

    @property
    def remaining_display(self) -> str:
        if self.remaining_hours is None:
            return ""
        return f"{self.remaining_hours:.1f}"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.kind].format(remaining=self.remaining_display, detail=self.detail)

    @property
    def is_urgent(self) -> bool:
        return self.kind is StatusKind.URGENT_NOW


@dataclass(frozen=True)
class NowContext:
    today: date
    time_of_day: time

    @classmethod
    def from_datetime(cls, now: datetime) -> "NowContext":
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        now = now.astimezone(timezone.utc)
        return cls(today=now.date(), time_of_day=now.time().replace(tzinfo=None))


_HH_MM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_HHMM_RE = re.compile(r"^(\d{1,2})(\d{2})$")
_FRACTION_RE = re.compile(r"^(0?\.\d+|0|1(?:\.0+)?)$")


def _hours(hour: int, minute: int, second: int = 0) -> float:
    if minute >= 60 or second >= 60:
        raise ValueError(f"invalid time {hour:02d}:{minute:02d}:{second:02d}")
    value = hour + minute / 60
    if second:
        value += second / 3600
    if not 0 <= value <= 24:
        raise ValueError(f"time out of range: {hour:02d}:{minute:02d}")
    return value


def hours_of_day(value: Any) -> float:
    """Return ``value`` as fractional hours since midnight UTC (0-24).

    Understands ``time``/``datetime`` values, ``timedelta`` offsets,
    fractional-day numbers (``0.5`` is noon), ``HH:MM[:SS]`` and ``HHMM``
    strings, and timestamp text with a clock part. Raises ``ValueError``
    for anything else, including date-only text.
    """

    if isinstance(value, bool) or value is None or value is pd.NaT:
        raise ValueError(f"cannot read a time from {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return _hours(value.hour, value.minute, value.second)
    if isinstance(value, time):
        return _hours(value.hour, value.minute, value.second)
    if isinstance(value, timedelta):
        hours = value.total_seconds() / 3600
        if not 0 <= hours <= 24:
            raise ValueError(f"time offset out of range: {value}")
        return hours
    if isinstance(value, numbers.Real):
        if 0 <= value <= 1:
            return float(value) * 24
        if float(value).is_integer() and 0 <= value <= 2400:
            whole = int(value)
            return _hours(whole // 100, whole % 100)
        raise ValueError(f"cannot read a time from {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty time value")
        match = _HH_MM_RE.match(text)
        if match:
            return _hours(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
        match = _HHMM_RE.match(text)
        if match:
            return _hours(int(match.group(1)), int(match.group(2)))
        if _FRACTION_RE.match(text):
            return float(text) * 24
        # Free-form text must carry a clock part ("2025-09-29T08:00", "8:00 AM").
        if ":" not in text:
            raise ValueError(f"cannot read a time from {text!r}")
        try:
            parsed = dateparse.parse(text)
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"cannot read a time from {text!r}") from exc
        return _hours(parsed.hour, parsed.minute, parsed.second)
    raise ValueError(f"cannot read a time from {value!r}")


def _calendar_date(value: Any, label: str) -> date:
    parsed = normalize_flight_date(value)
    if parsed is None:
        raise ValueError(f"cannot read {label} from {cell_text(value)!r}")
    return parsed


def deadline_for_std(std_hours: float) -> float:
    """Return the update deadline hour for a departure at ``std_hours``."""

    for band in UPDATE_DEADLINE_BANDS:
        if band.contains(std_hours):
            return band.deadline
    return UPDATE_DEADLINE_BANDS[-1].deadline


def _is_updated(flag: Any) -> bool:
    if isinstance(flag, bool):
        return flag
    return cell_text(flag).upper() == "Y"


def hours_until_departure(flight_date: Any, std: Any, today: Any, now: Any) -> Optional[float]:
    """Hours from ``today``/``now`` until the departure, ``None`` if unreadable."""

    try:
        days_diff = (_calendar_date(flight_date, "flight date") - _calendar_date(today, "today")).days
        return days_diff * 24 + (hours_of_day(std) - hours_of_day(now))
    except ValueError:
        return None


def compute_update_status(flight_date: Any, std: Any, updated_flag: Any, today: Any, now: Any) -> FlightStatus:
    """Return the flight plan update status for one flight.

    ``today`` is the current UTC date and ``now`` the current UTC time of day
    (any representation :func:`hours_of_day` understands). The status never
    raises; unreadable inputs produce an ``ERROR`` status.
    """

    if _is_updated(updated_flag) or not cell_text(flight_date) or not cell_text(std):
        return FlightStatus(StatusKind.SATISFIED)

    try:
        days_diff = (_calendar_date(flight_date, "flight date") - _calendar_date(today, "today")).days
        std_hours = hours_of_day(std)
        now_hours = hours_of_day(now)
    except ValueError as exc:
        return FlightStatus(StatusKind.ERROR, detail=str(exc))

    hours_until = days_diff * 24 + (std_hours - now_hours)

    if 0 <= hours_until < URGENT_WINDOW_HOURS:
        return FlightStatus(StatusKind.URGENT_NOW, hours_until=hours_until)

    if hours_until > LOOKAHEAD_HOURS or days_diff > 0:
        return FlightStatus(StatusKind.TOO_FAR, hours_until=hours_until)

    deadline = deadline_for_std(std_hours)
    if now_hours >= deadline:
        return FlightStatus(StatusKind.ACTION_DUE, hours_until=hours_until, deadline_hour=deadline)
    return FlightStatus(
        StatusKind.ACTION_PENDING,
        hours_until=hours_until,
        deadline_hour=deadline,
        remaining_hours=deadline - now_hours,
    )


def status_for_record(record: FlightRecord, context: NowContext) -> FlightStatus:
    return compute_update_status(
        record.flight_date,
        record.std,
        record.updated_flag,
        context.today,
        context.time_of_day,
    )


def evaluate_statuses(
    records: Iterable[FlightRecord],
    now: datetime,
) -> list[tuple[FlightRecord, FlightStatus]]:
    """Compute the status of every record against one captured ``now``."""

    context = NowContext.from_datetime(now)
    return [(record, status_for_record(record, context)) for record in records]


__all__ = [
    "BAND_BOUNDARY_0110",
    "BAND_BOUNDARY_0710",
    "BAND_BOUNDARY_1310",
    "BAND_BOUNDARY_1910",
    "DeadlineBand",
    "FlightStatus",
    "NowContext",
    "STATUS_LABELS",
    "StatusKind",
    "UPDATE_DEADLINE_BANDS",
    "compute_update_status",
    "deadline_for_std",
    "evaluate_statuses",
    "hours_of_day",
    "hours_until_departure",
    "status_for_record",
]
