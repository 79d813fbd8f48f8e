"""Selection and formatting of urgent flight plan update alerts."""
from __future__ import annotations

import numbers
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Iterable, Optional

from notifications import Notification
from schedule_records import FlightRecord, cell_text
from update_status import FlightStatus

_HH_MM_PREFIX_RE = re.compile(r"^\d{1,2}:\d{2}")
_HHMM_RE = re.compile(r"^\d{3,4}$")


@dataclass
class AlertSelection:
    flights: list[tuple[FlightRecord, FlightStatus]] = field(default_factory=list)
    total_urgent: int = 0
    cap: int = 0

    @property
    def truncated(self) -> bool:
        return self.total_urgent > len(self.flights)

    def __bool__(self) -> bool:
        return bool(self.flights)


def select_urgent_flights(
    evaluated: Iterable[tuple[FlightRecord, FlightStatus]],
    cap: int,
) -> AlertSelection:
    """Return the first ``cap`` urgent flights in encounter order."""

    urgent = [
        (record, status)
        for record, status in evaluated
        if status.is_urgent and cell_text(record.flight_date) and cell_text(record.code)
    ]
    limit = max(int(cap), 0)
    return AlertSelection(flights=urgent[:limit], total_urgent=len(urgent), cap=limit)


def format_value(value: Any) -> str:
    text = cell_text(value)
    return text or "N/A"


def format_time_value(value: Any) -> str:
    """Render an STD/STA value as ``HH:MM``."""

    if value is None or value == "":
        return "N/A"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        total_minutes = round(float(value) * 24 * 60)
        return f"{(total_minutes // 60) % 24:02d}:{total_minutes % 60:02d}"
    text = str(value).strip()
    if _HH_MM_PREFIX_RE.match(text):
        return text
    if _HHMM_RE.match(text):
        return f"{int(text[:-2]):02d}:{text[-2:]}"
    return text or "N/A"


def build_urgent_alert_message(
    selection: AlertSelection,
    now: datetime,
    *,
    link: Optional[str] = None,
) -> Notification:
    """Build the notification listing every selected urgent flight."""

    count = len(selection.flights)
    now_utc = now.astimezone(timezone.utc) if now.tzinfo else now
    lines = [
        f"URGENT: {count} flight(s) need an immediate flight plan update",
        "(Within 3 hours of departure - must update at STD-4 hours)",
        "",
        f"Current time: {now_utc:%H:%M} UTC",
        "",
    ]
    for index, (record, _status) in enumerate(selection.flights, start=1):
        lines.extend(
            [
                f"{index}. Flight {format_value(record.code)}",
                f"   Date: {format_value(record.flight_date)}",
                f"   Registration: {format_value(record.vehicle_reg)}",
                f"   Route: {format_value(record.dep_string)} → {format_value(record.arr_string)}",
                f"   STD: {format_time_value(record.std)} UTC",
                f"   STA: {format_time_value(record.sta)} UTC",
                "   ACTION: UPDATE FLIGHT PLAN NOW!",
                "",
            ]
        )
    if link:
        lines.extend([f"View schedule: {link}", ""])
    lines.append("Flight plans must be updated 4 hours before STD (Scheduled Time of Departure).")
    if selection.truncated:
        lines.append(
            f"Note: this alert shows the first {count} of {selection.total_urgent} urgent flights. "
            "Check the schedule for the rest."
        )

    return Notification(
        kind="urgent_update",
        subject=f"URGENT: {count} Flight Plan Update(s) Required NOW",
        body="\n".join(lines),
        payload={
            "flights": [cell_text(record.code) for record, _ in selection.flights],
            "total_urgent": selection.total_urgent,
            "truncated": selection.truncated,
        },
    )


__all__ = [
    "AlertSelection",
    "build_urgent_alert_message",
    "format_time_value",
    "format_value",
    "select_urgent_flights",
]
