"""Helpers for narrowing a schedule feed to a single flight day."""
from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

import pandas as pd
from dateutil import parser as dateparse

from schedule_records import DroppedRow, FlightRecord, cell_text

logger = logging.getLogger(__name__)

MONTH_ABBREVIATIONS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")

_FILL_A = datetime(2000, 1, 1)
_FILL_B = datetime(2001, 2, 2)
_DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})[-\s/]?([A-Za-z]{3})[a-z]*[-\s/]?(\d{2}|\d{4})$")


def _parse_day_month_year(text: str) -> Optional[date]:
    match = _DAY_MONTH_YEAR_RE.match(text)
    if not match:
        return None
    day_text, month_text, year_text = match.groups()
    month_key = month_text.upper()
    if month_key not in MONTH_ABBREVIATIONS:
        return None
    year = int(year_text)
    if len(year_text) == 2:
        year += 2000
    try:
        return date(year, MONTH_ABBREVIATIONS.index(month_key) + 1, int(day_text))
    except ValueError:
        return None


def normalize_flight_date(value: Any) -> Optional[date]:
    """Return the calendar date represented by ``value`` or ``None``.

    Accepts native ``date``/``datetime``/``pd.Timestamp`` values, ``D-Mon-YY``
    style strings (``29-Mar-25``, ``1-Apr-2025``) and ISO or day-first
    numeric strings carrying a full day, month and year. Anything else,
    including blanks and partial dates such as ``Sep`` or ``08:00``, yields
    ``None``.
    """

    if value is None or value is pd.NaT:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    parsed = _parse_day_month_year(text)
    if parsed is not None:
        return parsed

    dayfirst = not re.match(r"^\d{4}-", text)
    try:
        first = dateparse.parse(text, dayfirst=dayfirst, default=_FILL_A)
        second = dateparse.parse(text, dayfirst=dayfirst, default=_FILL_B)
    except (ValueError, OverflowError, TypeError):
        return None
    # dateutil fills missing parts from ``default``; a complete date never depends on it.
    if first.date() != second.date():
        return None
    return first.date()


def format_sheet_date(day: date) -> str:
    """Return the ``DDMON`` label used for a schedule day (e.g. ``29SEP``)."""

    return f"{day.day:02d}{MONTH_ABBREVIATIONS[day.month - 1]}"


def most_common_date(records: Iterable[FlightRecord]) -> Optional[date]:
    """Return the flight date carried by most records.

    Ties are broken by first appearance. Records whose date cannot be parsed
    do not vote.
    """

    counts: Counter[date] = Counter()
    first_seen: dict[date, int] = {}
    for position, record in enumerate(records):
        parsed = normalize_flight_date(record.flight_date)
        if parsed is None:
            continue
        counts[parsed] += 1
        first_seen.setdefault(parsed, position)

    if not counts:
        return None
    return min(counts, key=lambda d: (-counts[d], first_seen[d]))


@dataclass
class WindowResult:
    target: date
    records: list[FlightRecord]
    excluded: list[DroppedRow] = field(default_factory=list)

    @property
    def unparseable(self) -> list[DroppedRow]:
        return [row for row in self.excluded if row.reason != "different flight date"]


def filter_by_date(records: Sequence[FlightRecord], target: date) -> WindowResult:
    """Keep only records whose flight date equals ``target``."""

    kept: list[FlightRecord] = []
    excluded: list[DroppedRow] = []
    for record in records:
        raw = cell_text(record.flight_date)
        if not raw:
            excluded.append(DroppedRow(record.source_row, "missing flight date", ""))
            continue
        parsed = normalize_flight_date(record.flight_date)
        if parsed is None:
            excluded.append(DroppedRow(record.source_row, "unparseable flight date", raw))
            continue
        if parsed != target:
            logger.debug("Excluding flight %s with date %s (target %s)", record.code_text, raw, target)
            excluded.append(DroppedRow(record.source_row, "different flight date", raw))
            continue
        kept.append(record)

    logger.info(
        "Filtered %d records to %d matching %s", len(records), len(kept), target.isoformat()
    )
    return WindowResult(target=target, records=kept, excluded=excluded)


__all__ = [
    "MONTH_ABBREVIATIONS",
    "WindowResult",
    "filter_by_date",
    "format_sheet_date",
    "most_common_date",
    "normalize_flight_date",
]
