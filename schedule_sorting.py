"""Helpers for sorting schedule snapshots."""
from __future__ import annotations

from typing import Iterable

from schedule_records import FlightRecord, cell_text


def _code_sort_key(record: FlightRecord) -> str:
    """Return the raw flight code used as the snapshot sort key."""

    return cell_text(record.code)


def sort_by_code(records: Iterable[FlightRecord]) -> list[FlightRecord]:
    """Return records ordered by flight code, A-Z.

    Comparison is plain string ordering on the code as received, and records
    sharing a code keep their feed order.
    """

    return sorted(records, key=_code_sort_key)


__all__ = ["sort_by_code"]
