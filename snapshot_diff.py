"""Helpers for classifying the changes between two snapshots of one schedule day."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Sequence

from schedule_records import FlightRecord, row_key

logger = logging.getLogger(__name__)


class RowChange(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    # Previous-side row whose code is still scheduled with different content;
    # it is accounted for by the matching MODIFIED row.
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class RowDiff:
    position: int
    record: FlightRecord
    change: RowChange


@dataclass
class DiffResult:
    rows: list[RowDiff] = field(default_factory=list)
    previous_rows: list[RowDiff] = field(default_factory=list)
    had_previous: bool = False

    def _count(self, rows: Sequence[RowDiff], change: RowChange) -> int:
        return sum(1 for row in rows if row.change is change)

    @property
    def new_count(self) -> int:
        return self._count(self.rows, RowChange.NEW)

    @property
    def modified_count(self) -> int:
        return self._count(self.rows, RowChange.MODIFIED)

    @property
    def unchanged_count(self) -> int:
        return self._count(self.rows, RowChange.UNCHANGED)

    @property
    def removed_count(self) -> int:
        return self._count(self.previous_rows, RowChange.REMOVED)

    @property
    def removed_records(self) -> list[FlightRecord]:
        return [row.record for row in self.previous_rows if row.change is RowChange.REMOVED]

    @property
    def has_changes(self) -> bool:
        return bool(self.new_count or self.modified_count or self.removed_count)

    def counts(self) -> dict[str, int]:
        return {
            RowChange.NEW.value: self.new_count,
            RowChange.MODIFIED.value: self.modified_count,
            RowChange.UNCHANGED.value: self.unchanged_count,
            RowChange.REMOVED.value: self.removed_count,
        }


def diff_snapshots(
    previous: Optional[Sequence[FlightRecord]],
    current: Sequence[FlightRecord],
) -> DiffResult:
    """Classify every row of ``current`` against ``previous``.

    Rows match on their full-content row key. A row without an exact match is
    MODIFIED when ``previous`` schedules the same flight code, NEW otherwise.
    Previous rows without an exact match whose code has disappeared entirely
    are REMOVED. Without a previous snapshot every row is NEW.
    """

    previous_rows = list(previous or [])
    previous_keys = Counter(row_key(record) for record in previous_rows)
    previous_codes = {record.code_text for record in previous_rows}
    current_keys = Counter(row_key(record) for record in current)
    current_codes = {record.code_text for record in current}

    result = DiffResult(had_previous=previous is not None)

    for position, record in enumerate(current):
        if row_key(record) in previous_keys:
            change = RowChange.UNCHANGED
        elif record.code_text in previous_codes:
            change = RowChange.MODIFIED
        else:
            change = RowChange.NEW
        result.rows.append(RowDiff(position, record, change))

    for position, record in enumerate(previous_rows):
        if row_key(record) in current_keys:
            change = RowChange.UNCHANGED
        elif record.code_text in current_codes:
            change = RowChange.SUPERSEDED
        else:
            change = RowChange.REMOVED
        result.previous_rows.append(RowDiff(position, record, change))

    logger.info(
        "Diff: %d new, %d modified, %d unchanged, %d removed",
        result.new_count,
        result.modified_count,
        result.unchanged_count,
        result.removed_count,
    )
    return result


def build_change_note(result: DiffResult) -> Optional[str]:
    """Return the change summary attached to a revised snapshot, if anything changed."""

    if not result.has_changes:
        return None
    return (
        "Changes from previous version:\n"
        f"New flights: {result.new_count}\n"
        f"Modified flights: {result.modified_count}\n"
        f"Removed flights: {result.removed_count}"
    )


def change_highlights(result: DiffResult, colors: Mapping[RowChange, str]) -> list[str]:
    """Return the highlight colour for each current row ("" when unmarked)."""

    return [colors.get(row.change, "") for row in result.rows]


__all__ = [
    "DiffResult",
    "RowChange",
    "RowDiff",
    "build_change_note",
    "change_highlights",
    "diff_snapshots",
]
