"""Helpers for turning raw tabular schedule feeds into flight records."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping, Optional, Sequence

import pandas as pd

from schedule_fields import (
    CANONICAL_FIELDS,
    DEFAULT_HEADER_ALIASES,
    TARGET_COLUMNS,
    CanonicalField,
    ColumnMapping,
    normalize_header,
    resolve_columns,
)

logger = logging.getLogger(__name__)

ROW_KEY_SEPARATOR = "|"


def cell_text(value: Any) -> str:
    """Return the trimmed string form of a feed cell."""

    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NaT:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value).strip()


def _clean_cell(value: Any) -> Any:
    # Strings are trimmed; native values (dates, times, numbers) are kept as-is
    # so later consumers can interpret them.
    if isinstance(value, str):
        return value.strip()
    if cell_text(value) == "":
        return ""
    return value


@dataclass(frozen=True)
class FlightRecord:
    """One scheduled flight leg as it appeared in a feed."""

    flight_date: Any = ""
    vehicle_reg: Any = ""
    code: Any = ""
    dep_string: Any = ""
    arr_string: Any = ""
    std: Any = ""
    sta: Any = ""
    updated_flag: Any = ""
    # 1-based row in the source feed; not part of the record's identity.
    source_row: Optional[int] = field(default=None, compare=False)

    def value(self, canonical: CanonicalField) -> Any:
        return getattr(self, _ATTRIBUTE_BY_FIELD[canonical])

    @property
    def code_text(self) -> str:
        return cell_text(self.code)

    @classmethod
    def from_values(cls, values: Mapping[Any, Any], source_row: Optional[int] = None) -> "FlightRecord":
        """Build a record from a mapping keyed by field or field name."""

        kwargs = {}
        for canonical in CANONICAL_FIELDS:
            raw = values.get(canonical)
            if raw is None:
                raw = values.get(canonical.value)
            kwargs[_ATTRIBUTE_BY_FIELD[canonical]] = _clean_cell(raw)
        return cls(**kwargs, source_row=source_row)


_ATTRIBUTE_BY_FIELD: dict[CanonicalField, str] = {
    canonical: attribute.name for canonical, attribute in zip(CANONICAL_FIELDS, fields(FlightRecord))
}


def record_values(record: FlightRecord) -> dict[str, str]:
    """Return the trimmed text of every field keyed by canonical field name."""

    return {canonical.value: cell_text(record.value(canonical)) for canonical in CANONICAL_FIELDS}


def row_key(record: FlightRecord) -> str:
    """Composite identity used for exact-content diff matching."""

    return ROW_KEY_SEPARATOR.join(cell_text(record.value(canonical)) for canonical in CANONICAL_FIELDS)


@dataclass(frozen=True)
class DroppedRow:
    row_number: Optional[int]
    reason: str
    value: str = ""


@dataclass
class ParseResult:
    records: list[FlightRecord]
    mapping: ColumnMapping
    dropped: list[DroppedRow] = field(default_factory=list)
    blank_rows: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.records


def _is_header_echo(values: Mapping[CanonicalField, Any], mapping: ColumnMapping) -> bool:
    compared = 0
    for canonical in mapping.resolved:
        index = mapping.index_of(canonical)
        header = mapping.headers[index] if index is not None and index < len(mapping.headers) else ""
        text = normalize_header(cell_text(values.get(canonical)))
        if not text:
            continue
        if text != normalize_header(header):
            return False
        compared += 1
    return compared > 0


def parse_schedule_rows(raw_rows: Sequence[Sequence[Any]], mapping: ColumnMapping) -> ParseResult:
    """Convert data rows (header row excluded) into :class:`FlightRecord` values.

    A row is kept when it carries a flight date or a flight code. Blank rows
    and rows repeating the header line are skipped.
    """

    records: list[FlightRecord] = []
    dropped: list[DroppedRow] = []
    blank_rows = 0

    for offset, row in enumerate(raw_rows):
        row_number = offset + 2  # 1-based, after the header row
        row = list(row or [])
        values: dict[CanonicalField, Any] = {}
        for canonical in CANONICAL_FIELDS:
            index = mapping.index_of(canonical)
            values[canonical] = _clean_cell(row[index]) if index is not None and index < len(row) else ""

        if not any(cell_text(cell) for cell in row):
            blank_rows += 1
            continue
        if _is_header_echo(values, mapping):
            blank_rows += 1
            continue
        if not cell_text(values[CanonicalField.FLIGHT_DATE]) and not cell_text(values[CanonicalField.CODE]):
            dropped.append(
                DroppedRow(
                    row_number=row_number,
                    reason="missing flight date and code",
                    value=" ".join(cell_text(cell) for cell in row if cell_text(cell))[:80],
                )
            )
            continue
        records.append(FlightRecord.from_values(values, source_row=row_number))

    logger.info("Parsed %d valid flight records (%d dropped, %d blank)", len(records), len(dropped), blank_rows)
    if records:
        logger.debug("Sample first record: %s", record_values(records[0]))
    return ParseResult(records=records, mapping=mapping, dropped=dropped, blank_rows=blank_rows)


def parse_feed(
    raw_rows: Sequence[Sequence[Any]],
    aliases: Sequence[tuple[str, CanonicalField]] = DEFAULT_HEADER_ALIASES,
) -> Optional[ParseResult]:
    """Resolve the header row of ``raw_rows`` and parse the remaining rows."""

    if not raw_rows or len(raw_rows) < 2:
        return None
    mapping = resolve_columns(raw_rows[0], aliases)
    return parse_schedule_rows(raw_rows[1:], mapping)


def records_to_frame(records: Iterable[FlightRecord], *, extra: Optional[Mapping[str, Sequence[Any]]] = None) -> pd.DataFrame:
    """Return the records as a DataFrame ordered by destination column."""

    columns = [c.value for c in sorted(CANONICAL_FIELDS, key=lambda c: TARGET_COLUMNS[c])]
    frame = pd.DataFrame([record_values(r) for r in records], columns=columns)
    if extra:
        for name, values in extra.items():
            frame[name] = list(values)
    return frame


__all__ = [
    "DroppedRow",
    "FlightRecord",
    "ParseResult",
    "cell_text",
    "parse_feed",
    "parse_schedule_rows",
    "record_values",
    "records_to_frame",
    "row_key",
]
