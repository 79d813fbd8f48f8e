"""Helpers for mapping raw schedule feed headers onto the canonical field set."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class CanonicalField(str, Enum):
    FLIGHT_DATE = "FlightDate"
    VEHICLE_REG = "VehicleReg"
    CODE = "Code"
    DEP_STRING = "DepString"
    ARR_STRING = "ArrString"
    STD = "STD"
    STA = "STA"
    UPDATED_FLAG = "UpdatedFlag"


CANONICAL_FIELDS: tuple[CanonicalField, ...] = tuple(CanonicalField)

# Filled in manually after import; feeds rarely carry it, so a missing header
# is not reported as a resolution gap.
OPTIONAL_FIELDS: frozenset[CanonicalField] = frozenset({CanonicalField.UPDATED_FLAG})

# Destination column for each field. Static, never derived from a feed.
TARGET_COLUMNS: dict[CanonicalField, str] = {
    CanonicalField.FLIGHT_DATE: "A",
    CanonicalField.VEHICLE_REG: "B",
    CanonicalField.CODE: "C",
    CanonicalField.DEP_STRING: "D",
    CanonicalField.ARR_STRING: "E",
    CanonicalField.STD: "F",
    CanonicalField.STA: "G",
    CanonicalField.UPDATED_FLAG: "H",
}

# Ordered (alias, field) pairs. Order matters: the first alias listed for a
# field is its preferred spelling.
DEFAULT_HEADER_ALIASES: tuple[tuple[str, CanonicalField], ...] = (
    ("LegDate", CanonicalField.FLIGHT_DATE),
    ("Leg Date", CanonicalField.FLIGHT_DATE),
    ("Date", CanonicalField.FLIGHT_DATE),
    ("Flight Date", CanonicalField.FLIGHT_DATE),
    ("VehicleReg", CanonicalField.VEHICLE_REG),
    ("Vehicle Reg", CanonicalField.VEHICLE_REG),
    ("Registration", CanonicalField.VEHICLE_REG),
    ("Reg", CanonicalField.VEHICLE_REG),
    ("Aircraft", CanonicalField.VEHICLE_REG),
    ("AC Reg", CanonicalField.VEHICLE_REG),
    ("Tail", CanonicalField.VEHICLE_REG),
    ("Tail Number", CanonicalField.VEHICLE_REG),
    ("Code", CanonicalField.CODE),
    ("Flight Code", CanonicalField.CODE),
    ("Flight", CanonicalField.CODE),
    ("Flight Number", CanonicalField.CODE),
    ("Flight No", CanonicalField.CODE),
    ("DepString", CanonicalField.DEP_STRING),
    ("Dep String", CanonicalField.DEP_STRING),
    ("Departure", CanonicalField.DEP_STRING),
    ("Dep", CanonicalField.DEP_STRING),
    ("From", CanonicalField.DEP_STRING),
    ("Origin", CanonicalField.DEP_STRING),
    ("ArrString", CanonicalField.ARR_STRING),
    ("Arr String", CanonicalField.ARR_STRING),
    ("Arrival", CanonicalField.ARR_STRING),
    ("Arr", CanonicalField.ARR_STRING),
    ("To", CanonicalField.ARR_STRING),
    ("Destination", CanonicalField.ARR_STRING),
    ("STDHHMM", CanonicalField.STD),
    ("STD HHMM", CanonicalField.STD),
    ("STD", CanonicalField.STD),
    ("Dep Time", CanonicalField.STD),
    ("Departure Time", CanonicalField.STD),
    ("STAHHMM", CanonicalField.STA),
    ("STA HHMM", CanonicalField.STA),
    ("STA", CanonicalField.STA),
    ("Arr Time", CanonicalField.STA),
    ("Arrival Time", CanonicalField.STA),
    ("UpdatedFlag", CanonicalField.UPDATED_FLAG),
    ("Updated Flag", CanonicalField.UPDATED_FLAG),
    ("Updated", CanonicalField.UPDATED_FLAG),
    ("FP Updated", CanonicalField.UPDATED_FLAG),
    ("Done", CanonicalField.UPDATED_FLAG),
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize_header(value: object) -> str:
    """Lower-case ``value`` and strip every non-alphanumeric character."""

    if value is None:
        return ""
    return _NON_ALNUM_RE.sub("", str(value).strip().lower())


def coerce_field(value: object) -> Optional[CanonicalField]:
    """Return the :class:`CanonicalField` named by ``value`` (any spelling)."""

    if isinstance(value, CanonicalField):
        return value
    wanted = normalize_header(value)
    if not wanted:
        return None
    for candidate in CanonicalField:
        if normalize_header(candidate.value) == wanted or normalize_header(candidate.name) == wanted:
            return candidate
    return None


def build_alias_table(
    extra_aliases: Mapping[str, object] | Iterable[tuple[str, object]] | None = None,
    *,
    base: Sequence[tuple[str, CanonicalField]] = DEFAULT_HEADER_ALIASES,
) -> tuple[tuple[str, CanonicalField], ...]:
    """Append ``extra_aliases`` to ``base``; unknown field names are rejected."""

    table = list(base)
    if not extra_aliases:
        return tuple(table)
    pairs = extra_aliases.items() if isinstance(extra_aliases, Mapping) else extra_aliases
    for alias, target in pairs:
        canonical = coerce_field(target)
        if canonical is None:
            raise ValueError(f"Unknown canonical field for alias {alias!r}: {target!r}")
        table.append((str(alias), canonical))
    return tuple(table)


@dataclass(frozen=True)
class ColumnMapping:
    """Column index per canonical field for a single feed."""

    indices: Mapping[CanonicalField, Optional[int]]
    headers: tuple[str, ...] = ()
    matched_aliases: Mapping[CanonicalField, str] = field(default_factory=dict)

    def index_of(self, canonical: CanonicalField) -> Optional[int]:
        return self.indices.get(canonical)

    def is_resolved(self, canonical: CanonicalField) -> bool:
        return self.indices.get(canonical) is not None

    @property
    def unresolved(self) -> tuple[CanonicalField, ...]:
        return tuple(f for f in CANONICAL_FIELDS if self.indices.get(f) is None)

    @property
    def gaps(self) -> tuple[CanonicalField, ...]:
        """Unresolved fields that a feed is expected to carry."""

        return tuple(f for f in self.unresolved if f not in OPTIONAL_FIELDS)

    @property
    def resolved(self) -> tuple[CanonicalField, ...]:
        return tuple(f for f in CANONICAL_FIELDS if self.indices.get(f) is not None)

    def describe(self) -> list[str]:
        """Return one human readable line per field: source header → target column."""

        lines = []
        for canonical in CANONICAL_FIELDS:
            index = self.indices.get(canonical)
            source = self.headers[index] if index is not None and index < len(self.headers) else "NOT FOUND"
            lines.append(
                f'Source "{source}" (index {index if index is not None else -1}) '
                f"→ {canonical.value} → column {TARGET_COLUMNS[canonical]}"
            )
        return lines


def resolve_columns(
    headers: Sequence[object],
    aliases: Sequence[tuple[str, CanonicalField]] = DEFAULT_HEADER_ALIASES,
) -> ColumnMapping:
    """Resolve every canonical field to the first header matching one of its aliases.

    Matching is exact on the normalised form (lower-case, alphanumerics only);
    no substring matching is attempted. Fields without a match stay unresolved
    for the whole feed.
    """

    clean_headers = tuple("" if h is None else str(h).strip() for h in headers)
    normalized_headers = [normalize_header(h) for h in clean_headers]

    aliases_by_field: dict[CanonicalField, list[tuple[str, str]]] = {f: [] for f in CANONICAL_FIELDS}
    for alias, canonical in aliases:
        normalized_alias = normalize_header(alias)
        if normalized_alias:
            aliases_by_field[canonical].append((alias, normalized_alias))

    indices: dict[CanonicalField, Optional[int]] = {}
    matched: dict[CanonicalField, str] = {}
    for canonical in CANONICAL_FIELDS:
        indices[canonical] = None
        candidates = aliases_by_field[canonical]
        for position, normalized in enumerate(normalized_headers):
            if not normalized:
                continue
            hit = next((alias for alias, norm in candidates if norm == normalized), None)
            if hit is not None:
                indices[canonical] = position
                matched[canonical] = hit
                logger.debug(
                    'Matched "%s" (column %d) → %s via alias "%s"',
                    clean_headers[position],
                    position,
                    canonical.value,
                    hit,
                )
                break
        if indices[canonical] is None:
            if canonical in OPTIONAL_FIELDS:
                logger.debug("No column for optional field %s", canonical.value)
            else:
                logger.warning("Could not find column for %s", canonical.value)

    return ColumnMapping(indices=indices, headers=clean_headers, matched_aliases=matched)


__all__ = [
    "CANONICAL_FIELDS",
    "CanonicalField",
    "ColumnMapping",
    "DEFAULT_HEADER_ALIASES",
    "OPTIONAL_FIELDS",
    "TARGET_COLUMNS",
    "build_alias_table",
    "coerce_field",
    "normalize_header",
    "resolve_columns",
]
