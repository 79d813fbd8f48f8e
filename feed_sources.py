"""Helpers for loading raw schedule feeds from interchangeable sources."""
from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from io import BytesIO, StringIO
from typing import Any, Dict, List, Literal, Optional

import pandas as pd

FeedSource = Literal["csv", "excel", "email_body"]

_BODY_HEADER_RE = re.compile(r"LegDate|VehicleReg|Code|DepString|ArrString|Registration|Flight", re.I)
_BODY_DATA_RE = re.compile(r"^\d{1,2}-[A-Za-z]{3}-\d{2,4}")
_CELL_SPLIT_RE = re.compile(r"\s+")


@dataclass
class FeedData:
    """Container describing one raw feed table and its origin."""

    rows: List[List[Any]]
    source: FeedSource
    name: str = ""
    raw_bytes: Optional[bytes] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_data_rows(self) -> bool:
        return len(self.rows) >= 2


def _frame_to_rows(frame: pd.DataFrame) -> List[List[Any]]:
    frame = frame.astype(object).where(pd.notna(frame), "")
    return [list(row) for row in frame.itertuples(index=False, name=None)]


def rows_from_csv_bytes(csv_bytes: bytes) -> List[List[Any]]:
    """Return every CSV row (header included) as a list of strings.

    Ragged rows are padded to the widest row, so trailing-comma exports and
    short rows load without losing data.
    """

    text = csv_bytes.decode("utf-8-sig", errors="replace")
    width = max((len(row) for row in csv.reader(StringIO(text))), default=0)
    if not width:
        return []
    frame = pd.read_csv(
        StringIO(text),
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )
    return _frame_to_rows(frame)


def rows_from_excel_bytes(excel_bytes: bytes) -> List[List[Any]]:
    """Return the first worksheet's rows, keeping native date and time cells."""

    frame = pd.read_excel(BytesIO(excel_bytes), header=None, dtype=object)
    return _frame_to_rows(frame)


def rows_from_email_body(body: str) -> List[List[str]]:
    """Extract a whitespace separated schedule table from a plain-text body.

    The header is the first line naming a schedule column; data lines must
    start with a ``D-Mon-YY`` date.
    """

    rows: List[List[str]] = []
    header_found = False
    for line in body.splitlines():
        text = line.strip()
        if not text:
            continue
        if not header_found and _BODY_HEADER_RE.search(text):
            header_found = True
            rows.append(_CELL_SPLIT_RE.split(text))
        elif header_found and _BODY_DATA_RE.match(text):
            rows.append(_CELL_SPLIT_RE.split(text))
    return rows


def load_feed(
    source: FeedSource,
    *,
    content: bytes | str,
    name: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> FeedData:
    """Return the raw feed table for the requested source."""

    if source == "csv":
        raw = content.encode("utf-8") if isinstance(content, str) else content
        return FeedData(rows_from_csv_bytes(raw), "csv", name, raw, metadata or {})
    if source == "excel":
        if isinstance(content, str):
            raise ValueError("excel content must be bytes")
        return FeedData(rows_from_excel_bytes(content), "excel", name, content, metadata or {})
    if source == "email_body":
        text = content.decode("utf-8", errors="ignore") if isinstance(content, bytes) else content
        return FeedData(rows_from_email_body(text), "email_body", name, None, metadata or {})
    raise ValueError(f"Unsupported feed source: {source}")


def source_for_attachment(filename: str, content_type: str = "") -> Optional[FeedSource]:
    """Return the feed source matching an attachment, or ``None`` to skip it."""

    lower_name = (filename or "").lower()
    lower_type = (content_type or "").lower()
    if lower_name.endswith(".csv") or "text/csv" in lower_type:
        return "csv"
    if lower_name.endswith((".xlsx", ".xls")):
        return "excel"
    return None


__all__ = [
    "FeedData",
    "FeedSource",
    "load_feed",
    "rows_from_csv_bytes",
    "rows_from_email_body",
    "rows_from_excel_bytes",
    "source_for_attachment",
]
