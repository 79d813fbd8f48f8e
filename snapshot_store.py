"""SQLite persistence for schedule snapshots and the mailbox cursor."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

from date_window import format_sheet_date
from schedule_records import FlightRecord, record_values

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "schedule_store.db"


class SnapshotConflictError(RuntimeError):
    """Raised when the active snapshot changed between read and write."""


@dataclass(frozen=True)
class Snapshot:
    day: date
    records: tuple[FlightRecord, ...]
    snapshot_id: Optional[int] = None
    label: str = ""
    created_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None
    note: Optional[str] = None

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


def _to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def retired_label(day: date, retired_at: datetime) -> str:
    """Label of a retired snapshot, e.g. ``29SEP_old_1712`` (UTC HHMM)."""

    if retired_at.tzinfo is not None:
        retired_at = retired_at.astimezone(timezone.utc)
    return f"{format_sheet_date(day)}_old_{retired_at:%H%M}"


class SnapshotStore:
    """One active snapshot per calendar day, older versions kept as retired rows."""

    def __init__(self, path: str | Path = DEFAULT_DB_PATH):
        self.path = str(path)
        self.init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                day TEXT NOT NULL,
                label TEXT NOT NULL,
                records TEXT NOT NULL,
                note TEXT,
                created_at TEXT NOT NULL,
                retired_at TEXT
            )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS snapshots_day ON snapshots (day, retired_at)")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS email_cursor (
                mailbox TEXT PRIMARY KEY,
                last_uid INTEGER
            )
            """)

    @staticmethod
    def _row_to_snapshot(row: Sequence) -> Snapshot:
        snapshot_id, day, label, records_json, note, created_at, retired_at = row
        records = tuple(FlightRecord.from_values(values) for values in json.loads(records_json))
        return Snapshot(
            day=date.fromisoformat(day),
            records=records,
            snapshot_id=int(snapshot_id),
            label=label,
            created_at=_from_iso(created_at),
            retired_at=_from_iso(retired_at),
            note=note,
        )

    def get(self, day: date) -> Optional[Snapshot]:
        """Return the active snapshot for ``day``, if one exists."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, day, label, records, note, created_at, retired_at
                FROM snapshots WHERE day=? AND retired_at IS NULL
                ORDER BY id DESC LIMIT 1
                """,
                (day.isoformat(),),
            ).fetchone()
        return self._row_to_snapshot(row) if row else None

    @staticmethod
    def _insert(conn: sqlite3.Connection, day: date, records: Sequence[FlightRecord], created_at: datetime, note: Optional[str]) -> int:
        payload = json.dumps([record_values(r) for r in records], ensure_ascii=False)
        cursor = conn.execute(
            """
            INSERT INTO snapshots (day, label, records, note, created_at, retired_at)
            VALUES (?, ?, ?, ?, ?, NULL)
            """,
            (day.isoformat(), format_sheet_date(day), payload, note, _to_iso(created_at)),
        )
        return int(cursor.lastrowid)

    @staticmethod
    def _retire(conn: sqlite3.Connection, day: date, retired_at: datetime) -> list[str]:
        label = retired_label(day, retired_at)
        rows = conn.execute(
            "SELECT id FROM snapshots WHERE day=? AND retired_at IS NULL", (day.isoformat(),)
        ).fetchall()
        conn.execute(
            "UPDATE snapshots SET retired_at=?, label=? WHERE day=? AND retired_at IS NULL",
            (_to_iso(retired_at), label, day.isoformat()),
        )
        return [label for _ in rows]

    def put(
        self,
        day: date,
        records: Sequence[FlightRecord],
        *,
        created_at: datetime,
        note: Optional[str] = None,
    ) -> Snapshot:
        with self._transaction() as conn:
            snapshot_id = self._insert(conn, day, records, created_at, note)
        return Snapshot(day, tuple(records), snapshot_id, format_sheet_date(day), created_at, None, note)

    def retire(self, day: date, timestamp: datetime) -> list[str]:
        """Mark the active snapshot(s) for ``day`` as retired at ``timestamp``."""

        with self._transaction() as conn:
            labels = self._retire(conn, day, timestamp)
        for label in labels:
            logger.info("Retired snapshot %s", label)
        return labels

    def replace(
        self,
        day: date,
        records: Sequence[FlightRecord],
        *,
        now: datetime,
        expected_id: Optional[int],
        note: Optional[str] = None,
    ) -> Snapshot:
        """Retire the active snapshot and store ``records`` in one transaction.

        ``expected_id`` is the id of the active snapshot the caller diffed
        against (``None`` when there was none). If another writer replaced it
        in the meantime :class:`SnapshotConflictError` is raised and nothing
        is written.
        """

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id FROM snapshots WHERE day=? AND retired_at IS NULL ORDER BY id DESC LIMIT 1",
                (day.isoformat(),),
            ).fetchone()
            current_id = int(row[0]) if row else None
            if current_id != expected_id:
                raise SnapshotConflictError(
                    f"Snapshot for {day.isoformat()} changed during import "
                    f"(expected {expected_id}, found {current_id})"
                )
            retired = self._retire(conn, day, now)
            snapshot_id = self._insert(conn, day, records, now, note)
        for label in retired:
            logger.info("Retired snapshot %s", label)
        return Snapshot(day, tuple(records), snapshot_id, format_sheet_date(day), now, None, note)

    def list_retired(self, day: date) -> list[Snapshot]:
        """Retired snapshots for ``day``, most recent first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, day, label, records, note, created_at, retired_at
                FROM snapshots WHERE day=? AND retired_at IS NOT NULL
                ORDER BY retired_at DESC, id DESC
                """,
                (day.isoformat(),),
            ).fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    def active_snapshots(self) -> list[Snapshot]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, day, label, records, note, created_at, retired_at
                FROM snapshots WHERE retired_at IS NULL
                ORDER BY day, id
                """
            ).fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    def purge_expired(
        self,
        now: datetime,
        *,
        retired_days: int,
        active_days: int,
    ) -> list[tuple[str, str, int]]:
        """Delete snapshots past their retention; returns ``(label, kind, age_days)``."""

        now_utc = _from_iso(_to_iso(now))
        removed: list[tuple[str, str, int]] = []
        with self._transaction() as conn:
            rows = conn.execute("SELECT id, label, created_at, retired_at FROM snapshots").fetchall()
            for snapshot_id, label, created_at, retired_at in rows:
                if retired_at:
                    kind, since, limit = "retired", _from_iso(retired_at), retired_days
                else:
                    kind, since, limit = "active", _from_iso(created_at), active_days
                age = (now_utc - since).total_seconds() / 86400
                if age >= limit:
                    conn.execute("DELETE FROM snapshots WHERE id=?", (snapshot_id,))
                    removed.append((label, kind, int(age)))
        for label, kind, age in removed:
            logger.info("Deleted %s snapshot %s (%d days old)", kind, label, age)
        return removed

    def get_last_uid(self, mailbox: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT last_uid FROM email_cursor WHERE mailbox=?", (mailbox,)).fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def set_last_uid(self, mailbox: str, uid: int) -> None:
        with self._connect() as conn:
            conn.execute("""
            INSERT INTO email_cursor (mailbox, last_uid)
            VALUES (?, ?)
            ON CONFLICT(mailbox) DO UPDATE SET last_uid=excluded.last_uid
            """, (mailbox, int(uid)))


__all__ = [
    "DEFAULT_DB_PATH",
    "Snapshot",
    "SnapshotConflictError",
    "SnapshotStore",
    "retired_label",
]
