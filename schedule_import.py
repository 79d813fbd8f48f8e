"""Import pipeline: feed rows in, a stored snapshot and change report out.

Also hosts the periodic jobs built on top of it (mailbox polling, urgent
update checks and snapshot retention cleanup).
"""
from __future__ import annotations

import imaplib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Sequence

from date_window import filter_by_date, format_sheet_date, most_common_date
from feed_sources import FeedData
from mail_feed import ScheduleEmail, attachment_feeds, body_feed, fetch_schedule_emails
from notifications import (
    Notification,
    Notifier,
    build_change_notification,
    build_cleanup_notification,
    build_error_notification,
    build_success_notification,
)
from schedule_config import ScheduleConfig
from schedule_fields import CanonicalField, resolve_columns
from schedule_records import DroppedRow, FlightRecord, parse_schedule_rows
from schedule_sorting import sort_by_code
from snapshot_diff import DiffResult, build_change_note, change_highlights, diff_snapshots
from snapshot_store import Snapshot, SnapshotConflictError, SnapshotStore
from update_status import StatusKind, evaluate_statuses
from urgent_alerts import AlertSelection, build_urgent_alert_message, select_urgent_flights

logger = logging.getLogger(__name__)

DROPPED_SAMPLE_SIZE = 5


@dataclass
class ExtractedRecords:
    """Records parsed from one or more feeds of the same delivery."""

    records: List[FlightRecord] = field(default_factory=list)
    gaps: List[CanonicalField] = field(default_factory=list)
    dropped: List[DroppedRow] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)


@dataclass
class ImportOutcome:
    sheet_name: str = ""
    target_date: Optional[date] = None
    gaps: List[CanonicalField] = field(default_factory=list)
    dropped: List[DroppedRow] = field(default_factory=list)
    diff: Optional[DiffResult] = None
    note: Optional[str] = None
    highlights: List[str] = field(default_factory=list)
    snapshot: Optional[Snapshot] = None
    empty: bool = False
    reason: str = ""
    error: Optional[str] = None
    sources: List[str] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.snapshot.records) if self.snapshot else 0

    @property
    def ok(self) -> bool:
        return self.error is None and not self.empty

    def dropped_summary(self, sample_size: int = DROPPED_SAMPLE_SIZE) -> dict[str, Any]:
        """Counts per drop reason plus the first few offending values."""

        counts = Counter(row.reason for row in self.dropped)
        samples = [row.value for row in self.dropped if row.value][:sample_size]
        return {"total": len(self.dropped), "by_reason": dict(counts), "samples": samples}


def extract_records(feeds: Iterable[FeedData], aliases: Sequence[tuple[str, CanonicalField]]) -> ExtractedRecords:
    """Resolve and parse every feed, concatenating the records they yield."""

    extracted = ExtractedRecords()
    for feed in feeds:
        if not feed.has_data_rows:
            logger.info("Feed %s has no data rows", feed.name or feed.source)
            continue
        mapping = resolve_columns(feed.rows[0], aliases)
        parsed = parse_schedule_rows(feed.rows[1:], mapping)
        for gap in mapping.gaps:
            if gap not in extracted.gaps:
                extracted.gaps.append(gap)
        extracted.records.extend(parsed.records)
        extracted.dropped.extend(parsed.dropped)
        extracted.sources.append(feed.name or feed.source)
    return extracted


def import_records(
    extracted: ExtractedRecords,
    store: SnapshotStore,
    *,
    now: datetime,
    config: ScheduleConfig,
) -> ImportOutcome:
    """Store the records for the feed's predominant day and diff them against the previous version."""

    outcome = ImportOutcome(
        gaps=list(extracted.gaps),
        dropped=list(extracted.dropped),
        sources=list(extracted.sources),
    )
    if not extracted.records:
        outcome.empty = True
        outcome.reason = "no valid flight records"
        logger.warning("No valid schedule data found")
        return outcome

    target = most_common_date(extracted.records)
    if target is None:
        outcome.empty = True
        outcome.reason = "no parseable flight date"
        logger.warning("None of %d records carries a parseable flight date", len(extracted.records))
        return outcome

    outcome.target_date = target
    outcome.sheet_name = format_sheet_date(target)
    logger.info("Most common date: %s (%s)", target.isoformat(), outcome.sheet_name)

    window = filter_by_date(extracted.records, target)
    outcome.dropped.extend(window.excluded)
    if not window.records:
        outcome.empty = True
        outcome.reason = f"no records for {outcome.sheet_name}"
        return outcome

    ordered = sort_by_code(window.records)
    previous = store.get(target)
    diff = diff_snapshots(previous.records if previous else None, ordered)
    outcome.diff = diff

    if previous is not None and config.changes.enabled:
        outcome.note = build_change_note(diff)
        outcome.highlights = change_highlights(diff, config.changes.colors)
    else:
        outcome.highlights = ["" for _ in ordered]

    try:
        outcome.snapshot = store.replace(
            target,
            ordered,
            now=now,
            expected_id=previous.snapshot_id if previous else None,
            note=outcome.note,
        )
    except SnapshotConflictError as exc:
        outcome.error = str(exc)
        logger.warning("Import for %s aborted: %s", outcome.sheet_name, exc)
        return outcome

    logger.info("Imported %d flights into %s", len(ordered), outcome.sheet_name)
    return outcome


def import_feed(
    raw_rows: Sequence[Sequence[Any]],
    store: SnapshotStore,
    *,
    now: datetime,
    config: Optional[ScheduleConfig] = None,
    name: str = "",
) -> ImportOutcome:
    """Import one raw table whose first row holds the headers."""

    config = config or ScheduleConfig()
    feed = FeedData([list(row) for row in raw_rows], "csv", name)
    return import_records(extract_records([feed], config.header_aliases), store, now=now, config=config)


def send_notification(notifier: Optional[Notifier], notification: Notification, destination: Optional[str]) -> bool:
    if notifier is None or not destination:
        logger.info("No notification destination configured; skipping %s", notification.kind)
        return False
    ok, err = notifier.send(notification, destination)
    if not ok:
        logger.warning("Notification %s failed: %s", notification.kind, err)
    return ok


def outcome_notifications(outcome: ImportOutcome, *, now: datetime, config: ScheduleConfig) -> list[Notification]:
    """Change summary (only when a previous version differed) and the optional success notice."""

    notifications: list[Notification] = []
    if not outcome.ok:
        return notifications
    diff = outcome.diff
    if diff is not None and diff.had_previous and diff.has_changes and config.changes.enabled:
        notifications.append(
            build_change_notification(
                outcome.sheet_name,
                diff.new_count,
                diff.modified_count,
                diff.removed_count,
                link=config.schedule_link,
            )
        )
    if config.send_success_notification:
        notifications.append(
            build_success_notification(outcome.sheet_name, outcome.imported_count, now.isoformat())
        )
    return notifications


def import_email(
    message: ScheduleEmail,
    store: SnapshotStore,
    *,
    now: datetime,
    config: ScheduleConfig,
) -> tuple[ImportOutcome, list[str]]:
    """Import a schedule e-mail: attachments first, the body only when they yield nothing."""

    logger.info("Processing email: %s", message.subject)
    feeds, errors = attachment_feeds(message)
    extracted = extract_records(feeds, config.header_aliases)
    if not extracted.records and message.body:
        extracted = extract_records([body_feed(message)], config.header_aliases)
    return import_records(extracted, store, now=now, config=config), errors


@dataclass
class MailboxRun:
    outcomes: List[ImportOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    processed_uids: List[int] = field(default_factory=list)


def _advance_cursor(store: SnapshotStore, key: str, uid: int) -> None:
    if uid > store.get_last_uid(key):
        store.set_last_uid(key, uid)


def process_mailbox(
    config: ScheduleConfig,
    store: SnapshotStore,
    notifier: Optional[Notifier],
    *,
    now: Optional[datetime] = None,
    imap_factory: Callable[[str], Any] = imaplib.IMAP4_SSL,
) -> MailboxRun:
    """Import every unseen schedule e-mail and report what happened."""

    now = now or datetime.now(timezone.utc)
    run = MailboxRun()
    destination = config.notify_destination

    poll = fetch_schedule_emails(config.mailbox, store, imap_factory=imap_factory)
    if not poll.ok:
        run.errors.append(poll.error or "mailbox poll failed")
        send_notification(notifier, build_error_notification(poll.error or "", context="polling the schedule mailbox"), destination)
        return run

    key = config.mailbox.cursor_key
    if not poll.emails:
        logger.info("No new schedule emails found.")

    # Walk every fetched UID in order so the cursor never passes an unhandled message.
    emails_by_uid = {message.uid: message for message in poll.emails}
    for uid in sorted(set(emails_by_uid) | set(poll.skipped_uids)):
        message = emails_by_uid.get(uid)
        if message is None:
            _advance_cursor(store, key, uid)
            continue
        outcome, errors = import_email(message, store, now=now, config=config)
        run.outcomes.append(outcome)
        if outcome.error:
            errors.append(outcome.error)
        if errors:
            run.errors.extend(errors)
            send_notification(
                notifier,
                build_error_notification("\n".join(errors), context=f"importing '{message.subject}'"),
                destination,
            )
        for notification in outcome_notifications(outcome, now=now, config=config):
            send_notification(notifier, notification, destination)
        if outcome.empty:
            logger.warning("No valid schedule data in email %s: %s", message.uid, outcome.reason)
        _advance_cursor(store, key, message.uid)
        run.processed_uids.append(message.uid)

    logger.info("Flight schedule import completed: %d email(s)", len(run.processed_uids))
    return run


def check_urgent_updates(
    store: SnapshotStore,
    notifier: Optional[Notifier],
    *,
    now: Optional[datetime] = None,
    config: Optional[ScheduleConfig] = None,
) -> AlertSelection:
    """Evaluate every active snapshot and alert on flights that need an update now."""

    config = config or ScheduleConfig()
    now = now or datetime.now(timezone.utc)
    if not config.alerts.enabled:
        logger.info("Urgent update alerts are disabled")
        return AlertSelection(cap=config.alerts.max_alerts_per_check)

    evaluated = []
    for snapshot in store.active_snapshots():
        evaluated.extend(evaluate_statuses(snapshot.records, now))

    errors = [status for _, status in evaluated if status.kind is StatusKind.ERROR]
    if errors:
        logger.warning("%d flight(s) have unreadable date/time values", len(errors))

    selection = select_urgent_flights(evaluated, config.alerts.max_alerts_per_check)
    if not selection:
        logger.info("No urgent flights found")
        return selection

    if selection.truncated:
        logger.warning(
            "%d urgent flights found, alerting on the first %d",
            selection.total_urgent,
            len(selection.flights),
        )
    notification = build_urgent_alert_message(selection, now, link=config.schedule_link)
    send_notification(notifier, notification, config.alert_destination)
    return selection


def should_poll_mailbox(now: datetime, config: Optional[ScheduleConfig] = None) -> bool:
    """Whether a five-minute tick at ``now`` should actually poll the mailbox.

    Inside the frequent window every tick polls; outside it only the first
    ``frequent_interval_minutes`` of each ``normal_interval_minutes`` slot do.
    """

    window = (config or ScheduleConfig()).poll_window
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    if window.frequent_start_hour <= now.hour <= window.frequent_end_hour:
        return True
    return now.minute % window.normal_interval_minutes < window.frequent_interval_minutes


def cleanup_expired_snapshots(
    store: SnapshotStore,
    notifier: Optional[Notifier],
    *,
    now: Optional[datetime] = None,
    config: Optional[ScheduleConfig] = None,
) -> list[tuple[str, str, int]]:
    """Delete snapshots past their retention and report them."""

    config = config or ScheduleConfig()
    now = now or datetime.now(timezone.utc)
    retention = config.retention
    if not retention.auto_delete:
        logger.info("Automatic cleanup is disabled")
        return []

    removed = store.purge_expired(now, retired_days=retention.retired_days, active_days=retention.active_days)
    if not removed:
        logger.info("No old snapshots to delete")
        return removed

    if retention.notify:
        send_notification(
            notifier,
            build_cleanup_notification(
                removed,
                retired_days=retention.retired_days,
                active_days=retention.active_days,
            ),
            config.notify_destination,
        )
    return removed


__all__ = [
    "DROPPED_SAMPLE_SIZE",
    "ExtractedRecords",
    "ImportOutcome",
    "MailboxRun",
    "check_urgent_updates",
    "cleanup_expired_snapshots",
    "extract_records",
    "import_email",
    "import_feed",
    "import_records",
    "outcome_notifications",
    "process_mailbox",
    "send_notification",
    "should_poll_mailbox",
]
