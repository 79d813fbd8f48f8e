#!/usr/bin/env python3
"""Command line entry point for the flight schedule importer.

Each subcommand runs one job to completion and exits, so the tool can be
driven by cron or any other external scheduler:

* ``import-file``  import a CSV/Excel schedule from disk
* ``poll-mail``    import unseen schedule e-mails (honours the polling window)
* ``check-alerts`` send the urgent flight plan update alert
* ``status``       print the update status of every stored flight
* ``cleanup``      delete snapshots past their retention
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from date_window import format_sheet_date
from feed_sources import FeedSource, load_feed
from notifications import Notifier, SmtpNotifier, WebhookNotifier
from schedule_config import ScheduleConfig, ScheduleConfigError, load_config, require_mailbox, setup_logger
from schedule_import import (
    check_urgent_updates,
    cleanup_expired_snapshots,
    extract_records,
    import_records,
    outcome_notifications,
    process_mailbox,
    send_notification,
    should_poll_mailbox,
)
from snapshot_store import SnapshotStore
from update_status import evaluate_statuses
from urgent_alerts import format_time_value, format_value

logger = logging.getLogger("schedule_runner")


def build_notifier(config: ScheduleConfig) -> Optional[Notifier]:
    if config.webhooks:
        return WebhookNotifier(config.webhooks)
    smtp = config.smtp
    if smtp.configured:
        return SmtpNotifier(
            host=smtp.host,
            sender=smtp.sender,
            port=smtp.port,
            username=smtp.username,
            password=smtp.password,
            use_tls=smtp.use_tls,
        )
    return None


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise SystemExit(f"invalid --now timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _source_for_path(path: Path, override: Optional[str]) -> FeedSource:
    if override:
        return override  # type: ignore[return-value]
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix in {".xlsx", ".xls"}:
        return "excel"
    if suffix in {".txt", ".eml"}:
        return "email_body"
    raise SystemExit(f"cannot infer feed format from {path.name}; pass --format")


def handle_import_file(args: argparse.Namespace, config: ScheduleConfig, store: SnapshotStore) -> int:
    path = Path(args.path)
    if not path.exists():
        raise SystemExit(f"schedule file not found: {path}")
    source = _source_for_path(path, args.format)
    try:
        feed = load_feed(source, content=path.read_bytes(), name=path.name)
    except Exception as exc:  # reported like an unreadable attachment
        logger.warning("Could not read %s: %s", path.name, exc)
        print(f"Import failed: could not read {path.name}: {exc}")
        return 1
    outcome = import_records(extract_records([feed], config.header_aliases), store, now=args.now, config=config)

    if outcome.gaps:
        print("Unresolved columns: " + ", ".join(f.value for f in outcome.gaps))
    if outcome.dropped:
        summary = outcome.dropped_summary()
        print(f"Dropped rows: {summary['total']} {summary['by_reason']}")
        if summary["samples"]:
            print("  e.g. " + ", ".join(summary["samples"]))
    if outcome.error:
        print(f"Import failed: {outcome.error}")
        return 1
    if outcome.empty:
        print(f"Nothing imported: {outcome.reason}")
        return 1

    print(f"Imported {outcome.imported_count} flights into {outcome.sheet_name}")
    if outcome.note:
        print(outcome.note)
    if not args.no_notify:
        notifier = build_notifier(config)
        for notification in outcome_notifications(outcome, now=args.now, config=config):
            send_notification(notifier, notification, config.notify_destination)
    return 0


def handle_poll_mail(args: argparse.Namespace, config: ScheduleConfig, store: SnapshotStore) -> int:
    if not args.force and not should_poll_mailbox(args.now, config):
        logger.info("Outside the polling window at %s; skipping", args.now.strftime("%H:%M"))
        return 0
    require_mailbox(config)
    run = process_mailbox(config, store, build_notifier(config), now=args.now)
    for outcome in run.outcomes:
        if outcome.ok:
            print(f"{outcome.sheet_name}: {outcome.imported_count} flights")
        elif outcome.empty:
            print(f"skipped: {outcome.reason}")
    for error in run.errors:
        print(f"error: {error}")
    return 1 if run.errors else 0


def handle_check_alerts(args: argparse.Namespace, config: ScheduleConfig, store: SnapshotStore) -> int:
    selection = check_urgent_updates(store, build_notifier(config), now=args.now, config=config)
    if not selection:
        print("No urgent flights.")
        return 0
    print(f"{len(selection.flights)} urgent flight(s) of {selection.total_urgent}:")
    for record, status in selection.flights:
        print(f"- {format_value(record.code)} STD {format_time_value(record.std)} ({status.hours_until:.2f} h)")
    return 0


def handle_status(args: argparse.Namespace, config: ScheduleConfig, store: SnapshotStore) -> int:
    if args.date:
        snapshot = store.get(date.fromisoformat(args.date))
        snapshots = [snapshot] if snapshot else []
    else:
        snapshots = store.active_snapshots()
    if not snapshots:
        print("No stored schedules.")
        return 0
    for snapshot in snapshots:
        print(f"{format_sheet_date(snapshot.day)} ({len(snapshot.records)} flights)")
        for record, status in evaluate_statuses(snapshot.records, args.now):
            print(
                f"  {format_value(record.code):<10} {format_value(record.vehicle_reg):<8} "
                f"{format_value(record.dep_string)}-{format_value(record.arr_string)} "
                f"STD {format_time_value(record.std)}  {status.label}"
            )
    return 0


def handle_cleanup(args: argparse.Namespace, config: ScheduleConfig, store: SnapshotStore) -> int:
    removed = cleanup_expired_snapshots(store, build_notifier(config), now=args.now, config=config)
    if not removed:
        print("No old snapshots to delete.")
        return 0
    for label, kind, age in removed:
        print(f"Deleted {kind} snapshot {label} ({age} days old)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--db", help="SQLite store path (default: SCHEDULE_DB_PATH or schedule_store.db)")
    parser.add_argument("--now", help="Evaluate as of this ISO timestamp (UTC if no offset)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import-file", help="Import a schedule file from disk")
    import_parser.add_argument("path", help="CSV, Excel or plain-text schedule")
    import_parser.add_argument("--format", choices=["csv", "excel", "email_body"], help="Override format detection")
    import_parser.add_argument("--no-notify", action="store_true", help="Do not send change notifications")
    import_parser.set_defaults(func=handle_import_file)

    poll_parser = subparsers.add_parser("poll-mail", help="Import unseen schedule e-mails")
    poll_parser.add_argument("--force", action="store_true", help="Poll even outside the polling window")
    poll_parser.set_defaults(func=handle_poll_mail)

    alerts_parser = subparsers.add_parser("check-alerts", help="Alert on flights needing an update now")
    alerts_parser.set_defaults(func=handle_check_alerts)

    status_parser = subparsers.add_parser("status", help="Print flight update statuses")
    status_parser.add_argument("--date", help="Only this schedule day (YYYY-MM-DD)")
    status_parser.set_defaults(func=handle_status)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete snapshots past their retention")
    cleanup_parser.set_defaults(func=handle_cleanup)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger("", logging.DEBUG if args.verbose else logging.INFO)
    args.now = _parse_now(args.now)
    try:
        config = load_config()
        store = SnapshotStore(args.db or config.db_path)
        return args.func(args, config, store)
    except ScheduleConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
