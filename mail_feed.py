"""Fetching schedule e-mails over IMAP and pulling feeds out of them."""
from __future__ import annotations

import email
import imaplib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Any, Callable, List, Optional

from feed_sources import FeedData, load_feed, source_for_attachment
from schedule_config import MailboxConfig
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content_type: str
    payload: bytes


@dataclass
class ScheduleEmail:
    uid: int
    subject: str
    body: str = ""
    sender: str = ""
    received_at: Optional[datetime] = None
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class MailboxPoll:
    emails: List[ScheduleEmail] = field(default_factory=list)
    skipped_uids: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def get_email_date_utc(msg: Message) -> Optional[datetime]:
    try:
        d = msg.get("Date")
        if not d:
            return None
        dt = parsedate_to_datetime(d)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (TypeError, ValueError):
        return None


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    return payload.decode(part.get_content_charset() or "utf-8", errors="ignore")


def parse_schedule_email(uid: int, raw: bytes) -> ScheduleEmail:
    """Split an RFC822 message into its plain-text body and file attachments."""

    msg = email.message_from_bytes(raw)
    body = ""
    attachments: List[Attachment] = []
    if msg.is_multipart():
        for part in msg.walk():
            if part.is_multipart():
                continue
            filename = part.get_filename()
            if filename:
                attachments.append(
                    Attachment(filename, part.get_content_type(), part.get_payload(decode=True) or b"")
                )
            elif not body and part.get_content_type() == "text/plain":
                body = _decode_part(part)
        if not body:
            for part in msg.walk():
                if part.get_content_type().startswith("text/") and not part.get_filename():
                    body = _decode_part(part)
                    break
    else:
        body = _decode_part(msg)

    return ScheduleEmail(
        uid=uid,
        subject=msg.get("Subject", "") or "",
        body=body,
        sender=msg.get("From", "") or "",
        received_at=get_email_date_utc(msg),
        attachments=attachments,
    )


def attachment_feeds(message: ScheduleEmail) -> tuple[List[FeedData], List[str]]:
    """Load every CSV/Excel attachment; unreadable files are reported, not raised."""

    feeds: List[FeedData] = []
    errors: List[str] = []
    for attachment in message.attachments:
        source = source_for_attachment(attachment.filename, attachment.content_type)
        if source is None:
            continue
        logger.info("Processing attachment: %s", attachment.filename)
        try:
            feeds.append(
                load_feed(
                    source,
                    content=attachment.payload,
                    name=attachment.filename,
                    metadata={"uid": message.uid, "subject": message.subject},
                )
            )
        except Exception as exc:  # reported per attachment
            errors.append(f"{attachment.filename}: {exc}")
            logger.warning("Could not read attachment %s: %s", attachment.filename, exc)
    return feeds, errors


def body_feed(message: ScheduleEmail) -> FeedData:
    return load_feed(
        "email_body",
        content=message.body,
        name="email body",
        metadata={"uid": message.uid, "subject": message.subject},
    )


def _subject_matches(subject: str, keyword: str) -> bool:
    return not keyword or keyword.lower() in (subject or "").lower()


def fetch_schedule_emails(
    config: MailboxConfig,
    store: SnapshotStore,
    *,
    imap_factory: Callable[[str], Any] = imaplib.IMAP4_SSL,
) -> MailboxPoll:
    """Return unseen schedule e-mails after the stored UID cursor.

    The cursor itself is not advanced here; callers move it once each
    message has been handled. Messages that cannot be fetched or whose
    subject does not match land in ``skipped_uids``. Connection and protocol
    failures are returned as ``MailboxPoll.error``, never raised.
    """

    if not config.configured:
        return MailboxPoll(error="IMAP host, user and password must be configured")

    try:
        M = imap_factory(config.host)
    except (imaplib.IMAP4.error, OSError) as e:
        return MailboxPoll(error=f"IMAP connection to {config.host} failed: {e}")
    try:
        try:
            M.login(config.user, config.password)
        except imaplib.IMAP4.error as e:
            return MailboxPoll(error=f"IMAP login failed: {e}")

        try:
            return _poll_new_messages(M, config, store)
        except (imaplib.IMAP4.error, OSError) as e:
            return MailboxPoll(error=f"IMAP error in {config.folder}: {e}")
    finally:
        try:
            M.logout()
        except (imaplib.IMAP4.error, OSError):
            pass


def _poll_new_messages(M: Any, config: MailboxConfig, store: SnapshotStore) -> MailboxPoll:
    typ, _ = M.select(config.folder)
    if typ != "OK":
        return MailboxPoll(error=f"Could not open folder {config.folder}")

    last_uid = store.get_last_uid(config.cursor_key)
    if config.sender:
        typ, data = M.uid("search", None, "FROM", f'"{config.sender}"', f"UID {last_uid + 1}:*")
        if typ != "OK" or not data or not data[0]:
            logger.debug('No matches for FROM filter "%s"; falling back to unfiltered search', config.sender)
            typ, data = M.uid("search", None, f"UID {last_uid + 1}:*")
    else:
        typ, data = M.uid("search", None, f"UID {last_uid + 1}:*")

    if typ != "OK":
        return MailboxPoll(error="IMAP search failed")

    # "UID n:*" always matches the newest message, even when it is older than n.
    uids = sorted(int(x) for x in (data[0].split() if data and data[0] else []) if int(x) > last_uid)
    poll = MailboxPoll()
    for uid in uids[: config.max_messages]:
        typ, msg_data = M.uid("fetch", str(uid), "(RFC822)")
        if typ != "OK" or not msg_data or not msg_data[0]:
            logger.warning("Could not fetch message UID %s; skipping it", uid)
            poll.skipped_uids.append(uid)
            continue
        message = parse_schedule_email(uid, msg_data[0][1])
        if not _subject_matches(message.subject, config.subject_keyword):
            poll.skipped_uids.append(uid)
            continue
        poll.emails.append(message)
    logger.info("Found %d unprocessed schedule e-mail(s)", len(poll.emails))
    return poll


__all__ = [
    "Attachment",
    "MailboxPoll",
    "ScheduleEmail",
    "attachment_feeds",
    "body_feed",
    "fetch_schedule_emails",
    "parse_schedule_email",
]
