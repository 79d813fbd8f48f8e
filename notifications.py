"""Notification payloads and delivery channels for schedule events."""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    kind: str
    subject: str
    body: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def as_json(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "subject": self.subject,
            "text": f"{self.subject}\n\n{self.body}",
            "payload": dict(self.payload),
        }


class Notifier(Protocol):
    def send(self, notification: Notification, destination: str) -> tuple[bool, str]:
        ...


@dataclass
class WebhookNotifier:
    """POST notifications as JSON to a webhook chosen by destination name."""

    webhooks: Mapping[str, str]
    timeout: int = 10
    session: Optional[requests.Session] = None

    def send(self, notification: Notification, destination: str) -> tuple[bool, str]:
        url = self.webhooks.get(destination)
        if not url:
            return False, f"No webhook configured for destination '{destination}'."
        http = self.session or requests.Session()
        close_session = self.session is None
        try:
            r = http.post(url, json=notification.as_json(), timeout=self.timeout)
            ok = 200 <= r.status_code < 300
            if ok:
                logger.info("Sent %s notification to %s", notification.kind, destination)
            else:
                logger.warning("Webhook %s rejected %s notification: %s", destination, notification.kind, r.status_code)
            return ok, ("" if ok else f"{r.status_code}: {r.text[:200]}")
        except requests.RequestException as e:
            logger.warning("Failed to send %s notification to %s: %s", notification.kind, destination, e)
            return False, str(e)
        finally:
            if close_session:
                http.close()


@dataclass
class SmtpNotifier:
    """Send notifications as plain-text e-mail; ``destination`` is the recipient."""

    host: str
    sender: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout: int = 30
    smtp_factory: Callable[..., Any] = smtplib.SMTP

    def send(self, notification: Notification, destination: str) -> tuple[bool, str]:
        message = EmailMessage()
        message["Subject"] = notification.subject
        message["From"] = self.sender
        message["To"] = destination
        message.set_content(notification.body)
        try:
            with self.smtp_factory(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to e-mail %s notification to %s: %s", notification.kind, destination, e)
            return False, str(e)
        logger.info("E-mailed %s notification to %s", notification.kind, destination)
        return True, ""


def build_change_notification(
    sheet_name: str,
    new_count: int,
    modified_count: int,
    removed_count: int,
    *,
    link: Optional[str] = None,
) -> Notification:
    lines = [
        f"A revised schedule was received for {sheet_name}. Here are the changes:",
        "",
        f"New flights: {new_count}",
        f"Modified flights: {modified_count}",
        f"Removed flights: {removed_count}",
        "",
        "Changed rows are highlighted:",
        "- Green background = New flights",
        "- Yellow background = Modified flights",
        "- (Removed flights are not shown in the new schedule)",
        "",
    ]
    if link:
        lines.append(f"View the schedule: {link}")
    lines.append(f'The previous version has been kept as "{sheet_name}_old_[timestamp]" for reference.')
    return Notification(
        kind="schedule_changes",
        subject=f"Schedule Changes Detected: {sheet_name}",
        body="\n".join(lines),
        payload={
            "sheet": sheet_name,
            "new": new_count,
            "modified": modified_count,
            "removed": removed_count,
        },
    )


def build_error_notification(error: str, *, context: str = "importing flight schedules") -> Notification:
    return Notification(
        kind="import_error",
        subject="Flight Schedule Import Error",
        body=f"An error occurred while {context}:\n\n{error}\n\nPlease check the run logs for details.",
        payload={"error": error},
    )


def build_success_notification(sheet_name: str, record_count: int, imported_at: str) -> Notification:
    return Notification(
        kind="import_success",
        subject=f"Flight Schedule Imported: {sheet_name}",
        body=(
            "Flight schedule successfully imported!\n\n"
            f"Sheet name: {sheet_name}\n"
            f"Flights imported: {record_count}\n"
            f"Timestamp: {imported_at}"
        ),
        payload={"sheet": sheet_name, "count": record_count},
    )


def build_cleanup_notification(
    removed: Sequence[tuple[str, str, int]],
    *,
    retired_days: int,
    active_days: int,
) -> Notification:
    """``removed`` holds ``(label, kind, age_days)`` where kind is ``retired`` or ``active``."""

    retired = [f"  - {label} ({age} days old)" for label, kind, age in removed if kind == "retired"]
    active = [f"  - {label} ({age} days old)" for label, kind, age in removed if kind == "active"]
    sections = []
    if retired:
        sections.append(f'"_old_" snapshots (older than {retired_days} days):\n' + "\n".join(retired))
    if active:
        sections.append(f"Schedule snapshots (older than {active_days} days):\n" + "\n".join(active))
    return Notification(
        kind="cleanup",
        subject=f"Flight Schedule Cleanup: {len(removed)} snapshots deleted",
        body="Automatic cleanup removed old schedule snapshots:\n\n" + "\n\n".join(sections),
        payload={"removed": [label for label, _, _ in removed]},
    )


__all__ = [
    "Notification",
    "Notifier",
    "SmtpNotifier",
    "WebhookNotifier",
    "build_change_notification",
    "build_cleanup_notification",
    "build_error_notification",
    "build_success_notification",
]
