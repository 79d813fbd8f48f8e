"""Runtime configuration for the schedule importer and alert checks."""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from schedule_fields import DEFAULT_HEADER_ALIASES, CanonicalField, build_alias_table
from snapshot_diff import RowChange
from snapshot_store import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ScheduleConfigError(RuntimeError):
    """Raised when a setting required for an operation is missing."""


@dataclass(frozen=True)
class AlertConfig:
    enabled: bool = True
    max_alerts_per_check: int = 10
    destination: Optional[str] = None


@dataclass(frozen=True)
class ChangeDetectionConfig:
    enabled: bool = True
    new_color: str = "#d9ead3"
    modified_color: str = "#fff2cc"
    removed_color: str = "#f4cccc"

    @property
    def colors(self) -> dict[RowChange, str]:
        return {
            RowChange.NEW: self.new_color,
            RowChange.MODIFIED: self.modified_color,
            RowChange.REMOVED: self.removed_color,
        }


@dataclass(frozen=True)
class RetentionConfig:
    auto_delete: bool = True
    retired_days: int = 5
    active_days: int = 90
    notify: bool = True


@dataclass(frozen=True)
class PollWindowConfig:
    """Poll every tick between the frequent hours (inclusive), otherwise every ``normal_interval_minutes``."""

    frequent_start_hour: int = 18
    frequent_end_hour: int = 23
    frequent_interval_minutes: int = 5
    normal_interval_minutes: int = 30


@dataclass(frozen=True)
class MailboxConfig:
    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    folder: str = "INBOX"
    sender: Optional[str] = None
    subject_keyword: str = "schedule"
    max_messages: int = 25

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    @property
    def cursor_key(self) -> str:
        return f"{self.user or ''}:{self.folder}"


@dataclass(frozen=True)
class SmtpConfig:
    host: Optional[str] = None
    port: int = 587
    sender: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)


@dataclass(frozen=True)
class ScheduleConfig:
    header_aliases: tuple[tuple[str, CanonicalField], ...] = DEFAULT_HEADER_ALIASES
    alerts: AlertConfig = field(default_factory=AlertConfig)
    changes: ChangeDetectionConfig = field(default_factory=ChangeDetectionConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    poll_window: PollWindowConfig = field(default_factory=PollWindowConfig)
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    webhooks: Mapping[str, str] = field(default_factory=dict)
    notify_destination: Optional[str] = None
    send_success_notification: bool = False
    schedule_link: Optional[str] = None
    db_path: str = DEFAULT_DB_PATH

    @property
    def alert_destination(self) -> Optional[str]:
        return self.alerts.destination or self.notify_destination


def _read_streamlit_secret(name: str) -> Any | None:
    """Best-effort lookup from Streamlit secrets when running in Streamlit."""
    try:
        import streamlit as st

        value = st.secrets.get(name)
        if value is None:
            value = st.secrets.get(name.lower())
        return value
    except Exception:
        return None


def _read_setting(name: str) -> Any | None:
    value: Any = os.getenv(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        value = _read_streamlit_secret(name)
    if value is None:
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed if trimmed else None
    return value


def _setting_bool(name: str, default: bool) -> bool:
    value = _read_setting(name)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _setting_int(name: str, default: int) -> int:
    value = _read_setting(name)
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ScheduleConfigError(f"Setting {name} must be an integer, got {value!r}") from exc


def _setting_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = _read_setting(name)
    return default if value is None else str(value)


def _setting_mapping(name: str) -> dict[str, str]:
    value = _read_setting(name)
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ScheduleConfigError(f"Setting {name} must be a JSON object") from exc
    if not isinstance(value, Mapping):
        raise ScheduleConfigError(f"Setting {name} must be a JSON object")
    return {str(k): str(v) for k, v in value.items()}


def load_config() -> ScheduleConfig:
    """Build the configuration from environment variables, then Streamlit secrets."""

    extra_aliases = _setting_mapping("SCHEDULE_HEADER_ALIASES")
    try:
        aliases = build_alias_table(extra_aliases)
    except ValueError as exc:
        raise ScheduleConfigError(f"SCHEDULE_HEADER_ALIASES: {exc}") from exc
    if extra_aliases:
        logger.info("Loaded %d extra header alias(es)", len(extra_aliases))

    return ScheduleConfig(
        header_aliases=aliases,
        alerts=AlertConfig(
            enabled=_setting_bool("ALERTS_ENABLED", True),
            max_alerts_per_check=_setting_int("ALERTS_MAX_PER_CHECK", 10),
            destination=_setting_str("ALERTS_DESTINATION"),
        ),
        changes=ChangeDetectionConfig(
            enabled=_setting_bool("CHANGE_DETECTION_ENABLED", True),
            new_color=_setting_str("CHANGE_COLOR_NEW", "#d9ead3"),
            modified_color=_setting_str("CHANGE_COLOR_MODIFIED", "#fff2cc"),
            removed_color=_setting_str("CHANGE_COLOR_REMOVED", "#f4cccc"),
        ),
        retention=RetentionConfig(
            auto_delete=_setting_bool("RETENTION_AUTO_DELETE", True),
            retired_days=_setting_int("RETENTION_RETIRED_DAYS", 5),
            active_days=_setting_int("RETENTION_ACTIVE_DAYS", 90),
            notify=_setting_bool("RETENTION_NOTIFY", True),
        ),
        poll_window=PollWindowConfig(
            frequent_start_hour=_setting_int("POLL_FREQUENT_START_HOUR", 18),
            frequent_end_hour=_setting_int("POLL_FREQUENT_END_HOUR", 23),
            frequent_interval_minutes=_setting_int("POLL_FREQUENT_INTERVAL_MINUTES", 5),
            normal_interval_minutes=_setting_int("POLL_NORMAL_INTERVAL_MINUTES", 30),
        ),
        mailbox=MailboxConfig(
            host=_setting_str("IMAP_HOST"),
            user=_setting_str("IMAP_USER"),
            password=_setting_str("IMAP_PASS"),
            folder=_setting_str("IMAP_FOLDER", "INBOX"),
            sender=_setting_str("IMAP_SENDER"),
            subject_keyword=_setting_str("SCHEDULE_SUBJECT_KEYWORD", "schedule"),
            max_messages=_setting_int("IMAP_MAX_MESSAGES", 25),
        ),
        smtp=SmtpConfig(
            host=_setting_str("SMTP_HOST"),
            port=_setting_int("SMTP_PORT", 587),
            sender=_setting_str("SMTP_SENDER"),
            username=_setting_str("SMTP_USER"),
            password=_setting_str("SMTP_PASS"),
            use_tls=_setting_bool("SMTP_USE_TLS", True),
        ),
        webhooks=_setting_mapping("SCHEDULE_WEBHOOKS"),
        notify_destination=_setting_str("SCHEDULE_NOTIFY_DESTINATION"),
        send_success_notification=_setting_bool("SCHEDULE_SEND_SUCCESS", False),
        schedule_link=_setting_str("SCHEDULE_LINK"),
        db_path=_setting_str("SCHEDULE_DB_PATH", DEFAULT_DB_PATH),
    )


def require_mailbox(config: ScheduleConfig) -> MailboxConfig:
    if not config.mailbox.configured:
        raise ScheduleConfigError(
            "Missing mailbox settings. Configure IMAP_HOST, IMAP_USER and IMAP_PASS "
            "as environment variables or streamlit secrets."
        )
    return config.mailbox


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Attach one stream handler to ``name``; repeated calls reuse it."""

    log = logging.getLogger(name)
    if log.handlers:
        return log
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    log.addHandler(handler)
    log.setLevel(level)
    return log


__all__ = [
    "AlertConfig",
    "ChangeDetectionConfig",
    "MailboxConfig",
    "PollWindowConfig",
    "RetentionConfig",
    "ScheduleConfig",
    "ScheduleConfigError",
    "SmtpConfig",
    "load_config",
    "require_mailbox",
    "setup_logger",
]
