import logging

import pytest

import schedule_config
from schedule_config import (
    MailboxConfig,
    ScheduleConfig,
    ScheduleConfigError,
    load_config,
    require_mailbox,
    setup_logger,
)
from schedule_fields import DEFAULT_HEADER_ALIASES, CanonicalField
from snapshot_diff import RowChange

SETTINGS = [
    "SCHEDULE_HEADER_ALIASES",
    "ALERTS_ENABLED",
    "ALERTS_MAX_PER_CHECK",
    "ALERTS_DESTINATION",
    "IMAP_HOST",
    "IMAP_USER",
    "IMAP_PASS",
    "IMAP_FOLDER",
    "SCHEDULE_WEBHOOKS",
    "SCHEDULE_NOTIFY_DESTINATION",
    "RETENTION_RETIRED_DAYS",
    "SCHEDULE_DB_PATH",
]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in SETTINGS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(schedule_config, "_read_streamlit_secret", lambda name: None)


def test_defaults_without_any_settings():
    config = load_config()

    assert config.header_aliases == DEFAULT_HEADER_ALIASES
    assert config.alerts.enabled is True
    assert config.alerts.max_alerts_per_check == 10
    assert config.changes.colors == {
        RowChange.NEW: "#d9ead3",
        RowChange.MODIFIED: "#fff2cc",
        RowChange.REMOVED: "#f4cccc",
    }
    assert config.retention.retired_days == 5
    assert config.retention.active_days == 90
    assert config.poll_window.frequent_start_hour == 18
    assert config.mailbox.folder == "INBOX"
    assert config.mailbox.subject_keyword == "schedule"
    assert config.mailbox.max_messages == 25
    assert not config.mailbox.configured
    assert config.send_success_notification is False
    assert config.db_path == "schedule_store.db"


def test_environment_settings_are_read(monkeypatch):
    monkeypatch.setenv("ALERTS_ENABLED", "no")
    monkeypatch.setenv("ALERTS_MAX_PER_CHECK", "3")
    monkeypatch.setenv("IMAP_HOST", "imap.example.test")
    monkeypatch.setenv("IMAP_USER", "ops")
    monkeypatch.setenv("IMAP_PASS", "secret")
    monkeypatch.setenv("IMAP_FOLDER", "  ")
    monkeypatch.setenv("SCHEDULE_WEBHOOKS", '{"ops": "https://hooks.example.test/ops"}')
    monkeypatch.setenv("SCHEDULE_NOTIFY_DESTINATION", "ops")

    config = load_config()

    assert config.alerts.enabled is False
    assert config.alerts.max_alerts_per_check == 3
    assert config.mailbox.configured
    assert config.mailbox.folder == "INBOX"
    assert config.mailbox.cursor_key == "ops:INBOX"
    assert config.webhooks == {"ops": "https://hooks.example.test/ops"}
    assert config.alert_destination == "ops"


def test_streamlit_secrets_fill_missing_environment(monkeypatch):
    secrets = {"IMAP_HOST": "imap.secrets.test", "SCHEDULE_WEBHOOKS": {"ops": "https://hooks.example.test/s"}}
    monkeypatch.setattr(schedule_config, "_read_streamlit_secret", secrets.get)
    monkeypatch.setenv("IMAP_USER", "ops")

    config = load_config()

    assert config.mailbox.host == "imap.secrets.test"
    assert config.mailbox.user == "ops"
    assert config.webhooks == {"ops": "https://hooks.example.test/s"}


def test_environment_wins_over_secrets(monkeypatch):
    monkeypatch.setattr(schedule_config, "_read_streamlit_secret", {"IMAP_HOST": "from-secrets"}.get)
    monkeypatch.setenv("IMAP_HOST", "from-env")

    assert load_config().mailbox.host == "from-env"


def test_extra_header_aliases(monkeypatch):
    monkeypatch.setenv("SCHEDULE_HEADER_ALIASES", '{"Tail Reg": "VehicleReg"}')

    config = load_config()

    assert config.header_aliases[-1] == ("Tail Reg", CanonicalField.VEHICLE_REG)


@pytest.mark.parametrize(
    "name, value",
    [
        ("SCHEDULE_HEADER_ALIASES", '{"Pilot": "Captain"}'),
        ("SCHEDULE_HEADER_ALIASES", "[not json"),
        ("SCHEDULE_WEBHOOKS", '["https://hooks.example.test"]'),
        ("RETENTION_RETIRED_DAYS", "five"),
    ],
)
def test_invalid_settings_raise_config_error(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ScheduleConfigError):
        load_config()


def test_require_mailbox():
    with pytest.raises(ScheduleConfigError):
        require_mailbox(ScheduleConfig())

    mailbox = MailboxConfig(host="h", user="u", password="p")
    assert require_mailbox(ScheduleConfig(mailbox=mailbox)) is mailbox


def test_setup_logger_adds_one_handler():
    name = "schedule_config_test_logger"

    first = setup_logger(name)
    second = setup_logger(name)

    assert first is second
    assert len(first.handlers) == 1
    assert first.level == logging.INFO
