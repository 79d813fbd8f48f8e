from datetime import date

import pytest

from schedule_config import ScheduleConfig
from snapshot_store import SnapshotStore
from tools import schedule_runner

CSV_FEED = (
    "LegDate,VehicleReg,Code,DepString,ArrString,STDHHMM,STAHHMM\n"
    "29-Sep-25,G-ABCD,BA2,LHR,JFK,0800,1100\n"
    "29-Sep-25,G-EFGH,BA1,JFK,LHR,2000,2330\n"
)


@pytest.fixture(autouse=True)
def default_config(monkeypatch):
    monkeypatch.setattr(schedule_runner, "load_config", lambda: ScheduleConfig())


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "schedule.db")


@pytest.fixture
def schedule_file(tmp_path):
    path = tmp_path / "schedule.csv"
    path.write_text(CSV_FEED, encoding="utf8")
    return path


def test_import_file_stores_schedule(db_path, schedule_file, capsys):
    code = schedule_runner.main(["--db", db_path, "import-file", str(schedule_file)])

    assert code == 0
    assert "Imported 2 flights into 29SEP" in capsys.readouterr().out
    assert [r.code for r in SnapshotStore(db_path).get(date(2025, 9, 29)).records] == ["BA1", "BA2"]


def test_import_file_reports_empty_feed(db_path, tmp_path, capsys):
    path = tmp_path / "empty.csv"
    path.write_text("LegDate,Code\n", encoding="utf8")

    code = schedule_runner.main(["--db", db_path, "import-file", str(path)])

    assert code == 1
    assert "Nothing imported: no valid flight records" in capsys.readouterr().out


def test_import_file_rejects_unknown_extension(db_path, tmp_path):
    path = tmp_path / "schedule.pdf"
    path.write_bytes(b"%PDF")

    with pytest.raises(SystemExit):
        schedule_runner.main(["--db", db_path, "import-file", str(path)])


def test_status_prints_labels(db_path, schedule_file, capsys):
    schedule_runner.main(["--db", db_path, "import-file", str(schedule_file)])
    capsys.readouterr()

    code = schedule_runner.main(["--db", db_path, "--now", "2025-09-29T03:00:00", "status"])

    out = capsys.readouterr().out
    assert code == 0
    assert "29SEP (2 flights)" in out
    assert "UPDATE IN 1.1 H" in out
    assert "STD 20:00" in out


def test_check_alerts_lists_urgent_flights(db_path, schedule_file, capsys):
    schedule_runner.main(["--db", db_path, "import-file", str(schedule_file)])
    capsys.readouterr()

    code = schedule_runner.main(["--db", db_path, "--now", "2025-09-29T06:00:00Z", "check-alerts"])

    out = capsys.readouterr().out
    assert code == 0
    assert "1 urgent flight(s) of 1:" in out
    assert "- BA2 STD 08:00 (2.00 h)" in out


def test_poll_mail_outside_window_does_nothing(db_path):
    assert schedule_runner.main(["--db", db_path, "--now", "2025-09-29T09:10:00", "poll-mail"]) == 0


def test_poll_mail_without_mailbox_is_a_config_error(db_path, capsys):
    code = schedule_runner.main(["--db", db_path, "poll-mail", "--force"])

    assert code == 2
    err = capsys.readouterr().err
    assert "configuration error: Missing mailbox settings" in err


def test_cleanup_with_nothing_to_delete(db_path, capsys):
    assert schedule_runner.main(["--db", db_path, "cleanup"]) == 0
    assert "No old snapshots to delete." in capsys.readouterr().out


def test_build_notifier_prefers_webhooks():
    config = ScheduleConfig(webhooks={"ops": "https://hooks.example.test/ops"})

    assert isinstance(schedule_runner.build_notifier(config), schedule_runner.WebhookNotifier)
    assert schedule_runner.build_notifier(ScheduleConfig()) is None


def test_import_file_accepts_trailing_comma_rows(db_path, tmp_path, capsys):
    path = tmp_path / "export.csv"
    path.write_text("Date,Flight Code,STD\n29-Sep-25,BA1,08:00,\n", encoding="utf8")

    code = schedule_runner.main(["--db", db_path, "import-file", str(path)])

    assert code == 0
    assert "Imported 1 flights into 29SEP" in capsys.readouterr().out


def test_import_file_reports_unreadable_workbook(db_path, tmp_path, capsys):
    path = tmp_path / "schedule.xlsx"
    path.write_bytes(b"not a workbook")

    code = schedule_runner.main(["--db", db_path, "import-file", str(path)])

    assert code == 1
    assert "Import failed: could not read schedule.xlsx" in capsys.readouterr().out
