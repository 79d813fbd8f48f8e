import pytest

from schedule_records import FlightRecord
from snapshot_diff import RowChange, build_change_note, change_highlights, diff_snapshots


def _flight(code, std="10:00", reg="G-ABCD"):
    return FlightRecord("29-Sep-25", reg, code, "LHR", "JFK", std, "13:00")


def test_time_change_on_same_code_is_modified():
    previous = [_flight("BA123", std="10:00")]
    current = [_flight("BA123", std="11:00")]

    result = diff_snapshots(previous, current)

    assert [row.change for row in result.rows] == [RowChange.MODIFIED]
    assert result.removed_count == 0
    assert result.new_count == 0
    assert result.previous_rows[0].change is RowChange.SUPERSEDED


def test_classifies_new_unchanged_and_removed():
    previous = [_flight("BA1"), _flight("BA2"), _flight("BA3")]
    current = [_flight("BA1"), _flight("BA2", std="12:00"), _flight("BA4")]

    result = diff_snapshots(previous, current)

    assert [row.change for row in result.rows] == [RowChange.UNCHANGED, RowChange.MODIFIED, RowChange.NEW]
    assert result.removed_count == 1
    assert [r.code for r in result.removed_records] == ["BA3"]
    assert result.counts() == {"new": 1, "modified": 1, "unchanged": 1, "removed": 1}


def test_every_row_is_classified_once():
    previous = [_flight("BA1"), _flight("BA1", reg="G-EFGH"), _flight("BA7"), _flight("BA9")]
    current = [_flight("BA1"), _flight("BA1", std="18:00"), _flight("BA2"), _flight("BA7")]

    result = diff_snapshots(previous, current)

    assert len(result.rows) == len(current)
    assert len(result.previous_rows) == len(previous)
    assert result.new_count + result.modified_count + result.unchanged_count == len(current)
    assert [row.position for row in result.rows] == [0, 1, 2, 3]


def test_duplicate_codes_match_on_full_row():
    leg_one = _flight("BA1", std="06:00")
    leg_two = _flight("BA1", std="15:00")

    result = diff_snapshots([leg_one, leg_two], [leg_two, leg_one])

    assert all(row.change is RowChange.UNCHANGED for row in result.rows)
    assert not result.has_changes


def test_without_previous_snapshot_everything_is_new():
    result = diff_snapshots(None, [_flight("BA1"), _flight("BA2")])

    assert not result.had_previous
    assert result.new_count == 2
    assert result.removed_count == 0


def test_empty_previous_snapshot_counts_as_present():
    result = diff_snapshots([], [_flight("BA1")])

    assert result.had_previous
    assert result.new_count == 1


def test_change_note_lists_counts():
    result = diff_snapshots([_flight("BA1"), _flight("BA3")], [_flight("BA1", std="09:00"), _flight("BA2")])

    assert build_change_note(result) == (
        "Changes from previous version:\nNew flights: 1\nModified flights: 1\nRemoved flights: 1"
    )


def test_change_note_is_omitted_when_nothing_changed():
    flights = [_flight("BA1")]

    assert build_change_note(diff_snapshots(flights, list(flights))) is None


@pytest.mark.parametrize(
    "current, expected",
    [
        ([_flight("BA1")], [""]),
        ([_flight("BA1", std="09:00")], ["#fff2cc"]),
        ([_flight("BA1"), _flight("BA2")], ["", "#d9ead3"]),
    ],
)
def test_change_highlights(current, expected):
    colors = {RowChange.NEW: "#d9ead3", RowChange.MODIFIED: "#fff2cc"}

    result = diff_snapshots([_flight("BA1")], current)

    assert change_highlights(result, colors) == expected
