from datetime import date, datetime

import pandas as pd
import pytest

from date_window import filter_by_date, format_sheet_date, most_common_date, normalize_flight_date
from schedule_records import FlightRecord


def _record(flight_date, code="BA1"):
    return FlightRecord(flight_date=flight_date, code=code)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("29-Sep-25", date(2025, 9, 29)),
        ("1-Apr-2025", date(2025, 4, 1)),
        ("29 SEP 25", date(2025, 9, 29)),
        ("2025-09-29", date(2025, 9, 29)),
        ("2025-09-29T00:00:00", date(2025, 9, 29)),
        ("03/04/2025", date(2025, 4, 3)),
        (datetime(2025, 9, 29, 17, 5), date(2025, 9, 29)),
        (date(2025, 9, 29), date(2025, 9, 29)),
        (pd.Timestamp("2025-09-29"), date(2025, 9, 29)),
    ],
)
def test_normalize_flight_date_accepts_common_representations(value, expected):
    assert normalize_flight_date(value) == expected


@pytest.mark.parametrize("value", ["", "   ", None, "not a date", "31-Feb-25", "29-Foo-25", 45929, pd.NaT])
def test_normalize_flight_date_rejects_unreadable_values(value):
    assert normalize_flight_date(value) is None


def test_format_sheet_date():
    assert format_sheet_date(date(2025, 9, 29)) == "29SEP"
    assert format_sheet_date(date(2025, 1, 3)) == "03JAN"


def test_most_common_date_uses_majority():
    records = [
        _record("30-Sep-25"),
        _record("29-Sep-25"),
        _record("2025-09-29"),
        _record(datetime(2025, 9, 29)),
    ]

    assert most_common_date(records) == date(2025, 9, 29)


def test_most_common_date_breaks_ties_by_first_seen():
    records = [_record("30-Sep-25"), _record("29-Sep-25"), _record("29-Sep-25"), _record("30-Sep-25")]

    assert most_common_date(records) == date(2025, 9, 30)


def test_most_common_date_ignores_unparseable_values():
    assert most_common_date([_record("TBD"), _record("")]) is None
    assert most_common_date([_record("TBD"), _record("TBD"), _record("1-Oct-25")]) == date(2025, 10, 1)


def test_filter_by_date_excludes_other_days_and_bad_dates():
    records = [
        _record("29-Sep-25", "BA1"),
        _record("30-Sep-25", "BA2"),
        _record("", "BA3"),
        _record("soon", "BA4"),
        _record("2025-09-29", "BA5"),
    ]

    result = filter_by_date(records, date(2025, 9, 29))

    assert [r.code for r in result.records] == ["BA1", "BA5"]
    assert [row.reason for row in result.excluded] == [
        "different flight date",
        "missing flight date",
        "unparseable flight date",
    ]
    assert [row.value for row in result.unparseable] == ["", "soon"]


@pytest.mark.parametrize("value", ["08:00", "5", "Sep", "Monday", "Sep 2025", "29/09"])
def test_normalize_flight_date_rejects_partial_dates(value):
    assert normalize_flight_date(value) is None


def test_time_shaped_dates_do_not_vote_or_pass_the_filter():
    records = [_record("08:00", "BA1"), _record("29-Sep-25", "BA2"), _record("5", "BA3")]

    assert most_common_date(records) == date(2025, 9, 29)
    result = filter_by_date(records, date(2025, 9, 29))
    assert [r.code for r in result.records] == ["BA2"]
    assert [row.value for row in result.unparseable] == ["08:00", "5"]


def test_excluded_rows_carry_feed_row_numbers():
    records = [
        FlightRecord(flight_date="29-Sep-25", code="BA1", source_row=2),
        FlightRecord(flight_date="30-Sep-25", code="BA2", source_row=3),
        FlightRecord(flight_date="TBD", code="BA3", source_row=5),
    ]

    result = filter_by_date(records, date(2025, 9, 29))

    assert [row.row_number for row in result.excluded] == [3, 5]
