import unittest
from datetime import datetime
from io import BytesIO

import pandas as pd

from feed_sources import load_feed, rows_from_email_body, source_for_attachment

CSV_FEED = (
    "LegDate,VehicleReg,Code,DepString,ArrString,STDHHMM,STAHHMM\n"
    "29-Sep-25,G-ABCD,BA123,LHR,JFK,0800,1100\n"
    "29-Sep-25,G-EFGH,BA124,JFK,LHR,,\n"
)


class CsvFeedTests(unittest.TestCase):
    def test_reads_every_row_as_text(self):
        data = load_feed("csv", content=CSV_FEED.encode("utf-8"), name="schedule.csv")

        self.assertEqual(data.source, "csv")
        self.assertEqual(data.name, "schedule.csv")
        self.assertTrue(data.has_data_rows)
        self.assertEqual(len(data.rows), 3)
        self.assertEqual(data.rows[0][0], "LegDate")
        self.assertEqual(data.rows[1], ["29-Sep-25", "G-ABCD", "BA123", "LHR", "JFK", "0800", "1100"])
        self.assertEqual(data.rows[2][5], "")

    def test_strips_utf8_bom(self):
        data = load_feed("csv", content=b"\xef\xbb\xbf" + CSV_FEED.encode("utf-8"))

        self.assertEqual(data.rows[0][0], "LegDate")

    def test_header_only_file_has_no_data_rows(self):
        data = load_feed("csv", content="Date,Code\n")

        self.assertFalse(data.has_data_rows)

    def test_trailing_comma_rows_are_padded(self):
        data = load_feed("csv", content=b"Date,Flight Code,STD\n29-Sep-25,BA1,08:00,\n29-Sep-25,BA2\n")

        self.assertEqual(data.rows[0], ["Date", "Flight Code", "STD", ""])
        self.assertEqual(data.rows[1], ["29-Sep-25", "BA1", "08:00", ""])
        self.assertEqual(data.rows[2], ["29-Sep-25", "BA2", "", ""])

    def test_empty_file_has_no_rows(self):
        self.assertEqual(load_feed("csv", content=b"").rows, [])


class ExcelFeedTests(unittest.TestCase):
    def test_keeps_native_cells(self):
        frame = pd.DataFrame(
            [
                ["LegDate", "Code", "STD"],
                [datetime(2025, 9, 29), "BA123", "08:00"],
                [datetime(2025, 9, 29), "BA124", None],
            ]
        )
        buffer = BytesIO()
        frame.to_excel(buffer, header=False, index=False)

        data = load_feed("excel", content=buffer.getvalue(), name="schedule.xlsx")

        self.assertEqual(data.rows[0], ["LegDate", "Code", "STD"])
        self.assertEqual(pd.Timestamp(data.rows[1][0]).date(), datetime(2025, 9, 29).date())
        self.assertEqual(data.rows[1][1], "BA123")
        self.assertEqual(data.rows[2][2], "")

    def test_rejects_text_content(self):
        with self.assertRaises(ValueError):
            load_feed("excel", content="not a workbook")


class EmailBodyFeedTests(unittest.TestCase):
    def test_extracts_header_and_dated_lines(self):
        body = (
            "Hello team,\n"
            "\n"
            "LegDate  VehicleReg  Code  DepString  ArrString  STD  STA\n"
            "29-Sep-25  G-ABCD  BA123  LHR  JFK  08:00  11:00\n"
            "Remarks: none\n"
            "29-Sep-2025  G-EFGH  BA124  JFK  LHR  13:00  20:00\n"
            "Regards\n"
        )

        rows = rows_from_email_body(body)

        self.assertEqual(rows[0][:3], ["LegDate", "VehicleReg", "Code"])
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[2][2], "BA124")

    def test_body_without_header_yields_nothing(self):
        data = load_feed("email_body", content=b"29-Sep-25 G-ABCD BA123\n")

        self.assertEqual(data.rows, [])
        self.assertFalse(data.has_data_rows)


class AttachmentSourceTests(unittest.TestCase):
    def test_detects_supported_attachments(self):
        self.assertEqual(source_for_attachment("Schedule.CSV"), "csv")
        self.assertEqual(source_for_attachment("export", "text/csv; charset=utf-8"), "csv")
        self.assertEqual(source_for_attachment("schedule.xlsx"), "excel")
        self.assertEqual(source_for_attachment("legacy.xls"), "excel")
        self.assertIsNone(source_for_attachment("logo.png", "image/png"))

    def test_unknown_source_is_rejected(self):
        with self.assertRaises(ValueError):
            load_feed("pdf", content=b"")


if __name__ == "__main__":
    unittest.main()
