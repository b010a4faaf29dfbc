from __future__ import annotations

import unittest
from io import BytesIO

from openpyxl import load_workbook

from app.services.report_exports import (
    build_daily_csv,
    build_range_csv,
    build_range_xlsx_bytes,
    build_too_weekly_csv,
    daily_csv_filename,
    range_csv_filename,
    range_xlsx_filename,
    sort_rows_by_campaign,
    too_weekly_csv_filename,
)


def _cell(status: str, hours: float) -> dict[str, object]:
    return {"status": status, "workHours": hours, "workMinutes": int(hours * 60), "breakMinutes": 0}


def _daily_report() -> dict[str, object]:
    return {
        "columns": ["Agent Name", "Team Leader", "Campaign", "2026-01-05"],
        "rows": [
            {"agentName": "Zola", "teamLeader": "", "campaign": None, "2026-01-05": _cell("Absent", 0)},
            {"agentName": "Lebo", "teamLeader": "Thabo", "campaign": "Support", "2026-01-05": _cell("Present", 8)},
            {"agentName": "Anele", "teamLeader": "Thabo", "campaign": "Sales", "2026-01-05": _cell("Present", 7.5)},
        ],
    }


class ExportFilenameTests(unittest.TestCase):
    def test_filenames(self) -> None:
        self.assertEqual(daily_csv_filename("2026-01-05"), "attendance-daily-2026-01-05.csv")
        self.assertEqual(range_csv_filename("2026-01-05", "2026-01-09"), "attendance-range-2026-01-05-to-2026-01-09.csv")
        self.assertEqual(too_weekly_csv_filename("2026-01-05", "2026-01-18"), "too-weekly-2026-01-05-to-2026-01-18.csv")
        self.assertEqual(range_xlsx_filename("2026-01-05", "2026-01-09"), "attendance-range-2026-01-05-to-2026-01-09.xlsx")


class CsvExportTests(unittest.TestCase):
    def test_rows_without_campaign_sort_last(self) -> None:
        ordered = sort_rows_by_campaign(_daily_report()["rows"])  # type: ignore[arg-type]
        self.assertEqual([row["campaign"] for row in ordered], ["Sales", "Support", None])

    def test_daily_csv_groups_campaigns_and_totals(self) -> None:
        payload = build_daily_csv(_daily_report())

        self.assertEqual(
            payload.split("\n"),
            [
                '"Agent Name","Team Leader","Campaign","2026-01-05","Total Hours"',
                '"Anele","Thabo","Sales","Present","7.50"',
                "",
                '"Lebo","Thabo","Support","Present","8.00"',
                "",
                '"Zola","","","Absent","0.00"',
                '"TOTAL HOURS","","","","15.50"',
                "",
            ],
        )

    def test_range_csv_has_status_then_hours_columns(self) -> None:
        report = {
            "columns": ["Agent Name", "Team Leader", "Campaign", "2026-01-05", "2026-01-06"],
            "rows": [
                {
                    "agentName": "Anele",
                    "teamLeader": "Thabo",
                    "campaign": "Sales",
                    "2026-01-05": _cell("Present", 8),
                    "2026-01-06": _cell("Sick Leave", 0),
                },
                {
                    "agentName": "Sipho",
                    "teamLeader": "Thabo",
                    "campaign": "Sales",
                    "2026-01-05": _cell("Present", 4.25),
                    "2026-01-06": _cell("Present", 8),
                },
            ],
        }

        lines = build_range_csv(report).split("\n")

        self.assertEqual(
            lines[0],
            '"Agent Name","Team Leader","Campaign","2026-01-05","2026-01-06",'
            '"Hours (2026-01-05)","Hours (2026-01-06)","Total Hours"',
        )
        self.assertEqual(lines[1], '"Anele","Thabo","Sales","Present","Sick Leave","8.00","0.00","8.00"')
        self.assertEqual(lines[2], '"Sipho","Thabo","Sales","Present","Present","4.25","8.00","12.25"')
        self.assertEqual(lines[3], '"TOTAL HOURS","","","","","12.25","8.00","20.25"')

    def test_too_weekly_csv_totals_work_hours(self) -> None:
        report = {
            "columns": ["Metric", "2026-01-11", "2026-01-18"],
            "rows": [
                {"metric": "Present", "2026-01-11": 5, "2026-01-18": 5},
                {"metric": "TOO %", "2026-01-11": "35.71", "2026-01-18": "35.71"},
                {"metric": "Work Hours", "2026-01-11": 40.0, "2026-01-18": 38.5},
            ],
        }

        lines = build_too_weekly_csv(report).split("\n")

        self.assertEqual(lines[0], '"Metric","2026-01-11","2026-01-18","Total Hours"')
        self.assertEqual(lines[1], '"Present","5","5",""')
        self.assertEqual(lines[2], '"TOO %","35.71","35.71",""')
        self.assertEqual(lines[3], '"Work Hours","40.00","38.50","78.50"')
        self.assertEqual(lines[4], '"TOTAL HOURS","40.00","38.50","78.50"')

    def test_empty_report_still_writes_header_and_total(self) -> None:
        payload = build_daily_csv({"columns": ["Agent Name", "Team Leader", "Campaign", "2026-01-05"], "rows": []})
        self.assertEqual(
            payload.split("\n"),
            [
                '"Agent Name","Team Leader","Campaign","2026-01-05","Total Hours"',
                '"TOTAL HOURS","","","","0.00"',
                "",
            ],
        )


class XlsxExportTests(unittest.TestCase):
    def test_range_workbook_layout(self) -> None:
        report = {
            "columns": ["Agent Name", "Team Leader", "Campaign", "2026-01-05"],
            "rows": [
                {"agentName": "Anele", "teamLeader": "Thabo", "campaign": "Sales", "2026-01-05": _cell("Present", 8)},
            ],
        }

        payload = build_range_xlsx_bytes(report, title="Attendance 2026-01-05 to 2026-01-05")

        workbook = load_workbook(BytesIO(payload))
        sheet = workbook["Attendance"]
        self.assertEqual(sheet.cell(row=1, column=1).value, "Attendance 2026-01-05 to 2026-01-05")
        self.assertEqual(sheet.cell(row=4, column=1).value, "Agent Name")
        self.assertEqual(sheet.cell(row=4, column=5).value, "Hours (2026-01-05)")
        self.assertEqual(sheet.cell(row=5, column=4).value, "Present")
        self.assertEqual(sheet.cell(row=5, column=6).value, 8)
        self.assertEqual(sheet.cell(row=6, column=1).value, "TOTAL HOURS")
        self.assertEqual(sheet.cell(row=6, column=6).value, 8)


if __name__ == "__main__":
    unittest.main()
