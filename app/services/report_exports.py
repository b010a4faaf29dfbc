from __future__ import annotations

import csv
from datetime import datetime, timezone
from io import BytesIO, StringIO
from typing import Any, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from app.services.reports import BASE_COLUMNS

TOTAL_LABEL = "TOTAL HOURS"
TOTAL_HOURS_COLUMN = "Total Hours"

HEADER_FILL = PatternFill(fill_type="solid", fgColor="1E3A8A")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F5F8FF")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")
PRESENT_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")
ABSENT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
LEAVE_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="1E3A8A", size=14)

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def daily_csv_filename(day: str) -> str:
    return f"attendance-daily-{day}.csv"


def range_csv_filename(from_day: str, to_day: str) -> str:
    return f"attendance-range-{from_day}-to-{to_day}.csv"


def too_weekly_csv_filename(from_week: str, to_week: str) -> str:
    return f"too-weekly-{from_week}-to-{to_week}.csv"


def range_xlsx_filename(from_day: str, to_day: str) -> str:
    return f"attendance-range-{from_day}-to-{to_day}.xlsx"


def _hours(value: float) -> str:
    return f"{value:.2f}"


def _date_keys(report: dict[str, Any]) -> list[str]:
    return list(report["columns"][len(BASE_COLUMNS) :])


def sort_rows_by_campaign(rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    # Stable sort, rows without a campaign go last.
    return sorted(rows, key=lambda row: (row.get("campaign") is None, row.get("campaign") or ""))


def _cell_hours(row: dict[str, Any], day_key: str) -> float:
    cell = row.get(day_key) or {}
    return float(cell.get("workHours") or 0)


def _cell_status(row: dict[str, Any], day_key: str) -> str:
    cell = row.get(day_key) or {}
    return str(cell.get("status") or "")


def _new_writer(stream: StringIO) -> Any:
    return csv.writer(stream, quoting=csv.QUOTE_ALL, lineterminator="\n")


def _write_grouped_rows(writer: Any, rows: Sequence[dict[str, Any]], render: Any) -> None:
    previous_campaign: object = object()
    first = True
    for row in sort_rows_by_campaign(rows):
        campaign = row.get("campaign")
        if not first and campaign != previous_campaign:
            writer.writerow([])
        writer.writerow(render(row))
        previous_campaign = campaign
        first = False


def build_daily_csv(report: dict[str, Any]) -> str:
    date_keys = _date_keys(report)
    day_key = date_keys[0] if date_keys else ""
    stream = StringIO()
    writer = _new_writer(stream)
    writer.writerow([*BASE_COLUMNS, day_key, TOTAL_HOURS_COLUMN])

    def render(row: dict[str, Any]) -> list[str]:
        return [
            row.get("agentName") or "",
            row.get("teamLeader") or "",
            row.get("campaign") or "",
            _cell_status(row, day_key),
            _hours(_cell_hours(row, day_key)),
        ]

    _write_grouped_rows(writer, report["rows"], render)
    grand_total = sum(_cell_hours(row, day_key) for row in report["rows"])
    writer.writerow([TOTAL_LABEL, "", "", "", _hours(grand_total)])
    return stream.getvalue()


def build_range_csv(report: dict[str, Any]) -> str:
    date_keys = _date_keys(report)
    stream = StringIO()
    writer = _new_writer(stream)
    writer.writerow(
        [
            *BASE_COLUMNS,
            *date_keys,
            *(f"Hours ({day_key})" for day_key in date_keys),
            TOTAL_HOURS_COLUMN,
        ]
    )

    def render(row: dict[str, Any]) -> list[str]:
        hours = [_cell_hours(row, day_key) for day_key in date_keys]
        return [
            row.get("agentName") or "",
            row.get("teamLeader") or "",
            row.get("campaign") or "",
            *(_cell_status(row, day_key) for day_key in date_keys),
            *(_hours(value) for value in hours),
            _hours(sum(hours)),
        ]

    _write_grouped_rows(writer, report["rows"], render)
    per_day_totals = [sum(_cell_hours(row, day_key) for row in report["rows"]) for day_key in date_keys]
    writer.writerow(
        [
            TOTAL_LABEL,
            "",
            "",
            *("" for _ in date_keys),
            *(_hours(value) for value in per_day_totals),
            _hours(sum(per_day_totals)),
        ]
    )
    return stream.getvalue()


def build_too_weekly_csv(report: dict[str, Any]) -> str:
    week_keys = list(report["columns"][1:])
    stream = StringIO()
    writer = _new_writer(stream)
    writer.writerow(["Metric", *week_keys, TOTAL_HOURS_COLUMN])

    week_hours: list[float] = [0.0 for _ in week_keys]
    for row in report["rows"]:
        values = [row.get(week_key, 0) for week_key in week_keys]
        if row["metric"] == "Work Hours":
            week_hours = [float(value or 0) for value in values]
            writer.writerow([row["metric"], *(_hours(value) for value in week_hours), _hours(sum(week_hours))])
        else:
            writer.writerow([row["metric"], *(str(value) for value in values), ""])

    writer.writerow([TOTAL_LABEL, *(_hours(value) for value in week_hours), _hours(sum(week_hours))])
    return stream.getvalue()


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 40)


def _status_fill(status: str) -> PatternFill | None:
    if status == "Present":
        return PRESENT_FILL
    if status in {"Absent", "AWOL"}:
        return ABSENT_FILL
    if status:
        return LEAVE_FILL
    return None


def build_range_xlsx_bytes(report: dict[str, Any], *, title: str) -> bytes:
    date_keys = _date_keys(report)
    wb = Workbook()
    ws = wb.active
    ws.title = "Attendance"

    header = [*BASE_COLUMNS, *date_keys, *(f"Hours ({day_key})" for day_key in date_keys), TOTAL_HOURS_COLUMN]
    ws.append([title])
    ws.append(["Generated (UTC)", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")])
    ws.append([])
    ws.append(header)
    header_row = ws.max_row
    _style_header(ws, header_row)
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=max(len(header), 4))
    ws.cell(row=1, column=1).font = TITLE_FONT

    status_start_col = len(BASE_COLUMNS) + 1
    for index, row in enumerate(sort_rows_by_campaign(report["rows"])):
        hours = [_cell_hours(row, day_key) for day_key in date_keys]
        ws.append(
            [
                row.get("agentName") or "",
                row.get("teamLeader") or "",
                row.get("campaign") or "",
                *(_cell_status(row, day_key) for day_key in date_keys),
                *hours,
                round(sum(hours), 2),
            ]
        )
        row_idx = ws.max_row
        for col_idx in range(1, len(header) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if index % 2 == 1:
                cell.fill = ZEBRA_FILL
        for offset, day_key in enumerate(date_keys):
            fill = _status_fill(_cell_status(row, day_key))
            if fill is not None:
                ws.cell(row=row_idx, column=status_start_col + offset).fill = fill

    per_day_totals = [round(sum(_cell_hours(row, day_key) for row in report["rows"]), 2) for day_key in date_keys]
    ws.append(
        [
            TOTAL_LABEL,
            None,
            None,
            *(None for _ in date_keys),
            *per_day_totals,
            round(sum(per_day_totals), 2),
        ]
    )
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER

    ws.freeze_panes = ws.cell(row=header_row + 1, column=status_start_col).coordinate
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
