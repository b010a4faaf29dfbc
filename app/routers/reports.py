from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.models import Role
from app.schemas import ReportResponse, TeamWeeklyResponse, TooWeeklyResponse
from app.security import Actor, require_roles
from app.services.report_exports import (
    build_daily_csv,
    build_range_csv,
    build_range_xlsx_bytes,
    build_too_weekly_csv,
    daily_csv_filename,
    range_csv_filename,
    range_xlsx_filename,
    too_weekly_csv_filename,
)
from app.services.reports import get_daily, get_range, get_team_weekly, get_too_weekly, parse_day

router = APIRouter(prefix="/reports", tags=["reports"])

require_report_viewer = require_roles(Role.ADMIN, Role.MANAGER)

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(content: str | bytes, *, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _iso_day(raw: str, field: str) -> str:
    return parse_day(raw, field=field).isoformat()


def _audit_export(
    db: Session,
    request: Request,
    actor: Actor,
    *,
    action: str,
    filename: str,
    campaign_id: int | None,
    row_count: int,
) -> None:
    audit_request(
        db,
        request,
        actor,
        action=action,
        entity_type="export",
        entity_id=filename,
        details={"campaign_id": campaign_id, "row_count": row_count},
    )


@router.get("/attendance/daily", response_model=ReportResponse)
def attendance_daily(
    date: str | None = Query(default=None),
    from_day: str | None = Query(default=None, alias="from"),
    to_day: str | None = Query(default=None, alias="to"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if from_day or to_day:
        return get_range(db, from_day or "", to_day or "", campaign_id, actor)
    return get_daily(db, date or "", campaign_id, actor)


@router.get("/attendance/range", response_model=ReportResponse)
def attendance_range(
    from_day: str = Query(alias="from"),
    to_day: str = Query(alias="to"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return get_range(db, from_day, to_day, campaign_id, actor)


@router.get("/too-weekly", response_model=TooWeeklyResponse)
def too_weekly(
    from_week: str = Query(alias="fromWeek"),
    to_week: str = Query(alias="toWeek"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return get_too_weekly(db, from_week, to_week, campaign_id, actor)


@router.get("/team-weekly", response_model=TeamWeeklyResponse)
def team_weekly(
    week_of: str = Query(alias="weekOf"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return get_team_weekly(db, week_of, campaign_id, actor)


@router.get("/attendance/daily/export")
def export_attendance_daily(
    request: Request,
    date: str = Query(),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> Response:
    report = get_daily(db, date, campaign_id, actor)
    filename = daily_csv_filename(_iso_day(date, "date"))
    payload = build_daily_csv(report)
    _audit_export(
        db,
        request,
        actor,
        action="REPORT_EXPORT_CSV",
        filename=filename,
        campaign_id=campaign_id,
        row_count=len(report["rows"]),
    )
    return _attachment(payload, media_type=CSV_MEDIA_TYPE, filename=filename)


@router.get("/attendance/range/export")
def export_attendance_range(
    request: Request,
    from_day: str = Query(alias="from"),
    to_day: str = Query(alias="to"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> Response:
    report = get_range(db, from_day, to_day, campaign_id, actor)
    filename = range_csv_filename(_iso_day(from_day, "from"), _iso_day(to_day, "to"))
    payload = build_range_csv(report)
    _audit_export(
        db,
        request,
        actor,
        action="REPORT_EXPORT_CSV",
        filename=filename,
        campaign_id=campaign_id,
        row_count=len(report["rows"]),
    )
    return _attachment(payload, media_type=CSV_MEDIA_TYPE, filename=filename)


@router.get("/attendance/range/export.xlsx")
def export_attendance_range_xlsx(
    request: Request,
    from_day: str = Query(alias="from"),
    to_day: str = Query(alias="to"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> Response:
    report = get_range(db, from_day, to_day, campaign_id, actor)
    first_day, last_day = _iso_day(from_day, "from"), _iso_day(to_day, "to")
    filename = range_xlsx_filename(first_day, last_day)
    payload = build_range_xlsx_bytes(report, title=f"Attendance {first_day} to {last_day}")
    _audit_export(
        db,
        request,
        actor,
        action="REPORT_EXPORT_XLSX",
        filename=filename,
        campaign_id=campaign_id,
        row_count=len(report["rows"]),
    )
    return _attachment(payload, media_type=XLSX_MEDIA_TYPE, filename=filename)


@router.get("/too-weekly/export")
def export_too_weekly(
    request: Request,
    from_week: str = Query(alias="fromWeek"),
    to_week: str = Query(alias="toWeek"),
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    actor: Actor = Depends(require_report_viewer),
    db: Session = Depends(get_db),
) -> Response:
    report = get_too_weekly(db, from_week, to_week, campaign_id, actor)
    filename = too_weekly_csv_filename(_iso_day(from_week, "fromWeek"), _iso_day(to_week, "toWeek"))
    payload = build_too_weekly_csv(report)
    _audit_export(
        db,
        request,
        actor,
        action="REPORT_EXPORT_CSV",
        filename=filename,
        campaign_id=campaign_id,
        row_count=len(report["rows"]),
    )
    return _attachment(payload, media_type=CSV_MEDIA_TYPE, filename=filename)
