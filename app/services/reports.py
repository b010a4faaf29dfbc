from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.errors import forbidden, not_found, validation_error
from app.models import Campaign, LeaveRequest, LeaveStatus, TimeEvent, User
from app.security import Actor
from app.services.attendance_status import (
    EventFact,
    LeaveFact,
    event_fact_from_model,
    late_minutes_for_date,
    leave_fact_from_model,
    status_for_date,
    utc_day_bounds,
)

logger = logging.getLogger("app.reports")

MAX_RANGE_DAYS = 366
BASE_COLUMNS = ["Agent Name", "Team Leader", "Campaign"]

TOO_METRIC_LABELS = (
    "Shifts",
    "Present",
    "Sick Leave",
    "Absence",
    "Family Responsibility Leave",
    "Annual Leave",
    "S&A",
    "FRL %",
    "AL %",
    "TOO %",
    "Work Hours",
)
ABSENCE_STATUSES = frozenset({"Absent", "AWOL"})
ANNUAL_LEAVE_STATUSES = frozenset({"Annual Leave", "Annual Leave Halfday"})


@dataclass(frozen=True, slots=True)
class ReportUser:
    user_id: int
    full_name: str
    team_leader_name: str
    campaign_name: str | None


def parse_day(value: str | None, *, field: str = "date") -> date:
    raw = (value or "").strip()
    if not raw:
        raise validation_error(f"{field} is required (YYYY-MM-DD).", code="INVALID_DATE")
    try:
        parsed = datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError as exc:
        raise validation_error(f"Invalid {field}: '{raw}' is not a YYYY-MM-DD date.", code="INVALID_DATE") from exc
    return parsed


def dates_between(start_day: date, end_day: date) -> list[date]:
    if start_day > end_day:
        raise validation_error("from must be on or before to.", code="INVALID_DATE_RANGE")
    span = (end_day - start_day).days + 1
    if span > MAX_RANGE_DAYS:
        raise validation_error(f"Date range cannot exceed {MAX_RANGE_DAYS} days.", code="INVALID_DATE_RANGE")
    return [start_day + timedelta(days=offset) for offset in range(span)]


def week_end_for(day: date) -> date:
    """Sunday closing the Monday-Sunday week that contains day."""
    return day + timedelta(days=6 - day.weekday())


def _base_columns(dates: Sequence[date]) -> list[str]:
    return [*BASE_COLUMNS, *(item.isoformat() for item in dates)]


def _empty_report(dates: Sequence[date]) -> dict[str, Any]:
    return {"columns": _base_columns(dates), "rows": []}


def build_attendance_rows(
    users: Sequence[ReportUser],
    dates: Sequence[date],
    events: Iterable[EventFact],
    leaves: Iterable[LeaveFact],
    *,
    include_late_minutes: bool = False,
) -> list[dict[str, Any]]:
    events_by_user: dict[int, list[EventFact]] = defaultdict(list)
    for event in events:
        events_by_user[event.user_id].append(event)
    leaves_by_user: dict[int, list[LeaveFact]] = defaultdict(list)
    for leave in leaves:
        leaves_by_user[leave.user_id].append(leave)

    rows: list[dict[str, Any]] = []
    for user in users:
        user_events = events_by_user.get(user.user_id, [])
        user_leaves = leaves_by_user.get(user.user_id, [])
        row: dict[str, Any] = {
            "agentName": user.full_name,
            "teamLeader": user.team_leader_name,
            "campaign": user.campaign_name,
        }
        for day in dates:
            day_status = status_for_date(user.user_id, day, user_events, user_leaves)
            cell: dict[str, Any] = {
                "status": day_status.status,
                "workHours": day_status.work_hours,
                "workMinutes": day_status.work_minutes,
                "breakMinutes": day_status.break_minutes,
            }
            if include_late_minutes:
                cell["lateMinutes"] = late_minutes_for_date(user.user_id, day, user_events)
            row[day.isoformat()] = cell
        rows.append(row)
    return rows


def build_too_weekly(rows: Sequence[dict[str, Any]], dates: Sequence[date]) -> dict[str, Any]:
    weeks: dict[date, list[str]] = {}
    for day in dates:
        weeks.setdefault(week_end_for(day), []).append(day.isoformat())

    per_week: dict[str, dict[str, Any]] = {}
    for week_end, week_dates in weeks.items():
        present = sick = absence = frl = annual = 0
        work_hours = 0.0
        for row in rows:
            for day_key in week_dates:
                cell = row.get(day_key)
                if not cell:
                    continue
                status = cell["status"]
                if status == "Present":
                    present += 1
                    work_hours += float(cell.get("workHours") or 0)
                elif status == "Sick Leave":
                    sick += 1
                elif status in ABSENCE_STATUSES:
                    absence += 1
                elif status == "Family Responsibility Leave":
                    frl += 1
                elif status in ANNUAL_LEAVE_STATUSES:
                    annual += 1

        # Weekend and pre-hire days still count as eligible person-days.
        person_days = len(week_dates) * len(rows)
        per_week[week_end.isoformat()] = {
            "Shifts": present,
            "Present": present,
            "Sick Leave": sick,
            "Absence": absence,
            "Family Responsibility Leave": frl,
            "Annual Leave": annual,
            "S&A": sick + absence,
            "FRL %": _percent(frl, person_days),
            "AL %": _percent(annual, person_days),
            "TOO %": _percent(present + sick + annual, person_days),
            "Work Hours": round(work_hours, 2),
        }

    week_keys = list(per_week)
    metric_rows = [
        {"metric": label, **{week_key: per_week[week_key][label] for week_key in week_keys}}
        for label in TOO_METRIC_LABELS
    ]
    return {"columns": ["Metric", *week_keys], "rows": metric_rows}


def _percent(count: int, denominator: int) -> str:
    if denominator <= 0:
        return "0.00"
    return f"{count / denominator * 100:.2f}"


def resolve_report_campaigns(db: Session, campaign_id: int | None, actor: Actor) -> list[Campaign]:
    if campaign_id is not None:
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise not_found("campaign")
        if actor.is_manager and actor.campaign_id != campaign.id:
            raise forbidden("Managers can only report on their own campaign.")
        return [campaign]

    if actor.is_manager:
        if actor.campaign_id is None:
            return []
        campaign = db.get(Campaign, actor.campaign_id)
        return [campaign] if campaign is not None else []

    return list(db.scalars(select(Campaign).order_by(Campaign.name.asc(), Campaign.id.asc())).all())


def _report_users(db: Session, campaigns: Sequence[Campaign]) -> list[ReportUser]:
    campaign_names = {campaign.id: campaign.name for campaign in campaigns}
    users = db.scalars(
        select(User)
        .options(selectinload(User.team_leader))
        .where(User.campaign_id.in_(list(campaign_names)))
        .order_by(User.full_name.asc(), User.id.asc())
    ).all()
    return [
        ReportUser(
            user_id=user.id,
            full_name=user.full_name,
            team_leader_name=user.team_leader.full_name if user.team_leader is not None else "",
            campaign_name=campaign_names.get(user.campaign_id),
        )
        for user in users
    ]


def _report_facts(
    db: Session,
    user_ids: list[int],
    first_day: date,
    last_day: date,
) -> tuple[list[EventFact], list[LeaveFact]]:
    range_start, _ = utc_day_bounds(first_day)
    _, range_end = utc_day_bounds(last_day)

    events = db.scalars(
        select(TimeEvent)
        .where(
            TimeEvent.user_id.in_(user_ids),
            TimeEvent.ts_utc >= range_start,
            TimeEvent.ts_utc < range_end,
        )
        .order_by(TimeEvent.ts_utc.asc(), TimeEvent.id.asc())
    ).all()
    leaves = db.scalars(
        select(LeaveRequest).where(
            LeaveRequest.user_id.in_(user_ids),
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.start_utc < range_end,
            LeaveRequest.end_utc >= range_start,
        )
    ).all()
    return [event_fact_from_model(item) for item in events], [leave_fact_from_model(item) for item in leaves]


def _collect_rows(
    db: Session,
    dates: Sequence[date],
    campaigns: Sequence[Campaign],
    *,
    include_late_minutes: bool,
) -> list[dict[str, Any]]:
    users = _report_users(db, campaigns)
    if not users:
        return []
    events, leaves = _report_facts(db, [user.user_id for user in users], dates[0], dates[-1])
    rows = build_attendance_rows(users, dates, events, leaves, include_late_minutes=include_late_minutes)
    logger.info(
        "attendance_report_built",
        extra={
            "campaign_count": len(campaigns),
            "user_count": len(users),
            "day_count": len(dates),
            "event_count": len(events),
        },
    )
    return rows


def get_daily(db: Session, day: str, campaign_id: int | None, actor: Actor) -> dict[str, Any]:
    dates = [parse_day(day, field="date")]
    campaigns = resolve_report_campaigns(db, campaign_id, actor)
    if not campaigns:
        return _empty_report(dates)
    rows = _collect_rows(db, dates, campaigns, include_late_minutes=False)
    return {"columns": _base_columns(dates), "rows": rows}


def get_range(db: Session, from_day: str, to_day: str, campaign_id: int | None, actor: Actor) -> dict[str, Any]:
    dates = dates_between(parse_day(from_day, field="from"), parse_day(to_day, field="to"))
    campaigns = resolve_report_campaigns(db, campaign_id, actor)
    if not campaigns:
        return _empty_report(dates)
    rows = _collect_rows(db, dates, campaigns, include_late_minutes=True)
    return {"columns": _base_columns(dates), "rows": rows}


def get_too_weekly(
    db: Session,
    from_week: str,
    to_week: str,
    campaign_id: int | None,
    actor: Actor,
) -> dict[str, Any]:
    dates = dates_between(parse_day(from_week, field="fromWeek"), parse_day(to_week, field="toWeek"))
    campaigns = resolve_report_campaigns(db, campaign_id, actor)
    rows = _collect_rows(db, dates, campaigns, include_late_minutes=False) if campaigns else []
    report = build_too_weekly(rows, dates)
    report["campaign"] = ", ".join(campaign.name for campaign in campaigns) if campaigns else None
    return report


def get_team_weekly(
    db: Session,
    week_of: str,
    campaign_id: int | None,
    actor: Actor,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    anchor = parse_day(week_of, field="weekOf")
    week_start = anchor - timedelta(days=anchor.weekday())
    week_end = week_start + timedelta(days=6)
    report = get_range(db, week_start.isoformat(), week_end.isoformat(), campaign_id, actor)
    reference_day = today or datetime.now(timezone.utc).date()
    return {
        "weekStart": week_start.isoformat(),
        "weekEnd": week_end.isoformat(),
        "columns": [*report["columns"], "Total Hours"],
        "rows": mask_future_days(report["rows"], dates_between(week_start, week_end), reference_day),
    }


def mask_future_days(
    rows: Sequence[dict[str, Any]],
    dates: Sequence[date],
    today: date,
) -> list[dict[str, Any]]:
    masked_rows: list[dict[str, Any]] = []
    for row in rows:
        masked = dict(row)
        total_minutes = 0
        for day in dates:
            key = day.isoformat()
            if day > today:
                masked[key] = None
                continue
            cell = row.get(key)
            if cell:
                total_minutes += int(cell.get("workMinutes") or 0)
        masked["totalMinutes"] = total_minutes
        masked["totalHours"] = round(total_minutes / 60, 2)
        masked_rows.append(masked)
    return masked_rows
