from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError, not_found
from app.models import Campaign, EventType, LeaveRequest, LeaveStatus, TimeEvent, TimeEventSource, User
from app.services.attendance_status import (
    WORK_START_MARKER,
    event_fact_from_model,
    late_minutes_for_date,
    leave_fact_from_model,
    status_for_date,
    utc_day_bounds,
)
from app.services.local_time import campaign_timezone, local_work_start_utc, normalize_ts, whole_minutes_between

logger = logging.getLogger("app.time_events")


def _event_type_error(message: str, code: str) -> ApiError:
    return ApiError(status_code=400, code=code, message=message)


def ensure_event_type_usable(event_type: EventType | None, user: User) -> EventType:
    if event_type is None:
        raise _event_type_error("Invalid event type.", "INVALID_EVENT_TYPE")
    if not event_type.is_active:
        raise _event_type_error("This event type is no longer active.", "EVENT_TYPE_INACTIVE")
    if not event_type.is_global:
        if user.campaign_id is None:
            raise _event_type_error(
                "You are not assigned to a campaign. Please contact your manager or admin.",
                "USER_WITHOUT_CAMPAIGN",
            )
        if event_type.campaign_id is not None and event_type.campaign_id != user.campaign_id:
            raise _event_type_error(
                "This event type is not available for your campaign.",
                "EVENT_TYPE_NOT_IN_CAMPAIGN",
            )
    return event_type


def compute_late_minutes(event_type: EventType, campaign: Campaign | None, now_utc: datetime) -> int | None:
    """Minutes past the campaign's local work start for a Work Start event; None when on time."""
    if WORK_START_MARKER not in event_type.name or campaign is None:
        return None
    local_day = normalize_ts(now_utc).astimezone(campaign_timezone(campaign)).date()
    work_start_utc = local_work_start_utc(campaign, local_day)
    if work_start_utc is None:
        return None
    minutes = whole_minutes_between(now_utc, work_start_utc)
    return minutes if minutes > 0 else None


def create_time_event(
    db: Session,
    *,
    user_id: int,
    event_type_id: int,
    now_utc: datetime | None = None,
) -> TimeEvent:
    user = db.get(User, user_id)
    if user is None:
        raise not_found("user")
    event_type = ensure_event_type_usable(db.get(EventType, event_type_id), user)

    ts_utc = normalize_ts(now_utc or datetime.now(timezone.utc))
    campaign = db.get(Campaign, user.campaign_id) if user.campaign_id is not None else None
    late_minutes = compute_late_minutes(event_type, campaign, ts_utc)

    event = TimeEvent(
        user_id=user.id,
        campaign_id=user.campaign_id,
        event_type_id=event_type.id,
        ts_utc=ts_utc,
        source=TimeEventSource.WEB,
        late_minutes=late_minutes,
    )
    event.event_type = event_type
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info(
        "time_event_created",
        extra={
            "time_event_id": event.id,
            "user_id": user.id,
            "event_type": event_type.name,
            "late_minutes": late_minutes,
        },
    )
    return event


def list_time_events_for_day(db: Session, user_id: int, day: date) -> list[TimeEvent]:
    day_start, next_day_start = utc_day_bounds(day)
    return list(
        db.scalars(
            select(TimeEvent)
            .where(
                TimeEvent.user_id == user_id,
                TimeEvent.ts_utc >= day_start,
                TimeEvent.ts_utc < next_day_start,
            )
            .order_by(TimeEvent.ts_utc.asc(), TimeEvent.id.asc())
        ).all()
    )


def get_my_day_status(db: Session, user_id: int, day: date) -> dict[str, Any]:
    day_start, next_day_start = utc_day_bounds(day)
    events = [event_fact_from_model(item) for item in list_time_events_for_day(db, user_id, day)]
    leaves = [
        leave_fact_from_model(item)
        for item in db.scalars(
            select(LeaveRequest).where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_utc < next_day_start,
                LeaveRequest.end_utc >= day_start,
            )
        ).all()
    ]
    day_status = status_for_date(user_id, day, events, leaves)
    return {
        "date": day.isoformat(),
        "status": day_status.status,
        "workMinutes": day_status.work_minutes,
        "workHours": day_status.work_hours,
        "breakMinutes": day_status.break_minutes,
        "lateMinutes": late_minutes_for_date(user_id, day, events),
        "eventCount": len(events),
    }
