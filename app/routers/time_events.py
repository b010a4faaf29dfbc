from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import Role, TimeEvent
from app.schemas import DayStatusRead, TimeEventCreate, TimeEventRead
from app.security import Actor, require_roles, require_user
from app.services.time_events import create_time_event, get_my_day_status, list_time_events_for_day

router = APIRouter(prefix="/time-events", tags=["time-events"])


def _to_read(event: TimeEvent) -> TimeEventRead:
    return TimeEventRead(
        id=event.id,
        user_id=event.user_id,
        campaign_id=event.campaign_id,
        event_type_id=event.event_type_id,
        event_type_name=event.event_type.name if event.event_type is not None else None,
        ts_utc=event.ts_utc,
        source=event.source,
        late_minutes=event.late_minutes,
    )


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


@router.post("", response_model=TimeEventRead, status_code=201)
def clock_event(
    request: Request,
    payload: TimeEventCreate,
    actor: Actor = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
) -> TimeEventRead:
    event = create_time_event(db, user_id=actor.user_id, event_type_id=payload.event_type_id)
    request.state.event_id = event.id
    return _to_read(event)


@router.get("/me", response_model=list[TimeEventRead])
def my_time_events(
    day: date | None = Query(default=None, alias="date"),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[TimeEventRead]:
    return [_to_read(item) for item in list_time_events_for_day(db, actor.user_id, day or _today_utc())]


@router.get("/me/status", response_model=DayStatusRead)
def my_day_status(
    day: date | None = Query(default=None, alias="date"),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> DayStatusRead:
    return DayStatusRead(**get_my_day_status(db, actor.user_id, day or _today_utc()))
