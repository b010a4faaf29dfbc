from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from math import floor
from typing import Iterable

from app.models import LeaveRequest, LeaveStatus, TimeEvent

STATUS_PRESENT = "Present"
STATUS_ABSENT = "Absent"
WORK_START_MARKER = "Work Start"
WORK_END_MARKER = "Work End"


@dataclass(frozen=True, slots=True)
class EventFact:
    user_id: int
    ts_utc: datetime
    type_name: str
    is_break: bool = False
    late_minutes: int | None = None


@dataclass(frozen=True, slots=True)
class LeaveFact:
    user_id: int
    start_utc: datetime
    end_utc: datetime
    leave_type_name: str
    status: LeaveStatus = LeaveStatus.APPROVED


@dataclass(frozen=True)
class DayStatus:
    status: str
    work_minutes: int
    break_minutes: int

    @property
    def work_hours(self) -> float:
        return round(self.work_minutes / 60, 2)


def _normalize_ts(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def event_fact_from_model(event: TimeEvent) -> EventFact:
    return EventFact(
        user_id=event.user_id,
        ts_utc=_normalize_ts(event.ts_utc),
        type_name=event.event_type.name if event.event_type is not None else "",
        is_break=bool(event.event_type.is_break) if event.event_type is not None else False,
        late_minutes=event.late_minutes,
    )


def leave_fact_from_model(leave: LeaveRequest) -> LeaveFact:
    return LeaveFact(
        user_id=leave.user_id,
        start_utc=_normalize_ts(leave.start_utc),
        end_utc=_normalize_ts(leave.end_utc),
        leave_type_name=leave.leave_type.name if leave.leave_type is not None else "Leave",
        status=LeaveStatus(leave.status),
    )


def utc_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return [start, next_start) of a calendar day in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _round_half_up(value: float) -> int:
    return int(floor(value + 0.5))


def _is_work_start(event: EventFact) -> bool:
    return WORK_START_MARKER in event.type_name


def _is_work_end(event: EventFact) -> bool:
    return WORK_END_MARKER in event.type_name


def events_for_day(user_id: int, day: date, events: Iterable[EventFact]) -> list[EventFact]:
    day_start, next_day_start = utc_day_bounds(day)
    selected = [
        event
        for event in events
        if event.user_id == user_id and day_start <= _normalize_ts(event.ts_utc) < next_day_start
    ]
    selected.sort(key=lambda item: _normalize_ts(item.ts_utc))
    return selected


def covering_leave(user_id: int, day: date, leaves: Iterable[LeaveFact]) -> LeaveFact | None:
    day_start, next_day_start = utc_day_bounds(day)
    for leave in leaves:
        if leave.user_id != user_id or leave.status != LeaveStatus.APPROVED:
            continue
        if _normalize_ts(leave.start_utc) < next_day_start and _normalize_ts(leave.end_utc) >= day_start:
            return leave
    return None


def accumulate_minutes(day_events: list[EventFact]) -> tuple[int, int]:
    """Pair work and break markers over events already sorted by timestamp.

    A second Work Start overwrites an unmatched one, a Work End without an open
    marker is ignored, and spans still open at the end of the day count as zero.
    """
    work_started: datetime | None = None
    break_started: datetime | None = None
    work_seconds = 0.0
    break_seconds = 0.0

    for event in day_events:
        ts = _normalize_ts(event.ts_utc)
        if _is_work_start(event):
            work_started = ts
        elif _is_work_end(event):
            if work_started is not None:
                work_seconds += (ts - work_started).total_seconds()
                work_started = None
        elif event.is_break:
            if break_started is None:
                break_started = ts
            else:
                break_seconds += (ts - break_started).total_seconds()
                break_started = None

    return _round_half_up(work_seconds / 60), _round_half_up(break_seconds / 60)


def status_for_date(
    user_id: int,
    day: date,
    time_events: Iterable[EventFact],
    approved_leaves: Iterable[LeaveFact],
) -> DayStatus:
    day_events = events_for_day(user_id, day, time_events)
    work_minutes, break_minutes = accumulate_minutes(day_events)

    leave = covering_leave(user_id, day, approved_leaves)
    if leave is not None:
        status = leave.leave_type_name
    elif any(_is_work_start(event) for event in day_events):
        status = STATUS_PRESENT
    else:
        status = STATUS_ABSENT

    return DayStatus(status=status, work_minutes=work_minutes, break_minutes=break_minutes)


def late_minutes_for_date(user_id: int, day: date, time_events: Iterable[EventFact]) -> int | None:
    for event in events_for_day(user_id, day, time_events):
        if _is_work_start(event):
            return event.late_minutes
    return None
