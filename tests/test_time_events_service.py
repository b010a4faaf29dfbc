from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone

from app.errors import ApiError
from app.models import Campaign, EventType, Role, TimeEvent, TimeEventSource, User
from app.services.time_events import (
    compute_late_minutes,
    create_time_event,
    ensure_event_type_usable,
    get_my_day_status,
)


class _ScalarRows:
    def __init__(self, rows):
        self._rows = rows

    def all(self):
        return self._rows


class _FakeTimeEventDB:
    def __init__(self, *, get_map: dict[tuple[type, int], object] | None = None, scalars_results: list[list[object]] | None = None):
        self._get_map = get_map or {}
        self._scalars_results = list(scalars_results or [])
        self.added: list[object] = []
        self.commits = 0

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        return self._get_map.get((model, pk))

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        if not self._scalars_results:
            return _ScalarRows([])
        return _ScalarRows(self._scalars_results.pop(0))

    def add(self, obj: object) -> None:
        obj.id = 900 + len(self.added)  # type: ignore[attr-defined]
        self.added.append(obj)

    def commit(self) -> None:
        self.commits += 1

    def refresh(self, _obj) -> None:  # type: ignore[no-untyped-def]
        return None


def _campaign() -> Campaign:
    return Campaign(id=10, name="Sales", time_zone="Africa/Johannesburg", work_day_start=time(9, 0))


def _user(campaign_id: int | None = 10) -> User:
    return User(id=7, email="agent@example.com", full_name="Lebo M", role=Role.EMPLOYEE, is_active=True, campaign_id=campaign_id)


WORK_START = EventType(id=1, name="Work Start", is_active=True, is_global=True, is_break=False)
LUNCH_START = EventType(id=3, name="Lunch Start", is_active=True, is_global=True, is_break=True)


class LateMinutesTests(unittest.TestCase):
    def test_late_work_start_uses_campaign_timezone(self) -> None:
        # 09:20 in Johannesburg is 07:20 UTC.
        minutes = compute_late_minutes(WORK_START, _campaign(), datetime(2026, 1, 5, 7, 20, 40, tzinfo=timezone.utc))
        self.assertEqual(minutes, 20)

    def test_on_time_and_non_start_events_have_no_late_minutes(self) -> None:
        self.assertIsNone(compute_late_minutes(WORK_START, _campaign(), datetime(2026, 1, 5, 6, 55, tzinfo=timezone.utc)))
        self.assertIsNone(compute_late_minutes(LUNCH_START, _campaign(), datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)))
        self.assertIsNone(compute_late_minutes(WORK_START, None, datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)))

    def test_unscheduled_campaign_has_no_late_minutes(self) -> None:
        campaign = _campaign()
        campaign.work_day_start = None
        self.assertIsNone(compute_late_minutes(WORK_START, campaign, datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)))


class EventTypeUsabilityTests(unittest.TestCase):
    def test_rejects_missing_and_inactive_types(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            ensure_event_type_usable(None, _user())
        self.assertEqual(ctx.exception.code, "INVALID_EVENT_TYPE")

        inactive = EventType(id=9, name="Old", is_active=False, is_global=True)
        with self.assertRaises(ApiError) as ctx:
            ensure_event_type_usable(inactive, _user())
        self.assertEqual(ctx.exception.code, "EVENT_TYPE_INACTIVE")

    def test_campaign_scoped_type_needs_matching_campaign(self) -> None:
        scoped = EventType(id=11, name="Coaching", is_active=True, is_global=False, campaign_id=20)

        with self.assertRaises(ApiError) as ctx:
            ensure_event_type_usable(scoped, _user())
        self.assertEqual(ctx.exception.code, "EVENT_TYPE_NOT_IN_CAMPAIGN")

        with self.assertRaises(ApiError) as ctx:
            ensure_event_type_usable(scoped, _user(campaign_id=None))
        self.assertEqual(ctx.exception.code, "USER_WITHOUT_CAMPAIGN")

        self.assertIs(ensure_event_type_usable(scoped, _user(campaign_id=20)), scoped)


class CreateTimeEventTests(unittest.TestCase):
    def test_create_stores_late_minutes_and_web_source(self) -> None:
        db = _FakeTimeEventDB(get_map={(User, 7): _user(), (EventType, 1): WORK_START, (Campaign, 10): _campaign()})

        event = create_time_event(
            db,  # type: ignore[arg-type]
            user_id=7,
            event_type_id=1,
            now_utc=datetime(2026, 1, 5, 7, 16, tzinfo=timezone.utc),
        )

        self.assertEqual(event.late_minutes, 16)
        self.assertEqual(event.source, TimeEventSource.WEB)
        self.assertEqual(event.campaign_id, 10)
        self.assertEqual(db.commits, 1)


class DayStatusTests(unittest.TestCase):
    def test_day_status_summary(self) -> None:
        start = TimeEvent(id=1, user_id=7, event_type_id=1, ts_utc=datetime(2026, 1, 5, 7, 20, tzinfo=timezone.utc), late_minutes=20)
        start.event_type = WORK_START
        end = TimeEvent(id=2, user_id=7, event_type_id=2, ts_utc=datetime(2026, 1, 5, 15, 20, tzinfo=timezone.utc))
        end.event_type = EventType(id=2, name="Work End", is_active=True, is_global=True, is_break=False)
        db = _FakeTimeEventDB(scalars_results=[[start, end], []])

        summary = get_my_day_status(db, 7, date(2026, 1, 5))  # type: ignore[arg-type]

        self.assertEqual(
            summary,
            {
                "date": "2026-01-05",
                "status": "Present",
                "workMinutes": 480,
                "workHours": 8.0,
                "breakMinutes": 0,
                "lateMinutes": 20,
                "eventCount": 2,
            },
        )


if __name__ == "__main__":
    unittest.main()
