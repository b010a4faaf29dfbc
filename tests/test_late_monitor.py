from __future__ import annotations

import json
import unittest
from datetime import date, datetime, time, timezone
from typing import Any
from unittest.mock import patch

from app.models import Campaign, Role, Setting, User
from app.services.late_monitor import (
    LateArrivalMonitor,
    LateTrackingEntry,
    LateTrackingKey,
    LateTrackingState,
    _resolve_escalation_users,
    _resolve_team_leaders,
)
from app.services.notifications import NotificationKind

LOCAL_DAY = date(2026, 1, 5)


def _utc(hour: int, minute: int) -> datetime:
    return datetime(2026, 1, 5, hour, minute, tzinfo=timezone.utc)


class _FakeSettingsSession:
    def __init__(self) -> None:
        self.settings: dict[str, Setting] = {}
        self.commits = 0
        self.rollbacks = 0

    def get(self, model, key):  # type: ignore[no-untyped-def]
        if model is Setting:
            return self.settings.get(key)
        return None

    def add(self, obj: Setting) -> None:
        self.settings[obj.key] = obj

    def commit(self) -> None:
        self.commits += 1

    def flush(self) -> None:
        return None

    def rollback(self) -> None:
        self.rollbacks += 1


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[NotificationKind, dict[str, Any]]] = []

    def __call__(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.calls.append((kind, payload))

    def recipients(self, *, escalation: bool) -> list[str]:
        return [payload["to_email"] for _, payload in self.calls if payload["is_escalation"] is escalation]


def _campaign(*members: User) -> Campaign:
    campaign = Campaign(id=10, name="Sales", time_zone="Africa/Johannesburg", work_day_start=time(9, 0))
    campaign.users = list(members)
    return campaign


def _employee(user_id: int = 7) -> User:
    return User(
        id=user_id,
        email=f"agent{user_id}@example.com",
        full_name=f"Agent {user_id}",
        role=Role.EMPLOYEE,
        is_active=True,
        campaign_id=10,
    )


LEADER = User(id=5, email="leader@example.com", full_name="Team Leader", role=Role.EMPLOYEE, is_active=True)
MANAGER = User(id=2, email="manager@example.com", full_name="Manager", role=Role.MANAGER, is_active=True)
ADMIN = User(id=1, email="OPS@example.com", full_name="Admin", role=Role.ADMIN, is_active=True)


class LateArrivalMonitorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = _FakeSettingsSession()
        self.session.add(Setting(key="escalated_late_email", value="ops@example.com"))
        self.recorder = _Recorder()
        self.state = LateTrackingState()
        self.monitor = LateArrivalMonitor(
            self.state,
            notify=self.recorder,
            notice_minutes=15,
            escalation_minutes=30,
            retention_days=3,
        )

    def _patches(self, campaign: Campaign, *, clocked_in: bool | list[object] = False):  # type: ignore[no-untyped-def]
        work_start_patch = (
            patch("app.services.late_monitor._has_work_start_event", side_effect=clocked_in)
            if isinstance(clocked_in, list)
            else patch("app.services.late_monitor._has_work_start_event", return_value=clocked_in)
        )
        return (
            patch("app.services.late_monitor._load_scheduled_campaigns", return_value=[campaign]),
            work_start_patch,
            patch("app.services.late_monitor._resolve_team_leaders", return_value=[LEADER]),
            patch("app.services.late_monitor._resolve_escalation_users", return_value=[MANAGER, ADMIN]),
        )

    def _tick(self, campaign: Campaign, now: datetime, *, clocked_in: bool | list[object] = False):  # type: ignore[no-untyped-def]
        loader, work_start, leaders, escalation_users = self._patches(campaign, clocked_in=clocked_in)
        with loader, work_start, leaders, escalation_users:
            return self.monitor.run_tick(now_utc=now, db=self.session)  # type: ignore[arg-type]

    def test_no_notice_before_threshold(self) -> None:
        result = self._tick(_campaign(_employee()), _utc(7, 10))

        self.assertEqual(result.notices_sent, 0)
        self.assertEqual(self.recorder.calls, [])
        entry = self.state.get(LateTrackingKey(user_id=7, local_day=LOCAL_DAY))
        self.assertIsNotNone(entry)
        self.assertEqual(entry.late_minutes, 10)  # type: ignore[union-attr]

    def test_notice_then_single_escalation(self) -> None:
        campaign = _campaign(_employee())

        first = self._tick(campaign, _utc(7, 16))
        self.assertEqual(first.notices_sent, 1)
        self.assertEqual(first.escalations_sent, 0)
        self.assertEqual(self.recorder.recipients(escalation=False), ["leader@example.com"])
        kind, payload = self.recorder.calls[0]
        self.assertEqual(kind, NotificationKind.LATE_ARRIVAL)
        self.assertEqual(payload["late_minutes"], 16)
        self.assertEqual(payload["campaign_name"], "Sales")

        second = self._tick(campaign, _utc(7, 31))
        self.assertEqual(second.notices_sent, 0)
        self.assertEqual(second.escalations_sent, 1)
        self.assertEqual(
            self.recorder.recipients(escalation=True),
            ["ops@example.com", "manager@example.com"],
        )

        third = self._tick(campaign, _utc(7, 45))
        self.assertEqual(third.notices_sent, 0)
        self.assertEqual(third.escalations_sent, 0)
        self.assertEqual(len(self.recorder.calls), 3)

        record = json.loads(self.session.settings["late_escalation_sent"].value)
        self.assertEqual(record, {"2026-01-05": ["7"]})

    def test_clock_in_clears_tracking(self) -> None:
        campaign = _campaign(_employee())
        self._tick(campaign, _utc(7, 16))
        key = LateTrackingKey(user_id=7, local_day=LOCAL_DAY)
        self.assertIn(key, self.state)

        self._tick(campaign, _utc(7, 20), clocked_in=True)

        self.assertNotIn(key, self.state)
        self.assertEqual(len(self.recorder.calls), 1)

    def test_clock_in_after_escalation_ends_tracking(self) -> None:
        campaign = _campaign(_employee())
        self._tick(campaign, _utc(7, 16))
        self._tick(campaign, _utc(7, 31))
        self.assertEqual(len(self.recorder.calls), 3)

        # 09:35 local
        result = self._tick(campaign, _utc(7, 35), clocked_in=True)

        self.assertEqual(result.notices_sent, 0)
        self.assertEqual(result.escalations_sent, 0)
        self.assertNotIn(LateTrackingKey(user_id=7, local_day=LOCAL_DAY), self.state)
        self.assertEqual(len(self.recorder.calls), 3)
        record = json.loads(self.session.settings["late_escalation_sent"].value)
        self.assertEqual(record, {"2026-01-05": ["7"]})

    def test_escalation_is_not_repeated_after_restart(self) -> None:
        campaign = _campaign(_employee())
        self._tick(campaign, _utc(7, 31))
        self.assertEqual(len(self.recorder.recipients(escalation=True)), 2)

        restarted_recorder = _Recorder()
        self.monitor = LateArrivalMonitor(
            LateTrackingState(),
            notify=restarted_recorder,
            notice_minutes=15,
            escalation_minutes=30,
            retention_days=3,
        )
        result = self._tick(campaign, _utc(7, 40))

        self.assertEqual(result.escalations_sent, 0)
        self.assertEqual(restarted_recorder.recipients(escalation=True), [])
        self.assertEqual(restarted_recorder.recipients(escalation=False), ["leader@example.com"])

    def test_non_employees_and_inactive_users_are_skipped(self) -> None:
        inactive = _employee(8)
        inactive.is_active = False
        manager = User(id=9, email="m@example.com", full_name="M", role=Role.MANAGER, is_active=True)

        result = self._tick(_campaign(inactive, manager), _utc(7, 40))

        self.assertEqual(result.users_checked, 0)
        self.assertEqual(self.recorder.calls, [])

    def test_failure_for_one_user_does_not_stop_others(self) -> None:
        campaign = _campaign(_employee(7), _employee(8))

        result = self._tick(campaign, _utc(7, 16), clocked_in=[RuntimeError("db down"), False])

        self.assertEqual(result.errors, 1)
        self.assertEqual(result.notices_sent, 1)
        self.assertEqual(self.session.rollbacks, 1)
        self.assertIn(LateTrackingKey(user_id=8, local_day=LOCAL_DAY), self.state)

    def test_overlapping_tick_is_skipped(self) -> None:
        self.monitor._run_lock.acquire()
        try:
            result = self.monitor.run_tick(now_utc=_utc(7, 16), db=self.session)  # type: ignore[arg-type]
        finally:
            self.monitor._run_lock.release()

        self.assertTrue(result.skipped)
        self.assertEqual(self.recorder.calls, [])

    def test_notify_failure_is_contained(self) -> None:
        def _broken(_kind, _payload):  # type: ignore[no-untyped-def]
            raise RuntimeError("smtp down")

        self.monitor = LateArrivalMonitor(self.state, notify=_broken, notice_minutes=15, escalation_minutes=30)

        result = self._tick(_campaign(_employee()), _utc(7, 31))

        self.assertEqual(result.errors, 0)
        self.assertEqual(result.notices_sent, 0)
        self.assertEqual(result.escalations_sent, 1)



class _ScalarRows:
    def __init__(self, rows: list[User]):
        self._rows = rows

    def all(self) -> list[User]:
        return self._rows


class _RecipientSession:
    def __init__(self, *results: list[User]):
        self._results = list(results)
        self.statements: list[Any] = []

    def scalars(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _ScalarRows(self._results.pop(0))


def _bound_values(statement) -> list[object]:  # type: ignore[no-untyped-def]
    return list(statement.compile().params.values())


class RecipientResolutionTests(unittest.TestCase):
    def test_explicit_team_leaders_win(self) -> None:
        campaign = _campaign(_employee())
        inactive_leader = User(id=6, email="old@example.com", full_name="Old Lead", role=Role.EMPLOYEE, is_active=False)
        campaign.team_leaders = [LEADER, inactive_leader]
        session = _RecipientSession()

        leaders = _resolve_team_leaders(session, campaign)  # type: ignore[arg-type]

        self.assertEqual(leaders, [LEADER])
        self.assertEqual(session.statements, [])

    def test_inactive_explicit_list_does_not_fall_back_to_members(self) -> None:
        member = _employee()
        member.team_leader_id = 5
        campaign = _campaign(member)
        campaign.team_leaders = [
            User(id=6, email="old@example.com", full_name="Old Lead", role=Role.EMPLOYEE, is_active=False)
        ]
        session = _RecipientSession([LEADER])

        self.assertEqual(_resolve_team_leaders(session, campaign), [])  # type: ignore[arg-type]
        self.assertEqual(session.statements, [])

    def test_leaders_inferred_from_members_without_explicit_list(self) -> None:
        first, second, third = _employee(7), _employee(8), _employee(9)
        first.team_leader_id = 5
        second.team_leader_id = 5
        third.team_leader_id = 4
        campaign = _campaign(first, second, third)
        session = _RecipientSession([LEADER])

        leaders = _resolve_team_leaders(session, campaign)  # type: ignore[arg-type]

        self.assertEqual(leaders, [LEADER])
        self.assertEqual(len(session.statements), 1)
        self.assertIn([4, 5], _bound_values(session.statements[0]))

    def test_no_leaders_when_members_report_to_nobody(self) -> None:
        session = _RecipientSession()

        self.assertEqual(_resolve_team_leaders(session, _campaign(_employee())), [])  # type: ignore[arg-type]
        self.assertEqual(session.statements, [])

    def test_escalation_goes_to_campaign_managers_and_all_admins(self) -> None:
        session = _RecipientSession([MANAGER], [ADMIN])

        users = _resolve_escalation_users(session, _campaign())  # type: ignore[arg-type]

        self.assertEqual(users, [MANAGER, ADMIN])
        manager_values = _bound_values(session.statements[0])
        admin_values = _bound_values(session.statements[1])
        self.assertIn(10, manager_values)
        self.assertIn(Role.MANAGER, manager_values)
        self.assertIn(Role.ADMIN, admin_values)
        self.assertNotIn(10, admin_values)


class LateTrackingStateTests(unittest.TestCase):
    def test_prune_drops_old_days(self) -> None:
        state = LateTrackingState()
        for day in (date(2026, 1, 3), date(2026, 1, 4), date(2026, 1, 5)):
            state.ensure(
                LateTrackingKey(user_id=1, local_day=day),
                lambda: LateTrackingEntry(
                    user_id=1,
                    user_email="a@example.com",
                    user_name="A",
                    campaign_id=10,
                    campaign_name="Sales",
                ),
            )

        removed = state.prune(before=date(2026, 1, 4))

        self.assertEqual(removed, 1)
        self.assertEqual(len(state), 2)
        self.assertNotIn(LateTrackingKey(user_id=1, local_day=date(2026, 1, 3)), state)


if __name__ == "__main__":
    unittest.main()
