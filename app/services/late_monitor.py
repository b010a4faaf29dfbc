from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
import logging
import threading
from typing import Any, Callable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.db import SessionLocal
from app.models import Campaign, EventType, Role, TimeEvent, User
from app.services.local_time import (
    campaign_timezone,
    local_day_bounds_utc,
    local_work_start_utc,
    normalize_ts,
    whole_minutes_between,
)
from app.services.notifications import NotificationKind, get_notification_dispatcher
from app.services.settings_store import get_escalated_late_email, mark_escalation_sent, was_escalation_sent
from app.settings import get_settings

logger = logging.getLogger("app.late_monitor")

NotifyFn = Callable[[NotificationKind, dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class LateTrackingKey:
    user_id: int
    local_day: date


@dataclass(slots=True)
class LateTrackingEntry:
    user_id: int
    user_email: str
    user_name: str
    campaign_id: int
    campaign_name: str
    late_minutes: int = 0
    notice_sent: bool = False
    escalation_sent: bool = False


class LateTrackingState:
    """Per (user, local day) lateness progress for the running process.

    Only the escalation fact survives a restart (it is persisted separately),
    so losing this table can at most repeat the team-leader notice.
    """

    def __init__(self) -> None:
        self._entries: dict[LateTrackingKey, LateTrackingEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: LateTrackingKey) -> LateTrackingEntry | None:
        with self._lock:
            return self._entries.get(key)

    def ensure(self, key: LateTrackingKey, factory: Callable[[], LateTrackingEntry]) -> LateTrackingEntry:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = factory()
                self._entries[key] = entry
            return entry

    def discard(self, key: LateTrackingKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def prune(self, *, before: date) -> int:
        with self._lock:
            stale = [key for key in self._entries if key.local_day < before]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __iter__(self) -> Iterator[LateTrackingKey]:
        with self._lock:
            return iter(list(self._entries))


@dataclass(slots=True)
class LateTickResult:
    skipped: bool = False
    campaigns_checked: int = 0
    users_checked: int = 0
    notices_sent: int = 0
    escalations_sent: int = 0
    errors: int = 0
    finished_at_utc: datetime | None = field(default=None)


def _has_work_start_event(session: Session, *, user_id: int, start_utc: datetime, end_utc: datetime) -> bool:
    event_id = session.scalar(
        select(TimeEvent.id)
        .join(EventType, TimeEvent.event_type_id == EventType.id)
        .where(
            TimeEvent.user_id == user_id,
            EventType.name.ilike("%Work Start%"),
            TimeEvent.ts_utc >= start_utc,
            TimeEvent.ts_utc < end_utc,
        )
        .limit(1)
    )
    return event_id is not None


def _resolve_team_leaders(session: Session, campaign: Campaign) -> list[User]:
    if campaign.team_leaders:
        return [leader for leader in campaign.team_leaders if leader.is_active]

    # No explicit list: infer from whoever the campaign's members report to.
    leader_ids = sorted({member.team_leader_id for member in campaign.users if member.team_leader_id is not None})
    if not leader_ids:
        return []
    return list(
        session.scalars(
            select(User).where(User.id.in_(leader_ids), User.is_active.is_(True)).order_by(User.id.asc())
        ).all()
    )


def _resolve_escalation_users(session: Session, campaign: Campaign) -> list[User]:
    managers = session.scalars(
        select(User)
        .where(User.campaign_id == campaign.id, User.role == Role.MANAGER, User.is_active.is_(True))
        .order_by(User.id.asc())
    ).all()
    admins = session.scalars(
        select(User).where(User.role == Role.ADMIN, User.is_active.is_(True)).order_by(User.id.asc())
    ).all()
    return [*managers, *admins]


def _load_scheduled_campaigns(session: Session) -> list[Campaign]:
    return list(
        session.scalars(
            select(Campaign)
            .options(selectinload(Campaign.users), selectinload(Campaign.team_leaders))
            .where(Campaign.work_day_start.is_not(None))
            .order_by(Campaign.id.asc())
        ).all()
    )


class LateArrivalMonitor:
    def __init__(
        self,
        state: LateTrackingState,
        *,
        notify: NotifyFn | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        notice_minutes: int | None = None,
        escalation_minutes: int | None = None,
        retention_days: int | None = None,
    ) -> None:
        settings = get_settings()
        self.state = state
        self._notify_fn = notify
        self._session_factory = session_factory
        self.notice_minutes = notice_minutes if notice_minutes is not None else settings.late_notice_minutes
        self.escalation_minutes = (
            escalation_minutes if escalation_minutes is not None else settings.late_escalation_minutes
        )
        self.retention_days = (
            retention_days if retention_days is not None else settings.escalation_dedup_retention_days
        )
        self._run_lock = threading.Lock()
        self.last_result: LateTickResult | None = None

    def _notify(self, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        notify = self._notify_fn or get_notification_dispatcher().submit
        try:
            notify(kind, payload)
        except Exception:
            logger.exception(
                "late_monitor_notify_failed",
                extra={"kind": kind.value, "to_email": payload.get("to_email")},
            )
            return False
        return True

    def run_tick(self, now_utc: datetime | None = None, db: Session | None = None) -> LateTickResult:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("late_monitor_tick_skipped_overlap")
            return LateTickResult(skipped=True)
        try:
            reference_utc = normalize_ts(now_utc or datetime.now(timezone.utc))
            if db is None:
                with self._session_factory() as managed_db:
                    result = self._run(managed_db, reference_utc)
            else:
                result = self._run(db, reference_utc)
            self.last_result = result
            return result
        finally:
            self._run_lock.release()

    def _run(self, session: Session, now_utc: datetime) -> LateTickResult:
        result = LateTickResult()
        for campaign in _load_scheduled_campaigns(session):
            try:
                self._check_campaign(session, campaign, now_utc, result)
            except Exception:
                result.errors += 1
                session.rollback()
                logger.exception("late_monitor_campaign_failed", extra={"campaign_id": campaign.id})
            result.campaigns_checked += 1

        # Entries from before yesterday can no longer change state.
        self.state.prune(before=now_utc.date() - timedelta(days=1))
        result.finished_at_utc = now_utc
        if result.notices_sent or result.escalations_sent or result.errors:
            logger.info("late_monitor_tick", extra=asdict(result))
        return result

    def _check_campaign(self, session: Session, campaign: Campaign, now_utc: datetime, result: LateTickResult) -> None:
        local_day = now_utc.astimezone(campaign_timezone(campaign)).date()
        work_start_utc = local_work_start_utc(campaign, local_day)
        if work_start_utc is None:
            return
        day_start_utc, day_end_utc = local_day_bounds_utc(local_day, campaign_timezone(campaign))

        for user in campaign.users:
            if user.role != Role.EMPLOYEE or not user.is_active:
                continue
            result.users_checked += 1
            try:
                self._check_user(
                    session,
                    campaign,
                    user,
                    local_day=local_day,
                    now_utc=now_utc,
                    work_start_utc=work_start_utc,
                    day_bounds=(day_start_utc, day_end_utc),
                    result=result,
                )
            except Exception:
                result.errors += 1
                session.rollback()
                logger.exception(
                    "late_monitor_user_failed",
                    extra={"campaign_id": campaign.id, "user_id": user.id},
                )

    def _check_user(
        self,
        session: Session,
        campaign: Campaign,
        user: User,
        *,
        local_day: date,
        now_utc: datetime,
        work_start_utc: datetime,
        day_bounds: tuple[datetime, datetime],
        result: LateTickResult,
    ) -> None:
        key = LateTrackingKey(user_id=user.id, local_day=local_day)
        if _has_work_start_event(session, user_id=user.id, start_utc=day_bounds[0], end_utc=day_bounds[1]):
            if self.state.discard(key):
                logger.info("late_tracking_cleared", extra={"user_id": user.id, "local_day": local_day.isoformat()})
            return
        if now_utc <= work_start_utc:
            return

        late_minutes = whole_minutes_between(now_utc, work_start_utc)
        entry = self.state.ensure(
            key,
            lambda: LateTrackingEntry(
                user_id=user.id,
                user_email=user.email,
                user_name=user.full_name,
                campaign_id=campaign.id,
                campaign_name=campaign.name,
            ),
        )
        entry.late_minutes = late_minutes

        if late_minutes >= self.notice_minutes and not entry.notice_sent:
            result.notices_sent += self.notify_team_leaders(session, campaign, entry)
            entry.notice_sent = True

        if late_minutes >= self.escalation_minutes and not entry.escalation_sent:
            if self.escalate(session, campaign, entry, local_day=local_day):
                result.escalations_sent += 1
            entry.escalation_sent = True

    def _late_payload(self, entry: LateTrackingEntry, *, to_email: str, is_escalation: bool) -> dict[str, Any]:
        return {
            "to_email": to_email,
            "employee_name": entry.user_name,
            "employee_email": entry.user_email,
            "campaign_name": entry.campaign_name,
            "late_minutes": entry.late_minutes,
            "is_escalation": is_escalation,
        }

    def notify_team_leaders(self, session: Session, campaign: Campaign, entry: LateTrackingEntry) -> int:
        leaders = _resolve_team_leaders(session, campaign)
        sent = 0
        for leader in leaders:
            if self._notify(
                NotificationKind.LATE_ARRIVAL,
                self._late_payload(entry, to_email=leader.email, is_escalation=False),
            ):
                sent += 1
        logger.info(
            "late_notice_sent",
            extra={
                "user_id": entry.user_id,
                "campaign_id": campaign.id,
                "late_minutes": entry.late_minutes,
                "recipient_count": sent,
            },
        )
        return sent

    def escalate(self, session: Session, campaign: Campaign, entry: LateTrackingEntry, *, local_day: date) -> bool:
        """Send the escalation batch once per user and day, guarded by the persisted record."""
        if was_escalation_sent(session, entry.user_id, local_day):
            logger.info(
                "late_escalation_already_sent",
                extra={"user_id": entry.user_id, "local_day": local_day.isoformat()},
            )
            return False

        recipients: list[str] = []
        escalated_email = get_escalated_late_email(session)
        if escalated_email:
            recipients.append(escalated_email)
        seen = {email.lower() for email in recipients}
        for recipient in _resolve_escalation_users(session, campaign):
            email = (recipient.email or "").strip()
            if not email or email.lower() in seen:
                continue
            seen.add(email.lower())
            recipients.append(email)

        for email in recipients:
            self._notify(NotificationKind.LATE_ARRIVAL, self._late_payload(entry, to_email=email, is_escalation=True))

        mark_escalation_sent(
            session,
            entry.user_id,
            local_day,
            today=local_day,
            retention_days=self.retention_days,
        )
        logger.info(
            "late_escalation_sent",
            extra={
                "user_id": entry.user_id,
                "campaign_id": campaign.id,
                "late_minutes": entry.late_minutes,
                "recipient_count": len(recipients),
                "escalated_email_set": bool(escalated_email),
            },
        )
        return True

    def status(self) -> dict[str, Any]:
        last = self.last_result
        return {
            "tracked_entries": len(self.state),
            "notice_minutes": self.notice_minutes,
            "escalation_minutes": self.escalation_minutes,
            "last_tick_utc": last.finished_at_utc.isoformat() if last and last.finished_at_utc else None,
            "last_tick_errors": last.errors if last else None,
        }
