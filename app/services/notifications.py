from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import enum
import logging
import re
import smtplib
import threading
from email.message import EmailMessage
from typing import Any, Callable, Mapping

from app.settings import get_settings

logger = logging.getLogger("app.notifications")

EMAIL_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
FOOTER = "This is an automated notification from TimeTrack Workforce Attendance System."

DEFAULT_TEAM_LEADER_RESPONSIBILITIES = (
    "Monitor team attendance and punctuality",
    "Follow up on late arrivals",
    "Support leave planning for your team",
)


class NotificationKind(str, enum.Enum):
    LEAVE_REQUEST_NOTIFY = "leave-request-notify"
    LEAVE_REQUEST_CONFIRM = "leave-request-confirm"
    CAMPAIGN_ASSIGNMENT = "campaign-assignment"
    LATE_ARRIVAL = "late-arrival"
    TEAM_ASSIGNMENT = "team-assignment"
    TEAM_LEADER_PROMOTION = "team-leader-promotion"


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str


class NotificationChannel:
    configured: bool = False

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        raise NotImplementedError


def normalize_notification_email(value: str | None) -> str | None:
    normalized = " ".join((value or "").strip().lower().split())
    if not normalized:
        return None
    if not EMAIL_ADDRESS_PATTERN.match(normalized):
        return None
    return normalized


def _text(payload: Mapping[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    if value is None:
        return default
    return str(value).strip() or default


def _recipients(payload: Mapping[str, Any]) -> list[str]:
    raw = payload.get("to_email")
    if isinstance(raw, (list, tuple, set)):
        values = list(raw)
    else:
        values = [raw]
    return [str(item).strip() for item in values if item and str(item).strip()]


def _lines(*parts: str | None) -> str:
    return "\n".join(part for part in parts if part is not None)


def _build_leave_request_notify(payload: Mapping[str, Any]) -> NotificationMessage:
    employee_name = _text(payload, "employee_name", "-")
    leave_type = _text(payload, "leave_type", "-")
    reason = _text(payload, "reason")
    body = _lines(
        "New Leave Request Submitted",
        "",
        f"Campaign: {_text(payload, 'campaign_name', '-')}",
        f"Employee: {employee_name}",
        f"Employee Email: {_text(payload, 'employee_email', '-')}",
        f"Leave Type: {leave_type}",
        f"Start Date: {_text(payload, 'start_date', '-')}",
        f"End Date: {_text(payload, 'end_date', '-')}",
        f"Number of Days: {_text(payload, 'number_of_days', '-')}",
        f"Reason: {reason}" if reason else None,
        "",
        "Please review this leave request in the TimeTrack system.",
    )
    return NotificationMessage(
        recipients=_recipients(payload),
        subject=f"Leave Request: {employee_name} - {leave_type}",
        body=body,
    )


def _build_leave_request_confirm(payload: Mapping[str, Any]) -> NotificationMessage:
    leave_type = _text(payload, "leave_type", "-")
    body = _lines(
        f"Hello {_text(payload, 'employee_name', 'there')},",
        "",
        "Your leave request has been submitted and is awaiting approval.",
        "",
        f"Campaign: {_text(payload, 'campaign_name', '-')}",
        f"Leave Type: {leave_type}",
        f"Start Date: {_text(payload, 'start_date', '-')}",
        f"End Date: {_text(payload, 'end_date', '-')}",
        f"Number of Days: {_text(payload, 'number_of_days', '-')}",
        "",
        FOOTER,
    )
    return NotificationMessage(
        recipients=_recipients(payload),
        subject=f"Leave Request Confirmation: {leave_type}",
        body=body,
    )


def _build_campaign_assignment(payload: Mapping[str, Any]) -> NotificationMessage:
    campaign_name = _text(payload, "campaign_name", "-")
    schedule: list[str] = []
    if payload.get("work_day_start") and payload.get("work_day_end"):
        schedule.append(f"Work Day: {payload['work_day_start']} - {payload['work_day_end']}")
    if payload.get("lunch_start") and payload.get("lunch_end"):
        schedule.append(f"Lunch: {payload['lunch_start']} - {payload['lunch_end']}")
    for index, tea_break in enumerate(payload.get("tea_breaks") or [], start=1):
        schedule.append(f"Tea Break {index}: {tea_break.get('start', '-')} - {tea_break.get('end', '-')}")

    team_lead = _text(payload, "team_lead_name")
    body = _lines(
        f"Hello {_text(payload, 'employee_name', 'there')},",
        "",
        f"You have been assigned to the campaign: {campaign_name}",
        _text(payload, "campaign_description") or None,
        "",
        *schedule,
        f"Team Leader: {team_lead}" if team_lead else None,
        f"Assigned By: {_text(payload, 'assigned_by_name', '-')}",
        "",
        FOOTER,
    )
    return NotificationMessage(
        recipients=_recipients(payload),
        subject=f"You have been assigned to campaign: {campaign_name}",
        body=body,
    )


def _build_late_arrival(payload: Mapping[str, Any]) -> NotificationMessage:
    employee_name = _text(payload, "employee_name", "-")
    late_minutes = int(payload.get("late_minutes") or 0)
    is_escalation = bool(payload.get("is_escalation"))
    if is_escalation:
        subject = f"URGENT: Late arrival escalation - {employee_name} ({late_minutes} min)"
        title = "URGENT: Late Arrival Escalation"
    else:
        subject = f"Late arrival - {employee_name} ({late_minutes} min)"
        title = "Late Arrival Notification"

    body = _lines(
        title,
        "",
        "This is an escalation notification." if is_escalation else "An employee has not clocked in on time.",
        "",
        f"Employee: {employee_name} ({_text(payload, 'employee_email', '-')})",
        f"Campaign: {_text(payload, 'campaign_name', '-')}",
        f"Minutes Late: {late_minutes} minutes",
        "",
        (
            "This employee has been late for more than 30 minutes. Immediate action may be required."
            if is_escalation
            else None
        ),
        FOOTER,
    )
    return NotificationMessage(recipients=_recipients(payload), subject=subject, body=body)


def _build_team_assignment(payload: Mapping[str, Any]) -> NotificationMessage:
    team_leader_name = _text(payload, "team_leader_name", "-")
    campaign_name = _text(payload, "campaign_name")
    body = _lines(
        f"Hello {_text(payload, 'employee_name', 'there')},",
        "",
        f"You have been assigned to a team leader: {team_leader_name} ({_text(payload, 'team_leader_email', '-')})",
        f"Campaign: {campaign_name}" if campaign_name else None,
        f"Assigned By: {_text(payload, 'assigned_by_name', '-')}",
        "",
        FOOTER,
    )
    return NotificationMessage(
        recipients=_recipients(payload),
        subject=f"Your team leader: {team_leader_name}",
        body=body,
    )


def _build_team_leader_promotion(payload: Mapping[str, Any]) -> NotificationMessage:
    employee_name = _text(payload, "employee_name", "-")
    campaign_name = _text(payload, "campaign_name")
    responsibilities = payload.get("responsibilities") or DEFAULT_TEAM_LEADER_RESPONSIBILITIES
    subject = (
        f"You're a Team Leader: {campaign_name}" if campaign_name else f"Team Leader promotion: {employee_name}"
    )
    body = _lines(
        "Team Leader Promotion",
        "",
        f"Hello {employee_name},",
        "",
        "Congratulations! You have been promoted to Team Leader"
        + (f" for the campaign: {campaign_name}." if campaign_name else "."),
        "",
        "Your Responsibilities:",
        *(f"  - {item}" for item in responsibilities),
        "",
        "As a Team Leader, you will receive automated notifications when team members are late.",
        f"Promoted By: {_text(payload, 'promoted_by_name', '-')}",
        "",
        FOOTER,
    )
    return NotificationMessage(recipients=_recipients(payload), subject=subject, body=body)


MESSAGE_BUILDERS: dict[NotificationKind, Callable[[Mapping[str, Any]], NotificationMessage]] = {
    NotificationKind.LEAVE_REQUEST_NOTIFY: _build_leave_request_notify,
    NotificationKind.LEAVE_REQUEST_CONFIRM: _build_leave_request_confirm,
    NotificationKind.CAMPAIGN_ASSIGNMENT: _build_campaign_assignment,
    NotificationKind.LATE_ARRIVAL: _build_late_arrival,
    NotificationKind.TEAM_ASSIGNMENT: _build_team_assignment,
    NotificationKind.TEAM_LEADER_PROMOTION: _build_team_leader_promotion,
}


def build_notification_message(kind: NotificationKind | str, payload: Mapping[str, Any]) -> NotificationMessage:
    return MESSAGE_BUILDERS[NotificationKind(kind)](payload)


class EmailChannel(NotificationChannel):
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = bool(settings.notification_email_enabled)
        self.smtp_host = (settings.smtp_host or "").strip()
        self.smtp_port = int(settings.smtp_port or 587)
        self.smtp_user = (settings.smtp_user or "").strip()
        self.smtp_pass = settings.smtp_pass or ""
        self.smtp_from = (settings.smtp_from or "").strip() or self.smtp_user
        self.smtp_use_tls = bool(settings.smtp_use_tls)
        self.configured = bool(self.smtp_host and self.smtp_from)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        recipients = [item.strip() for item in message.recipients if item and item.strip()]
        if not self.enabled:
            logger.info(
                "email_channel_disabled",
                extra={"subject": message.subject, "recipient_count": len(recipients)},
            )
            return {"mode": "disabled", "sent": 0, "recipients": recipients}
        if not recipients:
            logger.info("email_channel_skip_no_recipients", extra={"subject": message.subject})
            return {"mode": "skipped_no_recipients", "sent": 0, "recipients": []}

        if not self.configured:
            logger.info(
                "email_channel_placeholder_send",
                extra={
                    "subject": message.subject,
                    "recipients": recipients,
                    "body": message.body,
                },
            )
            return {"mode": "not_configured", "sent": 0, "recipients": recipients}

        email_message = EmailMessage()
        email_message["From"] = f"TimeTrack System <{self.smtp_from}>"
        email_message["To"] = ", ".join(recipients)
        email_message["Subject"] = message.subject
        email_message.set_content(message.body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as smtp_client:
            if self.smtp_use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_pass)
            smtp_client.send_message(email_message)
        return {"mode": "sent", "sent": len(recipients), "recipients": recipients}

    def config_status(self) -> dict[str, Any]:
        missing_fields: list[str] = []
        if not self.smtp_host:
            missing_fields.append("SMTP_HOST")
        if not self.smtp_from:
            missing_fields.append("SMTP_FROM")
        return {
            "enabled": bool(self.enabled),
            "configured": self.configured,
            "smtp_host_set": bool(self.smtp_host),
            "smtp_from_set": bool(self.smtp_from),
            "smtp_user_set": bool(self.smtp_user),
            "smtp_use_tls": bool(self.smtp_use_tls),
            "missing_fields": missing_fields,
        }


# Outcomes that count as delivered. A placeholder log stands in for delivery when SMTP is unset.
_SUCCESS_MODES = frozenset({"sent", "not_configured", "disabled"})


class NotificationSender:
    def __init__(self, channel: NotificationChannel | None = None) -> None:
        self._channel = channel

    @property
    def channel(self) -> NotificationChannel:
        if self._channel is None:
            self._channel = EmailChannel()
        return self._channel

    def send(self, kind: NotificationKind | str, payload: Mapping[str, Any]) -> bool:
        """Deliver one notification. Never raises; failures are logged and reported as False."""
        try:
            message = build_notification_message(kind, payload)
            result = self.channel.send(message)
        except Exception as exc:
            logger.exception(
                "notification_send_failed",
                extra={
                    "kind": str(getattr(kind, "value", kind)),
                    "recipients": _recipients(payload),
                    "error": str(exc)[:500],
                },
            )
            return False

        mode = str(result.get("mode"))
        logger.info(
            "notification_send_result",
            extra={
                "kind": NotificationKind(kind).value,
                "mode": mode,
                "sent": result.get("sent", 0),
                "recipients": result.get("recipients", []),
            },
        )
        return mode in _SUCCESS_MODES


class NotificationDispatcher:
    """Fire-and-forget front for NotificationSender backed by a thread pool."""

    def __init__(self, sender: NotificationSender | None = None, *, max_workers: int | None = None) -> None:
        self.sender = sender or NotificationSender()
        workers = max_workers if max_workers is not None else get_settings().notification_worker_threads
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="notify")

    def submit(self, kind: NotificationKind | str, payload: Mapping[str, Any]) -> Future[bool]:
        kind_value = NotificationKind(kind).value
        future = self._executor.submit(self.sender.send, kind, dict(payload))

        def _log_outcome(done: Future[bool]) -> None:
            # sender.send never raises, so the future always carries a bool
            logger.info(
                "notification_dispatched",
                extra={"kind": kind_value, "delivered": bool(done.result())},
            )

        future.add_done_callback(_log_outcome)
        return future

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_dispatcher: NotificationDispatcher | None = None
_dispatcher_lock = threading.Lock()


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            _dispatcher = NotificationDispatcher()
        return _dispatcher


def shutdown_notification_dispatcher() -> None:
    global _dispatcher
    with _dispatcher_lock:
        dispatcher, _dispatcher = _dispatcher, None
    if dispatcher is not None:
        dispatcher.shutdown(wait=True)


def get_notification_channel_health() -> dict[str, Any]:
    email_channel = EmailChannel()
    return {
        "email_enabled": bool(get_settings().notification_email_enabled),
        "email": email_channel.config_status(),
        "kinds": [kind.value for kind in NotificationKind],
    }
