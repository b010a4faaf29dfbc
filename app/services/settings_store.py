from __future__ import annotations

import json
import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import validation_error
from app.models import Setting
from app.services.notifications import normalize_notification_email
from app.settings import get_settings

logger = logging.getLogger("app.settings_store")

KEY_ESCALATED_LATE_EMAIL = "escalated_late_email"
KEY_LATE_ESCALATION_SENT = "late_escalation_sent"


def _env_fallback(key: str) -> str | None:
    if key == KEY_ESCALATED_LATE_EMAIL:
        return (get_settings().escalated_late_email or "").strip() or None
    return None


def get_setting(db: Session, key: str) -> str | None:
    row = db.get(Setting, key)
    if row is not None:
        return row.value
    return _env_fallback(key)


def set_setting(db: Session, key: str, value: str | None, *, commit: bool = True) -> Setting:
    row = db.get(Setting, key)
    if row is None:
        row = Setting(key=key, value=value)
        db.add(row)
    else:
        row.value = value
    if commit:
        db.commit()
    else:
        db.flush()
    return row


def list_settings(db: Session) -> dict[str, str | None]:
    rows = db.scalars(select(Setting).order_by(Setting.key.asc())).all()
    out = {row.key: row.value for row in rows}
    if out.get(KEY_ESCALATED_LATE_EMAIL) is None:
        out[KEY_ESCALATED_LATE_EMAIL] = _env_fallback(KEY_ESCALATED_LATE_EMAIL)
    return out


def get_escalated_late_email(db: Session) -> str | None:
    value = get_setting(db, KEY_ESCALATED_LATE_EMAIL)
    return (value or "").strip() or None


def set_escalated_late_email(db: Session, email: str | None) -> str | None:
    if email is None or not email.strip():
        set_setting(db, KEY_ESCALATED_LATE_EMAIL, None)
        return None
    normalized = normalize_notification_email(email)
    if normalized is None:
        raise validation_error("Escalated late email must be a valid email address.", code="INVALID_EMAIL")
    set_setting(db, KEY_ESCALATED_LATE_EMAIL, normalized)
    return normalized


def _load_escalation_record(db: Session) -> dict[str, list[str]]:
    row = db.get(Setting, KEY_LATE_ESCALATION_SENT)
    if row is None or not row.value:
        return {}
    try:
        raw = json.loads(row.value)
    except ValueError:
        logger.warning("late_escalation_record_unreadable", extra={"value": row.value[:200]})
        return {}
    if not isinstance(raw, dict):
        return {}
    return {
        str(day_key): [str(item) for item in user_ids]
        for day_key, user_ids in raw.items()
        if isinstance(user_ids, list)
    }


def was_escalation_sent(db: Session, user_id: int, day: date) -> bool:
    record = _load_escalation_record(db)
    return str(user_id) in record.get(day.isoformat(), [])


def prune_escalation_record(record: dict[str, list[str]], *, today: date, retention_days: int) -> dict[str, list[str]]:
    cutoff = (today - timedelta(days=retention_days)).isoformat()
    # ISO dates compare correctly as strings.
    return {day_key: user_ids for day_key, user_ids in record.items() if day_key >= cutoff}


def mark_escalation_sent(
    db: Session,
    user_id: int,
    day: date,
    *,
    today: date | None = None,
    retention_days: int | None = None,
) -> dict[str, list[str]]:
    record = _load_escalation_record(db)
    day_key = day.isoformat()
    user_ids = record.setdefault(day_key, [])
    if str(user_id) not in user_ids:
        user_ids.append(str(user_id))

    record = prune_escalation_record(
        record,
        today=today or day,
        retention_days=(
            retention_days if retention_days is not None else get_settings().escalation_dedup_retention_days
        ),
    )
    set_setting(db, KEY_LATE_ESCALATION_SENT, json.dumps(record, sort_keys=True))
    return record
