from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models import Campaign
from app.settings import get_settings

logger = logging.getLogger("app.local_time")

FALLBACK_TIMEZONE = "Africa/Johannesburg"


def normalize_ts(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def default_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or FALLBACK_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(FALLBACK_TIMEZONE)


def campaign_timezone(campaign: Campaign | None) -> ZoneInfo:
    raw_name = ((campaign.time_zone if campaign is not None else None) or "").strip()
    if not raw_name:
        return default_timezone()
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "campaign_timezone_invalid",
            extra={"campaign_id": getattr(campaign, "id", None), "time_zone": raw_name},
        )
        return default_timezone()


def local_day_bounds_utc(local_day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    local_start = datetime.combine(local_day, time.min, tzinfo=tz)
    local_end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def local_work_start_utc(campaign: Campaign, local_day: date) -> datetime | None:
    """Instant at which the campaign's workday starts on local_day, or None when unscheduled."""
    if campaign.work_day_start is None:
        return None
    tz = campaign_timezone(campaign)
    local_start = datetime.combine(local_day, campaign.work_day_start.replace(tzinfo=None), tzinfo=tz)
    return local_start.astimezone(timezone.utc)


def whole_minutes_between(later: datetime, earlier: datetime) -> int:
    return int((normalize_ts(later) - normalize_ts(earlier)).total_seconds() // 60)
