#!/usr/bin/env python
from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import Engine, create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import _normalize_database_url
from app.services.notifications import EMAIL_ADDRESS_PATTERN
from app.services.schema_guard import verify_runtime_schema
from app.settings import Settings, get_settings

VERSIONS_DIR = ROOT_DIR / "app" / "migrations" / "versions"
REVISION_ID_MAX_LEN = 32
# The status engine and the late monitor match these event type names.
REQUIRED_EVENT_TYPES = ("Work Start", "Work End")

_REVISION_PATTERN = re.compile(r'^\s*revision\s*:\s*str\s*=\s*"([^"]+)"\s*$', re.MULTILINE)


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _extract_revision_ids(versions_dir: Path = VERSIONS_DIR) -> list[str]:
    revisions: list[str] = []
    for path in sorted(versions_dir.glob("*.py")):
        if path.name.startswith("__"):
            continue
        match = _REVISION_PATTERN.search(path.read_text(encoding="utf-8"))
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def check_revision_id_lengths(versions_dir: Path = VERSIONS_DIR) -> CheckResult:
    """alembic_version.version_num is VARCHAR(32); longer ids break `upgrade`."""
    revisions = _extract_revision_ids(versions_dir)
    too_long = [revision for revision in revisions if len(revision) > REVISION_ID_MAX_LEN]
    duplicates = sorted({revision for revision in revisions if revisions.count(revision) > 1})
    return CheckResult(
        name="migration_revision_ids",
        status="fail" if (too_long or duplicates) else "ok",
        details={
            "max_len": REVISION_ID_MAX_LEN,
            "too_long": too_long,
            "duplicates": duplicates,
            "total": len(revisions),
        },
    )


def check_jwt_secret(settings: Settings) -> CheckResult:
    secret_set = bool((settings.jwt_secret or "").strip())
    return CheckResult(
        name="jwt_secret_set",
        status="ok" if secret_set else "fail",
        details={"jwt_secret_set": secret_set},
    )


def check_smtp_config(settings: Settings) -> CheckResult:
    host_set = bool((settings.smtp_host or "").strip())
    from_set = bool((settings.smtp_from or "").strip())
    user_set = bool((settings.smtp_user or "").strip())
    pass_set = bool((settings.smtp_pass or "").strip())

    problems: list[str] = []
    if host_set != from_set:
        problems.append("SMTP_HOST_AND_FROM_MUST_BE_SET_TOGETHER")
    if user_set != pass_set:
        problems.append("SMTP_USER_AND_PASS_MUST_BE_SET_TOGETHER")

    escalated = (settings.escalated_late_email or "").strip()
    if escalated and not EMAIL_ADDRESS_PATTERN.fullmatch(escalated):
        problems.append("ESCALATED_LATE_EMAIL_INVALID")

    if problems:
        status = "fail"
    elif settings.notification_email_enabled and not host_set:
        # Mail is logged as a placeholder instead of delivered.
        status = "warn"
    else:
        status = "ok"
    return CheckResult(
        name="notification_email_config",
        status=status,
        details={
            "email_enabled": bool(settings.notification_email_enabled),
            "smtp_host_set": host_set,
            "smtp_from_set": from_set,
            "smtp_auth_set": user_set and pass_set,
            "escalated_late_email_set": bool(escalated),
            "problems": problems,
        },
    )


def check_late_monitor_config(settings: Settings) -> CheckResult:
    problems: list[str] = []
    if settings.late_notice_minutes <= 0:
        problems.append("LATE_NOTICE_MINUTES_NOT_POSITIVE")
    if settings.late_escalation_minutes <= settings.late_notice_minutes:
        problems.append("LATE_ESCALATION_MUST_FOLLOW_NOTICE")
    if settings.escalation_dedup_retention_days < 1:
        problems.append("ESCALATION_RETENTION_TOO_SHORT")
    try:
        ZoneInfo((settings.attendance_timezone or "").strip())
    except (ZoneInfoNotFoundError, ValueError):
        problems.append("ATTENDANCE_TIMEZONE_UNKNOWN")

    return CheckResult(
        name="late_monitor_config",
        status="fail" if problems else "ok",
        details={
            "enabled": bool(settings.late_monitor_enabled),
            "notice_minutes": settings.late_notice_minutes,
            "escalation_minutes": settings.late_escalation_minutes,
            "retention_days": settings.escalation_dedup_retention_days,
            "attendance_timezone": settings.attendance_timezone,
            "problems": problems,
        },
    )


def _expected_alembic_heads() -> list[str]:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT_DIR / "app" / "migrations"))
    return sorted(ScriptDirectory.from_config(config).get_heads())


def _read_database_state(engine: Engine) -> dict[str, Any]:
    with engine.connect() as connection:
        current_versions = sorted(
            str(value).strip()
            for value in connection.execute(text("SELECT version_num FROM alembic_version")).scalars()
            if value is not None
        )
        event_type_names = set(
            connection.execute(
                text("SELECT name FROM event_types WHERE is_active IS TRUE"),
            ).scalars()
        )
        active_leave_types = connection.execute(
            text("SELECT COUNT(*) FROM leave_types WHERE is_active IS TRUE"),
        ).scalar_one()
    return {
        "current_versions": current_versions,
        "missing_event_types": [name for name in REQUIRED_EVENT_TYPES if name not in event_type_names],
        "active_leave_types": int(active_leave_types),
    }


def check_database_migration_and_schema() -> CheckResult:
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        return CheckResult(
            name="database_schema_guard",
            status="warn",
            details={"reason": "DATABASE_URL_NOT_SET"},
        )

    expected_heads = _expected_alembic_heads()
    engine = create_engine(_normalize_database_url(database_url), pool_pre_ping=True)
    try:
        schema_result = verify_runtime_schema(engine)
        state = _read_database_state(engine) if schema_result.ok else None
    finally:
        engine.dispose()

    if state is None:
        return CheckResult(
            name="database_schema_guard",
            status="fail",
            details={
                "expected_heads": expected_heads,
                "schema_guard_issues": schema_result.issues,
                "schema_guard_warnings": schema_result.warnings,
            },
        )

    missing_heads = [head for head in expected_heads if head not in state["current_versions"]]
    failed = bool(missing_heads or state["missing_event_types"]) or state["active_leave_types"] == 0
    return CheckResult(
        name="database_schema_guard",
        status="fail" if failed else "ok",
        details={
            "expected_heads": expected_heads,
            "missing_heads": missing_heads,
            "schema_guard_warnings": schema_result.warnings,
            **state,
        },
    )


def main() -> int:
    settings = get_settings()
    checks = [
        check_revision_id_lengths(),
        check_jwt_secret(settings),
        check_smtp_config(settings),
        check_late_monitor_config(settings),
        check_database_migration_and_schema(),
    ]
    failed = [check.name for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": not failed,
        "failed": failed,
        "checks": [{"name": check.name, "status": check.status, "details": check.details} for check in checks],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
