from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

EXPECTED_ALEMBIC_HEAD = "0001_initial"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    alembic_version: str | None = None
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "alembic_version": self.alembic_version,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "campaigns": {"id", "name", "time_zone", "work_day_start", "leave_approver_email"},
    "users": {"id", "email", "role", "campaign_id", "team_leader_id", "is_active"},
    "campaign_team_leaders": {"campaign_id", "user_id"},
    "event_types": {"id", "name", "is_break", "is_global", "campaign_id"},
    "time_events": {"id", "user_id", "event_type_id", "ts_utc", "late_minutes"},
    "leave_types": {"id", "name", "sort_order", "half_day_allowed"},
    "leave_requests": {"id", "user_id", "leave_type_id", "start_utc", "end_utc", "days", "status"},
    "leave_balances": {"id", "user_id", "leave_type_id", "year", "entitled_days", "used_days", "pending_days"},
    "settings": {"key", "value"},
    "audit_logs": {"id", "actor_type", "action"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "user_role": {"ADMIN", "MANAGER", "EMPLOYEE"},
    "leave_status": {"PENDING", "APPROVED", "REJECTED", "CANCELED"},
    "time_event_source": {"WEB", "MANUAL", "SYSTEM"},
}


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        labels = enum_item.get("labels")
        if name and isinstance(labels, list):
            labels_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in labels_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")


def _read_alembic_version(engine: Engine, issues: list[str], warnings: list[str]) -> str | None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return None

    version = str(row).strip() if row is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
        return None
    if version != EXPECTED_ALEMBIC_HEAD:
        warnings.append(f"ALEMBIC_VERSION_UNEXPECTED:{version}")
    return version


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_enums(inspector, issues, warnings)
    version = _read_alembic_version(engine, issues, warnings)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        alembic_version=version,
        issues=issues,
        warnings=warnings,
    )
