from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastapi import Request
from sqlalchemy.orm import Session

from app.errors import get_request_id
from app.models import AuditActorType, AuditLog

if TYPE_CHECKING:
    from app.security import Actor

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ip,
            user_agent=user_agent,
            success=success,
            details=details or {},
        )
    )
    try:
        db.commit()
    except Exception:
        # The audited change is already committed; a lost audit row must not fail the request.
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )


def audit_request(
    db: Session,
    request: Request,
    actor: Actor,
    *,
    action: str,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Record an audit row for an authenticated HTTP action."""
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(actor.user_id),
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        details=details,
        request_id=get_request_id(request),
    )
