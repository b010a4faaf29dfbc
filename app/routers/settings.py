from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.models import Role
from app.schemas import EscalatedLateEmailRead, EscalatedLateEmailUpdate
from app.security import Actor, require_roles
from app.services.settings_store import (
    KEY_LATE_ESCALATION_SENT,
    get_escalated_late_email,
    list_settings,
    set_escalated_late_email,
)

router = APIRouter(prefix="/settings", tags=["settings"])

require_admin = require_roles(Role.ADMIN)


@router.get("")
def read_settings(
    _actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict[str, str | None]:
    values = list_settings(db)
    # Internal bookkeeping, not an operator setting.
    values.pop(KEY_LATE_ESCALATION_SENT, None)
    return values


@router.get("/escalated-late-email", response_model=EscalatedLateEmailRead)
def read_escalated_late_email(
    _actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> EscalatedLateEmailRead:
    return EscalatedLateEmailRead(email=get_escalated_late_email(db))


@router.patch("/escalated-late-email", response_model=EscalatedLateEmailRead)
def update_escalated_late_email(
    request: Request,
    payload: EscalatedLateEmailUpdate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> EscalatedLateEmailRead:
    email = set_escalated_late_email(db, payload.email)
    audit_request(
        db,
        request,
        actor,
        action="SETTING_UPDATED",
        entity_type="setting",
        entity_id="escalated_late_email",
        details={"email": email},
    )
    return EscalatedLateEmailRead(email=email)
