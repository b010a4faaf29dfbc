from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.models import LeaveBalance, LeaveRequest, LeaveStatus, Role
from app.schemas import (
    LeaveBalanceRead,
    LeaveEntitlementAssign,
    LeaveEntitlementUpdate,
    LeaveRequestCreate,
    LeaveRequestRead,
    LeaveRequestStatusUpdate,
    LeaveTypeRead,
)
from app.security import Actor, require_roles, require_user
from app.services.leaves import (
    assign_leave_entitlement,
    cancel_own_leave_request,
    create_leave_request,
    ensure_can_view_user_balances,
    get_all_leave_balances,
    get_leave_balances,
    list_leave_requests,
    list_leave_types,
    update_leave_entitlement,
    update_leave_request_status,
)

router = APIRouter(tags=["leave"])

require_leave_manager = require_roles(Role.ADMIN, Role.MANAGER)


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def _request_read(row: LeaveRequest) -> LeaveRequestRead:
    return LeaveRequestRead(
        id=row.id,
        user_id=row.user_id,
        user_full_name=row.user.full_name if row.user is not None else None,
        campaign_id=row.campaign_id,
        leave_type_id=row.leave_type_id,
        leave_type_name=row.leave_type.name if row.leave_type is not None else None,
        start_utc=row.start_utc,
        end_utc=row.end_utc,
        days=float(row.days),
        status=row.status,
        approved_by_id=row.approved_by_id,
        approved_at=row.approved_at,
        reason=row.reason,
        created_at=row.created_at,
    )


def _balance_read(row: LeaveBalance) -> LeaveBalanceRead:
    return LeaveBalanceRead(
        id=row.id,
        user_id=row.user_id,
        leave_type_id=row.leave_type_id,
        leave_type_name=row.leave_type.name if row.leave_type is not None else None,
        year=row.year,
        entitled_days=float(row.entitled_days),
        used_days=float(row.used_days),
        pending_days=float(row.pending_days),
        remaining_days=float(row.remaining_days),
    )


@router.get("/leave-types", response_model=list[LeaveTypeRead])
def leave_types(
    _actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[LeaveTypeRead]:
    return [LeaveTypeRead.model_validate(item) for item in list_leave_types(db)]


@router.post("/leave-requests", response_model=LeaveRequestRead, status_code=201)
def submit_leave_request(
    request: Request,
    payload: LeaveRequestCreate,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = create_leave_request(db, user_id=actor.user_id, payload=payload)
    audit_request(
        db,
        request,
        actor,
        action="LEAVE_REQUEST_CREATED",
        entity_type="leave_request",
        entity_id=leave_request.id,
        details={"days": str(leave_request.days), "leave_type_id": leave_request.leave_type_id},
    )
    return _request_read(leave_request)


@router.get("/leave-requests", response_model=list[LeaveRequestRead])
def leave_requests(
    campaign_id: int | None = Query(default=None, alias="campaignId", ge=1),
    user_id: int | None = Query(default=None, alias="userId", ge=1),
    status: LeaveStatus | None = Query(default=None),
    from_day: date | None = Query(default=None, alias="from"),
    to_day: date | None = Query(default=None, alias="to"),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    rows = list_leave_requests(
        db,
        actor,
        campaign_id=campaign_id,
        user_id=user_id,
        status=status,
        from_day=from_day,
        to_day=to_day,
    )
    return [_request_read(item) for item in rows]


@router.patch("/leave-requests/{request_id}", response_model=LeaveRequestRead)
def decide_leave_request(
    request_id: int,
    request: Request,
    payload: LeaveRequestStatusUpdate,
    actor: Actor = Depends(require_leave_manager),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = update_leave_request_status(
        db,
        request_id=request_id,
        new_status=payload.status,
        actor=actor,
        reason=payload.reason,
    )
    audit_request(
        db,
        request,
        actor,
        action="LEAVE_REQUEST_STATUS_CHANGED",
        entity_type="leave_request",
        entity_id=request_id,
        details={"status": payload.status.value},
    )
    return _request_read(leave_request)


@router.post("/leave-requests/{request_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave_request(
    request_id: int,
    request: Request,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = cancel_own_leave_request(db, request_id=request_id, actor=actor)
    audit_request(
        db,
        request,
        actor,
        action="LEAVE_REQUEST_CANCELED",
        entity_type="leave_request",
        entity_id=request_id,
    )
    return _request_read(leave_request)


@router.get("/leave-balances/me", response_model=list[LeaveBalanceRead])
def my_leave_balances(
    year: int | None = Query(default=None, ge=2000, le=2100),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[LeaveBalanceRead]:
    rows = get_leave_balances(db, user_id=actor.user_id, year=year or _current_year())
    return [_balance_read(item) for item in rows]


@router.get("/leave-balances/all", response_model=list[LeaveBalanceRead])
def all_leave_balances(
    year: int | None = Query(default=None, ge=2000, le=2100),
    actor: Actor = Depends(require_leave_manager),
    db: Session = Depends(get_db),
) -> list[LeaveBalanceRead]:
    return [_balance_read(item) for item in get_all_leave_balances(db, year=year or _current_year(), actor=actor)]


@router.get("/leave-balances/user/{user_id}", response_model=list[LeaveBalanceRead])
def user_leave_balances(
    user_id: int,
    year: int | None = Query(default=None, ge=2000, le=2100),
    actor: Actor = Depends(require_leave_manager),
    db: Session = Depends(get_db),
) -> list[LeaveBalanceRead]:
    ensure_can_view_user_balances(db, user_id=user_id, actor=actor)
    return [_balance_read(item) for item in get_leave_balances(db, user_id=user_id, year=year or _current_year())]


@router.post("/leave-balances/assign", response_model=LeaveBalanceRead)
def assign_entitlement(
    request: Request,
    payload: LeaveEntitlementAssign,
    actor: Actor = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    balance = assign_leave_entitlement(db, payload)
    audit_request(
        db,
        request,
        actor,
        action="LEAVE_ENTITLEMENT_ASSIGNED",
        entity_type="leave_balance",
        entity_id=balance.id,
        details={
            "user_id": payload.user_id,
            "leave_type_id": payload.leave_type_id,
            "year": payload.year,
            "entitled_days": str(payload.entitled_days),
        },
    )
    return _balance_read(balance)


@router.patch("/leave-balances/{balance_id}", response_model=LeaveBalanceRead)
def patch_entitlement(
    balance_id: int,
    request: Request,
    payload: LeaveEntitlementUpdate,
    actor: Actor = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    balance = update_leave_entitlement(db, balance_id=balance_id, payload=payload)
    audit_request(
        db,
        request,
        actor,
        action="LEAVE_ENTITLEMENT_UPDATED",
        entity_type="leave_balance",
        entity_id=balance_id,
        details=payload.model_dump(mode="json", exclude_none=True),
    )
    return _balance_read(balance)
