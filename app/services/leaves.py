from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError, forbidden, not_found, validation_error
from app.models import Campaign, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType, Role, User
from app.schemas import LeaveEntitlementAssign, LeaveEntitlementUpdate, LeaveRequestCreate
from app.security import Actor
from app.services.notifications import NotificationKind, get_notification_dispatcher

logger = logging.getLogger("app.leave")

NotifyFn = Callable[[NotificationKind, dict[str, Any]], Any]

ONE_PLACE = Decimal("0.1")
HALF_DAY = Decimal("0.5")
ZERO_DAYS = Decimal("0.0")

ALLOWED_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.PENDING: frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELED}),
    LeaveStatus.APPROVED: frozenset({LeaveStatus.CANCELED}),
}


def quantize_days(value: Decimal | int | float | str | None) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(ONE_PLACE, rounding=ROUND_HALF_UP)


def compute_leave_days(start_date: date, end_date: date, *, half_day: bool = False) -> Decimal:
    if end_date < start_date:
        raise validation_error("end_date must be greater than or equal to start_date.", code="INVALID_DATE_RANGE")
    if half_day:
        if start_date != end_date:
            raise validation_error("A half-day request must cover a single day.", code="INVALID_HALF_DAY")
        return HALF_DAY.quantize(ONE_PLACE)
    return quantize_days((end_date - start_date).days + 1)


def leave_window_utc(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(start_date, time(0, 0, 0), tzinfo=timezone.utc),
        datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc),
    )


def apply_balance_transition(
    balance: LeaveBalance,
    *,
    previous: LeaveStatus | None,
    new: LeaveStatus,
    days: Decimal,
) -> None:
    """Move ``days`` between the pending and used buckets for one status change.

    ``previous=None`` means the request is being created.
    """
    amount = quantize_days(days)
    pending = quantize_days(balance.pending_days)
    used = quantize_days(balance.used_days)

    if previous is None and new == LeaveStatus.PENDING:
        pending += amount
    elif previous == LeaveStatus.PENDING and new == LeaveStatus.APPROVED:
        pending -= amount
        used += amount
    elif previous == LeaveStatus.PENDING and new in {LeaveStatus.REJECTED, LeaveStatus.CANCELED}:
        pending -= amount
    elif previous == LeaveStatus.APPROVED and new == LeaveStatus.CANCELED:
        used -= amount
    else:
        return

    balance.pending_days = max(ZERO_DAYS, pending)
    balance.used_days = max(ZERO_DAYS, used)


def list_leave_types(db: Session, *, include_inactive: bool = False) -> list[LeaveType]:
    stmt = select(LeaveType).order_by(LeaveType.sort_order.asc(), LeaveType.name.asc())
    if not include_inactive:
        stmt = stmt.where(LeaveType.is_active.is_(True))
    return list(db.scalars(stmt).all())


def _lock_balance(db: Session, *, user_id: int, leave_type_id: int, year: int) -> LeaveBalance | None:
    return db.scalar(
        select(LeaveBalance)
        .where(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        .with_for_update(of=LeaveBalance)
    )


def _lock_request(db: Session, request_id: int) -> LeaveRequest:
    leave_request = db.scalar(
        select(LeaveRequest).where(LeaveRequest.id == request_id).with_for_update(of=LeaveRequest)
    )
    if leave_request is None:
        raise not_found("leave request")
    return leave_request


def _submit(notify: NotifyFn | None, kind: NotificationKind, payload: dict[str, Any]) -> None:
    sender = notify or get_notification_dispatcher().submit
    try:
        sender(kind, payload)
    except Exception:
        logger.exception("leave_notification_submit_failed", extra={"kind": kind.value})


def create_leave_request(
    db: Session,
    *,
    user_id: int,
    payload: LeaveRequestCreate,
    notify: NotifyFn | None = None,
) -> LeaveRequest:
    user = db.get(User, user_id)
    if user is None:
        raise not_found("user")
    if user.campaign_id is None:
        raise ApiError(status_code=400, code="USER_WITHOUT_CAMPAIGN", message="User not assigned to a campaign.")

    leave_type = db.get(LeaveType, payload.leave_type_id)
    if leave_type is None or not leave_type.is_active:
        raise validation_error("Invalid leave type.", code="INVALID_LEAVE_TYPE")
    if payload.half_day and not leave_type.half_day_allowed:
        raise validation_error(f"{leave_type.name} cannot be taken as a half day.", code="HALF_DAY_NOT_ALLOWED")
    if not payload.half_day and not leave_type.full_day_allowed:
        raise validation_error(f"{leave_type.name} can only be taken as a half day.", code="FULL_DAY_NOT_ALLOWED")

    days = compute_leave_days(payload.start_date, payload.end_date, half_day=payload.half_day)
    start_utc, end_utc = leave_window_utc(payload.start_date, payload.end_date)

    leave_request = LeaveRequest(
        user_id=user.id,
        campaign_id=user.campaign_id,
        leave_type_id=leave_type.id,
        start_utc=start_utc,
        end_utc=end_utc,
        days=days,
        status=LeaveStatus.PENDING,
        reason=payload.reason,
    )
    leave_request.leave_type = leave_type
    db.add(leave_request)

    balance = _lock_balance(db, user_id=user.id, leave_type_id=leave_type.id, year=payload.start_date.year)
    if balance is not None:
        apply_balance_transition(balance, previous=None, new=LeaveStatus.PENDING, days=days)
    db.commit()
    db.refresh(leave_request)

    logger.info(
        "leave_request_created",
        extra={
            "leave_request_id": leave_request.id,
            "user_id": user.id,
            "leave_type": leave_type.name,
            "days": str(days),
            "balance_tracked": balance is not None,
        },
    )

    campaign = db.get(Campaign, user.campaign_id)
    campaign_name = campaign.name if campaign is not None else "-"
    common = {
        "employee_name": user.full_name,
        "employee_email": user.email,
        "campaign_name": campaign_name,
        "leave_type": leave_type.name,
        "start_date": payload.start_date.isoformat(),
        "end_date": payload.end_date.isoformat(),
        "number_of_days": str(days),
    }
    approver_email = (campaign.leave_approver_email or "").strip() if campaign is not None else ""
    if approver_email:
        _submit(
            notify,
            NotificationKind.LEAVE_REQUEST_NOTIFY,
            {**common, "to_email": approver_email, "reason": payload.reason},
        )
    _submit(notify, NotificationKind.LEAVE_REQUEST_CONFIRM, {**common, "to_email": user.email})
    return leave_request


def list_leave_requests(
    db: Session,
    actor: Actor,
    *,
    campaign_id: int | None = None,
    user_id: int | None = None,
    status: LeaveStatus | None = None,
    from_day: date | None = None,
    to_day: date | None = None,
) -> list[LeaveRequest]:
    if actor.role == Role.EMPLOYEE:
        user_id = actor.user_id
    elif actor.is_manager:
        if actor.campaign_id is None:
            return []
        campaign_id = actor.campaign_id

    stmt = select(LeaveRequest).order_by(LeaveRequest.start_utc.desc(), LeaveRequest.id.desc())
    if campaign_id is not None:
        stmt = stmt.where(LeaveRequest.campaign_id == campaign_id)
    if user_id is not None:
        stmt = stmt.where(LeaveRequest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if from_day is not None:
        stmt = stmt.where(LeaveRequest.end_utc >= leave_window_utc(from_day, from_day)[0])
    if to_day is not None:
        stmt = stmt.where(LeaveRequest.start_utc <= leave_window_utc(to_day, to_day)[1])
    return list(db.scalars(stmt).all())


def _ensure_transition(previous: LeaveStatus, new: LeaveStatus) -> None:
    if new not in ALLOWED_TRANSITIONS.get(previous, frozenset()):
        raise validation_error(
            f"Cannot change leave request from {previous.value} to {new.value}.",
            code="INVALID_STATUS_TRANSITION",
        )


def _transition(
    db: Session,
    leave_request: LeaveRequest,
    *,
    new_status: LeaveStatus,
    approver_id: int | None,
    reason: str | None,
) -> LeaveRequest:
    previous = LeaveStatus(leave_request.status)
    _ensure_transition(previous, new_status)
    try:
        balance = _lock_balance(
            db,
            user_id=leave_request.user_id,
            leave_type_id=leave_request.leave_type_id,
            year=leave_request.start_utc.year,
        )
        if balance is not None:
            apply_balance_transition(balance, previous=previous, new=new_status, days=leave_request.days)

        leave_request.status = new_status
        if new_status in {LeaveStatus.APPROVED, LeaveStatus.REJECTED} and approver_id is not None:
            leave_request.approved_by_id = approver_id
            leave_request.approved_at = datetime.now(timezone.utc)
        if reason:
            leave_request.reason = reason
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "leave_request_status_changed",
        extra={
            "leave_request_id": leave_request.id,
            "from_status": previous.value,
            "to_status": new_status.value,
            "days": str(leave_request.days),
            "balance_tracked": balance is not None,
        },
    )
    return leave_request


def update_leave_request_status(
    db: Session,
    *,
    request_id: int,
    new_status: LeaveStatus,
    actor: Actor,
    reason: str | None = None,
) -> LeaveRequest:
    leave_request = _lock_request(db, request_id)
    if actor.is_manager and leave_request.campaign_id != actor.campaign_id:
        raise forbidden("Managers can only decide leave for their own campaign.")
    return _transition(db, leave_request, new_status=new_status, approver_id=actor.user_id, reason=reason)


def cancel_own_leave_request(db: Session, *, request_id: int, actor: Actor) -> LeaveRequest:
    leave_request = _lock_request(db, request_id)
    if leave_request.user_id != actor.user_id:
        raise not_found("leave request")
    if LeaveStatus(leave_request.status) != LeaveStatus.PENDING:
        raise validation_error("Only pending leave requests can be canceled.", code="INVALID_STATUS_TRANSITION")
    return _transition(db, leave_request, new_status=LeaveStatus.CANCELED, approver_id=None, reason=None)


def get_leave_balances(db: Session, *, user_id: int, year: int) -> list[LeaveBalance]:
    return list(
        db.scalars(
            select(LeaveBalance)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .where(LeaveBalance.user_id == user_id, LeaveBalance.year == year)
            .order_by(LeaveType.sort_order.asc(), LeaveType.name.asc())
        ).all()
    )


def get_all_leave_balances(db: Session, *, year: int, actor: Actor) -> list[LeaveBalance]:
    stmt = (
        select(LeaveBalance)
        .join(User, LeaveBalance.user_id == User.id)
        .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
        .where(LeaveBalance.year == year)
        .order_by(User.full_name.asc(), LeaveType.sort_order.asc())
    )
    if actor.is_manager:
        if actor.campaign_id is None:
            return []
        stmt = stmt.where(User.campaign_id == actor.campaign_id)
    return list(db.scalars(stmt).all())


def ensure_can_view_user_balances(db: Session, *, user_id: int, actor: Actor) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise not_found("user")
    if actor.is_manager and user.campaign_id != actor.campaign_id:
        raise forbidden("Managers can only view balances for their own campaign.")
    return user


def assign_leave_entitlement(db: Session, payload: LeaveEntitlementAssign) -> LeaveBalance:
    if db.get(User, payload.user_id) is None:
        raise not_found("user")
    if db.get(LeaveType, payload.leave_type_id) is None:
        raise not_found("leave type")

    balance = _lock_balance(db, user_id=payload.user_id, leave_type_id=payload.leave_type_id, year=payload.year)
    if balance is None:
        balance = LeaveBalance(
            user_id=payload.user_id,
            leave_type_id=payload.leave_type_id,
            year=payload.year,
            entitled_days=quantize_days(payload.entitled_days),
            used_days=ZERO_DAYS,
            pending_days=ZERO_DAYS,
        )
        db.add(balance)
    else:
        balance.entitled_days = quantize_days(payload.entitled_days)
    db.commit()
    db.refresh(balance)
    return balance


def update_leave_entitlement(db: Session, *, balance_id: int, payload: LeaveEntitlementUpdate) -> LeaveBalance:
    balance = db.scalar(
        select(LeaveBalance).where(LeaveBalance.id == balance_id).with_for_update(of=LeaveBalance)
    )
    if balance is None:
        raise not_found("leave balance")
    if payload.entitled_days is not None:
        balance.entitled_days = quantize_days(payload.entitled_days)
    if payload.used_days is not None:
        balance.used_days = quantize_days(payload.used_days)
    if payload.pending_days is not None:
        balance.pending_days = quantize_days(payload.pending_days)
    db.commit()
    db.refresh(balance)
    return balance
