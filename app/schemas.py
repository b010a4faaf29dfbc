from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import LeaveStatus, TimeEventSource


class TimeEventCreate(BaseModel):
    event_type_id: int = Field(ge=1)


class TimeEventRead(BaseModel):
    id: int
    user_id: int
    campaign_id: int | None
    event_type_id: int
    event_type_name: str | None = None
    ts_utc: datetime
    source: TimeEventSource
    late_minutes: int | None = None

    model_config = ConfigDict(from_attributes=True)


class DayStatusRead(BaseModel):
    date: date
    status: str
    workMinutes: int
    workHours: float
    breakMinutes: int
    lateMinutes: int | None = None
    eventCount: int


class LeaveTypeRead(BaseModel):
    id: int
    name: str
    sort_order: int
    paid: bool
    full_day_allowed: bool
    half_day_allowed: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestCreate(BaseModel):
    leave_type_id: int = Field(ge=1)
    start_date: date
    end_date: date
    half_day: bool = False
    reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_range(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        if self.half_day and self.end_date != self.start_date:
            raise ValueError("half_day requests must cover a single day")
        return self


class LeaveRequestStatusUpdate(BaseModel):
    status: LeaveStatus
    reason: str | None = Field(default=None, max_length=2000)


class LeaveRequestRead(BaseModel):
    id: int
    user_id: int
    user_full_name: str | None = None
    campaign_id: int
    leave_type_id: int
    leave_type_name: str | None = None
    start_utc: datetime
    end_utc: datetime
    days: float
    status: LeaveStatus
    approved_by_id: int | None = None
    approved_at: datetime | None = None
    reason: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class LeaveBalanceRead(BaseModel):
    id: int
    user_id: int
    leave_type_id: int
    leave_type_name: str | None = None
    year: int
    entitled_days: float
    used_days: float
    pending_days: float
    remaining_days: float

    model_config = ConfigDict(from_attributes=True)


class LeaveEntitlementAssign(BaseModel):
    user_id: int = Field(ge=1)
    leave_type_id: int = Field(ge=1)
    year: int = Field(ge=2000, le=2100)
    entitled_days: Decimal = Field(ge=0, le=366, decimal_places=1)


class LeaveEntitlementUpdate(BaseModel):
    entitled_days: Decimal | None = Field(default=None, ge=0, le=366, decimal_places=1)
    used_days: Decimal | None = Field(default=None, ge=0, le=366, decimal_places=1)
    pending_days: Decimal | None = Field(default=None, ge=0, le=366, decimal_places=1)

    @model_validator(mode="after")
    def validate_any_field(self) -> "LeaveEntitlementUpdate":
        if self.entitled_days is None and self.used_days is None and self.pending_days is None:
            raise ValueError("at least one of entitled_days, used_days, pending_days is required")
        return self


class EscalatedLateEmailUpdate(BaseModel):
    email: str | None = Field(default=None, max_length=255)


class EscalatedLateEmailRead(BaseModel):
    email: str | None


class ReportResponse(BaseModel):
    columns: list[str]
    rows: list[dict[str, Any]]


class TooWeeklyResponse(ReportResponse):
    campaign: str | None = None


class TeamWeeklyResponse(ReportResponse):
    weekStart: date
    weekEnd: date
