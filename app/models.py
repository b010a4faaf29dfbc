from __future__ import annotations

import enum
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class EventCategory(str, enum.Enum):
    WORK = "WORK"
    BREAK = "BREAK"
    LEAVE = "LEAVE"
    OTHER = "OTHER"


class TimeEventSource(str, enum.Enum):
    WEB = "WEB"
    MANUAL = "MANUAL"
    SYSTEM = "SYSTEM"


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


DAYS_NUMERIC = Numeric(5, 1)


campaign_team_leaders = Table(
    "campaign_team_leaders",
    Base.metadata,
    Column("campaign_id", ForeignKey("campaigns.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    time_zone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="Africa/Johannesburg",
        server_default=text("'Africa/Johannesburg'"),
    )
    work_day_start: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True, index=True)
    work_day_end: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True)
    lunch_start: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True)
    lunch_end: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True)
    tea_breaks: Mapped[list[dict[str, str]] | None] = mapped_column(JSONB, nullable=True)
    leave_approver_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    users: Mapped[list[User]] = relationship(back_populates="campaign", foreign_keys="User.campaign_id")
    team_leaders: Mapped[list[User]] = relationship(
        secondary=campaign_team_leaders,
        back_populates="team_leader_campaigns",
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    designation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role"),
        nullable=False,
        default=Role.EMPLOYEE,
        server_default=text("'EMPLOYEE'"),
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    time_zone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="Africa/Johannesburg",
        server_default=text("'Africa/Johannesburg'"),
    )
    campaign_id: Mapped[int | None] = mapped_column(
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    team_leader_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    campaign: Mapped[Campaign | None] = relationship(back_populates="users", foreign_keys=[campaign_id])
    team_leader: Mapped[User | None] = relationship(remote_side="User.id")
    team_leader_campaigns: Mapped[list[Campaign]] = relationship(
        secondary=campaign_team_leaders,
        back_populates="team_leaders",
    )


class EventType(Base):
    __tablename__ = "event_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    category: Mapped[EventCategory] = mapped_column(
        Enum(EventCategory, name="event_category"),
        nullable=False,
        default=EventCategory.WORK,
        server_default=text("'WORK'"),
        index=True,
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_break: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    campaign_id: Mapped[int | None] = mapped_column(
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    campaign: Mapped[Campaign | None] = relationship()


class TimeEvent(Base):
    __tablename__ = "time_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id: Mapped[int | None] = mapped_column(
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type_id: Mapped[int] = mapped_column(ForeignKey("event_types.id"), nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    source: Mapped[TimeEventSource] = mapped_column(
        Enum(TimeEventSource, name="time_event_source"),
        nullable=False,
        default=TimeEventSource.WEB,
        server_default=text("'WEB'"),
    )
    late_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    user: Mapped[User] = relationship()
    campaign: Mapped[Campaign | None] = relationship()
    event_type: Mapped[EventType] = relationship(lazy="joined")


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=9999, server_default=text("9999"))
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    full_day_allowed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    half_day_allowed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id"), nullable=False, index=True)
    leave_type_id: Mapped[int] = mapped_column(ForeignKey("leave_types.id"), nullable=False)
    start_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    days: Mapped[Decimal] = mapped_column(DAYS_NUMERIC, nullable=False, default=Decimal("0.0"))
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    approved_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])
    campaign: Mapped[Campaign] = relationship()
    leave_type: Mapped[LeaveType] = relationship(lazy="joined")
    approved_by: Mapped[User | None] = relationship(foreign_keys=[approved_by_id])


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "leave_type_id", "year", name="uq_leave_balances_user_type_year"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id: Mapped[int] = mapped_column(
        ForeignKey("leave_types.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    entitled_days: Mapped[Decimal] = mapped_column(
        DAYS_NUMERIC,
        nullable=False,
        default=Decimal("0.0"),
        server_default=text("0"),
    )
    used_days: Mapped[Decimal] = mapped_column(
        DAYS_NUMERIC,
        nullable=False,
        default=Decimal("0.0"),
        server_default=text("0"),
    )
    pending_days: Mapped[Decimal] = mapped_column(
        DAYS_NUMERIC,
        nullable=False,
        default=Decimal("0.0"),
        server_default=text("0"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship()
    leave_type: Mapped[LeaveType] = relationship(lazy="joined")

    @property
    def remaining_days(self) -> Decimal:
        return Decimal(self.entitled_days or 0) - Decimal(self.used_days or 0)


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
