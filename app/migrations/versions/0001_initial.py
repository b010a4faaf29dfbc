"""Initial timetrack schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM(
    "ADMIN",
    "MANAGER",
    "EMPLOYEE",
    name="user_role",
    create_type=False,
)
event_category = postgresql.ENUM(
    "WORK",
    "BREAK",
    "LEAVE",
    "OTHER",
    name="event_category",
    create_type=False,
)
time_event_source = postgresql.ENUM(
    "WEB",
    "MANUAL",
    "SYSTEM",
    name="time_event_source",
    create_type=False,
)
leave_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    "CANCELED",
    name="leave_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

# name, category, is_paid, is_break
DEFAULT_EVENT_TYPES = [
    ("Work Start", "WORK", True, False),
    ("Work End", "WORK", True, False),
    ("Lunch Start", "BREAK", False, True),
    ("Lunch End", "BREAK", False, True),
    ("Tea Break Start", "BREAK", False, True),
    ("Tea Break End", "BREAK", False, True),
]

# name, paid, full_day_allowed, half_day_allowed
DEFAULT_LEAVE_TYPES = [
    ("Annual Leave", True, True, False),
    ("Sick Leave", True, True, False),
    ("Birthday leave", True, True, False),
    ("Family Responsibility Leave", True, True, False),
    ("Absent", False, True, False),
    ("Terminated / Leaver", False, True, False),
    ("Lieu Day", True, True, False),
    ("Day Off", True, True, False),
    ("Annual Leave Halfday", True, False, True),
    ("Sick Leave Halfday", True, False, True),
    ("Family Responsibility Leave Halfday", True, False, True),
    ("Maternity Leave", True, True, False),
    ("Paternity Leave", True, True, False),
    ("AWOL", False, True, False),
    ("Unpaid Half Day", False, False, True),
    ("Training", True, True, False),
    ("Unpaid Leave", False, True, False),
    ("Redeployment", True, True, False),
]


def upgrade() -> None:
    bind = op.get_bind()
    user_role.create(bind, checkfirst=True)
    event_category.create(bind, checkfirst=True)
    time_event_source.create(bind, checkfirst=True)
    leave_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column(
            "time_zone",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'Africa/Johannesburg'"),
        ),
        sa.Column("work_day_start", sa.Time(timezone=False), nullable=True),
        sa.Column("work_day_end", sa.Time(timezone=False), nullable=True),
        sa.Column("lunch_start", sa.Time(timezone=False), nullable=True),
        sa.Column("lunch_end", sa.Time(timezone=False), nullable=True),
        sa.Column("tea_breaks", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("leave_approver_email", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_campaigns_name", "campaigns", ["name"], unique=True)
    op.create_index("ix_campaigns_work_day_start", "campaigns", ["work_day_start"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("designation", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default=sa.text("'EMPLOYEE'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "time_zone",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'Africa/Johannesburg'"),
        ),
        sa.Column("campaign_id", sa.Integer(), nullable=True),
        sa.Column("team_leader_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["team_leader_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_campaign_id", "users", ["campaign_id"], unique=False)
    op.create_index("ix_users_team_leader_id", "users", ["team_leader_id"], unique=False)

    op.create_table(
        "campaign_team_leaders",
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("campaign_id", "user_id"),
    )

    op.create_table(
        "event_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("category", event_category, nullable=False, server_default=sa.text("'WORK'")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_break", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("campaign_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("name", name="uq_event_types_name"),
    )
    op.create_index("ix_event_types_category", "event_types", ["category"], unique=False)
    op.create_index("ix_event_types_campaign_id", "event_types", ["campaign_id"], unique=False)

    op.create_table(
        "time_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("campaign_id", sa.Integer(), nullable=True),
        sa.Column("event_type_id", sa.Integer(), nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", time_event_source, nullable=False, server_default=sa.text("'WEB'")),
        sa.Column("late_minutes", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["event_type_id"], ["event_types.id"]),
    )
    op.create_index("ix_time_events_user_id", "time_events", ["user_id"], unique=False)
    op.create_index("ix_time_events_campaign_id", "time_events", ["campaign_id"], unique=False)
    op.create_index("ix_time_events_ts_utc", "time_events", ["ts_utc"], unique=False)
    op.create_index("ix_time_events_user_ts", "time_events", ["user_id", "ts_utc"], unique=False)

    op.create_table(
        "leave_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("9999")),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("full_day_allowed", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("half_day_allowed", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_leave_types_name"),
    )
    op.create_index("ix_leave_types_sort_order", "leave_types", ["sort_order"], unique=False)

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("leave_type_id", sa.Integer(), nullable=False),
        sa.Column("start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("days", sa.Numeric(precision=5, scale=1), nullable=False),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"]),
        sa.ForeignKeyConstraint(["approved_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_leave_requests_user_id", "leave_requests", ["user_id"], unique=False)
    op.create_index("ix_leave_requests_campaign_id", "leave_requests", ["campaign_id"], unique=False)
    op.create_index("ix_leave_requests_start_utc", "leave_requests", ["start_utc"], unique=False)
    op.create_index("ix_leave_requests_end_utc", "leave_requests", ["end_utc"], unique=False)
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"], unique=False)

    op.create_table(
        "leave_balances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("leave_type_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("entitled_days", sa.Numeric(precision=5, scale=1), nullable=False, server_default=sa.text("0")),
        sa.Column("used_days", sa.Numeric(precision=5, scale=1), nullable=False, server_default=sa.text("0")),
        sa.Column("pending_days", sa.Numeric(precision=5, scale=1), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "leave_type_id", "year", name="uq_leave_balances_user_type_year"),
    )
    op.create_index("ix_leave_balances_user_id", "leave_balances", ["user_id"], unique=False)
    op.create_index("ix_leave_balances_leave_type_id", "leave_balances", ["leave_type_id"], unique=False)
    op.create_index("ix_leave_balances_year", "leave_balances", ["year"], unique=False)

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=100), primary_key=True, nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)

    event_types_table = sa.table(
        "event_types",
        sa.column("name", sa.String()),
        sa.column("category", event_category),
        sa.column("is_paid", sa.Boolean()),
        sa.column("is_break", sa.Boolean()),
    )
    op.bulk_insert(
        event_types_table,
        [
            {"name": name, "category": category, "is_paid": is_paid, "is_break": is_break}
            for name, category, is_paid, is_break in DEFAULT_EVENT_TYPES
        ],
    )

    leave_types_table = sa.table(
        "leave_types",
        sa.column("name", sa.String()),
        sa.column("sort_order", sa.Integer()),
        sa.column("paid", sa.Boolean()),
        sa.column("full_day_allowed", sa.Boolean()),
        sa.column("half_day_allowed", sa.Boolean()),
    )
    op.bulk_insert(
        leave_types_table,
        [
            {
                "name": name,
                "sort_order": index,
                "paid": paid,
                "full_day_allowed": full_day_allowed,
                "half_day_allowed": half_day_allowed,
            }
            for index, (name, paid, full_day_allowed, half_day_allowed) in enumerate(DEFAULT_LEAVE_TYPES, start=1)
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("settings")

    op.drop_index("ix_leave_balances_year", table_name="leave_balances")
    op.drop_index("ix_leave_balances_leave_type_id", table_name="leave_balances")
    op.drop_index("ix_leave_balances_user_id", table_name="leave_balances")
    op.drop_table("leave_balances")

    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_end_utc", table_name="leave_requests")
    op.drop_index("ix_leave_requests_start_utc", table_name="leave_requests")
    op.drop_index("ix_leave_requests_campaign_id", table_name="leave_requests")
    op.drop_index("ix_leave_requests_user_id", table_name="leave_requests")
    op.drop_table("leave_requests")

    op.drop_index("ix_leave_types_sort_order", table_name="leave_types")
    op.drop_table("leave_types")

    op.drop_index("ix_time_events_user_ts", table_name="time_events")
    op.drop_index("ix_time_events_ts_utc", table_name="time_events")
    op.drop_index("ix_time_events_campaign_id", table_name="time_events")
    op.drop_index("ix_time_events_user_id", table_name="time_events")
    op.drop_table("time_events")

    op.drop_index("ix_event_types_campaign_id", table_name="event_types")
    op.drop_index("ix_event_types_category", table_name="event_types")
    op.drop_table("event_types")

    op.drop_table("campaign_team_leaders")

    op.drop_index("ix_users_team_leader_id", table_name="users")
    op.drop_index("ix_users_campaign_id", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_campaigns_work_day_start", table_name="campaigns")
    op.drop_index("ix_campaigns_name", table_name="campaigns")
    op.drop_table("campaigns")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    leave_status.drop(bind, checkfirst=True)
    time_event_source.drop(bind, checkfirst=True)
    event_category.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
