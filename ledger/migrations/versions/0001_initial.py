"""Initial workday ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
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

clock_event_type = postgresql.ENUM(
    "clock_in",
    "clock_out",
    "break_start",
    "break_end",
    name="clock_event_type",
    create_type=False,
)
clock_event_source = postgresql.ENUM(
    "self_service",
    "administrative",
    "mobile",
    "terminal",
    name="clock_event_source",
    create_type=False,
)
clock_event_origin = postgresql.ENUM(
    "GENUINE",
    "SYNTHETIC",
    name="clock_event_origin",
    create_type=False,
)
workday_status = postgresql.ENUM(
    "open",
    "closed",
    name="workday_status",
    create_type=False,
)
schedule_type = postgresql.ENUM(
    "total",
    "split",
    name="schedule_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

_ENUMS = (
    clock_event_type,
    clock_event_source,
    clock_event_origin,
    workday_status,
    schedule_type,
    audit_actor_type,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "scheduled_shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("break_start_time", sa.Time(), nullable=True),
        sa.Column("break_end_time", sa.Time(), nullable=True),
        sa.Column("schedule_type", schedule_type, nullable=False, server_default="total"),
        sa.Column("planned_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "user_id",
            "day_date",
            "start_time",
            "end_time",
            name="uq_scheduled_shifts_slot",
        ),
    )

    op.create_table(
        "daily_workdays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("scheduled_shift_id", sa.Integer(), nullable=True),
        sa.Column("start_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worked_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", workday_status, nullable=False, server_default="open"),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["scheduled_shift_id"], ["scheduled_shifts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "day_date", name="uq_daily_workdays_user_day"),
    )
    op.create_index("ix_daily_workdays_user_id", "daily_workdays", ["user_id"])
    op.create_index("ix_daily_workdays_day_date", "daily_workdays", ["day_date"])

    op.create_table(
        "clock_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("daily_workday_id", sa.Integer(), nullable=True),
        sa.Column("type", clock_event_type, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", clock_event_source, nullable=False),
        sa.Column("origin", clock_event_origin, nullable=False, server_default="GENUINE"),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["daily_workday_id"], ["daily_workdays.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_clock_events_user_ts", "clock_events", ["user_id", "ts_utc"])
    op.create_index("ix_clock_events_daily_workday_id", "clock_events", ["daily_workday_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_clock_events_daily_workday_id", table_name="clock_events")
    op.drop_index("ix_clock_events_user_ts", table_name="clock_events")
    op.drop_table("clock_events")
    op.drop_index("ix_daily_workdays_day_date", table_name="daily_workdays")
    op.drop_index("ix_daily_workdays_user_id", table_name="daily_workdays")
    op.drop_table("daily_workdays")
    op.drop_table("scheduled_shifts")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
