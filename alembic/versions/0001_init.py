"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

WORK_STATUSES = (
    "open",
    "taken",
    "approved",
    "unavailable",
    "dispatch",
    "inprogress",
    "onhold_parts",
    "escalated",
    "rescheduled",
    "completed",
    "confirm",
)


def _status_check(column: str, name: str) -> sa.CheckConstraint:
    values = ", ".join(f"'{value}'" for value in WORK_STATUSES)
    return sa.CheckConstraint(f"{column} IN ({values})", name=name)


def _base_columns():
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("specialization", sa.JSON(), nullable=False),
        sa.Column("location", sa.String(length=300), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("last_location_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("on_duty", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("duty_status", sa.String(length=30), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("role IN ('CLIENT', 'TECHNICIAN', 'ADMIN')", name="ck_users_role"),
    )
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_phone", "users", ["phone"])

    op.create_table(
        "work_requests",
        *_base_columns(),
        sa.Column("token", sa.String(length=20), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_technician_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("service_type", sa.String(length=120), nullable=False),
        sa.Column("specialization", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=500), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="open"),
        sa.Column("service_charge", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("before_photo", sa.String(length=1000), nullable=True),
        sa.Column("after_photo", sa.String(length=1000), nullable=True),
        sa.Column("selected_route_index", sa.Integer(), nullable=True),
        sa.Column("payment", sa.JSON(), nullable=False),
        sa.Column("bill_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _status_check("status", "ck_work_requests_status"),
        sa.CheckConstraint("service_charge >= 0", name="ck_work_requests_service_charge"),
        sa.CheckConstraint(
            "status IN ('open', 'unavailable') OR assigned_technician_id IS NOT NULL",
            name="ck_work_requests_assignee",
        ),
    )
    op.create_index("ix_work_requests_token", "work_requests", ["token"], unique=True)
    op.create_index("ix_work_requests_client_id", "work_requests", ["client_id"])
    op.create_index("ix_work_requests_assigned_technician_id", "work_requests", ["assigned_technician_id"])
    op.create_index("ix_work_requests_service_type", "work_requests", ["service_type"])
    op.create_index("ix_work_requests_status", "work_requests", ["status"])

    op.create_table(
        "bookings",
        *_base_columns(),
        sa.Column("work_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("technician_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("service_type", sa.String(length=120), nullable=False),
        sa.Column("service_charge", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=500), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="taken"),
        _status_check("status", "ck_bookings_status"),
    )
    op.create_index("ix_bookings_work_id", "bookings", ["work_id"])
    op.create_index("ix_bookings_client_id", "bookings", ["client_id"])
    op.create_index("ix_bookings_technician_id", "bookings", ["technician_id"])
    op.create_index("ix_bookings_service_type", "bookings", ["service_type"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_table(
        "bills",
        *_base_columns(),
        sa.Column("work_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("technician_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("bill_number", sa.String(length=40), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("service_charge", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("payment_method", sa.String(length=10), nullable=False),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="sent"),
        sa.Column("upi_uri", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_error", sa.Text(), nullable=True),
        sa.CheckConstraint("payment_method IN ('cash', 'upi')", name="ck_bills_payment_method"),
        sa.CheckConstraint("total_amount >= 0", name="ck_bills_total_amount"),
        sa.CheckConstraint("service_charge >= 0", name="ck_bills_service_charge"),
    )
    op.create_index("ix_bills_work_id", "bills", ["work_id"], unique=True)
    op.create_index("ix_bills_bill_number", "bills", ["bill_number"], unique=True)
    op.create_index("ix_bills_technician_id", "bills", ["technician_id"])
    op.create_index("ix_bills_client_id", "bills", ["client_id"])
    op.create_index("ix_bills_payment_status", "bills", ["payment_status"])

    op.create_table(
        "notifications",
        *_base_columns(),
        sa.Column("work_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient_role", sa.String(length=20), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(length=20), nullable=False, server_default="info"),
        sa.Column("deep_link", sa.String(length=300), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_work_id", "notifications", ["work_id"])
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_recipient_role", "notifications", ["recipient_role"])
    op.create_index("ix_notifications_event_type", "notifications", ["event_type"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])

    op.create_table(
        "admin_notifications",
        *_base_columns(),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("work_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("technician_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("issue_type", sa.String(length=40), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
    )
    op.create_index("ix_admin_notifications_type", "admin_notifications", ["type"])
    op.create_index("ix_admin_notifications_work_id", "admin_notifications", ["work_id"])
    op.create_index("ix_admin_notifications_technician_id", "admin_notifications", ["technician_id"])

    op.create_table(
        "work_status_history",
        *_base_columns(),
        sa.Column("work_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_status", sa.String(length=30), nullable=True),
        sa.Column("to_status", sa.String(length=30), nullable=False),
        sa.Column("changed_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("changed_by_role", sa.String(length=20), nullable=True),
        sa.Column("comment", sa.String(length=400), nullable=True),
    )
    op.create_index("ix_work_status_history_work_id", "work_status_history", ["work_id"])

    op.create_table(
        "work_token_sequences",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("work_token_sequences")
    op.drop_table("work_status_history")
    op.drop_table("admin_notifications")
    op.drop_table("notifications")
    op.drop_table("bills")
    op.drop_table("bookings")
    op.drop_table("work_requests")
    op.drop_table("users")
