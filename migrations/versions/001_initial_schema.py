"""Initial schema: customers, drivers, bookings with history, disputes, policy.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "driver_status": ("available", "busy", "offline"),
    "booking_status": (
        "pending",
        "confirmed",
        "driver_assigned",
        "driver_en_route",
        "in_progress",
        "completed",
        "cancelled",
    ),
    "payment_method": ("cash", "card", "promptpay", "bank_transfer"),
    "payment_status": ("pending", "paid", "failed", "refunded"),
    "actor": ("customer", "driver", "admin", "system"),
    "fee_status": ("waived", "pending"),
    "dispute_status": ("open", "under_review", "resolved", "rejected"),
    "dispute_reason": (
        "wrong_charge",
        "service_not_provided",
        "driver_misconduct",
        "safety_concern",
        "wrong_route",
        "vehicle_issue",
        "unfair_fee",
        "other",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; several tables share them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── customers ─────────────────────────────────────────────────────
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("rating", sa.Float, nullable=False, server_default="4.0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("vehicle_plate", sa.String(32), nullable=False, server_default=""),
        sa.Column("vehicle_model", sa.String(64), nullable=False, server_default=""),
        sa.Column("vehicle_color", sa.String(32), nullable=False, server_default=""),
        sa.Column(
            "status", _enum("driver_status"), nullable=False, server_default="offline"
        ),
        sa.Column(
            "customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=True
        ),
        sa.Column("current_booking_id", sa.Integer, nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rating", sa.Float, nullable=False, server_default="4.0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("total_tips", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("dropoff_location", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("pickup_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("vehicle_name", sa.String(120), nullable=False, server_default=""),
        sa.Column("fare", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "payment_method",
            _enum("payment_method"),
            nullable=False,
            server_default="cash",
        ),
        sa.Column(
            "payment_status",
            _enum("payment_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "status", _enum("booking_status"), nullable=False, server_default="pending"
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("driver_name", sa.String(120), nullable=True),
        sa.Column("driver_phone", sa.String(32), nullable=True),
        sa.Column("driver_vehicle_plate", sa.String(32), nullable=True),
        sa.Column("driver_vehicle_model", sa.String(64), nullable=True),
        sa.Column("driver_vehicle_color", sa.String(32), nullable=True),
        sa.Column("driver_assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_en_route_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trip_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_driver_ids", sa.JSON, nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", _enum("actor"), nullable=True),
        sa.Column("cancellation_reason", sa.String(64), nullable=True),
        sa.Column(
            "cancellation_fee", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("cancellation_fee_reason", sa.String(32), nullable=True),
        sa.Column("cancellation_fee_status", _enum("fee_status"), nullable=True),
        sa.Column("is_no_show", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("no_show_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("no_show_reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_id", sa.Integer, nullable=True),
        sa.Column("customer_rating", sa.JSON, nullable=True),
        sa.Column("driver_rating", sa.JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])

    # ── booking_status_history ────────────────────────────────────────
    op.create_table(
        "booking_status_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("status", _enum("booking_status"), nullable=False),
        sa.Column("actor", _enum("actor"), nullable=False),
        sa.Column("note", sa.Text, nullable=False, server_default=""),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "booking_id", "sequence", name="uq_history_booking_sequence"
        ),
    )
    op.create_index("idx_history_booking", "booking_status_history", ["booking_id"])

    # ── disputes ──────────────────────────────────────────────────────
    op.create_table(
        "disputes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.Integer,
            sa.ForeignKey("bookings.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("driver_id", sa.Integer, nullable=True),
        sa.Column("raised_by", _enum("actor"), nullable=False),
        sa.Column("reason", _enum("dispute_reason"), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("evidence", sa.JSON, nullable=False),
        sa.Column(
            "status", _enum("dispute_status"), nullable=False, server_default="open"
        ),
        sa.Column("resolution", sa.Text, nullable=True),
        sa.Column("resolved_by", sa.String(120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_disputes_status", "disputes", ["status"])

    # ── policy_configs ────────────────────────────────────────────────
    op.create_table(
        "policy_configs",
        sa.Column("version", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("created_by", sa.String(120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("policy_configs")
    op.drop_table("disputes")
    op.drop_table("booking_status_history")
    op.drop_table("bookings")
    op.drop_table("drivers")
    op.drop_table("customers")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
