"""Initial schema: accounts, riders, service tiers, deliveries and their logs.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = {
    "userrole": ("customer", "rider", "admin"),
    "accountstatus": ("active", "suspended", "pending"),
    "approvalstatus": ("pending", "approved", "rejected"),
    "vehicletype": ("bike", "car", "van", "truck"),
    "packageweight": ("light", "medium", "heavy"),
    "paymentmethod": ("card", "transfer", "wallet", "cash"),
    "paymentstatus": ("pending", "completed", "failed"),
    "deliverystatus": (
        "pending",
        "assigned",
        "picked_up",
        "in_transit",
        "delivered",
        "cancelled",
    ),
    "transactiontype": ("debit", "credit"),
    "transactionstatus": ("pending", "completed", "failed"),
    "notificationtype": ("delivery", "account", "system"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    # ── auth_identities ───────────────────────────────────────────────
    op.create_table(
        "auth_identities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        _created_at(),
    )

    # ── profiles ──────────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column(
            "id",
            sa.Integer,
            sa.ForeignKey("auth_identities.id"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("status", _enum("accountstatus"), nullable=False),
        sa.Column("avatar_url", sa.String(512), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_profiles_role", "profiles", ["role"])

    # ── wallets ───────────────────────────────────────────────────────
    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("profiles.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        _created_at(),
    )

    # ── riders ────────────────────────────────────────────────────────
    op.create_table(
        "riders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("profiles.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("vehicle_type", _enum("vehicletype"), nullable=False),
        sa.Column("vehicle_number", sa.String(32), nullable=False),
        sa.Column("driver_license", sa.String(64), nullable=False),
        sa.Column("bank_account", sa.String(64), nullable=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("total_deliveries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("approval_status", _enum("approvalstatus"), nullable=False),
        _created_at(),
    )
    op.create_index("idx_riders_approval", "riders", ["approval_status"])
    op.create_index("idx_riders_available", "riders", ["is_available"])

    # ── delivery_types ────────────────────────────────────────────────
    op.create_table(
        "delivery_types",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(60), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("base_price", sa.Integer, nullable=False),
        sa.Column("estimated_hours", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )

    # ── deliveries ────────────────────────────────────────────────────
    op.create_table(
        "deliveries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("riders.id"), nullable=True),
        sa.Column(
            "delivery_type_id",
            sa.Integer,
            sa.ForeignKey("delivery_types.id"),
            nullable=True,
        ),
        sa.Column("tracking_number", sa.String(32), unique=True, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(255), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("package_details", sa.String(255), nullable=False),
        sa.Column("package_weight", _enum("packageweight"), nullable=False),
        sa.Column("recipient_name", sa.String(120), nullable=False),
        sa.Column("recipient_phone", sa.String(32), nullable=False),
        sa.Column("fare_estimate", sa.Integer, nullable=False),
        sa.Column("final_fare", sa.Integer, nullable=True),
        sa.Column("payment_method", _enum("paymentmethod"), nullable=False),
        sa.Column("payment_status", _enum("paymentstatus"), nullable=False),
        sa.Column("status", _enum("deliverystatus"), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_deliveries_status", "deliveries", ["status"])
    op.create_index("idx_deliveries_customer", "deliveries", ["customer_id"])
    op.create_index("idx_deliveries_rider", "deliveries", ["rider_id"])
    op.create_index("idx_deliveries_created", "deliveries", ["created_at"])

    # ── tracking_events (no cascade: delete events before the delivery)
    op.create_table(
        "tracking_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "delivery_id",
            sa.Integer,
            sa.ForeignKey("deliveries.id"),
            nullable=False,
        ),
        sa.Column("rider_lat", sa.Float, nullable=False),
        sa.Column("rider_lng", sa.Float, nullable=False),
        sa.Column("status_update", sa.String(255), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_tracking_delivery", "tracking_events", ["delivery_id"])

    # ── transactions (ledger; delivery_id is not a FK) ───────────────
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("delivery_id", sa.Integer, nullable=True),
        sa.Column("type", _enum("transactiontype"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("status", _enum("transactionstatus"), nullable=False),
        _created_at(),
    )
    op.create_index("idx_transactions_user", "transactions", ["user_id"])
    op.create_index("idx_transactions_delivery", "transactions", ["delivery_id"])
    op.create_index(
        "idx_transactions_type_created", "transactions", ["type", "created_at"]
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("type", _enum("notificationtype"), nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])


def downgrade() -> None:
    for table in (
        "notifications",
        "transactions",
        "tracking_events",
        "deliveries",
        "delivery_types",
        "riders",
        "wallets",
        "profiles",
        "auth_identities",
    ):
        op.drop_table(table)
    for name in ENUMS:
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
