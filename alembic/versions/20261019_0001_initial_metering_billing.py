"""initial metering and billing schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "zones",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_id", sa.BigInteger(), nullable=True),
        sa.Column("assigned_operator_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_zones_client_id", "zones", ["client_id"])
    op.create_index(
        "uq_zones_assigned_operator_id",
        "zones",
        ["assigned_operator_id"],
        unique=True,
        postgresql_where=sa.text("assigned_operator_id IS NOT NULL"),
    )

    op.create_table(
        "generators",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), nullable=True),
        sa.Column("kva", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="offline", nullable=False),
        sa.Column("last_operator_id", sa.BigInteger(), nullable=True),
        sa.Column("fuel_type", sa.String(length=32), server_default="diesel", nullable=False),
        sa.Column("fuel_capacity_liters", sa.Numeric(14, 3), nullable=True),
        sa.Column("current_fuel_level", sa.Numeric(14, 3), nullable=True),
        sa.Column("total_runtime_hours", sa.Numeric(14, 3), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('offline','running','maintenance','fault')",
            name="ck_generators_status",
        ),
        sa.CheckConstraint("kva > 0", name="ck_generators_kva_positive"),
        sa.ForeignKeyConstraint(["zone_id"], ["zones.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generators_zone_id", "generators", ["zone_id"])

    op.create_table(
        "usage_log_entries",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("generator_id", sa.BigInteger(), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), nullable=True),
        sa.Column("operator_id", sa.BigInteger(), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("runtime_hours", sa.Numeric(14, 3), nullable=True),
        sa.Column("fuel_consumed_liters", sa.Numeric(14, 3), nullable=True),
        sa.Column("fuel_added_liters", sa.Numeric(14, 3), nullable=True),
        sa.Column("fuel_level_before", sa.Numeric(14, 3), nullable=True),
        sa.Column("fuel_level_after", sa.Numeric(14, 3), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("fault_description", sa.Text(), nullable=True),
        sa.Column("maintenance_actions", sa.Text(), nullable=True),
        sa.Column(
            "attachments",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("corrected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("corrected_by", sa.BigInteger(), nullable=True),
        sa.CheckConstraint(
            "action IN ('start','stop','maintenance','fault','fuel_refill')",
            name="ck_usage_log_entries_action",
        ),
        sa.ForeignKeyConstraint(["generator_id"], ["generators.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_usage_log_entries_generator_id_ts",
        "usage_log_entries",
        ["generator_id", "timestamp"],
    )
    op.create_index(
        "ix_usage_log_entries_zone_id_ts",
        "usage_log_entries",
        ["zone_id", "timestamp"],
    )

    op.create_table(
        "fuel_price_versions",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("price_per_unit", sa.Numeric(12, 4), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("price_per_unit > 0", name="ck_fuel_price_versions_price_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= effective_date",
            name="ck_fuel_price_versions_interval",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_fuel_price_versions_single_active",
        "fuel_price_versions",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), nullable=False),
        sa.Column("client_id", sa.BigInteger(), nullable=False),
        sa.Column("billing_period_start", sa.Date(), nullable=False),
        sa.Column("billing_period_end", sa.Date(), nullable=False),
        sa.Column("total_fuel_consumed", sa.Numeric(14, 3), nullable=False),
        sa.Column("total_runtime_hours", sa.Numeric(14, 3), nullable=False),
        sa.Column("fuel_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("service_fee", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("fuel_price_version_id", sa.BigInteger(), nullable=True),
        sa.Column("bill_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("sent_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','sent','paid','overdue')",
            name="ck_bills_status",
        ),
        sa.CheckConstraint("billing_period_end >= billing_period_start", name="ck_bills_period"),
        sa.ForeignKeyConstraint(["zone_id"], ["zones.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(
            ["fuel_price_version_id"],
            ["fuel_price_versions.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bill_number", name="uq_bills_bill_number"),
    )
    op.create_index("ix_bills_zone_id", "bills", ["zone_id"])
    op.create_index("ix_bills_client_id", "bills", ["client_id"])
    op.create_index("ix_bills_status_due_date", "bills", ["status", "due_date"])

    op.create_table(
        "bill_line_items",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("bill_id", sa.BigInteger(), nullable=False),
        sa.Column("generator_id", sa.BigInteger(), nullable=False),
        sa.Column("generator_name", sa.String(length=128), nullable=False),
        sa.Column("fuel_consumed", sa.Numeric(14, 3), nullable=False),
        sa.Column("runtime_hours", sa.Numeric(14, 3), nullable=False),
        sa.Column("fuel_cost", sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bill_id", "generator_id", name="uq_bill_line_items_bill_generator"),
    )

    op.create_table(
        "bill_number_counters",
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.Column("last_value", sa.BigInteger(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )
    op.execute("INSERT INTO bill_number_counters (name, last_value) VALUES ('bills', 0)")


def downgrade() -> None:
    op.drop_table("bill_number_counters")
    op.drop_table("bill_line_items")
    op.drop_index("ix_bills_status_due_date", table_name="bills")
    op.drop_index("ix_bills_client_id", table_name="bills")
    op.drop_index("ix_bills_zone_id", table_name="bills")
    op.drop_table("bills")
    op.drop_index("uq_fuel_price_versions_single_active", table_name="fuel_price_versions")
    op.drop_table("fuel_price_versions")
    op.drop_index("ix_usage_log_entries_zone_id_ts", table_name="usage_log_entries")
    op.drop_index("ix_usage_log_entries_generator_id_ts", table_name="usage_log_entries")
    op.drop_table("usage_log_entries")
    op.drop_index("ix_generators_zone_id", table_name="generators")
    op.drop_table("generators")
    op.drop_index("uq_zones_assigned_operator_id", table_name="zones")
    op.drop_index("ix_zones_client_id", table_name="zones")
    op.drop_table("zones")
