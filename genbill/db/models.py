from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from genbill.db.base import Base, IdType, JsonType


class GeneratorStatus(str, Enum):
    OFFLINE = "offline"
    RUNNING = "running"
    MAINTENANCE = "maintenance"
    FAULT = "fault"


class UsageAction(str, Enum):
    START = "start"
    STOP = "stop"
    MAINTENANCE = "maintenance"
    FAULT = "fault"
    FUEL_REFILL = "fuel_refill"


class BillStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class Zone(Base):
    __tablename__ = "zones"
    __table_args__ = (
        Index(
            "uq_zones_assigned_operator_id",
            "assigned_operator_id",
            unique=True,
            postgresql_where=text("assigned_operator_id IS NOT NULL"),
            sqlite_where=text("assigned_operator_id IS NOT NULL"),
        ),
        Index("ix_zones_client_id", "client_id"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    assigned_operator_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    generators: Mapped[list["Generator"]] = relationship(
        back_populates="zone",
        order_by="Generator.id",
    )


class Generator(Base):
    __tablename__ = "generators"
    __table_args__ = (
        CheckConstraint(
            "status IN ('offline','running','maintenance','fault')",
            name="ck_generators_status",
        ),
        CheckConstraint("kva > 0", name="ck_generators_kva_positive"),
        Index("ix_generators_zone_id", "zone_id"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    zone_id: Mapped[int | None] = mapped_column(
        IdType,
        ForeignKey("zones.id", ondelete="SET NULL"),
        nullable=True,
    )
    kva: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=GeneratorStatus.OFFLINE.value,
        server_default=GeneratorStatus.OFFLINE.value,
    )
    last_operator_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    fuel_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="diesel",
        server_default="diesel",
    )
    fuel_capacity_liters: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    current_fuel_level: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    total_runtime_hours: Mapped[Decimal] = mapped_column(
        Numeric(14, 3),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    zone: Mapped[Zone | None] = relationship(back_populates="generators")


class UsageLogEntry(Base):
    __tablename__ = "usage_log_entries"
    __table_args__ = (
        CheckConstraint(
            "action IN ('start','stop','maintenance','fault','fuel_refill')",
            name="ck_usage_log_entries_action",
        ),
        Index("ix_usage_log_entries_generator_id_ts", "generator_id", "timestamp"),
        Index("ix_usage_log_entries_zone_id_ts", "zone_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    generator_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("generators.id", ondelete="RESTRICT"),
        nullable=False,
    )
    zone_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    operator_id: Mapped[int] = mapped_column(IdType, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    runtime_hours: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    fuel_consumed_liters: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    fuel_added_liters: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    fuel_level_before: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    fuel_level_after: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    fault_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    maintenance_actions: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list] = mapped_column(
        JsonType,
        nullable=False,
        default=list,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    corrected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    corrected_by: Mapped[int | None] = mapped_column(IdType, nullable=True)


class FuelPriceVersion(Base):
    __tablename__ = "fuel_price_versions"
    __table_args__ = (
        Index(
            "uq_fuel_price_versions_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
        CheckConstraint("price_per_unit > 0", name="ck_fuel_price_versions_price_positive"),
        CheckConstraint(
            "end_date IS NULL OR end_date >= effective_date",
            name="ck_fuel_price_versions_interval",
        ),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    created_by: Mapped[int | None] = mapped_column(IdType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Bill(Base):
    __tablename__ = "bills"
    __table_args__ = (
        UniqueConstraint("bill_number", name="uq_bills_bill_number"),
        CheckConstraint(
            "status IN ('pending','sent','paid','overdue')",
            name="ck_bills_status",
        ),
        CheckConstraint(
            "billing_period_end >= billing_period_start",
            name="ck_bills_period",
        ),
        Index("ix_bills_zone_id", "zone_id"),
        Index("ix_bills_client_id", "client_id"),
        Index("ix_bills_status_due_date", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    zone_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("zones.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[int] = mapped_column(IdType, nullable=False)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_fuel_consumed: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    total_runtime_hours: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    fuel_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    fuel_price_version_id: Mapped[int | None] = mapped_column(
        IdType,
        ForeignKey("fuel_price_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    bill_number: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=BillStatus.PENDING.value,
        server_default=BillStatus.PENDING.value,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    sent_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[int | None] = mapped_column(IdType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    line_items: Mapped[list["BillLineItem"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillLineItem.id",
    )


class BillLineItem(Base):
    __tablename__ = "bill_line_items"
    __table_args__ = (
        UniqueConstraint("bill_id", "generator_id", name="uq_bill_line_items_bill_generator"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
    )
    generator_id: Mapped[int] = mapped_column(IdType, nullable=False)
    generator_name: Mapped[str] = mapped_column(String(128), nullable=False)
    fuel_consumed: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    runtime_hours: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    fuel_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    bill: Mapped[Bill] = relationship(back_populates="line_items")


class BillNumberCounter(Base):
    __tablename__ = "bill_number_counters"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_value: Mapped[int] = mapped_column(IdType, nullable=False, default=0, server_default="0")
