from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from genbill.core.actors import Actor, Role
from genbill.db import models
from genbill.db.base import Base
from genbill.repositories.bills import BILL_NUMBER_COUNTER

ADMIN = Actor(id=1, role=Role.ADMINISTRATOR)


def memory_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return _prepare(engine)


def file_session_factory(path: str) -> sessionmaker:
    """File database whose transactions take the write lock up front.

    pysqlite defers BEGIN until the first write, which lets two readers
    interleave before either updates; BEGIN IMMEDIATE serializes them.
    """
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return _prepare(engine)


def _prepare(engine) -> sessionmaker:
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    with factory() as db:
        db.add(models.BillNumberCounter(name=BILL_NUMBER_COUNTER, last_value=0))
        db.commit()
    return factory


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def seed_zone(
    factory: sessionmaker,
    *,
    name: str = "Zone A",
    client_id: int | None = 300,
    operator_id: int | None = None,
) -> int:
    with factory() as db:
        zone = models.Zone(name=name, client_id=client_id, assigned_operator_id=operator_id)
        db.add(zone)
        db.commit()
        return zone.id


def seed_generator(
    factory: sessionmaker,
    *,
    zone_id: int | None,
    name: str = "G1",
    kva: str = "100",
    status: str = models.GeneratorStatus.OFFLINE.value,
) -> int:
    with factory() as db:
        generator = models.Generator(
            name=name,
            zone_id=zone_id,
            kva=Decimal(kva),
            status=status,
            total_runtime_hours=Decimal("0"),
        )
        db.add(generator)
        db.commit()
        return generator.id


def seed_entry(
    factory: sessionmaker,
    *,
    generator_id: int,
    zone_id: int | None,
    timestamp: datetime,
    fuel: str | None = None,
    runtime: str | None = None,
    action: str = models.UsageAction.STOP.value,
    operator_id: int = 200,
) -> int:
    with factory() as db:
        entry = models.UsageLogEntry(
            generator_id=generator_id,
            zone_id=zone_id,
            operator_id=operator_id,
            action=action,
            timestamp=timestamp,
            fuel_consumed_liters=Decimal(fuel) if fuel is not None else None,
            runtime_hours=Decimal(runtime) if runtime is not None else None,
            attachments=[],
        )
        db.add(entry)
        db.commit()
        return entry.id


def seed_price(
    factory: sessionmaker,
    *,
    price: str,
    effective_date: date,
    end_date: date | None = None,
    is_active: bool = True,
) -> int:
    with factory() as db:
        version = models.FuelPriceVersion(
            price_per_unit=Decimal(price),
            effective_date=effective_date,
            end_date=end_date,
            is_active=is_active,
        )
        db.add(version)
        db.commit()
        return version.id
