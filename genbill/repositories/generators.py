from __future__ import annotations

from collections.abc import Collection
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from genbill.db.models import Generator, GeneratorStatus, UsageLogEntry


def get_generator(db: Session, generator_id: int) -> Generator | None:
    return db.get(Generator, generator_id)


def list_generators(
    db: Session,
    *,
    zone_ids: Collection[int] | None = None,
    status: str | None = None,
) -> list[Generator]:
    statement = select(Generator)
    if zone_ids is not None:
        if not zone_ids:
            return []
        statement = statement.where(Generator.zone_id.in_(list(zone_ids)))
    if status is not None:
        statement = statement.where(Generator.status == status)
    return list(db.scalars(statement.order_by(Generator.zone_id.asc(), Generator.id.asc())))


def list_generators_in_zone(db: Session, zone_id: int) -> list[Generator]:
    return list(
        db.scalars(
            select(Generator).where(Generator.zone_id == zone_id).order_by(Generator.id.asc())
        )
    )


def create_generator(
    db: Session,
    *,
    name: str,
    kva: Decimal,
    zone_id: int | None,
    fuel_type: str = "diesel",
    fuel_capacity_liters: Decimal | None = None,
    current_fuel_level: Decimal | None = None,
) -> Generator:
    generator = Generator(
        name=name,
        kva=kva,
        zone_id=zone_id,
        status=GeneratorStatus.OFFLINE.value,
        fuel_type=fuel_type,
        fuel_capacity_liters=fuel_capacity_liters,
        current_fuel_level=current_fuel_level,
        total_runtime_hours=Decimal("0"),
    )
    db.add(generator)
    db.flush()
    return generator


def apply_status_transition(
    db: Session,
    *,
    generator_id: int,
    target_status: str,
    operator_id: int,
    runtime_hours: Decimal | None = None,
    fuel_level_after: Decimal | None = None,
) -> bool:
    """Move a generator to ``target_status`` unless it is already there.

    Single conditional UPDATE keyed by id, so two concurrent identical
    transitions cannot both succeed. Returns False when no row changed.
    """
    values: dict[str, object] = {
        "status": target_status,
        "last_operator_id": operator_id,
    }
    if runtime_hours is not None:
        values["total_runtime_hours"] = Generator.total_runtime_hours + runtime_hours
    if fuel_level_after is not None:
        values["current_fuel_level"] = fuel_level_after

    result = db.execute(
        update(Generator)
        .where(Generator.id == generator_id, Generator.status != target_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


def apply_metrics_update(
    db: Session,
    *,
    generator_id: int,
    operator_id: int,
    runtime_hours: Decimal | None = None,
    fuel_level_after: Decimal | None = None,
) -> None:
    values: dict[str, object] = {"last_operator_id": operator_id}
    if runtime_hours is not None:
        values["total_runtime_hours"] = Generator.total_runtime_hours + runtime_hours
    if fuel_level_after is not None:
        values["current_fuel_level"] = fuel_level_after
    db.execute(
        update(Generator)
        .where(Generator.id == generator_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def assign_generators_to_zone(db: Session, *, generator_ids: Collection[int], zone_id: int) -> int:
    if not generator_ids:
        return 0
    result = db.execute(
        update(Generator)
        .where(Generator.id.in_(list(generator_ids)))
        .values(zone_id=zone_id)
        .execution_options(synchronize_session="fetch")
    )
    return max(0, result.rowcount or 0)


def detach_generator(db: Session, generator: Generator) -> None:
    generator.zone_id = None
    generator.status = GeneratorStatus.OFFLINE.value
    db.add(generator)
    db.flush()


def delete_generator(db: Session, generator_id: int) -> None:
    db.execute(delete(Generator).where(Generator.id == generator_id))


def generator_ids_with_entries(db: Session, generator_ids: Collection[int]) -> set[int]:
    if not generator_ids:
        return set()
    rows = db.scalars(
        select(UsageLogEntry.generator_id)
        .where(UsageLogEntry.generator_id.in_(list(generator_ids)))
        .group_by(UsageLogEntry.generator_id)
    )
    return set(rows)


def count_entries_for_generator(db: Session, generator_id: int) -> int:
    return (
        db.scalar(
            select(func.count(UsageLogEntry.id)).where(UsageLogEntry.generator_id == generator_id)
        )
        or 0
    )
