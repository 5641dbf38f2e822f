from __future__ import annotations

from collections.abc import Collection

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from genbill.db.models import Generator, Zone


def get_zone(db: Session, zone_id: int) -> Zone | None:
    return db.get(Zone, zone_id)


def get_zone_for_update(db: Session, zone_id: int) -> Zone | None:
    return db.scalars(select(Zone).where(Zone.id == zone_id).with_for_update()).first()


def list_zones(db: Session, *, zone_ids: Collection[int] | None = None) -> list[Zone]:
    statement = select(Zone)
    if zone_ids is not None:
        if not zone_ids:
            return []
        statement = statement.where(Zone.id.in_(list(zone_ids)))
    return list(db.scalars(statement.order_by(Zone.name.asc(), Zone.id.asc())))


def create_zone(
    db: Session,
    *,
    name: str,
    location: str | None,
    description: str | None,
    client_id: int | None,
) -> Zone:
    zone = Zone(
        name=name,
        location=location,
        description=description,
        client_id=client_id,
    )
    db.add(zone)
    db.flush()
    return zone


def release_operator(db: Session, operator_id: int, *, keep_zone_id: int | None = None) -> int:
    statement = (
        update(Zone)
        .where(Zone.assigned_operator_id == operator_id)
        .values(assigned_operator_id=None)
        .execution_options(synchronize_session="fetch")
    )
    if keep_zone_id is not None:
        statement = statement.where(Zone.id != keep_zone_id)
    result = db.execute(statement)
    return max(0, result.rowcount or 0)


def count_generators_in_zone(db: Session, zone_id: int) -> int:
    return db.scalar(select(func.count(Generator.id)).where(Generator.zone_id == zone_id)) or 0


def delete_zone(db: Session, zone_id: int) -> None:
    db.execute(delete(Zone).where(Zone.id == zone_id))
