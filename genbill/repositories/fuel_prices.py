from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from genbill.db.models import FuelPriceVersion


def get_active_fuel_price(db: Session, *, for_update: bool = False) -> FuelPriceVersion | None:
    statement = select(FuelPriceVersion).where(FuelPriceVersion.is_active.is_(True))
    if for_update:
        statement = statement.with_for_update()
    return db.scalars(statement.order_by(FuelPriceVersion.id.desc())).first()


def list_fuel_price_versions(db: Session) -> list[FuelPriceVersion]:
    return list(
        db.scalars(
            select(FuelPriceVersion).order_by(
                FuelPriceVersion.effective_date.desc(),
                FuelPriceVersion.id.desc(),
            )
        )
    )


def list_versions_overlapping(db: Session, *, start: date, end: date) -> list[FuelPriceVersion]:
    """Versions whose [effective_date, end_date) interval touches [start, end]."""
    return list(
        db.scalars(
            select(FuelPriceVersion)
            .where(
                FuelPriceVersion.effective_date <= end,
                or_(FuelPriceVersion.end_date.is_(None), FuelPriceVersion.end_date > start),
            )
            .order_by(FuelPriceVersion.effective_date.asc(), FuelPriceVersion.id.asc())
        )
    )


def close_fuel_price_version(db: Session, version: FuelPriceVersion, *, end_date: date) -> None:
    version.end_date = end_date
    version.is_active = False
    db.add(version)
    # the single-active index must see the old row released before the insert
    db.flush()


def create_fuel_price_version(
    db: Session,
    *,
    price_per_unit: Decimal,
    effective_date: date,
    created_by: int | None,
) -> FuelPriceVersion:
    version = FuelPriceVersion(
        price_per_unit=price_per_unit,
        effective_date=effective_date,
        end_date=None,
        is_active=True,
        created_by=created_by,
    )
    db.add(version)
    db.flush()
    return version
