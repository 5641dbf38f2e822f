from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from genbill.core.actors import Actor, Role
from genbill.core.errors import (
    NO_ACTIVE_FUEL_PRICE,
    AccessDeniedError,
    ConflictError,
    PersistenceError,
    PreconditionFailedError,
    ValidationError,
)
from genbill.db.models import FuelPriceVersion
from genbill.repositories.fuel_prices import (
    close_fuel_price_version,
    create_fuel_price_version,
    get_active_fuel_price,
    list_fuel_price_versions,
    list_versions_overlapping,
)
from genbill.services.access_scope import ensure_admin


class FuelPriceService:
    def __init__(self, *, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._logger = logging.getLogger("genbill.fuel_prices")

    def set_active_price(
        self,
        price: Decimal | str | float | None,
        effective_date: date | None,
        actor: Actor,
    ) -> FuelPriceVersion:
        ensure_admin(actor, action="set fuel prices")
        price_per_unit = _parse_price(price)
        if effective_date is None:
            raise ValidationError("effective_date is required")

        with self._session_factory() as db:
            try:
                current = get_active_fuel_price(db, for_update=True)
                if current is not None and effective_date < current.effective_date:
                    raise ValidationError(
                        f"effective_date {effective_date.isoformat()} precedes the active price's "
                        f"effective_date {current.effective_date.isoformat()}"
                    )
                if current is not None:
                    close_fuel_price_version(db, current, end_date=effective_date)
                version = create_fuel_price_version(
                    db,
                    price_per_unit=price_per_unit,
                    effective_date=effective_date,
                    created_by=actor.id,
                )
                db.commit()
                db.refresh(version)
            except ValidationError:
                db.rollback()
                raise
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("Another fuel price change was committed concurrently") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to set the active fuel price") from exc

        self._logger.info(
            "fuel price rollover id=%s price_per_unit=%s effective_date=%s previous_id=%s admin_id=%s",
            version.id,
            version.price_per_unit,
            version.effective_date.isoformat(),
            current.id if current is not None else None,
            actor.id,
        )
        return version

    def get_active_price(self) -> FuelPriceVersion:
        with self._session_factory() as db:
            try:
                return require_active_price(db)
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to load the active fuel price") from exc

    def list_versions(self, actor: Actor) -> list[FuelPriceVersion]:
        if actor.role not in (Role.ADMINISTRATOR, Role.CLIENT):
            raise AccessDeniedError("Only administrators and clients can view fuel prices")
        with self._session_factory() as db:
            try:
                return list_fuel_price_versions(db)
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to list fuel prices") from exc

    def price_for_date(self, day: date) -> FuelPriceVersion | None:
        with self._session_factory() as db:
            try:
                versions = list_versions_overlapping(db, start=day, end=day)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load the fuel price for {day.isoformat()}") from exc
        return version_for_date(versions, day)


def require_active_price(db: Session) -> FuelPriceVersion:
    version = get_active_fuel_price(db)
    if version is None:
        raise PreconditionFailedError(NO_ACTIVE_FUEL_PRICE, "No active fuel price found")
    return version


def version_for_date(versions: list[FuelPriceVersion], day: date) -> FuelPriceVersion | None:
    match: FuelPriceVersion | None = None
    for version in versions:
        if version.effective_date > day:
            continue
        if version.end_date is not None and version.end_date <= day:
            continue
        if match is None or version.effective_date >= match.effective_date:
            match = version
    return match


def _parse_price(price: Decimal | str | float | None) -> Decimal:
    if price is None:
        raise ValidationError("price_per_unit is required")
    try:
        value = price if isinstance(price, Decimal) else Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid price '{price}'") from None
    if not value.is_finite() or value <= 0:
        raise ValidationError("price_per_unit must be greater than zero")
    return value
