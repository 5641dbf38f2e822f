from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from genbill.core.actors import Actor
from genbill.core.config import Settings
from genbill.core.errors import (
    NO_GENERATORS_IN_ZONE,
    ConflictError,
    DomainError,
    NotFoundError,
    PersistenceError,
    PreconditionFailedError,
    ValidationError,
)
from genbill.db.models import Bill, BillLineItem, BillStatus, FuelPriceVersion
from genbill.repositories.bills import (
    allocate_bill_sequence,
    create_bill,
    format_bill_number,
    get_bill,
    list_bills,
    mark_overdue_bills,
    transition_bill_status,
)
from genbill.repositories.fuel_prices import list_versions_overlapping
from genbill.repositories.generators import list_generators_in_zone
from genbill.repositories.usage_logs import list_entries_in_window
from genbill.repositories.zones import get_zone
from genbill.services.access_scope import ensure_admin, resolve_scope
from genbill.services.fuel_prices import require_active_price, version_for_date

CENT = Decimal("0.01")
MILLI = Decimal("0.001")
ZERO = Decimal("0")

ALLOWED_STATUS_SOURCES: dict[BillStatus, frozenset[str]] = {
    BillStatus.SENT: frozenset({BillStatus.PENDING.value}),
    BillStatus.PAID: frozenset(
        {BillStatus.PENDING.value, BillStatus.SENT.value, BillStatus.OVERDUE.value}
    ),
}


class MeteredEntry(Protocol):
    timestamp: datetime
    runtime_hours: Decimal | None
    fuel_consumed_liters: Decimal | None


@dataclass(frozen=True)
class LineItemComputation:
    generator_id: int
    generator_name: str
    fuel_consumed: Decimal
    runtime_hours: Decimal
    fuel_cost: Decimal


@dataclass(frozen=True)
class BillComputation:
    line_items: list[LineItemComputation]
    total_fuel_consumed: Decimal
    total_runtime_hours: Decimal
    fuel_cost: Decimal
    service_fee: Decimal
    total_amount: Decimal


def compute_line_item(
    *,
    generator_id: int,
    generator_name: str,
    entries: Iterable[MeteredEntry],
    price_for_day: Callable[[date], Decimal],
) -> LineItemComputation:
    fuel_consumed = ZERO
    runtime_hours = ZERO
    fuel_cost = ZERO
    for entry in entries:
        fuel = _decimal(entry.fuel_consumed_liters)
        fuel_consumed += fuel
        runtime_hours += _decimal(entry.runtime_hours)
        if fuel:
            fuel_cost += fuel * price_for_day(_utc_date(entry.timestamp))
    return LineItemComputation(
        generator_id=generator_id,
        generator_name=generator_name,
        fuel_consumed=fuel_consumed.quantize(MILLI, rounding=ROUND_HALF_UP),
        runtime_hours=runtime_hours.quantize(MILLI, rounding=ROUND_HALF_UP),
        fuel_cost=fuel_cost.quantize(CENT, rounding=ROUND_HALF_UP),
    )


def summarize_bill(line_items: list[LineItemComputation], service_fee_rate: Decimal) -> BillComputation:
    fuel_cost = sum((item.fuel_cost for item in line_items), ZERO)
    service_fee = (fuel_cost * service_fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    return BillComputation(
        line_items=line_items,
        total_fuel_consumed=sum((item.fuel_consumed for item in line_items), ZERO),
        total_runtime_hours=sum((item.runtime_hours for item in line_items), ZERO),
        fuel_cost=fuel_cost,
        service_fee=service_fee,
        total_amount=fuel_cost + service_fee,
    )


class BillingService:
    def __init__(self, *, settings: Settings, session_factory: sessionmaker) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._logger = logging.getLogger("genbill.billing")

    def generate_bill(
        self,
        zone_id: int,
        period_start: datetime,
        period_end: datetime,
        actor: Actor,
    ) -> Bill:
        ensure_admin(actor, action="create bills")
        period_start = _as_utc(period_start)
        period_end = _as_utc(period_end)
        if period_start > period_end:
            raise ValidationError("Billing period start must not be after its end")

        with self._session_factory() as db:
            try:
                zone = get_zone(db, zone_id)
                if zone is None:
                    raise NotFoundError(f"Zone {zone_id} not found")
                if zone.client_id is None:
                    raise NotFoundError(f"Zone {zone_id} has no client to bill")

                active_price = require_active_price(db)
                generators = list_generators_in_zone(db, zone_id)
                if not generators:
                    raise PreconditionFailedError(
                        NO_GENERATORS_IN_ZONE, f"No generators found in zone {zone_id}"
                    )

                price_for_day = self._price_lookup(db, active_price, period_start, period_end)
                computation = summarize_bill(
                    [
                        compute_line_item(
                            generator_id=generator.id,
                            generator_name=generator.name,
                            entries=list_entries_in_window(
                                db,
                                generator_id=generator.id,
                                start=period_start,
                                end=period_end,
                            ),
                            price_for_day=price_for_day,
                        )
                        for generator in generators
                    ],
                    self._settings.service_fee_rate,
                )

                sequence = allocate_bill_sequence(db)
                bill = create_bill(
                    db,
                    bill=Bill(
                        zone_id=zone.id,
                        client_id=zone.client_id,
                        billing_period_start=period_start.date(),
                        billing_period_end=period_end.date(),
                        total_fuel_consumed=computation.total_fuel_consumed,
                        total_runtime_hours=computation.total_runtime_hours,
                        fuel_cost=computation.fuel_cost,
                        service_fee=computation.service_fee,
                        total_amount=computation.total_amount,
                        fuel_price_version_id=active_price.id,
                        bill_number=format_bill_number(
                            self._settings.bill_number_prefix,
                            sequence,
                            self._settings.bill_number_width,
                        ),
                        status=BillStatus.PENDING.value,
                        due_date=period_end.date() + timedelta(days=self._settings.bill_due_days),
                        created_by=actor.id,
                    ),
                    line_items=[
                        BillLineItem(
                            generator_id=item.generator_id,
                            generator_name=item.generator_name,
                            fuel_consumed=item.fuel_consumed,
                            runtime_hours=item.runtime_hours,
                            fuel_cost=item.fuel_cost,
                        )
                        for item in computation.line_items
                    ],
                )
                db.commit()
            except DomainError:
                db.rollback()
                raise
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("Bill number already allocated, retry the request") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to create bill for zone {zone_id}") from exc

            try:
                bill = get_bill(db, bill.id) or bill
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to reload bill {bill.id}") from exc

        self._logger.info(
            "generated bill id=%s number=%s zone_id=%s period=%s..%s total_amount=%s generators=%s",
            bill.id,
            bill.bill_number,
            zone_id,
            bill.billing_period_start.isoformat(),
            bill.billing_period_end.isoformat(),
            bill.total_amount,
            len(computation.line_items),
        )
        return bill

    def get_bill(self, bill_id: int, actor: Actor) -> Bill:
        with self._session_factory() as db:
            try:
                bill = get_bill(db, bill_id) if resolve_scope(db, actor).allows_bill(bill_id) else None
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load bill {bill_id}") from exc
            if bill is None:
                raise NotFoundError(f"Bill {bill_id} not found")
            return bill

    def list_bills(
        self,
        actor: Actor,
        *,
        zone_id: int | None = None,
        status: str | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> list[Bill]:
        if status is not None and status not in {item.value for item in BillStatus}:
            raise ValidationError(f"Unknown bill status '{status}'")
        with self._session_factory() as db:
            try:
                return list_bills(
                    db,
                    bill_ids=resolve_scope(db, actor).bill_filter(),
                    zone_id=zone_id,
                    status=status,
                    period_start=period_start,
                    period_end=period_end,
                )
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to list bills") from exc

    def update_bill_status(self, bill_id: int, status: str, actor: Actor) -> Bill:
        ensure_admin(actor, action="update bill status")
        try:
            target = BillStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown bill status '{status}'") from None
        sources = ALLOWED_STATUS_SOURCES.get(target)
        if sources is None:
            raise ValidationError(f"Bills cannot be set to '{target.value}' directly")

        now = datetime.now(timezone.utc)
        with self._session_factory() as db:
            try:
                bill = get_bill(db, bill_id)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load bill {bill_id}") from exc
            if bill is None:
                raise NotFoundError(f"Bill {bill_id} not found")
            current_status = bill.status
            try:
                changed = transition_bill_status(
                    db,
                    bill_id=bill_id,
                    from_statuses=sources,
                    to_status=target.value,
                    sent_date=now if target is BillStatus.SENT else None,
                    paid_date=now if target is BillStatus.PAID else None,
                )
                if changed:
                    db.commit()
                else:
                    db.rollback()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to update bill {bill_id}") from exc
            if not changed:
                raise ConflictError(
                    f"Bill {bill_id} cannot move from '{current_status}' to '{target.value}'"
                )
            try:
                db.refresh(bill)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to reload bill {bill_id}") from exc

        self._logger.info(
            "bill status id=%s from=%s to=%s admin_id=%s",
            bill_id,
            current_status,
            target.value,
            actor.id,
        )
        return bill

    def sweep_overdue(self, today: date | None = None) -> int:
        today = today or datetime.now(timezone.utc).date()
        with self._session_factory() as db:
            try:
                changed = mark_overdue_bills(db, today=today)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to mark overdue bills") from exc
        if changed:
            self._logger.info("marked bills overdue count=%s today=%s", changed, today.isoformat())
        return changed

    def _price_lookup(
        self,
        db,
        active_price: FuelPriceVersion,
        period_start: datetime,
        period_end: datetime,
    ) -> Callable[[date], Decimal]:
        if self._settings.billing_price_mode == "active":
            return lambda _day: active_price.price_per_unit

        versions = list_versions_overlapping(db, start=period_start.date(), end=period_end.date())

        def price_for_day(day: date) -> Decimal:
            version = version_for_date(versions, day)
            return (version or active_price).price_per_unit

        return price_for_day


def _decimal(value: Decimal | float | int | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_date(value: datetime) -> date:
    return _as_utc(value).date()
