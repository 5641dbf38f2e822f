from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genbill.core.actors import Actor, Role
from genbill.core.errors import AccessDeniedError, PersistenceError, ValidationError
from genbill.db.models import Bill, Generator, Zone
from genbill.repositories.bills import list_bills
from genbill.repositories.generators import list_generators
from genbill.repositories.usage_logs import list_usage_log_entries
from genbill.repositories.zones import list_zones

ScopedCollection = Literal["zones", "generators", "logs", "bills"]
SCOPED_COLLECTIONS: tuple[str, ...] = ("zones", "generators", "logs", "bills")


@dataclass(frozen=True)
class ZoneRef:
    id: int
    client_id: int | None
    assigned_operator_id: int | None


@dataclass(frozen=True)
class GeneratorRef:
    id: int
    zone_id: int | None


@dataclass(frozen=True)
class BillRef:
    id: int
    zone_id: int
    client_id: int


@dataclass(frozen=True)
class AccessScope:
    unrestricted: bool
    zone_ids: frozenset[int] = frozenset()
    generator_ids: frozenset[int] = frozenset()
    bill_ids: frozenset[int] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not (self.zone_ids or self.generator_ids or self.bill_ids)

    def allows_zone(self, zone_id: int | None) -> bool:
        if self.unrestricted:
            return True
        return zone_id is not None and zone_id in self.zone_ids

    def allows_generator(self, generator_id: int) -> bool:
        return self.unrestricted or generator_id in self.generator_ids

    def allows_bill(self, bill_id: int) -> bool:
        return self.unrestricted or bill_id in self.bill_ids

    def zone_filter(self) -> frozenset[int] | None:
        # None means unfiltered; an empty set means nothing is visible
        return None if self.unrestricted else self.zone_ids

    def generator_filter(self) -> frozenset[int] | None:
        return None if self.unrestricted else self.generator_ids

    def bill_filter(self) -> frozenset[int] | None:
        return None if self.unrestricted else self.bill_ids


UNRESTRICTED = AccessScope(unrestricted=True)
EMPTY_SCOPE = AccessScope(unrestricted=False)


def build_scope(
    actor: Actor,
    *,
    zones: Iterable[ZoneRef],
    generators: Iterable[GeneratorRef],
    bills: Iterable[BillRef],
) -> AccessScope:
    if actor.role is Role.ADMINISTRATOR:
        return UNRESTRICTED

    if actor.role is Role.OPERATOR:
        zone_ids = frozenset(zone.id for zone in zones if zone.assigned_operator_id == actor.id)
        if not zone_ids:
            return EMPTY_SCOPE
        return AccessScope(
            unrestricted=False,
            zone_ids=zone_ids,
            generator_ids=frozenset(g.id for g in generators if g.zone_id in zone_ids),
            bill_ids=frozenset(b.id for b in bills if b.zone_id in zone_ids),
        )

    zone_ids = frozenset(zone.id for zone in zones if zone.client_id == actor.id)
    return AccessScope(
        unrestricted=False,
        zone_ids=zone_ids,
        generator_ids=frozenset(g.id for g in generators if g.zone_id in zone_ids),
        bill_ids=frozenset(b.id for b in bills if b.client_id == actor.id),
    )


def can_write(actor: Actor, zone: ZoneRef | None) -> bool:
    if actor.role is Role.ADMINISTRATOR:
        return True
    if actor.role is Role.OPERATOR:
        return zone is not None and zone.assigned_operator_id == actor.id
    return False


def resolve_scope(db: Session, actor: Actor) -> AccessScope:
    if actor.role is Role.ADMINISTRATOR:
        return UNRESTRICTED

    if actor.role is Role.OPERATOR:
        zone_filter = Zone.assigned_operator_id == actor.id
    else:
        zone_filter = Zone.client_id == actor.id
    zones = [
        ZoneRef(id=row.id, client_id=row.client_id, assigned_operator_id=row.assigned_operator_id)
        for row in db.execute(
            select(Zone.id, Zone.client_id, Zone.assigned_operator_id).where(zone_filter)
        )
    ]
    zone_ids = [zone.id for zone in zones]

    generators: list[GeneratorRef] = []
    if zone_ids:
        generators = [
            GeneratorRef(id=row.id, zone_id=row.zone_id)
            for row in db.execute(
                select(Generator.id, Generator.zone_id).where(Generator.zone_id.in_(zone_ids))
            )
        ]

    if actor.role is Role.OPERATOR:
        bill_statement = select(Bill.id, Bill.zone_id, Bill.client_id).where(Bill.zone_id.in_(zone_ids))
    else:
        bill_statement = select(Bill.id, Bill.zone_id, Bill.client_id).where(Bill.client_id == actor.id)
    bills: list[BillRef] = []
    if zone_ids or actor.role is Role.CLIENT:
        bills = [
            BillRef(id=row.id, zone_id=row.zone_id, client_id=row.client_id)
            for row in db.execute(bill_statement)
        ]

    return build_scope(actor, zones=zones, generators=generators, bills=bills)


def zone_ref(zone: Zone | None) -> ZoneRef | None:
    if zone is None:
        return None
    return ZoneRef(id=zone.id, client_id=zone.client_id, assigned_operator_id=zone.assigned_operator_id)


def ensure_can_write(actor: Actor, zone: Zone | None, *, what: str) -> None:
    if not can_write(actor, zone_ref(zone)):
        raise AccessDeniedError(f"Actor {actor.id} ({actor.role.value}) may not modify {what}")


def ensure_admin(actor: Actor, *, action: str) -> None:
    if not actor.is_admin:
        raise AccessDeniedError(f"Only administrators can {action}")


def validate_collection(collection: str) -> str:
    if collection not in SCOPED_COLLECTIONS:
        raise ValidationError(
            f"Unknown collection '{collection}', expected one of {', '.join(SCOPED_COLLECTIONS)}"
        )
    return collection


class AccessScopeService:
    def __init__(self, *, session_factory) -> None:
        self._session_factory = session_factory

    def scope_for(self, actor: Actor) -> AccessScope:
        with self._session_factory() as db:
            try:
                return resolve_scope(db, actor)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to resolve access scope for actor {actor.id}") from exc

    def list_scoped(self, actor: Actor, collection: str) -> list:
        validate_collection(collection)
        with self._session_factory() as db:
            try:
                scope = resolve_scope(db, actor)
                if collection == "zones":
                    return list_zones(db, zone_ids=scope.zone_filter())
                if collection == "generators":
                    return list_generators(db, zone_ids=scope.zone_filter())
                if collection == "logs":
                    return list_usage_log_entries(db, generator_ids=scope.generator_filter())
                return list_bills(db, bill_ids=scope.bill_filter())
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to list {collection}") from exc
