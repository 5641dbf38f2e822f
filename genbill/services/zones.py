from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from genbill.core.actors import Actor
from genbill.core.errors import ConflictError, DomainError, NotFoundError, PersistenceError, ValidationError
from genbill.db.models import Generator, GeneratorStatus, UsageAction, Zone
from genbill.repositories.generators import (
    create_generator,
    delete_generator,
    detach_generator,
    generator_ids_with_entries,
    list_generators_in_zone,
)
from genbill.repositories.usage_logs import UsageMetrics, UsageNotes, create_usage_log_entry
from genbill.repositories.zones import (
    count_generators_in_zone,
    create_zone,
    delete_zone,
    get_zone,
    get_zone_for_update,
    list_zones,
    release_operator,
)
from genbill.services.access_scope import ensure_admin, resolve_scope

ZONE_UPDATE_FIELDS = frozenset(
    {"name", "location", "description", "client_id", "operator_id", "generator_mix"}
)
_GENERATOR_NAME_RE = re.compile(r"#(\d+)\s*$")


@dataclass(frozen=True)
class PlannedGenerator:
    kva: Decimal
    name: str


@dataclass
class MixPlan:
    additions: list[PlannedGenerator] = field(default_factory=list)
    deletions: list[Generator] = field(default_factory=list)
    detachments: list[Generator] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not (self.additions or self.deletions or self.detachments)


def format_kva(kva: Decimal) -> str:
    return format(kva.normalize(), "f")


def parse_generator_mix(raw_mix: Mapping[Any, Any]) -> dict[Decimal, int]:
    mix: dict[Decimal, int] = {}
    for raw_kva, raw_count in raw_mix.items():
        try:
            kva = Decimal(str(raw_kva))
        except ArithmeticError:
            raise ValidationError(f"Invalid kVA rating '{raw_kva}'") from None
        if not kva.is_finite() or kva <= 0:
            raise ValidationError(f"Invalid kVA rating '{raw_kva}'")
        if isinstance(raw_count, bool) or not isinstance(raw_count, int) or raw_count < 0:
            raise ValidationError(f"Generator count for {raw_kva}kVA must be a non-negative integer")
        mix[kva] = mix.get(kva, 0) + raw_count
    return mix


def plan_generator_mix(
    generators: list[Generator],
    desired: Mapping[Decimal, int],
    ids_with_entries: set[int],
) -> MixPlan:
    plan = MixPlan()
    by_class: dict[Decimal, list[Generator]] = {}
    for generator in generators:
        by_class.setdefault(Decimal(generator.kva), []).append(generator)

    for kva in sorted(set(by_class) | set(desired)):
        current = by_class.get(kva, [])
        wanted = desired.get(kva, 0)

        if wanted > len(current):
            next_number = max((_generator_number(g.name) for g in current), default=0) + 1
            for offset in range(wanted - len(current)):
                plan.additions.append(
                    PlannedGenerator(kva=kva, name=f"{format_kva(kva)}kVA #{next_number + offset}")
                )
            continue

        surplus = len(current) - wanted
        if surplus <= 0:
            continue
        candidates = sorted(
            current,
            key=lambda g: (
                g.status == GeneratorStatus.RUNNING.value,
                g.id in ids_with_entries,
                -g.id,
            ),
        )
        for generator in candidates[:surplus]:
            if generator.status == GeneratorStatus.RUNNING.value:
                raise ConflictError(
                    f"Cannot remove running generator {generator.id} ({generator.name}) from its zone"
                )
            if generator.id in ids_with_entries:
                plan.detachments.append(generator)
            else:
                plan.deletions.append(generator)
    return plan


class ZoneService:
    def __init__(self, *, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._logger = logging.getLogger("genbill.zones")

    def list_zones(self, actor: Actor) -> list[Zone]:
        with self._session_factory() as db:
            try:
                return list_zones(db, zone_ids=resolve_scope(db, actor).zone_filter())
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to list zones") from exc

    def get_zone(self, zone_id: int, actor: Actor) -> Zone:
        with self._session_factory() as db:
            try:
                zone = get_zone(db, zone_id)
                visible = zone is not None and resolve_scope(db, actor).allows_zone(zone_id)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load zone {zone_id}") from exc
            if not visible:
                raise NotFoundError(f"Zone {zone_id} not found")
            return zone

    def create_zone(
        self,
        actor: Actor,
        *,
        name: str,
        location: str | None = None,
        description: str | None = None,
        client_id: int | None = None,
        operator_id: int | None = None,
        generator_mix: Mapping[Any, Any] | None = None,
    ) -> Zone:
        ensure_admin(actor, action="create zones")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Zone name is required")
        mix = parse_generator_mix(generator_mix or {})

        with self._session_factory() as db:
            try:
                zone = create_zone(
                    db,
                    name=name,
                    location=location,
                    description=description,
                    client_id=client_id,
                )
                if operator_id is not None:
                    self._assign_operator(db, zone, operator_id)
                plan = self._apply_mix(db, zone, mix, actor)
                db.commit()
                db.refresh(zone)
            except DomainError:
                db.rollback()
                raise
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("Zone conflicts with an existing assignment") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to create zone") from exc

        self._logger.info(
            "created zone id=%s name=%s operator_id=%s generators_added=%s",
            zone.id,
            zone.name,
            zone.assigned_operator_id,
            len(plan.additions),
        )
        return zone

    def update_zone(self, zone_id: int, actor: Actor, changes: Mapping[str, Any]) -> Zone:
        ensure_admin(actor, action="update zones")
        unknown = set(changes) - ZONE_UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown zone fields: {', '.join(sorted(unknown))}")
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Zone name is required")
        mix = None
        if changes.get("generator_mix") is not None:
            mix = parse_generator_mix(changes["generator_mix"])

        with self._session_factory() as db:
            try:
                zone = get_zone_for_update(db, zone_id)
                if zone is None:
                    raise NotFoundError(f"Zone {zone_id} not found")
                if "name" in changes:
                    zone.name = changes["name"].strip()
                for name in ("location", "description", "client_id"):
                    if name in changes:
                        setattr(zone, name, changes[name])
                if "operator_id" in changes:
                    self._assign_operator(db, zone, changes["operator_id"])
                plan = self._apply_mix(db, zone, mix, actor) if mix is not None else MixPlan()
                db.add(zone)
                db.commit()
                db.refresh(zone)
            except DomainError:
                db.rollback()
                raise
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError(f"Zone {zone_id} update conflicts with existing data") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to update zone {zone_id}") from exc

        self._logger.info(
            "updated zone id=%s fields=%s added=%s deleted=%s detached=%s",
            zone_id,
            ",".join(sorted(changes)),
            len(plan.additions),
            len(plan.deletions),
            len(plan.detachments),
        )
        return zone

    def assign_operator(self, zone_id: int, actor: Actor, operator_id: int | None) -> Zone:
        return self.update_zone(zone_id, actor, {"operator_id": operator_id})

    def delete_zone(self, zone_id: int, actor: Actor) -> None:
        ensure_admin(actor, action="delete zones")
        with self._session_factory() as db:
            try:
                zone = get_zone(db, zone_id)
                if zone is None:
                    raise NotFoundError(f"Zone {zone_id} not found")
                if count_generators_in_zone(db, zone_id) > 0:
                    raise ConflictError(
                        "Cannot delete zone with assigned generators. Please reassign generators first."
                    )
                delete_zone(db, zone_id)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError(f"Zone {zone_id} is still referenced by bills") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to delete zone {zone_id}") from exc
        self._logger.info("deleted zone id=%s name=%s", zone_id, zone.name)

    def _assign_operator(self, db: Session, zone: Zone, operator_id: int | None) -> None:
        if operator_id is not None:
            released = release_operator(db, operator_id, keep_zone_id=zone.id)
            if released:
                self._logger.info(
                    "released operator from previous zone operator_id=%s new_zone_id=%s",
                    operator_id,
                    zone.id,
                )
        zone.assigned_operator_id = operator_id
        db.add(zone)
        db.flush()

    def _apply_mix(self, db: Session, zone: Zone, mix: Mapping[Decimal, int], actor: Actor) -> MixPlan:
        generators = list_generators_in_zone(db, zone.id)
        plan = plan_generator_mix(
            generators,
            mix,
            generator_ids_with_entries(db, [generator.id for generator in generators]),
        )
        for planned in plan.additions:
            create_generator(db, name=planned.name, kva=planned.kva, zone_id=zone.id)
        for generator in plan.deletions:
            delete_generator(db, generator.id)
        for generator in plan.detachments:
            if generator.status != GeneratorStatus.OFFLINE.value:
                # the ledger records the forced offline transition
                create_usage_log_entry(
                    db,
                    generator_id=generator.id,
                    zone_id=zone.id,
                    operator_id=actor.id,
                    action=UsageAction.STOP.value,
                    timestamp=datetime.now(timezone.utc),
                    metrics=UsageMetrics(),
                    notes=UsageNotes(remarks=f"Detached from zone {zone.id}"),
                )
            detach_generator(db, generator)
        return plan


def _generator_number(name: str) -> int:
    match = _GENERATOR_NAME_RE.search(name or "")
    return int(match.group(1)) if match else 0
