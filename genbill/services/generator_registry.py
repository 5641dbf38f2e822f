from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from genbill.core.actors import Actor
from genbill.core.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from genbill.db.models import Generator, GeneratorStatus, UsageAction, UsageLogEntry
from genbill.repositories.generators import (
    apply_metrics_update,
    apply_status_transition,
    assign_generators_to_zone,
    count_entries_for_generator,
    create_generator,
    delete_generator,
    get_generator,
    list_generators,
)
from genbill.repositories.usage_logs import UsageMetrics, UsageNotes, create_usage_log_entry
from genbill.repositories.zones import get_zone
from genbill.services.access_scope import ensure_admin, ensure_can_write, resolve_scope
from genbill.services.notifications import GeneratorEventPublisher, NullGeneratorEventPublisher

TARGET_STATUS: dict[UsageAction, GeneratorStatus] = {
    UsageAction.START: GeneratorStatus.RUNNING,
    UsageAction.STOP: GeneratorStatus.OFFLINE,
    UsageAction.MAINTENANCE: GeneratorStatus.MAINTENANCE,
    UsageAction.FAULT: GeneratorStatus.FAULT,
}
FUEL_METRIC_FIELDS = (
    "fuel_consumed_liters",
    "fuel_added_liters",
    "fuel_level_before",
    "fuel_level_after",
)


@dataclass
class TransitionResult:
    generator: Generator
    log_entry: UsageLogEntry | None
    warnings: list[str] = field(default_factory=list)


class GeneratorRegistryService:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        publisher: GeneratorEventPublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher or NullGeneratorEventPublisher()
        self._logger = logging.getLogger("genbill.generators")

    def start_generator(
        self,
        generator_id: int,
        actor: Actor,
        *,
        metrics: UsageMetrics | None = None,
        notes: UsageNotes | None = None,
        timestamp: datetime | None = None,
    ) -> TransitionResult:
        return self._transition(
            generator_id,
            actor,
            action=UsageAction.START,
            metrics=metrics,
            notes=notes,
            timestamp=timestamp,
        )

    def stop_generator(
        self,
        generator_id: int,
        actor: Actor,
        *,
        metrics: UsageMetrics | None = None,
        notes: UsageNotes | None = None,
        timestamp: datetime | None = None,
    ) -> TransitionResult:
        return self._transition(
            generator_id,
            actor,
            action=UsageAction.STOP,
            metrics=metrics,
            notes=notes,
            timestamp=timestamp,
        )

    def report_fault(
        self,
        generator_id: int,
        actor: Actor,
        description: str,
        *,
        metrics: UsageMetrics | None = None,
        remarks: str | None = None,
        attachments: list[str] | None = None,
        timestamp: datetime | None = None,
    ) -> TransitionResult:
        description = (description or "").strip()
        if not description:
            raise ValidationError("A fault description is required")
        return self._transition(
            generator_id,
            actor,
            action=UsageAction.FAULT,
            metrics=metrics,
            notes=UsageNotes(
                remarks=remarks,
                fault_description=description,
                attachments=list(attachments or []),
            ),
            timestamp=timestamp,
        )

    def enter_maintenance(
        self,
        generator_id: int,
        actor: Actor,
        actions: str,
        *,
        metrics: UsageMetrics | None = None,
        remarks: str | None = None,
        attachments: list[str] | None = None,
        timestamp: datetime | None = None,
    ) -> TransitionResult:
        actions = (actions or "").strip()
        if not actions:
            raise ValidationError("Maintenance actions are required")
        return self._transition(
            generator_id,
            actor,
            action=UsageAction.MAINTENANCE,
            metrics=metrics,
            notes=UsageNotes(
                remarks=remarks,
                maintenance_actions=actions,
                attachments=list(attachments or []),
            ),
            timestamp=timestamp,
        )

    def record_fuel_event(
        self,
        generator_id: int,
        actor: Actor,
        metrics: UsageMetrics,
        *,
        remarks: str | None = None,
        attachments: list[str] | None = None,
        timestamp: datetime | None = None,
    ) -> TransitionResult:
        if all(getattr(metrics, name) is None for name in FUEL_METRIC_FIELDS):
            raise ValidationError("A fuel event needs at least one fuel metric")
        return self._transition(
            generator_id,
            actor,
            action=UsageAction.FUEL_REFILL,
            metrics=metrics,
            notes=UsageNotes(remarks=remarks, attachments=list(attachments or [])),
            timestamp=timestamp,
        )

    def get_generator(self, generator_id: int, actor: Actor) -> Generator:
        with self._session_factory() as db:
            try:
                generator = get_generator(db, generator_id)
                visible = generator is not None and resolve_scope(db, actor).allows_generator(generator_id)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load generator {generator_id}") from exc
            if not visible:
                raise NotFoundError(f"Generator {generator_id} not found")
            return generator

    def list_generators(
        self,
        actor: Actor,
        *,
        zone_id: int | None = None,
        status: str | None = None,
    ) -> list[Generator]:
        with self._session_factory() as db:
            try:
                zone_ids = resolve_scope(db, actor).zone_filter()
                if zone_id is not None:
                    if zone_ids is not None and zone_id not in zone_ids:
                        return []
                    zone_ids = frozenset({zone_id})
                return list_generators(db, zone_ids=zone_ids, status=status)
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to list generators") from exc

    def create_generator(
        self,
        actor: Actor,
        *,
        name: str,
        kva: Decimal,
        zone_id: int | None = None,
        fuel_type: str = "diesel",
        fuel_capacity_liters: Decimal | None = None,
        current_fuel_level: Decimal | None = None,
    ) -> Generator:
        ensure_admin(actor, action="create generators")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Generator name is required")
        if kva is None or not kva.is_finite() or kva <= 0:
            raise ValidationError("Generator kVA rating must be a positive number")
        _validate_non_negative(
            {"fuel_capacity_liters": fuel_capacity_liters, "current_fuel_level": current_fuel_level}
        )
        with self._session_factory() as db:
            try:
                if zone_id is not None and get_zone(db, zone_id) is None:
                    raise NotFoundError(f"Zone {zone_id} not found")
                generator = create_generator(
                    db,
                    name=name,
                    kva=kva,
                    zone_id=zone_id,
                    fuel_type=fuel_type,
                    fuel_capacity_liters=fuel_capacity_liters,
                    current_fuel_level=current_fuel_level,
                )
                db.commit()
                db.refresh(generator)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to create generator") from exc
            self._logger.info(
                "created generator id=%s name=%s kva=%s zone_id=%s",
                generator.id,
                generator.name,
                generator.kva,
                generator.zone_id,
            )
            return generator

    def assign_generators(self, actor: Actor, *, generator_ids: list[int], zone_id: int) -> int:
        ensure_admin(actor, action="assign generators")
        if not generator_ids:
            raise ValidationError("Generator IDs array is required")
        with self._session_factory() as db:
            try:
                if get_zone(db, zone_id) is None:
                    raise NotFoundError(f"Zone {zone_id} not found")
                missing = [gid for gid in generator_ids if get_generator(db, gid) is None]
                if missing:
                    raise NotFoundError(f"Generators not found: {', '.join(str(gid) for gid in missing)}")
                moved = assign_generators_to_zone(db, generator_ids=generator_ids, zone_id=zone_id)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to assign generators") from exc
        self._logger.info("assigned generators count=%s zone_id=%s", moved, zone_id)
        return moved

    def delete_generator(self, actor: Actor, generator_id: int) -> None:
        ensure_admin(actor, action="delete generators")
        with self._session_factory() as db:
            try:
                if get_generator(db, generator_id) is None:
                    raise NotFoundError(f"Generator {generator_id} not found")
                if count_entries_for_generator(db, generator_id) > 0:
                    raise ConflictError(
                        f"Generator {generator_id} has usage log entries and cannot be deleted"
                    )
                delete_generator(db, generator_id)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError(f"Generator {generator_id} is still referenced") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to delete generator") from exc
        self._logger.info("deleted generator id=%s", generator_id)

    def _transition(
        self,
        generator_id: int,
        actor: Actor,
        *,
        action: UsageAction,
        metrics: UsageMetrics | None,
        notes: UsageNotes | None,
        timestamp: datetime | None,
    ) -> TransitionResult:
        metrics = metrics or UsageMetrics()
        notes = notes or UsageNotes()
        _validate_non_negative(metrics.as_dict())
        event_ts = _resolve_event_timestamp(actor, timestamp)

        with self._session_factory() as db:
            try:
                generator = get_generator(db, generator_id)
                zone = generator.zone if generator is not None else None
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load generator {generator_id}") from exc
            if generator is None:
                raise NotFoundError(f"Generator {generator_id} not found")
            ensure_can_write(actor, zone, what=f"generator {generator_id}")

            target_status = TARGET_STATUS.get(action)
            if target_status is None:
                result = self._record_without_transition(
                    db, generator, actor, action=action, metrics=metrics, notes=notes, event_ts=event_ts
                )
            else:
                result = self._apply_transition(
                    db,
                    generator,
                    actor,
                    action=action,
                    target_status=target_status,
                    metrics=metrics,
                    notes=notes,
                    event_ts=event_ts,
                )

        self._notify(result)
        return result

    def _apply_transition(
        self,
        db: Session,
        generator: Generator,
        actor: Actor,
        *,
        action: UsageAction,
        target_status: GeneratorStatus,
        metrics: UsageMetrics,
        notes: UsageNotes,
        event_ts: datetime,
    ) -> TransitionResult:
        try:
            changed = apply_status_transition(
                db,
                generator_id=generator.id,
                target_status=target_status.value,
                operator_id=actor.id,
                runtime_hours=metrics.runtime_hours,
                fuel_level_after=metrics.fuel_level_after,
            )
            if changed:
                db.commit()
            else:
                db.rollback()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to update generator {generator.id}") from exc
        if not changed:
            raise ConflictError(f"Generator {generator.id} is already {target_status.value}")

        self._logger.info(
            "generator transition id=%s action=%s status=%s operator_id=%s",
            generator.id,
            action.value,
            target_status.value,
            actor.id,
        )

        warnings: list[str] = []
        log_entry: UsageLogEntry | None = None
        try:
            log_entry = create_usage_log_entry(
                db,
                generator_id=generator.id,
                zone_id=generator.zone_id,
                operator_id=actor.id,
                action=action.value,
                timestamp=event_ts,
                metrics=metrics,
                notes=notes,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            log_entry = None
            self._logger.warning(
                "usage log append failed after transition id=%s action=%s",
                generator.id,
                action.value,
                exc_info=True,
            )
            warnings.append(
                f"Generator {generator.id} is now {target_status.value} "
                "but the usage log entry could not be recorded"
            )

        self._refresh(db, generator)
        return TransitionResult(generator=generator, log_entry=log_entry, warnings=warnings)

    def _record_without_transition(
        self,
        db: Session,
        generator: Generator,
        actor: Actor,
        *,
        action: UsageAction,
        metrics: UsageMetrics,
        notes: UsageNotes,
        event_ts: datetime,
    ) -> TransitionResult:
        try:
            apply_metrics_update(
                db,
                generator_id=generator.id,
                operator_id=actor.id,
                runtime_hours=metrics.runtime_hours,
                fuel_level_after=metrics.fuel_level_after,
            )
            log_entry = create_usage_log_entry(
                db,
                generator_id=generator.id,
                zone_id=generator.zone_id,
                operator_id=actor.id,
                action=action.value,
                timestamp=event_ts,
                metrics=metrics,
                notes=notes,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to record {action.value} for generator {generator.id}") from exc

        self._refresh(db, generator)
        self._logger.info(
            "generator event id=%s action=%s operator_id=%s",
            generator.id,
            action.value,
            actor.id,
        )
        return TransitionResult(generator=generator, log_entry=log_entry)

    def _refresh(self, db: Session, generator: Generator) -> None:
        try:
            db.refresh(generator)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to reload generator {generator.id}") from exc

    def _notify(self, result: TransitionResult) -> None:
        try:
            self._publisher.publish_generator_event(result.generator, result.log_entry)
        except Exception:
            self._logger.warning(
                "generator notification failed id=%s",
                result.generator.id,
                exc_info=True,
            )


def _validate_non_negative(values: dict[str, Decimal | None]) -> None:
    for name, value in values.items():
        if value is None:
            continue
        if not isinstance(value, Decimal):
            raise ValidationError(f"{name} must be a decimal number")
        if not value.is_finite() or value < 0:
            raise ValidationError(f"{name} must be a finite number >= 0")


def _resolve_event_timestamp(actor: Actor, timestamp: datetime | None) -> datetime:
    now = datetime.now(timezone.utc)
    if timestamp is None:
        return now
    if not actor.is_admin:
        raise AccessDeniedError("Only administrators can record backdated events")
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    if timestamp > now:
        raise ValidationError("Event timestamp cannot be in the future")
    return timestamp
