from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from genbill.core.actors import Actor
from genbill.core.errors import NotFoundError, PersistenceError, ValidationError
from genbill.db.models import UsageAction, UsageLogEntry
from genbill.repositories.usage_logs import (
    delete_usage_log_entry,
    get_usage_log_entry,
    list_entries_in_window,
    list_usage_log_entries,
)
from genbill.services.access_scope import ensure_admin, resolve_scope

CORRECTABLE_FIELDS = frozenset(
    {
        "timestamp",
        "runtime_hours",
        "fuel_consumed_liters",
        "fuel_added_liters",
        "fuel_level_before",
        "fuel_level_after",
        "remarks",
        "fault_description",
        "maintenance_actions",
        "attachments",
    }
)
NUMERIC_FIELDS = frozenset(
    {
        "runtime_hours",
        "fuel_consumed_liters",
        "fuel_added_liters",
        "fuel_level_before",
        "fuel_level_after",
    }
)


class UsageLedgerService:
    def __init__(self, *, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._logger = logging.getLogger("genbill.usage_ledger")

    def list_entries(
        self,
        actor: Actor,
        *,
        generator_id: int | None = None,
        zone_id: int | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 500,
    ) -> list[UsageLogEntry]:
        if action is not None and action not in {item.value for item in UsageAction}:
            raise ValidationError(f"Unknown action '{action}'")
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end")
        with self._session_factory() as db:
            try:
                return list_usage_log_entries(
                    db,
                    generator_ids=resolve_scope(db, actor).generator_filter(),
                    generator_id=generator_id,
                    zone_id=zone_id,
                    action=action,
                    start=start,
                    end=end,
                    limit=limit,
                )
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to list usage log entries") from exc

    def entries_in_window(
        self,
        generator_id: int,
        start: datetime,
        end: datetime,
    ) -> list[UsageLogEntry]:
        with self._session_factory() as db:
            try:
                return list_entries_in_window(db, generator_id=generator_id, start=start, end=end)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load usage of generator {generator_id}") from exc

    def correct_entry(self, entry_id: int, actor: Actor, changes: dict[str, Any]) -> UsageLogEntry:
        ensure_admin(actor, action="update usage log entries")
        unknown = set(changes) - CORRECTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be corrected: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("At least one field must be provided")
        for name in NUMERIC_FIELDS & set(changes):
            value = changes[name]
            if value is not None and (not isinstance(value, Decimal) or not value.is_finite() or value < 0):
                raise ValidationError(f"{name} must be a finite number >= 0")
        if "timestamp" in changes:
            if changes["timestamp"] is None:
                raise ValidationError("timestamp cannot be cleared")
            if changes["timestamp"].tzinfo is None:
                changes = {**changes, "timestamp": changes["timestamp"].replace(tzinfo=timezone.utc)}

        with self._session_factory() as db:
            try:
                entry = get_usage_log_entry(db, entry_id)
                if entry is None:
                    raise NotFoundError(f"Usage log entry {entry_id} not found")
                for name, value in changes.items():
                    if name == "attachments":
                        value = list(value or [])
                    setattr(entry, name, value)
                entry.corrected_at = datetime.now(timezone.utc)
                entry.corrected_by = actor.id
                db.add(entry)
                db.commit()
                db.refresh(entry)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to update usage log entry {entry_id}") from exc
        self._logger.info(
            "corrected usage log entry id=%s fields=%s admin_id=%s",
            entry_id,
            ",".join(sorted(changes)),
            actor.id,
        )
        return entry

    def delete_entry(self, entry_id: int, actor: Actor) -> None:
        ensure_admin(actor, action="delete usage log entries")
        with self._session_factory() as db:
            try:
                deleted = delete_usage_log_entry(db, entry_id)
                if deleted:
                    db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to delete usage log entry {entry_id}") from exc
        if not deleted:
            raise NotFoundError(f"Usage log entry {entry_id} not found")
        self._logger.info("deleted usage log entry id=%s admin_id=%s", entry_id, actor.id)
