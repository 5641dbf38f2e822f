from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from genbill.db.models import UsageLogEntry


@dataclass(frozen=True)
class UsageMetrics:
    runtime_hours: Decimal | None = None
    fuel_consumed_liters: Decimal | None = None
    fuel_added_liters: Decimal | None = None
    fuel_level_before: Decimal | None = None
    fuel_level_after: Decimal | None = None

    def as_dict(self) -> dict[str, Decimal | None]:
        return {
            "runtime_hours": self.runtime_hours,
            "fuel_consumed_liters": self.fuel_consumed_liters,
            "fuel_added_liters": self.fuel_added_liters,
            "fuel_level_before": self.fuel_level_before,
            "fuel_level_after": self.fuel_level_after,
        }


@dataclass(frozen=True)
class UsageNotes:
    remarks: str | None = None
    fault_description: str | None = None
    maintenance_actions: str | None = None
    attachments: list[str] = field(default_factory=list)


def create_usage_log_entry(
    db: Session,
    *,
    generator_id: int,
    zone_id: int | None,
    operator_id: int,
    action: str,
    timestamp: datetime,
    metrics: UsageMetrics,
    notes: UsageNotes,
) -> UsageLogEntry:
    entry = UsageLogEntry(
        generator_id=generator_id,
        zone_id=zone_id,
        operator_id=operator_id,
        action=action,
        timestamp=timestamp,
        remarks=notes.remarks,
        fault_description=notes.fault_description,
        maintenance_actions=notes.maintenance_actions,
        attachments=list(notes.attachments),
        **metrics.as_dict(),
    )
    db.add(entry)
    db.flush()
    return entry


def get_usage_log_entry(db: Session, entry_id: int) -> UsageLogEntry | None:
    return db.get(UsageLogEntry, entry_id)


def list_entries_in_window(
    db: Session,
    *,
    generator_id: int,
    start: datetime,
    end: datetime,
) -> list[UsageLogEntry]:
    """Entries of one generator with ``start <= timestamp <= end``."""
    return list(
        db.scalars(
            select(UsageLogEntry)
            .where(
                UsageLogEntry.generator_id == generator_id,
                UsageLogEntry.timestamp >= start,
                UsageLogEntry.timestamp <= end,
            )
            .order_by(UsageLogEntry.timestamp.asc(), UsageLogEntry.id.asc())
        )
    )


def list_usage_log_entries(
    db: Session,
    *,
    generator_ids: Collection[int] | None = None,
    generator_id: int | None = None,
    zone_id: int | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 500,
) -> list[UsageLogEntry]:
    statement = select(UsageLogEntry)
    if generator_ids is not None:
        if not generator_ids:
            return []
        statement = statement.where(UsageLogEntry.generator_id.in_(list(generator_ids)))
    if generator_id is not None:
        statement = statement.where(UsageLogEntry.generator_id == generator_id)
    if zone_id is not None:
        statement = statement.where(UsageLogEntry.zone_id == zone_id)
    if action is not None:
        statement = statement.where(UsageLogEntry.action == action)
    if start is not None:
        statement = statement.where(UsageLogEntry.timestamp >= start)
    if end is not None:
        statement = statement.where(UsageLogEntry.timestamp <= end)
    statement = statement.order_by(UsageLogEntry.timestamp.desc(), UsageLogEntry.id.desc()).limit(limit)
    return list(db.scalars(statement))


def delete_usage_log_entry(db: Session, entry_id: int) -> int:
    result = db.execute(delete(UsageLogEntry).where(UsageLogEntry.id == entry_id))
    return max(0, result.rowcount or 0)
