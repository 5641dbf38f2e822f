from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from genbill.repositories.usage_logs import UsageMetrics


class UsageMetricsPayload(BaseModel):
    runtime_hours: Decimal | None = None
    fuel_consumed_liters: Decimal | None = None
    fuel_added_liters: Decimal | None = None
    fuel_level_before: Decimal | None = None
    fuel_level_after: Decimal | None = None

    def to_metrics(self) -> UsageMetrics:
        return UsageMetrics(
            runtime_hours=self.runtime_hours,
            fuel_consumed_liters=self.fuel_consumed_liters,
            fuel_added_liters=self.fuel_added_liters,
            fuel_level_before=self.fuel_level_before,
            fuel_level_after=self.fuel_level_after,
        )


class UsageLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    generator_id: int
    zone_id: int | None
    operator_id: int
    action: str
    timestamp: datetime
    runtime_hours: Decimal | None
    fuel_consumed_liters: Decimal | None
    fuel_added_liters: Decimal | None
    fuel_level_before: Decimal | None
    fuel_level_after: Decimal | None
    remarks: str | None
    fault_description: str | None
    maintenance_actions: str | None
    attachments: list[str] = Field(default_factory=list)
    corrected_at: datetime | None = None
    corrected_by: int | None = None


class UsageLogCorrectionRequest(BaseModel):
    timestamp: datetime | None = None
    runtime_hours: Decimal | None = None
    fuel_consumed_liters: Decimal | None = None
    fuel_added_liters: Decimal | None = None
    fuel_level_before: Decimal | None = None
    fuel_level_after: Decimal | None = None
    remarks: str | None = None
    fault_description: str | None = None
    maintenance_actions: str | None = None
    attachments: list[str] | None = None
