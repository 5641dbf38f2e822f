from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from genbill.schemas.usage_logs import UsageLogEntryResponse, UsageMetricsPayload


class GeneratorCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    kva: Decimal
    zone_id: int | None = None
    fuel_type: str = Field(default="diesel", min_length=1, max_length=32)
    fuel_capacity_liters: Decimal | None = None
    current_fuel_level: Decimal | None = None


class GeneratorAssignRequest(BaseModel):
    generator_ids: list[int] = Field(min_length=1)
    zone_id: int


class GeneratorAssignResponse(BaseModel):
    zone_id: int
    assigned: int


class GeneratorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    zone_id: int | None
    kva: Decimal
    status: str
    last_operator_id: int | None
    fuel_type: str
    fuel_capacity_liters: Decimal | None
    current_fuel_level: Decimal | None
    total_runtime_hours: Decimal
    created_at: datetime
    updated_at: datetime


class GeneratorActionRequest(BaseModel):
    metrics: UsageMetricsPayload = Field(default_factory=UsageMetricsPayload)
    remarks: str | None = None
    attachments: list[str] = Field(default_factory=list)
    timestamp: datetime | None = None


class FaultReportRequest(GeneratorActionRequest):
    description: str = Field(min_length=1)


class MaintenanceRequest(GeneratorActionRequest):
    actions: str = Field(min_length=1)


class TransitionResponse(BaseModel):
    generator: GeneratorResponse
    log_entry: UsageLogEntryResponse | None
    warnings: list[str] = Field(default_factory=list)
