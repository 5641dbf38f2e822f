from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class BillCreateRequest(BaseModel):
    zone_id: int
    billing_period_start: date
    billing_period_end: date


class BillStatusRequest(BaseModel):
    status: str = Field(min_length=1)


class BillLineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    generator_id: int
    generator_name: str
    fuel_consumed: Decimal
    runtime_hours: Decimal
    fuel_cost: Decimal


class BillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_number: str
    zone_id: int
    client_id: int
    billing_period_start: date
    billing_period_end: date
    total_fuel_consumed: Decimal
    total_runtime_hours: Decimal
    fuel_cost: Decimal
    service_fee: Decimal
    total_amount: Decimal
    fuel_price_version_id: int | None
    status: str
    due_date: date
    sent_date: datetime | None
    paid_date: datetime | None
    created_at: datetime


class BillDetailResponse(BillResponse):
    line_items: list[BillLineItemResponse] = Field(default_factory=list)


class OverdueSweepResponse(BaseModel):
    marked_overdue: int
