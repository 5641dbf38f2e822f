from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class FuelPriceCreateRequest(BaseModel):
    price_per_unit: Decimal | None = None
    effective_date: date | None = None


class FuelPriceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    price_per_unit: Decimal
    effective_date: date
    end_date: date | None
    is_active: bool
    created_by: int | None
    created_at: datetime
