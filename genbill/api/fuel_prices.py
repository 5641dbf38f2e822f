from __future__ import annotations

from fastapi import APIRouter, Depends, status

from genbill.core.actors import Actor
from genbill.dependencies import get_actor, get_fuel_price_service
from genbill.schemas.fuel_prices import FuelPriceCreateRequest, FuelPriceResponse
from genbill.services.fuel_prices import FuelPriceService


router = APIRouter(prefix="/api", tags=["fuel-prices"])


@router.get("/fuel-prices", response_model=list[FuelPriceResponse])
def get_fuel_prices(
    actor: Actor = Depends(get_actor),
    service: FuelPriceService = Depends(get_fuel_price_service),
) -> list[FuelPriceResponse]:
    return [FuelPriceResponse.model_validate(version) for version in service.list_versions(actor)]


@router.get("/fuel-prices/active", response_model=FuelPriceResponse)
def get_active_fuel_price(
    actor: Actor = Depends(get_actor),
    service: FuelPriceService = Depends(get_fuel_price_service),
) -> FuelPriceResponse:
    return FuelPriceResponse.model_validate(service.get_active_price())


@router.post("/fuel-prices", response_model=FuelPriceResponse, status_code=status.HTTP_201_CREATED)
def post_fuel_price(
    payload: FuelPriceCreateRequest,
    actor: Actor = Depends(get_actor),
    service: FuelPriceService = Depends(get_fuel_price_service),
) -> FuelPriceResponse:
    version = service.set_active_price(payload.price_per_unit, payload.effective_date, actor)
    return FuelPriceResponse.model_validate(version)
