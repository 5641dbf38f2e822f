from typing import TYPE_CHECKING

from fastapi import Header, HTTPException, Request

from genbill.core.actors import Actor, build_actor
from genbill.core.config import Settings

if TYPE_CHECKING:
    from genbill.services.billing import BillingService
    from genbill.services.fuel_prices import FuelPriceService
    from genbill.services.generator_registry import GeneratorRegistryService
    from genbill.services.overdue_sweep import OverdueSweepService
    from genbill.services.usage_ledger import UsageLedgerService
    from genbill.services.zones import ZoneService


def get_settings_from_app(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=503, detail="Application settings are not initialized")
    return settings


def get_actor(
    request: Request,
    x_actor_id: int | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(status_code=401, detail="X-Actor-Id and X-Actor-Role headers are required")
    settings = get_settings_from_app(request)
    return build_actor(x_actor_id, x_actor_role, settings.role_aliases)


def get_zone_service(request: Request) -> "ZoneService":
    service = getattr(request.app.state, "zone_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Zone service is not initialized")
    return service


def get_generator_registry_service(request: Request) -> "GeneratorRegistryService":
    service = getattr(request.app.state, "generator_registry_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Generator registry service is not initialized")
    return service


def get_usage_ledger_service(request: Request) -> "UsageLedgerService":
    service = getattr(request.app.state, "usage_ledger_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Usage ledger service is not initialized")
    return service


def get_fuel_price_service(request: Request) -> "FuelPriceService":
    service = getattr(request.app.state, "fuel_price_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Fuel price service is not initialized")
    return service


def get_billing_service(request: Request) -> "BillingService":
    service = getattr(request.app.state, "billing_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Billing service is not initialized")
    return service


def get_overdue_sweep_service(request: Request) -> "OverdueSweepService":
    service = getattr(request.app.state, "overdue_sweep_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Overdue sweep service is not initialized")
    return service
