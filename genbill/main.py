from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from sqlalchemy.orm import Session

from genbill.api.bills import router as bills_router
from genbill.api.errors import register_error_handlers
from genbill.api.fuel_prices import router as fuel_prices_router
from genbill.api.generators import router as generators_router
from genbill.api.logs import router as logs_router
from genbill.api.zones import router as zones_router
from genbill.core.config import get_settings
from genbill.core.logging import configure_logging
from genbill.db.session import SessionLocal, check_db_connection, get_db
from genbill.services.billing import BillingService
from genbill.services.fuel_prices import FuelPriceService
from genbill.services.generator_registry import GeneratorRegistryService
from genbill.services.notifications import MqttGeneratorEventPublisher, build_publisher
from genbill.services.overdue_sweep import OverdueSweepService
from genbill.services.usage_ledger import UsageLedgerService
from genbill.services.zones import ZoneService


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    publisher = build_publisher(settings)
    billing_service = BillingService(settings=settings, session_factory=SessionLocal)
    overdue_sweep_service = OverdueSweepService(settings=settings, billing_service=billing_service)

    app.state.settings = settings
    app.state.publisher = publisher
    app.state.zone_service = ZoneService(session_factory=SessionLocal)
    app.state.generator_registry_service = GeneratorRegistryService(
        session_factory=SessionLocal,
        publisher=publisher,
    )
    app.state.usage_ledger_service = UsageLedgerService(session_factory=SessionLocal)
    app.state.fuel_price_service = FuelPriceService(session_factory=SessionLocal)
    app.state.billing_service = billing_service
    app.state.overdue_sweep_service = overdue_sweep_service

    publisher.start()
    overdue_sweep_service.start()
    try:
        yield
    finally:
        overdue_sweep_service.stop()
        publisher.stop()


app = FastAPI(title="Generator Fleet Billing Backend", lifespan=lifespan)
register_error_handlers(app)
app.include_router(zones_router)
app.include_router(generators_router)
app.include_router(logs_router)
app.include_router(fuel_prices_router)
app.include_router(bills_router)


@app.get("/health")
def health():
    return {"status": "ok", "service": "genbill"}


@app.get("/status")
def status(request: Request, db: Session = Depends(get_db)):
    db_ok, db_error = check_db_connection(db)
    db_status: dict[str, object] = {"ok": db_ok}
    if db_error:
        db_status["error"] = db_error

    publisher = getattr(request.app.state, "publisher", None)
    if isinstance(publisher, MqttGeneratorEventPublisher):
        notifications_status = {"enabled": True, "connected": publisher.is_connected()}
    else:
        notifications_status = {"enabled": False, "connected": False}

    overdue_sweep_service: OverdueSweepService | None = getattr(
        request.app.state,
        "overdue_sweep_service",
        None,
    )
    if overdue_sweep_service is None:
        overdue_status: dict[str, object] = {
            "running": False,
            "last_error": "Overdue sweep service not initialized",
        }
    else:
        overdue_status = overdue_sweep_service.get_status_snapshot()

    return {
        "database": db_status,
        "notifications": notifications_status,
        "overdue_sweep": overdue_status,
    }
