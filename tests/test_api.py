from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from genbill.api.bills import router as bills_router
from genbill.api.errors import register_error_handlers
from genbill.api.fuel_prices import router as fuel_prices_router
from genbill.api.generators import router as generators_router
from genbill.api.logs import router as logs_router
from genbill.api.zones import router as zones_router
from genbill.core.config import Settings
from genbill.services.billing import BillingService
from genbill.services.fuel_prices import FuelPriceService
from genbill.services.generator_registry import GeneratorRegistryService
from genbill.services.overdue_sweep import OverdueSweepService
from genbill.services.usage_ledger import UsageLedgerService
from genbill.services.zones import ZoneService
from tests.sqlite_support import memory_session_factory

ADMIN_HEADERS = {"X-Actor-Id": "1", "X-Actor-Role": "commercial"}
OPERATOR_HEADERS = {"X-Actor-Id": "200", "X-Actor-Role": "operator"}
CLIENT_HEADERS = {"X-Actor-Id": "300", "X-Actor-Role": "client"}
OTHER_CLIENT_HEADERS = {"X-Actor-Id": "301", "X-Actor-Role": "customer"}


def _build_client() -> TestClient:
    factory = memory_session_factory()
    settings = Settings(_env_file=None)
    app = FastAPI()
    register_error_handlers(app)
    for router in (zones_router, generators_router, logs_router, fuel_prices_router, bills_router):
        app.include_router(router)
    app.state.settings = settings
    app.state.zone_service = ZoneService(session_factory=factory)
    app.state.generator_registry_service = GeneratorRegistryService(session_factory=factory)
    app.state.usage_ledger_service = UsageLedgerService(session_factory=factory)
    app.state.fuel_price_service = FuelPriceService(session_factory=factory)
    billing_service = BillingService(settings=settings, session_factory=factory)
    app.state.billing_service = billing_service
    app.state.overdue_sweep_service = OverdueSweepService(settings=settings, billing_service=billing_service)
    return TestClient(app)


class ApiTests(TestCase):
    def setUp(self) -> None:
        self.client = _build_client()
        response = self.client.post(
            "/api/zones",
            json={"name": "North", "client_id": 300, "operator_id": 200, "generator_mix": {"100": 1}},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.zone_id = response.json()["id"]
        generators = self.client.get("/api/generators", headers=OPERATOR_HEADERS).json()
        self.assertEqual(len(generators), 1)
        self.generator_id = generators[0]["id"]

    def test_actor_headers_are_required(self) -> None:
        self.assertEqual(self.client.get("/api/zones").status_code, 401)
        response = self.client.get("/api/zones", headers={"X-Actor-Id": "1", "X-Actor-Role": "root"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["kind"], "validation_error")

    def test_non_admin_cannot_create_zone(self) -> None:
        response = self.client.post("/api/zones", json={"name": "South"}, headers=OPERATOR_HEADERS)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["kind"], "access_denied")

    def test_invalid_body_maps_to_validation_error(self) -> None:
        response = self.client.post("/api/zones", json={"client_id": "abc"}, headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["kind"], "validation_error")

    def test_start_twice_is_conflict(self) -> None:
        url = f"/api/generators/{self.generator_id}/start"
        first = self.client.post(url, headers=OPERATOR_HEADERS)
        self.assertEqual(first.status_code, 200, first.text)
        body = first.json()
        self.assertEqual(body["generator"]["status"], "running")
        self.assertEqual(body["log_entry"]["action"], "start")
        self.assertEqual(body["warnings"], [])

        second = self.client.post(url, headers=OPERATOR_HEADERS)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["kind"], "conflict")

    def test_client_cannot_operate_generators(self) -> None:
        response = self.client.post(f"/api/generators/{self.generator_id}/start", headers=CLIENT_HEADERS)
        self.assertEqual(response.status_code, 403)

    def test_billing_flow(self) -> None:
        today = datetime.now(timezone.utc).date()
        period = {
            "zone_id": self.zone_id,
            "billing_period_start": (today - timedelta(days=1)).isoformat(),
            "billing_period_end": (today + timedelta(days=1)).isoformat(),
        }

        missing_price = self.client.post("/api/bills", json=period, headers=ADMIN_HEADERS)
        self.assertEqual(missing_price.status_code, 412)
        self.assertEqual(missing_price.json()["reason"], "NoActiveFuelPrice")

        price = self.client.post(
            "/api/fuel-prices",
            json={"price_per_unit": "1.50", "effective_date": (today - timedelta(days=1)).isoformat()},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(price.status_code, 201, price.text)

        self.client.post(f"/api/generators/{self.generator_id}/start", headers=OPERATOR_HEADERS)
        stopped = self.client.post(
            f"/api/generators/{self.generator_id}/stop",
            json={"metrics": {"runtime_hours": "5", "fuel_consumed_liters": "20"}},
            headers=OPERATOR_HEADERS,
        )
        self.assertEqual(stopped.status_code, 200, stopped.text)

        created = self.client.post("/api/bills", json=period, headers=ADMIN_HEADERS)
        self.assertEqual(created.status_code, 201, created.text)
        bill = created.json()
        self.assertEqual(bill["bill_number"], "BILL-000001")
        self.assertEqual(bill["status"], "pending")
        self.assertEqual(bill["fuel_cost"], "30.00")
        self.assertEqual(bill["service_fee"], "1.50")
        self.assertEqual(bill["total_amount"], "31.50")
        self.assertEqual(len(bill["line_items"]), 1)

        own = self.client.get(f"/api/bills/{bill['id']}", headers=CLIENT_HEADERS)
        self.assertEqual(own.status_code, 200)
        foreign = self.client.get(f"/api/bills/{bill['id']}", headers=OTHER_CLIENT_HEADERS)
        self.assertEqual(foreign.status_code, 404)
        self.assertEqual(self.client.get("/api/bills", headers=OTHER_CLIENT_HEADERS).json(), [])

        sent = self.client.post(
            f"/api/bills/{bill['id']}/status",
            json={"status": "sent"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(sent.json()["status"], "sent")
        overdue = self.client.post(
            f"/api/bills/{bill['id']}/status",
            json={"status": "overdue"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(overdue.status_code, 400)

    def test_logs_are_scoped(self) -> None:
        self.client.post(f"/api/generators/{self.generator_id}/start", headers=OPERATOR_HEADERS)
        self.assertEqual(len(self.client.get("/api/logs", headers=OPERATOR_HEADERS).json()), 1)
        self.assertEqual(self.client.get("/api/logs", headers=OTHER_CLIENT_HEADERS).json(), [])
        self.assertEqual(
            self.client.get("/api/logs", params={"action": "start"}, headers=ADMIN_HEADERS).status_code,
            200,
        )

    def test_fuel_price_listing_denied_for_operators(self) -> None:
        self.assertEqual(self.client.get("/api/fuel-prices", headers=OPERATOR_HEADERS).status_code, 403)
        self.assertEqual(self.client.get("/api/fuel-prices", headers=CLIENT_HEADERS).json(), [])

    def test_zone_delete_with_generators_is_conflict(self) -> None:
        response = self.client.delete(f"/api/zones/{self.zone_id}", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(
            self.client.get(f"/api/zones/{self.zone_id}", headers=CLIENT_HEADERS).json()["name"],
            "North",
        )

    def test_manual_overdue_sweep_is_admin_only(self) -> None:
        denied = self.client.post("/api/bills/sweep-overdue", headers=OPERATOR_HEADERS)
        self.assertEqual(denied.status_code, 403)
        response = self.client.post("/api/bills/sweep-overdue", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json(), {"marked_overdue": 0})

    def test_store_failures_render_persistence_error(self) -> None:
        store_down = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch("genbill.services.generator_registry.get_generator", side_effect=store_down):
            response = self.client.post(f"/api/generators/{self.generator_id}/start", headers=OPERATOR_HEADERS)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["kind"], "persistence_error")

        with patch.object(self.client.app.state.zone_service, "list_zones", side_effect=store_down):
            response = self.client.get("/api/zones", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["kind"], "persistence_error")
