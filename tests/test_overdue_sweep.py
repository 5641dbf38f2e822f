from __future__ import annotations

import time
from unittest import TestCase

from genbill.core.config import Settings
from genbill.services.overdue_sweep import OverdueSweepService


class _CountingBillingService:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls = 0
        self._fail = fail

    def sweep_overdue(self, today=None) -> int:
        self.calls += 1
        if self._fail:
            raise RuntimeError("database unavailable")
        return 2


class OverdueSweepServiceTests(TestCase):
    def test_run_once_records_snapshot(self) -> None:
        billing = _CountingBillingService()
        service = OverdueSweepService(settings=Settings(_env_file=None), billing_service=billing)  # type: ignore[arg-type]

        self.assertEqual(service.run_once(), 2)

        snapshot = service.get_status_snapshot()
        self.assertEqual(snapshot["last_marked"], 2)
        self.assertIsNotNone(snapshot["last_run_ts"])
        self.assertFalse(snapshot["running"])

    def test_disabled_sweep_does_not_start(self) -> None:
        billing = _CountingBillingService()
        service = OverdueSweepService(
            settings=Settings(_env_file=None, overdue_sweep_enabled=False),
            billing_service=billing,  # type: ignore[arg-type]
        )
        service.start()
        self.assertFalse(service.get_status_snapshot()["running"])
        self.assertEqual(billing.calls, 0)

    def test_loop_survives_failures(self) -> None:
        billing = _CountingBillingService(fail=True)
        service = OverdueSweepService(settings=Settings(_env_file=None), billing_service=billing)  # type: ignore[arg-type]
        service.start()
        try:
            deadline = time.monotonic() + 5
            while billing.calls == 0 and time.monotonic() < deadline:
                time.sleep(0.05)
            self.assertTrue(service.get_status_snapshot()["running"])
        finally:
            service.stop()

        self.assertGreaterEqual(billing.calls, 1)
        self.assertFalse(service.get_status_snapshot()["running"])
