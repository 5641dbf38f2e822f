from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread

from genbill.core.config import Settings
from genbill.services.billing import BillingService


class OverdueSweepService:
    def __init__(self, *, settings: Settings, billing_service: BillingService):
        self._settings = settings
        self._billing_service = billing_service
        self._logger = logging.getLogger("genbill.overdue_sweep")
        self._stop_event = Event()
        self._thread: Thread | None = None
        self._lock = Lock()
        self._running = False
        self._last_run_ts: datetime | None = None
        self._last_marked: int | None = None
        self._last_error: str | None = None

    def start(self) -> None:
        if not self._settings.overdue_sweep_enabled:
            self._logger.info("overdue sweep disabled")
            return
        with self._lock:
            if self._running:
                return
            self._running = True
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="overdue-sweep", daemon=True)
        self._thread.start()
        self._logger.info(
            "started overdue sweep interval_seconds=%s",
            self._settings.overdue_sweep_interval_seconds,
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        with self._lock:
            self._running = False

    def run_once(self) -> int:
        marked = self._billing_service.sweep_overdue()
        with self._lock:
            self._last_run_ts = datetime.now(timezone.utc)
            self._last_marked = marked
        return marked

    def get_status_snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "enabled": self._settings.overdue_sweep_enabled,
                "running": self._running and not self._stop_event.is_set(),
                "interval_seconds": self._settings.overdue_sweep_interval_seconds,
                "last_run_ts": self._last_run_ts.isoformat() if self._last_run_ts else None,
                "last_marked": self._last_marked,
                "last_error": self._last_error,
            }

    def _loop(self) -> None:
        next_run = datetime.now(timezone.utc)
        interval = timedelta(seconds=self._settings.overdue_sweep_interval_seconds)

        while not self._stop_event.is_set():
            now = datetime.now(timezone.utc)
            if now >= next_run:
                try:
                    self.run_once()
                    with self._lock:
                        self._last_error = None
                except Exception as exc:
                    self._logger.exception("overdue sweep iteration failed")
                    with self._lock:
                        self._last_error = str(exc)
                next_run = now + interval

            self._stop_event.wait(1.0)
