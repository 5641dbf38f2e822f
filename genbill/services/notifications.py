from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from threading import Lock
from typing import Any, Protocol

import paho.mqtt.client as mqtt

from genbill.core.config import Settings
from genbill.db.models import Generator, UsageLogEntry


class GeneratorEventPublisher(Protocol):
    def publish_generator_event(self, generator: Generator, log_entry: UsageLogEntry | None) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class NullGeneratorEventPublisher:
    def publish_generator_event(self, generator: Generator, log_entry: UsageLogEntry | None) -> None:
        return None

    def start(self) -> None:
        return None

    def stop(self) -> None:
        return None


class MqttGeneratorEventPublisher:
    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._logger = logging.getLogger("genbill.notifications")
        self._lock = Lock()
        self._connected = False
        self._topic_prefix = settings.mqtt_topic_prefix.rstrip("/")
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.mqtt_client_id,
            clean_session=True,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)

    def start(self) -> None:
        self._logger.info(
            "starting mqtt publisher broker=%s:%s topic_prefix=%s",
            self._settings.mqtt_broker_host,
            self._settings.mqtt_broker_port,
            self._topic_prefix,
        )
        self._client.connect_async(
            host=self._settings.mqtt_broker_host,
            port=self._settings.mqtt_broker_port,
            keepalive=60,
        )
        self._client.loop_start()

    def stop(self) -> None:
        self._client.loop_stop()
        try:
            self._client.disconnect()
        except Exception:
            self._logger.exception("mqtt publisher disconnect failed")

    def publish_generator_event(self, generator: Generator, log_entry: UsageLogEntry | None) -> None:
        topic = f"{self._topic_prefix}/generators/{generator.id}/events"
        action = log_entry.action if log_entry is not None else generator.status
        payload = build_generator_event_payload(generator, log_entry, action=action)
        try:
            info = self._client.publish(
                topic,
                json.dumps(payload, default=_json_default, separators=(",", ":")),
                qos=self._settings.mqtt_qos,
            )
        except Exception:
            self._logger.warning("mqtt publish raised topic=%s", topic, exc_info=True)
            return
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("mqtt publish failed topic=%s rc=%s", topic, info.rc)

    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        with self._lock:
            self._connected = not reason_code.is_failure
        if reason_code.is_failure:
            self._logger.error("mqtt publisher connect failed reason=%s", reason_code)
        else:
            self._logger.info("mqtt publisher connected")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        with self._lock:
            self._connected = False
        self._logger.warning("mqtt publisher disconnected reason=%s", reason_code)


def build_publisher(settings: Settings) -> GeneratorEventPublisher:
    if not settings.notifications_enabled:
        return NullGeneratorEventPublisher()
    return MqttGeneratorEventPublisher(settings=settings)


def build_generator_event_payload(
    generator: Generator,
    log_entry: UsageLogEntry | None,
    *,
    action: str,
) -> dict[str, Any]:
    return {
        "event": f"generator.{action}",
        "generator": {
            "id": generator.id,
            "name": generator.name,
            "zone_id": generator.zone_id,
            "status": generator.status,
            "last_operator_id": generator.last_operator_id,
        },
        "logEntry": None
        if log_entry is None
        else {
            "id": log_entry.id,
            "action": log_entry.action,
            "operator_id": log_entry.operator_id,
            "timestamp": log_entry.timestamp,
            "runtime_hours": log_entry.runtime_hours,
            "fuel_consumed_liters": log_entry.fuel_consumed_liters,
            "fuel_added_liters": log_entry.fuel_added_liters,
            "fault_description": log_entry.fault_description,
        },
    }


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
