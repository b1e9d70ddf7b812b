"""
Delivery sinks for fired alerts

A sink receives a JSON-ready alert payload when an alert is presented and a
dismissal when it goes away. The base sink only logs; the MQTT sink publishes
both to ``<topic_base>/alerts/active`` and listens on
``<topic_base>/alerts/command`` for dismiss/snooze/settings commands from a
display client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .mqtt import AlertsMqtt

LOGGER = logging.getLogger("loudalerts.delivery")

CommandHandler = Callable[[dict[str, Any]], Awaitable[None]]


class AlertSink:
    """Log-only sink; subclasses push alerts somewhere a human will see them."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    async def start(self, command_handler: CommandHandler) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def present(self, alert: dict[str, Any]) -> None:
        event = alert.get("event") or {}
        self._logger.warning(
            "ALERT: %s %s (%s)",
            event.get("title") or "Calendar event",
            alert.get("starts_in") or "now",
            alert.get("alarm") or "no alarm",
        )

    async def dismiss(self, event_id: str, *, reason: str = "dismissed") -> None:
        self._logger.info("Alert %s cleared (%s)", event_id, reason)


class MqttAlertSink(AlertSink):
    def __init__(self, mqtt: AlertsMqtt, *, logger: logging.Logger | None = None) -> None:
        super().__init__(logger)
        self._mqtt = mqtt
        self.active_topic = mqtt.topic("alerts/active")
        self.command_topic = mqtt.topic("alerts/command")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._command_handler: CommandHandler | None = None

    async def start(self, command_handler: CommandHandler) -> None:
        self._loop = asyncio.get_running_loop()
        self._command_handler = command_handler
        await asyncio.to_thread(self._mqtt.connect)
        if not self._mqtt.is_started():
            self._logger.warning("MQTT unavailable; alerts will only be logged")
            return
        self._mqtt.subscribe(self.command_topic, self._handle_command_message)
        self._publish({"state": "idle"}, retain=True)

    async def stop(self) -> None:
        self._publish({"state": "idle"}, retain=True)
        await asyncio.to_thread(self._mqtt.disconnect)

    async def present(self, alert: dict[str, Any]) -> None:
        await super().present(alert)
        self._publish(alert, retain=True)

    async def dismiss(self, event_id: str, *, reason: str = "dismissed") -> None:
        await super().dismiss(event_id, reason=reason)
        self._publish({"state": "idle", "event_id": event_id, "reason": reason}, retain=True)

    def _publish(self, payload: dict[str, Any], *, retain: bool = False) -> None:
        self._mqtt.publish_json(self.active_topic, payload, retain=retain)

    def _handle_command_message(self, payload: str) -> None:
        # Runs on the paho network thread.
        if not self._loop or not self._command_handler:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._logger.debug("Ignoring malformed alert command: %s", payload)
            return
        if not isinstance(data, dict):
            self._logger.debug("Ignoring non-object alert command: %s", payload)
            return
        asyncio.run_coroutine_threadsafe(self._command_handler(data), self._loop)
