"""MQTT transport for alert payloads and display commands.

The client runs with a clean session, so the broker forgets subscriptions
whenever paho reconnects on its own (broker restart, network drop). Every
subscription is therefore remembered here and replayed from ``on_connect``.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

LOGGER = logging.getLogger("loudalerts.mqtt")

MessageHandler = Callable[[str], None]


def _connect_failed(reason_code: Any) -> bool:
    # paho 2.x passes a ReasonCode, 1.x an int return code.
    failure = getattr(reason_code, "is_failure", None)
    if failure is not None:
        return bool(failure)
    return reason_code != 0


class AlertsMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._subscriptions: dict[str, int] = {}

    def topic(self, suffix: str) -> str:
        """Full topic name under the configured base, e.g. ``loudalerts/alerts/active``."""
        return f"{self.config.topic_base}/{suffix.strip('/')}"

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] No broker configured; alerts stay local")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except Exception as exc:  # pylint: disable=broad-except
                self._logger.warning(
                    "[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc
                )
                return
            client.loop_start()
            self._client = client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def is_started(self) -> bool:
        """True once connect() succeeded, even before the broker acknowledges."""
        return self._client is not None

    def publish_json(self, topic: str, payload: dict[str, Any], *, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        try:
            client.publish(topic, payload=json.dumps(payload), qos=qos, retain=retain)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.debug("[mqtt] Failed to publish to %s: %s", topic, exc)

    def subscribe(self, topic: str, on_message: MessageHandler, *, qos: int = 1) -> None:
        """Route messages on ``topic`` to ``on_message`` and keep it subscribed across reconnects."""
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            try:
                on_message(message.payload.decode("utf-8", errors="ignore"))
            except Exception:  # pylint: disable=broad-except
                self._logger.exception("[mqtt] Handler for %s failed", topic)

        client.message_callback_add(topic, _callback)
        with self._lock:
            self._subscriptions[topic] = qos
        self._subscribe(client, topic, qos)

    def _build_client(self) -> mqtt.Client:
        kwargs: dict[str, Any] = {
            "client_id": f"loudalerts-{self.config.topic_base}",
            "clean_session": True,
        }
        if hasattr(mqtt, "CallbackAPIVersion"):
            kwargs["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
        client = mqtt.Client(**kwargs)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            tls_kwargs: dict[str, Any] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
            if self.config.ca_cert:
                tls_kwargs["ca_certs"] = self.config.ca_cert
            if self.config.cert:
                tls_kwargs["certfile"] = self.config.cert
            if self.config.key:
                tls_kwargs["keyfile"] = self.config.key
            client.tls_set(**tls_kwargs)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    def _subscribe(self, client: mqtt.Client, topic: str, qos: int) -> None:
        result, _mid = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to %s (rc=%s)", topic, result)

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties=None) -> None:  # type: ignore[no-untyped-def]
        if _connect_failed(reason_code):
            self._logger.warning("[mqtt] Broker refused connection: %s", reason_code)
            return
        with self._lock:
            subscriptions = dict(self._subscriptions)
        for topic, qos in subscriptions.items():
            self._subscribe(client, topic, qos)
        self._logger.info("[mqtt] Connected to %s; %d command topic(s) active", self.config.host, len(subscriptions))

    def _on_disconnect(self, _client, _userdata, *_args) -> None:  # type: ignore[no-untyped-def]
        self._logger.info("[mqtt] Disconnected from %s; waiting for reconnect", self.config.host)
