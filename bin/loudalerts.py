#!/usr/bin/env python3
"""Loud Alerts daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from loudalerts.alerts.config import AlertsConfig
from loudalerts.alerts.delivery import AlertSink, MqttAlertSink
from loudalerts.alerts.mqtt import AlertsMqtt
from loudalerts.alerts.service import AlertService

LOGGER = logging.getLogger("loudalerts")


def _build_sink(config: AlertsConfig) -> AlertSink:
    if not config.mqtt.host:
        LOGGER.info("LOUDALERTS_MQTT_HOST not set; alerts will be written to the log only")
        return AlertSink()
    mqtt = AlertsMqtt(config.mqtt, logger=logging.getLogger("loudalerts.mqtt"))
    return MqttAlertSink(mqtt)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Full-screen calendar alerts daemon")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--test-alert", action="store_true", help="present a demo alert at startup")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AlertsConfig.from_env()
    if not config.calendar.feeds:
        LOGGER.warning("No calendar feeds configured (LOUDALERTS_ICS_URLS is empty)")
    service = AlertService(config=config, sink=_build_sink(config))

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await service.start()
    LOGGER.info(
        "Loud Alerts running with %d feed(s), polling every %ds",
        len(config.calendar.feeds),
        config.calendar.poll_seconds,
    )
    if args.test_alert:
        service.trigger_test_alert()
    await stop_event.wait()
    await service.stop()


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
