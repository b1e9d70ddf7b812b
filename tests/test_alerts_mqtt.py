"""Tests for the MQTT transport (loudalerts/alerts/mqtt.py)."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from unittest.mock import MagicMock, Mock, patch

import paho.mqtt.client as mqtt
import pytest
from loudalerts.alerts.config import MqttConfig
from loudalerts.alerts.mqtt import AlertsMqtt


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="broker.local",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="office",
    )


@pytest.fixture
def paho_client():
    with patch("paho.mqtt.client.Client") as client_class:
        instance = MagicMock()
        instance.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
        client_class.return_value = instance
        yield client_class, instance


@pytest.fixture
def connected(mqtt_config, mock_logger, paho_client):
    client = AlertsMqtt(mqtt_config, mock_logger)
    client.connect()
    return client


def _deliver(instance, payload: bytes, index: int = 0) -> None:
    wrapper = instance.message_callback_add.call_args_list[index][0][1]
    message = Mock()
    message.payload = payload
    wrapper(None, None, message)


# Topics


def test_topic_joins_base_and_suffix(mqtt_config):
    client = AlertsMqtt(mqtt_config)
    assert client.topic("alerts/active") == "office/alerts/active"
    assert client.topic("/alerts/command/") == "office/alerts/command"


def test_default_logger(mqtt_config):
    client = AlertsMqtt(mqtt_config)
    assert isinstance(client._logger, logging.Logger)
    assert client.is_started() is False


# Connection


def test_connect_configures_client(connected, paho_client):
    client_class, instance = paho_client
    kwargs = client_class.call_args[1]
    assert kwargs["client_id"] == "loudalerts-office"
    assert kwargs["clean_session"] is True
    instance.connect.assert_called_once_with("broker.local", 1883, keepalive=30)
    instance.loop_start.assert_called_once()
    assert instance.on_connect == connected._on_connect
    assert connected.is_started() is True


def test_connect_with_credentials_and_tls(mqtt_config, mock_logger, paho_client):
    _, instance = paho_client
    config = replace(
        mqtt_config,
        username="alerts",
        password="hunter2",
        tls_enabled=True,
        ca_cert="/etc/ssl/ca.crt",
        cert="/etc/ssl/client.crt",
        key="/etc/ssl/client.key",
    )
    AlertsMqtt(config, mock_logger).connect()

    instance.username_pw_set.assert_called_once_with("alerts", "hunter2")
    tls_kwargs = instance.tls_set.call_args[1]
    assert tls_kwargs["ca_certs"] == "/etc/ssl/ca.crt"
    assert tls_kwargs["certfile"] == "/etc/ssl/client.crt"
    assert tls_kwargs["keyfile"] == "/etc/ssl/client.key"
    assert "tls_version" in tls_kwargs


def test_no_host_means_no_client(mqtt_config, mock_logger, paho_client):
    client_class, _ = paho_client
    client = AlertsMqtt(replace(mqtt_config, host=None), mock_logger)
    client.connect()
    client_class.assert_not_called()
    assert client.is_started() is False


def test_connect_failure_is_logged(mqtt_config, mock_logger, paho_client):
    _, instance = paho_client
    instance.connect.side_effect = ConnectionRefusedError("refused")
    client = AlertsMqtt(mqtt_config, mock_logger)
    client.connect()
    assert "Failed to connect" in str(mock_logger.warning.call_args)
    assert client.is_started() is False


def test_connect_is_idempotent(connected, paho_client):
    client_class, instance = paho_client
    connected.connect()
    client_class.assert_called_once()
    instance.connect.assert_called_once()


def test_disconnect(connected, paho_client):
    _, instance = paho_client
    connected.disconnect()
    instance.loop_stop.assert_called_once()
    instance.disconnect.assert_called_once()
    assert connected.is_started() is False


# Reconnects


def test_reconnect_replays_command_subscription(connected, paho_client):
    _, instance = paho_client
    connected.subscribe("office/alerts/command", Mock())
    instance.subscribe.reset_mock()

    # Broker restarted; paho reconnected with a clean session.
    instance.on_connect(instance, None, {}, 0, None)

    instance.subscribe.assert_called_once_with("office/alerts/command", qos=1)


def test_reconnect_keeps_message_routing(connected, paho_client):
    _, instance = paho_client
    handler = Mock()
    connected.subscribe("office/alerts/command", handler)
    instance.on_connect(instance, None, {}, 0, None)
    _deliver(instance, b'{"action": "dismiss"}')
    handler.assert_called_once_with('{"action": "dismiss"}')
    instance.message_callback_add.assert_called_once()


def test_refused_connection_does_not_subscribe(connected, paho_client, mock_logger):
    _, instance = paho_client
    connected.subscribe("office/alerts/command", Mock())
    instance.subscribe.reset_mock()
    instance.on_connect(instance, None, {}, 5, None)
    instance.subscribe.assert_not_called()
    assert "refused" in str(mock_logger.warning.call_args)


def test_first_connect_without_subscriptions(connected, paho_client):
    _, instance = paho_client
    instance.on_connect(instance, None, {}, 0, None)
    instance.subscribe.assert_not_called()


def test_disconnect_callback_accepts_both_paho_signatures(connected, paho_client):
    _, instance = paho_client
    instance.on_disconnect(instance, None, 7)
    instance.on_disconnect(instance, None, {}, 7, None)


# Publishing


def test_publish_json(connected, paho_client):
    _, instance = paho_client
    connected.publish_json("office/alerts/active", {"state": "idle"}, retain=True, qos=1)
    topic = instance.publish.call_args[0][0]
    kwargs = instance.publish.call_args[1]
    assert topic == "office/alerts/active"
    assert json.loads(kwargs["payload"]) == {"state": "idle"}
    assert kwargs["retain"] is True
    assert kwargs["qos"] == 1


def test_publish_without_connection_is_noop(mqtt_config, mock_logger):
    AlertsMqtt(mqtt_config, mock_logger).publish_json("office/alerts/active", {})


def test_publish_failure_is_logged(connected, paho_client, mock_logger):
    _, instance = paho_client
    instance.publish.side_effect = RuntimeError("broker gone")
    connected.publish_json("office/alerts/active", {})
    assert "Failed to publish" in str(mock_logger.debug.call_args)


# Subscribing


def test_subscribe_requires_connection(mqtt_config, mock_logger):
    client = AlertsMqtt(mqtt_config, mock_logger)
    with pytest.raises(RuntimeError, match="MQTT client is not connected"):
        client.subscribe("office/alerts/command", Mock())


def test_subscribe_decodes_payload(connected, paho_client):
    _, instance = paho_client
    handler = Mock()
    connected.subscribe("office/alerts/command", handler)
    instance.subscribe.assert_called_once_with("office/alerts/command", qos=1)
    _deliver(instance, b'{"action": "refresh"}')
    handler.assert_called_once_with('{"action": "refresh"}')


def test_handler_exception_is_logged(connected, paho_client, mock_logger):
    _, instance = paho_client
    connected.subscribe("office/alerts/command", Mock(side_effect=ValueError("bad handler")))
    _deliver(instance, b"{}")
    mock_logger.exception.assert_called_once()


def test_subscribe_failure_rc_is_logged(connected, paho_client, mock_logger):
    _, instance = paho_client
    instance.subscribe.return_value = (mqtt.MQTT_ERR_NO_CONN, None)
    connected.subscribe("office/alerts/command", Mock())
    assert "Failed to subscribe" in str(mock_logger.warning.call_args)
