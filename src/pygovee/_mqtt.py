"""IoT push listener (paho-mqtt) and push payload parsing.

The vendor pushes device status records over MQTT with client-certificate
TLS. Obtaining the certificate and account topic is the credential
loader's job; this module only needs the resulting :class:`PushBootstrap`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pygovee.exceptions import GoveeDecodeError
from pygovee.state.events import TransportSource


@dataclass(frozen=True)
class PushBootstrap:
    """Broker/credential data required to connect to the push channel."""

    broker_host: str
    topic: str
    client_id: str
    certfile: str
    keyfile: str
    broker_port: int = 8883
    ca_certs: str | None = None


def parse_broker(raw_broker: str) -> tuple[str, int]:
    """Split ``[scheme://]host[:port][/path]``; the port defaults to 8883."""
    value = raw_broker.strip()
    if not value:
        raise ValueError("Broker value is empty")

    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, 8883


def decode_push_payload(payload: bytes) -> dict[str, Any]:
    """Parse one push message body into a JSON object.

    Some records wrap the status in a JSON string under ``msg``; that layer
    is unwrapped so callers always get the record itself.
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise GoveeDecodeError(f"push payload is not JSON: {exc}", source=TransportSource.CLOUD_PUSH) from exc
    if isinstance(parsed, dict) and isinstance(parsed.get("msg"), str):
        try:
            inner = json.loads(parsed["msg"])
        except ValueError:
            inner = None
        if isinstance(inner, dict):
            parsed = inner
    if not isinstance(parsed, dict):
        raise GoveeDecodeError("push payload is not a JSON object", source=TransportSource.CLOUD_PUSH)
    return parsed


class GoveePushRuntime:
    """Threaded paho-mqtt runtime that hands parsed records to an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_record: Callable[[dict[str, Any]], None],
        keepalive: int = 120,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_record = on_record
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the push runtime is actively running."""
        return self._running

    def _handle_payload(self, topic: str, payload: bytes) -> None:
        try:
            record = decode_push_payload(payload)
        except GoveeDecodeError:
            self._logger.debug("Push payload parse failure topic=%s", topic, exc_info=True)
            return
        self._logger.debug("Push record topic=%s device=%s", topic, record.get("device"))
        self._loop.call_soon_threadsafe(self._on_record, record)

    def start(self, bootstrap: PushBootstrap) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug(
            "Push runtime start requested host=%s port=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
        )
        client.enable_logger(self._logger)
        client.tls_set(ca_certs=bootstrap.ca_certs, certfile=bootstrap.certfile, keyfile=bootstrap.keyfile)

        self._topic = bootstrap.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("Push connect failed: %s", reason_code)
                return
            self._logger.debug("Push channel connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._handle_payload(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("Push channel disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("Push network loop started")

    def stop(self) -> None:
        """Stop and disconnect current client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("Push network loop stopped")
