"""MQTT push transport.

paho-mqtt runs its network loop on a background thread; every callback hops
back onto the asyncio loop with ``call_soon_threadsafe`` so the connector only
ever sees the stream from its own task.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import unquote, urlsplit

import paho.mqtt.client as mqtt

from pyopmon.exceptions import OpmonConfigError, OpmonTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MqttEndpoint:
    """Broker details required to subscribe to the event topic."""

    host: str
    port: int
    topic: str
    tls: bool
    client_id: str
    username: str | None = None
    password: str | None = None


def parse_mqtt_url(url: str) -> MqttEndpoint:
    """Parse ``mqtt[s]://[user[:pass]@]host[:port]/topic``."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in {"mqtt", "mqtts"}:
        raise OpmonConfigError(f"Not an MQTT endpoint: {url!r}")
    if not parts.hostname:
        raise OpmonConfigError("MQTT endpoint is missing a host")
    topic = unquote(parts.path.lstrip("/"))
    if not topic:
        raise OpmonConfigError("MQTT endpoint is missing a topic path")
    tls = scheme == "mqtts"
    return MqttEndpoint(
        host=parts.hostname,
        port=parts.port or (8883 if tls else 1883),
        topic=topic,
        tls=tls,
        client_id=f"pyopmon_{secrets.token_hex(6)}",
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


class _StreamEnd:
    """Queue marker for an unexpected disconnect."""

    def __init__(self, reason: str) -> None:
        self.reason = reason


class MqttTransport:
    """Threaded paho-mqtt client exposed as a message stream."""

    def __init__(self, endpoint: MqttEndpoint, *, keepalive: int = 60) -> None:
        self._endpoint = endpoint
        self._keepalive = keepalive
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str | _StreamEnd] = asyncio.Queue()
        self._connected: asyncio.Future[None] | None = None
        self._closing = False

    @classmethod
    def from_url(cls, url: str, *, keepalive: int = 60) -> MqttTransport:
        return cls(parse_mqtt_url(url), keepalive=keepalive)

    def _post(self, item: str | _StreamEnd) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _resolve_connect(self, error: str | None) -> None:
        waiter = self._connected
        if waiter is None or waiter.done():
            return
        if error is None:
            waiter.set_result(None)
        else:
            waiter.set_exception(OpmonTransportError(error, endpoint=self._endpoint.host))

    async def open(self) -> None:
        endpoint = self._endpoint
        self._loop = asyncio.get_running_loop()
        self._connected = self._loop.create_future()
        self._closing = False
        _logger.debug(
            "MQTT open requested host=%s port=%s topic=%s client_id=%s",
            endpoint.host,
            endpoint.port,
            endpoint.topic,
            endpoint.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=endpoint.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(_logger)
        if endpoint.username:
            client.username_pw_set(endpoint.username, endpoint.password)
        if endpoint.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                _logger.warning("MQTT connect failed: %s", reason_code)
                self._loop_call(self._resolve_connect, f"MQTT connect refused: {reason_code}")
                return
            _logger.debug("MQTT connected reason=%s; subscribing topic=%s", reason_code, endpoint.topic)
            c.subscribe(endpoint.topic, qos=0)
            self._loop_call(self._resolve_connect, None)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._post(msg.payload.decode("utf-8", errors="replace"))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._closing:
                return
            _logger.debug("MQTT disconnected: %s", reason_code)
            self._loop_call(self._resolve_connect, f"MQTT disconnected: {reason_code}")
            self._post(_StreamEnd(f"MQTT disconnected: {reason_code}"))

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect
        self._client = client

        try:
            await self._loop.run_in_executor(
                None,
                lambda: client.connect(endpoint.host, endpoint.port, keepalive=self._keepalive),
            )
        except OSError as exc:
            self._client = None
            raise OpmonTransportError(f"MQTT connect failed: {exc}", endpoint=endpoint.host) from exc
        client.loop_start()
        try:
            await self._connected
        except BaseException:
            await self.close()
            raise
        _logger.debug("MQTT network loop started")

    def _loop_call(self, fn: Any, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    async def messages(self) -> AsyncIterator[str]:
        if self._client is None:
            raise OpmonTransportError("MQTT stream is not open", endpoint=self._endpoint.host)
        while True:
            item = await self._queue.get()
            if isinstance(item, _StreamEnd):
                raise OpmonTransportError(item.reason, endpoint=self._endpoint.host)
            yield item

    async def close(self) -> None:
        client = self._client
        self._client = None
        self._closing = True
        if client is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            _logger.debug("MQTT disconnect requested")
            client.disconnect()
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            _logger.debug("MQTT network loop stopped")
