"""Push channel transports.

A transport owns one long-lived server-initiated stream and yields the text
payload of every inbound message.  The connector drives it; nothing else
touches the handle.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Protocol

import aiohttp

from pyopmon._constants import MQTT_SCHEMES, USER_AGENT
from pyopmon._mqtt import MqttTransport
from pyopmon._redact import redact_url
from pyopmon.config import MonitorConfig
from pyopmon.exceptions import OpmonConfigError, OpmonTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the connector.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    async def open(self) -> None:
        """Establish the stream; raise on failure."""
        ...

    def messages(self) -> AsyncIterator[str]:
        """Yield message payloads; raise :class:`OpmonTransportError` when the stream ends."""
        ...

    async def close(self) -> None:
        """Release the stream.  Must be idempotent."""
        ...


class SseParser:
    """Incremental Server-Sent Events line parser.

    Feed it decoded lines (without terminators); it returns the joined
    ``data`` payload when a blank line completes an event.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload
        if line.startswith(":"):
            # Comment (the server uses these as heartbeats).
            return None
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        # event/id/retry are not used: the event name travels inside the JSON.
        return None


class SseTransport:
    """Server-Sent Events over an aiohttp GET request."""

    def __init__(
        self,
        url: str,
        http_session: aiohttp.ClientSession,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._url = url
        self._http = http_session
        self._headers = dict(headers or {})
        self._response: aiohttp.ClientResponse | None = None

    async def open(self) -> None:
        headers: dict[str, str] = {
            "accept": "text/event-stream",
            "cache-control": "no-cache",
            "user-agent": USER_AGENT,
        }
        headers.update(self._headers)

        _logger.debug("GET %s (event stream)", redact_url(self._url))

        try:
            resp = await self._http.get(
                self._url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            )
        except aiohttp.ClientError as exc:
            raise OpmonTransportError(
                f"Event stream request failed: {exc}",
                endpoint=redact_url(self._url),
            ) from exc

        if resp.status != 200:
            text = await resp.text()
            resp.release()
            raise OpmonTransportError(
                f"HTTP {resp.status} from event stream: {text[:200]}",
                status_code=resp.status,
                endpoint=redact_url(self._url),
            )
        self._response = resp

    async def messages(self) -> AsyncIterator[str]:
        resp = self._response
        if resp is None:
            raise OpmonTransportError("Event stream is not open", endpoint=redact_url(self._url))

        parser = SseParser()
        try:
            async for raw_line in resp.content:
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                payload = parser.feed(line)
                if payload is not None:
                    yield payload
        except aiohttp.ClientError as exc:
            raise OpmonTransportError(
                f"Event stream read failed: {exc}",
                endpoint=redact_url(self._url),
            ) from exc
        raise OpmonTransportError("Event stream closed by server", endpoint=redact_url(self._url))

    async def close(self) -> None:
        resp = self._response
        self._response = None
        if resp is not None:
            resp.close()


def build_transport(config: MonitorConfig, http_session: aiohttp.ClientSession | None) -> Transport:
    """Pick a transport implementation from the endpoint scheme."""
    if config.scheme in MQTT_SCHEMES:
        return MqttTransport.from_url(config.endpoint, keepalive=config.mqtt_keepalive)
    if http_session is None:
        raise OpmonConfigError("An aiohttp session is required for event stream endpoints")
    return SseTransport(config.endpoint, http_session, headers=config.headers)
