from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import aiohttp
import pytest

from pyopmon._transport import SseTransport
from pyopmon.connector import EventStreamConnector
from pyopmon.dispatcher import EventDispatcher
from pyopmon.exceptions import OpmonTransportError
from pyopmon.models.envelope import Envelope
from pyopmon.models.status import ConnectionState, ConnectionStatus


@dataclass
class FakeBackend:
    """Scripted push server: fails the first N opens, then streams messages."""

    open_failures: int = 0
    open_error: Exception | None = None
    messages: list[str] = field(default_factory=list)
    opens: int = 0
    closes: int = 0
    live: list[FakeTransport] = field(default_factory=list)

    def factory(self) -> FakeTransport:
        return FakeTransport(self)


class FakeTransport:
    def __init__(self, backend: FakeBackend) -> None:
        self._backend = backend
        self._closed = asyncio.Event()
        self._drop = asyncio.Event()

    async def open(self) -> None:
        self._backend.opens += 1
        if self._backend.opens <= self._backend.open_failures:
            raise self._backend.open_error or OpmonTransportError("connection refused")
        self._backend.live.append(self)

    async def messages(self) -> AsyncIterator[str]:
        for message in self._backend.messages:
            yield message
        await self._drop.wait()
        raise OpmonTransportError("stream dropped")

    def drop(self) -> None:
        self._drop.set()

    async def close(self) -> None:
        if not self._closed.is_set():
            self._backend.closes += 1
            self._closed.set()
        if self in self._backend.live:
            self._backend.live.remove(self)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


def _connector(backend: FakeBackend, dispatcher: EventDispatcher | None = None, **kwargs: object) -> EventStreamConnector:
    return EventStreamConnector(
        backend.factory,
        dispatcher or EventDispatcher(),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_open_and_forward_envelopes() -> None:
    backend = FakeBackend(messages=['{"type":"upload:start","data":{"videoId":"v1"}}'])
    dispatcher = EventDispatcher()
    seen: list[Envelope] = []
    dispatcher.subscribe("upload:start", seen.append)
    connector = _connector(backend, dispatcher)

    connector.connect()
    await _wait_for(lambda: len(seen) == 1)

    assert connector.state == ConnectionState.CONNECTED
    assert connector.retry_count == 0
    assert connector.last_error is None
    assert seen[0].data == {"videoId": "v1"}
    await connector.disconnect()


@pytest.mark.asyncio
async def test_connect_is_idempotent() -> None:
    backend = FakeBackend()
    connector = _connector(backend)

    connector.connect()
    connector.connect()
    await _wait_for(lambda: connector.is_connected)
    connector.connect()
    await asyncio.sleep(0.01)

    assert backend.opens == 1
    await connector.disconnect()


@pytest.mark.asyncio
async def test_undecodable_message_is_dropped_without_affecting_connection() -> None:
    backend = FakeBackend(
        messages=[
            "{not json",
            '{"data": {}}',
            '{"type":"queue:updated","data":{"size":1}}',
        ]
    )
    dispatcher = EventDispatcher()
    seen: list[Envelope] = []
    dispatcher.subscribe("*", seen.append)
    connector = _connector(backend, dispatcher)

    connector.connect()
    await _wait_for(lambda: len(seen) == 1)

    assert seen[0].type == "queue:updated"
    assert connector.state == ConnectionState.CONNECTED
    await connector.disconnect()


@pytest.mark.asyncio
async def test_listener_failure_does_not_reach_connector() -> None:
    backend = FakeBackend(messages=['{"type":"upload:start","data":{"videoId":"v1"}}'])
    dispatcher = EventDispatcher()
    seen: list[Envelope] = []

    def boom(_env: Envelope) -> None:
        raise RuntimeError("listener bug")

    dispatcher.subscribe("upload:start", boom)
    dispatcher.subscribe("*", seen.append)
    connector = _connector(backend, dispatcher)

    connector.connect()
    await _wait_for(lambda: len(seen) == 1)

    assert connector.state == ConnectionState.CONNECTED
    assert connector.retry_count == 0
    await connector.disconnect()


@pytest.mark.asyncio
async def test_fails_after_max_retries_and_stops_reconnecting() -> None:
    backend = FakeBackend(open_failures=1000)
    states: list[ConnectionStatus] = []
    connector = _connector(backend, max_retries=5, reconnect_delay=0.0, on_state_change=states.append)

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.FAILED)
    await asyncio.sleep(0.02)

    # Initial attempt plus five retries.
    assert backend.opens == 6
    assert connector.retry_count == 5
    assert connector.state == ConnectionState.FAILED
    assert not connector.reconnect_pending
    assert connector.last_error == "connection refused"
    assert [s.retry_count for s in states if s.state == ConnectionState.RETRYING] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_successful_open_resets_retry_count() -> None:
    backend = FakeBackend(open_failures=3)
    states: list[ConnectionStatus] = []
    connector = _connector(backend, max_retries=5, reconnect_delay=0.0, on_state_change=states.append)

    connector.connect()
    await _wait_for(lambda: connector.is_connected)

    assert backend.opens == 4
    assert connector.retry_count == 0
    assert connector.last_error is None
    assert max(s.retry_count for s in states) == 3
    await connector.disconnect()


@pytest.mark.asyncio
async def test_dropped_stream_reconnects() -> None:
    backend = FakeBackend()
    connector = _connector(backend, reconnect_delay=0.0)

    connector.connect()
    await _wait_for(lambda: connector.is_connected)
    backend.live[0].drop()
    await _wait_for(lambda: backend.opens == 2 and connector.is_connected)

    assert backend.closes == 1
    assert connector.retry_count == 0
    await connector.disconnect()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect() -> None:
    backend = FakeBackend(open_failures=1)
    connector = _connector(backend, reconnect_delay=0.05)

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.RETRYING)
    assert connector.reconnect_pending

    await connector.disconnect()
    await connector.disconnect()
    await asyncio.sleep(0.1)

    assert connector.state == ConnectionState.DISCONNECTED
    assert not connector.reconnect_pending
    assert backend.opens == 1


@pytest.mark.asyncio
async def test_disconnect_closes_live_transport() -> None:
    backend = FakeBackend()
    connector = _connector(backend)

    connector.connect()
    await _wait_for(lambda: connector.is_connected)
    await connector.disconnect()

    assert backend.closes == 1
    assert backend.live == []
    assert connector.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_from_inside_listener_does_not_trigger_retry() -> None:
    backend = FakeBackend(messages=['{"type":"queue:paused","data":{}}'])
    dispatcher = EventDispatcher()
    connector = _connector(backend, dispatcher, reconnect_delay=0.0)
    tasks: list[asyncio.Task[None]] = []
    dispatcher.subscribe("queue:paused", lambda env: tasks.append(asyncio.ensure_future(connector.disconnect())))

    connector.connect()
    await _wait_for(lambda: len(tasks) == 1)
    await tasks[0]
    await asyncio.sleep(0.02)

    assert connector.state == ConnectionState.DISCONNECTED
    assert backend.opens == 1


@pytest.mark.asyncio
async def test_reconnect_keeps_retry_count_until_open_succeeds() -> None:
    backend = FakeBackend(open_failures=1)
    connector = _connector(backend, reconnect_delay=60.0)

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.RETRYING)
    assert connector.retry_count == 1

    await connector.reconnect()
    assert connector.retry_count == 1
    assert connector.state == ConnectionState.CONNECTING

    await _wait_for(lambda: connector.is_connected)
    assert connector.retry_count == 0
    await connector.disconnect()


@pytest.mark.asyncio
async def test_failed_connection_recovers_through_reconnect() -> None:
    backend = FakeBackend(open_failures=2)
    connector = _connector(backend, max_retries=1, reconnect_delay=0.0)

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.FAILED)

    await connector.reconnect()
    await _wait_for(lambda: connector.is_connected)
    assert backend.opens == 3
    await connector.disconnect()


@pytest.mark.asyncio
async def test_unexpected_open_error_enters_retry_loop() -> None:
    backend = FakeBackend(open_failures=1, open_error=RuntimeError("transport bug"))
    connector = _connector(backend, reconnect_delay=60.0)

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.RETRYING)

    assert connector.retry_count == 1
    assert connector.last_error == "transport bug"
    assert connector.reconnect_pending
    await connector.disconnect()


@pytest.mark.asyncio
async def test_closed_http_session_fails_instead_of_hanging() -> None:
    session = aiohttp.ClientSession()
    await session.close()
    connector = EventStreamConnector(
        lambda: SseTransport("http://127.0.0.1:9/events", session),
        EventDispatcher(),
        max_retries=1,
        reconnect_delay=0.0,
    )

    connector.connect()
    await _wait_for(lambda: connector.state == ConnectionState.FAILED)

    assert connector.retry_count == 1
    assert not connector.reconnect_pending
    await connector.disconnect()
