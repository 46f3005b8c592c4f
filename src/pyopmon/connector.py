"""Event stream connector.

Owns one push-channel connection and feeds every decoded envelope to an
:class:`~pyopmon.dispatcher.EventDispatcher`.  Transport failures drive a
bounded reconnect loop:

- ``connect()`` opens the transport; a successful open resets the retry count.
- a transport error closes the handle and, while ``retry_count < max_retries``,
  arms a single reconnect timer; otherwise the connection becomes ``failed``
  and stays there until the caller invokes ``reconnect()``.
- malformed messages are dropped and logged; they never touch the state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

import aiohttp

from pyopmon._constants import DEFAULT_MAX_RETRIES, DEFAULT_RECONNECT_DELAY
from pyopmon._transport import Transport
from pyopmon.dispatcher import EventDispatcher
from pyopmon.exceptions import OpmonDecodeError, OpmonError, OpmonTransportError
from pyopmon.models.envelope import decode_envelope
from pyopmon.models.status import ConnectionState, ConnectionStatus

_logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]


class EventStreamConnector:
    """Single-connection push channel client with self-healing reconnects."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        dispatcher: EventDispatcher,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        on_state_change: Callable[[ConnectionStatus], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._dispatcher = dispatcher
        self._max_retries = max_retries
        self._reconnect_delay = reconnect_delay
        self._on_state_change = on_state_change
        self._logger = logger or _logger

        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._last_error: str | None = None

        self._transport: Transport | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        # Bumped on every teardown so a stale task cannot act on a newer connection.
        self._generation = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            retry_count=self._retry_count,
            last_error=self._last_error,
        )

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        """Whether an automatic reconnect timer is armed."""
        return self._reconnect_handle is not None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the push channel.  No-op while connecting or connected."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        if self._task is not None and not self._task.done():
            return
        self._cancel_reconnect_timer()
        self._set_state(ConnectionState.CONNECTING)
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="pyopmon-connector")

    async def disconnect(self) -> None:
        """Cancel any pending reconnect, close the transport, go ``disconnected``."""
        self._generation += 1
        self._cancel_reconnect_timer()
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._close_transport()
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> None:
        """Tear down and open again.

        The retry count is kept; only a successful open resets it.
        """
        await self.disconnect()
        self.connect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        generation = self._generation
        try:
            transport = self._transport_factory()
            self._transport = transport
            await transport.open()
            self._retry_count = 0
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)
            self._logger.debug("Push channel connected")

            async for message in transport.messages():
                self._handle_message(message)
                if generation != self._generation:
                    return

            raise OpmonTransportError("Push channel ended")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                return
            if not isinstance(exc, (OpmonError, aiohttp.ClientError, OSError, TimeoutError)):
                self._logger.warning("Unexpected push channel failure", exc_info=True)
            await self._handle_transport_error(exc, generation)

    def _handle_message(self, message: str) -> None:
        try:
            envelope = decode_envelope(message)
        except OpmonDecodeError:
            self._logger.warning("Dropping undecodable push message", exc_info=True)
            return
        self._dispatcher.dispatch(envelope)

    async def _handle_transport_error(self, exc: BaseException, generation: int) -> None:
        await self._close_transport()
        if generation != self._generation:
            return
        self._last_error = str(exc) or type(exc).__name__

        if self._retry_count < self._max_retries:
            self._retry_count += 1
            self._logger.warning(
                "Push channel lost (%s). Retrying (%d/%d) in %.1fs",
                self._last_error,
                self._retry_count,
                self._max_retries,
                self._reconnect_delay,
            )
            self._set_state(ConnectionState.RETRYING)
            loop = asyncio.get_running_loop()
            self._reconnect_handle = loop.call_later(self._reconnect_delay, self._fire_reconnect)
            return

        self._logger.warning(
            "Push channel failed after %d retries: %s",
            self._max_retries,
            self._last_error,
        )
        self._set_state(ConnectionState.FAILED)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect_timer(self) -> None:
        handle = self._reconnect_handle
        self._reconnect_handle = None
        if handle is not None:
            handle.cancel()

    async def _close_transport(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception:
            self._logger.debug("Transport close failed", exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        callback = self._on_state_change
        if callback is None:
            return
        try:
            callback(self.status)
        except Exception:
            self._logger.warning("Connection state callback failed", exc_info=True)
