"""High-level live operation monitor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from pyopmon._transport import Transport, build_transport
from pyopmon.config import MonitorConfig
from pyopmon.connector import EventStreamConnector, TransportFactory
from pyopmon.dispatcher import EventDispatcher, Listener, Unsubscribe
from pyopmon.exceptions import OpmonError
from pyopmon.models.progress import ProgressEntry
from pyopmon.models.status import ConnectionStatus
from pyopmon.polling import FetchCallback, PollingScheduler
from pyopmon.state.progress import ProgressAggregator

_logger = logging.getLogger(__name__)


class LiveMonitor:
    """Push channel, poll fallback and progress view for one monitored screen.

    Usage::

        async with LiveMonitor(config, fetch=load_queue, on_poll_result=render) as monitor:
            monitor.subscribe("upload:complete", on_upload_done)
            ...
            entry = monitor.get_progress("v1")
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        fetch: FetchCallback | None = None,
        on_poll_result: Callable[[Any], None] | None = None,
        on_poll_error: Callable[[BaseException], None] | None = None,
        on_connection_change: Callable[[ConnectionStatus], None] | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport_factory = transport_factory

        self._dispatcher = EventDispatcher()
        self._progress = ProgressAggregator(
            self._dispatcher,
            id_field=config.id_field,
            sequence_field=config.sequence_field,
        )
        self._connector = EventStreamConnector(
            self._make_transport,
            self._dispatcher,
            max_retries=config.max_retries,
            reconnect_delay=config.reconnect_delay,
            on_state_change=on_connection_change,
        )
        self._scheduler: PollingScheduler | None = None
        if fetch is not None:
            self._scheduler = PollingScheduler(
                fetch,
                config=config.polling,
                on_result=on_poll_result,
                on_error=on_poll_error,
            )
        self._started = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LiveMonitor:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            return
        if self._http_session is None and self._transport_factory is None:
            self._http_session = aiohttp.ClientSession()
        self._started = True
        self._progress.attach(self._dispatcher)
        self._connector.connect()
        if self._scheduler is not None and self._config.polling.enabled:
            self._scheduler.start()
        _logger.debug("Live monitor started")

    async def close(self) -> None:
        """Stop polling, close the push channel and release owned resources."""
        if self._scheduler is not None:
            self._scheduler.stop()
        await self._connector.disconnect()
        self._progress.detach()
        self._dispatcher.clear()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._started = False
        _logger.debug("Live monitor closed")

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def connector(self) -> EventStreamConnector:
        return self._connector

    @property
    def progress(self) -> ProgressAggregator:
        return self._progress

    @property
    def scheduler(self) -> PollingScheduler | None:
        return self._scheduler

    @property
    def connection(self) -> ConnectionStatus:
        return self._connector.status

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def subscribe(self, event_type: str, callback: Listener) -> Unsubscribe:
        return self._dispatcher.subscribe(event_type, callback)

    def get_progress(self, operation_id: str) -> ProgressEntry | None:
        return self._progress.get(operation_id)

    async def reconnect(self) -> None:
        await self._connector.reconnect()

    def _make_transport(self) -> Transport:
        if self._transport_factory is not None:
            return self._transport_factory()
        if not self._started:
            raise OpmonError("Monitor not started. Use 'async with LiveMonitor(...) as monitor:'")
        return build_transport(self._config, self._http_session)
