"""Adaptive polling scheduler.

Runs a caller-supplied ``fetch`` coroutine on a single self-re-arming timer
chain.  The cadence adapts to the host:

* while the host is hidden (and ``pause_on_hidden`` is set) no tick is armed;
  becoming visible again resets the cadence and fetches immediately.
* after ``idle_threshold`` seconds without activity each newly armed tick
  multiplies the interval by ``backoff_factor`` up to ``max_interval``;
  activity, ``refresh()`` and visibility returning reset it.
* while ``pending`` is set, ticks skip the fetch but keep re-arming.

The scheduler owns exactly one :class:`asyncio.TimerHandle` at a time; every
re-arm cancels the previous handle first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pyopmon.config import PollingConfig
from pyopmon.models.status import PollState

_logger = logging.getLogger(__name__)

FetchCallback = Callable[[], Awaitable[Any]]


class PollingScheduler:
    """Timer-driven poll loop with visibility and inactivity backoff.

    Usage::

        scheduler = PollingScheduler(fetch_queue, config=PollingConfig(base_interval=10.0))
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        fetch: FetchCallback,
        *,
        config: PollingConfig | None = None,
        on_result: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fetch = fetch
        self._config = config or PollingConfig()
        self._on_result = on_result
        self._on_error = on_error
        self._clock = clock
        self._logger = logger or _logger

        self._enabled = False
        self._stopped = False
        self._paused = False
        self._visible = True
        self._pending = False
        self._current_interval = self._config.base_interval
        self._last_activity = clock()

        self._timer: asyncio.TimerHandle | None = None
        self._pending_watchdog: asyncio.TimerHandle | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> PollingConfig:
        return self._config

    @property
    def state(self) -> PollState:
        return PollState(
            base_interval=self._config.base_interval,
            current_interval=self._current_interval,
            max_interval=self._config.max_interval,
            backoff_factor=self._config.backoff_factor,
            last_activity_time=self._last_activity,
            is_paused=self._paused,
            is_visible=self._visible,
            is_enabled=self._enabled,
            pending=self._pending,
        )

    @property
    def is_armed(self) -> bool:
        """Whether a tick timer is currently armed."""
        return self._timer is not None

    @property
    def pending(self) -> bool:
        return self._pending

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.set_enabled(True)

    def stop(self) -> None:
        """Tear down: cancel every timer and in-flight tick.  Idempotent."""
        self.set_enabled(False)

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._teardown()
            return
        self._stopped = False
        self._logger.debug("Polling enabled base_interval=%.1fs", self._config.base_interval)
        self._reset_backoff()
        if self._can_run():
            self._start_tick_fetch()
            self._arm()

    def pause(self) -> None:
        """Manually suspend ticks until :meth:`resume`."""
        self._paused = True
        self._cancel_timer()

    def resume(self) -> None:
        self._paused = False
        self._reset_backoff()
        self._arm()

    # ------------------------------------------------------------------
    # Host signals
    # ------------------------------------------------------------------

    def set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        if not visible:
            if self._config.pause_on_hidden:
                self._logger.debug("Host hidden; polling suspended")
                self._cancel_timer()
            return
        self._reset_backoff()
        if self._can_run():
            self._logger.debug("Host visible; polling resumed")
            self._start_tick_fetch()
            self._arm()

    def notify_activity(self) -> None:
        """Record a user-interaction signal and drop back to ``base_interval``."""
        backed_off = self._current_interval > self._config.base_interval
        self._reset_backoff()
        if backed_off and self._timer is not None:
            self._arm()

    def set_pending(self, pending: bool) -> None:
        """Suppress (or re-allow) fetches while a caller-side mutation is in flight."""
        self._pending = pending
        self._cancel_pending_watchdog()
        timeout = self._config.pending_timeout
        if pending and timeout is not None:
            loop = asyncio.get_running_loop()
            self._pending_watchdog = loop.call_later(timeout, self._expire_pending)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def refresh(self) -> Any:
        """Fetch now, bypassing the timer.

        Returns the fetch result, or ``None`` without fetching while
        ``pending`` is set.  A failing fetch raises to the caller.  After
        :meth:`stop` the result is returned but ``on_result`` is not called.
        """
        if self._pending:
            self._logger.debug("Refresh skipped: pending")
            return None
        self._reset_backoff()
        if self._timer is not None:
            self._arm()
        result = await self._fetch()
        if not self._stopped:
            self._emit_result(result)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _can_run(self) -> bool:
        if not self._enabled or self._paused:
            return False
        return self._visible or not self._config.pause_on_hidden

    def _reset_backoff(self) -> None:
        self._last_activity = self._clock()
        self._current_interval = self._config.base_interval

    def _next_delay(self) -> float:
        """Interval for the tick being armed, applying idle backoff."""
        config = self._config
        idle_for = self._clock() - self._last_activity
        if config.use_backoff and idle_for > config.idle_threshold:
            self._current_interval = min(
                self._current_interval * config.backoff_factor,
                config.max_interval,
            )
        return self._current_interval

    def _arm(self) -> None:
        self._cancel_timer()
        if not self._can_run():
            return
        delay = self._next_delay()
        self._logger.debug("Next poll in %.2fs", delay)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_tick)

    def _on_tick(self) -> None:
        self._timer = None
        if not self._can_run():
            return
        self._start_tick_fetch()
        self._arm()

    def _start_tick_fetch(self) -> None:
        if self._pending:
            self._logger.debug("Poll tick skipped: pending")
            return
        if self._tick_task is not None and not self._tick_task.done():
            self._logger.debug("Poll tick skipped: previous fetch still in flight")
            return
        task = asyncio.get_running_loop().create_task(self._run_fetch(), name="pyopmon-poll")
        self._tick_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_fetch(self) -> None:
        try:
            result = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning("Poll fetch failed: %s", exc, exc_info=True)
            if self._enabled and self._on_error is not None:
                try:
                    self._on_error(exc)
                except Exception:
                    self._logger.warning("Poll error callback failed", exc_info=True)
            return
        if self._enabled:
            self._emit_result(result)

    def _emit_result(self, result: Any) -> None:
        if self._on_result is None:
            return
        try:
            self._on_result(result)
        except Exception:
            self._logger.warning("Poll result callback failed", exc_info=True)

    def _expire_pending(self) -> None:
        self._pending_watchdog = None
        if self._pending:
            self._logger.warning(
                "Pending flag still set after %.1fs; clearing it so polling can continue",
                self._config.pending_timeout,
            )
            self._pending = False

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()

    def _cancel_pending_watchdog(self) -> None:
        watchdog = self._pending_watchdog
        self._pending_watchdog = None
        if watchdog is not None:
            watchdog.cancel()

    def _teardown(self) -> None:
        self._stopped = True
        self._cancel_timer()
        self._cancel_pending_watchdog()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._tick_task = None
        self._logger.debug("Polling stopped")
