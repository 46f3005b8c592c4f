"""Optimistic state updates with rollback.

:class:`OptimisticValue` applies a local transform immediately, runs the
confirming coroutine, and restores the pre-update snapshot if it raises.
Only one snapshot level is kept: overlapping updates overwrite it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Generic, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_NO_SNAPSHOT: Any = object()


class OptimisticValue(Generic[T]):
    """A value that can be changed speculatively and rolled back.

    Usage::

        videos = OptimisticValue(await api.list_videos())
        await videos.optimistic_update(
            lambda items: optimistic_delete(items, video_id),
            lambda: api.delete_video(video_id),
        )
    """

    def __init__(
        self,
        initial: T,
        *,
        on_change: Callable[[T], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._value = initial
        self._snapshot: Any = _NO_SNAPSHOT
        self._in_flight = 0
        self._rollback_handle: asyncio.TimerHandle | None = None
        self._on_change = on_change
        self._logger = logger or _logger

    @property
    def value(self) -> T:
        return self._value

    @property
    def is_pending(self) -> bool:
        """Whether an optimistic action is awaiting confirmation."""
        return self._in_flight > 0

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not _NO_SNAPSHOT

    def set(self, value: T) -> None:
        """Replace the value (e.g. with fresh server data)."""
        self._assign(value)

    async def optimistic_update(
        self,
        transform: Callable[[T], T],
        action: Callable[[], Awaitable[R]],
        *,
        rollback_delay: float = 0.0,
    ) -> R:
        """Apply *transform* now, then confirm with *action*.

        On success the optimistic value stays and the action's result is
        returned.  On failure the snapshot is restored (after
        *rollback_delay* seconds, or immediately when 0) and the action's
        exception is re-raised.
        """
        self._snapshot = self._value
        self._assign(transform(self._value))
        self._in_flight += 1
        try:
            result = await action()
        except BaseException:
            self._in_flight -= 1
            if rollback_delay > 0:
                self.clear_rollback()
                loop = asyncio.get_running_loop()
                self._rollback_handle = loop.call_later(rollback_delay, self._delayed_rollback)
            else:
                self.rollback()
            raise
        self._in_flight -= 1
        return result

    def rollback(self) -> None:
        """Restore the last snapshot, regardless of any in-flight action."""
        if self._snapshot is _NO_SNAPSHOT:
            return
        self._logger.debug("Rolling back optimistic update")
        self._assign(self._snapshot)

    def clear_rollback(self) -> None:
        """Cancel a delayed rollback that has not fired yet."""
        handle = self._rollback_handle
        self._rollback_handle = None
        if handle is not None:
            handle.cancel()

    def _delayed_rollback(self) -> None:
        self._rollback_handle = None
        self.rollback()

    def _assign(self, value: T) -> None:
        self._value = value
        if self._on_change is None:
            return
        try:
            self._on_change(value)
        except Exception:
            self._logger.warning("Optimistic change callback failed", exc_info=True)


# ---------------------------------------------------------------------------
# List transforms for the common table mutations
# ---------------------------------------------------------------------------


def optimistic_delete(items: Any, item_id: Any, *, key: str = "id") -> Any:
    """Items without the one whose *key* equals *item_id*."""
    if not isinstance(items, list):
        return items
    return [item for item in items if _item_id(item, key) != item_id]


def optimistic_bulk_delete(items: Any, item_ids: Iterable[Any], *, key: str = "id") -> Any:
    if not isinstance(items, list):
        return items
    doomed = set(item_ids)
    return [item for item in items if _item_id(item, key) not in doomed]


def optimistic_status_update(items: Any, item_id: Any, status: str, *, key: str = "id") -> Any:
    return optimistic_item_update(items, item_id, {"status": status}, key=key)


def optimistic_item_update(items: Any, item_id: Any, updates: Mapping[str, Any], *, key: str = "id") -> Any:
    """Items with *updates* shallow-merged into the matching one."""
    if not isinstance(items, list):
        return items
    return [
        {**item, **updates} if isinstance(item, Mapping) and _item_id(item, key) == item_id else item
        for item in items
    ]


def _item_id(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)
