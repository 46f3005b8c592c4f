"""Typed publish/subscribe registry for decoded envelopes."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pyopmon._constants import WILDCARD
from pyopmon._redact import redact_for_log
from pyopmon.models.envelope import Envelope

_logger = logging.getLogger(__name__)

Listener = Callable[[Envelope], None]
Unsubscribe = Callable[[], None]


class EventDispatcher:
    """Fan decoded envelopes out to per-type and wildcard listeners.

    Listeners run synchronously in registration order, type-specific ones
    first, then wildcard ones.  A listener that raises is logged and skipped;
    it never prevents its siblings from running and never propagates to the
    caller of :meth:`dispatch`.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger
        # Insertion-ordered sets: dict keys preserve registration order.
        self._listeners: dict[str, dict[Listener, None]] = {}
        self._last_envelope: Envelope | None = None

    @property
    def last_envelope(self) -> Envelope | None:
        """Most recently dispatched envelope, for introspection."""
        return self._last_envelope

    def subscribe(self, event_type: str, callback: Listener) -> Unsubscribe:
        """Register *callback* for *event_type* (``"*"`` for every envelope).

        Returns a function that removes exactly this registration.  Calling
        it more than once is harmless.
        """
        self._listeners.setdefault(event_type, {})[callback] = None

        def _unsubscribe() -> None:
            listeners = self._listeners.get(event_type)
            if listeners is None:
                return
            listeners.pop(callback, None)
            if not listeners:
                self._listeners.pop(event_type, None)

        return _unsubscribe

    def unsubscribe(self, event_type: str) -> None:
        """Remove every callback registered for *event_type*."""
        self._listeners.pop(event_type, None)

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, ()))
        return sum(len(listeners) for listeners in self._listeners.values())

    def clear(self) -> None:
        """Drop all registrations and the last-seen envelope."""
        self._listeners.clear()
        self._last_envelope = None

    def dispatch(self, envelope: Envelope) -> None:
        """Record *envelope* as last seen and invoke matching listeners."""
        self._last_envelope = envelope
        self._logger.debug("Dispatch type=%s data=%s", envelope.type, redact_for_log(envelope.data))

        # Snapshot so listeners may (un)subscribe while being notified.
        typed = list(self._listeners.get(envelope.type, ()))
        wildcard = list(self._listeners.get(WILDCARD, ())) if envelope.type != WILDCARD else []

        for callback in typed:
            self._invoke(callback, envelope)
        for callback in wildcard:
            self._invoke(callback, envelope)

    def _invoke(self, callback: Listener, envelope: Envelope) -> None:
        try:
            callback(envelope)
        except Exception:
            self._logger.warning("Listener %r failed for type=%s", callback, envelope.type, exc_info=True)
