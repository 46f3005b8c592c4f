"""In-memory progress aggregator.

This is the only component allowed to fold lifecycle envelopes into
per-operation snapshots.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from pyopmon._constants import DEFAULT_ID_FIELD, DEFAULT_SEQUENCE_FIELD
from pyopmon._normalize import prune_none, safe_int
from pyopmon.dispatcher import EventDispatcher, Unsubscribe
from pyopmon.models.envelope import Envelope
from pyopmon.models.progress import ProgressEntry
from pyopmon.state.policy import LIFECYCLE_RULES, FoldAction, FoldRule, should_accept_update

_logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, ProgressEntry | None], None]

# Keys the fold rules own; payload values for them are ignored.
_RESERVED_KEYS = frozenset({"family", "status"})


class ProgressAggregator:
    """Per-operation progress snapshots fed by a dispatcher.

    Events are applied in dispatch order.  When the server stamps lifecycle
    payloads with a monotonic ``sequence_field``, an event whose stamp is not
    newer than the entry's is dropped, which keeps a backlog re-delivered
    after a reconnect from reverting a finished operation.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher | None = None,
        *,
        id_field: str = DEFAULT_ID_FIELD,
        sequence_field: str | None = DEFAULT_SEQUENCE_FIELD,
        logger: logging.Logger | None = None,
    ) -> None:
        self._id_field = id_field
        self._sequence_field = sequence_field
        self._logger = logger or _logger
        self._entries: dict[str, dict[str, Any]] = {}
        self._stamps: dict[str, int] = {}
        self._change_listeners: dict[ChangeListener, None] = {}
        self._dispatcher: EventDispatcher | None = None
        self._unsubscribers: list[Unsubscribe] = []
        if dispatcher is not None:
            self.attach(dispatcher)

    # ------------------------------------------------------------------
    # Dispatcher wiring
    # ------------------------------------------------------------------

    def attach(self, dispatcher: EventDispatcher) -> ProgressAggregator:
        """Subscribe to every lifecycle event type on *dispatcher*."""
        self.detach()
        self._dispatcher = dispatcher
        self._unsubscribers = [dispatcher.subscribe(event_type, self.apply) for event_type in LIFECYCLE_RULES]
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._dispatcher = None

    def on_change(self, callback: ChangeListener) -> Unsubscribe:
        """Call *callback(operation_id, entry_or_none)* after each applied change."""
        self._change_listeners[callback] = None

        def _unsubscribe() -> None:
            self._change_listeners.pop(callback, None)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Fold
    # ------------------------------------------------------------------

    def apply(self, envelope: Envelope) -> ProgressEntry | None:
        """Fold one envelope; return the resulting entry (``None`` if removed or ignored)."""
        rule = LIFECYCLE_RULES.get(envelope.event)
        if rule is None:
            return None

        operation_id = self._operation_id(envelope)
        if operation_id is None:
            self._logger.debug("Lifecycle event %s without %s; ignored", envelope.type, self._id_field)
            return None

        incoming_seq = None
        if self._sequence_field is not None:
            incoming_seq = safe_int(envelope.data.get(self._sequence_field))
        if not should_accept_update(cached_seq=self._stamps.get(operation_id), incoming_seq=incoming_seq):
            self._logger.debug(
                "Stale %s for %s (seq=%s <= %s); dropped",
                envelope.type,
                operation_id,
                incoming_seq,
                self._stamps.get(operation_id),
            )
            return None

        if rule.action is FoldAction.DELETE:
            self.clear(operation_id)
            return None

        entry = self._fold(self._entries.get(operation_id), rule, self._patch(envelope))
        self._entries[operation_id] = entry
        if incoming_seq is not None:
            self._stamps[operation_id] = incoming_seq

        snapshot = ProgressEntry.model_validate(copy.deepcopy(entry))
        self._notify(operation_id, snapshot)
        return snapshot

    def _operation_id(self, envelope: Envelope) -> str | None:
        value = envelope.data.get(self._id_field)
        if value is None or isinstance(value, (bool, dict, list)):
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _patch(envelope: Envelope) -> dict[str, Any]:
        payload = envelope.payload.model_dump()
        return {key: value for key, value in prune_none(payload).items() if key not in _RESERVED_KEYS}

    @staticmethod
    def _fold(existing: dict[str, Any] | None, rule: FoldRule, patch: dict[str, Any]) -> dict[str, Any]:
        if rule.action is FoldAction.REPLACE or existing is None:
            entry: dict[str, Any] = {"percent": 0.0}
        else:
            entry = dict(existing)

        entry.update(copy.deepcopy(patch))
        entry["family"] = rule.family
        if rule.status is not None:
            entry["status"] = rule.status
        if rule.action is FoldAction.REPLACE:
            entry["percent"] = 0.0
        elif rule.action is FoldAction.COMPLETE:
            entry["percent"] = 100.0
        return entry

    def _notify(self, operation_id: str, entry: ProgressEntry | None) -> None:
        for callback in list(self._change_listeners):
            try:
                callback(operation_id, entry)
            except Exception:
                self._logger.warning("Progress change listener %r failed", callback, exc_info=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, operation_id: str) -> ProgressEntry | None:
        entry = self._entries.get(operation_id)
        if entry is None:
            return None
        return ProgressEntry.model_validate(copy.deepcopy(entry))

    def snapshot(self) -> dict[str, ProgressEntry]:
        """Every tracked operation keyed by id."""
        return {operation_id: ProgressEntry.model_validate(copy.deepcopy(entry)) for operation_id, entry in self._entries.items()}

    def clear(self, operation_id: str) -> None:
        """Forget one operation (and its sequence stamp)."""
        self._stamps.pop(operation_id, None)
        if self._entries.pop(operation_id, None) is not None:
            self._notify(operation_id, None)

    def clear_all(self) -> None:
        operation_ids = list(self._entries)
        self._entries.clear()
        self._stamps.clear()
        for operation_id in operation_ids:
            self._notify(operation_id, None)

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
