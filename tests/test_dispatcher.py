from __future__ import annotations

from pyopmon.dispatcher import EventDispatcher
from pyopmon.models.envelope import Envelope


def _envelope(event_type: str, **data: object) -> Envelope:
    return Envelope(type=event_type, data=dict(data))


def test_subscriber_receives_only_its_type() -> None:
    dispatcher = EventDispatcher()
    seen: list[Envelope] = []
    dispatcher.subscribe("upload:start", seen.append)

    start = _envelope("upload:start", videoId="v1")
    dispatcher.dispatch(start)
    dispatcher.dispatch(_envelope("upload:progress", videoId="v1"))

    assert seen == [start]


def test_unsubscribe_token_removes_only_that_callback() -> None:
    dispatcher = EventDispatcher()
    first: list[Envelope] = []
    second: list[Envelope] = []
    unsubscribe_first = dispatcher.subscribe("queue:updated", first.append)
    dispatcher.subscribe("queue:updated", second.append)

    unsubscribe_first()
    unsubscribe_first()  # idempotent
    dispatcher.dispatch(_envelope("queue:updated"))

    assert first == []
    assert len(second) == 1


def test_bulk_unsubscribe_clears_every_callback_for_type() -> None:
    dispatcher = EventDispatcher()
    seen: list[str] = []
    dispatcher.subscribe("queue:paused", lambda env: seen.append("a"))
    dispatcher.subscribe("queue:paused", lambda env: seen.append("b"))
    dispatcher.subscribe("queue:resumed", lambda env: seen.append("c"))

    dispatcher.unsubscribe("queue:paused")
    dispatcher.dispatch(_envelope("queue:paused"))
    dispatcher.dispatch(_envelope("queue:resumed"))

    assert seen == ["c"]
    assert dispatcher.listener_count("queue:paused") == 0


def test_wildcard_receives_every_envelope_after_typed_listeners() -> None:
    dispatcher = EventDispatcher()
    order: list[str] = []
    dispatcher.subscribe("*", lambda env: order.append(f"*:{env.type}"))
    dispatcher.subscribe("download:start", lambda env: order.append(f"typed:{env.type}"))

    dispatcher.dispatch(_envelope("download:start", videoId="v1"))
    dispatcher.dispatch(_envelope("log", message="hello"))

    assert order == ["typed:download:start", "*:download:start", "*:log"]


def test_failing_listener_does_not_block_siblings() -> None:
    dispatcher = EventDispatcher()
    seen: list[str] = []

    def boom(_env: Envelope) -> None:
        raise RuntimeError("listener bug")

    dispatcher.subscribe("upload:error", boom)
    dispatcher.subscribe("upload:error", lambda env: seen.append("typed"))
    dispatcher.subscribe("*", boom)
    dispatcher.subscribe("*", lambda env: seen.append("wildcard"))

    dispatcher.dispatch(_envelope("upload:error", videoId="v1", error="disk full"))

    assert seen == ["typed", "wildcard"]


def test_last_envelope_is_recorded() -> None:
    dispatcher = EventDispatcher()
    assert dispatcher.last_envelope is None

    envelope = _envelope("queue:updated", size=3)
    dispatcher.dispatch(envelope)

    assert dispatcher.last_envelope is envelope


def test_listener_may_unsubscribe_during_dispatch() -> None:
    dispatcher = EventDispatcher()
    calls: list[int] = []
    unsubscribe = None

    def once(_env: Envelope) -> None:
        calls.append(1)
        assert unsubscribe is not None
        unsubscribe()

    unsubscribe = dispatcher.subscribe("upload:start", once)
    dispatcher.dispatch(_envelope("upload:start", videoId="v1"))
    dispatcher.dispatch(_envelope("upload:start", videoId="v2"))

    assert calls == [1]
