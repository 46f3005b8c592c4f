from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyopmon.optimistic import (
    OptimisticValue,
    optimistic_bulk_delete,
    optimistic_delete,
    optimistic_item_update,
    optimistic_status_update,
)

ITEMS: list[dict[str, Any]] = [
    {"id": "x", "status": "pending"},
    {"id": "y", "status": "pending"},
    {"id": "z", "status": "failed"},
]


class ApiDown(Exception):
    pass


async def _rejecting_action() -> None:
    raise ApiDown("500")


async def _accepting_action() -> str:
    return "deleted"


@pytest.mark.asyncio
async def test_failed_action_rolls_back_and_reraises() -> None:
    videos = OptimisticValue(list(ITEMS))

    with pytest.raises(ApiDown):
        await videos.optimistic_update(lambda items: optimistic_delete(items, "x"), _rejecting_action)

    assert videos.value == ITEMS
    assert not videos.is_pending


@pytest.mark.asyncio
async def test_transform_is_visible_before_action_completes() -> None:
    videos = OptimisticValue(list(ITEMS))
    gate = asyncio.Event()
    observed: list[list[dict[str, Any]]] = []

    async def slow_action() -> str:
        observed.append(videos.value)
        await gate.wait()
        return "ok"

    task = asyncio.create_task(videos.optimistic_update(lambda items: optimistic_delete(items, "y"), slow_action))
    await asyncio.sleep(0)
    assert videos.is_pending
    assert [item["id"] for item in observed[0]] == ["x", "z"]

    gate.set()
    assert await task == "ok"
    assert not videos.is_pending
    assert [item["id"] for item in videos.value] == ["x", "z"]


@pytest.mark.asyncio
async def test_successful_action_keeps_optimistic_value() -> None:
    changes: list[Any] = []
    videos = OptimisticValue(list(ITEMS), on_change=changes.append)

    result = await videos.optimistic_update(lambda items: optimistic_status_update(items, "z", "queued"), _accepting_action)

    assert result == "deleted"
    assert videos.value[2] == {"id": "z", "status": "queued"}
    assert len(changes) == 1


@pytest.mark.asyncio
async def test_delayed_rollback() -> None:
    videos = OptimisticValue(list(ITEMS))

    with pytest.raises(ApiDown):
        await videos.optimistic_update(
            lambda items: optimistic_delete(items, "x"),
            _rejecting_action,
            rollback_delay=0.02,
        )

    assert len(videos.value) == 2
    await asyncio.sleep(0.05)
    assert videos.value == ITEMS


@pytest.mark.asyncio
async def test_clear_rollback_cancels_delayed_rollback() -> None:
    videos = OptimisticValue(list(ITEMS))

    with pytest.raises(ApiDown):
        await videos.optimistic_update(
            lambda items: optimistic_delete(items, "x"),
            _rejecting_action,
            rollback_delay=0.02,
        )
    videos.clear_rollback()
    await asyncio.sleep(0.05)

    assert len(videos.value) == 2


@pytest.mark.asyncio
async def test_manual_rollback_and_single_snapshot_level() -> None:
    videos = OptimisticValue(list(ITEMS))

    await videos.optimistic_update(lambda items: optimistic_delete(items, "x"), _accepting_action)
    await videos.optimistic_update(lambda items: optimistic_delete(items, "y"), _accepting_action)

    videos.rollback()
    # Only the most recent pre-update value is retained.
    assert [item["id"] for item in videos.value] == ["y", "z"]


def test_rollback_without_snapshot_is_noop() -> None:
    videos = OptimisticValue([1, 2])
    assert not videos.has_snapshot
    videos.rollback()
    assert videos.value == [1, 2]

    videos.set([3])
    assert videos.value == [3]


def test_list_helpers() -> None:
    assert [item["id"] for item in optimistic_bulk_delete(ITEMS, ["x", "z"])] == ["y"]
    assert optimistic_item_update(ITEMS, "y", {"status": "done", "note": "n"})[1] == {
        "id": "y",
        "status": "done",
        "note": "n",
    }
    # Inputs are left untouched.
    assert ITEMS[1] == {"id": "y", "status": "pending"}
    # Non-lists pass through unchanged.
    assert optimistic_delete(None, "x") is None
    assert optimistic_bulk_delete({"id": "x"}, ["x"]) == {"id": "x"}


def test_helpers_support_custom_key_and_objects() -> None:
    class Row:
        def __init__(self, video_id: str) -> None:
            self.video_id = video_id

    rows = [Row("a"), Row("b")]
    remaining = optimistic_delete(rows, "a", key="video_id")
    assert [row.video_id for row in remaining] == ["b"]
