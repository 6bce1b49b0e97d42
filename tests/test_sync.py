from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Sequence
from typing import Any

import pytest

from pyrtdb.commands import SetValue
from pyrtdb.document import NO_DATA, JsonValue, assign, discard, resolve
from pyrtdb.exceptions import RtdbPermissionError, RtdbTransportError
from pyrtdb.render import TreeNode
from pyrtdb.store.base import SnapshotListener
from pyrtdb.sync import SyncController


class _Subscription:
    def __init__(self, store: _MemoryStore, listener: SnapshotListener) -> None:
        self._store = store
        self._listener = listener

    async def close(self) -> None:
        self._store.closed += 1
        self._store.listeners.remove(self._listener)


class _MemoryStore:
    """In-memory store that notifies listeners after every write."""

    def __init__(self, document: JsonValue = None) -> None:
        self.document = copy.deepcopy(document)
        self.listeners: list[SnapshotListener] = []
        self.fail: Exception | None = None
        self.closed = 0
        self.writes: list[tuple[str, tuple[str, ...], Any]] = []

    async def get(self, path: Sequence[str]) -> JsonValue:
        value = resolve(self.document, tuple(path))
        return None if value is NO_DATA else copy.deepcopy(value)

    async def set(self, path: Sequence[str], value: JsonValue) -> None:
        if self.fail is not None:
            raise self.fail
        self.writes.append(("set", tuple(path), value))
        self.document = assign(self.document, tuple(path), copy.deepcopy(value))
        self._notify()

    async def remove(self, path: Sequence[str]) -> None:
        if self.fail is not None:
            raise self.fail
        self.writes.append(("remove", tuple(path), None))
        self.document = discard(self.document, tuple(path))
        self._notify()

    async def subscribe(self, listener: SnapshotListener) -> _Subscription:
        self.listeners.append(listener)
        listener(copy.deepcopy(self.document))
        return _Subscription(self, listener)

    def _notify(self) -> None:
        for listener in list(self.listeners):
            listener(copy.deepcopy(self.document))


def _fleet() -> dict[str, Any]:
    return {
        "devices": {
            "robot-1": {
                "motors": {"left": {"state": "stop"}, "right": {"state": "stop"}},
                "leds": {"2": {"state": False}},
            },
        },
        "groups": {"lab": {"members": ["robot-1"]}},
    }


@pytest.mark.asyncio
async def test_view_before_first_notification_is_no_data() -> None:
    controller = SyncController(_MemoryStore(_fleet()))
    assert not controller.loaded
    assert controller.view("") is NO_DATA
    assert controller.view("devices") is NO_DATA


@pytest.mark.asyncio
async def test_view_filters_by_path() -> None:
    async with SyncController(_MemoryStore(_fleet())) as controller:
        await controller.wait_loaded(1.0)
        assert controller.view("") == _fleet()
        assert controller.view("/") == _fleet()
        assert controller.view("devices/robot-1/leds/2/state") is False
        assert controller.view("groups/lab/members/0") == "robot-1"
        assert controller.view("devices/robot-9") is NO_DATA


@pytest.mark.asyncio
async def test_empty_store_mirrors_as_empty_object() -> None:
    async with SyncController(_MemoryStore(None)) as controller:
        await controller.wait_loaded(1.0)
        assert controller.mirror == {}
        assert controller.view("") == {}


@pytest.mark.asyncio
async def test_edit_round_trips_through_the_store() -> None:
    store = _MemoryStore(_fleet())
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)

        ok = await controller.apply_edit("devices/robot-1/motors/left/state", "forward")

        assert ok
        assert store.writes == [("set", ("devices", "robot-1", "motors", "left", "state"), "forward")]
        assert controller.view("devices/robot-1/motors/left/state") == "forward"
        message = controller.banner.current
        assert message is not None
        assert message.text == "Updated: devices/robot-1/motors/left/state"


@pytest.mark.asyncio
async def test_delete_removes_subtree() -> None:
    store = _MemoryStore(_fleet())
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)

        assert await controller.apply_delete(["devices", "robot-1", "leds", "2"])

        assert controller.view("devices/robot-1/leds/2") is NO_DATA
        assert controller.banner.current is not None
        assert controller.banner.current.text == "Deleted: devices/robot-1/leds/2"


@pytest.mark.asyncio
async def test_tree_gestures_reach_the_store_through_submit() -> None:
    store = _MemoryStore(_fleet())
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        robot = controller.view("devices/robot-1")
        node = TreeNode(robot, ("devices", "robot-1"), dispatch=controller.submit, confirm=lambda _p: True)

        node.commit_add("speed", "number", "123")
        node.commit_add("online", "boolean", "true")
    # Leaving the context waits for submitted writes.

    assert store.document["devices"]["robot-1"]["speed"] == 123
    assert store.document["devices"]["robot-1"]["online"] is True
    assert controller.view("devices/robot-1/speed") == 123


@pytest.mark.asyncio
async def test_failed_write_posts_error_and_keeps_mirror() -> None:
    store = _MemoryStore(_fleet())
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        before = controller.mirror
        store.fail = RtdbPermissionError("Permission denied for devices", status_code=403)

        ok = await controller.apply_edit("devices/robot-1/motors/left/state", "forward")

        assert not ok
        assert controller.mirror == before
        message = controller.banner.current
        assert message is not None and message.is_error
        assert message.text == "Error: Permission denied for devices"


@pytest.mark.asyncio
async def test_dispatch_accepts_plain_dicts() -> None:
    store = _MemoryStore({})
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        assert await controller.dispatch({"kind": "insert", "parent_path": "devices", "key": "robot-2", "value": 1})
        assert controller.view("devices/robot-2") == 1
        assert controller.banner.current is not None
        assert controller.banner.current.text == "Added: devices/robot-2"


@pytest.mark.asyncio
async def test_root_set_replaces_whole_document() -> None:
    store = _MemoryStore({"b": 2})
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        assert await controller.dispatch(SetValue(path=(), value={"a": 1}))
        assert controller.mirror == {"a": 1}
        assert controller.banner.current is not None
        assert controller.banner.current.text == "Imported document"


@pytest.mark.asyncio
async def test_mirror_copies_are_detached() -> None:
    async with SyncController(_MemoryStore(_fleet())) as controller:
        await controller.wait_loaded(1.0)
        view = controller.view("devices")
        assert isinstance(view, dict)
        view.clear()
        assert controller.view("devices") != {}


@pytest.mark.asyncio
async def test_subscription_closed_exactly_once() -> None:
    store = _MemoryStore(_fleet())
    controller = SyncController(store)
    async with controller:
        await controller.wait_loaded(1.0)
    await controller.__aexit__(None, None, None)

    assert store.closed == 1
    assert store.listeners == []


@pytest.mark.asyncio
async def test_on_change_failure_does_not_break_mirror(caplog: pytest.LogCaptureFixture) -> None:
    def explode(_snapshot: JsonValue) -> None:
        raise RuntimeError("render failed")

    store = _MemoryStore({"a": 1})
    async with SyncController(store, on_change=explode) as controller:
        await controller.wait_loaded(1.0)
        assert await controller.apply_edit("a", 2)
        assert controller.view("a") == 2

    failures = [record for record in caplog.records if record.getMessage() == "on_change callback failed"]
    assert failures
    assert all(record.levelno == logging.WARNING and record.exc_info for record in failures)


@pytest.mark.asyncio
async def test_overlapping_submits_both_land() -> None:
    store = _MemoryStore({"a": 0})
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        first = controller.submit(SetValue(path="a", value=1))
        second = controller.submit(SetValue(path="a", value=2))
        assert await asyncio.gather(first, second) == [True, True]
        assert controller.view("a") == 2


@pytest.mark.asyncio
async def test_transport_error_on_delete_is_reported() -> None:
    store = _MemoryStore(_fleet())
    async with SyncController(store) as controller:
        await controller.wait_loaded(1.0)
        store.fail = RtdbTransportError("HTTP 500 for devices")
        assert not await controller.apply_delete("devices")
        assert controller.view("devices") is not NO_DATA
