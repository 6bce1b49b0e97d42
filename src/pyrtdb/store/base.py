"""Structural interface of a path-addressed document store.

Having a protocol here makes it easy to pass test doubles while keeping
the production backends (:class:`~pyrtdb.store.rest.RestDocumentStore`,
:class:`~pyrtdb.store.mqtt.MqttDocumentStore`) concrete.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from pyrtdb.document import JsonValue

SnapshotListener = Callable[[JsonValue], None]
"""Receives a full root snapshot (``None`` when the store is empty)."""


class Subscription(Protocol):
    async def close(self) -> None:
        ...


class DocumentStore(Protocol):
    async def get(self, path: Sequence[str]) -> JsonValue:
        ...

    async def set(self, path: Sequence[str], value: JsonValue) -> None:
        ...

    async def remove(self, path: Sequence[str]) -> None:
        ...

    async def subscribe(self, listener: SnapshotListener) -> Subscription:
        ...
