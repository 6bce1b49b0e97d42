"""Store backends.

Everything above this package talks to a :class:`DocumentStore`; the
backends differ only in how paths map onto the wire.
"""

from __future__ import annotations

from pyrtdb.config import RtdbConfig
from pyrtdb.session import Session
from pyrtdb.store.base import DocumentStore, SnapshotListener, Subscription
from pyrtdb.store.mqtt import MqttDocumentStore
from pyrtdb.store.rest import RestDocumentStore


def open_store(config: RtdbConfig, session: Session | None = None) -> RestDocumentStore | MqttDocumentStore:
    """Build the configured backend; use it with ``async with``."""
    if config.backend == "mqtt":
        return MqttDocumentStore(config, session=session)
    return RestDocumentStore(config, session=session)


__all__ = [
    "DocumentStore",
    "MqttDocumentStore",
    "RestDocumentStore",
    "SnapshotListener",
    "Subscription",
    "open_store",
]
