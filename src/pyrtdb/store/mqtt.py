"""MQTT backend: the document as a tree of retained topics.

Every primitive leaf lives as a retained JSON message at
``<prefix>/<path>``; an empty retained payload deletes it. Microcontrollers
subscribe to the exact leaves they actuate (``rtdb/devices/robot-1/motors/left/state``)
while the editor subscribes to ``<prefix>/#`` and reassembles the whole
document from the leaves it has seen.

Empty objects and arrays have no leaves, so they disappear, just like in
the realtime database.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import secrets
from collections.abc import Sequence
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyrtdb.config import RtdbConfig
from pyrtdb.document import NO_DATA, JsonValue, Path, assign, normalize_arrays, resolve
from pyrtdb.exceptions import RtdbError, RtdbTransportError
from pyrtdb.session import Session
from pyrtdb.store.base import SnapshotListener

_logger = logging.getLogger(__name__)

# Realtime database keys cannot contain "$", so this never collides with a document path.
SYNC_SEGMENT = "$sync"


def topic_for(prefix: str, path: Sequence[str]) -> str:
    return "/".join((prefix, *path)) if prefix else "/".join(path)


def path_for(prefix: str, topic: str) -> Path | None:
    """Path addressed by *topic*, or ``None`` when outside the prefix."""
    if not prefix:
        return tuple(topic.split("/"))
    if not topic.startswith(f"{prefix}/"):
        return None
    return tuple(topic[len(prefix) + 1 :].split("/"))


def flatten_leaves(path: Sequence[str], value: JsonValue) -> list[tuple[Path, JsonValue]]:
    """Primitive leaves of *value* rooted at *path*, depth first."""
    leaves: list[tuple[Path, JsonValue]] = []
    stack: list[tuple[Path, JsonValue]] = [(tuple(path), value)]
    while stack:
        node_path, node = stack.pop()
        if isinstance(node, dict):
            stack.extend(((*node_path, str(key)), child) for key, child in reversed(node.items()))
        elif isinstance(node, list):
            stack.extend(((*node_path, str(index)), child) for index, child in reversed(list(enumerate(node))))
        elif node is not None:
            leaves.append((node_path, node))
    return leaves


def _is_under(path: Path, prefix: Path) -> bool:
    return path[: len(prefix)] == prefix


class TopicTreeAssembler:
    """Tracks retained leaves and rebuilds the document from them."""

    def __init__(self) -> None:
        self._leaves: dict[Path, JsonValue] = {}

    def apply(self, path: Path, payload: bytes) -> bool:
        """Record a retained message; return ``True`` if the tree changed."""
        if not payload:
            return self._leaves.pop(path, NO_DATA) is not NO_DATA
        try:
            value = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            _logger.debug("Ignoring non-JSON leaf at %s", "/".join(path))
            return False
        if self._leaves.get(path, NO_DATA) == value:
            return False
        self._leaves[path] = value
        return True

    def leaves_under(self, path: Path) -> list[Path]:
        """Known leaves at or below *path*, plus leaves that are its ancestors."""
        return [leaf for leaf in self._leaves if _is_under(leaf, path) or _is_under(path, leaf)]

    def snapshot(self) -> JsonValue:
        if not self._leaves:
            return None
        document: JsonValue = {}
        # Shallow leaves first so a deeper leaf wins a primitive/container clash.
        for path in sorted(self._leaves, key=len):
            document = assign(document, path, copy.deepcopy(self._leaves[path]))
        return normalize_arrays(document)


class _ListenerSubscription:
    def __init__(self, store: MqttDocumentStore, listener: SnapshotListener) -> None:
        self._store = store
        self._listener = listener

    async def close(self) -> None:
        self._store._remove_listener(self._listener)


class MqttDocumentStore:
    """Document store on top of an MQTT broker.

    The paho network loop runs in its own thread; messages are handed to
    the asyncio loop with ``call_soon_threadsafe``.

    The broker replays retained leaves right after SUBACK, with no marker
    for the end of the replay. After each (re)connect the store therefore
    publishes a token to its own ``<prefix>/$sync/<client id>`` topic and
    stays unsynchronized until that token comes back through the
    ``<prefix>/#`` subscription. Until then listeners are not notified and
    reads and writes raise :class:`RtdbTransportError`.
    """

    def __init__(self, config: RtdbConfig, *, session: Session | None = None) -> None:
        self._config = config
        self._session = session
        self._prefix = config.mqtt_prefix
        self._client_id = f"pyrtdb-{secrets.token_hex(4)}"
        self._sync_topic = topic_for(self._prefix, (SYNC_SEGMENT, self._client_id))
        self._sync_token = b""
        self._synced = asyncio.Event()
        self._assembler = TopicTreeAssembler()
        self._listeners: list[SnapshotListener] = []
        self._client: mqtt.Client | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MqttDocumentStore:
        loop = asyncio.get_running_loop()

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
        )
        client.enable_logger(_logger)
        if self._session is not None:
            client.username_pw_set(self._session.user_id, self._session.id_token)
        if self._config.mqtt_tls:
            client.tls_set()

        subscription = topic_for(self._prefix, ("#",))
        sync_topic = self._sync_topic
        pending_token = b""

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            nonlocal pending_token
            if reason_code.value != 0:
                _logger.warning("MQTT connect failed: %s", reason_code)
                return
            pending_token = secrets.token_hex(8).encode("ascii")
            loop.call_soon_threadsafe(self._begin_sync, pending_token)
            _logger.debug("MQTT connected, subscribing topic=%s", subscription)
            c.subscribe(subscription, qos=self._config.mqtt_qos)

        def on_subscribe(
            c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_codes: list[Any],
            _properties: Any,
        ) -> None:
            if any(code.is_failure for code in reason_codes):
                _logger.warning("MQTT subscribe refused: %s", reason_codes)
                return
            # Retained leaves are queued ahead of anything published from here on.
            c.publish(sync_topic, pending_token, qos=self._config.mqtt_qos, retain=False)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            loop.call_soon_threadsafe(self._on_leaf, msg.topic, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            _logger.debug("MQTT disconnected: %s", reason_code)
            loop.call_soon_threadsafe(self._synced.clear)

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(self._config.mqtt_host, self._config.mqtt_port, keepalive=self._config.mqtt_keepalive)
        except OSError as exc:
            raise RtdbTransportError(
                f"MQTT connect to {self._config.mqtt_host}:{self._config.mqtt_port} failed: {exc}"
            ) from exc
        client.loop_start()
        self._client = client

        try:
            await asyncio.wait_for(self._synced.wait(), self._config.request_timeout)
        except TimeoutError as exc:
            self._stop()
            raise RtdbTransportError("MQTT broker did not deliver the retained tree in time") from exc
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop()

    def _stop(self) -> None:
        client = self._client
        self._client = None
        self._synced.clear()
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # Incoming messages
    # ------------------------------------------------------------------

    def _begin_sync(self, token: bytes) -> None:
        """Forget the known tree and wait for *token* to come back."""
        self._synced.clear()
        self._sync_token = token
        self._assembler = TopicTreeAssembler()

    def _on_leaf(self, topic: str, payload: bytes) -> None:
        path = path_for(self._prefix, topic)
        if path is None:
            return
        if path[0] == SYNC_SEGMENT:
            if topic == self._sync_topic and payload == self._sync_token and not self._synced.is_set():
                _logger.debug("Retained tree delivered (%d leaves)", len(self._assembler.leaves_under(())))
                self._synced.set()
                self._notify()
            return
        if self._assembler.apply(path, payload) and self._synced.is_set():
            self._notify()

    def _notify(self) -> None:
        snapshot = self._assembler.snapshot()
        for listener in list(self._listeners):
            try:
                listener(copy.deepcopy(snapshot))
            except Exception:
                _logger.debug("Snapshot listener failed", exc_info=True)

    def _remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise RtdbError("Store not initialized. Use 'async with MqttDocumentStore(...) as store:'")
        if not self._synced.is_set():
            raise RtdbTransportError("MQTT store has not received the retained tree from the broker yet")
        return self._client

    async def _publish(self, path: Path, payload: bytes) -> None:
        client = self._require_client()
        topic = topic_for(self._prefix, path)
        _logger.debug("PUBLISH %s (%d bytes)", topic, len(payload))
        info = client.publish(topic, payload, qos=self._config.mqtt_qos, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RtdbTransportError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}", path=topic)
        if self._config.mqtt_qos == 0:
            return
        try:
            await asyncio.to_thread(info.wait_for_publish, self._config.request_timeout)
        except (RuntimeError, ValueError) as exc:
            raise RtdbTransportError(f"Publish to {topic} failed: {exc}", path=topic) from exc
        if not info.is_published():
            raise RtdbTransportError(f"Publish to {topic} was not acknowledged in time", path=topic)

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def get(self, path: Sequence[str]) -> JsonValue:
        self._require_client()
        value = resolve(self._assembler.snapshot(), tuple(path))
        return None if value is NO_DATA else copy.deepcopy(value)

    async def set(self, path: Sequence[str], value: JsonValue) -> None:
        """Replace the subtree at *path* leaf by leaf.

        The leaves are separate retained messages, so a failure part way
        leaves the subtree partly replaced. Replacing the root is refused
        for that reason: a whole-document import must not half-apply.
        """
        target = tuple(path)
        if not target:
            raise RtdbError("Replacing the whole document is not atomic on the MQTT backend; import over REST instead")
        self._require_client()
        leaves = flatten_leaves(target, value)
        fresh = {leaf for leaf, _ in leaves}
        for stale in self._assembler.leaves_under(target):
            if stale not in fresh:
                await self._publish(stale, b"")
        for leaf, leaf_value in leaves:
            await self._publish(leaf, json.dumps(leaf_value, separators=(",", ":")).encode("utf-8"))

    async def remove(self, path: Sequence[str]) -> None:
        target = tuple(path)
        self._require_client()
        for stale in self._assembler.leaves_under(target):
            if _is_under(stale, target):
                await self._publish(stale, b"")

    async def subscribe(self, listener: SnapshotListener) -> _ListenerSubscription:
        self._listeners.append(listener)
        if self._synced.is_set():
            # Late subscribers get the tree assembled so far.
            asyncio.get_running_loop().call_soon(listener, self._assembler.snapshot())
        return _ListenerSubscription(self, listener)
