"""Local mirror of the remote document and the single write path into it.

:class:`SyncController` is the only component that holds the mirror. It
is replaced wholesale on every root notification; edits never touch it
directly but go to the store and come back as the next notification.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import TypeAdapter

from pyrtdb.commands import DeleteValue, EditCommand, InsertEntry, SetValue
from pyrtdb.document import NO_DATA, JsonValue, NoData, format_path, resolve, to_path
from pyrtdb.exceptions import RtdbError
from pyrtdb.status import StatusBanner
from pyrtdb.store.base import DocumentStore, Subscription

_logger = logging.getLogger(__name__)

_COMMAND_ADAPTER: TypeAdapter[EditCommand] = TypeAdapter(EditCommand)


class SyncController:
    """Mirror a document store and apply edit commands to it.

    Usage::

        async with SyncController(store) as controller:
            await controller.wait_loaded()
            print(controller.view("devices/robot-1"))
            await controller.apply_edit(["devices", "robot-1", "name"], "Rover")

    Writes wait for nothing but the store's acknowledgement; the mirror
    only changes when the store notifies.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        banner: StatusBanner | None = None,
        on_change: Callable[[JsonValue], None] | None = None,
    ) -> None:
        self._store = store
        self.banner = banner or StatusBanner()
        self._on_change = on_change
        self._mirror: JsonValue = None
        self._loaded = asyncio.Event()
        self._subscription: Subscription | None = None
        self._pending: set[asyncio.Task[bool]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SyncController:
        self._subscription = await self._store.subscribe(self._on_snapshot)
        _logger.debug("Root subscription opened")
        return self

    async def __aexit__(self, *exc: Any) -> None:
        # Let submitted writes land while their notifications can still arrive.
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            await subscription.close()
            _logger.debug("Root subscription closed")

    def _on_snapshot(self, snapshot: JsonValue) -> None:
        self._mirror = {} if snapshot is None else snapshot
        self._loaded.set()
        if self._on_change is not None:
            try:
                self._on_change(self._mirror)
            except Exception:
                _logger.warning("on_change callback failed", exc_info=True)

    @property
    def loaded(self) -> bool:
        """Whether at least one notification has arrived."""
        return self._loaded.is_set()

    async def wait_loaded(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._loaded.wait(), timeout)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def mirror(self) -> JsonValue:
        """Deep copy of the whole mirrored document."""
        return copy.deepcopy(self._mirror)

    def view(self, filter_path: str | Sequence[str] = "") -> JsonValue | NoData:
        """Sub-document at *filter_path*, or :data:`NO_DATA`.

        ``""`` and ``"/"`` return the whole mirror. Before the first
        notification every filter yields :data:`NO_DATA`.
        """
        if not self.loaded:
            return NO_DATA
        value = resolve(self._mirror, to_path(filter_path))
        if value is NO_DATA:
            return NO_DATA
        return copy.deepcopy(value)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def dispatch(self, command: EditCommand | dict[str, Any]) -> bool:
        """Send one command to the store.

        Returns ``True`` on success. A store failure is logged, posted to
        the banner and reported as ``False``; it is neither retried nor
        rolled back.
        """
        if isinstance(command, dict):
            command = _COMMAND_ADAPTER.validate_python(command)
        target = format_path(command.target)
        _logger.debug("Dispatching %s", command.describe())
        try:
            if isinstance(command, DeleteValue):
                await self._store.remove(command.path)
            else:
                await self._store.set(command.target, command.value)
        except RtdbError as exc:
            _logger.warning("Write failed (%s): %s", command.describe(), exc)
            self.banner.error(f"Error: {exc}")
            return False

        if isinstance(command, DeleteValue):
            self.banner.success(f"Deleted: {target}")
        elif isinstance(command, InsertEntry):
            self.banner.success(f"Added: {target}")
        elif not command.path:
            self.banner.success("Imported document")
        else:
            self.banner.success(f"Updated: {target}")
        return True

    def submit(self, command: EditCommand) -> asyncio.Task[bool]:
        """Schedule :meth:`dispatch` without waiting for it.

        Overlapping submits on the same path are not ordered; the store
        decides which write lands last.
        """
        task = asyncio.get_running_loop().create_task(self.dispatch(command))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def apply_edit(self, path: str | Sequence[str], value: JsonValue) -> bool:
        return await self.dispatch(SetValue(path=to_path(path), value=value))

    async def apply_delete(self, path: str | Sequence[str]) -> bool:
        """Remove the value at *path*.

        For array elements the store decides what happens to the remaining
        indices (the realtime database leaves a hole rather than shifting).
        """
        return await self.dispatch(DeleteValue(path=to_path(path)))

    async def apply_add(self, parent_path: str | Sequence[str], key: str, value: JsonValue) -> bool:
        """Write *value* under *parent_path*/*key*; an existing key is overwritten."""
        return await self.dispatch(InsertEntry(parent_path=to_path(parent_path), key=key, value=value))
