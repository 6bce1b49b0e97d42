"""Realtime database REST backend with streaming subscriptions.

Endpoints follow the realtime database REST protocol:

  - ``GET    {database_url}/{path}.json``  read a subtree
  - ``PUT    {database_url}/{path}.json``  replace a subtree
  - ``DELETE {database_url}/{path}.json``  remove a subtree
  - ``GET``  with ``Accept: text/event-stream``  server-sent events

The stream delivers ``put``/``patch`` deltas. They are folded into a
working copy here, so subscribers only ever see full root snapshots.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import aiohttp
from yarl import URL

from pyrtdb._constants import USER_AGENT
from pyrtdb._redact import redact_for_log, redact_url
from pyrtdb.config import RtdbConfig
from pyrtdb.document import JsonValue, Path, assign, discard, format_path, to_path
from pyrtdb.exceptions import (
    RtdbAuthenticationError,
    RtdbError,
    RtdbPermissionError,
    RtdbTransportError,
)
from pyrtdb.session import Session
from pyrtdb.store.base import SnapshotListener

_logger = logging.getLogger(__name__)

_NO_BODY = object()


@dataclass(frozen=True)
class ServerEvent:
    """One dispatched server-sent event."""

    event: str
    data: str


class EventStreamParser:
    """Incremental ``text/event-stream`` line parser."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed_line(self, line: str) -> ServerEvent | None:
        """Consume one line (without its terminator).

        Returns the completed event when *line* is the blank separator.
        """
        if not line:
            if not self._event and not self._data:
                return None
            event = ServerEvent(event=self._event or "message", data="\n".join(self._data))
            self._event = ""
            self._data = []
            return event
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None


class SnapshotAssembler:
    """Fold streamed ``put``/``patch`` deltas into a full document."""

    def __init__(self) -> None:
        self.document: JsonValue = None

    def apply(self, event: ServerEvent) -> bool:
        """Apply *event*; return ``True`` when the document changed."""
        if event.event == "keep-alive":
            return False
        if event.event == "cancel":
            raise RtdbPermissionError(f"Subscription cancelled by the server: {event.data}")
        if event.event == "auth_revoked":
            raise RtdbAuthenticationError("Credential revoked; subscription closed")
        if event.event not in ("put", "patch"):
            _logger.debug("Ignoring stream event %s", event.event)
            return False

        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError as exc:
            raise RtdbTransportError(f"Stream event is not JSON: {event.data[:128]}") from exc
        if not isinstance(payload, dict) or "path" not in payload:
            raise RtdbTransportError(f"Stream event has no path: {event.data[:128]}")

        path = to_path(str(payload["path"]))
        data = payload.get("data")
        if event.event == "put":
            self._write(path, data)
        else:
            if not isinstance(data, dict):
                raise RtdbTransportError("Patch event data is not an object")
            for key, value in data.items():
                self._write((*path, *to_path(key)), value)
        return True

    def _write(self, path: Path, value: JsonValue) -> None:
        if value is None:
            self.document = discard(self.document, path)
        else:
            self.document = assign(self.document, path, copy.deepcopy(value))


class _StreamSubscription:
    def __init__(self, response: aiohttp.ClientResponse, listener: SnapshotListener) -> None:
        self._response = response
        self._listener = listener
        self._closed = False
        self.error: RtdbError | None = None
        self._task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        parser = EventStreamParser()
        assembler = SnapshotAssembler()
        try:
            async for raw_line in self._response.content:
                event = parser.feed_line(raw_line.decode("utf-8").rstrip("\r\n"))
                if event is None or not assembler.apply(event):
                    continue
                try:
                    self._listener(copy.deepcopy(assembler.document))
                except Exception:
                    _logger.debug("Snapshot listener failed", exc_info=True)
        except RtdbError as exc:
            self.error = exc
            _logger.warning("Subscription ended: %s", exc)
        except aiohttp.ClientError as exc:
            self.error = RtdbTransportError(f"Subscription stream failed: {exc}")
            _logger.warning("Subscription stream failed: %s", exc)
        finally:
            self._response.release()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._response.close()
        _logger.debug("Subscription closed")


class RestDocumentStore:
    """Async store client for the realtime database REST API.

    Usage::

        async with RestDocumentStore(config, session=session) as store:
            await store.set(("devices", "robot-1", "motors", "left", "state"), "forward")
    """

    def __init__(
        self,
        config: RtdbConfig,
        *,
        session: Session | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._base_url = URL(config.require_database_url())
        self._session = session
        self._signed_out = False
        self._external_http = http_session is not None
        self._http = http_session

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RestDocumentStore:
        if self._http is None:
            self._http = aiohttp.ClientSession(headers={"user-agent": USER_AGENT})
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_http and self._http is not None:
            await self._http.close()
            self._http = None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    def invalidate_session(self) -> None:
        """Sign out: later requests fail until a new session is attached."""
        self._session = None
        self._signed_out = True

    def attach_session(self, session: Session) -> None:
        self._session = session
        self._signed_out = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise RtdbError("Store not initialized. Use 'async with RestDocumentStore(...) as store:'")
        return self._http

    def url_for(self, path: Sequence[str]) -> URL:
        """URL of the ``.json`` resource for *path*."""
        segments = list(path)
        if not segments:
            return self._base_url / ".json"
        url = self._base_url
        for segment in segments[:-1]:
            url = url / segment
        return url / f"{segments[-1]}.json"

    def _auth_params(self) -> dict[str, str]:
        if self._signed_out:
            raise RtdbAuthenticationError("Signed out")
        session = self._session
        if session is None:
            return {}
        if session.is_expired:
            raise RtdbAuthenticationError(f"Session for {session.user_id} has expired")
        return {"auth": session.id_token}

    @staticmethod
    def _raise_for_status(status: int, text: str, path: str) -> None:
        if status in (401, 403):
            raise RtdbPermissionError(
                f"Permission denied for {path}: {text[:200]}",
                status_code=status,
                path=path,
            )
        if status >= 300:
            raise RtdbTransportError(
                f"HTTP {status} for {path}: {text[:200]}",
                status_code=status,
                path=path,
            )

    async def _request(
        self,
        method: str,
        path: Sequence[str],
        *,
        body: Any = _NO_BODY,
        params: dict[str, str] | None = None,
    ) -> JsonValue:
        http = self._require_http()
        display = format_path(path)
        query = {**self._auth_params(), **(params or {})}
        url = self.url_for(path).with_query(query)
        data = None if body is _NO_BODY else json.dumps(body, separators=(",", ":"))

        _logger.debug("%s %s", method, redact_url(url))
        if data is not None:
            _logger.debug("Body %s", redact_for_log(body))

        try:
            async with http.request(
                method,
                url,
                data=data,
                headers={"content-type": "application/json; charset=UTF-8"},
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
            ) as resp:
                text = await resp.text()
                self._raise_for_status(resp.status, text, display)
        except RtdbTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RtdbTransportError(f"{method} {display} failed: {exc}", path=display) from exc

        if not text:
            return None
        try:
            result: JsonValue = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RtdbTransportError(f"Invalid JSON for {display}: {text[:200]}", path=display) from exc
        return result

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def get(self, path: Sequence[str]) -> JsonValue:
        return await self._request("GET", path)

    async def set(self, path: Sequence[str], value: JsonValue) -> None:
        await self._request("PUT", path, body=value, params={"print": "silent"})

    async def remove(self, path: Sequence[str]) -> None:
        await self._request("DELETE", path, params={"print": "silent"})

    async def subscribe(self, listener: SnapshotListener, path: Sequence[str] = ()) -> _StreamSubscription:
        """Open a streaming subscription; *listener* gets full snapshots."""
        http = self._require_http()
        display = format_path(path)
        url = self.url_for(path).with_query(self._auth_params())
        _logger.debug("STREAM %s", redact_url(url))
        try:
            resp = await http.get(
                url,
                headers={"accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._config.request_timeout),
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RtdbTransportError(f"Subscribe to {display} failed: {exc}", path=display) from exc

        if resp.status != 200:
            text = await resp.text()
            resp.release()
            self._raise_for_status(resp.status, text, display)
            raise RtdbTransportError(
                f"Unexpected HTTP {resp.status} opening stream for {display}",
                status_code=resp.status,
                path=display,
            )
        return _StreamSubscription(resp, listener)
