from __future__ import annotations

import base64
import json
import time
from typing import Any

import pytest

from pyrtdb.config import RtdbConfig
from pyrtdb.exceptions import (
    RtdbAuthenticationError,
    RtdbError,
    RtdbPermissionError,
    RtdbTransportError,
)
from pyrtdb.session import Session
from pyrtdb.store.rest import EventStreamParser, RestDocumentStore, ServerEvent, SnapshotAssembler

_URL = "https://demo-project-default-rtdb.europe-west1.firebasedatabase.app/"


def _token(**claims: Any) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode("utf-8")).rstrip(b"=").decode("ascii")
    return f"eyJhbGciOiJSUzI1NiJ9.{body}.signature"


class _FakeResponse:
    def __init__(self, status: int, text: str = "") -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeHttp:
    def __init__(self, *responses: _FakeResponse) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, Any, dict[str, Any]]] = []

    def request(self, method: str, url: Any, **kwargs: Any) -> _FakeResponse:
        self.calls.append((method, url, kwargs))
        return self._responses.pop(0)


def _store(*responses: _FakeResponse, session: Session | None = None) -> tuple[RestDocumentStore, _FakeHttp]:
    http = _FakeHttp(*responses)
    store = RestDocumentStore(RtdbConfig(database_url=_URL), session=session, http_session=http)  # type: ignore[arg-type]
    return store, http


def test_event_stream_parser_dispatches_on_blank_line() -> None:
    parser = EventStreamParser()
    assert parser.feed_line("event: put") is None
    assert parser.feed_line('data: {"path": "/", "data": {"a": 1}}') is None
    event = parser.feed_line("")
    assert event == ServerEvent(event="put", data='{"path": "/", "data": {"a": 1}}')

    assert parser.feed_line(": comment") is None
    assert parser.feed_line("") is None


def test_assembler_folds_put_and_patch() -> None:
    assembler = SnapshotAssembler()

    assert assembler.apply(ServerEvent("put", '{"path": "/", "data": {"devices": {"robot-1": {"online": true}}}}'))
    assert assembler.apply(ServerEvent("put", '{"path": "/devices/robot-1/online", "data": false}'))
    assert assembler.apply(ServerEvent("patch", '{"path": "/devices", "data": {"robot-2/online": true, "robot-1": null}}'))

    assert assembler.document == {"devices": {"robot-2": {"online": True}}}


def test_assembler_put_null_at_root_empties_document() -> None:
    assembler = SnapshotAssembler()
    assembler.apply(ServerEvent("put", '{"path": "/", "data": {"a": 1}}'))
    assembler.apply(ServerEvent("put", '{"path": "/", "data": null}'))
    assert assembler.document is None


def test_assembler_control_events() -> None:
    assembler = SnapshotAssembler()
    assert not assembler.apply(ServerEvent("keep-alive", "null"))

    with pytest.raises(RtdbPermissionError):
        assembler.apply(ServerEvent("cancel", "permission denied"))
    with pytest.raises(RtdbAuthenticationError):
        assembler.apply(ServerEvent("auth_revoked", "credential is no longer valid"))
    with pytest.raises(RtdbTransportError):
        assembler.apply(ServerEvent("put", "{broken"))


def test_url_for_appends_json_suffix() -> None:
    store, _ = _store()
    assert str(store.url_for(())) == "https://demo-project-default-rtdb.europe-west1.firebasedatabase.app/.json"
    assert str(store.url_for(("devices", "robot-1"))).endswith("/devices/robot-1.json")


@pytest.mark.asyncio
async def test_get_parses_json_and_forwards_token() -> None:
    session = Session.from_id_token(_token(user_id="uid-1", admin=True))
    store, http = _store(_FakeResponse(200, '{"online": true}'), session=session)

    assert await store.get(("devices", "robot-1")) == {"online": True}

    method, url, _kwargs = http.calls[0]
    assert method == "GET"
    assert url.path.endswith("/devices/robot-1.json")
    assert url.query["auth"] == session.id_token


@pytest.mark.asyncio
async def test_set_and_remove_are_silent_writes() -> None:
    store, http = _store(_FakeResponse(204), _FakeResponse(204))

    await store.set(("devices", "robot-1", "motors", "left", "state"), "forward")
    await store.remove(("devices", "robot-1"))

    put_method, put_url, put_kwargs = http.calls[0]
    assert put_method == "PUT"
    assert put_url.query["print"] == "silent"
    assert put_kwargs["data"] == '"forward"'
    delete_method, delete_url, delete_kwargs = http.calls[1]
    assert delete_method == "DELETE"
    assert delete_url.query["print"] == "silent"
    assert delete_kwargs["data"] is None


@pytest.mark.asyncio
async def test_status_codes_map_to_exceptions() -> None:
    store, _ = _store(_FakeResponse(401, '{"error": "Permission denied"}'), _FakeResponse(500, "oops"))

    with pytest.raises(RtdbPermissionError) as denied:
        await store.set(("devices",), {})
    assert denied.value.status_code == 401
    assert denied.value.path == "devices"

    with pytest.raises(RtdbTransportError) as failed:
        await store.get(())
    assert failed.value.status_code == 500
    assert not isinstance(failed.value, RtdbPermissionError)


@pytest.mark.asyncio
async def test_signed_out_store_refuses_requests() -> None:
    session = Session.from_id_token(_token(user_id="uid-1", admin=True))
    store, http = _store(_FakeResponse(200, "null"), session=session)

    store.invalidate_session()
    with pytest.raises(RtdbAuthenticationError):
        await store.get(())
    assert http.calls == []

    store.attach_session(session)
    assert await store.get(()) is None


@pytest.mark.asyncio
async def test_expired_session_is_rejected() -> None:
    session = Session.from_id_token(_token(user_id="uid-1", exp=int(time.time()) - 60))
    store, _ = _store(session=session)
    with pytest.raises(RtdbAuthenticationError):
        await store.get(())


@pytest.mark.asyncio
async def test_request_without_context_raises() -> None:
    store = RestDocumentStore(RtdbConfig(database_url=_URL))
    with pytest.raises(RtdbError, match="Store not initialized"):
        await store.get(())
