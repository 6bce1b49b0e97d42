from __future__ import annotations

import base64
import copy
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from pyrtdb import cli
from pyrtdb.document import NO_DATA, JsonValue, assign, discard, resolve
from pyrtdb.store.base import SnapshotListener

_ENV_KEYS = ("RTDB_BACKEND", "RTDB_DATABASE_URL", "RTDB_AUTH_TOKEN", "RTDB_MAX_DEPTH")


class _Subscription:
    async def close(self) -> None:
        return None


class _MemoryStore:
    def __init__(self, document: JsonValue) -> None:
        self.document = copy.deepcopy(document)
        self.listeners: list[SnapshotListener] = []

    async def __aenter__(self) -> _MemoryStore:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def get(self, path: Sequence[str]) -> JsonValue:
        value = resolve(self.document, tuple(path))
        return None if value is NO_DATA else copy.deepcopy(value)

    async def set(self, path: Sequence[str], value: JsonValue) -> None:
        self.document = assign(self.document, tuple(path), copy.deepcopy(value))
        self._notify()

    async def remove(self, path: Sequence[str]) -> None:
        self.document = discard(self.document, tuple(path))
        self._notify()

    async def subscribe(self, listener: SnapshotListener) -> _Subscription:
        self.listeners.append(listener)
        listener(copy.deepcopy(self.document))
        return _Subscription()

    def _notify(self) -> None:
        for listener in self.listeners:
            listener(copy.deepcopy(self.document))


def _token(**claims: Any) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode("utf-8")).rstrip(b"=").decode("ascii")
    return f"eyJhbGciOiJSUzI1NiJ9.{body}.signature"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> _MemoryStore:
    memory = _MemoryStore(
        {
            "devices": {"robot-1": {"motors": {"left": {"state": "stop"}}, "leds": [{"state": False}]}},
            "groups": {"lab": {"members": ["robot-1"]}},
        }
    )
    monkeypatch.setattr(cli, "open_store", lambda _config, _session=None: memory)
    return memory


def test_parser_accepts_add_with_type() -> None:
    args = cli.build_parser().parse_args(["add", "devices/robot-1", "speed", "123", "--type", "number"])
    assert (args.parent, args.key, args.value, args.value_type) == ("devices/robot-1", "speed", "123", "number")


def test_show_prints_tree(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["show", "devices/robot-1/motors"]) == 0
    out = capsys.readouterr().out
    assert "▼ motors: {1}" in out
    assert "left: {1}" in out


def test_show_missing_path(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["show", "devices/robot-9"]) == 0
    assert "No data at this path" in capsys.readouterr().out


def test_set_writes_json_value(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["set", "devices/robot-1/motors/left/state", '"forward"']) == 0
    assert store.document["devices"]["robot-1"]["motors"]["left"]["state"] == "forward"
    assert "Updated: devices/robot-1/motors/left/state" in capsys.readouterr().out


def test_add_coerces_and_writes(store: _MemoryStore) -> None:
    assert cli.main(["add", "devices/robot-1", "speed", "123", "--type", "number"]) == 0
    assert cli.main(["add", "devices/robot-1/leds", "1", '{"state": true}', "--type", "object"]) == 0
    assert store.document["devices"]["robot-1"]["speed"] == 123
    assert store.document["devices"]["robot-1"]["leds"][1] == {"state": True}


def test_add_to_primitive_is_input_error(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["add", "devices/robot-1/motors/left/state", "x", "1"]) == 2
    assert "Error:" in capsys.readouterr().err


def test_delete_respects_confirmation(store: _MemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("builtins.input", lambda _prompt: "n")
    assert cli.main(["delete", "groups"]) == 0
    assert "groups" in store.document

    assert cli.main(["delete", "groups", "--yes"]) == 0
    assert "groups" not in store.document


def test_export_and_import(store: _MemoryStore, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["export", "--output-dir", str(tmp_path)]) == 0
    exported = list(tmp_path.glob("export-*.json"))
    assert len(exported) == 1
    assert json.loads(exported[0].read_text(encoding="utf-8")) == store.document

    replacement = tmp_path / "replacement.json"
    replacement.write_text('{"a": 1}', encoding="utf-8")
    assert cli.main(["import", str(replacement), "--yes"]) == 0
    assert store.document == {"a": 1}


def test_robot_action(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["robot", '{"action": "move", "robot_id": "robot-1", "value": "stop"}']) == 0
    assert json.loads(capsys.readouterr().out)["direction"] == "stop"
    assert cli.main(["robot", '{"action": "move", "robot_id": "robot-7", "value": "stop"}']) == 2
    assert cli.main(["robot", "{not json"]) == 2


def test_stats(store: _MemoryStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["stats"]) == 0
    assert "Devices: 1  Groups: 1" in capsys.readouterr().out


def test_invalid_json_exits_with_input_error(store: _MemoryStore) -> None:
    assert cli.main(["set", "devices", "{broken"]) == 2


def test_missing_database_url_is_reported(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["show"]) == 1
    assert "database_url is required" in capsys.readouterr().err


def test_non_admin_token_is_refused(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("RTDB_DATABASE_URL", "https://demo.firebaseio.com")
    monkeypatch.setenv("RTDB_AUTH_TOKEN", _token(user_id="uid-3"))
    assert cli.main(["stats"]) == 1
    assert "not an administrator" in capsys.readouterr().err
