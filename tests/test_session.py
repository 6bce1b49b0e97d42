from __future__ import annotations

import base64
import json
import time
from typing import Any

import pytest

from pyrtdb.exceptions import RtdbAuthenticationError, RtdbPermissionError
from pyrtdb.session import Session, require_admin


def _token(**claims: Any) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode("utf-8")).rstrip(b"=").decode("ascii")
    return f"eyJhbGciOiJSUzI1NiJ9.{body}.signature"


def test_from_id_token_reads_claims() -> None:
    exp = int(time.time()) + 3600
    session = Session.from_id_token(_token(user_id="uid-1", admin=True, exp=exp))

    assert session.user_id == "uid-1"
    assert session.is_admin
    assert session.expires_at == float(exp)
    assert not session.is_expired


def test_from_id_token_falls_back_to_sub() -> None:
    session = Session.from_id_token(_token(sub="uid-2", admin="true"))
    assert session.user_id == "uid-2"
    # Only a literal true grants admin.
    assert not session.is_admin
    assert session.expires_at is None


def test_from_id_token_rejects_malformed_tokens() -> None:
    with pytest.raises(RtdbAuthenticationError):
        Session.from_id_token("not-a-jwt")
    with pytest.raises(RtdbAuthenticationError):
        Session.from_id_token("a.!!!.c")
    with pytest.raises(RtdbAuthenticationError):
        Session.from_id_token(_token(admin=True))


def test_require_admin() -> None:
    admin = Session(user_id="uid-1", id_token="t", is_admin=True)
    assert require_admin(admin) is admin

    with pytest.raises(RtdbAuthenticationError, match="Not signed in"):
        require_admin(None)
    with pytest.raises(RtdbAuthenticationError):
        require_admin(Session(user_id="uid-1", id_token="t", is_admin=True, expires_at=time.time() - 1))
    with pytest.raises(RtdbPermissionError, match="not an administrator"):
        require_admin(Session(user_id="uid-3", id_token="t"))
