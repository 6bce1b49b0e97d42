"""Keep credentials and bulky documents out of DEBUG logs.

The REST backend authenticates with ``?auth=<ID token>`` on every URL, and
exported or imported documents routinely carry device secrets such as
Wi-Fi passwords or API keys next to the values being edited. Key names are
compared after lower-casing and dropping ``_`` and ``-``, so ``idToken``,
``id_token`` and ``ID-TOKEN`` are treated alike.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from yarl import URL

REDACTED = "<redacted>"

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "auth",
        "authorization",
        "accesstoken",
        "idtoken",
        "refreshtoken",
        "token",
        "apikey",
        "secret",
        "databasesecret",
        "clientsecret",
        "credential",
        "credentials",
        "password",
        "wifipassword",
        "privatekey",
        "cookie",
    }
)

_MAX_DEPTH = 16


def is_sensitive_key(key: object) -> bool:
    return str(key).lower().replace("_", "").replace("-", "") in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 50) -> Any:
    """Copy of the JSON-like *value* with secrets masked and bulk elided.

    Strings longer than *max_string* are cut; objects and arrays keep their
    first *max_items* entries and note how many were dropped.
    """

    def walk(node: Any, depth: int) -> Any:
        if depth > _MAX_DEPTH:
            return "<nested>"
        if node is None or isinstance(node, (bool, int, float)):
            return node
        if isinstance(node, str):
            return node if len(node) <= max_string else f"{node[:max_string]}...<{len(node)} chars>"
        if isinstance(node, (bytes, bytearray)):
            return f"<{len(node)} bytes>"
        if isinstance(node, Mapping):
            out: dict[str, Any] = {}
            for index, (key, item) in enumerate(node.items()):
                if index == max_items:
                    out["..."] = f"<{len(node) - max_items} more keys>"
                    break
                out[str(key)] = REDACTED if is_sensitive_key(key) else walk(item, depth + 1)
            return out
        if isinstance(node, Sequence):
            items = [walk(item, depth + 1) for item in node[:max_items]]
            if len(node) > max_items:
                items.append(f"<{len(node) - max_items} more items>")
            return items
        return repr(node)

    return walk(value, 0)


def redact_url(url: str | URL) -> str:
    """*url* with sensitive query parameters such as ``auth`` masked."""
    parsed = URL(str(url))
    if not parsed.query:
        return str(parsed)
    return str(
        parsed.with_query({key: REDACTED if is_sensitive_key(key) else value for key, value in parsed.query.items()})
    )
