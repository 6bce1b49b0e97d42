"""Document values and path addressing.

A document is the JSON-like tree held by the realtime store. Values are
a closed union (``JsonValue``) and locations are tuples of string
segments (``Path``); array elements are addressed by their index as a
string, just like the store addresses them.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from typing import TypeAlias, Union

JsonValue: TypeAlias = Union[None, bool, int, float, str, list["JsonValue"], dict[str, "JsonValue"]]
Path: TypeAlias = tuple[str, ...]

ROOT: Path = ()


class NodeKind(enum.StrEnum):
    OBJECT = "object"
    ARRAY = "array"
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"


class _NoData(enum.Enum):
    NO_DATA = "no-data"

    def __repr__(self) -> str:
        return "NO_DATA"

    def __bool__(self) -> bool:
        return False


NO_DATA = _NoData.NO_DATA
"""Sentinel returned when a path does not resolve."""

NoData: TypeAlias = _NoData


def classify(value: JsonValue) -> NodeKind:
    """Return the kind of *value*.

    ``bool`` is checked before numbers since it is an ``int`` subclass.
    """
    if value is None:
        return NodeKind.NULL
    if isinstance(value, bool):
        return NodeKind.BOOLEAN
    if isinstance(value, (int, float)):
        return NodeKind.NUMBER
    if isinstance(value, str):
        return NodeKind.STRING
    if isinstance(value, list):
        return NodeKind.ARRAY
    if isinstance(value, dict):
        return NodeKind.OBJECT
    raise TypeError(f"Not a document value: {type(value).__name__}")


def is_container(kind: NodeKind) -> bool:
    return kind in (NodeKind.OBJECT, NodeKind.ARRAY)


def to_path(path: str | Sequence[str]) -> Path:
    """Normalize a slash-separated string or a segment sequence into a Path.

    Empty segments are dropped, so ``""``, ``"/"`` and ``"//"`` all mean
    the root.
    """
    if isinstance(path, str):
        return tuple(part for part in path.split("/") if part)
    return tuple(str(part) for part in path if str(part))


def format_path(path: Sequence[str]) -> str:
    """Render *path* as ``a/b/c`` (``/`` for the root)."""
    if not path:
        return "/"
    return "/".join(path)


def child_path(path: Sequence[str], key: str | int) -> Path:
    return (*path, str(key))


def _array_index(segment: str, length: int) -> int | None:
    if not segment.isdigit():
        return None
    index = int(segment)
    return index if index < length else None


def resolve(document: JsonValue, path: Sequence[str]) -> JsonValue | NoData:
    """Follow *path* through *document*.

    Returns :data:`NO_DATA` for a missing key, an out-of-range or
    non-numeric array index, or a segment applied to a primitive.
    """
    current: JsonValue = document
    for segment in path:
        if isinstance(current, dict):
            if segment not in current:
                return NO_DATA
            current = current[segment]
        elif isinstance(current, list):
            index = _array_index(segment, len(current))
            if index is None:
                return NO_DATA
            current = current[index]
        else:
            return NO_DATA
    return current


def assign(document: JsonValue, path: Sequence[str], value: JsonValue) -> JsonValue:
    """Set *value* at *path* in place, creating intermediate objects.

    Returns the new root, which is *value* itself when *path* is empty.
    A primitive standing where a container is needed is replaced by an
    object, the way the store does it.
    """
    if not path:
        return value
    root: JsonValue = document if isinstance(document, (dict, list)) else {}
    node: JsonValue = root
    for segment in path[:-1]:
        nxt = _child(node, segment)
        if not isinstance(nxt, (dict, list)):
            nxt = {}
            _put(node, segment, nxt)
        node = nxt
    _put(node, path[-1], value)
    return root


def discard(document: JsonValue, path: Sequence[str]) -> JsonValue:
    """Remove the value at *path* in place and return the new root.

    Removing the root yields ``None``. Array elements become ``None``
    holes; the remaining indices are not shifted.
    """
    if not path:
        return None
    node = document
    for segment in path[:-1]:
        node = _child(node, segment)
        if not isinstance(node, (dict, list)):
            return document
    last = path[-1]
    if isinstance(node, dict):
        node.pop(last, None)
    elif isinstance(node, list):
        index = _array_index(last, len(node))
        if index is not None:
            node[index] = None
    return document


def _child(node: JsonValue, segment: str) -> JsonValue:
    if isinstance(node, dict):
        return node.get(segment)
    if isinstance(node, list):
        index = _array_index(segment, len(node))
        return node[index] if index is not None else None
    return None


def _put(node: JsonValue, segment: str, value: JsonValue) -> None:
    if isinstance(node, dict):
        node[segment] = value
        return
    if isinstance(node, list) and segment.isdigit():
        index = int(segment)
        if index >= len(node):
            node.extend([None] * (index + 1 - len(node)))
        node[index] = value
        return
    raise TypeError(f"Cannot set {segment!r} on {type(node).__name__}")


def normalize_arrays(value: JsonValue) -> JsonValue:
    """Turn objects keyed exactly ``"0".."n-1"`` into lists, recursively."""
    if isinstance(value, list):
        return [normalize_arrays(item) for item in value]
    if not isinstance(value, dict):
        return value
    converted = {key: normalize_arrays(item) for key, item in value.items()}
    if converted and all(key.isdigit() and str(int(key)) == key for key in converted):
        indices = sorted(int(key) for key in converted)
        if indices == list(range(len(indices))):
            return [converted[str(i)] for i in indices]
    return converted


def child_count(value: JsonValue) -> int:
    """Number of direct children of a container (0 for primitives)."""
    if isinstance(value, (dict, list)):
        return len(value)
    return 0
