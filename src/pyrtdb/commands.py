"""Edit commands and user-input parsing.

Every mutation the tree view can request is one of three command
variants. They travel through a single dispatch channel to
:class:`pyrtdb.sync.SyncController`, which turns them into store writes.
"""

from __future__ import annotations

import enum
import json
import math
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyrtdb.document import JsonValue, Path, child_path, format_path, to_path
from pyrtdb.exceptions import DocumentInputError


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("path", "parent_path", mode="before", check_fields=False)
    @classmethod
    def _normalize_path(cls, value: Any) -> Path:
        if isinstance(value, (str, list, tuple)):
            return to_path(value)
        raise ValueError("path must be a string or a sequence of segments")


class SetValue(_Command):
    """Replace the value at ``path`` (the root when ``path`` is empty)."""

    kind: Literal["set"] = "set"
    path: Path
    value: Any = None

    @property
    def target(self) -> Path:
        return self.path

    def describe(self) -> str:
        return f"set {format_path(self.path)}"


class DeleteValue(_Command):
    """Remove the value (and its subtree) at ``path``."""

    kind: Literal["delete"] = "delete"
    path: Path

    @property
    def target(self) -> Path:
        return self.path

    def describe(self) -> str:
        return f"delete {format_path(self.path)}"


class InsertEntry(_Command):
    """Write ``value`` under ``parent_path/key``; an existing key is overwritten."""

    kind: Literal["insert"] = "insert"
    parent_path: Path
    key: str
    value: Any = None

    @field_validator("key")
    @classmethod
    def _key_not_blank(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("key must be non-empty")
        if "/" in key:
            raise ValueError("key must not contain '/'")
        return key

    @property
    def target(self) -> Path:
        return child_path(self.parent_path, self.key)

    def describe(self) -> str:
        return f"insert {format_path(self.target)}"


EditCommand = Annotated[Union[SetValue, DeleteValue, InsertEntry], Field(discriminator="kind")]


class ValueType(enum.StrEnum):
    """Declared type of a value typed into the add-field form."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


def parse_json_text(text: str) -> JsonValue:
    """Parse user-typed JSON, raising :class:`DocumentInputError` on failure."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentInputError(f"Invalid JSON: {exc.msg} (line {exc.lineno} column {exc.colno})") from exc


_LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(text: str) -> int | float:
    """Read the number at the start of *text* (``"3.5V"`` is ``3.5``).

    Text without a leading number, NaN and infinities all give ``0``.
    """
    match = _LEADING_NUMBER.match(text)
    if match is None:
        return 0
    number = float(match.group())
    if math.isnan(number) or math.isinf(number):
        return 0
    if number.is_integer():
        return int(number)
    return number


def parse_typed_value(value_type: ValueType | str, text: str) -> JsonValue:
    """Coerce form text according to its declared type.

    - string: kept as typed
    - number: the leading number of the text, ``0`` when there is none
    - boolean: ``True`` only for ``"true"`` in any letter case
    - object / array: JSON text, ``{}`` / ``[]`` when empty
    """
    declared = ValueType(value_type)
    if declared is ValueType.STRING:
        return text
    if declared is ValueType.NUMBER:
        return parse_number(text)
    if declared is ValueType.BOOLEAN:
        return text.strip().lower() == "true"

    if not text.strip():
        return {} if declared is ValueType.OBJECT else []
    return parse_json_text(text)
