"""Headless tree node with inline edit, add-field and delete gestures.

A :class:`TreeNode` owns only UI state (expansion, edit buffer, add
form). Every mutation it requests leaves through ``dispatch`` as an
:data:`~pyrtdb.commands.EditCommand`; the node never changes its own
value. New values arrive through :meth:`TreeNode.update` once the store
has notified.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from pyrtdb._constants import DEFAULT_EXPANDED_DEPTH, DEFAULT_MAX_DEPTH
from pyrtdb.commands import (
    DeleteValue,
    EditCommand,
    InsertEntry,
    SetValue,
    ValueType,
    parse_json_text,
    parse_typed_value,
)
from pyrtdb.document import JsonValue, NodeKind, Path, child_path, classify, format_path, is_container
from pyrtdb.exceptions import DocumentInputError
from pyrtdb.render.layout import TreeRow, entries, node_label, preview, render_text

Dispatch = Callable[[EditCommand], Any]
Confirm = Callable[[str], bool]


@dataclass
class AddFieldForm:
    key: str = ""
    value_type: ValueType = ValueType.STRING
    text: str = ""


class TreeNode:
    """One value of the document and the gestures available on it."""

    def __init__(
        self,
        value: JsonValue,
        path: Path = (),
        *,
        depth: int = 0,
        dispatch: Dispatch,
        confirm: Confirm,
    ) -> None:
        self.value = value
        self.path = tuple(path)
        self.depth = depth
        self.expanded = depth < DEFAULT_EXPANDED_DEPTH
        self.editing = False
        self.edit_text = ""
        self.add_form: AddFieldForm | None = None
        self._dispatch = dispatch
        self._confirm = confirm
        self._children: dict[str, TreeNode] = {}

    def __repr__(self) -> str:
        return f"TreeNode({format_path(self.path)!r}, kind={self.kind.value})"

    @property
    def kind(self) -> NodeKind:
        return classify(self.value)

    @property
    def is_container(self) -> bool:
        return is_container(self.kind)

    @property
    def label(self) -> str:
        return node_label(self.path)

    @property
    def summary(self) -> str:
        return preview(self.value)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def toggle(self) -> bool:
        self.expanded = not self.expanded
        return self.expanded

    def update(self, value: JsonValue) -> None:
        """Take a fresh value; child UI state survives for keys still present."""
        self.value = value
        keys = {key for key, _ in entries(value)}
        for key in list(self._children):
            if key not in keys:
                del self._children[key]

    def child(self, key: str) -> TreeNode | None:
        """Child node for *key* whether or not this node is expanded."""
        for child_key, child_value in entries(self.value):
            if child_key != key:
                continue
            node = self._children.get(key)
            if node is None:
                node = TreeNode(
                    child_value,
                    child_path(self.path, key),
                    depth=self.depth + 1,
                    dispatch=self._dispatch,
                    confirm=self._confirm,
                )
                self._children[key] = node
            else:
                node.update(child_value)
            return node
        return None

    def children(self) -> list[TreeNode]:
        """Visible children: empty for primitives and collapsed nodes."""
        if not self.is_container or not self.expanded:
            return []
        nodes = []
        for key, _ in entries(self.value):
            node = self.child(key)
            if node is not None:
                nodes.append(node)
        return nodes

    def find(self, path: Path) -> TreeNode | None:
        """Descendant at *path* relative to this node."""
        node: TreeNode | None = self
        for segment in path:
            if node is None:
                return None
            node = node.child(segment)
        return node

    # ------------------------------------------------------------------
    # Inline edit
    # ------------------------------------------------------------------

    def begin_edit(self) -> str:
        self.edit_text = json.dumps(self.value, indent=2, ensure_ascii=False)
        self.editing = True
        return self.edit_text

    def commit_edit(self, text: str | None = None) -> SetValue:
        """Parse the edit buffer and dispatch it.

        Invalid JSON raises :class:`DocumentInputError`; nothing is
        dispatched and the node stays in edit mode.
        """
        if text is not None:
            self.edit_text = text
        parsed = parse_json_text(self.edit_text)
        command = SetValue(path=self.path, value=parsed)
        self.editing = False
        self._dispatch(command)
        return command

    def cancel_edit(self) -> None:
        self.editing = False
        self.edit_text = ""

    # ------------------------------------------------------------------
    # Add field
    # ------------------------------------------------------------------

    def begin_add(self) -> AddFieldForm:
        if not self.is_container:
            raise DocumentInputError(f"Cannot add a field to a {self.kind.value} value")
        form = AddFieldForm()
        if self.kind is NodeKind.ARRAY:
            form.key = str(len(self.value))  # type: ignore[arg-type]
        self.add_form = form
        return form

    def commit_add(
        self,
        key: str | None = None,
        value_type: ValueType | str | None = None,
        text: str | None = None,
    ) -> InsertEntry:
        """Coerce the form and dispatch an :class:`InsertEntry`."""
        form = self.add_form or self.begin_add()
        if key is not None:
            form.key = key
        if value_type is not None:
            try:
                form.value_type = ValueType(value_type)
            except ValueError as exc:
                raise DocumentInputError(f"Unknown value type: {value_type}") from exc
        if text is not None:
            form.text = text

        new_key = form.key.strip()
        if not new_key:
            raise DocumentInputError("Key name is required")
        if self.kind is NodeKind.ARRAY and not new_key.isdigit():
            raise DocumentInputError(f"Array index must be a non-negative integer, got {new_key!r}")

        value = parse_typed_value(form.value_type, form.text)
        try:
            command = InsertEntry(parent_path=self.path, key=new_key, value=value)
        except ValidationError as exc:
            raise DocumentInputError(f"Invalid key {new_key!r}") from exc
        self.add_form = None
        self._dispatch(command)
        return command

    def cancel_add(self) -> None:
        self.add_form = None

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self) -> DeleteValue | None:
        """Ask for confirmation, then dispatch a :class:`DeleteValue`."""
        if not self._confirm(f"Delete {format_path(self.path)}?"):
            return None
        command = DeleteValue(path=self.path)
        self._dispatch(command)
        return command

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def rows(self, max_depth: int = DEFAULT_MAX_DEPTH) -> list[TreeRow]:
        """Visible rows honouring each node's expansion state."""
        rows: list[TreeRow] = []
        stack: list[TreeNode] = [self]
        while stack:
            node = stack.pop()
            depth = node.depth - self.depth
            if node.is_container and depth >= max_depth:
                rows.append(TreeRow(node.path, depth, node.label, node.kind, node.summary, truncated=True))
                continue
            is_open = node.is_container and node.expanded
            rows.append(TreeRow(node.path, depth, node.label, node.kind, node.summary, expanded=is_open))
            stack.extend(reversed(node.children()))
        return rows

    def render(self, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
        return render_text(self.rows(max_depth))
