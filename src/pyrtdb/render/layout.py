"""Row layout for the tree view.

Traversal uses an explicit stack and stops at ``max_depth``: a container
found at that depth is emitted as one truncated row instead of being
descended. Arbitrarily deep documents therefore render in bounded work.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from pyrtdb._constants import DEFAULT_EXPANDED_DEPTH, DEFAULT_MAX_DEPTH
from pyrtdb.document import JsonValue, NodeKind, Path, child_path, classify, is_container

ExpandPolicy = Callable[[Path, int], bool]


@dataclass(frozen=True)
class TreeRow:
    """One visible line of the tree."""

    path: Path
    depth: int
    label: str
    kind: NodeKind
    summary: str
    expanded: bool = False
    truncated: bool = False


def default_expanded(_path: Path, depth: int) -> bool:
    return depth < DEFAULT_EXPANDED_DEPTH


def expand_all(_path: Path, _depth: int) -> bool:
    return True


def node_label(path: Sequence[str]) -> str:
    return path[-1] if path else "root"


def preview(value: JsonValue) -> str:
    """Short display text: quoted strings, JSON literals, container sizes."""
    kind = classify(value)
    if kind is NodeKind.OBJECT:
        return f"{{{len(value)}}}"  # type: ignore[arg-type]
    if kind is NodeKind.ARRAY:
        return f"[{len(value)}]"  # type: ignore[arg-type]
    return json.dumps(value, ensure_ascii=False)


def entries(value: JsonValue) -> list[tuple[str, JsonValue]]:
    """Children of a container keyed by string (array indices as text)."""
    if isinstance(value, dict):
        return [(str(key), child) for key, child in value.items()]
    if isinstance(value, list):
        return [(str(index), child) for index, child in enumerate(value)]
    return []


def render_rows(
    value: JsonValue,
    path: Sequence[str] = (),
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    expanded: ExpandPolicy = default_expanded,
) -> list[TreeRow]:
    """Lay out *value* (living at *path*) as rows, depth first."""
    rows: list[TreeRow] = []
    stack: list[tuple[Path, JsonValue, int]] = [(tuple(path), value, 0)]
    while stack:
        node_path, node, depth = stack.pop()
        kind = classify(node)
        if is_container(kind) and depth >= max_depth:
            rows.append(TreeRow(node_path, depth, node_label(node_path), kind, preview(node), truncated=True))
            continue
        is_open = is_container(kind) and expanded(node_path, depth)
        rows.append(TreeRow(node_path, depth, node_label(node_path), kind, preview(node), expanded=is_open))
        if is_open:
            stack.extend((child_path(node_path, key), child, depth + 1) for key, child in reversed(entries(node)))
    return rows


def render_text(rows: Iterable[TreeRow], *, indent: str = "  ") -> str:
    lines = []
    for row in rows:
        if row.truncated:
            marker = "…"
        elif is_container(row.kind):
            marker = "▼" if row.expanded else "▶"
        else:
            marker = " "
        lines.append(f"{indent * row.depth}{marker} {row.label}: {row.summary}")
    return "\n".join(lines)
