"""Tree view of a document."""

from pyrtdb.render.layout import TreeRow, default_expanded, expand_all, preview, render_rows, render_text
from pyrtdb.render.tree import AddFieldForm, TreeNode

__all__ = [
    "AddFieldForm",
    "TreeNode",
    "TreeRow",
    "default_expanded",
    "expand_all",
    "preview",
    "render_rows",
    "render_text",
]
