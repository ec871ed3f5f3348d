# genealogy/layout.py
"""
Vertical layout for genealogy trees.

Root at the top, one row per level. Leaves get evenly spaced columns in
depth-first order and every parent is centred over its first and last child.
Only positions are produced; drawing belongs to the client.
"""
import math
from typing import Any, Dict, List, Optional, Union

from genealogy.referral_tree import TreeNode

TreeLike = Union[TreeNode, Dict[str, Any]]


def _field(node: TreeLike, attr: str, key: str, default=None):
    if isinstance(node, dict):
        return node.get(key, default)
    return getattr(node, attr, default)


def _children(node: TreeLike) -> List[TreeLike]:
    return list(_field(node, "children", "children", []) or [])


def layout_tree(tree: Optional[TreeLike], width: float, height: float) -> Dict[str, List[Dict[str, Any]]]:
    if not (math.isfinite(width) and math.isfinite(height)):
        raise ValueError("width and height must be finite")
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")
    if tree is None:
        return {"nodes": [], "edges": []}

    nodes: List[Dict[str, Any]] = []
    edges: List[Dict[str, Any]] = []
    leaf_count = 0
    max_depth = 0

    def place(node: TreeLike, depth: int) -> float:
        nonlocal leaf_count, max_depth
        max_depth = max(max_depth, depth)
        entry = {
            "id": _field(node, "id", "id"),
            "displayName": _field(node, "display_name", "displayName", ""),
            "level": depth,
            "isActive": bool(_field(node, "is_active", "isActive", False)),
        }
        nodes.append(entry)

        children = _children(node)
        if not children:
            x_slot = leaf_count + 0.5
            leaf_count += 1
        else:
            child_slots = [place(child, depth + 1) for child in children]
            x_slot = (child_slots[0] + child_slots[-1]) / 2
            for child in children:
                edges.append({"source": entry["id"], "target": _field(child, "id", "id")})

        entry["_slot"] = x_slot
        return x_slot

    place(tree, 0)

    column_width = width / leaf_count
    row_height = height / (max_depth + 1)
    for entry in nodes:
        slot = entry.pop("_slot")
        entry["x"] = round(slot * column_width, 2)
        entry["y"] = round((entry["level"] + 0.5) * row_height, 2)

    return {"nodes": nodes, "edges": edges}
