"""
Flat-to-tree materialization for parent-linked records.

Records are any objects exposing ``id``, ``parent_id`` and ``title``
attributes (ORM ``Article`` rows in production).  A record belongs at the
top of the forest when its ``parent_id`` equals the *root* sentinel.

The build is index based: records are grouped by parent id once and the
forest is assembled top-down with an explicit stack, so deep hierarchies do
not hit the interpreter's recursion limit.  Parent references are checked
for cycles before anything is built.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

from app.config import settings
from app.schemas import TreeNode


class CyclicHierarchyError(ValueError):
    """Raised when parent references loop back on themselves."""

    def __init__(self, cycle: Sequence[int]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join(str(i) for i in self.cycle)
        super().__init__(f"Cyclic parent reference: {path}")


def _resolve_reachability(records: Sequence, root: int) -> dict[int, bool]:
    """
    Map every record id to whether its ancestry ends at *root*.

    Each parent chain is walked at most once; results are memoized for every
    id on the walked path.  Raises ``CyclicHierarchyError`` if a chain
    revisits an id.
    """
    parent_of = {r.id: r.parent_id for r in records}
    reachable: dict[int, bool] = {}

    for start in parent_of:
        path: list[int] = []
        on_path: set[int] = set()
        current = start
        while True:
            if current == root:
                result = True
                break
            if current in reachable:
                result = reachable[current]
                break
            if current not in parent_of:
                # Dangling reference: the chain ends at an unknown id.
                result = False
                break
            if current in on_path:
                raise CyclicHierarchyError(path[path.index(current):] + [current])
            on_path.add(current)
            path.append(current)
            current = parent_of[current]
        for node_id in path:
            reachable[node_id] = result

    return reachable


def _to_node(record) -> TreeNode:
    return TreeNode(id=record.id, name=record.title, item=record.id)


def find_orphans(records: Iterable, root: int = settings.TREE_ROOT_PARENT_ID) -> list:
    """
    Return the records that ``build_tree`` leaves out: those whose chain of
    parents ends at an id that is neither present nor *root*.  Input order
    is preserved.
    """
    records = list(records)
    reachable = _resolve_reachability(records, root)
    return [r for r in records if not reachable[r.id]]


def build_tree(
    records: Iterable, root: int = settings.TREE_ROOT_PARENT_ID
) -> list[TreeNode] | None:
    """
    Materialize *records* into a forest of ``TreeNode`` rooted at *root*.

    - Siblings keep the order they have in *records*; ``sorted`` is not used.
    - A node without children has ``children=None``.
    - An empty forest is returned as ``None``.
    - Orphans (see ``find_orphans``) are silently excluded.
    - Raises ``CyclicHierarchyError`` on cyclic parent references.
    """
    records = list(records)
    _resolve_reachability(records, root)

    by_parent: dict[int, list] = defaultdict(list)
    for record in records:
        by_parent[record.parent_id].append(record)

    forest = [_to_node(r) for r in by_parent.get(root, [])]
    stack = list(forest)
    visited: set[int] = set()
    while stack:
        node = stack.pop()
        if node.id in visited:
            # Only possible when a chain loops back through the root id itself.
            raise CyclicHierarchyError([node.id, node.id])
        visited.add(node.id)
        children = by_parent.get(node.id)
        if children:
            node.children = [_to_node(r) for r in children]
            stack.extend(node.children)

    return forest or None


def iter_nodes(forest: list[TreeNode] | None):
    """Yield every node of *forest* depth-first, parents before children."""
    stack = list(reversed(forest or []))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children or []))
