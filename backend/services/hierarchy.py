"""Forest construction from flat parent references."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from backend.exceptions import HierarchyCycleError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

T = TypeVar("T")


@dataclass
class TreeNode(Generic[T]):
    """A record plus the nodes whose parent reference points at it."""

    key: str
    value: T
    children: list[TreeNode[T]] = field(default_factory=list)


def build_forest(
    records: Iterable[T],
    key: Callable[[T], str],
    parent_key: Callable[[T], str | None],
) -> list[TreeNode[T]]:
    """Group records into a forest using a lookup table keyed by ``key``.

    A record whose parent key resolves to a known record is appended to that
    record's children; every other record becomes a root. Records sharing a
    key collapse into one node holding the last record, at the position of
    the first. Input order is preserved among siblings and roots.

    Raises HierarchyCycleError if any node cannot be reached from a root,
    which happens exactly when parent references form a cycle.
    """
    nodes: dict[str, TreeNode[T]] = {}
    for record in records:
        node_key = key(record)
        nodes[node_key] = TreeNode(key=node_key, value=record)

    roots: list[TreeNode[T]] = []
    for node in nodes.values():
        parent = parent_key(node.value)
        if parent is not None and parent in nodes:
            nodes[parent].children.append(node)
        else:
            roots.append(node)

    visited = {node.key for node in iter_nodes(roots)}
    unreachable = [node_key for node_key in nodes if node_key not in visited]
    if unreachable:
        raise HierarchyCycleError(unreachable)
    return roots


def iter_nodes(roots: list[TreeNode[T]]) -> Iterator[TreeNode[T]]:
    """Yield nodes depth-first without recursion, visiting each key once."""
    seen: set[str] = set()
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        if node.key in seen:
            continue
        seen.add(node.key)
        yield node
        stack.extend(reversed(node.children))
