"""Arena tree used to compute hierarchical id rewrites.

Dotted ids are only a display form of a node's position: the tree holds
integer handles and explicit child arrays, so inserting, deleting or moving a
task is a list splice, and the resulting ``old id -> new id`` mapping is read
back with :meth:`TaskTree.id_map`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .models import TaskNotFoundError, TaskValidationError, id_sort_key, parent_of, validate_task_id

ROOT = 0


@dataclass(slots=True)
class _Node:
    key: str | None
    parent: int
    children: list[int] = field(default_factory=list)
    alive: bool = True


class TaskTree:
    def __init__(self) -> None:
        self._nodes: list[_Node] = [_Node(key=None, parent=-1)]
        self._by_key: dict[str, int] = {}

    @classmethod
    def from_ids(cls, ids: Iterable[str]) -> TaskTree:
        tree = cls()
        for task_id in sorted(ids, key=id_sort_key):
            validate_task_id(task_id)
            parent_id = parent_of(task_id)
            if parent_id is None:
                parent = ROOT
            elif parent_id in tree:
                parent = tree.handle(parent_id)
            else:
                raise TaskValidationError(f"Task {task_id} has no parent {parent_id} in the store")
            tree.insert(parent, key=task_id)
        return tree

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def handle(self, key: str) -> int:
        try:
            return self._by_key[key]
        except KeyError:
            raise TaskNotFoundError(f"Task not found: {key}") from None

    def key(self, handle: int) -> str | None:
        return self._nodes[handle].key

    def parent(self, handle: int) -> int:
        return self._nodes[handle].parent

    def children(self, handle: int) -> list[int]:
        return list(self._nodes[handle].children)

    def position(self, handle: int) -> int:
        return self._nodes[self.parent(handle)].children.index(handle)

    def insert(self, parent: int, position: int | None = None, *, key: str | None = None) -> int:
        node = self._nodes[parent]
        if not node.alive:
            raise TaskValidationError("Cannot insert under a removed task")
        handle = len(self._nodes)
        self._nodes.append(_Node(key=key, parent=parent))
        if position is None or position >= len(node.children):
            node.children.append(handle)
        else:
            node.children.insert(max(position, 0), handle)
        if key is not None:
            self._by_key[key] = handle
        return handle

    def walk(self, handle: int = ROOT) -> Iterator[int]:
        """Pre-order traversal below ``handle`` (exclusive), guarded against revisits."""
        visited: set[int] = {handle}
        stack = list(reversed(self._nodes[handle].children))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            yield current
            stack.extend(reversed(self._nodes[current].children))

    def is_ancestor(self, ancestor: int, handle: int) -> bool:
        current = self._nodes[handle].parent
        while current >= 0:
            if current == ancestor:
                return True
            current = self._nodes[current].parent
        return False

    def _detach(self, handle: int) -> int:
        siblings = self._nodes[self.parent(handle)].children
        position = siblings.index(handle)
        siblings.pop(position)
        return position

    def remove(self, handle: int, *, promote_children: bool = False) -> list[int]:
        """Splice ``handle`` out; return every handle that stops existing."""
        if handle == ROOT:
            raise TaskValidationError("Cannot remove the root")
        parent = self.parent(handle)
        position = self._detach(handle)
        node = self._nodes[handle]
        removed = [handle]
        if promote_children:
            siblings = self._nodes[parent].children
            for offset, child in enumerate(node.children):
                self._nodes[child].parent = parent
                siblings.insert(position + offset, child)
            node.children = []
        else:
            removed.extend(self.walk(handle))
        for item in removed:
            node = self._nodes[item]
            node.alive = False
            if node.key is not None:
                self._by_key.pop(node.key, None)
        return removed

    def move(self, handle: int, new_parent: int, position: int | None = None) -> None:
        if handle == new_parent or self.is_ancestor(handle, new_parent):
            raise TaskValidationError("Cannot move a task beneath itself")
        self._detach(handle)
        self._nodes[handle].parent = new_parent
        siblings = self._nodes[new_parent].children
        if position is None or position >= len(siblings):
            siblings.append(handle)
        else:
            siblings.insert(max(position, 0), handle)

    def display_ids(self) -> dict[int, str]:
        ids: dict[int, str] = {}
        stack: list[tuple[int, str]] = [(ROOT, "")]
        while stack:
            handle, prefix = stack.pop()
            for idx, child in enumerate(self._nodes[handle].children, start=1):
                child_id = f"{prefix}.{idx}" if prefix else str(idx)
                ids[child] = child_id
                stack.append((child, child_id))
        return ids

    def display_id(self, handle: int) -> str:
        parts: list[str] = []
        current = handle
        while current != ROOT:
            parts.append(str(self.position(current) + 1))
            current = self.parent(current)
        return ".".join(reversed(parts))

    def id_map(self) -> dict[str, str]:
        """Map every surviving original id to its current display id."""
        ids = self.display_ids()
        return {
            self._nodes[handle].key: display
            for handle, display in ids.items()
            if self._nodes[handle].key is not None
        }

    def renames(self) -> dict[str, str]:
        return {old: new for old, new in self.id_map().items() if old != new}
