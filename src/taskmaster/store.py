"""SQLite-backed task store with hierarchical ids and dependency integrity."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sqlite3
from typing import Any, Callable, Iterable, Iterator, TypeVar

from .hierarchy import ROOT, TaskTree
from .metadata import MISSING, apply_patch, get_path, validate_metadata
from .models import (
    Dependency,
    DependencyError,
    HierarchyTask,
    ImportSummary,
    OperationResult,
    RemovalSummary,
    SearchFilters,
    SimilarTask,
    StorageError,
    Task,
    TaskError,
    TaskNotFoundError,
    TaskValidationError,
    id_sort_key,
    parent_of,
    validate_dependency_type,
    validate_readiness,
    validate_status,
    validate_task_id,
)
from .text import comparable_terms, normalize_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    body TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    readiness TEXT NOT NULL DEFAULT 'draft',
    tags TEXT NOT NULL DEFAULT '[]',
    parent_id TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS dependencies (
    from_task_id TEXT NOT NULL,
    to_task_id TEXT NOT NULL,
    type TEXT NOT NULL,
    PRIMARY KEY (from_task_id, to_task_id, type)
);
CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id);
CREATE INDEX IF NOT EXISTS idx_dependencies_to ON dependencies(to_task_id);
"""

TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "body",
    "status",
    "readiness",
    "tags",
    "parent_id",
    "metadata",
    "created_at",
    "updated_at",
)

# Never a valid task id, so renamed rows cannot collide mid-rewrite.
_TEMP_PREFIX = "~"

EXPORT_FORMATS = ("json", "flat", "hierarchical")
EXPORT_FILTER_KEYS = ("tag", "status", "readiness", "priority")
FLAT_FIELDS = ("id", "title", "status", "readiness", "tags", "parent_id")


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _normalize_tags(tags: Iterable[str] | None) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        raise TaskValidationError("tags must be a list of strings")
    cleaned: set[str] = set()
    for tag in tags:
        if not isinstance(tag, str):
            raise TaskValidationError(f"Invalid tag: {tag!r}")
        if tag.strip():
            cleaned.add(tag.strip())
    return sorted(cleaned)


def _require_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise TaskValidationError("title must be a non-empty string")
    return title.strip()


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TaskValidationError(f"Expected a string, got {type(value).__name__}")
    return value or None


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        body=row["body"],
        status=row["status"],
        readiness=row["readiness"],
        tags=json.loads(row["tags"] or "[]"),
        parent_id=row["parent_id"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def parse_export_filter(expression: str) -> SearchFilters:
    """Turn ``key:value`` (tag, status, readiness or priority) into filters."""
    key, sep, value = expression.partition(":")
    key, value = key.strip().lower(), value.strip()
    if not sep or not value:
        raise TaskValidationError(f"Invalid filter {expression!r}; expected key:value")
    if key == "tag":
        return SearchFilters(tags=[value])
    if key == "status":
        validate_status(value)
        return SearchFilters(status=value)
    if key == "readiness":
        validate_readiness(value)
        return SearchFilters(readiness=value)
    if key == "priority":
        return SearchFilters(priority=value)
    raise TaskValidationError(
        f"Unknown filter key {key!r} (expected one of {', '.join(EXPORT_FILTER_KEYS)})"
    )


def _prune(nodes: list[HierarchyTask], filters: SearchFilters) -> list[HierarchyTask]:
    kept = []
    for node in nodes:
        node.children = _prune(node.children, filters)
        if node.children or matches_filters(node.task, filters):
            kept.append(node)
    return kept


def _count_nodes(nodes: list[HierarchyTask]) -> int:
    return sum(1 + _count_nodes(node.children) for node in nodes)


def _as_choices(value: str | list[str] | None) -> set[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return {value}
    return set(value)


def _task_text(task: Task) -> str:
    parts = [task.title, task.description or "", task.body or ""]
    if task.metadata:
        parts.append(json.dumps(task.metadata, sort_keys=True))
    return normalize_text(" ".join(parts))


def matches_text(task: Task, text: str | None) -> bool:
    """True when ``text`` occurs in the task as a phrase, a token or a stem."""
    phrase = normalize_text(text)
    if not phrase:
        return True
    haystack = _task_text(task)
    if phrase in haystack:
        return True
    available = set(haystack.split(" "))
    available.update(comparable_terms(haystack))
    return any(term in available for term in comparable_terms(phrase))


def matches_filters(task: Task, filters: SearchFilters) -> bool:
    statuses = _as_choices(filters.status)
    if statuses is not None and task.status not in statuses:
        return False
    readiness = _as_choices(filters.readiness)
    if readiness is not None and task.readiness not in readiness:
        return False
    if filters.tags:
        have = {tag.casefold() for tag in task.tags}
        if not all(tag.casefold() in have for tag in filters.tags):
            return False
    if filters.priority is not None:
        priority = task.metadata.get("priority")
        if priority is None or str(priority).casefold() != str(filters.priority).casefold():
            return False
    for path, expected in filters.metadata.items():
        if get_path(task.metadata, path) != expected:
            return False
    if filters.text and not matches_text(task, filters.text):
        return False
    return True


class TaskStore:
    """Tasks and dependency edges in one SQLite file.

    Every public method runs as a single transaction and reports its outcome
    as an :class:`OperationResult`; nothing is raised to the caller except
    from :meth:`OperationResult.unwrap`.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> TaskStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
            self._conn.execute("COMMIT")
        except BaseException:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise

    def _run(self, operation: str, fn: Callable[[], T], task_id: str | None = None) -> OperationResult[T]:
        try:
            with self._transaction():
                return OperationResult.ok(fn())
        except TaskError as exc:
            logger.debug("%s failed: %s", operation, exc)
            return OperationResult.fail(exc)
        except sqlite3.Error as exc:
            logger.exception("Storage failure in %s (task %s)", operation, task_id)
            where = f" for task {task_id}" if task_id else ""
            return OperationResult.fail(
                StorageError(f"{operation} failed{where}: {exc}", operation=operation, task_id=task_id)
            )
        except Exception as exc:
            logger.exception("Unexpected failure in %s (task %s)", operation, task_id)
            return OperationResult.fail(TaskError(f"{operation} failed: {exc}"))

    # ---- row access -------------------------------------------------

    def _fetch(self, task_id: str) -> Task | None:
        row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return None if row is None else _row_to_task(row)

    def _require(self, task_id: str) -> Task:
        validate_task_id(task_id)
        task = self._fetch(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def _all(self) -> list[Task]:
        rows = self._conn.execute("SELECT * FROM tasks").fetchall()
        return sorted((_row_to_task(row) for row in rows), key=lambda task: id_sort_key(task.id))

    def _edges(self) -> list[Dependency]:
        rows = self._conn.execute(
            "SELECT from_task_id, to_task_id, type FROM dependencies"
        ).fetchall()
        return [Dependency(row[0], row[1], row[2]) for row in rows]

    def _load_tree(self) -> TaskTree:
        ids = [row[0] for row in self._conn.execute("SELECT id FROM tasks")]
        return TaskTree.from_ids(ids)

    def _insert(self, task: Task) -> None:
        self._conn.execute(
            f"INSERT INTO tasks ({', '.join(TASK_COLUMNS)}) VALUES ({', '.join('?' * len(TASK_COLUMNS))})",
            (
                task.id,
                task.title,
                task.description,
                task.body,
                task.status,
                task.readiness,
                json.dumps(task.tags),
                task.parent_id,
                json.dumps(task.metadata, sort_keys=True),
                task.created_at,
                task.updated_at,
            ),
        )

    def _write(self, task: Task) -> None:
        self._conn.execute(
            """UPDATE tasks SET title = ?, description = ?, body = ?, status = ?, readiness = ?,
               tags = ?, metadata = ?, updated_at = ? WHERE id = ?""",
            (
                task.title,
                task.description,
                task.body,
                task.status,
                task.readiness,
                json.dumps(task.tags),
                json.dumps(task.metadata, sort_keys=True),
                task.updated_at,
                task.id,
            ),
        )

    # ---- id rewriting ----------------------------------------------

    def _apply_renames(self, renames: dict[str, str]) -> None:
        if not renames:
            return
        for old in renames:
            self._conn.execute(
                "UPDATE tasks SET id = ? WHERE id = ?", (_TEMP_PREFIX + old, old)
            )
        for old, new in renames.items():
            self._conn.execute(
                "UPDATE tasks SET id = ?, parent_id = ? WHERE id = ?",
                (new, parent_of(new), _TEMP_PREFIX + old),
            )
        for old, new in sorted(renames.items(), key=lambda item: id_sort_key(item[0])):
            logger.info("Renumbered %s -> %s", old, new)

    def _sync_edges(
        self,
        renames: dict[str, str],
        dropped: Iterable[str] = (),
        aliases: dict[str, str] | None = None,
    ) -> None:
        """Rewrite every edge through ``aliases`` then ``renames`` and rebuild child edges."""
        dropped_ids = set(dropped)
        aliases = aliases or {}
        kept: dict[tuple[str, str, str], None] = {}
        for edge in self._edges():
            if edge.type == "child":
                continue
            source = aliases.get(edge.from_task_id, edge.from_task_id)
            target = aliases.get(edge.to_task_id, edge.to_task_id)
            if source in dropped_ids or target in dropped_ids:
                continue
            source = renames.get(source, source)
            target = renames.get(target, target)
            if source == target:
                continue
            kept[(source, target, edge.type)] = None
        self._conn.execute("DELETE FROM dependencies")
        self._conn.executemany(
            "INSERT INTO dependencies (from_task_id, to_task_id, type) VALUES (?, ?, ?)",
            list(kept),
        )
        self._conn.execute(
            """INSERT OR IGNORE INTO dependencies (from_task_id, to_task_id, type)
               SELECT parent_id, id, 'child' FROM tasks WHERE parent_id IS NOT NULL"""
        )

    def _after_reaches(self, start: str, goal: str) -> bool:
        graph: dict[str, list[str]] = {}
        for edge in self._edges():
            if edge.type == "after":
                graph.setdefault(edge.from_task_id, []).append(edge.to_task_id)
        stack = [start]
        seen: set[str] = set()
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(graph.get(node, []))
        return False

    # ---- tasks -----------------------------------------------------

    def create_task(
        self,
        title: str,
        *,
        description: str | None = None,
        body: str | None = None,
        parent_id: str | None = None,
        after: str | None = None,
        status: str = "todo",
        readiness: str = "draft",
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[Task]:
        return self._run(
            "create_task",
            lambda: self._create(
                title,
                description=description,
                body=body,
                parent_id=parent_id,
                after=after,
                status=status,
                readiness=readiness,
                tags=tags,
                metadata=metadata,
            ),
            task_id=parent_id or after,
        )

    def _create(
        self,
        title: str,
        *,
        description: str | None = None,
        body: str | None = None,
        parent_id: str | None = None,
        after: str | None = None,
        status: str = "todo",
        readiness: str = "draft",
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        clean_title = _require_title(title)
        validate_status(status)
        validate_readiness(readiness)
        clean_tags = _normalize_tags(tags)
        payload = {} if metadata is None else metadata
        validate_metadata(payload)
        if parent_id is not None:
            self._require(parent_id)
        if after is not None:
            self._require(after)
            if parent_id is not None and parent_of(after) != parent_id:
                raise TaskValidationError(
                    f"Task {after} is not a child of {parent_id}"
                )

        tree = self._load_tree()
        if after is not None:
            anchor = tree.handle(after)
            handle = tree.insert(tree.parent(anchor), tree.position(anchor) + 1)
        elif parent_id is not None:
            handle = tree.insert(tree.handle(parent_id))
        else:
            handle = tree.insert(ROOT)
        renames = tree.renames()
        new_id = tree.display_id(handle)

        self._apply_renames(renames)
        now = _now_iso()
        task = Task(
            id=new_id,
            title=clean_title,
            status=status,
            readiness=readiness,
            description=_optional_text(description),
            body=_optional_text(body),
            tags=clean_tags,
            parent_id=parent_of(new_id),
            metadata=json.loads(json.dumps(payload)),
            created_at=now,
            updated_at=now,
        )
        self._insert(task)
        self._sync_edges(renames)
        if after is not None:
            self._conn.execute(
                "INSERT OR IGNORE INTO dependencies (from_task_id, to_task_id, type) VALUES (?, ?, 'after')",
                (renames.get(after, after), new_id),
            )
        logger.info("Created task %s: %s", new_id, clean_title)
        return task

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        body: str | None = None,
        status: str | None = None,
        readiness: str | None = None,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        replace_metadata: bool = False,
    ) -> OperationResult[Task]:
        """Patch the given fields; ``None`` leaves a field unchanged.

        An empty string clears ``description`` or ``body``. ``metadata`` is
        merged key by key into the existing bag unless ``replace_metadata``.
        """

        return self._run(
            "update_task",
            lambda: self._update(
                task_id,
                title=title,
                description=description,
                body=body,
                status=status,
                readiness=readiness,
                tags=tags,
                metadata=metadata,
                replace_metadata=replace_metadata,
            ),
            task_id=task_id,
        )

    def _update(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        body: str | None = None,
        status: str | None = None,
        readiness: str | None = None,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        replace_metadata: bool = False,
    ) -> Task:
        task = self._require(task_id)
        if title is not None:
            task.title = _require_title(title)
        if description is not None:
            task.description = _optional_text(description)
        if body is not None:
            task.body = _optional_text(body)
        if status is not None:
            validate_status(status)
            task.status = status
        if readiness is not None:
            validate_readiness(readiness)
            task.readiness = readiness
        if tags is not None:
            task.tags = _normalize_tags(tags)
        if metadata is not None:
            validate_metadata(metadata)
            merged = dict(metadata) if replace_metadata else {**task.metadata, **metadata}
            validate_metadata(merged)
            task.metadata = json.loads(json.dumps(merged))
        task.updated_at = _now_iso()
        self._write(task)
        return task

    def remove_task(self, task_id: str, *, promote_children: bool = False) -> OperationResult[RemovalSummary]:
        """Delete a task and renumber its later siblings.

        Descendants go with it unless ``promote_children`` splices them into
        the removed task's slot. Edges touching removed tasks are dropped.
        """

        def op() -> RemovalSummary:
            self._require(task_id)
            tree = self._load_tree()
            removed = [tree.key(h) for h in tree.remove(tree.handle(task_id), promote_children=promote_children)]
            removed_ids = sorted((key for key in removed if key is not None), key=id_sort_key)
            renames = tree.renames()
            self._conn.executemany("DELETE FROM tasks WHERE id = ?", [(key,) for key in removed_ids])
            self._apply_renames(renames)
            self._sync_edges(renames, dropped=removed_ids)
            logger.info("Removed %s", ", ".join(removed_ids))
            return RemovalSummary(removed=removed_ids, renamed=renames)

        return self._run("remove_task", op, task_id=task_id)

    def move_task(
        self,
        task_id: str,
        *,
        parent_id: str | None = None,
        after: str | None = None,
        to_root: bool = False,
    ) -> OperationResult[Task]:
        """Reparent a task (with its subtree) or place it right after a sibling."""

        def op() -> Task:
            targets = sum([parent_id is not None, after is not None, to_root])
            if targets != 1:
                raise TaskValidationError("Specify exactly one of parent_id, after or to_root")
            self._require(task_id)
            tree = self._load_tree()
            handle = tree.handle(task_id)
            if parent_id is not None:
                self._require(parent_id)
                new_parent = tree.handle(parent_id)
                if new_parent == handle or tree.is_ancestor(handle, new_parent):
                    raise DependencyError(f"Cannot move {task_id} beneath itself ({parent_id})")
                tree.move(handle, new_parent)
            elif after is not None:
                self._require(after)
                anchor = tree.handle(after)
                if anchor == handle or tree.is_ancestor(handle, anchor):
                    raise DependencyError(f"Cannot move {task_id} after its own subtree ({after})")
                target_parent = tree.parent(anchor)
                # Detach first so the anchor's position reflects the final sibling list.
                tree.move(handle, ROOT)
                tree.move(handle, target_parent, tree.position(anchor) + 1)
            else:
                if tree.parent(handle) == ROOT:
                    return self._require(task_id)
                tree.move(handle, ROOT)
            renames = tree.renames()
            self._apply_renames(renames)
            self._sync_edges(renames)
            new_id = renames.get(task_id, task_id)
            moved = self._require(new_id)
            moved.updated_at = _now_iso()
            self._write(moved)
            return moved

        return self._run("move_task", op, task_id=task_id)

    def get_task(self, task_id: str) -> OperationResult[Task]:
        return self._run("get_task", lambda: self._require(task_id), task_id=task_id)

    def get_all_tasks(self) -> OperationResult[list[Task]]:
        return self._run("get_all_tasks", self._all)

    def get_child_tasks(self, task_id: str | None = None) -> OperationResult[list[Task]]:
        """Direct children of ``task_id``, or root tasks when ``task_id`` is None."""

        def op() -> list[Task]:
            if task_id is not None:
                self._require(task_id)
            return [task for task in self._all() if task.parent_id == task_id]

        return self._run("get_child_tasks", op, task_id=task_id)

    def search_tasks(self, filters: SearchFilters | None = None) -> OperationResult[list[Task]]:
        def op() -> list[Task]:
            active = filters or SearchFilters()
            for status in _as_choices(active.status) or ():
                validate_status(status)
            for readiness in _as_choices(active.readiness) or ():
                validate_readiness(readiness)
            return [task for task in self._all() if matches_filters(task, active)]

        return self._run("search_tasks", op)

    def get_next_tasks(self, filters: SearchFilters | None = None, count: int = 1) -> OperationResult[list[Task]]:
        """Lowest-numbered actionable tasks: ``todo`` and ``ready`` unless overridden."""

        def op() -> list[Task]:
            if count < 1:
                raise TaskValidationError("count must be at least 1")
            active = replace(filters) if filters is not None else SearchFilters()
            if active.status is None:
                active.status = "todo"
            if active.readiness is None:
                active.readiness = "ready"
            return [task for task in self._all() if matches_filters(task, active)][:count]

        return self._run("get_next_tasks", op)

    # ---- dependencies ----------------------------------------------

    def add_dependency(self, from_task_id: str, to_task_id: str, dep_type: str = "after") -> OperationResult[Dependency]:
        def op() -> Dependency:
            validate_dependency_type(dep_type)
            if dep_type == "child":
                raise TaskValidationError("child edges follow the hierarchy; use move_task instead")
            for ref in (from_task_id, to_task_id):
                validate_task_id(ref)
                if self._fetch(ref) is None:
                    raise DependencyError(f"Dependency references unknown task {ref}")
            if from_task_id == to_task_id:
                raise DependencyError(f"Task {from_task_id} cannot depend on itself")
            if dep_type == "after" and self._after_reaches(to_task_id, from_task_id):
                raise DependencyError(
                    f"Dependency cycle detected: {from_task_id} -> {to_task_id} -> ... -> {from_task_id}"
                )
            self._conn.execute(
                "INSERT OR IGNORE INTO dependencies (from_task_id, to_task_id, type) VALUES (?, ?, ?)",
                (from_task_id, to_task_id, dep_type),
            )
            return Dependency(from_task_id, to_task_id, dep_type)

        return self._run("add_dependency", op, task_id=from_task_id)

    def remove_dependency(self, from_task_id: str, to_task_id: str, dep_type: str = "after") -> OperationResult[Dependency]:
        def op() -> Dependency:
            validate_dependency_type(dep_type)
            if dep_type == "child":
                raise TaskValidationError("child edges follow the hierarchy; use move_task instead")
            cursor = self._conn.execute(
                "DELETE FROM dependencies WHERE from_task_id = ? AND to_task_id = ? AND type = ?",
                (from_task_id, to_task_id, dep_type),
            )
            if cursor.rowcount == 0:
                raise TaskNotFoundError(
                    f"Dependency not found: {from_task_id} -> {to_task_id} ({dep_type})"
                )
            return Dependency(from_task_id, to_task_id, dep_type)

        return self._run("remove_dependency", op, task_id=from_task_id)

    def get_dependencies(self, task_id: str) -> OperationResult[list[Dependency]]:
        def op() -> list[Dependency]:
            self._require(task_id)
            edges = [
                edge
                for edge in self._edges()
                if task_id in (edge.from_task_id, edge.to_task_id)
            ]
            return sorted(
                edges,
                key=lambda edge: (id_sort_key(edge.from_task_id), id_sort_key(edge.to_task_id), edge.type),
            )

        return self._run("get_dependencies", op, task_id=task_id)

    # ---- metadata --------------------------------------------------

    def update_metadata(self, task_id: str, key: str, value: Any = None, op: str = "set") -> OperationResult[Task]:
        def run() -> Task:
            task = self._require(task_id)
            task.metadata = apply_patch(task.metadata, key, value, op)
            task.updated_at = _now_iso()
            self._write(task)
            return task

        return self._run("update_metadata", run, task_id=task_id)

    def get_metadata(self, task_id: str) -> OperationResult[dict[str, Any]]:
        return self._run("get_metadata", lambda: self._require(task_id).metadata, task_id=task_id)

    def get_metadata_field(self, task_id: str, key: str) -> OperationResult[Any]:
        def op() -> Any:
            value = get_path(self._require(task_id).metadata, key)
            if value is MISSING:
                raise TaskNotFoundError(f"Metadata field not found on {task_id}: {key}")
            return value

        return self._run("get_metadata_field", op, task_id=task_id)

    # ---- structure -------------------------------------------------

    def build_task_hierarchy(self) -> OperationResult[list[HierarchyTask]]:
        return self._run("build_task_hierarchy", self._hierarchy)

    def _hierarchy(self) -> list[HierarchyTask]:
        nodes: dict[str, HierarchyTask] = {}
        roots: list[HierarchyTask] = []
        for task in self._all():
            parent = nodes.get(task.parent_id) if task.parent_id else None
            node = HierarchyTask(task=task, depth=0 if parent is None else parent.depth + 1)
            nodes[task.id] = node
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def get_descendants(self, task_id: str) -> OperationResult[list[Task]]:
        def op() -> list[Task]:
            self._require(task_id)
            prefix = task_id + "."
            return [task for task in self._all() if task.id.startswith(prefix)]

        return self._run("get_descendants", op, task_id=task_id)

    def get_subgraph_nodes(self, root_id: str) -> OperationResult[set[str]]:
        """Every task reachable from ``root_id`` via children, ``after`` and ``sibling`` edges."""

        def op() -> set[str]:
            self._require(root_id)
            graph: dict[str, list[str]] = {}
            for task in self._all():
                if task.parent_id:
                    graph.setdefault(task.parent_id, []).append(task.id)
            for edge in self._edges():
                if edge.type in ("after", "sibling"):
                    graph.setdefault(edge.from_task_id, []).append(edge.to_task_id)
            visited: set[str] = set()
            stack = [root_id]
            while stack:
                node = stack.pop()
                if node in visited:
                    continue
                visited.add(node)
                stack.extend(graph.get(node, []))
            return visited

        return self._run("get_subgraph_nodes", op, task_id=root_id)

    # ---- merging ---------------------------------------------------

    def merge_tasks(self, primary_id: str, secondary_ids: Iterable[str]) -> OperationResult[Task]:
        """Fold ``secondary_ids`` into ``primary_id``.

        Tags are unioned and the merge is recorded in the primary's metadata.
        Children of a secondary are re-homed under the primary and its
        non-child edges are re-pointed there before it is removed.
        """
        secondaries = list(dict.fromkeys(secondary_ids))

        def op() -> Task:
            primary = self._require(primary_id)
            if not secondaries:
                raise TaskValidationError("merge needs at least one secondary task")
            if primary_id in secondaries:
                raise TaskValidationError("A task cannot be merged into itself")
            merged = [self._require(task_id) for task_id in secondaries]

            tree = self._load_tree()
            primary_handle = tree.handle(primary_id)
            for task in merged:
                if tree.is_ancestor(tree.handle(task.id), primary_handle):
                    raise DependencyError(
                        f"Cannot merge {task.id} into its descendant {primary_id}"
                    )
            # Highest id first keeps earlier handles' positions stable.
            for task in sorted(merged, key=lambda item: id_sort_key(item.id), reverse=True):
                handle = tree.handle(task.id)
                for child in tree.children(handle):
                    tree.move(child, primary_handle)
                tree.remove(handle)
            renames = tree.renames()
            removed_ids = [task.id for task in merged]

            tags = set(primary.tags)
            for task in merged:
                tags.update(task.tags)
            meta = dict(primary.metadata)
            meta.pop("similarityScore", None)
            previous = meta.get("mergedFrom")
            meta["mergedFrom"] = [*(previous if isinstance(previous, list) else []), *removed_ids]
            meta["mergedAt"] = _now_iso()
            meta["mergedTaskTitles"] = [task.title for task in merged]
            validate_metadata(meta)

            self._conn.executemany("DELETE FROM tasks WHERE id = ?", [(key,) for key in removed_ids])
            self._apply_renames(renames)
            self._sync_edges(renames, aliases={key: primary_id for key in removed_ids})
            survivor = renames.get(primary_id, primary_id)
            # Re-pointed edges can close an `after` loop through the survivor.
            for edge in self._edges():
                if edge.type != "after" or edge.from_task_id != survivor:
                    continue
                if self._after_reaches(edge.to_task_id, survivor):
                    raise DependencyError(
                        f"Merging {', '.join(removed_ids)} into {primary_id} would create a dependency cycle"
                    )

            result = self._require(survivor)
            result.tags = sorted(tags)
            result.metadata = meta
            result.updated_at = meta["mergedAt"]
            self._write(result)
            logger.info("Merged %s into %s", ", ".join(removed_ids), result.id)
            return result

        return self._run("merge_tasks", op, task_id=primary_id)

    # ---- export / import -------------------------------------------

    def export_tasks(self, fmt: str = "json", filter_spec: str | None = None) -> OperationResult[dict[str, Any]]:
        """Snapshot tasks as ``full``, ``flat`` or ``hierarchical`` JSON-ready data.

        ``filter_spec`` is ``key:value`` over tag, status, readiness or
        priority. A filtered hierarchy keeps the ancestors of every match.
        """

        def op() -> dict[str, Any]:
            if fmt not in EXPORT_FORMATS:
                raise TaskValidationError(
                    f"Unknown export format {fmt!r} (expected one of {', '.join(EXPORT_FORMATS)})"
                )
            filters = parse_export_filter(filter_spec) if filter_spec else None
            if fmt == "hierarchical":
                roots = self._hierarchy()
                if filters is not None:
                    roots = _prune(roots, filters)
                tasks: list[dict[str, Any]] = [node.to_dict() for node in roots]
                count = _count_nodes(roots)
                kind = "hierarchical"
            else:
                selected = [task for task in self._all() if filters is None or matches_filters(task, filters)]
                if fmt == "flat":
                    tasks = [{name: getattr(task, name) for name in FLAT_FIELDS} for task in selected]
                    kind = "flat"
                else:
                    tasks = [task.to_dict() for task in selected]
                    kind = "full"
                count = len(selected)
            return {
                "type": kind,
                "tasks": tasks,
                "count": count,
                "timestamp": _now_iso(),
                "filter": filter_spec or None,
            }

        return self._run("export_tasks", op)

    def import_tasks(self, entries: Iterable[Any], *, dry_run: bool = False) -> OperationResult[ImportSummary]:
        """Apply exported task entries in order.

        An entry carrying an ``id`` updates that task; one without creates a
        task, under ``parent_id`` when given. Entries that fail are skipped
        and reported in ``errors`` while the rest still apply. ``dry_run``
        runs everything and then discards the changes.
        """
        items = list(entries)

        def op() -> ImportSummary:
            summary = ImportSummary(dry_run=dry_run)
            self._conn.execute("SAVEPOINT import_batch")
            for index, entry in enumerate(items, start=1):
                self._conn.execute("SAVEPOINT import_entry")
                try:
                    self._import_entry(entry, summary)
                except TaskError as exc:
                    self._conn.execute("ROLLBACK TO import_entry")
                    summary.skipped += 1
                    summary.errors.append(f"Entry {index}: {exc}")
                self._conn.execute("RELEASE import_entry")
            if dry_run:
                self._conn.execute("ROLLBACK TO import_batch")
            self._conn.execute("RELEASE import_batch")
            logger.info(
                "Imported %d entries: %d added, %d updated, %d skipped%s",
                len(items),
                summary.added,
                summary.updated,
                summary.skipped,
                " (dry run)" if dry_run else "",
            )
            return summary

        return self._run("import_tasks", op)

    def _import_entry(self, entry: Any, summary: ImportSummary) -> None:
        if not isinstance(entry, dict):
            raise TaskValidationError(f"Expected an object, got {type(entry).__name__}")
        task_id = entry.get("id")
        if not task_id and not entry.get("title"):
            raise TaskValidationError("Skipped task with no id or title")
        fields = {
            "title": entry.get("title"),
            "description": entry.get("description"),
            "body": entry.get("body"),
            "tags": entry.get("tags"),
            "metadata": entry.get("metadata"),
        }
        if task_id:
            self._update(
                task_id,
                status=entry.get("status"),
                readiness=entry.get("readiness"),
                **fields,
            )
            summary.updated += 1
            return
        task = self._create(
            parent_id=entry.get("parent_id"),
            status=entry.get("status") or "todo",
            readiness=entry.get("readiness") or "draft",
            **fields,
        )
        summary.added += 1
        summary.created.append(task.id)

    def find_similar_tasks(self, title: str, threshold: float | None = None) -> OperationResult[list[SimilarTask]]:
        from .search import TaskSearch

        return TaskSearch(self).find_similar(title, threshold)
