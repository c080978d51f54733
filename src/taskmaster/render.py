"""Renderers for list, tree, detail and similarity command output."""

from __future__ import annotations

import json
from typing import Any, Iterable

from .models import Dependency, HierarchyTask, RemovalSummary, SimilarTask, Task


STATUS_ORDER = ("todo", "in-progress", "done")
STATUS_LABELS = {
    "todo": "TODO",
    "in-progress": "IN PROGRESS",
    "done": "DONE",
}

LIST_COLUMNS: list[tuple[str, int]] = [
    ("id", 8),
    ("title", 40),
    ("status", 11),
    ("readiness", 9),
    ("tags", 24),
]
SCORE_COLUMN = ("score", 5)


def _status_style(status: str) -> str:
    return {
        "todo": "magenta",
        "in-progress": "cyan",
        "done": "green",
    }.get(status, "white")


def _readiness_style(readiness: str) -> str:
    return {
        "draft": "dim",
        "ready": "green",
        "blocked": "yellow",
    }.get(readiness, "white")


def _truncate(value: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(value) <= width:
        return value
    if width == 1:
        return "…"
    return f"{value[: width - 1]}…"


def _task_list_row(task: Task, score: float | None = None) -> dict[str, str]:
    row = {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "readiness": task.readiness,
        "tags": ", ".join(task.tags) if task.tags else "-",
    }
    if score is not None:
        row["score"] = f"{score:.2f}"
    return row


def _columns(scores: dict[str, float] | None) -> list[tuple[str, int]]:
    return [*LIST_COLUMNS, SCORE_COLUMN] if scores else list(LIST_COLUMNS)


def render_task_list_plain(tasks: Iterable[Task], scores: dict[str, float] | None = None) -> str:
    columns = _columns(scores)
    rows = [_task_list_row(task, scores.get(task.id) if scores else None) for task in tasks]
    if not rows:
        return "No tasks found."

    lines = []
    lines.append("  ".join(_truncate(name, width).ljust(width) for name, width in columns))
    lines.append("  ".join("-" * width for _, width in columns))
    for row in rows:
        lines.append(
            "  ".join(_truncate(row.get(name, ""), width).ljust(width) for name, width in columns).rstrip()
        )
    return "\n".join(lines)


def render_task_list_rich(tasks: Iterable[Task], scores: dict[str, float] | None = None):
    from rich import box
    from rich.console import Group
    from rich.table import Table
    from rich.text import Text

    task_list = list(tasks)
    if not task_list:
        return "No tasks found."

    by_status: dict[str, list[Task]] = {status: [] for status in STATUS_ORDER}
    for task in task_list:
        by_status.setdefault(task.status, []).append(task)

    columns = _columns(scores)
    renderables = []
    for status, bucket in by_status.items():
        if not bucket:
            continue
        renderables.append(
            Text(
                f"{STATUS_LABELS.get(status, status.upper())} ({len(bucket)})",
                style=f"bold {_status_style(status)}",
            )
        )
        table = Table(
            box=box.SIMPLE_HEAVY,
            show_header=True,
            header_style="bold white",
            pad_edge=False,
        )
        for name, width in columns:
            table.add_column(
                name,
                style="bold" if name == "title" else ("dim" if name == "id" else ""),
                min_width=width,
                max_width=width,
                overflow="ellipsis",
                no_wrap=True,
            )
        for task in bucket:
            row = _task_list_row(task, scores.get(task.id) if scores else None)
            rendered: list[str | Text] = []
            for name, _ in columns:
                value = row.get(name, "")
                if name == "status":
                    rendered.append(Text(value, style=_status_style(value)))
                elif name == "readiness":
                    rendered.append(Text(value, style=_readiness_style(value)))
                else:
                    rendered.append(value)
            table.add_row(*rendered)
        renderables.append(table)
        renderables.append(Text(""))

    if renderables and isinstance(renderables[-1], Text) and not renderables[-1].plain:
        renderables.pop()
    return Group(*renderables)


def render_task_list_json(tasks: Iterable[Task], scores: dict[str, float] | None = None) -> str:
    payload = []
    for task in tasks:
        item = task.to_dict()
        if scores is not None and task.id in scores:
            item["score"] = round(scores[task.id], 4)
        payload.append(item)
    return json.dumps(payload, indent=2)


def _tree_label(task: Task) -> str:
    return f"{task.id}  {task.title}  [{task.status}] [{task.readiness}]"


def render_tree_plain(roots: list[HierarchyTask]) -> str:
    if not roots:
        return "No tasks found."
    lines: list[str] = []
    stack = [(node, 0) for node in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        lines.append(f"{'  ' * depth}{_tree_label(node.task)}")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return "\n".join(lines)


def render_tree_rich(roots: list[HierarchyTask]):
    from rich.text import Text
    from rich.tree import Tree

    if not roots:
        return "No tasks found."

    def _label(task: Task) -> Text:
        label = Text()
        label.append(task.id, style="dim")
        label.append("  ")
        label.append(task.title, style="bold")
        label.append("  ")
        label.append(f"[{task.status}]", style=_status_style(task.status))
        label.append(" ")
        label.append(f"[{task.readiness}]", style=_readiness_style(task.readiness))
        return label

    tree = Tree(Text("tasks", style="bold white"), guide_style="bright_black")
    stack = [(node, tree) for node in reversed(roots)]
    while stack:
        node, parent = stack.pop()
        branch = parent.add(_label(node.task))
        stack.extend((child, branch) for child in reversed(node.children))
    return tree


def render_tree_json(roots: list[HierarchyTask]) -> str:
    return json.dumps([node.to_dict() for node in roots], indent=2)


def _inline_edges(edges: list[Dependency], task_id: str, outgoing: bool) -> str:
    picked = [
        (edge.to_task_id if outgoing else edge.from_task_id, edge.type)
        for edge in edges
        if edge.type != "child" and (edge.from_task_id if outgoing else edge.to_task_id) == task_id
    ]
    if not picked:
        return "-"
    return ", ".join(f"{other} ({dep_type})" for other, dep_type in picked)


def _normalized_body(body: str | None) -> str:
    return (body or "").lstrip("\n").rstrip() or "(empty)"


def _metadata_text(metadata: dict[str, Any]) -> str:
    if not metadata:
        return "-"
    return json.dumps(metadata, sort_keys=True)


def render_task_detail_plain(task: Task, edges: list[Dependency]) -> str:
    tags = ", ".join(task.tags) if task.tags else "-"
    lines = [
        f"{task.title} ({task.id})",
        f"[{task.status}] [{task.readiness}]",
        f"parent: {task.parent_id or '-'}    tags: {tags}",
        f"created: {task.created_at}    updated: {task.updated_at}",
        f"description: {task.description or '-'}",
        f"before: {_inline_edges(edges, task.id, outgoing=True)}",
        f"after: {_inline_edges(edges, task.id, outgoing=False)}",
        f"metadata: {_metadata_text(task.metadata)}",
        "",
        _normalized_body(task.body),
    ]
    return "\n".join(lines)


def render_task_detail_rich(task: Task, edges: list[Dependency]):
    from rich.console import Group
    from rich.text import Text

    title = Text()
    title.append(task.title, style="bold")
    title.append(f" ({task.id})", style="dim")

    chips = Text()
    chips.append(f"[{task.status}]", style=_status_style(task.status))
    chips.append(" ")
    chips.append(f"[{task.readiness}]", style=_readiness_style(task.readiness))

    tags = ", ".join(task.tags) if task.tags else "-"
    return Group(
        title,
        chips,
        Text(f"parent: {task.parent_id or '-'}    tags: {tags}"),
        Text(f"created: {task.created_at}    updated: {task.updated_at}", style="dim"),
        Text(f"description: {task.description or '-'}"),
        Text(f"before: {_inline_edges(edges, task.id, outgoing=True)}"),
        Text(f"after: {_inline_edges(edges, task.id, outgoing=False)}"),
        Text(f"metadata: {_metadata_text(task.metadata)}"),
        Text(""),
        Text(_normalized_body(task.body)),
    )


def render_task_detail_json(task: Task, edges: list[Dependency]) -> str:
    payload = {
        "task": task.to_dict(),
        "dependencies": [edge.to_dict() for edge in edges],
    }
    return json.dumps(payload, indent=2)


def render_similar_plain(results: Iterable[SimilarTask]) -> str:
    rows = list(results)
    if not rows:
        return "No similar tasks found."
    width = max(len("id"), *(len(item.id) for item in rows))
    lines = [f"{'id'.ljust(width)}  score  title", f"{'-' * width}  -----  -----"]
    for item in rows:
        lines.append(f"{item.id.ljust(width)}  {item.similarity:.2f}   {item.title}")
    return "\n".join(lines)


def render_similar_rich(results: Iterable[SimilarTask]):
    from rich import box
    from rich.table import Table

    rows = list(results)
    if not rows:
        return "No similar tasks found."
    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold white", pad_edge=False)
    table.add_column("id", style="dim")
    table.add_column("score", justify="right")
    table.add_column("title", style="bold")
    for item in rows:
        table.add_row(item.id, f"{item.similarity:.2f}", item.title)
    return table


def render_similar_json(results: Iterable[SimilarTask]) -> str:
    return json.dumps([item.to_dict() for item in results], indent=2)


def render_removal_plain(summary: RemovalSummary) -> str:
    lines = [f"Removed: {', '.join(summary.removed)}"]
    for old, new in summary.renamed.items():
        lines.append(f"Renumbered: {old} -> {new}")
    return "\n".join(lines)
