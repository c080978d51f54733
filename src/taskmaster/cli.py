"""CLI entrypoint for taskmaster."""

from __future__ import annotations

from contextlib import contextmanager
import json
import logging
import os
from pathlib import Path
import sys
from typing import Annotated, Any, Iterator

import typer

from . import render
from .config import (
    choose_root,
    config_path,
    db_path,
    default_init_root,
    load_config,
    write_default_config_if_missing,
)
from .models import (
    METADATA_OPERATIONS,
    OperationResult,
    SearchFilters,
    TaskError,
    TaskValidationError,
)
from .prompt_ui import choose_merge, choose_task, confirm
from .search import TaskSearch
from .store import TaskStore

LOG_LEVEL_ENV_VAR = "TASKMASTER_LOG_LEVEL"

NoInteractiveOption = Annotated[
    bool,
    typer.Option("--nointeractive", help="Disable interactive prompts for this command"),
]
RootOption = Annotated[Path | None, typer.Option("--root", help="Explicit .taskmaster path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON")]
TagOption = Annotated[list[str], typer.Option("--tag", help="Can be repeated")]
MetaOption = Annotated[
    list[str],
    typer.Option("--meta", help="key=value (value parsed as JSON when possible); can be repeated"),
]

app = typer.Typer(help="Hierarchical task tracker with natural-language search")
deps_app = typer.Typer(help="Manage dependency edges between tasks")
metadata_app = typer.Typer(help="Read and patch task metadata")
app.add_typer(deps_app, name="deps")
app.add_typer(metadata_app, name="metadata")


def _can_interact() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _can_render_rich_output() -> bool:
    return sys.stdout.isatty()


def _print_rich(renderable) -> None:
    from rich.console import Console

    Console().print(renderable)


def _configure_logging(verbose: bool, debug: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING").upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger("taskmaster")
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _resolve_existing_root(root: Path | None) -> Path:
    if root is not None:
        resolved = root.resolve()
        if not resolved.exists():
            raise typer.BadParameter(f"taskmaster root not found: {resolved}")
        return resolved

    found, multiple = choose_root(Path.cwd())
    if found is None:
        raise TaskValidationError(
            "No .taskmaster root found from current directory upward. Run 'tm init' first."
        )
    if multiple:
        typer.echo("Warning: multiple .taskmaster roots found; using nearest ancestor.", err=True)
    return found


@contextmanager
def _session(root: Path | None) -> Iterator[tuple[TaskStore, TaskSearch]]:
    resolved = _resolve_existing_root(root)
    config = load_config(resolved, warn=_warn_config)
    store = TaskStore(db_path(resolved))
    try:
        yield store, TaskSearch(store, config.settings, config.vocabulary)
    finally:
        store.close()


def _unwrap(result: OperationResult) -> Any:
    return result.unwrap()


def _run_and_handle(fn) -> None:
    try:
        fn()
    except TaskError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _exit_canceled(code: int) -> None:
    typer.echo("Canceled.")
    raise typer.Exit(code=code)


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_meta(pairs: list[str]) -> dict[str, Any] | None:
    if not pairs:
        return None
    parsed: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise TaskValidationError(f"--meta expects key=value, got {pair!r}")
        parsed[key.strip()] = _parse_value(value)
    return parsed


def _select_task_if_missing(
    store: TaskStore,
    task_id: str | None,
    prompt: str,
    *,
    nointeractive: bool,
) -> str:
    if task_id:
        return task_id
    tasks = _unwrap(store.get_all_tasks())
    if not tasks:
        raise TaskValidationError("No tasks available.")
    if nointeractive or not _can_interact():
        raise TaskValidationError("task_id is required in non-interactive mode")
    selected = choose_task(tasks, title=prompt)
    if not selected:
        _exit_canceled(1)
    return selected


def _echo_task_list(tasks, as_json: bool, scores: dict[str, float] | None = None) -> None:
    if as_json:
        typer.echo(render.render_task_list_json(tasks, scores))
    elif _can_render_rich_output():
        _print_rich(render.render_task_list_rich(tasks, scores))
    else:
        typer.echo(render.render_task_list_plain(tasks, scores))


def _echo_similar(results, as_json: bool) -> None:
    if as_json:
        typer.echo(render.render_similar_json(results))
    elif _can_render_rich_output():
        _print_rich(render.render_similar_rich(results))
    else:
        typer.echo(render.render_similar_plain(results))


@app.callback()
def root_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log at INFO level")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Log at DEBUG level")] = False,
) -> None:
    """Hierarchical task tracker with natural-language search."""
    _configure_logging(verbose, debug)


@app.command("init")
def init_cmd(root: RootOption = None) -> None:
    """Initialize a .taskmaster directory with config and database."""

    def _inner() -> None:
        if root is not None:
            target = root.resolve()
        else:
            found, _ = choose_root(Path.cwd())
            target = found if found is not None else default_init_root(Path.cwd())
        target.mkdir(parents=True, exist_ok=True)
        created = write_default_config_if_missing(target)
        TaskStore(db_path(target)).close()
        typer.echo(f"Initialized taskmaster root: {target}")
        if created:
            typer.echo(f"Created config: {config_path(target)}")
        else:
            typer.echo(f"Using existing config: {config_path(target)}")

    _run_and_handle(_inner)


@app.command("add")
def add_cmd(
    title: Annotated[str, typer.Argument(help="Task title")],
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    body: Annotated[str | None, typer.Option("--body")] = None,
    parent: Annotated[str | None, typer.Option("--parent", help="Parent task id")] = None,
    after: Annotated[str | None, typer.Option("--after", help="Insert right after this sibling")] = None,
    status: Annotated[str, typer.Option("--status")] = "todo",
    readiness: Annotated[str, typer.Option("--readiness")] = "draft",
    tag: TagOption = [],
    meta: MetaOption = [],
    force: Annotated[bool, typer.Option("--force", help="Skip the similar-task check")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Create a task, warning about similar existing ones."""

    def _inner() -> None:
        metadata = _parse_meta(meta)
        with _session(root) as (store, search):
            if not force:
                similar = _unwrap(search.find_similar(title))
                if similar:
                    typer.echo("Warning: similar tasks already exist:", err=True)
                    for item in similar[:5]:
                        typer.echo(f"  {item.id}  {item.title} ({item.similarity:.2f})", err=True)
            task = _unwrap(
                store.create_task(
                    title,
                    description=description,
                    body=body,
                    parent_id=parent,
                    after=after,
                    status=status,
                    readiness=readiness,
                    tags=tag,
                    metadata=metadata,
                )
            )
        if as_json:
            typer.echo(json.dumps(task.to_dict(), indent=2))
        else:
            typer.echo(f"Created: {task.id} {task.title}")

    _run_and_handle(_inner)


@app.command("show")
def show_cmd(
    task_id: Annotated[str | None, typer.Argument(help="Task id, e.g. 2.1")] = None,
    as_json: JsonOption = False,
    nointeractive: NoInteractiveOption = False,
    root: RootOption = None,
) -> None:
    """Show a detailed view of one task."""

    def _inner() -> None:
        with _session(root) as (store, _):
            selected = _select_task_if_missing(store, task_id, "Select a task to show", nointeractive=nointeractive)
            task = _unwrap(store.get_task(selected))
            edges = _unwrap(store.get_dependencies(task.id))
        if as_json:
            typer.echo(render.render_task_detail_json(task, edges))
        elif _can_render_rich_output():
            _print_rich(render.render_task_detail_rich(task, edges))
        else:
            typer.echo(render.render_task_detail_plain(task, edges))

    _run_and_handle(_inner)


@app.command("list")
def list_cmd(
    status: Annotated[list[str], typer.Option("--status", help="Can be repeated")] = [],
    readiness: Annotated[list[str], typer.Option("--readiness", help="Can be repeated")] = [],
    tag: TagOption = [],
    priority: Annotated[str | None, typer.Option("--priority")] = None,
    text: Annotated[str | None, typer.Option("--text", help="Substring/token match")] = None,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """List tasks matching structured filters."""

    def _inner() -> None:
        filters = SearchFilters(
            status=list(status) or None,
            readiness=list(readiness) or None,
            priority=priority,
            tags=list(tag),
            text=text,
        )
        with _session(root) as (store, _):
            tasks = _unwrap(store.search_tasks(filters))
        _echo_task_list(tasks, as_json)

    _run_and_handle(_inner)


@app.command("tree")
def tree_cmd(as_json: JsonOption = False, root: RootOption = None) -> None:
    """Show the task hierarchy."""

    def _inner() -> None:
        with _session(root) as (store, _):
            roots = _unwrap(store.build_task_hierarchy())
        if as_json:
            typer.echo(render.render_tree_json(roots))
        elif _can_render_rich_output():
            _print_rich(render.render_tree_rich(roots))
        else:
            typer.echo(render.render_tree_plain(roots))

    _run_and_handle(_inner)


@app.command("update")
def update_cmd(
    task_id: Annotated[str | None, typer.Argument(help="Task id")] = None,
    title: Annotated[str | None, typer.Option("--title")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    body: Annotated[str | None, typer.Option("--body")] = None,
    status: Annotated[str | None, typer.Option("--status")] = None,
    readiness: Annotated[str | None, typer.Option("--readiness")] = None,
    tag: Annotated[list[str], typer.Option("--tag", help="Replaces all tags; can be repeated")] = [],
    clear_tags: Annotated[bool, typer.Option("--clear-tags")] = False,
    meta: MetaOption = [],
    replace_metadata: Annotated[bool, typer.Option("--replace-metadata")] = False,
    as_json: JsonOption = False,
    nointeractive: NoInteractiveOption = False,
    root: RootOption = None,
) -> None:
    """Patch fields of one task."""

    def _inner() -> None:
        metadata = _parse_meta(meta)
        if replace_metadata and metadata is None:
            metadata = {}
        tags = [] if clear_tags else (list(tag) or None)
        with _session(root) as (store, _):
            selected = _select_task_if_missing(store, task_id, "Select a task to update", nointeractive=nointeractive)
            task = _unwrap(
                store.update_task(
                    selected,
                    title=title,
                    description=description,
                    body=body,
                    status=status,
                    readiness=readiness,
                    tags=tags,
                    metadata=metadata,
                    replace_metadata=replace_metadata,
                )
            )
        if as_json:
            typer.echo(json.dumps(task.to_dict(), indent=2))
        else:
            typer.echo(f"Updated: {task.id} {task.title}")

    _run_and_handle(_inner)


@app.command("remove")
def remove_cmd(
    task_id: Annotated[str | None, typer.Argument(help="Task id")] = None,
    promote_children: Annotated[
        bool,
        typer.Option("--promote-children", help="Keep children, moving them into the removed slot"),
    ] = False,
    as_json: JsonOption = False,
    nointeractive: NoInteractiveOption = False,
    root: RootOption = None,
) -> None:
    """Remove a task (and its subtree) and renumber its siblings."""

    def _inner() -> None:
        with _session(root) as (store, _):
            selected = _select_task_if_missing(store, task_id, "Select a task to remove", nointeractive=nointeractive)
            if task_id is None and not confirm(f"Remove task {selected} and its subtree?"):
                _exit_canceled(1)
            summary = _unwrap(store.remove_task(selected, promote_children=promote_children))
        if as_json:
            typer.echo(json.dumps(summary.to_dict(), indent=2))
        else:
            typer.echo(render.render_removal_plain(summary))

    _run_and_handle(_inner)


@app.command("move")
def move_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    parent: Annotated[str | None, typer.Option("--parent", help="New parent task id")] = None,
    after: Annotated[str | None, typer.Option("--after", help="Place right after this task")] = None,
    to_root: Annotated[bool, typer.Option("--to-root", help="Move to the top level")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Reparent a task or reorder it among siblings."""

    def _inner() -> None:
        with _session(root) as (store, _):
            task = _unwrap(store.move_task(task_id, parent_id=parent, after=after, to_root=to_root))
        if as_json:
            typer.echo(json.dumps(task.to_dict(), indent=2))
        else:
            typer.echo(f"Moved: {task_id} -> {task.id}")

    _run_and_handle(_inner)


@app.command("search")
def search_cmd(
    query: Annotated[list[str], typer.Argument(help="Free-text query, e.g. 'high priority todo login'")],
    status: Annotated[str | None, typer.Option("--status")] = None,
    readiness: Annotated[str | None, typer.Option("--readiness")] = None,
    priority: Annotated[str | None, typer.Option("--priority")] = None,
    tag: TagOption = [],
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Search tasks with natural language."""

    def _inner() -> None:
        explicit = SearchFilters(status=status, readiness=readiness, priority=priority, tags=list(tag))
        with _session(root) as (_, search):
            result = _unwrap(search.search(" ".join(query), explicit))
        if as_json:
            typer.echo(json.dumps(result.to_dict(), indent=2))
            return
        applied = result.extracted.to_dict()
        applied.pop("query", None)
        if applied:
            typer.echo(f"Interpreted: {json.dumps(applied)}", err=True)
        _echo_task_list(result.tasks, as_json=False, scores=result.scores or None)

    _run_and_handle(_inner)


@app.command("similar")
def similar_cmd(
    title: Annotated[str, typer.Argument(help="Title to compare against existing tasks")],
    threshold: Annotated[float | None, typer.Option("--threshold", min=0.0, max=1.0)] = None,
    no_fuzzy: Annotated[bool, typer.Option("--no-fuzzy", help="Token similarity only")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """List tasks similar to a title."""

    def _inner() -> None:
        with _session(root) as (_, search):
            results = _unwrap(search.find_similar(title, threshold, use_fuzzy=not no_fuzzy))
        _echo_similar(results, as_json)

    _run_and_handle(_inner)


@app.command("next")
def next_cmd(
    count: Annotated[int, typer.Option("--count", "-n", min=1)] = 1,
    tag: TagOption = [],
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Show the next actionable tasks (todo and ready)."""

    def _inner() -> None:
        with _session(root) as (store, _):
            tasks = _unwrap(store.get_next_tasks(SearchFilters(tags=list(tag)), count=count))
        _echo_task_list(tasks, as_json)

    _run_and_handle(_inner)


@app.command("dedupe")
def dedupe_cmd(
    threshold: Annotated[float | None, typer.Option("--threshold", min=0.0, max=1.0)] = None,
    as_json: JsonOption = False,
    nointeractive: NoInteractiveOption = False,
    root: RootOption = None,
) -> None:
    """Find groups of similar tasks and optionally merge them."""

    def _inner() -> None:
        with _session(root) as (store, search):
            groups = _unwrap(search.find_duplicate_groups(threshold))
            if as_json:
                typer.echo(json.dumps([group.to_dict() for group in groups], indent=2))
                return
            if not groups:
                typer.echo("No duplicate candidates found.")
                return
            if nointeractive or not _can_interact():
                for group in groups:
                    typer.echo(f"{group.task.id}  {group.task.title}")
                    for match in group.matches:
                        typer.echo(f"  ~ {match.id}  {match.title} ({match.similarity:.2f})")
                return

            declined: set[frozenset[str]] = set()
            while True:
                pending = [
                    group
                    for group in groups
                    if frozenset([group.task.title, *(m.title for m in group.matches)]) not in declined
                ]
                if not pending:
                    break
                group = pending[0]
                choice = choose_merge(group.task, group.matches)
                if choice is None:
                    _exit_canceled(1)
                primary, secondaries = choice
                if secondaries:
                    merged = _unwrap(store.merge_tasks(primary, secondaries))
                    typer.echo(f"Merged {', '.join(secondaries)} into {merged.id}")
                    groups = _unwrap(search.find_duplicate_groups(threshold))
                else:
                    declined.add(frozenset([group.task.title, *(m.title for m in group.matches)]))

    _run_and_handle(_inner)


@app.command("merge")
def merge_cmd(
    primary: Annotated[str, typer.Argument(help="Task id that survives")],
    secondaries: Annotated[list[str], typer.Argument(help="Task ids folded into the primary")],
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Merge tasks into one."""

    def _inner() -> None:
        with _session(root) as (store, _):
            task = _unwrap(store.merge_tasks(primary, secondaries))
        if as_json:
            typer.echo(json.dumps(task.to_dict(), indent=2))
        else:
            typer.echo(f"Merged {', '.join(secondaries)} into {task.id} {task.title}")

    _run_and_handle(_inner)


@app.command("export")
def export_cmd(
    fmt: Annotated[str, typer.Option("--format", help="json, flat or hierarchical")] = "json",
    filter_spec: Annotated[
        str | None, typer.Option("--filter", help="key:value over tag, status, readiness or priority")
    ] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write to this file")] = None,
    root: RootOption = None,
) -> None:
    """Export tasks as JSON."""

    def _inner() -> None:
        with _session(root) as (store, _):
            payload = _unwrap(store.export_tasks(fmt, filter_spec))
        text = json.dumps(payload, indent=2)
        if output is None:
            typer.echo(text)
            return
        output.write_text(text + "\n", encoding="utf-8")
        typer.echo(f"Exported {payload['count']} tasks to {output}")

    _run_and_handle(_inner)


@app.command("import")
def import_cmd(
    input_path: Annotated[
        Path, typer.Argument(exists=True, dir_okay=False, help='JSON file shaped like {"tasks": [...]}')
    ],
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Report what would change without saving")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Create or update tasks from an export file."""

    def _inner() -> None:
        try:
            document = json.loads(input_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise TaskValidationError(f"{input_path} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict) or not isinstance(document.get("tasks"), list):
            raise TaskValidationError(f'{input_path} must contain {{"tasks": [...]}}')
        with _session(root) as (store, _):
            summary = _unwrap(store.import_tasks(document["tasks"], dry_run=dry_run))
        if as_json:
            typer.echo(json.dumps(summary.to_dict(), indent=2))
            return
        prefix = "Would import" if dry_run else "Imported"
        typer.echo(f"{prefix}: added {summary.added}, updated {summary.updated}, skipped {summary.skipped}")
        for error in summary.errors:
            typer.echo(f"  {error}", err=True)

    _run_and_handle(_inner)


@deps_app.command("add")
def deps_add_cmd(
    from_task: Annotated[str, typer.Argument(help="Task that comes first")],
    to_task: Annotated[str, typer.Argument(help="Task that follows")],
    dep_type: Annotated[str, typer.Option("--type", help="after or sibling")] = "after",
    root: RootOption = None,
) -> None:
    """Add a dependency edge."""

    def _inner() -> None:
        with _session(root) as (store, _):
            edge = _unwrap(store.add_dependency(from_task, to_task, dep_type))
        typer.echo(f"Added: {edge.from_task_id} -> {edge.to_task_id} ({edge.type})")

    _run_and_handle(_inner)


@deps_app.command("remove")
def deps_remove_cmd(
    from_task: Annotated[str, typer.Argument()],
    to_task: Annotated[str, typer.Argument()],
    dep_type: Annotated[str, typer.Option("--type")] = "after",
    root: RootOption = None,
) -> None:
    """Remove a dependency edge."""

    def _inner() -> None:
        with _session(root) as (store, _):
            edge = _unwrap(store.remove_dependency(from_task, to_task, dep_type))
        typer.echo(f"Removed: {edge.from_task_id} -> {edge.to_task_id} ({edge.type})")

    _run_and_handle(_inner)


@deps_app.command("list")
def deps_list_cmd(
    task_id: Annotated[str, typer.Argument()],
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """List edges touching a task."""

    def _inner() -> None:
        with _session(root) as (store, _):
            edges = _unwrap(store.get_dependencies(task_id))
        if as_json:
            typer.echo(json.dumps([edge.to_dict() for edge in edges], indent=2))
        elif not edges:
            typer.echo("No dependencies.")
        else:
            for edge in edges:
                typer.echo(f"{edge.from_task_id} -> {edge.to_task_id} ({edge.type})")

    _run_and_handle(_inner)


@metadata_app.command("get")
def metadata_get_cmd(
    task_id: Annotated[str, typer.Argument()],
    key: Annotated[str | None, typer.Argument(help="Dot path; omit for the whole bag")] = None,
    root: RootOption = None,
) -> None:
    """Print metadata as JSON."""

    def _inner() -> None:
        with _session(root) as (store, _):
            if key is None:
                value = _unwrap(store.get_metadata(task_id))
            else:
                value = _unwrap(store.get_metadata_field(task_id, key))
        typer.echo(json.dumps(value, indent=2))

    _run_and_handle(_inner)


def _patch_metadata(task_id: str, key: str, value: Any, op: str, root: Path | None) -> None:
    if op not in METADATA_OPERATIONS:
        raise TaskValidationError(f"Invalid metadata operation: {op}")
    with _session(root) as (store, _):
        task = _unwrap(store.update_metadata(task_id, key, value, op))
    typer.echo(json.dumps(task.metadata, indent=2))


@metadata_app.command("set")
def metadata_set_cmd(
    task_id: Annotated[str, typer.Argument()],
    key: Annotated[str, typer.Argument()],
    value: Annotated[str, typer.Argument(help="Parsed as JSON when possible")],
    root: RootOption = None,
) -> None:
    """Set a metadata path."""
    _run_and_handle(lambda: _patch_metadata(task_id, key, _parse_value(value), "set", root))


@metadata_app.command("remove")
def metadata_remove_cmd(
    task_id: Annotated[str, typer.Argument()],
    key: Annotated[str, typer.Argument()],
    root: RootOption = None,
) -> None:
    """Remove a metadata path (no-op when absent)."""
    _run_and_handle(lambda: _patch_metadata(task_id, key, None, "remove", root))


@metadata_app.command("append")
def metadata_append_cmd(
    task_id: Annotated[str, typer.Argument()],
    key: Annotated[str, typer.Argument()],
    value: Annotated[str, typer.Argument(help="Parsed as JSON when possible")],
    root: RootOption = None,
) -> None:
    """Append to a metadata list, creating it when absent."""
    _run_and_handle(lambda: _patch_metadata(task_id, key, _parse_value(value), "append", root))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
