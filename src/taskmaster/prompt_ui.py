"""Prompt-based interactive helpers for picking and merging tasks."""

from __future__ import annotations

import typer

from .models import SimilarTask, Task
from .selector_ui import SelectorUnavailableError, select_fuzzy, select_many, select_one


def _warn_selector_fallback(exc: Exception) -> None:
    message = str(exc)
    if not message:
        return
    typer.echo(f"Warning: {message}; falling back to numeric prompts.", err=True)


def _safe_prompt(message: str, *, default: str = "") -> str | None:
    try:
        return typer.prompt(message, default=default)
    except (typer.Abort, KeyboardInterrupt, EOFError):
        return None


def _task_label(task: Task) -> str:
    return f"{task.id}  {task.title} [{task.status}]"


def _prompt_single_choice(title: str, options: list[tuple[str, str]], default_value: str) -> str | None:
    try:
        selected = select_one(title, options, default_value=default_value)
    except SelectorUnavailableError as exc:
        _warn_selector_fallback(exc)
    else:
        return selected

    typer.echo(title)
    default_index = 1
    for idx, (value, label) in enumerate(options, start=1):
        typer.echo(f"{idx}. {label}")
        if value == default_value:
            default_index = idx

    while True:
        raw = _safe_prompt("Enter number", default=str(default_index))
        if raw is None:
            return None
        try:
            index = int(raw)
        except ValueError:
            typer.echo("Invalid selection. Enter a number.")
            continue
        if 1 <= index <= len(options):
            return options[index - 1][0]
        typer.echo("Selection out of range.")


def _prompt_multi_choice(
    title: str,
    options: list[tuple[str, str]],
    default_values: list[str] | None = None,
) -> list[str] | None:
    if not options:
        return []

    try:
        selected = select_many(title, options, default_values=default_values)
    except SelectorUnavailableError as exc:
        _warn_selector_fallback(exc)
    else:
        return selected

    defaults = set(default_values or [])
    typer.echo(title)
    default_numbers: list[str] = []
    for idx, (value, label) in enumerate(options, start=1):
        mark = "x" if value in defaults else " "
        typer.echo(f"{idx}. [{mark}] {label}")
        if value in defaults:
            default_numbers.append(str(idx))

    while True:
        raw = _safe_prompt("Enter comma-separated numbers", default=",".join(default_numbers))
        if raw is None:
            return None
        raw = raw.strip()
        if not raw:
            return []

        tokens = [token.strip() for token in raw.split(",") if token.strip()]
        try:
            indexes = [int(token) for token in tokens]
        except ValueError:
            typer.echo("Invalid selection. Use comma-separated numbers.")
            continue

        if any(index < 1 or index > len(options) for index in indexes):
            typer.echo("Selection out of range.")
            continue

        picked = {index - 1 for index in indexes}
        return [value for idx, (value, _) in enumerate(options) if idx in picked]


def confirm(title: str, *, default: bool = False) -> bool | None:
    """Yes/no question; ``None`` when the user cancels."""
    try:
        selected = select_one(title, [("yes", "Yes"), ("no", "No")], default_value="yes" if default else "no")
    except SelectorUnavailableError as exc:
        _warn_selector_fallback(exc)
    else:
        if selected is None:
            return None
        return selected == "yes"

    prompt_label = "Y/n" if default else "y/N"
    while True:
        raw = _safe_prompt(f"{title} ({prompt_label})", default="y" if default else "n")
        if raw is None:
            return None
        raw = raw.strip().lower()
        if raw in {"y", "yes"}:
            return True
        if raw in {"n", "no"}:
            return False
        typer.echo("Invalid selection. Enter y or n.")


def choose_task(tasks: list[Task], title: str = "Select task") -> str | None:
    """Return the chosen task id, or None on cancel."""
    if not tasks:
        return None
    try:
        selected = select_fuzzy(title, [(task.id, _task_label(task)) for task in tasks])
    except SelectorUnavailableError as exc:
        _warn_selector_fallback(exc)
    else:
        return selected

    typer.echo(title)
    for idx, task in enumerate(tasks, start=1):
        typer.echo(f"{idx}. {_task_label(task)}")
    typer.echo("0. cancel")

    raw = _safe_prompt("Enter number", default="1")
    if raw is None:
        return None
    try:
        index = int(raw)
    except ValueError:
        return None
    if 1 <= index <= len(tasks):
        return tasks[index - 1].id
    return None


def choose_merge(
    task: Task,
    matches: list[SimilarTask],
) -> tuple[str, list[str]] | None:
    """Ask which task survives a merge and which ones fold into it.

    Returns ``(primary_id, secondary_ids)``; ``None`` on cancel, and an
    empty secondary list means "skip this group".
    """
    options = [(task.id, f"{task.id}  {task.title}")]
    options.extend((item.id, f"{item.id}  {item.title}  ({item.similarity:.2f})") for item in matches)

    primary = _prompt_single_choice("Keep which task?", options, default_value=task.id)
    if primary is None:
        return None

    remaining = [option for option in options if option[0] != primary]
    secondaries = _prompt_multi_choice(
        f"Merge which tasks into {primary}?",
        remaining,
        default_values=[value for value, _ in remaining],
    )
    if secondaries is None:
        return None
    return primary, secondaries
