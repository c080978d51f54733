"""Arrow-key selectors backed by InquirerPy."""

from __future__ import annotations

import sys
from typing import Any


class SelectorUnavailableError(RuntimeError):
    """Raised when the arrow-key selector cannot be used; callers fall back to prompts."""


Option = tuple[str, str]


def _ensure_tty() -> None:
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        raise SelectorUnavailableError("interactive selector requires a TTY")


def _inquirer():
    try:
        from InquirerPy import inquirer
    except ImportError as exc:  # pragma: no cover - environment dependent
        raise SelectorUnavailableError("InquirerPy unavailable") from exc
    return inquirer


def _execute(prompt) -> Any:
    """Run a prompt; ``None`` means the user canceled."""
    try:
        return prompt.execute()
    except (KeyboardInterrupt, EOFError):
        return None
    except Exception as exc:
        raise SelectorUnavailableError("selector runtime failed") from exc


def _choices(options: list[Option], enabled: set[str] | None = None) -> list[dict[str, Any]]:
    choices: list[dict[str, Any]] = []
    for value, label in options:
        choice: dict[str, Any] = {"name": label, "value": value}
        if enabled is not None:
            choice["enabled"] = value in enabled
        choices.append(choice)
    return choices


def _in_source_order(options: list[Option], selected: list[Any] | None) -> list[str] | None:
    if selected is None:
        return None
    picked = {str(value) for value in selected}
    return [value for value, _ in options if value in picked]


def select_one(
    title: str,
    options: list[Option],
    *,
    default_value: str | None = None,
) -> str | None:
    _ensure_tty()
    if not options:
        return None
    result = _execute(
        _inquirer().select(
            message=title,
            choices=_choices(options),
            default=default_value,
            pointer=">",
            vi_mode=False,
            mandatory=False,
            raise_keyboard_interrupt=True,
        )
    )
    return None if result is None else str(result)


def select_fuzzy(
    title: str,
    options: list[Option],
    *,
    default_value: str | None = None,
) -> str | None:
    """Type-to-filter single selection, used for picking a task by id or title."""
    _ensure_tty()
    if not options:
        return None
    result = _execute(
        _inquirer().fuzzy(
            message=title,
            choices=_choices(options),
            default=default_value,
            vi_mode=False,
            mandatory=False,
            raise_keyboard_interrupt=True,
        )
    )
    return None if result is None else str(result)


def select_many(
    title: str,
    options: list[Option],
    *,
    default_values: list[str] | None = None,
) -> list[str] | None:
    """Checkbox selection; values come back in ``options`` order."""
    _ensure_tty()
    if not options:
        return []
    selected = _execute(
        _inquirer().checkbox(
            message=title,
            choices=_choices(options, set(default_values or [])),
            instruction="(space to toggle, enter to submit, ctrl-c to cancel)",
            vi_mode=False,
            mandatory=False,
            raise_keyboard_interrupt=True,
        )
    )
    return _in_source_order(options, selected)
