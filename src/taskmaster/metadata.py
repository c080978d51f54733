"""Pure patch operations over the JSON metadata bag attached to each task.

Every operation takes a metadata mapping and returns a new one; the input is
never mutated, so the store can validate the result before writing it.
Paths use dot notation (``details.complexity``); a purely numeric segment
indexes into a list.
"""

from __future__ import annotations

import copy
import math
from typing import Any, Mapping

from .models import METADATA_OPERATIONS, TaskValidationError


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def split_path(path: str) -> list[str]:
    if not isinstance(path, str) or not path.strip():
        raise TaskValidationError("metadata path must be a non-empty string")
    parts = path.split(".")
    if any(not part for part in parts):
        raise TaskValidationError(f"Malformed metadata path: {path!r}")
    return parts


def validate_metadata(value: Any) -> None:
    """Raise TaskValidationError unless ``value`` is an acyclic JSON object."""
    if not isinstance(value, dict):
        raise TaskValidationError("metadata must be a mapping")
    _validate_node(value, "metadata", set())


def _validate_node(value: Any, where: str, active: set[int]) -> None:
    if value is None or isinstance(value, (bool, str, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TaskValidationError(f"{where}: non-finite number is not JSON-serializable")
        return
    if isinstance(value, (dict, list)):
        marker = id(value)
        if marker in active:
            raise TaskValidationError(f"{where}: circular reference")
        active.add(marker)
        try:
            if isinstance(value, dict):
                for key, item in value.items():
                    if not isinstance(key, str):
                        raise TaskValidationError(f"{where}: keys must be strings, got {key!r}")
                    _validate_node(item, f"{where}.{key}", active)
            else:
                for idx, item in enumerate(value):
                    _validate_node(item, f"{where}[{idx}]", active)
        finally:
            active.discard(marker)
        return
    raise TaskValidationError(
        f"{where}: value of type {type(value).__name__} is not JSON-serializable"
    )


def _index(container: list[Any], part: str) -> int | None:
    if not (part.isascii() and part.isdigit()):
        return None
    idx = int(part)
    return idx if idx < len(container) else None


def _step(container: Any, part: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(part, MISSING)
    if isinstance(container, list):
        idx = _index(container, part)
        return MISSING if idx is None else container[idx]
    return MISSING


def get_path(metadata: Mapping[str, Any] | None, path: str) -> Any:
    current: Any = metadata or {}
    for part in split_path(path):
        current = _step(current, part)
        if current is MISSING:
            return MISSING
    return current


def _parent_for_write(root: dict[str, Any], parts: list[str], create: bool) -> Any:
    current: Any = root
    for part in parts[:-1]:
        nxt = _step(current, part)
        if nxt is MISSING:
            if not create:
                return MISSING
            if not isinstance(current, dict):
                raise TaskValidationError(f"Cannot create '{part}' inside a list")
            nxt = {}
            current[part] = nxt
        elif not isinstance(nxt, (dict, list)):
            if not create:
                return MISSING
            raise TaskValidationError(
                f"Cannot traverse into '{part}': existing value is not an object"
            )
        current = nxt
    return current


def _assign(container: Any, part: str, value: Any) -> None:
    if isinstance(container, dict):
        container[part] = value
        return
    idx = _index(container, part)
    if idx is None:
        raise TaskValidationError(f"List index out of range: {part!r}")
    container[idx] = value


def set_path(metadata: Mapping[str, Any] | None, path: str, value: Any) -> dict[str, Any]:
    parts = split_path(path)
    result = copy.deepcopy(dict(metadata or {}))
    parent = _parent_for_write(result, parts, create=True)
    _assign(parent, parts[-1], copy.deepcopy(value))
    return result


def remove_path(metadata: Mapping[str, Any] | None, path: str) -> dict[str, Any]:
    parts = split_path(path)
    result = copy.deepcopy(dict(metadata or {}))
    parent = _parent_for_write(result, parts, create=False)
    if isinstance(parent, dict):
        parent.pop(parts[-1], None)
    elif isinstance(parent, list):
        idx = _index(parent, parts[-1])
        if idx is not None:
            del parent[idx]
    return result


def append_path(metadata: Mapping[str, Any] | None, path: str, value: Any) -> dict[str, Any]:
    existing = get_path(metadata, path)
    item = copy.deepcopy(value)
    if existing is MISSING:
        updated: Any = [item]
    elif isinstance(existing, list):
        updated = [*copy.deepcopy(existing), item]
    else:
        updated = [copy.deepcopy(existing), item]
    return set_path(metadata, path, updated)


def apply_patch(
    metadata: Mapping[str, Any] | None,
    path: str,
    value: Any,
    operation: str = "set",
) -> dict[str, Any]:
    if operation not in METADATA_OPERATIONS:
        raise TaskValidationError(
            f"Invalid metadata operation: {operation!r} "
            f"(expected one of {', '.join(METADATA_OPERATIONS)})"
        )
    if operation == "set":
        patched = set_path(metadata, path, value)
    elif operation == "remove":
        patched = remove_path(metadata, path)
    else:
        patched = append_path(metadata, path, value)
    validate_metadata(patched)
    return patched
