"""Core task models, constants and result types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar
import re

VALID_STATUSES = ("todo", "in-progress", "done")
VALID_READINESS = ("draft", "ready", "blocked")
VALID_DEPENDENCY_TYPES = ("child", "after", "sibling")
METADATA_OPERATIONS = ("set", "remove", "append")
TASK_ID_RE = re.compile(r"^[1-9][0-9]*(?:\.[1-9][0-9]*)*$")

T = TypeVar("T")


@dataclass(slots=True)
class Task:
    id: str
    title: str
    status: str = "todo"
    readiness: str = "draft"
    description: str | None = None
    body: str | None = None
    tags: list[str] = field(default_factory=list)
    parent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class Dependency:
    from_task_id: str
    to_task_id: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(slots=True)
class HierarchyTask:
    task: Task
    children: list[HierarchyTask] = field(default_factory=list)
    depth: int = 0

    @property
    def id(self) -> str:
        return self.task.id

    def to_dict(self) -> dict[str, Any]:
        payload = self.task.to_dict()
        payload["depth"] = self.depth
        payload["children"] = [child.to_dict() for child in self.children]
        return payload


@dataclass(slots=True)
class SimilarTask:
    id: str
    title: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class RemovalSummary:
    removed: list[str] = field(default_factory=list)
    renamed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ImportSummary:
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SearchFilters:
    status: str | list[str] | None = None
    readiness: str | list[str] | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    text: str | None = None


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    GENERAL_ERROR = "GENERAL_ERROR"


class TaskError(Exception):
    """Base error for task operations."""

    code = ErrorCode.GENERAL_ERROR


class TaskValidationError(TaskError):
    """Raised for bad enum values, malformed ids and invalid metadata."""

    code = ErrorCode.INVALID_INPUT


class TaskNotFoundError(TaskError):
    """Raised when a task or metadata path cannot be located."""

    code = ErrorCode.NOT_FOUND


class DependencyError(TaskError):
    """Raised when an edge would dangle or create a cycle."""

    code = ErrorCode.DEPENDENCY_ERROR


class StorageError(TaskError):
    """Raised when the backing store fails; the transaction is rolled back."""

    code = ErrorCode.DATABASE_ERROR

    def __init__(self, message: str, *, operation: str | None = None, task_id: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.task_id = task_id


@dataclass(slots=True)
class OperationResult(Generic[T]):
    success: bool
    data: T | None = None
    error: TaskError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> OperationResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: TaskError) -> OperationResult[T]:
        return cls(success=False, error=error)

    @property
    def code(self) -> ErrorCode | None:
        return None if self.error is None else self.error.code

    def unwrap(self) -> T:
        """Return ``data`` or raise the carried error."""
        if not self.success:
            raise self.error or TaskError("operation failed")
        return self.data  # type: ignore[return-value]


def validate_task_id(task_id: str) -> None:
    if not isinstance(task_id, str) or not TASK_ID_RE.fullmatch(task_id):
        raise TaskValidationError(f"Malformed task id: {task_id!r}")


def parent_of(task_id: str) -> str | None:
    if "." not in task_id:
        return None
    return task_id.rsplit(".", 1)[0]


def id_sort_key(task_id: str) -> tuple[int, ...]:
    return tuple(int(part) for part in task_id.split("."))


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise TaskValidationError(
            f"Invalid status: {status!r} (expected one of {', '.join(VALID_STATUSES)})"
        )


def validate_readiness(readiness: str) -> None:
    if readiness not in VALID_READINESS:
        raise TaskValidationError(
            f"Invalid readiness: {readiness!r} (expected one of {', '.join(VALID_READINESS)})"
        )


def validate_dependency_type(dep_type: str) -> None:
    if dep_type not in VALID_DEPENDENCY_TYPES:
        raise TaskValidationError(
            f"Invalid dependency type: {dep_type!r} "
            f"(expected one of {', '.join(VALID_DEPENDENCY_TYPES)})"
        )
