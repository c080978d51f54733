"""Natural-language search and duplicate detection over a TaskStore."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

from .config import Settings
from .entities import ExtractedFilters, Vocabulary, extract_filters
from .fuzzy import combine, fuzzy_search, semantic_search, validate_weight
from .models import (
    OperationResult,
    SearchFilters,
    SimilarTask,
    Task,
    TaskError,
    TaskValidationError,
    id_sort_key,
)
from .store import matches_text

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

FUZZY_THRESHOLD_BOOST = 0.2
FUZZY_THRESHOLD_CAP = 0.8


@dataclass(slots=True)
class SearchResult:
    tasks: list[Task] = field(default_factory=list)
    filters: SearchFilters = field(default_factory=SearchFilters)
    extracted: ExtractedFilters = field(default_factory=ExtractedFilters)
    scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self.tasks],
            "filters": {
                "status": self.filters.status,
                "readiness": self.filters.readiness,
                "priority": self.filters.priority,
                "tags": list(self.filters.tags),
                "metadata": dict(self.filters.metadata),
                "text": self.filters.text,
            },
            "extracted": self.extracted.to_dict(),
            "scores": {key: round(value, 4) for key, value in self.scores.items()},
        }


@dataclass(slots=True)
class DuplicateGroup:
    task: Task
    matches: list[SimilarTask] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [self.task.id, *(match.id for match in self.matches)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "matches": [match.to_dict() for match in self.matches],
        }


def fuzzy_threshold_for(threshold: float) -> float:
    """Edit distance is noisier than token overlap, so its bar sits higher."""
    return min(threshold + FUZZY_THRESHOLD_BOOST, FUZZY_THRESHOLD_CAP)


def merge_filters(extracted: ExtractedFilters, explicit: SearchFilters | None) -> SearchFilters:
    """Overlay explicit filters on extracted ones; explicit values win."""
    explicit = explicit or SearchFilters()
    return SearchFilters(
        status=explicit.status if explicit.status is not None else extracted.status,
        readiness=explicit.readiness if explicit.readiness is not None else extracted.readiness,
        priority=explicit.priority if explicit.priority is not None else extracted.priority,
        tags=list(explicit.tags) if explicit.tags else list(extracted.tags),
        metadata=dict(explicit.metadata),
        text=explicit.text if explicit.text else (extracted.query or None),
    )


def _validate_threshold(threshold: float) -> float:
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        raise TaskValidationError(f"threshold must be between 0 and 1, got {threshold!r}")
    return float(threshold)


class TaskSearch:
    def __init__(
        self,
        store: TaskStore,
        settings: Settings | None = None,
        vocabulary: Vocabulary | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()
        self.vocabulary = vocabulary

    def _guard(self, operation: str, fn: Callable[[], T]) -> OperationResult[T]:
        try:
            return OperationResult.ok(fn())
        except TaskError as exc:
            logger.debug("%s failed: %s", operation, exc)
            return OperationResult.fail(exc)

    def _score(self, tasks: list[Task], query: str, threshold: float) -> list[SimilarTask]:
        semantic = semantic_search(tasks, query, threshold=threshold)
        fuzzy = fuzzy_search(tasks, query, threshold=fuzzy_threshold_for(threshold))
        return combine(semantic, fuzzy, self.settings.semantic_weight)

    def search(self, query: str | None, explicit_filters: SearchFilters | None = None) -> OperationResult[SearchResult]:
        """Resolve a free-text query into filters, fetch candidates and rank them.

        Extracted status/readiness/priority/tags become structured filters;
        whatever text is left over ranks the candidates by fused
        semantic + fuzzy score. Candidates that contain the text outright are
        always kept, even when their score falls under ``search_threshold``.
        """

        def op() -> SearchResult:
            extracted = extract_filters(query, self.vocabulary)
            filters = merge_filters(extracted, explicit_filters)
            structural = SearchFilters(
                status=filters.status,
                readiness=filters.readiness,
                priority=filters.priority,
                tags=filters.tags,
                metadata=filters.metadata,
            )
            candidates = self.store.search_tasks(structural).unwrap()
            if not filters.text:
                tasks = candidates[: self.settings.max_results]
                return SearchResult(tasks=tasks, filters=filters, extracted=extracted)

            scored = self._score(candidates, filters.text, 0.0)
            scores = {item.id: item.similarity for item in scored}
            threshold = self.settings.search_threshold
            kept = [
                task
                for task in candidates
                if matches_text(task, filters.text) or scores.get(task.id, 0.0) >= threshold
            ]
            kept.sort(key=lambda task: (-scores.get(task.id, 0.0), id_sort_key(task.id)))
            kept = kept[: self.settings.max_results]
            return SearchResult(
                tasks=kept,
                filters=filters,
                extracted=extracted,
                scores={task.id: scores.get(task.id, 0.0) for task in kept},
            )

        return self._guard("search", op)

    def natural_language_search(self, query: str) -> OperationResult[SearchResult]:
        return self.search(query)

    def find_similar(
        self,
        title: str,
        threshold: float | None = None,
        *,
        use_fuzzy: bool = True,
        exclude_ids: Iterable[str] = (),
    ) -> OperationResult[list[SimilarTask]]:
        """Rank existing tasks against ``title``; never modifies the store."""

        def op() -> list[SimilarTask]:
            limit = _validate_threshold(
                self.settings.similarity_threshold if threshold is None else threshold
            )
            validate_weight(self.settings.semantic_weight)
            excluded = set(exclude_ids)
            tasks = [task for task in self.store.get_all_tasks().unwrap() if task.id not in excluded]
            if use_fuzzy:
                results = self._score(tasks, title, limit)
            else:
                results = semantic_search(tasks, title, threshold=limit)
            return results[: self.settings.max_results]

        return self._guard("find_similar", op)

    def find_duplicate_groups(self, threshold: float | None = None) -> OperationResult[list[DuplicateGroup]]:
        """Cluster tasks whose fused similarity to a group's first task reaches ``threshold``.

        Each task joins at most one group; groups are anchored on the
        lowest-numbered task.
        """

        def op() -> list[DuplicateGroup]:
            limit = _validate_threshold(
                self.settings.similarity_threshold if threshold is None else threshold
            )
            tasks = self.store.get_all_tasks().unwrap()
            grouped: set[str] = set()
            groups: list[DuplicateGroup] = []
            for task in tasks:
                if task.id in grouped:
                    continue
                others = [other for other in tasks if other.id != task.id and other.id not in grouped]
                matches = [
                    item
                    for item in self._score(others, task.title, limit)
                    if item.similarity >= limit
                ]
                if not matches:
                    continue
                grouped.add(task.id)
                grouped.update(item.id for item in matches)
                groups.append(DuplicateGroup(task=task, matches=matches))
            return groups

        return self._guard("find_duplicate_groups", op)
