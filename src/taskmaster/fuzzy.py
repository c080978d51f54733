"""Edit-distance and token-set similarity, plus weighted score fusion."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .models import SimilarTask, TaskValidationError
from .text import comparable_terms, normalize_text

DEFAULT_THRESHOLD = 0.4
DEFAULT_SEMANTIC_WEIGHT = 0.7
DEFAULT_KEYS = ("title", "description")


def levenshtein_distance(a: str, b: str) -> int:
    a = a or ""
    b = b or ""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def fuzzy_score(query: str | None, candidate: str | None) -> float:
    """Normalized Levenshtein similarity in [0, 1]; 1.0 means equal after normalization."""
    left = normalize_text(query)
    right = normalize_text(candidate)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    distance = levenshtein_distance(left, right)
    return 1.0 - distance / max(len(left), len(right))


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    left_set = set(left)
    right_set = set(right)
    if not left_set or not right_set:
        return 0.0
    return len(left_set & right_set) / len(left_set | right_set)


def semantic_score(query: str | None, candidate: str | None) -> float:
    left = normalize_text(query)
    right = normalize_text(candidate)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return jaccard_similarity(comparable_terms(left), comparable_terms(right))


def _field(task: Any, key: str) -> str | None:
    if isinstance(task, Mapping):
        value = task.get(key)
    else:
        value = getattr(task, key, None)
    return value if isinstance(value, str) else None


def _rank(
    tasks: Sequence[Any],
    query: str,
    threshold: float,
    keys: Sequence[str],
    scorer,
) -> list[SimilarTask]:
    results: list[SimilarTask] = []
    for task in tasks:
        best = 0.0
        for key in keys:
            text = _field(task, key)
            if text:
                best = max(best, scorer(query, text))
        if best >= threshold:
            results.append(
                SimilarTask(id=str(_field(task, "id")), title=_field(task, "title") or "", similarity=best)
            )
    # sorted() is stable, so ties keep corpus order.
    return sorted(results, key=lambda item: -item.similarity)


def fuzzy_search(
    tasks: Sequence[Any],
    query: str,
    *,
    threshold: float = DEFAULT_THRESHOLD,
    keys: Sequence[str] = DEFAULT_KEYS,
) -> list[SimilarTask]:
    return _rank(tasks, query, threshold, keys, fuzzy_score)


def semantic_search(
    tasks: Sequence[Any],
    query: str,
    *,
    threshold: float = DEFAULT_THRESHOLD,
    keys: Sequence[str] = DEFAULT_KEYS,
) -> list[SimilarTask]:
    return _rank(tasks, query, threshold, keys, semantic_score)


def validate_weight(weight: float) -> float:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not 0.0 <= weight <= 1.0:
        raise TaskValidationError(f"semantic weight must be between 0 and 1, got {weight!r}")
    return float(weight)


def combine(
    semantic_results: Iterable[SimilarTask],
    fuzzy_results: Iterable[SimilarTask],
    semantic_weight: float = DEFAULT_SEMANTIC_WEIGHT,
) -> list[SimilarTask]:
    """Fuse two ranked lists into one, keyed by task id.

    A task in both lists scores ``semantic * w + fuzzy * (1 - w)``; a task
    in only one list keeps that list's weighted contribution.
    """
    weight = validate_weight(semantic_weight)
    fuzzy_weight = 1.0 - weight
    combined: dict[str, SimilarTask] = {}

    for result in semantic_results:
        if result.id in combined:
            continue
        combined[result.id] = SimilarTask(
            id=result.id,
            title=result.title,
            similarity=result.similarity * weight,
        )

    seen_fuzzy: set[str] = set()
    for result in fuzzy_results:
        if result.id in seen_fuzzy:
            continue
        seen_fuzzy.add(result.id)
        contribution = result.similarity * fuzzy_weight
        if result.id in combined:
            combined[result.id].similarity += contribution
        else:
            combined[result.id] = SimilarTask(
                id=result.id,
                title=result.title,
                similarity=contribution,
            )

    return sorted(combined.values(), key=lambda item: -item.similarity)
