from __future__ import annotations

import pytest

from taskmaster.fuzzy import (
    combine,
    fuzzy_score,
    fuzzy_search,
    jaccard_similarity,
    levenshtein_distance,
    semantic_score,
    semantic_search,
    validate_weight,
)
from taskmaster.models import SimilarTask, TaskValidationError


def _corpus() -> list[dict[str, str]]:
    return [
        {"id": "1", "title": "Implement login page"},
        {"id": "2", "title": "Write API documentation", "description": "login endpoints"},
        {"id": "3", "title": "Implement login form"},
        {"id": "4", "title": "Refactor billing"},
    ]


def test_levenshtein_distance() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("same", "same") == 0


def test_fuzzy_score_bounds_and_symmetry() -> None:
    assert fuzzy_score("Login", "login!") == 1.0
    assert fuzzy_score("", "anything") == 0.0
    assert fuzzy_score(None, "anything") == 0.0
    assert fuzzy_score("abcd", "abxy") == pytest.approx(0.5)
    assert fuzzy_score("login form", "login page") == fuzzy_score("login page", "login form")
    assert fuzzy_score("Implement login form", "Implement login page") == pytest.approx(0.8)


def test_fuzzy_search_never_returns_scores_below_threshold() -> None:
    results = fuzzy_search(_corpus(), "implement login form", threshold=0.5)
    assert [item.id for item in results] == ["3", "1"]
    assert all(item.similarity >= 0.5 for item in results)


def test_fuzzy_search_higher_threshold_yields_subset() -> None:
    loose = {item.id for item in fuzzy_search(_corpus(), "login", threshold=0.1)}
    strict = {item.id for item in fuzzy_search(_corpus(), "login", threshold=0.6)}
    assert strict <= loose


def test_fuzzy_search_uses_best_field() -> None:
    results = fuzzy_search(_corpus(), "login endpoints", threshold=0.9)
    assert [item.id for item in results] == ["2"]
    assert results[0].title == "Write API documentation"


def test_fuzzy_search_ties_keep_corpus_order() -> None:
    tasks = [{"id": "7", "title": "Deploy"}, {"id": "2", "title": "deploy"}]
    assert [item.id for item in fuzzy_search(tasks, "deploy")] == ["7", "2"]


def test_semantic_score_uses_canonical_stemmed_tokens() -> None:
    assert jaccard_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert jaccard_similarity([], ["a"]) == 0.0
    assert semantic_score("Implement login form", "Create login page") == pytest.approx(0.5)
    assert semantic_score("fixing bugs", "repair bug") == pytest.approx(1.0)


def test_semantic_search_threshold() -> None:
    results = semantic_search(_corpus(), "create login form", threshold=0.4)
    assert [item.id for item in results] == ["3", "1"]


def test_combine_weights_both_sources() -> None:
    semantic = [SimilarTask("1", "a", 0.5), SimilarTask("2", "b", 0.4)]
    fuzzy = [SimilarTask("1", "a", 0.8), SimilarTask("3", "c", 1.0)]
    combined = {item.id: item.similarity for item in combine(semantic, fuzzy, 0.7)}
    assert combined["1"] == pytest.approx(0.5 * 0.7 + 0.8 * 0.3)
    assert combined["2"] == pytest.approx(0.4 * 0.7)
    assert combined["3"] == pytest.approx(1.0 * 0.3)


def test_combine_with_empty_fuzzy_keeps_semantic_order() -> None:
    semantic = [SimilarTask("5", "a", 0.9), SimilarTask("1", "b", 0.6), SimilarTask("3", "c", 0.6)]
    assert [item.id for item in combine(semantic, [], 0.7)] == ["5", "1", "3"]


def test_combine_is_deterministic_and_deduplicated() -> None:
    semantic = [SimilarTask("1", "a", 0.5), SimilarTask("1", "a", 0.9)]
    fuzzy = [SimilarTask("2", "b", 0.5), SimilarTask("2", "b", 0.5)]
    first = combine(semantic, fuzzy, 0.5)
    second = combine(semantic, fuzzy, 0.5)
    assert first == second
    assert [item.id for item in first] == ["1", "2"]


@pytest.mark.parametrize("weight", [-0.1, 1.5, True, "0.5"])
def test_invalid_weight_is_rejected(weight) -> None:
    with pytest.raises(TaskValidationError):
        validate_weight(weight)
    with pytest.raises(TaskValidationError):
        combine([], [], weight)
