from __future__ import annotations

from pathlib import Path

import pytest

from taskmaster.config import Settings
from taskmaster.entities import DEFAULT, ExtractedFilters
from taskmaster.models import ErrorCode, SearchFilters
from taskmaster.search import TaskSearch, fuzzy_threshold_for, merge_filters
from taskmaster.store import TaskStore


@pytest.fixture()
def store(tmp_path: Path):
    with TaskStore(tmp_path / "tasks.db") as task_store:
        yield task_store


def _seed_login(store: TaskStore) -> None:
    store.create_task("Fix login bug", metadata={"priority": "high"}).unwrap()
    store.create_task("Write docs").unwrap()
    store.create_task("Login page styling", status="done").unwrap()


def test_fuzzy_threshold_is_raised_and_capped() -> None:
    assert fuzzy_threshold_for(0.4) == pytest.approx(0.6)
    assert fuzzy_threshold_for(0.7) == pytest.approx(0.8)
    assert fuzzy_threshold_for(0.0) == pytest.approx(0.2)


def test_merge_filters_prefers_explicit_values() -> None:
    extracted = ExtractedFilters(status="done", tags=["api"], query="login")
    merged = merge_filters(extracted, SearchFilters(status="todo"))
    assert merged.status == "todo"
    assert merged.tags == ["api"]
    assert merged.text == "login"

    merged = merge_filters(ExtractedFilters(), None)
    assert merged.text is None
    assert merged.status is None


def test_find_similar_fuses_semantic_and_fuzzy(store: TaskStore) -> None:
    store.create_task("Implement login page").unwrap()
    store.create_task("Write docs").unwrap()
    results = TaskSearch(store).find_similar("Implement login form").unwrap()
    assert [item.id for item in results] == ["1"]
    assert results[0].similarity >= 0.4
    assert results[0].similarity == pytest.approx(0.5 * 0.7 + 0.8 * 0.3)


def test_find_similar_semantic_only_and_exclusions(store: TaskStore) -> None:
    store.create_task("Implement login page").unwrap()
    store.create_task("Create login page").unwrap()
    search = TaskSearch(store)
    results = search.find_similar("Implement login form", use_fuzzy=False).unwrap()
    assert {item.id: item.similarity for item in results} == pytest.approx({"1": 0.5, "2": 0.5})
    excluded = search.find_similar("Implement login form", use_fuzzy=False, exclude_ids=["1"]).unwrap()
    assert [item.id for item in excluded] == ["2"]


def test_find_similar_never_writes(store: TaskStore) -> None:
    store.create_task("Implement login page").unwrap()
    before = store.get_all_tasks().unwrap()
    TaskSearch(store).find_similar("Implement login form").unwrap()
    assert store.get_all_tasks().unwrap() == before


def test_find_similar_rejects_bad_threshold_and_weight(store: TaskStore) -> None:
    _seed_login(store)
    assert TaskSearch(store).find_similar("login", threshold=1.5).code == ErrorCode.INVALID_INPUT
    bad = TaskSearch(store, Settings(semantic_weight=1.5))
    assert bad.find_similar("login").code == ErrorCode.INVALID_INPUT


def test_status_only_query_becomes_a_filter(store: TaskStore) -> None:
    _seed_login(store)
    result = TaskSearch(store).search("show me all todo tasks").unwrap()
    assert result.filters.status == "todo"
    assert result.filters.text is None
    assert [task.id for task in result.tasks] == ["1", "2"]
    assert result.scores == {}


def test_explicit_filters_override_extracted(store: TaskStore) -> None:
    _seed_login(store)
    result = TaskSearch(store).search("done tasks", SearchFilters(status="todo")).unwrap()
    assert result.extracted.status == "done"
    assert result.filters.status == "todo"
    assert [task.id for task in result.tasks] == ["1", "2"]


def test_text_search_ranks_and_drops_unrelated(store: TaskStore) -> None:
    _seed_login(store)
    result = TaskSearch(store).search("login").unwrap()
    ids = [task.id for task in result.tasks]
    assert set(ids) == {"1", "3"}
    assert "2" not in result.scores
    assert result.scores[ids[0]] >= result.scores[ids[1]]


def test_priority_words_filter_on_metadata(store: TaskStore) -> None:
    _seed_login(store)
    result = TaskSearch(store).search("urgent login").unwrap()
    assert result.filters.priority == "high"
    assert [task.id for task in result.tasks] == ["1"]


def test_search_respects_max_results(store: TaskStore) -> None:
    for idx in range(5):
        store.create_task(f"Task number {idx}").unwrap()
    result = TaskSearch(store, Settings(max_results=2)).search(None).unwrap()
    assert [task.id for task in result.tasks] == ["1", "2"]


def test_custom_vocabulary_is_used(store: TaskStore) -> None:
    _seed_login(store)
    vocab = DEFAULT.merged({"status": {"done": ["shipped"]}})
    result = TaskSearch(store, vocabulary=vocab).natural_language_search("shipped").unwrap()
    assert result.filters.status == "done"
    assert [task.id for task in result.tasks] == ["3"]


def test_search_result_to_dict(store: TaskStore) -> None:
    _seed_login(store)
    payload = TaskSearch(store).search("urgent login").unwrap().to_dict()
    assert payload["filters"]["priority"] == "high"
    assert payload["extracted"]["priority"] == "high"
    assert [task["id"] for task in payload["tasks"]] == ["1"]
    assert set(payload["scores"]) == {"1"}


def test_find_duplicate_groups(store: TaskStore) -> None:
    store.create_task("Implement login form").unwrap()
    store.create_task("Implement login page").unwrap()
    store.create_task("Write documentation").unwrap()
    groups = TaskSearch(store).find_duplicate_groups().unwrap()
    assert len(groups) == 1
    assert groups[0].ids == ["1", "2"]
    assert all(match.similarity >= 0.4 for match in groups[0].matches)


def test_find_duplicate_groups_none_when_distinct(store: TaskStore) -> None:
    store.create_task("Implement login form").unwrap()
    store.create_task("Write documentation").unwrap()
    assert TaskSearch(store).find_duplicate_groups().unwrap() == []
    assert TaskSearch(store).find_duplicate_groups(threshold=-1).code == ErrorCode.INVALID_INPUT
