from __future__ import annotations

import pytest

from taskmaster.entities import DEFAULT, Vocabulary, extract_filters
from taskmaster.models import TaskValidationError


def test_status_only_query_leaves_no_residual_text() -> None:
    result = extract_filters("show me all todo tasks")
    assert result.status == "todo"
    assert result.extracted_terms == []
    assert result.query == ""


def test_multi_word_phrase_matches_as_a_unit() -> None:
    result = extract_filters("tasks in progress about login")
    assert result.status == "in-progress"
    assert result.extracted_terms == ["about", "login"]


def test_matching_is_whole_token_only() -> None:
    result = extract_filters("donee tasks")
    assert result.status is None
    assert result.extracted_terms == ["donee"]


def test_priority_and_residual_terms() -> None:
    result = extract_filters("urgent todo login page")
    assert result.priority == "high"
    assert result.status == "todo"
    assert result.query == "login page"


def test_first_value_wins_for_single_valued_category() -> None:
    result = extract_filters("blocked and ready")
    assert result.readiness == "blocked"


def test_tags_and_action_types() -> None:
    result = extract_filters("#backend fix tag:api crash")
    assert result.tags == ["backend", "api"]
    assert result.action_types == ["fix"]
    assert result.extracted_terms == ["crash"]


def test_action_types_accumulate_without_duplicates() -> None:
    result = extract_filters("implement and add then review")
    assert result.action_types == ["create", "review"]
    assert result.extracted_terms == ["then"]


def test_empty_query_returns_empty_filters() -> None:
    assert extract_filters("").is_empty()
    assert extract_filters(None).is_empty()
    assert extract_filters("!!!").to_dict() == {}


def test_vocabulary_can_be_extended() -> None:
    extended = DEFAULT.merged({"status": {"todo": ["someday"]}})
    assert extract_filters("someday items", extended).status == "todo"
    assert extract_filters("someday items").status is None
    assert DEFAULT.merged(None) is DEFAULT


def test_extension_rejects_unknown_status_values() -> None:
    with pytest.raises(TaskValidationError, match="wontfix"):
        DEFAULT.merged({"status": {"wontfix": ["abandoned"]}})
    with pytest.raises(TaskValidationError, match="later"):
        DEFAULT.merged({"readiness": {"later": ["parked"]}})
    assert DEFAULT.merged({"priority": {"urgent": ["asap"]}}) is not DEFAULT


def test_custom_vocabulary_replaces_defaults() -> None:
    vocab = Vocabulary({"status": {"done": ["shipped"]}})
    result = extract_filters("shipped todo", vocab)
    assert result.status == "done"
    assert result.extracted_terms == ["todo"]
