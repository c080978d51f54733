from __future__ import annotations

from taskmaster.text import (
    canonical_token,
    comparable_terms,
    expand_with_synonyms,
    get_synonyms,
    normalize_text,
    stem_word,
    tokenize,
    tokenize_and_normalize,
)


def test_normalize_text_folds_case_accents_and_punctuation() -> None:
    assert normalize_text("  Héllo,   WORLD!  ") == "hello world"
    assert normalize_text("log-in/out") == "log in out"
    assert normalize_text(None) == ""
    assert normalize_text("   ") == ""


def test_tokenize_keeps_short_tokens_and_duplicates() -> None:
    assert tokenize("Fix the log-in bug, the bug") == ["fix", "the", "log", "in", "bug", "the", "bug"]
    assert tokenize("") == []


def test_tokenize_and_normalize_drops_short_and_repeated_tokens() -> None:
    assert tokenize_and_normalize("the bug in the bug tracker") == ["the", "bug", "tracker"]


def test_stem_word_suffix_rules() -> None:
    assert stem_word("stories") == "story"
    assert stem_word("boxes") == "box"
    assert stem_word("tasks") == "task"
    assert stem_word("class") == "class"
    assert stem_word("running") == "run"
    assert stem_word("planned") == "plan"
    assert stem_word("quickly") == "quick"
    assert stem_word("is") == "is"


def test_synonyms_map_to_canonical_term() -> None:
    assert canonical_token("implement") == "create"
    assert canonical_token("create") == "create"
    assert canonical_token("login") == "login"
    assert get_synonyms("implement")[0] == "create"
    assert "repair" in get_synonyms("fix")
    assert get_synonyms("unrelated") == []


def test_comparable_terms_canonicalise_then_stem() -> None:
    assert comparable_terms("Implement login form") == ["create", "login", "form"]
    assert comparable_terms("Build login forms") == ["create", "login", "form"]


def test_expand_with_synonyms_adds_related_words() -> None:
    expanded = expand_with_synonyms("fix login")
    assert expanded[:2] == ["fix", "login"]
    assert "repair" in expanded
    assert "debug" in expanded
    assert len(expanded) == len(set(expanded))
