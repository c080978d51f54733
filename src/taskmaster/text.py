"""Tokenization, normalization and stemming shared by matching and extraction."""

from __future__ import annotations

from typing import Iterable
import re
import unicodedata

_NON_WORD_RE = re.compile(r"[^a-z0-9_\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_VOWELS = "aeiou"

# Canonical term -> synonyms. Used to make "implement login" and
# "create login" comparable; entity vocabulary lives in entities.py.
SYNONYMS: dict[str, tuple[str, ...]] = {
    "todo": ("pending", "backlog", "upcoming"),
    "in-progress": ("doing", "working", "ongoing", "wip"),
    "done": ("completed", "finished", "resolved", "closed"),
    "draft": ("planning", "idea", "concept", "proposed"),
    "ready": ("actionable", "prepared", "available"),
    "blocked": ("stuck", "waiting", "dependent", "halted"),
    "create": ("make", "build", "develop", "implement", "add"),
    "update": ("modify", "change", "edit", "revise", "improve"),
    "remove": ("delete", "eliminate", "destroy", "drop", "uninstall"),
    "fix": ("repair", "resolve", "correct", "debug"),
    "review": ("examine", "analyze", "check", "inspect", "audit"),
}

_CANONICAL: dict[str, str] = {}
for _canonical, _synonyms in SYNONYMS.items():
    _CANONICAL.setdefault(_canonical, _canonical)
    for _synonym in _synonyms:
        _CANONICAL.setdefault(_synonym, _canonical)


def fold_ascii(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def normalize_text(text: str | None) -> str:
    """Lower-case, ASCII-fold, strip punctuation and collapse whitespace."""
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    folded = fold_ascii(text).lower()
    stripped = _NON_WORD_RE.sub(" ", folded)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def tokenize(text: str | None) -> list[str]:
    normalized = normalize_text(text)
    if not normalized:
        return []
    return normalized.split(" ")


def tokenize_and_normalize(text: str | None) -> list[str]:
    """Significant tokens (longer than two characters), de-duplicated in order."""
    seen: set[str] = set()
    tokens: list[str] = []
    for token in tokenize(text):
        if len(token) <= 2 or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def _is_consonant(char: str) -> bool:
    return char.isalpha() and char.lower() not in _VOWELS


def stem_word(word: str) -> str:
    word = word.lower()
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"
    if word.endswith("es") and len(word) > 4:
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 3:
        return word[:-1]
    if word.endswith("ing") and len(word) > 5:
        stem = word[:-3]
        if len(stem) > 2 and stem[-1] == stem[-2] and _is_consonant(stem[-1]):
            return stem[:-1]
        return stem
    if word.endswith("ed") and len(word) > 4:
        stem = word[:-2]
        if len(stem) > 2 and stem[-1] == stem[-2] and _is_consonant(stem[-1]):
            return stem[:-1]
        return stem
    if word.endswith("ly") and len(word) > 4:
        return word[:-2]
    return word


def stem_tokens(tokens: Iterable[str]) -> list[str]:
    return [stem_word(token) for token in tokens]


def canonical_token(token: str) -> str:
    return _CANONICAL.get(token, token)


def comparable_terms(text: str | None) -> list[str]:
    """Significant tokens mapped to their canonical synonym, then stemmed."""
    return stem_tokens(canonical_token(token) for token in tokenize_and_normalize(text))


def get_synonyms(word: str) -> list[str]:
    word = (word or "").lower()
    if word in SYNONYMS:
        return list(SYNONYMS[word])
    canonical = _CANONICAL.get(word)
    if canonical is None:
        return []
    return [canonical, *(item for item in SYNONYMS[canonical] if item != word)]


def expand_with_synonyms(query: str | None) -> list[str]:
    tokens = tokenize_and_normalize(query)
    expanded = list(tokens)
    for token in tokens:
        canonical = _CANONICAL.get(token)
        if canonical is None:
            continue
        expanded.append(canonical)
        expanded.extend(SYNONYMS[canonical])
    return list(dict.fromkeys(expanded))
