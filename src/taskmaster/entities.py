"""Vocabulary-driven extraction of structured filters from free-text queries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping
import re

from .models import VALID_READINESS, VALID_STATUSES, TaskValidationError
from .text import normalize_text, tokenize

CATEGORY_ORDER = ("status", "readiness", "priority", "action")
SINGLE_VALUED = ("status", "readiness", "priority")
# Categories whose values must be real task field values.
CLOSED_VALUES = {"status": VALID_STATUSES, "readiness": VALID_READINESS}

DEFAULT_VOCABULARY: dict[str, dict[str, list[str]]] = {
    "status": {
        "todo": ["todo", "to-do", "to do", "pending", "backlog", "not started"],
        "in-progress": [
            "in-progress",
            "in progress",
            "doing",
            "working",
            "ongoing",
            "active",
            "current",
            "wip",
        ],
        "done": ["done", "completed", "complete", "finished", "resolved", "closed", "fixed"],
    },
    "readiness": {
        "draft": ["draft", "drafts", "planning", "idea", "concept", "proposed", "preliminary"],
        "ready": ["ready", "actionable", "prepared", "available", "good-to-go", "startable"],
        "blocked": ["blocked", "stuck", "waiting", "dependent", "halted", "paused"],
    },
    "priority": {
        "high": ["high", "important", "critical", "urgent", "top", "p1", "priority 1"],
        "medium": ["medium", "normal", "standard", "average", "p2", "priority 2"],
        "low": ["low", "minor", "trivial", "p3", "priority 3", "eventually"],
    },
    "action": {
        "create": ["create", "add", "implement", "build"],
        "update": ["update", "modify", "change", "edit"],
        "delete": ["delete", "remove"],
        "fix": ["fix", "repair", "debug"],
        "review": ["review", "inspect", "audit"],
    },
}

FILLER_WORDS = frozenset(
    {
        "a",
        "all",
        "an",
        "and",
        "any",
        "are",
        "display",
        "every",
        "find",
        "for",
        "get",
        "give",
        "i",
        "is",
        "issue",
        "issues",
        "item",
        "items",
        "list",
        "me",
        "my",
        "of",
        "please",
        "show",
        "task",
        "tasks",
        "that",
        "the",
        "what",
        "which",
        "with",
    }
)

_TAG_MARKER_RE = re.compile(r"(?:(?<=\s)|^)(?:#|tag:)([A-Za-z0-9][\w-]*)")


@dataclass(slots=True)
class ExtractedFilters:
    status: str | None = None
    readiness: str | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    action_types: list[str] = field(default_factory=list)
    extracted_terms: list[str] = field(default_factory=list)
    query: str = ""

    def is_empty(self) -> bool:
        return not any(
            [
                self.status,
                self.readiness,
                self.priority,
                self.tags,
                self.action_types,
                self.extracted_terms,
            ]
        )

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, [], "")}


class Vocabulary:
    """Phrase tables keyed by category and canonical value."""

    def __init__(self, tables: Mapping[str, Mapping[str, list[str]]] | None = None) -> None:
        source = DEFAULT_VOCABULARY if tables is None else tables
        self.tables: dict[str, dict[str, list[str]]] = {
            category: {value: list(phrases) for value, phrases in values.items()}
            for category, values in source.items()
        }
        self._phrases = self._compile()

    def _compile(self) -> list[tuple[tuple[str, ...], str, str]]:
        compiled: list[tuple[tuple[str, ...], str, str]] = []
        categories = [c for c in CATEGORY_ORDER if c in self.tables]
        categories += [c for c in self.tables if c not in CATEGORY_ORDER]
        for category in categories:
            for value, phrases in self.tables[category].items():
                for phrase in [value, *phrases]:
                    tokens = tuple(tokenize(phrase))
                    if tokens:
                        compiled.append((tokens, category, value))
        # Longest phrase first; category order breaks ties.
        order = {category: idx for idx, category in enumerate(categories)}
        compiled.sort(key=lambda item: (-len(item[0]), order[item[1]]))
        return compiled

    def merged(self, extra: Mapping[str, Mapping[str, list[str]]] | None) -> Vocabulary:
        if not extra:
            return self
        tables = {category: dict(values) for category, values in self.tables.items()}
        for category, values in extra.items():
            allowed = CLOSED_VALUES.get(category)
            for value in values:
                if allowed is not None and value not in allowed:
                    raise TaskValidationError(
                        f"Unknown {category} value {value!r} (expected one of {', '.join(allowed)})"
                    )
            bucket = tables.setdefault(category, {})
            for value, phrases in values.items():
                existing = list(bucket.get(value, []))
                for phrase in phrases:
                    if phrase not in existing:
                        existing.append(phrase)
                bucket[value] = existing
        return Vocabulary(tables)

    def match(self, tokens: list[str]) -> list[tuple[int, int, str, str]]:
        """Return non-overlapping ``(start, end, category, value)`` matches."""
        consumed = [False] * len(tokens)
        found: list[tuple[int, int, str, str]] = []
        for phrase, category, value in self._phrases:
            width = len(phrase)
            for start in range(len(tokens) - width + 1):
                end = start + width
                if any(consumed[start:end]):
                    continue
                if tuple(tokens[start:end]) == phrase:
                    found.append((start, end, category, value))
                    for idx in range(start, end):
                        consumed[idx] = True
        found.sort()
        return found


DEFAULT = Vocabulary()


def _extract_tags(query: str) -> tuple[list[str], str]:
    tags = [match.group(1).lower() for match in _TAG_MARKER_RE.finditer(query)]
    remainder = _TAG_MARKER_RE.sub(" ", query)
    return list(dict.fromkeys(tags)), remainder


def extract_filters(query: str | None, vocabulary: Vocabulary | None = None) -> ExtractedFilters:
    """Scan ``query`` for status/readiness/priority/action words and tags.

    Matching is on whole tokens, so "donee" never yields status ``done``.
    Tokens that match nothing (filler words aside) come back as
    ``extracted_terms`` for full-text fallback. A query with no recognizable
    structure returns an empty ``ExtractedFilters``.
    """
    result = ExtractedFilters()
    if not query or not normalize_text(query):
        return result

    vocab = vocabulary or DEFAULT
    result.tags, remainder = _extract_tags(query)
    tokens = tokenize(remainder)

    matched = [False] * len(tokens)
    for start, end, category, value in vocab.match(tokens):
        for idx in range(start, end):
            matched[idx] = True
        if category in SINGLE_VALUED:
            if getattr(result, category) is None:
                setattr(result, category, value)
        elif category == "action":
            if value not in result.action_types:
                result.action_types.append(value)

    terms = [
        token
        for token, hit in zip(tokens, matched)
        if not hit and token not in FILLER_WORDS
    ]
    result.extracted_terms = terms
    result.query = " ".join(terms)
    return result
