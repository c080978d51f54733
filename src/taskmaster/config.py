"""Store root discovery and YAML configuration for taskmaster."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from pathlib import Path
from typing import Any, Callable

import yaml

from .entities import CLOSED_VALUES, DEFAULT, Vocabulary
from .fuzzy import DEFAULT_SEMANTIC_WEIGHT, DEFAULT_THRESHOLD

ROOT_DIRNAME = ".taskmaster"
DB_FILENAME = "tasks.db"
DB_ENV_VAR = "TASKMASTER_DB"

DEFAULT_SEARCH_THRESHOLD = 0.1
DEFAULT_MAX_RESULTS = 20

Warn = Callable[[str], None]


@dataclass(slots=True)
class Settings:
    semantic_weight: float = DEFAULT_SEMANTIC_WEIGHT
    similarity_threshold: float = DEFAULT_THRESHOLD
    search_threshold: float = DEFAULT_SEARCH_THRESHOLD
    max_results: int = DEFAULT_MAX_RESULTS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class Config:
    settings: Settings = field(default_factory=Settings)
    vocabulary: Vocabulary = DEFAULT


UNIT_INTERVAL_KEYS = ("semantic_weight", "similarity_threshold", "search_threshold")


def find_repo_root(start: Path) -> Path | None:
    start = start.resolve()
    for candidate in [start, *start.parents]:
        if (candidate / ".git").exists():
            return candidate
    return None


def discover_roots(start: Path) -> list[Path]:
    start = start.resolve()
    roots: list[Path] = []
    for candidate in [start, *start.parents]:
        root = candidate / ROOT_DIRNAME
        if root.is_dir():
            roots.append(root)
    return roots


def choose_root(start: Path) -> tuple[Path | None, bool]:
    roots = discover_roots(start)
    if not roots:
        return None, False
    return roots[0], len(roots) > 1


def default_init_root(start: Path) -> Path:
    repo_root = find_repo_root(start)
    base = repo_root if repo_root is not None else start.resolve()
    return base / ROOT_DIRNAME


def config_path(root: Path) -> Path:
    return root / "config.yaml"


def db_path(root: Path) -> Path:
    override = os.environ.get(DB_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return root / DB_FILENAME


def default_config() -> dict[str, Any]:
    return {"settings": Settings().to_dict()}


def write_default_config_if_missing(root: Path) -> bool:
    path = config_path(root)
    if path.exists():
        return False
    root.mkdir(parents=True, exist_ok=True)
    payload = yaml.safe_dump(default_config(), sort_keys=False, default_flow_style=False)
    path.write_text(payload, encoding="utf-8")
    return True


def read_config(root: Path, warn: Warn | None = None) -> dict[str, Any]:
    path = config_path(root)
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def resolve_settings(data: dict[str, Any], path: Path, warn: Warn | None = None) -> Settings:
    settings = Settings()
    raw = data.get("settings", {})
    if raw is None:
        return settings
    if not isinstance(raw, dict):
        if warn is not None:
            warn(f"Invalid settings section in {path}. Using defaults.")
        return settings

    supported = set(Settings.__dataclass_fields__)
    for key in raw.keys():
        if key not in supported and warn is not None:
            warn(f"Unsupported settings key '{key}' in {path}. Ignoring.")

    for key in UNIT_INTERVAL_KEYS:
        value = raw.get(key)
        if value is None:
            continue
        if not _is_number(value) or not 0.0 <= value <= 1.0:
            if warn is not None:
                warn(
                    f"Invalid settings.{key} in {path}. "
                    f"Using default '{getattr(settings, key)}'."
                )
            continue
        setattr(settings, key, float(value))

    max_results = raw.get("max_results")
    if max_results is not None:
        if not isinstance(max_results, int) or isinstance(max_results, bool) or max_results < 1:
            if warn is not None:
                warn(
                    f"Invalid settings.max_results in {path}. "
                    f"Using default '{DEFAULT_MAX_RESULTS}'."
                )
        else:
            settings.max_results = max_results
    return settings


def resolve_vocabulary(data: dict[str, Any], path: Path, warn: Warn | None = None) -> Vocabulary:
    raw = data.get("vocabulary")
    if raw is None:
        return DEFAULT
    if not isinstance(raw, dict):
        if warn is not None:
            warn(f"Invalid vocabulary section in {path}. Using built-in vocabulary.")
        return DEFAULT

    extra: dict[str, dict[str, list[str]]] = {}
    for category, values in raw.items():
        if not isinstance(values, dict):
            if warn is not None:
                warn(f"Invalid vocabulary.{category} in {path}. Ignoring.")
            continue
        for value, phrases in values.items():
            allowed = CLOSED_VALUES.get(category)
            if allowed is not None and value not in allowed:
                if warn is not None:
                    warn(f"Unknown {category} '{value}' in vocabulary of {path}. Ignoring.")
                continue
            if isinstance(phrases, str):
                phrases = [phrases]
            if not isinstance(phrases, list) or not all(isinstance(p, str) for p in phrases):
                if warn is not None:
                    warn(f"Invalid vocabulary.{category}.{value} in {path}. Ignoring.")
                continue
            extra.setdefault(str(category), {})[str(value)] = phrases
    return DEFAULT.merged(extra)


def load_config(root: Path | None, warn: Warn | None = None) -> Config:
    if root is None or not root.exists():
        return Config()
    path = config_path(root)
    data = read_config(root, warn=warn)
    for key in data.keys():
        if key not in {"settings", "vocabulary"} and warn is not None:
            warn(f"Unsupported config key '{key}' in {path}. Ignoring.")
    return Config(
        settings=resolve_settings(data, path, warn=warn),
        vocabulary=resolve_vocabulary(data, path, warn=warn),
    )
