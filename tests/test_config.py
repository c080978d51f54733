from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from taskmaster.config import (
    DB_ENV_VAR,
    Settings,
    choose_root,
    config_path,
    db_path,
    default_init_root,
    discover_roots,
    load_config,
    write_default_config_if_missing,
)
from taskmaster.entities import DEFAULT, extract_filters


def _write_config(root: Path, payload: str) -> None:
    root.mkdir(parents=True, exist_ok=True)
    config_path(root).write_text(payload, encoding="utf-8")


def test_missing_root_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / ".taskmaster")
    assert config.settings == Settings()
    assert config.vocabulary is DEFAULT
    assert load_config(None).settings.semantic_weight == 0.7


def test_write_default_config_is_idempotent(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    assert write_default_config_if_missing(root) is True
    assert write_default_config_if_missing(root) is False
    data = yaml.safe_load(config_path(root).read_text(encoding="utf-8"))
    assert data["settings"]["similarity_threshold"] == 0.4
    assert load_config(root).settings == Settings()


def test_valid_settings_are_applied(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(
        root,
        "settings:\n  semantic_weight: 0.5\n  similarity_threshold: 0.6\n  max_results: 5\n",
    )
    settings = load_config(root).settings
    assert settings.semantic_weight == 0.5
    assert settings.similarity_threshold == 0.6
    assert settings.search_threshold == 0.1
    assert settings.max_results == 5


def test_invalid_settings_warn_and_fall_back(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "settings:\n  semantic_weight: 2\n  max_results: 0\n  colour: blue\n")
    warnings: list[str] = []
    settings = load_config(root, warn=warnings.append).settings
    assert settings == Settings()
    assert any("Invalid settings.semantic_weight" in item and "'0.7'" in item for item in warnings)
    assert any("Invalid settings.max_results" in item for item in warnings)
    assert any("Unsupported settings key 'colour'" in item for item in warnings)


def test_unsupported_top_level_key_warns(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "interactive: true\n")
    warnings: list[str] = []
    load_config(root, warn=warnings.append)
    assert warnings == [f"Unsupported config key 'interactive' in {config_path(root)}. Ignoring."]


def test_malformed_yaml_warns(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "settings: [\n")
    warnings: list[str] = []
    assert load_config(root, warn=warnings.append).settings == Settings()
    assert warnings and warnings[0].startswith("Unable to parse config")


def test_non_mapping_config_warns(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "- one\n- two\n")
    warnings: list[str] = []
    load_config(root, warn=warnings.append)
    assert warnings and warnings[0].startswith("Invalid config format")


def test_vocabulary_extends_defaults(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "vocabulary:\n  status:\n    todo: someday\n  priority:\n    high: [asap]\n")
    vocabulary = load_config(root).vocabulary
    assert extract_filters("someday asap", vocabulary).status == "todo"
    assert extract_filters("someday asap", vocabulary).priority == "high"
    assert extract_filters("done", vocabulary).status == "done"


def test_invalid_vocabulary_entries_are_skipped(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(root, "vocabulary:\n  status:\n    todo: [1, 2]\n  priority: high\n")
    warnings: list[str] = []
    vocabulary = load_config(root, warn=warnings.append).vocabulary
    assert extract_filters("todo", vocabulary).status == "todo"
    assert len(warnings) == 2


def test_vocabulary_values_outside_known_statuses_are_skipped(tmp_path: Path) -> None:
    root = tmp_path / ".taskmaster"
    _write_config(
        root,
        "vocabulary:\n  status:\n    wontfix: [abandoned]\n    done: [shipped]\n"
        "  readiness:\n    later: [parked]\n",
    )
    warnings: list[str] = []
    vocabulary = load_config(root, warn=warnings.append).vocabulary
    assert extract_filters("abandoned login", vocabulary).status is None
    assert extract_filters("shipped", vocabulary).status == "done"
    assert extract_filters("parked", vocabulary).readiness is None
    assert len(warnings) == 2
    assert "wontfix" in warnings[0]
    assert "later" in warnings[1]


def test_db_path_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / ".taskmaster"
    monkeypatch.delenv(DB_ENV_VAR, raising=False)
    assert db_path(root) == root / "tasks.db"
    monkeypatch.setenv(DB_ENV_VAR, str(tmp_path / "elsewhere.db"))
    assert db_path(root) == tmp_path / "elsewhere.db"


def test_nearest_root_wins(tmp_path: Path) -> None:
    outer = tmp_path / ".taskmaster"
    inner = tmp_path / "a" / ".taskmaster"
    outer.mkdir()
    inner.mkdir(parents=True)
    start = tmp_path / "a" / "b"
    start.mkdir()

    assert discover_roots(start)[:2] == [inner.resolve(), outer.resolve()]
    root, ambiguous = choose_root(start)
    assert root == inner.resolve()
    assert ambiguous is True


def test_default_init_root_prefers_repo_root(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    start = repo / "src" / "pkg"
    start.mkdir(parents=True)
    assert default_init_root(start) == repo.resolve() / ".taskmaster"
