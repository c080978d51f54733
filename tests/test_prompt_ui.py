from __future__ import annotations

import io

import pytest

from taskmaster import prompt_ui
from taskmaster import selector_ui
from taskmaster.models import SimilarTask, Task


class _FakePrompt:
    def __init__(self, result=None, error: Exception | None = None):
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class _FakeInquirer:
    def __init__(
        self,
        *,
        select_result=None,
        select_error: Exception | None = None,
        fuzzy_result=None,
        checkbox_result=None,
    ):
        self.select_result = select_result
        self.select_error = select_error
        self.fuzzy_result = fuzzy_result
        self.checkbox_result = checkbox_result
        self.calls: list[tuple[str, dict]] = []

    def select(self, **kwargs):
        self.calls.append(("select", kwargs))
        return _FakePrompt(result=self.select_result, error=self.select_error)

    def fuzzy(self, **kwargs):
        self.calls.append(("fuzzy", kwargs))
        return _FakePrompt(result=self.fuzzy_result)

    def checkbox(self, **kwargs):
        self.calls.append(("checkbox", kwargs))
        return _FakePrompt(result=self.checkbox_result)


def _unavailable(*args, **kwargs):
    raise selector_ui.SelectorUnavailableError("fallback")


def _task(task_id: str, title: str) -> Task:
    return Task(id=task_id, title=title)


def test_choose_task_uses_fuzzy_selector_when_available(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _select_fuzzy(title, options, default_value=None):
        captured["options"] = options
        return "2"

    monkeypatch.setattr(prompt_ui, "select_fuzzy", _select_fuzzy)
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: pytest.fail("numeric prompt used"))

    selected = prompt_ui.choose_task([_task("1", "alpha"), _task("2", "beta")])
    assert selected == "2"
    assert captured["options"] == [("1", "1  alpha [todo]"), ("2", "2  beta [todo]")]


def test_choose_task_falls_back_to_numeric_prompt(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_fuzzy", _unavailable)
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: "2")

    assert prompt_ui.choose_task([_task("1", "alpha"), _task("1.1", "beta")]) == "1.1"


def test_choose_task_numeric_zero_cancels(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_fuzzy", _unavailable)
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: "0")

    assert prompt_ui.choose_task([_task("1", "alpha")]) is None


def test_choose_task_cancel_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_fuzzy", lambda title, options, default_value=None: None)
    assert prompt_ui.choose_task([_task("1", "alpha")]) is None
    assert prompt_ui.choose_task([]) is None


def test_choose_merge_with_selectors(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _select_many(title, options, default_values=None):
        captured["options"] = [value for value, _ in options]
        captured["defaults"] = default_values
        return ["1"]

    monkeypatch.setattr(prompt_ui, "select_one", lambda title, options, default_value=None: "2")
    monkeypatch.setattr(prompt_ui, "select_many", _select_many)

    choice = prompt_ui.choose_merge(_task("1", "Login form"), [SimilarTask("2", "Login page", 0.59)])
    assert choice == ("2", ["1"])
    assert captured == {"options": ["1"], "defaults": ["1"]}


def test_choose_merge_numeric_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_one", _unavailable)
    monkeypatch.setattr(prompt_ui, "select_many", _unavailable)
    answers = iter(["1", "2"])
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: next(answers))

    matches = [SimilarTask("2", "Login page", 0.59), SimilarTask("3", "Login screen", 0.45)]
    choice = prompt_ui.choose_merge(_task("1", "Login form"), matches)
    assert choice == ("1", ["3"])


def test_choose_merge_empty_selection_skips_group(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "_prompt_single_choice", lambda *args, **kwargs: "1")
    monkeypatch.setattr(prompt_ui, "_prompt_multi_choice", lambda *args, **kwargs: [])

    assert prompt_ui.choose_merge(_task("1", "a"), [SimilarTask("2", "a!", 0.9)]) == ("1", [])


def test_choose_merge_cancel_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "_prompt_single_choice", lambda *args, **kwargs: None)
    assert prompt_ui.choose_merge(_task("1", "a"), [SimilarTask("2", "a!", 0.9)]) is None


def test_numeric_single_choice_retries_invalid_input(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(prompt_ui, "select_one", _unavailable)
    answers = iter(["x", "9", "2"])
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: next(answers))

    assert prompt_ui._prompt_single_choice("pick", [("a", "A"), ("b", "B")], "a") == "b"
    out = capsys.readouterr().out
    assert "Invalid selection. Enter a number." in out
    assert "Selection out of range." in out


def test_numeric_single_choice_cancel_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_one", _unavailable)
    monkeypatch.setattr(prompt_ui, "_safe_prompt", lambda *args, **kwargs: None)
    assert prompt_ui._prompt_single_choice("keep", [("1", "1")], "1") is None


def test_numeric_multi_choice_cancel_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_many", _unavailable)
    monkeypatch.setattr(prompt_ui, "_safe_prompt", lambda *args, **kwargs: None)
    assert prompt_ui._prompt_multi_choice("merge", [("2", "Task 2")]) is None


def test_selector_warning_goes_to_stderr(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(prompt_ui, "select_one", _unavailable)
    monkeypatch.setattr(prompt_ui.typer, "prompt", lambda *args, **kwargs: "y")

    assert prompt_ui.confirm("Proceed?") is True
    assert "Warning: fallback; falling back to numeric prompts." in capsys.readouterr().err


def test_confirm_cancel_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prompt_ui, "select_one", lambda title, options, default_value=None: None)
    assert prompt_ui.confirm("Proceed?") is None


def test_select_many_preserves_source_order(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(selector_ui, "_ensure_tty", lambda: None)
    fake = _FakeInquirer(checkbox_result=["b", "a"])
    monkeypatch.setattr(selector_ui, "_inquirer", lambda: fake)

    values = selector_ui.select_many("merge", [("a", "Task A"), ("b", "Task B")], default_values=["b"])
    assert values == ["a", "b"]
    choices = fake.calls[0][1]["choices"]
    assert [choice["enabled"] for choice in choices] == [False, True]


def test_select_fuzzy_returns_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(selector_ui, "_ensure_tty", lambda: None)
    fake = _FakeInquirer(fuzzy_result="1.2")
    monkeypatch.setattr(selector_ui, "_inquirer", lambda: fake)

    assert selector_ui.select_fuzzy("pick", [("1.2", "1.2  beta")]) == "1.2"
    assert fake.calls[0][0] == "fuzzy"


def test_select_one_keyboard_interrupt_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(selector_ui, "_ensure_tty", lambda: None)
    monkeypatch.setattr(selector_ui, "_inquirer", lambda: _FakeInquirer(select_error=KeyboardInterrupt()))

    assert selector_ui.select_one("pick", [("a", "A")]) is None


def test_select_one_runtime_error_raises_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(selector_ui, "_ensure_tty", lambda: None)
    monkeypatch.setattr(selector_ui, "_inquirer", lambda: _FakeInquirer(select_error=RuntimeError("boom")))

    with pytest.raises(selector_ui.SelectorUnavailableError):
        selector_ui.select_one("pick", [("a", "A")])


def test_selector_requires_tty(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(selector_ui.sys, "stdin", io.StringIO())
    with pytest.raises(selector_ui.SelectorUnavailableError):
        selector_ui.select_one("pick", [("a", "A")])
