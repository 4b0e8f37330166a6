"""Tests for prompt construction."""

from __future__ import annotations

import pytest

from ghostwriter.ai import prompts


def test_continuation_prompt_contains_context_and_instructions() -> None:
    messages = prompts.continuation_messages(
        "It was a dark night",
        writing_type="creative",
        custom_instructions="Use short sentences.",
    )

    system, user = messages
    assert system["role"] == "system"
    assert "provide only the new suggested text" in system["content"]
    assert "imaginative" in system["content"]
    assert system["content"].endswith("Use short sentences.")
    assert user["content"].endswith("It was a dark night")


def test_unknown_writing_type_uses_general_instructions() -> None:
    text = prompts.resolve_instructions("poetry", None)

    assert text == prompts.WRITING_TYPES["general"].instructions


def test_custom_writing_type_only_uses_custom_text() -> None:
    assert prompts.resolve_instructions("custom", "  Be terse. ") == "Be terse."
    assert prompts.resolve_instructions("custom", None) == ""


def test_selection_prompt_marks_selection_in_context() -> None:
    messages = prompts.selection_messages(
        "rewrite",
        "cat",
        before="The ",
        after=" sat",
        writing_type="academic",
    )

    system, user = messages
    assert "academic writing" in system["content"]
    assert "The <<<cat>>> sat" in user["content"]
    assert "Rewrite this text:\n\ncat" in user["content"]


def test_selection_prompt_without_context_skips_marker() -> None:
    messages = prompts.selection_messages("expand", "An idea")

    assert "<<<" not in messages[1]["content"]
    assert messages[1]["content"].startswith("Expand on this text")


def test_unknown_selection_action_raises() -> None:
    with pytest.raises(ValueError):
        prompts.selection_messages("summarize", "text")
