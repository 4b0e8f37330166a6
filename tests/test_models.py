"""Tests for the model registry and failover bookkeeping."""

from __future__ import annotations

import pytest

from ghostwriter.ai.models import (
    DEFAULT_MODELS,
    FailoverChoice,
    FailoverState,
    ModelDescriptor,
    ModelRegistry,
    registry_from_ids,
)


def test_default_registry_is_ordered_and_unique() -> None:
    registry = ModelRegistry()

    assert len(registry) == len(DEFAULT_MODELS)
    assert registry.ids()[0] == "claude-3-haiku"
    assert "gpt-4o-mini" in registry
    assert registry.get("gpt-4o").display_name == "GPT-4o"


def test_registry_rejects_empty_or_duplicate_models() -> None:
    with pytest.raises(ValueError):
        ModelRegistry([])
    with pytest.raises(ValueError):
        ModelRegistry([ModelDescriptor("a", "A"), ModelDescriptor("a", "A again")])


def test_display_name_falls_back_to_prefix() -> None:
    registry = ModelRegistry()

    assert registry.display_name("gpt-4o") == "GPT-4o"
    assert registry.display_name("mistral-large") == "mistral"


def test_next_untried_scans_forward_cyclically() -> None:
    registry = registry_from_ids(["A", "B", "C"])

    assert registry.next_untried("A", {"A"}) == FailoverChoice("B")
    assert registry.next_untried("C", {"C"}) == FailoverChoice("A")
    assert registry.next_untried("A", {"A", "B"}) == FailoverChoice("C")


def test_next_untried_never_returns_tried_model_while_one_is_left() -> None:
    registry = registry_from_ids(["A", "B", "C", "D"])

    choice = registry.next_untried("B", {"B", "C", "A"})

    assert choice == FailoverChoice("D")


def test_next_untried_wraps_to_first_when_all_tried() -> None:
    registry = registry_from_ids(["A", "B", "C"])

    assert registry.next_untried("C", {"A", "B", "C"}) == FailoverChoice("A", wrapped=True)


def test_unknown_current_model_starts_at_beginning() -> None:
    registry = registry_from_ids(["A", "B"])

    assert registry.next_untried("legacy-model", {"legacy-model"}) == FailoverChoice("A")


def test_failover_state_apply_and_reset() -> None:
    state = FailoverState("A")
    state.mark_tried()
    state.mark_tried("B")

    previous = state.apply(FailoverChoice("C"))
    assert previous == "A"
    assert state.active_model_id == "C"
    assert state.tried_model_ids == {"A", "B"}

    state.apply(FailoverChoice("A", wrapped=True))
    assert state.tried_model_ids == set()

    state.mark_tried()
    state.reset("B")
    assert state.active_model_id == "B"
    assert state.tried_model_ids == set()


def test_registry_from_ids_reuses_known_metadata() -> None:
    registry = registry_from_ids(["gpt-4o", "custom"])

    assert registry.get("gpt-4o").provider == "openai"
    assert registry.get("custom").display_name == "custom"
