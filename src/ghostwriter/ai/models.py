"""Static model registry and the round-robin failover bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, Iterator, Sequence

__all__ = [
    "ModelDescriptor",
    "ModelRegistry",
    "FailoverChoice",
    "FailoverState",
    "DEFAULT_MODELS",
    "registry_from_ids",
]


@dataclass(slots=True, frozen=True)
class ModelDescriptor:
    """Identifier plus display metadata for a completion model."""

    id: str
    display_name: str
    provider: str = ""


DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor("claude-3-haiku", "Claude 3.5 Haiku (Fast)", "anthropic"),
    ModelDescriptor("claude-3-sonnet", "Claude 3.7 Sonnet (Balanced)", "anthropic"),
    ModelDescriptor("gpt-4o", "GPT-4o", "openai"),
    ModelDescriptor("gpt-4o-mini", "GPT-4o-mini", "openai"),
    ModelDescriptor("gpt-4-turbo", "GPT-4-turbo", "openai"),
    ModelDescriptor("gemini-2.5-pro-preview-03-25", "Gemini 2.5 Pro", "google"),
    ModelDescriptor("gemini-1.5-pro", "Gemini 1.5 Pro", "google"),
    ModelDescriptor("gemini-1.5-flash", "Gemini 1.5 Flash", "google"),
)


@dataclass(slots=True, frozen=True)
class FailoverChoice:
    """Result of picking the next model after a degenerate result.

    ``wrapped`` is True when every model had already been tried, meaning the
    tried set must be cleared before ``model_id`` becomes active.
    """

    model_id: str
    wrapped: bool = False


class ModelRegistry:
    """Ordered, immutable collection of :class:`ModelDescriptor` entries."""

    def __init__(self, models: Iterable[ModelDescriptor] = DEFAULT_MODELS) -> None:
        self._models: tuple[ModelDescriptor, ...] = tuple(models)
        if not self._models:
            raise ValueError("ModelRegistry requires at least one model")
        self._index = {model.id: position for position, model in enumerate(self._models)}
        if len(self._index) != len(self._models):
            raise ValueError("Model identifiers must be unique")

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._index

    def ids(self) -> tuple[str, ...]:
        return tuple(model.id for model in self._models)

    def get(self, model_id: str) -> ModelDescriptor:
        """Return the descriptor for ``model_id`` or raise ``KeyError``."""

        return self._models[self._index[model_id]]

    def index_of(self, model_id: str) -> int:
        return self._index[model_id]

    @property
    def first(self) -> ModelDescriptor:
        return self._models[0]

    def display_name(self, model_id: str) -> str:
        if model_id in self._index:
            return self.get(model_id).display_name
        # Unknown ids (e.g. from an older settings file) show their provider prefix.
        return model_id.split("-")[0] or "Unknown"

    def next_untried(self, current: str, tried: AbstractSet[str]) -> FailoverChoice:
        """Pick the model that should replace ``current`` after a failure.

        Scans the registry cyclically starting right after ``current`` and
        returns the first id not in ``tried``. When every model has been
        tried the choice wraps to the first registry entry.
        """

        count = len(self._models)
        start = self._index[current] + 1 if current in self._index else 0
        for offset in range(count):
            candidate = self._models[(start + offset) % count].id
            if candidate not in tried:
                return FailoverChoice(candidate)
        return FailoverChoice(self.first.id, wrapped=True)


@dataclass(slots=True)
class FailoverState:
    """Per-session record of the active model and the models that failed."""

    active_model_id: str
    tried_model_ids: set[str] = field(default_factory=set)

    def mark_tried(self, model_id: str | None = None) -> None:
        self.tried_model_ids.add(model_id or self.active_model_id)

    def reset(self, model_id: str | None = None) -> None:
        """Forget every failure, optionally activating ``model_id``."""

        if model_id is not None:
            self.active_model_id = model_id
        self.tried_model_ids.clear()

    def apply(self, choice: FailoverChoice) -> str:
        """Activate ``choice`` and return the previously active model id."""

        previous = self.active_model_id
        if choice.wrapped:
            self.tried_model_ids.clear()
        self.active_model_id = choice.model_id
        return previous


def registry_from_ids(model_ids: Sequence[str]) -> ModelRegistry:
    """Build a registry from bare ids, reusing known display metadata."""

    known = {model.id: model for model in DEFAULT_MODELS}
    return ModelRegistry(known.get(model_id) or ModelDescriptor(model_id, model_id) for model_id in model_ids)
