"""Expand, rewrite and improve actions applied to a selected range."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from ..ai.client import CompletionOptions, CompletionService
from ..events import EventBus, SelectionActionFinished, SelectionActionStarted
from ..services.settings import EditorSettings
from .document_model import SelectionRange

__all__ = [
    "SelectionAction",
    "SelectionRequest",
    "SelectionOutcome",
    "SelectionProvider",
    "EditTarget",
    "SelectionActionController",
]

LOGGER = logging.getLogger(__name__)


class SelectionAction(str, Enum):
    EXPAND = "expand"
    REWRITE = "rewrite"
    IMPROVE = "improve"


class SelectionProvider(Protocol):
    """Capability implemented by the presentation layer; offsets only."""

    def get_selection(self) -> SelectionRange | None:
        ...

    def get_caret_offset(self) -> int:
        ...


class EditTarget(Protocol):
    @property
    def content(self) -> str:
        ...

    @property
    def revision(self) -> int:
        ...

    def replace_range(self, start: int, end: int, text: str) -> None:
        ...


@dataclass(slots=True, frozen=True)
class SelectionRequest:
    """Snapshot of what a selection action was asked to change."""

    request_id: int
    action: SelectionAction
    start: int
    end: int
    selected_text: str
    before: str
    after: str
    revision: int


@dataclass(slots=True, frozen=True)
class SelectionOutcome:
    request_id: int
    action: SelectionAction
    ok: bool
    replacement: str | None = None
    error: str | None = None
    stale: bool = False


class SelectionActionController:
    """Runs selection actions and applies only the newest, still-valid result."""

    def __init__(
        self,
        service: CompletionService,
        target: EditTarget,
        *,
        settings: EditorSettings,
        event_bus: EventBus | None = None,
        model_provider: Callable[[], str] | None = None,
    ) -> None:
        self._service = service
        self._target = target
        self._settings = settings
        self._bus = event_bus or EventBus()
        self._model_provider = model_provider
        self._latest_request_id = 0
        self._inflight_request_id: int | None = None

    @property
    def settings(self) -> EditorSettings:
        return self._settings

    def update_settings(self, settings: EditorSettings) -> None:
        self._settings = settings

    @property
    def in_flight(self) -> bool:
        return self._inflight_request_id is not None

    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    def build_request(self, action: SelectionAction | str, start: int, end: int) -> SelectionRequest:
        """Capture the selection plus bounded context on both sides.

        Raises:
            ValueError: If the range is empty or outside the document.
        """

        action = SelectionAction(action)
        content = self._target.content
        if not 0 <= start < end <= len(content):
            raise ValueError(f"Invalid selection range [{start}, {end}) for {len(content)} chars")
        window = max(0, self._settings.selection_context_chars)
        self._latest_request_id += 1
        return SelectionRequest(
            request_id=self._latest_request_id,
            action=action,
            start=start,
            end=end,
            selected_text=content[start:end],
            before=content[max(0, start - window) : start],
            after=content[end : end + window],
            revision=self._target.revision,
        )

    async def run(self, action: SelectionAction | str, start: int, end: int) -> SelectionOutcome:
        """Request a replacement for ``content[start:end]`` and apply it if still current."""

        request = self.build_request(action, start, end)
        self._inflight_request_id = request.request_id
        self._bus.publish(SelectionActionStarted(action=request.action.value, request_id=request.request_id))
        try:
            outcome = await self._execute(request)
        finally:
            if self._inflight_request_id == request.request_id:
                self._inflight_request_id = None
        self._bus.publish(
            SelectionActionFinished(
                action=outcome.action.value,
                request_id=outcome.request_id,
                ok=outcome.ok,
                error=outcome.error,
            )
        )
        return outcome

    async def run_from_provider(
        self, action: SelectionAction | str, provider: SelectionProvider
    ) -> SelectionOutcome:
        selection = provider.get_selection()
        if selection is None or selection.is_empty:
            raise ValueError("No text is selected")
        return await self.run(action, selection.start, selection.end)

    async def _execute(self, request: SelectionRequest) -> SelectionOutcome:
        options = CompletionOptions(
            model_id=self._model_provider() if self._model_provider else self._settings.model,
            temperature=self._settings.temperature,
            custom_instructions=self._settings.custom_instructions or None,
            writing_type=self._settings.writing_type,
        )
        try:
            result = await self._service.transform(
                request.action.value,
                request.selected_text,
                options,
                before=request.before,
                after=request.after,
            )
        except Exception as exc:
            LOGGER.warning("Selection action %s failed: %s", request.action.value, exc)
            return self._failure(request, f"The {request.action.value} request failed: {exc}")

        if request.request_id != self._latest_request_id:
            LOGGER.debug("Discarding selection result #%s: superseded", request.request_id)
            return self._failure(request, "Superseded by a newer request", stale=True)
        if request.revision != self._target.revision:
            LOGGER.debug("Discarding selection result #%s: document changed", request.request_id)
            return self._failure(request, "The document changed while the request was running", stale=True)

        text = (result or "").strip()
        if not text:
            return self._failure(request, "The model returned an empty result")
        replacement = _preserve_padding(request.selected_text, text)
        self._target.replace_range(request.start, request.end, replacement)
        LOGGER.debug(
            "Applied %s to [%s, %s): %s -> %s chars",
            request.action.value,
            request.start,
            request.end,
            len(request.selected_text),
            len(replacement),
        )
        return SelectionOutcome(
            request_id=request.request_id,
            action=request.action,
            ok=True,
            replacement=replacement,
        )

    @staticmethod
    def _failure(request: SelectionRequest, error: str, *, stale: bool = False) -> SelectionOutcome:
        return SelectionOutcome(
            request_id=request.request_id,
            action=request.action,
            ok=False,
            error=error,
            stale=stale,
        )


def _preserve_padding(original: str, replacement: str) -> str:
    stripped = original.strip()
    if not stripped:
        return replacement
    lead = original[: len(original) - len(original.lstrip())]
    trail = original[len(original.rstrip()) :]
    return f"{lead}{replacement}{trail}"
