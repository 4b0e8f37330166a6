"""Inline continuation lifecycle and automatic model failover.

The :class:`SuggestionController` owns the editor content, the caret, the
pending ghost-text suggestion and the failover bookkeeping for one open
document. Everything else talks to it through explicit operations
(:meth:`~SuggestionController.dispatch` or the matching methods) and reads
state through its read-only properties.

State machine::

    IDLE --quiet period, caret at end--> PENDING
    PENDING --usable text--> DISPLAYING
    PENDING --empty/echoed text--> FAILED --switch (manual or timed)--> IDLE
    PENDING --service error or stale--> IDLE
    DISPLAYING --accept/reject/edit/caret move--> IDLE

Responses are checked against the controller's current generation and input
sequence when they arrive; anything produced for an older state is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from ..ai.client import CompletionOptions, CompletionService
from ..ai.models import FailoverChoice, FailoverState, ModelRegistry
from ..events import (
    EventBus,
    FailoverProposed,
    ModelSwitched,
    SuggestionAvailable,
    SuggestionCleared,
    SuggestionRequestFailed,
)
from ..services.settings import EditorSettings
from .timers import Debouncer, LoopScheduler, Scheduler, TimerHandle, spawn

__all__ = [
    "SuggestionState",
    "Suggestion",
    "PendingFailover",
    "SuggestionController",
    "TextChanged",
    "CursorMoved",
    "AcceptSuggestion",
    "RejectSuggestion",
    "SelectModel",
    "SwitchModelNow",
    "DismissFailover",
    "DocumentLoaded",
    "SettingsUpdated",
    "is_degenerate",
]

LOGGER = logging.getLogger(__name__)

ContentListener = Callable[[str], None]


class SuggestionState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    DISPLAYING = "displaying"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Suggestion:
    """Ghost text valid only while the caret stays at ``anchor_offset``."""

    text: str
    anchor_offset: int
    model_id: str
    revision: int


@dataclass(slots=True, frozen=True)
class PendingFailover:
    failed_model_id: str
    choice: FailoverChoice


# ----------------------------------------------------------------------
# Input events
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextChanged:
    content: str
    cursor: int | None = None


@dataclass(slots=True, frozen=True)
class CursorMoved:
    cursor: int
    selection_end: int | None = None


@dataclass(slots=True, frozen=True)
class AcceptSuggestion:
    pass


@dataclass(slots=True, frozen=True)
class RejectSuggestion:
    pass


@dataclass(slots=True, frozen=True)
class SelectModel:
    model_id: str


@dataclass(slots=True, frozen=True)
class SwitchModelNow:
    pass


@dataclass(slots=True, frozen=True)
class DismissFailover:
    pass


@dataclass(slots=True, frozen=True)
class DocumentLoaded:
    content: str
    cursor: int | None = None


@dataclass(slots=True, frozen=True)
class SettingsUpdated:
    settings: EditorSettings


ControllerEvent = Union[
    TextChanged,
    CursorMoved,
    AcceptSuggestion,
    RejectSuggestion,
    SelectModel,
    SwitchModelNow,
    DismissFailover,
    DocumentLoaded,
    SettingsUpdated,
]


def is_degenerate(result: str | None, context: str) -> bool:
    """Return True for empty, whitespace-only or echoed completions."""

    if not result or not result.strip():
        return True
    return result == context


class SuggestionController:
    """State machine deciding when to fetch, show and drop inline continuations."""

    def __init__(
        self,
        service: CompletionService,
        *,
        settings: EditorSettings,
        registry: ModelRegistry | None = None,
        event_bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        content: str = "",
        cursor: int | None = None,
    ) -> None:
        self._service = service
        self._settings = settings
        self._registry = registry or ModelRegistry()
        self._bus = event_bus or EventBus()
        self._scheduler = scheduler or LoopScheduler()
        self._content = content
        self._cursor = self._clamp(len(content) if cursor is None else cursor)
        self._selection_end: int | None = None
        self._revision = 0
        self._input_seq = 0
        self._generation = 0
        self._state = SuggestionState.IDLE
        self._suggestion: Suggestion | None = None
        self._failover = FailoverState(settings.model)
        self._pending_failover: PendingFailover | None = None
        self._failover_timer: TimerHandle | None = None
        self._inflight: asyncio.Task[Any] | None = None
        self._content_listeners: list[ContentListener] = []
        self._debouncer = Debouncer(
            self._scheduler,
            settings.suggestion_debounce_seconds,
            self._on_quiet_period,
        )

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------
    @property
    def state(self) -> SuggestionState:
        return self._state

    @property
    def content(self) -> str:
        return self._content

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def revision(self) -> int:
        """Counter bumped on every content mutation."""

        return self._revision

    @property
    def suggestion(self) -> Suggestion | None:
        return self._suggestion

    @property
    def suggestion_text(self) -> str:
        return self._suggestion.text if self._suggestion else ""

    @property
    def settings(self) -> EditorSettings:
        return self._settings

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def active_model_id(self) -> str:
        return self._failover.active_model_id

    @property
    def tried_model_ids(self) -> frozenset[str]:
        return frozenset(self._failover.tried_model_ids)

    @property
    def pending_failover(self) -> PendingFailover | None:
        return self._pending_failover

    @property
    def request_in_flight(self) -> bool:
        return self._inflight is not None

    def add_content_listener(self, listener: ContentListener) -> None:
        self._content_listeners.append(listener)

    def remove_content_listener(self, listener: ContentListener) -> None:
        if listener in self._content_listeners:
            self._content_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------
    def dispatch(self, event: ControllerEvent) -> Any:
        """Route an input event to the matching operation."""

        if isinstance(event, TextChanged):
            return self.on_text_changed(event.content, event.cursor)
        if isinstance(event, CursorMoved):
            return self.on_cursor_moved(event.cursor, event.selection_end)
        if isinstance(event, AcceptSuggestion):
            return self.accept()
        if isinstance(event, RejectSuggestion):
            return self.reject()
        if isinstance(event, SelectModel):
            return self.select_model(event.model_id)
        if isinstance(event, SwitchModelNow):
            return self.switch_model_now()
        if isinstance(event, DismissFailover):
            return self.dismiss_failover()
        if isinstance(event, DocumentLoaded):
            return self.load_document(event.content, event.cursor)
        if isinstance(event, SettingsUpdated):
            return self.update_settings(event.settings)
        raise TypeError(f"Unsupported controller event: {type(event).__name__}")

    # ------------------------------------------------------------------
    # Editing operations
    # ------------------------------------------------------------------
    def on_text_changed(self, content: str, cursor: int | None = None) -> None:
        """Record a keystroke: new buffer text plus the caret after it."""

        changed = content != self._content
        self._content = content
        new_cursor = self._clamp(len(content) if cursor is None else cursor)
        moved = new_cursor != self._cursor or self._selection_end is not None
        self._cursor = new_cursor
        self._selection_end = None
        if not changed and not moved:
            return
        self._input_seq += 1
        if changed:
            self._revision += 1
            self._invalidate("content-edited")
            self._notify_content()
        else:
            self._invalidate("cursor-moved")
        self._rearm()

    def on_cursor_moved(self, cursor: int, selection_end: int | None = None) -> None:
        cursor = self._clamp(cursor)
        if selection_end is not None:
            selection_end = self._clamp(selection_end)
            if selection_end == cursor:
                selection_end = None
        if cursor == self._cursor and selection_end == self._selection_end:
            return
        self._cursor = cursor
        self._selection_end = selection_end
        self._input_seq += 1
        self._invalidate("cursor-moved")
        self._rearm()

    def replace_range(self, start: int, end: int, text: str) -> None:
        """Replace ``content[start:end]`` with ``text`` and put the caret after it."""

        if not 0 <= start <= end <= len(self._content):
            raise ValueError(f"Range [{start}, {end}) is outside the document")
        self._content = f"{self._content[:start]}{text}{self._content[end:]}"
        self._cursor = start + len(text)
        self._selection_end = None
        self._revision += 1
        self._input_seq += 1
        self._invalidate("content-edited")
        self._notify_content()
        self._rearm()

    def accept(self) -> bool:
        """Insert the displayed suggestion at its anchor.

        Returns False (and changes nothing) when no valid suggestion is shown.
        """

        suggestion = self._suggestion
        if self._state is not SuggestionState.DISPLAYING or suggestion is None:
            return False
        if (
            suggestion.anchor_offset != self._cursor
            or suggestion.revision != self._revision
            or self._selection_end is not None
        ):
            self._invalidate("stale")
            return False
        anchor = suggestion.anchor_offset
        self._content = f"{self._content[:anchor]}{suggestion.text}{self._content[anchor:]}"
        self._cursor = anchor + len(suggestion.text)
        self._revision += 1
        self._input_seq += 1
        self._suggestion = None
        self._state = SuggestionState.IDLE
        self._bus.publish(SuggestionCleared(reason="accepted"))
        self._notify_content()
        self._rearm()
        return True

    def reject(self) -> bool:
        if self._state is not SuggestionState.DISPLAYING:
            return False
        self._invalidate("rejected")
        return True

    def load_document(self, content: str, cursor: int | None = None) -> None:
        """Swap in another document; failover bookkeeping starts over."""

        self._debouncer.cancel()
        self._cancel_failover_timer()
        self._pending_failover = None
        self._generation += 1
        self._invalidate("document-switched")
        self._content = content
        self._cursor = self._clamp(len(content) if cursor is None else cursor)
        self._selection_end = None
        self._revision += 1
        self._input_seq += 1
        self._failover.reset()
        self._state = SuggestionState.IDLE
        self._rearm()

    # ------------------------------------------------------------------
    # Model selection
    # ------------------------------------------------------------------
    def select_model(self, model_id: str) -> None:
        """Manual model choice; always clears the failover bookkeeping."""

        if model_id not in self._registry:
            raise ValueError(f"Unknown model '{model_id}'")
        self._reset_model(model_id, reason="user")

    def switch_model_now(self) -> bool:
        """Take the proposed failover model without waiting for the timer."""

        if self._pending_failover is None:
            return False
        self._apply_failover("failover-manual")
        return True

    def dismiss_failover(self) -> bool:
        """Close the failover notification and keep the current model."""

        if self._pending_failover is None:
            return False
        self._cancel_failover_timer()
        self._pending_failover = None
        self._state = SuggestionState.IDLE
        return True

    def update_settings(self, settings: EditorSettings) -> None:
        previous = self._settings
        self._settings = settings
        self._debouncer.delay = settings.suggestion_debounce_seconds
        if settings.model != self._failover.active_model_id:
            self._reset_model(settings.model, reason="user")
        if not settings.ai_enabled:
            self._debouncer.cancel()
            self._cancel_failover_timer()
            self._pending_failover = None
            self._generation += 1
            self._invalidate("disabled")
            self._state = SuggestionState.IDLE
        elif not previous.ai_enabled:
            self._rearm()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def wait_until_settled(self) -> None:
        """Wait for the in-flight completion request, if any, to resolve."""

        while self._inflight is not None:
            task = self._inflight
            await asyncio.wait({task})
            if self._inflight is task:
                self._inflight = None

    async def aclose(self) -> None:
        self._debouncer.cancel()
        self._cancel_failover_timer()
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _should_request(self) -> bool:
        return (
            self._settings.ai_enabled
            and self._state is SuggestionState.IDLE
            and self._inflight is None
            and self._selection_end is None
            and self._cursor == len(self._content)
            and len(self._content) > self._settings.min_suggestion_chars
        )

    def _on_quiet_period(self) -> None:
        if not self._should_request():
            LOGGER.debug(
                "Quiet period elapsed without request (state=%s, cursor=%s/%s)",
                self._state.value,
                self._cursor,
                len(self._content),
            )
            return
        self._start_request()

    def _start_request(self) -> None:
        self._generation += 1
        generation = self._generation
        input_seq = self._input_seq
        context = self._content[: self._cursor]
        anchor = self._cursor
        model_id = self._failover.active_model_id
        options = CompletionOptions(
            model_id=model_id,
            temperature=self._settings.temperature,
            custom_instructions=self._settings.custom_instructions or None,
            writing_type=self._settings.writing_type,
        )
        self._state = SuggestionState.PENDING
        LOGGER.debug("Requesting continuation #%s via %s (%s chars)", generation, model_id, len(context))
        self._inflight = spawn(
            self._run_request(generation, input_seq, context, anchor, options),
            name=f"suggestion-{generation}",
        )

    async def _run_request(
        self,
        generation: int,
        input_seq: int,
        context: str,
        anchor: int,
        options: CompletionOptions,
    ) -> None:
        try:
            result = await self._service.complete(context, options)
        except Exception as exc:
            LOGGER.warning("Continuation request via %s failed: %s", options.model_id, exc)
            self._inflight = None
            if self._state is SuggestionState.PENDING and generation == self._generation:
                self._state = SuggestionState.IDLE
            self._bus.publish(SuggestionRequestFailed(model_id=options.model_id, error=str(exc)))
            # Input that arrived during the flight still owes a quiet period.
            superseded = generation != self._generation or input_seq != self._input_seq
            if superseded and self._state is SuggestionState.IDLE:
                self._rearm()
            return
        self._inflight = None
        self._resolve(generation, input_seq, context, anchor, options.model_id, result)

    def _resolve(
        self,
        generation: int,
        input_seq: int,
        context: str,
        anchor: int,
        model_id: str,
        result: str,
    ) -> None:
        if generation != self._generation or self._state is not SuggestionState.PENDING:
            LOGGER.debug("Dropping continuation #%s: superseded", generation)
            if self._state is SuggestionState.IDLE:
                self._rearm()
            return
        if input_seq != self._input_seq or self._cursor != anchor:
            LOGGER.debug("Dropping continuation #%s: editor changed while pending", generation)
            self._state = SuggestionState.IDLE
            self._rearm()
            return
        if is_degenerate(result, context):
            self._enter_failed(model_id)
            return
        self._suggestion = Suggestion(
            text=result,
            anchor_offset=anchor,
            model_id=model_id,
            revision=self._revision,
        )
        self._state = SuggestionState.DISPLAYING
        self._bus.publish(SuggestionAvailable(text=result, anchor_offset=anchor, model_id=model_id))

    def _enter_failed(self, model_id: str) -> None:
        self._failover.mark_tried(model_id)
        choice = self._registry.next_untried(model_id, self._failover.tried_model_ids)
        self._pending_failover = PendingFailover(failed_model_id=model_id, choice=choice)
        self._state = SuggestionState.FAILED
        delay = self._settings.failover_delay_seconds
        LOGGER.info(
            "Model %s returned a degenerate result; proposing %s (tried=%s)",
            model_id,
            choice.model_id,
            sorted(self._failover.tried_model_ids),
        )
        self._bus.publish(
            FailoverProposed(
                failed_model_id=model_id,
                proposed_model_id=choice.model_id,
                delay_seconds=delay,
            )
        )
        self._cancel_failover_timer()
        self._failover_timer = self._scheduler.call_later(delay, self._on_failover_timeout)

    def _on_failover_timeout(self) -> None:
        self._failover_timer = None
        if self._pending_failover is not None:
            self._apply_failover("failover-auto")

    def _apply_failover(self, reason: str) -> None:
        pending = self._pending_failover
        if pending is None:
            return
        self._cancel_failover_timer()
        self._pending_failover = None
        previous = self._failover.apply(pending.choice)
        self._settings = self._settings.with_model(pending.choice.model_id)
        self._state = SuggestionState.IDLE
        self._bus.publish(
            ModelSwitched(from_model_id=previous, to_model_id=pending.choice.model_id, reason=reason)
        )
        self._rearm()

    def _reset_model(self, model_id: str, *, reason: str) -> None:
        previous = self._failover.active_model_id
        self._cancel_failover_timer()
        self._pending_failover = None
        self._generation += 1
        self._invalidate("model-changed")
        self._failover.reset(model_id)
        self._settings = self._settings.with_model(model_id)
        self._state = SuggestionState.IDLE
        if previous != model_id:
            self._bus.publish(ModelSwitched(from_model_id=previous, to_model_id=model_id, reason=reason))
        self._rearm()

    def _invalidate(self, reason: str) -> None:
        if self._state is not SuggestionState.DISPLAYING:
            return
        self._suggestion = None
        self._state = SuggestionState.IDLE
        self._bus.publish(SuggestionCleared(reason=reason))

    def _rearm(self) -> None:
        if self._settings.ai_enabled:
            self._debouncer.trigger()

    def _cancel_failover_timer(self) -> None:
        if self._failover_timer is not None:
            self._failover_timer.cancel()
            self._failover_timer = None

    def _notify_content(self) -> None:
        for listener in list(self._content_listeners):
            listener(self._content)

    def _clamp(self, offset: int) -> int:
        return max(0, min(int(offset), len(self._content)))
