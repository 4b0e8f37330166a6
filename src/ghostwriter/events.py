"""Event bus infrastructure for decoupled editor core communication.

The editor core never talks to the presentation layer directly. Controllers
publish the events below and whatever renders the editor subscribes to the
ones it cares about (ghost text, status indicators, notifications).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

# Type variable for event types
E = TypeVar("E", bound="Event")

# Handler type: a callable that takes an event and returns None
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published by the editor core.

    Example::

        @dataclass(slots=True)
        class SuggestionAvailable(Event):
            text: str
            anchor_offset: int
            model_id: str
    """

    pass


# =============================================================================
# Suggestion Events
# =============================================================================


@dataclass(slots=True)
class SuggestionAvailable(Event):
    """Emitted when ghost text is ready to be displayed after the cursor.

    Attributes:
        text: The continuation text to render dimmed after the cursor.
        anchor_offset: Cursor offset the suggestion was generated for.
        model_id: Model that produced the suggestion.
    """

    text: str
    anchor_offset: int
    model_id: str


@dataclass(slots=True)
class SuggestionCleared(Event):
    """Emitted when displayed ghost text goes away.

    Attributes:
        reason: Why the suggestion was cleared (``accepted``, ``rejected``,
            ``cursor-moved``, ``content-edited``, ...).
    """

    reason: str


@dataclass(slots=True)
class SuggestionRequestFailed(Event):
    """Emitted when the completion service could not be reached.

    This is a passive status signal; the next qualifying pause retries.
    """

    model_id: str
    error: str


@dataclass(slots=True)
class FailoverProposed(Event):
    """Emitted when a model produced a degenerate result.

    The presentation layer shows a dismissible notification offering an
    immediate switch; the controller switches on its own after
    ``delay_seconds`` if nobody acts.
    """

    failed_model_id: str
    proposed_model_id: str
    delay_seconds: float


@dataclass(slots=True)
class ModelSwitched(Event):
    """Emitted whenever the active completion model changes.

    Attributes:
        from_model_id: Previously active model.
        to_model_id: Newly active model.
        reason: ``user``, ``failover-manual`` or ``failover-auto``.
    """

    from_model_id: str
    to_model_id: str
    reason: str


# =============================================================================
# Selection Action Events
# =============================================================================


@dataclass(slots=True)
class SelectionActionStarted(Event):
    """Emitted when an expand/rewrite/improve request is sent."""

    action: str
    request_id: int


@dataclass(slots=True)
class SelectionActionFinished(Event):
    """Emitted when a selection action resolves.

    Attributes:
        action: The action name.
        request_id: Sequence number of the request.
        ok: True when the replacement was applied to the document.
        error: Human-readable failure reason when ``ok`` is False.
    """

    action: str
    request_id: int
    ok: bool
    error: str | None = None


# =============================================================================
# Persistence Events
# =============================================================================


@dataclass(slots=True)
class SaveStatusChanged(Event):
    """Emitted when the auto-save status indicator changes.

    Attributes:
        status: One of ``saving``, ``saved`` or ``error``.
        document_id: Document being saved.
        error: Failure description when ``status`` is ``error``.
    """

    status: str
    document_id: str
    error: str | None = None


@dataclass(slots=True)
class DocumentsMigrated(Event):
    """Emitted after anonymous documents were moved into an account."""

    owner_id: str
    count: int


@dataclass(slots=True)
class SyncFailed(Event):
    """Emitted when a best-effort remote mirror operation failed."""

    operation: str
    document_id: str | None
    error: str


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = {SaveStatusChanged}


class EventBus(Generic[E]):
    """Synchronous publish/subscribe dispatcher keyed by event type.

    Bound-method handlers are held through weak references so that a
    controller which goes away does not keep receiving events.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[type, list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""

        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove a handler; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Broadcast an event to all registered handlers.

        Handlers are invoked synchronously in registration order. A handler
        that raises is logged and the remaining handlers still run.
        """

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead_indices: list[int] = []

        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            handlers.pop(i)

    def clear(self) -> None:
        """Remove all registered handlers."""

        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type`` (or overall)."""

        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Wrapper holding bound methods weakly and plain callables strongly."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Any) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "SuggestionAvailable",
    "SuggestionCleared",
    "SuggestionRequestFailed",
    "FailoverProposed",
    "ModelSwitched",
    "SelectionActionStarted",
    "SelectionActionFinished",
    "SaveStatusChanged",
    "DocumentsMigrated",
    "SyncFailed",
]
