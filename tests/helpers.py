"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files::

    from tests.helpers import FakeCompletionService, ManualScheduler
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from ghostwriter.ai.client import CompletionOptions
from ghostwriter.editor.document_model import Document, Identity, SelectionRange
from ghostwriter.services.remote_store import UnauthorizedError


@dataclass
class _ManualTimer:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when :meth:`advance` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self.now + max(0.0, delay), callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [timer for timer in self._timers if not timer.cancelled and timer.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda item: item.when)
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback()
        self._timers = [timer for timer in self._timers if not timer.cancelled]
        self.now = target


Response = Any


def _resolve(response: Response, *args: Any) -> str:
    if isinstance(response, BaseException):
        raise response
    if callable(response):
        return response(*args)
    return response


class FakeCompletionService:
    """Completion service returning canned answers.

    ``complete`` and ``transform`` may be a string, an exception instance or a
    callable receiving the same arguments as the real method. When ``gate`` is
    set, every call waits for it before answering.
    """

    def __init__(self, complete: Response = "", transform: Response = "") -> None:
        self.complete_result = complete
        self.transform_result = transform
        self.complete_calls: list[tuple[str, CompletionOptions]] = []
        self.transform_calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def complete(self, context: str, options: CompletionOptions) -> str:
        self.complete_calls.append((context, options))
        if self.gate is not None:
            await self.gate.wait()
        return _resolve(self.complete_result, context, options)

    async def transform(
        self,
        action: str,
        selected_text: str,
        options: CompletionOptions,
        *,
        before: str = "",
        after: str = "",
    ) -> str:
        self.transform_calls.append(
            {
                "action": action,
                "selected_text": selected_text,
                "options": options,
                "before": before,
                "after": after,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        return _resolve(self.transform_result, action, selected_text, options)

    @property
    def models_used(self) -> list[str]:
        return [options.model_id for _, options in self.complete_calls]


class FakeRemoteStore:
    """In-memory stand-in for :class:`RemoteDocumentStore`."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Document]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.error: Exception | None = None
        self.valid_tokens: set[str] | None = None

    def seed(self, user_id: str, *documents: Document) -> None:
        bucket = self.documents.setdefault(user_id, {})
        for document in documents:
            bucket[document.id] = document.with_owner(user_id)

    def _check(self, identity: Identity) -> None:
        if self.error is not None:
            raise self.error
        if self.valid_tokens is not None and identity.token not in self.valid_tokens:
            raise UnauthorizedError("Unauthorized", status_code=401)

    async def list(self, identity: Identity) -> list[Document]:
        self.calls.append(("list", identity.user_id))
        self._check(identity)
        return list(self.documents.get(identity.user_id, {}).values())

    async def upsert(self, document: Document, *, identity: Identity) -> None:
        self.calls.append(("upsert", document.id))
        self._check(identity)
        self.documents.setdefault(identity.user_id, {})[document.id] = document.with_owner(identity.user_id)

    async def delete(self, document_id: str, *, identity: Identity) -> None:
        self.calls.append(("delete", document_id))
        self._check(identity)
        self.documents.get(identity.user_id, {}).pop(document_id, None)

    async def clear(self, identity: Identity) -> int:
        self.calls.append(("clear", identity.user_id))
        self._check(identity)
        removed = self.documents.pop(identity.user_id, {})
        return len(removed)


class TextBuffer:
    """Minimal edit target tracking a content revision."""

    def __init__(self, content: str = "") -> None:
        self.content = content
        self.revision = 0

    def replace_range(self, start: int, end: int, text: str) -> None:
        self.content = f"{self.content[:start]}{text}{self.content[end:]}"
        self.revision += 1


class StaticSelection:
    def __init__(self, start: int | None, end: int | None, caret: int = 0) -> None:
        self.start = start
        self.end = end
        self.caret = caret

    def get_selection(self) -> SelectionRange | None:
        if self.start is None or self.end is None:
            return None
        return SelectionRange(self.start, self.end)

    def get_caret_offset(self) -> int:
        return self.caret


class EventRecorder:
    """Collects every published event of the subscribed types in order."""

    def __init__(self, bus: Any, *event_types: type) -> None:
        self.events: list[Any] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]
