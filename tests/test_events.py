"""Unit tests for :mod:`ghostwriter.events`."""

from __future__ import annotations

import gc
from dataclasses import dataclass

from ghostwriter.events import Event, EventBus, ModelSwitched, SaveStatusChanged


@dataclass(slots=True)
class SampleEvent(Event):
    message: str
    value: int = 0


class _Listener:
    def __init__(self) -> None:
        self.received: list[SampleEvent] = []

    def on_event(self, event: SampleEvent) -> None:
        self.received.append(event)


class TestEventBus:
    def test_publish_reaches_handlers_in_order(self) -> None:
        bus = EventBus()
        calls: list[str] = []
        bus.subscribe(SampleEvent, lambda event: calls.append(f"first:{event.message}"))
        bus.subscribe(SampleEvent, lambda event: calls.append(f"second:{event.message}"))

        bus.publish(SampleEvent(message="hi"))

        assert calls == ["first:hi", "second:hi"]

    def test_handlers_are_isolated_by_type(self) -> None:
        bus = EventBus()
        received: list[object] = []
        bus.subscribe(ModelSwitched, received.append)

        bus.publish(SaveStatusChanged(status="saved", document_id="d"))

        assert received == []

    def test_failing_handler_does_not_stop_others(self) -> None:
        bus = EventBus()
        received: list[SampleEvent] = []

        def _boom(event: SampleEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(SampleEvent, _boom)
        bus.subscribe(SampleEvent, received.append)

        bus.publish(SampleEvent(message="x"))

        assert len(received) == 1

    def test_unsubscribe_removes_handler(self) -> None:
        bus = EventBus()
        listener = _Listener()
        bus.subscribe(SampleEvent, listener.on_event)

        bus.unsubscribe(SampleEvent, listener.on_event)
        bus.publish(SampleEvent(message="x"))

        assert listener.received == []
        assert bus.handler_count(SampleEvent) == 0

    def test_bound_methods_are_weak(self) -> None:
        bus = EventBus()
        listener = _Listener()
        bus.subscribe(SampleEvent, listener.on_event)
        assert bus.handler_count(SampleEvent) == 1

        del listener
        gc.collect()
        bus.publish(SampleEvent(message="x"))

        assert bus.handler_count(SampleEvent) == 0

    def test_clear(self) -> None:
        bus = EventBus()
        bus.subscribe(SampleEvent, lambda event: None)

        bus.clear()

        assert bus.handler_count() == 0
