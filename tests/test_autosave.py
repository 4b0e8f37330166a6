"""Tests for debounced auto-save."""

from __future__ import annotations

from pathlib import Path

from ghostwriter.editor.document_model import Document
from ghostwriter.events import SaveStatusChanged
from ghostwriter.services.document_store import AutoSaver, DocumentStore
from ghostwriter.services.local_store import LocalDocumentCache, LocalStoreError
from tests.helpers import EventRecorder


class _FailingStore:
    def save(self, document: Document) -> Document:
        raise LocalStoreError("disk full")


def test_edits_are_saved_once_after_quiet_period(tmp_path: Path, scheduler, event_bus) -> None:
    store = DocumentStore(LocalDocumentCache(tmp_path))
    recorder = EventRecorder(event_bus, SaveStatusChanged)
    saver = AutoSaver(store, delay=1.0, scheduler=scheduler, event_bus=event_bus)
    document = Document.new(title="Draft")

    for index in range(5):
        document = document.with_content("x" * index)
        saver.schedule(document)
        scheduler.advance(0.5)

    assert saver.saved_status == "saving"
    assert store.get(document.id) is None

    scheduler.advance(0.5)

    assert saver.saved_status == "saved"
    assert store.get(document.id) == document
    assert [event.status for event in recorder.events] == ["saving", "saved"]


def test_flush_saves_immediately(tmp_path: Path, scheduler) -> None:
    store = DocumentStore(LocalDocumentCache(tmp_path))
    saver = AutoSaver(store, delay=1.0, scheduler=scheduler)
    document = Document.new(title="Now")

    saver.schedule(document)
    assert saver.flush() is True
    assert saver.flush() is False

    assert store.get(document.id) == document
    assert scheduler.pending == 0


def test_switching_documents_saves_previous_one(tmp_path: Path, scheduler) -> None:
    store = DocumentStore(LocalDocumentCache(tmp_path))
    saver = AutoSaver(store, delay=1.0, scheduler=scheduler)
    first = Document.new(title="First")
    second = Document.new(title="Second")

    saver.schedule(first)
    saver.schedule(second)

    assert store.get(first.id) == first
    assert saver.pending == second


def test_local_failure_sets_error_status(scheduler, event_bus) -> None:
    recorder = EventRecorder(event_bus, SaveStatusChanged)
    saver = AutoSaver(_FailingStore(), delay=1.0, scheduler=scheduler, event_bus=event_bus)  # type: ignore[arg-type]
    document = Document.new()

    saver.schedule(document)
    scheduler.advance(1.0)

    assert saver.saved_status == "error"
    assert saver.last_error == "disk full"
    assert recorder.events[-1] == SaveStatusChanged(status="error", document_id=document.id, error="disk full")
