"""Composition root tying one open document to the controllers and storage."""

from __future__ import annotations

import logging
from typing import Callable

from ..ai.client import CompletionService
from ..ai.models import ModelRegistry
from ..events import DocumentsMigrated, EventBus, ModelSwitched
from ..services.document_store import AutoSaver, DocumentStore
from ..services.settings import EditorSettings
from .document_model import DEFAULT_TITLE, Document
from .selection_actions import SelectionAction, SelectionActionController, SelectionOutcome, SelectionProvider
from .suggestions import SuggestionController
from .timers import Scheduler

__all__ = ["EditorSession"]

LOGGER = logging.getLogger(__name__)

SettingsListener = Callable[[EditorSettings], None]


class EditorSession:
    """Owns the active document and routes edits to auto-save.

    The presentation layer drives ``suggestions`` directly for keystrokes and
    caret moves; everything document-level goes through this object.
    """

    def __init__(
        self,
        service: CompletionService,
        store: DocumentStore,
        *,
        settings: EditorSettings,
        registry: ModelRegistry | None = None,
        event_bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        selection_provider: SelectionProvider | None = None,
        on_settings_changed: SettingsListener | None = None,
    ) -> None:
        self._bus = event_bus or EventBus()
        self._store = store
        self._settings = settings
        self._selection_provider = selection_provider
        self._on_settings_changed = on_settings_changed
        self._document: Document | None = None
        self.suggestions = SuggestionController(
            service,
            settings=settings,
            registry=registry,
            event_bus=self._bus,
            scheduler=scheduler,
        )
        self.selection = SelectionActionController(
            service,
            self.suggestions,
            settings=settings,
            event_bus=self._bus,
            model_provider=lambda: self.suggestions.active_model_id,
        )
        self.autosaver = AutoSaver(
            store,
            delay=settings.autosave_delay_seconds,
            scheduler=scheduler,
            event_bus=self._bus,
        )
        self.suggestions.add_content_listener(self._on_content_changed)
        self._bus.subscribe(ModelSwitched, self._on_model_switched)
        self._bus.subscribe(DocumentsMigrated, self._on_documents_migrated)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def settings(self) -> EditorSettings:
        return self._settings

    @property
    def document(self) -> Document | None:
        return self._document

    @property
    def saved_status(self) -> str:
        return self.autosaver.saved_status

    def open_document(self, document: Document | str) -> Document:
        """Make ``document`` (or the stored document with that id) active.

        Raises:
            KeyError: If an id is given that the store does not know.
        """

        if isinstance(document, str):
            found = self._store.get(document)
            if found is None:
                raise KeyError(document)
            document = found
        self.autosaver.flush()
        self._document = document
        self.suggestions.load_document(document.content)
        LOGGER.debug("Opened document %s (%s chars)", document.id, document.char_count)
        return document

    def new_document(self, title: str = DEFAULT_TITLE) -> Document:
        return self.open_document(self._store.create(title))

    def rename(self, title: str) -> Document:
        document = self._require_document().with_title(title)
        self._document = document
        self.autosaver.schedule(document)
        return document

    def delete_document(self) -> bool:
        document = self._require_document()
        self.autosaver.cancel()
        self._document = None
        self.suggestions.load_document("")
        return self._store.delete(document.id)

    def select_model(self, model_id: str) -> None:
        self.suggestions.select_model(model_id)

    def update_settings(self, settings: EditorSettings) -> None:
        self._settings = settings
        self.suggestions.update_settings(settings)
        self.selection.update_settings(settings)
        self.autosaver.delay = settings.autosave_delay_seconds
        self._notify_settings()

    async def run_selection_action(self, action: SelectionAction | str) -> SelectionOutcome:
        """Apply ``action`` to the range reported by the selection provider.

        Raises:
            RuntimeError: If no selection provider is attached.
            ValueError: If nothing is selected.
        """

        if self._selection_provider is None:
            raise RuntimeError("No selection provider is attached to this session")
        return await self.selection.run_from_provider(action, self._selection_provider)

    async def aclose(self) -> None:
        self.autosaver.flush()
        await self.suggestions.aclose()
        await self._store.wait_for_sync()
        self._bus.unsubscribe(ModelSwitched, self._on_model_switched)
        self._bus.unsubscribe(DocumentsMigrated, self._on_documents_migrated)

    def _on_content_changed(self, content: str) -> None:
        if self._document is None:
            return
        self._document = self._document.with_content(content)
        self.autosaver.schedule(self._document)

    def _on_documents_migrated(self, event: DocumentsMigrated) -> None:
        document = self._document
        if document is None or document.owner_id is not None:
            return
        self._document = document.with_owner(event.owner_id)
        LOGGER.debug("Open document %s now belongs to %s", document.id, event.owner_id)

    def _on_model_switched(self, event: ModelSwitched) -> None:
        if self._settings.model == event.to_model_id:
            return
        LOGGER.info("Active model is now %s (%s)", event.to_model_id, event.reason)
        self._settings = self._settings.with_model(event.to_model_id)
        self.selection.update_settings(self._settings)
        self._notify_settings()

    def _notify_settings(self) -> None:
        if self._on_settings_changed is not None:
            self._on_settings_changed(self._settings)

    def _require_document(self) -> Document:
        if self._document is None:
            raise RuntimeError("No document is open")
        return self._document
