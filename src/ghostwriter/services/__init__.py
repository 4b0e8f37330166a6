"""Service layer helpers (settings, local cache, remote sync)."""

from .local_store import LocalDocumentCache, LocalStoreError
from .remote_store import DocumentNotFoundError, RemoteDocumentStore, RemoteStoreError, UnauthorizedError
from .settings import EditorSettings, SettingsStore

__all__ = [
    "DocumentNotFoundError",
    "EditorSettings",
    "LocalDocumentCache",
    "LocalStoreError",
    "RemoteDocumentStore",
    "RemoteStoreError",
    "SettingsStore",
    "UnauthorizedError",
]
