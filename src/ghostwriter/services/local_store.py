"""Local document cache keyed by identity, plus JSON export/import."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

from ..editor.document_model import Document
from .settings import SETTINGS_DIR

__all__ = [
    "LocalDocumentCache",
    "LocalStoreError",
    "export_documents",
    "import_documents",
]

LOGGER = logging.getLogger(__name__)
_CACHE_VERSION = 1
_ANONYMOUS_FILENAME = "documents.json"


class LocalStoreError(RuntimeError):
    """Raised when the local cache cannot be written."""


def _default_cache_dir() -> Path:
    return SETTINGS_DIR / "documents"


class LocalDocumentCache:
    """One JSON blob per identity holding that identity's documents.

    The anonymous blob is ``documents.json``; authenticated blobs are named
    after a hash of the user id so switching accounts never mixes documents.
    """

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = directory or _default_cache_dir()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, user_id: str | None) -> Path:
        if not user_id:
            return self._directory / _ANONYMOUS_FILENAME
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:16]
        return self._directory / f"documents-{digest}.json"

    def load(self, user_id: str | None = None) -> List[Document]:
        payload = self._read_payload(self.path_for(user_id))
        records = payload.get("documents")
        if not isinstance(records, list):
            return []
        documents: list[Document] = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            try:
                documents.append(Document.from_record(record))
            except ValueError as exc:
                LOGGER.warning("Skipping malformed cached document: %s", exc)
        return documents

    def write(
        self,
        documents: Iterable[Document],
        user_id: str | None = None,
        *,
        unsynced: Iterable[str] | None = None,
    ) -> Path:
        """Replace the blob for ``user_id`` with ``documents``.

        ``unsynced`` replaces the set of ids still waiting for a remote
        mirror; when omitted the stored set is kept. Ids of documents that
        are no longer in the blob are dropped from it either way.

        Raises:
            LocalStoreError: If the blob cannot be written.
        """

        path = self.path_for(user_id)
        documents = list(documents)
        pending = _unsynced_from(self._read_payload(path)) if unsynced is None else set(unsynced)
        pending &= {document.id for document in documents}
        payload: dict[str, Any] = {
            "version": _CACHE_VERSION,
            "documents": [document.to_record() for document in documents],
        }
        if pending:
            payload["unsynced"] = sorted(pending)
        try:
            body = json.dumps(payload, indent=2, sort_keys=True)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(body, encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise LocalStoreError(f"Unable to write {path}: {exc}") from exc
        return path

    def upsert(self, document: Document, user_id: str | None = None, *, unsynced: bool = False) -> List[Document]:
        documents = self.load(user_id)
        for index, existing in enumerate(documents):
            if existing.id == document.id:
                documents[index] = document
                break
        else:
            documents.append(document)
        pending = self.unsynced_ids(user_id) | {document.id} if unsynced else None
        self.write(documents, user_id, unsynced=pending)
        return documents

    def unsynced_ids(self, user_id: str | None = None) -> set[str]:
        """Ids whose latest local write has not reached the remote store."""

        return _unsynced_from(self._read_payload(self.path_for(user_id)))

    def mark_synced(self, document_ids: Iterable[str], user_id: str | None = None) -> None:
        pending = self.unsynced_ids(user_id)
        remaining = pending - set(document_ids)
        if remaining != pending:
            self.write(self.load(user_id), user_id, unsynced=remaining)

    def remove(self, document_id: str, user_id: str | None = None) -> bool:
        documents = self.load(user_id)
        remaining = [document for document in documents if document.id != document_id]
        if len(remaining) == len(documents):
            return False
        self.write(remaining, user_id)
        return True

    def clear(self, user_id: str | None = None) -> None:
        path = self.path_for(user_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise LocalStoreError(f"Unable to remove {path}: {exc}") from exc

    def _read_payload(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Document cache %s is not valid JSON: %s", path, exc)
            return {}
        if isinstance(data, list):
            # Bare arrays are accepted for caches written before versioning.
            return {"documents": data}
        if isinstance(data, Mapping):
            return dict(data)
        return {}


def _unsynced_from(payload: Mapping[str, Any]) -> set[str]:
    ids = payload.get("unsynced")
    if not isinstance(ids, list):
        return set()
    return {item for item in ids if isinstance(item, str)}


def export_documents(documents: Sequence[Document], path: Path) -> Path:
    """Write ``documents`` as a JSON array suitable for :func:`import_documents`."""

    records = []
    for document in documents:
        record = document.to_record()
        record["lastModified"] = record["updatedAt"]
        records.append(record)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records, indent=2), encoding="utf-8")
    LOGGER.info("Exported %s document(s) to %s", len(records), path)
    return path


def import_documents(path: Path) -> List[Document]:
    """Read documents previously written by :func:`export_documents`.

    Raises:
        ValueError: If the file is not a JSON array of document records.
    """

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ValueError("Invalid format: expected an array of documents")
    documents: list[Document] = []
    for position, record in enumerate(data):
        if not isinstance(record, Mapping):
            raise ValueError(f"Invalid document at index {position}")
        if "title" not in record or ("updatedAt" not in record and "lastModified" not in record):
            raise ValueError(f"Invalid document at index {position}: missing title or timestamp")
        documents.append(Document.from_record(record))
    return documents
