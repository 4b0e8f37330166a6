"""Local-first document persistence with best-effort remote mirroring.

The local cache is always written first; remote writes run as background
tasks and only report failures through :class:`~ghostwriter.events.SyncFailed`.
When the remote store answers a listing it is authoritative: cached documents
it does not return survive only while their own mirror is still outstanding.
Explicit account actions (:meth:`DocumentStore.sync`,
:meth:`DocumentStore.clear_account`) are the exception and raise on
authentication problems.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, List

from ..editor.document_model import DEFAULT_TITLE, Document, Identity
from ..editor.timers import Debouncer, LoopScheduler, Scheduler
from ..events import DocumentsMigrated, EventBus, SaveStatusChanged, SyncFailed
from .local_store import LocalDocumentCache, LocalStoreError
from .remote_store import DocumentNotFoundError, RemoteDocumentStore, RemoteStoreError, UnauthorizedError

__all__ = ["DocumentStore", "AutoSaver", "merge_documents"]

LOGGER = logging.getLogger(__name__)


def merge_documents(*groups: Iterable[Document]) -> List[Document]:
    """Merge document collections by id, keeping the newest ``updated_at``.

    On a timestamp tie the copy seen first wins.
    """

    merged: dict[str, Document] = {}
    for group in groups:
        for document in group:
            current = merged.get(document.id)
            if current is None or document.is_newer_than(current):
                merged[document.id] = document
    return list(merged.values())


def _newest_first(documents: Iterable[Document]) -> List[Document]:
    return sorted(documents, key=lambda document: document.updated_at, reverse=True)


class DocumentStore:
    """CRUD over the local cache, mirrored to a remote store when signed in."""

    def __init__(
        self,
        local: LocalDocumentCache,
        remote: RemoteDocumentStore | None = None,
        *,
        event_bus: EventBus | None = None,
        identity: Identity | None = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._bus = event_bus or EventBus()
        self._identity = identity
        self._pending: set[asyncio.Task[Any]] = set()
        self._deleting: set[str] = set()

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def local(self) -> LocalDocumentCache:
        return self._local

    @property
    def remote(self) -> RemoteDocumentStore | None:
        return self._remote

    @property
    def pending_sync_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create(self, title: str = DEFAULT_TITLE) -> Document:
        owner = self._identity.user_id if self._identity else None
        document = Document.new(owner_id=owner, title=title.strip() or DEFAULT_TITLE)
        return self.save(document)

    def get(self, document_id: str) -> Document | None:
        for document in self._visible_local():
            if document.id == document_id:
                return document
        return None

    async def list(self) -> List[Document]:
        """Return every document visible to the current identity, newest first."""

        identity = self._identity
        anonymous = self._local.load(None)
        if identity is None:
            return _newest_first(anonymous)
        cached = self._local.load(identity.user_id)
        if self._remote is not None:
            try:
                remote_documents = await self._remote.list(identity)
            except UnauthorizedError:
                LOGGER.warning("Remote store rejected credentials for %s; using local documents", identity.user_id)
            except RemoteStoreError as exc:
                LOGGER.warning("Remote document list failed; using local documents: %s", exc)
            else:
                cached = self._reconcile(identity, remote_documents, cached)
                try:
                    self._local.write(cached, identity.user_id)
                except LocalStoreError as exc:
                    LOGGER.warning("Unable to refresh local cache: %s", exc)
        visible = [
            document
            for document in merge_documents(anonymous, cached)
            if document.owner_id in (None, identity.user_id)
        ]
        return _newest_first(visible)

    def save(self, document: Document) -> Document:
        """Write ``document`` to the local cache and mirror it in the background.

        While signed in, anonymous documents are saved under the account.
        Returns the document as stored.

        Raises:
            LocalStoreError: If the local cache cannot be written.
        """

        identity = self._identity
        if identity is not None and document.owner_id is None:
            # Signed-in edits never land in the anonymous blob.
            document = document.with_owner(identity.user_id)
            self._local.remove(document.id, None)
        owned = identity is not None and document.owner_id == identity.user_id
        self._local.upsert(document, document.owner_id, unsynced=owned)
        if self._remote is not None and identity is not None and owned:
            self._schedule(
                self._mirror_upsert(document, identity),
                operation="upsert",
                document_id=document.id,
            )
        return document

    def delete(self, document_id: str) -> bool:
        document = self.get(document_id)
        if document is None:
            return False
        self._local.remove(document_id, document.owner_id)
        identity = self._identity
        if identity is not None and document.owner_id == identity.user_id:
            self._deleting.add(document_id)
            if self._remote is not None:
                self._schedule(
                    self._remote_delete(document_id, identity),
                    operation="delete",
                    document_id=document_id,
                )
        return True

    # ------------------------------------------------------------------
    # Account operations
    # ------------------------------------------------------------------
    async def sign_in(self, identity: Identity) -> List[Document]:
        self._identity = identity
        LOGGER.info("Signed in as %s", identity.user_id)
        return await self.migrate_anonymous(identity)

    def sign_out(self) -> None:
        if self._identity is not None:
            LOGGER.info("Signed out %s", self._identity.user_id)
        self._identity = None
        self._deleting.clear()

    async def migrate_anonymous(self, identity: Identity) -> List[Document]:
        """Move anonymous documents to ``identity`` and merge with its remote set.

        Documents sharing an id are resolved by ``updated_at``; the newer copy
        is the only one kept. Returns the identity's merged document set.
        """

        anonymous = [document.with_owner(identity.user_id) for document in self._local.load(None)]
        existing = self._local.load(identity.user_id)
        if self._remote is not None:
            try:
                remote_documents = await self._remote.list(identity)
            except RemoteStoreError as exc:
                LOGGER.warning("Could not fetch remote documents during migration: %s", exc)
            else:
                existing = self._reconcile(identity, remote_documents, existing)
        merged = merge_documents(existing, anonymous)
        winners = {document.id: document for document in merged}
        uploads = [document for document in anonymous if winners.get(document.id) is document]
        unsynced = self._local.unsynced_ids(identity.user_id) | {document.id for document in uploads}
        self._local.write(merged, identity.user_id, unsynced=unsynced)

        if self._remote is not None and uploads:
            results = await asyncio.gather(
                *(self._remote.upsert(document, identity=identity) for document in uploads),
                return_exceptions=True,
            )
            uploaded = []
            for document, result in zip(uploads, results):
                if isinstance(result, Exception):
                    self._report_sync_failure("upsert", document.id, result)
                else:
                    uploaded.append(document.id)
            self._local.mark_synced(uploaded, identity.user_id)
        self._local.clear(None)
        LOGGER.info(
            "Migrated %s anonymous document(s) to %s (%s total)",
            len(anonymous),
            identity.user_id,
            len(merged),
        )
        self._bus.publish(DocumentsMigrated(owner_id=identity.user_id, count=len(anonymous)))
        return _newest_first(merged)

    async def sync(self) -> List[Document]:
        """Reconcile the identity's cache with the remote store.

        Raises:
            UnauthorizedError: If no identity is signed in or the token is rejected.
            RemoteStoreError: If no remote store is configured or it is unreachable.
        """

        identity = self._require_identity()
        remote = self._require_remote()
        for document_id in sorted(self._deleting):
            await self._remote_delete(document_id, identity)
        remote_documents = await remote.list(identity)
        remote_by_id = {document.id: document for document in remote_documents}
        merged = self._reconcile(identity, remote_documents, self._local.load(identity.user_id))
        for document in merged:
            counterpart = remote_by_id.get(document.id)
            if counterpart is None or document.is_newer_than(counterpart):
                await remote.upsert(document, identity=identity)
        self._local.write(merged, identity.user_id, unsynced=())
        return _newest_first(merged)

    async def clear_account(self) -> int:
        """Delete every document of the signed-in identity, locally and remotely."""

        identity = self._require_identity()
        remote = self._require_remote()
        count = await remote.clear(identity)
        self._local.clear(identity.user_id)
        LOGGER.info("Cleared %s remote document(s) for %s", count, identity.user_id)
        return count

    async def wait_for_sync(self) -> None:
        """Wait until every background remote write has finished."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_for_sync()
        if self._remote is not None:
            await self._remote.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _visible_local(self) -> List[Document]:
        identity = self._identity
        documents = self._local.load(None)
        if identity is not None:
            documents = merge_documents(documents, self._local.load(identity.user_id))
        return documents

    def _reconcile(
        self,
        identity: Identity,
        remote_documents: Iterable[Document],
        cached: Iterable[Document],
    ) -> List[Document]:
        unsynced = self._local.unsynced_ids(identity.user_id)
        authoritative = [document for document in remote_documents if document.id not in self._deleting]
        local_edits = [document for document in cached if document.id in unsynced]
        return merge_documents(authoritative, local_edits)

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise UnauthorizedError("Sign in to use account actions", status_code=401)
        return self._identity

    def _require_remote(self) -> RemoteDocumentStore:
        if self._remote is None:
            raise RemoteStoreError("No remote document store is configured")
        return self._remote

    async def _remote_delete(self, document_id: str, identity: Identity) -> None:
        assert self._remote is not None
        try:
            await self._remote.delete(document_id, identity=identity)
        except DocumentNotFoundError:
            LOGGER.debug("Remote copy of %s was already gone", document_id)
        self._deleting.discard(document_id)

    async def _mirror_upsert(self, document: Document, identity: Identity) -> None:
        assert self._remote is not None
        await self._remote.upsert(document, identity=identity)
        current = next((item for item in self._local.load(identity.user_id) if item.id == document.id), None)
        if current is not None and current.is_newer_than(document):
            return
        try:
            self._local.mark_synced([document.id], identity.user_id)
        except LocalStoreError as exc:
            LOGGER.warning("Unable to record sync of %s: %s", document.id, exc)

    def _schedule(self, coro: Awaitable[Any], *, operation: str, document_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the local write stands and the next save retries the mirror.
            LOGGER.debug("Skipping remote %s for %s: no running event loop", operation, document_id)
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            return
        task = loop.create_task(self._guard(coro, operation, document_id), name=f"sync-{operation}-{document_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _guard(self, coro: Awaitable[Any], operation: str, document_id: str) -> None:
        try:
            await coro
        except RemoteStoreError as exc:
            self._report_sync_failure(operation, document_id, exc)

    def _report_sync_failure(self, operation: str, document_id: str | None, exc: BaseException) -> None:
        LOGGER.warning("Remote %s for %s failed: %s", operation, document_id, exc)
        self._bus.publish(SyncFailed(operation=operation, document_id=document_id, error=str(exc)))


class AutoSaver:
    """Debounced saving of the active document with an observable status."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        delay: float = 1.0,
        scheduler: Scheduler | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._bus = event_bus or EventBus()
        self._debouncer = Debouncer(scheduler or LoopScheduler(), delay, self._save_pending)
        self._pending: Document | None = None
        self._status = "saved"
        self._last_error: str | None = None

    @property
    def saved_status(self) -> str:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def pending(self) -> Document | None:
        return self._pending

    @property
    def delay(self) -> float:
        return self._debouncer.delay

    @delay.setter
    def delay(self, value: float) -> None:
        self._debouncer.delay = value

    def schedule(self, document: Document) -> None:
        """Buffer ``document`` and restart the quiet-period timer."""

        if self._pending is not None and self._pending.id != document.id:
            self._save_pending()
        self._pending = document
        self._set_status("saving", document.id)
        self._debouncer.trigger()

    def flush(self) -> bool:
        """Save the buffered document now; False when nothing was pending."""

        self._debouncer.cancel()
        if self._pending is None:
            return False
        self._save_pending()
        return True

    def cancel(self) -> None:
        self._debouncer.cancel()
        self._pending = None

    def _save_pending(self) -> None:
        document = self._pending
        self._pending = None
        if document is None:
            return
        try:
            self._store.save(document)
        except LocalStoreError as exc:
            LOGGER.error("Auto-save of %s failed: %s", document.id, exc)
            self._last_error = str(exc)
            self._set_status("error", document.id, str(exc))
            return
        self._last_error = None
        self._set_status("saved", document.id)

    def _set_status(self, status: str, document_id: str, error: str | None = None) -> None:
        if status == self._status and status != "error":
            return
        self._status = status
        self._bus.publish(SaveStatusChanged(status=status, document_id=document_id, error=error))
