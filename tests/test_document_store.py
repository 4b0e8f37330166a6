"""Tests for the local-first document store."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import cast

import pytest

from ghostwriter.editor.document_model import Document, Identity
from ghostwriter.events import DocumentsMigrated, SyncFailed
from ghostwriter.services.document_store import DocumentStore, merge_documents
from ghostwriter.services.local_store import LocalDocumentCache
from ghostwriter.services.remote_store import RemoteDocumentStore, RemoteStoreError, UnauthorizedError
from tests.helpers import EventRecorder, FakeRemoteStore

IDENTITY = Identity("user-1", "token")


def _store(tmp_path: Path, remote: FakeRemoteStore | None = None, event_bus=None, identity=None) -> DocumentStore:
    return DocumentStore(
        LocalDocumentCache(tmp_path / "docs"),
        cast(RemoteDocumentStore, remote) if remote is not None else None,
        event_bus=event_bus,
        identity=identity,
    )


def _aged(document: Document, seconds: int) -> Document:
    stamp = document.updated_at - timedelta(seconds=seconds)
    return Document(
        id=document.id,
        title=document.title,
        content=document.content,
        created_at=stamp,
        updated_at=stamp,
        owner_id=document.owner_id,
    )


def test_merge_documents_keeps_newest_copy() -> None:
    current = Document.new(title="Doc").with_content("new")
    stale = _aged(current, 60)

    merged = merge_documents([stale], [current])

    assert merged == [current]
    assert merge_documents([current], [stale]) == [current]


@pytest.mark.asyncio
async def test_save_then_list_round_trip_anonymous(tmp_path: Path) -> None:
    store = _store(tmp_path)
    document = store.create("Draft").with_content("Some words")

    store.save(document)
    listed = await store.list()

    assert [(doc.id, doc.title, doc.content) for doc in listed] == [(document.id, "Draft", "Some words")]
    assert store.get(document.id) == document


@pytest.mark.asyncio
async def test_save_mirrors_to_remote_when_signed_in(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)

    document = store.create("Synced")
    await store.wait_for_sync()

    assert document.owner_id == "user-1"
    assert ("upsert", document.id) in remote.calls
    assert document.id in remote.documents["user-1"]
    assert store.pending_sync_count == 0


@pytest.mark.asyncio
async def test_remote_failure_on_save_is_silent_and_reported(tmp_path: Path, event_bus) -> None:
    remote = FakeRemoteStore()
    remote.error = RemoteStoreError("offline")
    recorder = EventRecorder(event_bus, SyncFailed)
    store = _store(tmp_path, remote, event_bus=event_bus, identity=IDENTITY)

    document = store.create("Offline")
    await store.wait_for_sync()

    assert store.get(document.id) == document
    assert recorder.events == [SyncFailed(operation="upsert", document_id=document.id, error="offline")]


def test_save_without_event_loop_still_writes_locally(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)

    document = store.create("No loop")

    assert store.get(document.id) == document
    assert remote.calls == []


@pytest.mark.asyncio
async def test_list_merges_remote_documents_newest_wins(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)
    local = Document.new(owner_id="user-1", title="Shared").with_content("old")
    store.local.upsert(_aged(local, 30), "user-1")
    remote.seed("user-1", local, Document.new(title="Remote only"))
    anonymous = Document.new(title="Anon")
    store.local.upsert(anonymous)

    listed = await store.list()

    by_id = {doc.id: doc for doc in listed}
    assert by_id[local.id].content == "old"
    assert by_id[local.id].updated_at == local.updated_at
    assert anonymous.id in by_id
    assert len(listed) == 3
    assert len(store.local.load("user-1")) == 2


@pytest.mark.asyncio
async def test_list_falls_back_to_local_when_remote_rejects(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    remote.error = UnauthorizedError("Unauthorized", status_code=401)
    store = _store(tmp_path, remote, identity=IDENTITY)
    mine = Document.new(owner_id="user-1", title="Mine")
    store.local.upsert(mine, "user-1")
    store.local.upsert(Document.new(title="Anon"))

    listed = await store.list()

    assert {doc.title for doc in listed} == {"Mine", "Anon"}


@pytest.mark.asyncio
async def test_delete_removes_locally_and_remotely(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)
    document = store.create("Bye")
    await store.wait_for_sync()

    assert store.delete(document.id) is True
    await store.wait_for_sync()

    assert store.get(document.id) is None
    assert document.id not in remote.documents["user-1"]
    assert store.delete("missing") is False


@pytest.mark.asyncio
async def test_migration_prefers_newer_remote_copy(tmp_path: Path, event_bus) -> None:
    remote = FakeRemoteStore()
    recorder = EventRecorder(event_bus, DocumentsMigrated)
    store = _store(tmp_path, remote, event_bus=event_bus)
    anonymous = store.create("Shared")
    stale_local = _aged(anonymous, 120)
    store.local.write([stale_local])
    newer_remote = anonymous.with_content("remote edit")
    remote.seed("user-1", newer_remote)

    documents = await store.sign_in(IDENTITY)

    assert [doc.id for doc in documents] == [anonymous.id]
    assert documents[0].content == "remote edit"
    assert store.local.load(None) == []
    assert [doc.content for doc in store.local.load("user-1")] == ["remote edit"]
    assert ("upsert", anonymous.id) not in remote.calls
    assert recorder.events == [DocumentsMigrated(owner_id="user-1", count=1)]


@pytest.mark.asyncio
async def test_migration_uploads_newer_anonymous_documents(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote)
    fresh = store.create("Fresh").with_content("local edit")
    store.save(fresh)
    remote.seed("user-1", _aged(fresh, 300))
    other = Document.new(title="Other")
    remote.seed("user-1", other)

    documents = await store.sign_in(IDENTITY)

    assert {doc.id for doc in documents} == {fresh.id, other.id}
    assert remote.documents["user-1"][fresh.id].content == "local edit"
    assert all(doc.owner_id == "user-1" for doc in documents)


@pytest.mark.asyncio
async def test_migration_survives_unreachable_remote(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    remote.error = RemoteStoreError("down")
    store = _store(tmp_path, remote)
    document = store.create("Offline draft")

    documents = await store.sign_in(IDENTITY)

    assert [doc.id for doc in documents] == [document.id]
    assert store.local.load("user-1")[0].owner_id == "user-1"


@pytest.mark.asyncio
async def test_sign_out_hides_owned_documents(tmp_path: Path) -> None:
    store = _store(tmp_path, identity=IDENTITY)
    store.create("Private")

    store.sign_out()

    assert await store.list() == []


@pytest.mark.asyncio
async def test_explicit_sync_requires_authentication(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote)

    with pytest.raises(UnauthorizedError):
        await store.sync()

    remote.valid_tokens = {"other"}
    await store.sign_in(IDENTITY)
    with pytest.raises(UnauthorizedError):
        await store.sync()


@pytest.mark.asyncio
async def test_explicit_sync_pushes_local_changes(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, identity=IDENTITY)
    local_only = store.create("Local only")
    store = _store(tmp_path, remote, identity=IDENTITY)

    documents = await store.sync()

    assert [doc.id for doc in documents] == [local_only.id]
    assert local_only.id in remote.documents["user-1"]


@pytest.mark.asyncio
async def test_clear_account_returns_remote_count(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    remote.seed("user-1", Document.new(), Document.new())
    store = _store(tmp_path, remote, identity=IDENTITY)
    store.local.upsert(Document.new(owner_id="user-1"), "user-1")

    assert await store.clear_account() == 2
    assert store.local.load("user-1") == []
    with pytest.raises(RemoteStoreError):
        await _store(tmp_path, identity=IDENTITY).clear_account()


@pytest.mark.asyncio
async def test_list_drops_documents_deleted_remotely(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)
    document = store.create("Elsewhere")
    await store.wait_for_sync()
    await store.sync()

    del remote.documents["user-1"][document.id]
    listed = await store.list()

    assert listed == []
    assert store.local.load("user-1") == []


@pytest.mark.asyncio
async def test_list_keeps_local_edits_whose_mirror_failed(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)
    remote.error = RemoteStoreError("offline")
    document = store.create("Offline edit")
    await store.wait_for_sync()
    remote.error = None

    listed = await store.list()

    assert [doc.id for doc in listed] == [document.id]
    assert store.local.unsynced_ids("user-1") == {document.id}

    await store.sync()
    assert document.id in remote.documents["user-1"]
    assert store.local.unsynced_ids("user-1") == set()


@pytest.mark.asyncio
async def test_failed_remote_delete_is_hidden_and_retried_by_sync(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote, identity=IDENTITY)
    document = store.create("Doomed")
    await store.wait_for_sync()

    remote.error = RemoteStoreError("offline")
    store.delete(document.id)
    await store.wait_for_sync()
    remote.error = None

    assert await store.list() == []
    await store.sync()
    assert document.id not in remote.documents["user-1"]


@pytest.mark.asyncio
async def test_anonymous_document_saved_while_signed_in_joins_the_account(tmp_path: Path) -> None:
    remote = FakeRemoteStore()
    store = _store(tmp_path, remote)
    draft = store.create("Draft")
    await store.sign_in(IDENTITY)

    saved = store.save(draft.with_content("after sign-in"))
    await store.wait_for_sync()

    assert saved.owner_id == "user-1"
    assert store.local.load(None) == []
    assert remote.documents["user-1"][draft.id].content == "after sign-in"
    store.sign_out()
    assert await store.list() == []
