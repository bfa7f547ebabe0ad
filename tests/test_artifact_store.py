"""ArtifactStore: documents, version numbering and ownership."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from canvas_backend.core.exceptions import ExecutionError, NotFoundError
from canvas_backend.db.models import ArtifactKind
from canvas_backend.repositories.document_repo import SQLAlchemyDocumentRepository
from canvas_backend.services.artifact_store import ArtifactStore


@pytest.mark.asyncio
async def test_create_without_content_writes_no_version(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TABLE, "Sales")
    assert doc["content"] == ""
    assert doc["kind"] == "table"
    assert await store.list_versions(doc["id"], users.alice.id) == []


@pytest.mark.asyncio
async def test_create_with_content_writes_version_one(store, users):
    doc = await store.create_artifact(users.alice.id, "text", "Notes", content="hello", metadata={"a": 1})
    versions = await store.list_versions(doc["id"], users.alice.id)
    assert [v["version"] for v in versions] == [1]
    assert versions[0]["metadata"] == {"a": 1}
    assert doc["content"] == "hello"


@pytest.mark.asyncio
async def test_sequential_versions(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TABLE, "Sales")
    await store.create_version(doc["id"], "v1")
    v2 = await store.create_version(doc["id"], "v2", {"note": "second"})

    versions = await store.list_versions(doc["id"], users.alice.id)
    assert [v["version"] for v in versions] == [1, 2]
    assert v2["metadata"] == {"note": "second"}
    assert (await store.get_document(doc["id"], users.alice.id))["content"] == "v2"


@pytest.mark.asyncio
async def test_concurrent_versions_are_contiguous(session_factory, users):
    # SQLite reports lock contention as OperationalError; give the retry loop room.
    store = ArtifactStore(session_factory, max_attempts=25, backoff_seconds=0.02)
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Race")
    contents = [f"c{i}" for i in range(5)]

    results = await asyncio.gather(*(store.create_version(doc["id"], c) for c in contents))

    numbers = sorted(r["version"] for r in results)
    assert numbers == list(range(1, len(contents) + 1))
    versions = await store.list_versions(doc["id"], users.alice.id)
    assert [v["version"] for v in versions] == numbers
    current = await store.get_document(doc["id"], users.alice.id)
    assert current["content"] == versions[-1]["content"]


@pytest.mark.asyncio
async def test_version_for_missing_document(store, users):
    with pytest.raises(NotFoundError):
        await store.create_version("00000000-0000-0000-0000-000000000000", "x")


@pytest.mark.asyncio
async def test_version_respects_owner(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Mine")
    with pytest.raises(NotFoundError):
        await store.create_version(doc["id"], "x", owner_id=users.bob.id)
    assert await store.list_versions(doc["id"], users.alice.id) == []


@pytest.mark.asyncio
async def test_exhausted_retries_raise_and_leave_document(session_factory, users, monkeypatch):
    store = ArtifactStore(session_factory, max_attempts=2, backoff_seconds=0)
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Locked", content="orig")
    calls = 0

    async def locked(self, document_id):
        nonlocal calls
        calls += 1
        raise OperationalError("SELECT max(version)", {}, Exception("database is locked"))

    monkeypatch.setattr(SQLAlchemyDocumentRepository, "next_version_number", locked)

    with pytest.raises(ExecutionError):
        await store.create_version(doc["id"], "new")

    assert calls == 2
    monkeypatch.undo()
    assert (await store.get_document(doc["id"], users.alice.id))["content"] == "orig"
    assert [v["version"] for v in await store.list_versions(doc["id"], users.alice.id)] == [1]


@pytest.mark.asyncio
async def test_reads_are_owner_scoped(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Private")
    with pytest.raises(NotFoundError):
        await store.get_document(doc["id"], users.bob.id)
    with pytest.raises(NotFoundError):
        await store.list_versions(doc["id"], users.bob.id)
    with pytest.raises(NotFoundError):
        await store.delete_document(doc["id"], users.bob.id)


@pytest.mark.asyncio
async def test_document_with_versions_omits_content(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Doc", content="one")
    await store.create_version(doc["id"], "two")
    full = await store.get_document_with_versions(doc["id"], users.alice.id)
    assert full["content"] == "two"
    assert [v["version"] for v in full["versions"]] == [1, 2]
    assert all("content" not in v for v in full["versions"])


@pytest.mark.asyncio
async def test_update_title_only(store, users):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Old", content="body")
    updated = await store.update_document(doc["id"], users.alice.id, title="New")
    assert updated["title"] == "New"
    assert updated["content"] == "body"


@pytest.mark.asyncio
async def test_delete_cascades_versions(store, users, session_factory):
    doc = await store.create_artifact(users.alice.id, ArtifactKind.TEXT, "Gone", content="a")
    await store.create_version(doc["id"], "b")
    await store.delete_document(doc["id"], users.alice.id)

    with pytest.raises(NotFoundError):
        await store.get_document(doc["id"], users.alice.id)
    async with session_factory() as session:
        assert await SQLAlchemyDocumentRepository(session).list_versions(doc["id"]) == []


@pytest.mark.asyncio
async def test_list_documents_pagination_and_kind(store, users):
    for i in range(3):
        await store.create_artifact(users.alice.id, ArtifactKind.TEXT, f"T{i}")
    await store.create_artifact(users.alice.id, ArtifactKind.CHARTS, "Chart")
    await store.create_artifact(users.bob.id, ArtifactKind.TEXT, "Bob's")

    page, total = await store.list_documents(users.alice.id, limit=2)
    assert total == 4
    assert len(page) == 2

    charts, total = await store.list_documents(users.alice.id, kind="charts")
    assert total == 1
    assert charts[0]["title"] == "Chart"
