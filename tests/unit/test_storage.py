import asyncio

import pytest

from clonecheck.services.storage import AnalysisStorage, AnalysisStore


@pytest.fixture
def store():
    return AnalysisStore()


@pytest.mark.asyncio
async def test_create_and_get(store):
    record = await store.create("u1", "https://acme.example/", {"overview": {}}, goal="clone it")

    fetched = await store.get("u1", record.id)
    assert fetched == record
    assert fetched.schema_version == 2
    assert fetched.goal == "clone it"


@pytest.mark.asyncio
async def test_records_are_scoped_per_user(store):
    record = await store.create("u1", "https://acme.example/", {})

    assert await store.get("u2", record.id) is None
    assert await store.list("u2") == []


@pytest.mark.asyncio
async def test_returned_records_are_copies(store):
    analysis = {"synthesis": {"summary": "original"}}
    record = await store.create("u1", "https://acme.example/", analysis)

    analysis["synthesis"]["summary"] = "mutated input"
    record.analysis["synthesis"]["summary"] = "mutated output"

    fetched = await store.get("u1", record.id)
    assert fetched.analysis["synthesis"]["summary"] == "original"


@pytest.mark.asyncio
async def test_list_newest_first(store):
    first = await store.create("u1", "https://one.example/", {})
    second = await store.create("u1", "https://two.example/", {})
    third = await store.create("u1", "https://three.example/", {})

    listed = await store.list("u1")
    assert [r.id for r in listed] == [third.id, second.id, first.id]


@pytest.mark.asyncio
async def test_update_sets_updated_at(store):
    record = await store.create("u1", "https://acme.example/", {"a": 1}, schema_version=1)

    updated = await store.update("u1", record.id, {"analysis": {"a": 2}, "schema_version": 2})

    assert updated.analysis == {"a": 2}
    assert updated.schema_version == 2
    assert updated.updated_at is not None
    assert updated.created_at == record.created_at
    assert (await store.get("u1", record.id)).analysis == {"a": 2}


@pytest.mark.asyncio
async def test_update_missing_returns_none(store):
    assert await store.update("u1", "missing", {"goal": "x"}) is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(store):
    record = await store.create("u1", "https://acme.example/", {})
    with pytest.raises(ValueError, match="Cannot update fields: id, user_id"):
        await store.update("u1", record.id, {"id": "other", "user_id": "u2"})

    stored = await store.get("u1", record.id)
    assert stored.user_id == "u1"
    assert await store.get("u2", record.id) is None


@pytest.mark.asyncio
async def test_delete(store):
    record = await store.create("u1", "https://acme.example/", {})

    assert await store.delete("u1", record.id) is True
    assert await store.delete("u1", record.id) is False
    assert await store.get("u1", record.id) is None


@pytest.mark.asyncio
async def test_concurrent_creates(store):
    records = await asyncio.gather(*[
        store.create("u1", f"https://site{i}.example/", {"i": i}) for i in range(20)
    ])

    listed = await store.list("u1")
    assert len(listed) == 20
    assert {r.id for r in listed} == {r.id for r in records}


@pytest.mark.asyncio
async def test_base_storage_is_abstract():
    storage = AnalysisStorage()
    with pytest.raises(NotImplementedError):
        await storage.get("u1", "id")
