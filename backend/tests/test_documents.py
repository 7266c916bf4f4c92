import pytest

from verifiche.documents import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    VersionConflictError,
    public_results,
    public_verifications,
    teacher_quizzes,
)


COLLECTION = public_verifications("test")


def test_collection_paths():
    assert teacher_quizzes("app", "u1") == "artifacts/app/users/u1/quizzes"
    assert public_verifications("app") == "artifacts/app/public/data/verifications"
    assert public_results("app") == "artifacts/app/public/data/results"


@pytest.mark.asyncio
async def test_add_then_get(store):
    doc = await store.add(COLLECTION, {"studentName": "Anna", "status": "pending"})
    assert len(doc.id) == 20
    assert doc.version == 1

    fetched = await store.get(COLLECTION, doc.id)
    assert fetched.data == {"studentName": "Anna", "status": "pending"}
    assert fetched.to_dict()["id"] == doc.id
    assert await store.get(COLLECTION, "missing") is None
    assert await store.get(public_results("test"), doc.id) is None


@pytest.mark.asyncio
async def test_server_timestamp_is_resolved(store):
    doc = await store.add(COLLECTION, {"creationDate": SERVER_TIMESTAMP})
    stamp = doc.data["creationDate"]
    assert isinstance(stamp, str)
    assert stamp.startswith("20")


@pytest.mark.asyncio
async def test_create_is_insert_only(store):
    await store.create(COLLECTION, "abc", {"n": 1})
    with pytest.raises(DocumentExistsError):
        await store.create(COLLECTION, "abc", {"n": 2})
    assert (await store.get(COLLECTION, "abc")).data == {"n": 1}


@pytest.mark.asyncio
async def test_conditional_update(store):
    doc = await store.add(COLLECTION, {"status": "pending"})
    updated = await store.update(COLLECTION, doc.id, {"status": "submitted"}, expected_version=doc.version)
    assert updated.version == doc.version + 1
    assert updated.data == {"status": "submitted"}

    # A second writer still holding the old version loses
    with pytest.raises(VersionConflictError):
        await store.update(COLLECTION, doc.id, {"status": "submitted"}, expected_version=doc.version)
    with pytest.raises(VersionConflictError):
        await store.update(COLLECTION, "missing", {}, expected_version=1)


@pytest.mark.asyncio
async def test_list_is_scoped_to_collection(store):
    await store.add(COLLECTION, {"n": 1})
    await store.add(COLLECTION, {"n": 2})
    await store.add(public_results("test"), {"n": 3})

    assert [d.data["n"] for d in await store.list(COLLECTION)] == [1, 2]


@pytest.mark.asyncio
async def test_delete(store):
    doc = await store.create(COLLECTION, "abc", {"n": 1})
    assert await store.delete(COLLECTION, doc.id) is True
    assert await store.get(COLLECTION, doc.id) is None
    assert await store.delete(COLLECTION, doc.id) is False
    # The id is free again
    await store.create(COLLECTION, "abc", {"n": 2})


@pytest.mark.asyncio
async def test_subscribe_delivers_collection_then_changes(store):
    await store.add(COLLECTION, {"n": 1})
    await store.add(COLLECTION, {"n": 2})
    batches = []

    async def on_change(docs):
        batches.append([(d.data.get("n"), d.deleted) for d in docs])

    unsubscribe = await store.subscribe(COLLECTION, on_change)
    doc = await store.add(COLLECTION, {"n": 3})
    await store.update(COLLECTION, doc.id, {"n": 4}, expected_version=doc.version)
    await store.delete(COLLECTION, doc.id)
    await store.add(public_results("test"), {"n": 99})
    unsubscribe()
    await store.add(COLLECTION, {"n": 5})

    assert batches == [
        [(1, False), (2, False)],
        [(3, False)],
        [(4, False)],
        [(None, True)],
    ]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_writes(store):
    calls = []

    async def broken(docs):
        calls.append(len(docs))
        if docs:
            raise RuntimeError("boom")

    await store.subscribe(COLLECTION, broken)
    doc = await store.add(COLLECTION, {"n": 1})
    assert (await store.get(COLLECTION, doc.id)) is not None
    assert calls == [0, 1]
