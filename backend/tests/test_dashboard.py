import asyncio

import pytest

from verifiche.dashboard import DashboardView
from verifiche.documents import Document, public_results, public_verifications


VERIFICATIONS = public_verifications("test")
RESULTS = public_results("test")


@pytest.mark.asyncio
async def test_rows_are_joined_with_results(store):
    view = DashboardView(store, VERIFICATIONS, RESULTS)
    await view.start()
    try:
        older = await store.add(VERIFICATIONS, {"studentName": "Anna", "teacherId": "t1", "creationDate": "2026-01-01T00:00:00", "passwordHash": "x"})
        newer = await store.add(VERIFICATIONS, {"studentName": "Bruno", "teacherId": "t1", "creationDate": "2026-02-01T00:00:00"})
        await store.add(VERIFICATIONS, {"studentName": "Carla", "teacherId": "t2", "creationDate": "2026-03-01T00:00:00"})
        await store.create(RESULTS, older.id, {"totalScore": 80})

        rows = view.rows(teacher_id="t1")
        assert [r["id"] for r in rows] == [newer.id, older.id]
        assert rows[0]["result"] is None
        assert rows[1]["result"] == {"totalScore": 80}
        assert "passwordHash" not in rows[1]
        assert len(view.rows()) == 3

        await store.delete(RESULTS, older.id)
        assert view.rows(teacher_id="t1")[1]["result"] is None
    finally:
        view.stop()


class _CountingStore:
    """Wraps a store and counts result lookups."""

    def __init__(self, store):
        self._store = store
        self.lookups = 0

    async def get(self, collection, doc_id):
        if collection == RESULTS:
            self.lookups += 1
        return await self._store.get(collection, doc_id)

    def __getattr__(self, name):
        return getattr(self._store, name)


@pytest.mark.asyncio
async def test_each_write_costs_at_most_one_lookup(store):
    for i in range(5):
        await store.add(VERIFICATIONS, {"studentName": f"s{i}", "teacherId": "t1"})
    counting = _CountingStore(store)
    view = DashboardView(counting, VERIFICATIONS, RESULTS)
    await view.start()
    try:
        # Initial fan-out over the existing verifications
        assert counting.lookups == 5

        for i in range(30):
            await store.add(VERIFICATIONS, {"studentName": f"n{i}", "teacherId": "t1"})
        assert counting.lookups == 5 + 30

        first = view.rows()[0]["id"]
        await store.create(RESULTS, first, {"totalScore": 10})
        assert counting.lookups == 35
        assert len(view.rows()) == 35
    finally:
        view.stop()


class _FlakyStore:
    """Result lookups fail for one id and block for ids listed in ``gates``."""

    def __init__(self, failing=None, gates=None):
        self.failing = failing
        self.gates = gates or {}

    async def get(self, collection, doc_id):
        if doc_id in self.gates:
            await self.gates[doc_id].wait()
        if doc_id == self.failing:
            raise RuntimeError("store unavailable")
        return Document(id=doc_id, data={"finalGrade": "Buono (8)"})


@pytest.mark.asyncio
async def test_failed_lookup_keeps_row_with_null_result():
    view = DashboardView(_FlakyStore(failing="b"), VERIFICATIONS, RESULTS)
    await view.on_snapshot([Document(id="a", data={}), Document(id="b", data={})])

    rows = {r["id"]: r for r in view.rows()}
    assert rows["a"]["result"] == {"finalGrade": "Buono (8)"}
    assert rows["b"]["result"] is None


@pytest.mark.asyncio
async def test_stale_refresh_does_not_overwrite_newer_view():
    gate = asyncio.Event()
    view = DashboardView(_FlakyStore(gates={"a": gate}), VERIFICATIONS, RESULTS)

    stale = asyncio.create_task(view.on_snapshot([Document(id="a", data={"status": "pending"})]))
    await asyncio.sleep(0)
    # The newer batch for the same verification already knows its result
    await view.on_results([Document(id="a", data={"finalGrade": "Ottimo (10)"})])
    await view.on_snapshot([Document(id="a", data={"status": "submitted"})])
    gate.set()
    await stale

    rows = view.rows()
    assert [r["status"] for r in rows] == ["submitted"]
    assert rows[0]["result"] == {"finalGrade": "Ottimo (10)"}
    assert view.generation == 2
