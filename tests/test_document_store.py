import asyncio
from itertools import count

import pytest
from google.api_core.exceptions import NotFound

pytest.importorskip("pydantic_settings")

from legalbridge.services import document_store
from legalbridge.services.document_store import (
    CASES,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
    LegalRecords,
    RecordNotFoundError,
    SqlDocumentStore,
)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore.from_url("sqlite:///:memory:")


@pytest.fixture
def ticking_clock(monkeypatch):
    ticks = count(1)
    monkeypatch.setattr(
        document_store,
        "utc_timestamp",
        lambda: f"2024-01-01T00:00:{next(ticks):02d}.000Z",
    )


def test_create_without_id_generates_id_and_equal_timestamps(store):
    created = asyncio.run(store.create_record(CASES, {"messages": []}))

    assert created["id"]
    assert created["createdAt"] == created["updatedAt"]
    assert asyncio.run(store.get_record(CASES, created["id"]))["messages"] == []


def test_update_unknown_record_raises_not_found(store):
    with pytest.raises(RecordNotFoundError):
        asyncio.run(store.update_record(CASES, "missing", {"title": "x"}))


def test_update_merges_fields_and_restamps(store, ticking_clock):
    created = asyncio.run(store.create_record(CASES, {"id": "c1", "title": "Lease", "messages": []}))
    updated = asyncio.run(store.update_record(CASES, "c1", {"title": "Lease dispute"}))

    assert updated["id"] == "c1"
    assert updated["title"] == "Lease dispute"
    assert updated["messages"] == []
    assert updated["createdAt"] == created["createdAt"]
    assert updated["updatedAt"] > created["updatedAt"]


def test_listing_is_newest_first(store, ticking_clock):
    for case_id in ("a", "b", "c"):
        asyncio.run(store.create_record(CASES, {"id": case_id}))

    rows = asyncio.run(store.list_records(CASES))
    assert [row["id"] for row in rows] == ["c", "b", "a"]


def test_graph_singleton_merges(store):
    records = LegalRecords(store)
    assert asyncio.run(records.get_graph_data()) == {}

    asyncio.run(records.save_graph_data({"nodes": [1], "edges": []}))
    asyncio.run(records.save_graph_data({"edges": [[1, 1]]}))

    graph = asyncio.run(records.get_graph_data())
    assert graph["nodes"] == [1]
    assert graph["edges"] == [[1, 1]]
    assert "updatedAt" in graph


def test_upsert_case_creates_then_updates(store):
    records = LegalRecords(store)
    created = asyncio.run(records.upsert_case({"id": "c9", "messages": []}))
    updated = asyncio.run(records.upsert_case({"id": "c9", "status": "open"}))

    assert created["createdAt"] == created["updatedAt"]
    assert updated["status"] == "open"
    assert len(asyncio.run(records.get_cases())) == 1


def test_document_metadata_ignores_caller_id_and_is_findable(store):
    records = LegalRecords(store)
    saved = asyncio.run(
        records.save_document_metadata({"id": "forced", "filename": "brief.pdf", "cloudinaryPublicId": "pdfs/brief"})
    )

    assert saved["id"] != "forced"
    found = asyncio.run(records.find_document("brief.pdf"))
    assert found["cloudinaryPublicId"] == "pdfs/brief"
    assert asyncio.run(records.find_document("other.pdf")) is None


class _Snapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class _DocRef:
    def __init__(self, rows, doc_id):
        self._rows = rows
        self.id = doc_id

    async def set(self, data, merge=False):
        self._rows[self.id] = {**self._rows.get(self.id, {}), **data} if merge else dict(data)

    async def update(self, data):
        if self.id not in self._rows:
            raise NotFound("No document to update")
        self._rows[self.id].update(data)

    async def get(self):
        return _Snapshot(self.id, self._rows.get(self.id))


class _Query:
    def __init__(self, rows, field=None):
        self._rows = rows
        self._field = field

    async def get(self):
        items = [(key, data) for key, data in self._rows.items() if not self._field or self._field in data]
        items.sort(key=lambda item: item[1].get(self._field, ""), reverse=True)
        return [_Snapshot(key, data) for key, data in items]


class _Collection:
    def __init__(self, rows):
        self._rows = rows
        self._next_id = count(1)

    def document(self, doc_id=None):
        return _DocRef(self._rows, doc_id or f"auto{next(self._next_id)}")

    def order_by(self, field, direction=None):
        return _Query(self._rows, field)

    def limit(self, n):
        return _Query(self._rows)


class _FakeFirestore:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return _Collection(self.collections.setdefault(name, {}))


def test_firestore_store_maps_missing_document_to_not_found():
    store = FirestoreDocumentStore(_FakeFirestore())

    with pytest.raises(RecordNotFoundError):
        asyncio.run(store.update_record(CASES, "ghost", {"title": "x"}))


def test_firestore_store_round_trips_through_client(ticking_clock):
    client = _FakeFirestore()
    store = FirestoreDocumentStore(client)

    first = asyncio.run(store.create_record(CASES, {"messages": []}))
    asyncio.run(store.create_record(CASES, {"id": "named"}))
    rows = asyncio.run(store.list_records(CASES))

    assert first["id"] == "auto1"
    assert [row["id"] for row in rows] == ["named", "auto1"]
    assert asyncio.run(store.ping()) is True
