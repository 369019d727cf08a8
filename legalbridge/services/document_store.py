from __future__ import annotations

import copy
import json
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import firebase_admin
import structlog
from fastapi.concurrency import run_in_threadpool
from firebase_admin import credentials, firestore_async
from google.api_core.exceptions import NotFound
from google.cloud import firestore
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from legalbridge.config import Settings
from legalbridge.db import build_engine, build_sessionmaker, init_db
from legalbridge.models import StoredRecord

logger = structlog.get_logger()

CASES = "cases"
DOCUMENTS = "documents"
GRAPH_DATA = "graphData"
GRAPH_KEY = "main"


class DocumentStoreError(RuntimeError):
    pass


class RecordNotFoundError(DocumentStoreError):
    pass


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _new_record_id() -> str:
    return uuid4().hex[:20]


def _newest_first(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(records, key=lambda record: str(record.get("createdAt") or ""), reverse=True)


class DocumentStore:
    backend_name: str

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def update_record(self, collection: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def merge_record(self, collection: str, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


def _stamp_new(record: dict[str, Any]) -> dict[str, Any]:
    now = utc_timestamp()
    return {
        **record,
        "id": record.get("id") or _new_record_id(),
        "createdAt": now,
        "updatedAt": now,
    }


class InMemoryDocumentStore(DocumentStore):
    """Process-local store used when no database credentials are configured."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        rows = [{"id": key, **copy.deepcopy(data)} for key, data in self._collection(collection).items()]
        return _newest_first(rows)

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        data = self._collection(collection).get(record_id)
        return copy.deepcopy(data) if data is not None else None

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        new_record = _stamp_new(record)
        self._collection(collection)[new_record["id"]] = copy.deepcopy(new_record)
        return new_record

    async def update_record(self, collection: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        rows = self._collection(collection)
        if record_id not in rows:
            raise RecordNotFoundError(f"{collection}/{record_id} not found")
        rows[record_id].update(copy.deepcopy(fields))
        rows[record_id]["updatedAt"] = utc_timestamp()
        return {"id": record_id, **copy.deepcopy(rows[record_id])}

    async def merge_record(self, collection: str, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        row = self._collection(collection).setdefault(key, {})
        row.update(copy.deepcopy(fields))
        row["updatedAt"] = utc_timestamp()
        return copy.deepcopy(row)

    async def ping(self) -> bool:
        return True


class SqlDocumentStore(DocumentStore):
    """Local development store keeping each record as a JSON blob in one table."""

    backend_name = "sql"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> SqlDocumentStore:
        engine = build_engine(database_url)
        init_db(engine)
        return cls(build_sessionmaker(engine))

    @staticmethod
    def _to_dict(row: StoredRecord) -> dict[str, Any]:
        try:
            payload = json.loads(row.data_json)
        except json.JSONDecodeError:
            payload = {}
        return payload if isinstance(payload, dict) else {}

    def _list(self, collection: str) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(StoredRecord)
                .where(StoredRecord.collection == collection)
                .order_by(StoredRecord.created_at.desc())
            ).all()
            return [{"id": row.id, **self._to_dict(row)} for row in rows]

    def _get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        with self._session_factory() as db:
            row = db.get(StoredRecord, (collection, record_id))
            return self._to_dict(row) if row else None

    def _write(self, collection: str, record_id: str, data: dict[str, Any], *, must_exist: bool, merge: bool):
        with self._session_factory() as db:
            row = db.get(StoredRecord, (collection, record_id))
            if row is None:
                if must_exist:
                    raise RecordNotFoundError(f"{collection}/{record_id} not found")
                row = StoredRecord(collection=collection, id=record_id)
                db.add(row)
                merged = dict(data)
            else:
                merged = {**self._to_dict(row), **data} if merge else dict(data)
            row.data_json = json.dumps(merged, ensure_ascii=False)
            row.created_at = merged.get("createdAt")
            row.updated_at = merged.get("updatedAt")
            db.commit()
            return merged

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        return await run_in_threadpool(self._list, collection)

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return await run_in_threadpool(self._get, collection, record_id)

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        new_record = _stamp_new(record)
        await run_in_threadpool(self._write, collection, new_record["id"], new_record, must_exist=False, merge=False)
        return new_record

    async def update_record(self, collection: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = {**fields, "updatedAt": utc_timestamp()}
        merged = await run_in_threadpool(self._write, collection, record_id, data, must_exist=True, merge=True)
        return {"id": record_id, **merged}

    async def merge_record(self, collection: str, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = {**fields, "updatedAt": utc_timestamp()}
        return await run_in_threadpool(self._write, collection, key, data, must_exist=False, merge=True)

    async def ping(self) -> bool:
        try:
            await run_in_threadpool(self._list, CASES)
        except Exception as exc:  # noqa: BLE001
            logger.error("sql_ping_failed", error=str(exc))
            return False
        return True


def _firebase_credential(settings: Settings) -> credentials.Certificate:
    if settings.firebase_credentials_file:
        return credentials.Certificate(settings.firebase_credentials_file)
    if not settings.has_firebase_credentials:
        raise DocumentStoreError(
            "Firebase credentials are not configured. Set FIREBASE_CREDENTIALS_FILE or "
            "FIREBASE_PROJECT_ID, FIREBASE_PRIVATE_KEY and FIREBASE_CLIENT_EMAIL."
        )
    return credentials.Certificate(
        {
            "type": "service_account",
            "project_id": settings.firebase_project_id,
            "private_key_id": settings.firebase_private_key_id or "",
            "private_key": (settings.firebase_private_key or "").replace("\\n", "\n"),
            "client_email": settings.firebase_client_email,
            "client_id": settings.firebase_client_id or "",
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_x509_cert_url": settings.firebase_client_x509_cert_url or "",
            "universe_domain": "googleapis.com",
        }
    )


class FirestoreDocumentStore(DocumentStore):
    backend_name = "firestore"

    def __init__(self, client: firestore.AsyncClient):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> FirestoreDocumentStore:
        try:
            app = firebase_admin.get_app(settings.app_name)
        except ValueError:
            app = firebase_admin.initialize_app(_firebase_credential(settings), name=settings.app_name)
        logger.info("firestore_initialized", app=app.name, project=app.project_id)
        return cls(firestore_async.client(app))

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        query = self._client.collection(collection).order_by("createdAt", direction=firestore.Query.DESCENDING)
        snapshots = await query.get()
        return [{"id": snap.id, **(snap.to_dict() or {})} for snap in snapshots]

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        snap = await self._client.collection(collection).document(record_id).get()
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        ref = (
            self._client.collection(collection).document(record["id"])
            if record.get("id")
            else self._client.collection(collection).document()
        )
        new_record = _stamp_new({**record, "id": ref.id})
        await ref.set(new_record)
        return new_record

    async def update_record(self, collection: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        ref = self._client.collection(collection).document(record_id)
        try:
            await ref.update({**fields, "updatedAt": utc_timestamp()})
        except NotFound as exc:
            raise RecordNotFoundError(f"{collection}/{record_id} not found") from exc
        snap = await ref.get()
        if not snap.exists:
            raise RecordNotFoundError(f"{collection}/{record_id} not found after update")
        return {"id": snap.id, **(snap.to_dict() or {})}

    async def merge_record(self, collection: str, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        ref = self._client.collection(collection).document(key)
        await ref.set({**fields, "updatedAt": utc_timestamp()}, merge=True)
        snap = await ref.get()
        return snap.to_dict() or {}

    async def ping(self) -> bool:
        try:
            await self._client.collection(CASES).limit(1).get()
        except Exception as exc:  # noqa: BLE001
            logger.error("firestore_ping_failed", error=str(exc))
            return False
        return True


def build_document_store(settings: Settings) -> DocumentStore:
    backend = settings.document_backend.lower()
    if backend == "auto":
        backend = "firestore" if settings.has_firebase_credentials else "memory"
    if backend == "firestore":
        return FirestoreDocumentStore.from_settings(settings)
    if backend == "sql":
        return SqlDocumentStore.from_url(settings.database_url)
    if backend == "memory":
        return InMemoryDocumentStore()
    raise DocumentStoreError(f"Unsupported document backend: {settings.document_backend}")


class LegalRecords:
    """Per-collection operations for cases, document metadata and graph data."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_cases(self) -> list[dict[str, Any]]:
        return await self.store.list_records(CASES)

    async def create_case(self, case: dict[str, Any]) -> dict[str, Any]:
        return await self.store.create_record(CASES, case)

    async def update_case(self, case_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return await self.store.update_record(CASES, case_id, updates)

    async def upsert_case(self, case: dict[str, Any]) -> dict[str, Any]:
        case_id = case.get("id")
        if case_id and await self.store.get_record(CASES, case_id) is not None:
            return await self.update_case(case_id, case)
        return await self.create_case(case)

    async def get_documents(self) -> list[dict[str, Any]]:
        return await self.store.list_records(DOCUMENTS)

    async def find_document(self, filename: str) -> dict[str, Any] | None:
        for document in await self.get_documents():
            if document.get("filename") == filename:
                return document
        return None

    async def save_document_metadata(self, metadata: dict[str, Any]) -> dict[str, Any]:
        fields = {key: value for key, value in metadata.items() if key != "id"}
        return await self.store.create_record(DOCUMENTS, fields)

    async def get_graph_data(self) -> dict[str, Any]:
        return await self.store.get_record(GRAPH_DATA, GRAPH_KEY) or {}

    async def save_graph_data(self, graph_data: dict[str, Any]) -> dict[str, Any]:
        return await self.store.merge_record(GRAPH_DATA, GRAPH_KEY, graph_data)
