"""One-shot replay of the pre-cloud local storage into the configured backends.

The old server kept `cases.json`, `documents.json`, `graphData.json` and a
`pdfs/` directory next to it. Every helper here walks those sources
sequentially and keeps going past individual failures; nothing is
checkpointed, so a rerun replays everything.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from legalbridge.services.blob_store import BlobStore
from legalbridge.services.document_store import LegalRecords

logger = structlog.get_logger()

CASES_FILE = "cases.json"
DOCUMENTS_FILE = "documents.json"
GRAPH_FILE = "graphData.json"
PDF_DIR = "pdfs"
LOCAL_SOURCES = (CASES_FILE, DOCUMENTS_FILE, GRAPH_FILE, PDF_DIR)


@dataclass
class MigrationReport:
    migrated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class StorageStatus:
    document_store_ok: bool
    blob_store_ok: bool
    blob_count: int


def _load_json(path: Path, report: MigrationReport) -> Any | None:
    if not path.exists():
        logger.info("migration_source_missing", path=str(path))
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("migration_source_unreadable", path=str(path), error=str(exc))
        report.failed.append(path.name)
        return None


def local_pdf_files(pdf_dir: Path) -> list[Path]:
    if not pdf_dir.is_dir():
        return []
    return sorted(path for path in pdf_dir.iterdir() if path.is_file() and path.suffix.lower() == ".pdf")


async def _upload_pdfs(pdf_dir: Path, blobs: BlobStore, report: MigrationReport) -> None:
    for path in local_pdf_files(pdf_dir):
        label = f"pdf:{path.name}"
        try:
            data = path.read_bytes()
            logger.info("pdf_upload_started", filename=path.name, size_kb=round(len(data) / 1024))
            result = await blobs.upload(data, path.name)
        except Exception as exc:  # noqa: BLE001
            logger.error("pdf_migration_failed", filename=path.name, error=str(exc))
            report.failed.append(label)
            continue
        logger.info("pdf_migrated", filename=path.name, url=result.url, size_kb=round(result.byte_count / 1024))
        report.migrated.append(label)


async def migrate_local_data(data_dir: Path, records: LegalRecords, blobs: BlobStore) -> MigrationReport:
    report = MigrationReport()
    logger.info("migration_started", data_dir=str(data_dir))

    cases = _load_json(data_dir / CASES_FILE, report)
    for case in cases if isinstance(cases, list) else []:
        label = f"case:{case.get('id') or 'unknown'}" if isinstance(case, dict) else "case:invalid"
        try:
            if not isinstance(case, dict):
                raise ValueError("case entry is not an object")
            await records.upsert_case(case)
        except Exception as exc:  # noqa: BLE001
            logger.error("case_migration_failed", item=label, error=str(exc))
            report.failed.append(label)
            continue
        logger.info("case_migrated", item=label)
        report.migrated.append(label)

    documents = _load_json(data_dir / DOCUMENTS_FILE, report)
    for document in documents if isinstance(documents, list) else []:
        label = f"document:{document.get('filename') or 'unknown'}" if isinstance(document, dict) else "document:invalid"
        try:
            if not isinstance(document, dict):
                raise ValueError("document entry is not an object")
            await records.save_document_metadata(document)
        except Exception as exc:  # noqa: BLE001
            logger.error("document_migration_failed", item=label, error=str(exc))
            report.failed.append(label)
            continue
        logger.info("document_migrated", item=label)
        report.migrated.append(label)

    graph = _load_json(data_dir / GRAPH_FILE, report)
    if isinstance(graph, dict):
        try:
            await records.save_graph_data(graph)
        except Exception as exc:  # noqa: BLE001
            logger.error("graph_migration_failed", error=str(exc))
            report.failed.append("graph")
        else:
            logger.info("graph_migrated")
            report.migrated.append("graph")

    await _upload_pdfs(data_dir / PDF_DIR, blobs, report)

    logger.info("migration_finished", migrated=len(report.migrated), failed=len(report.failed))
    return report


async def migrate_pdfs(pdf_dir: Path, blobs: BlobStore) -> MigrationReport:
    report = MigrationReport()
    if not await blobs.ping():
        logger.error("upload_service_unreachable", backend=blobs.backend_name)
        report.failed.append("connection")
        return report
    if not pdf_dir.is_dir():
        logger.error("pdf_directory_missing", path=str(pdf_dir))
        return report

    pdf_files = local_pdf_files(pdf_dir)
    if not pdf_files:
        logger.info("no_pdfs_to_migrate", path=str(pdf_dir))
        return report
    logger.info("pdf_migration_started", count=len(pdf_files))
    await _upload_pdfs(pdf_dir, blobs, report)
    logger.info("pdf_migration_finished", migrated=len(report.migrated), failed=len(report.failed))
    return report


async def check_storage(records: LegalRecords, blobs: BlobStore) -> StorageStatus:
    document_store_ok = await records.store.ping()
    blob_store_ok = await blobs.ping()
    blob_count = 0
    if blob_store_ok:
        try:
            blob_count = len(await blobs.list_blobs())
        except Exception as exc:  # noqa: BLE001
            logger.error("blob_listing_failed", error=str(exc))
            blob_store_ok = False
    return StorageStatus(document_store_ok=document_store_ok, blob_store_ok=blob_store_ok, blob_count=blob_count)


def cleanup_local_files(data_dir: Path, backup_dir: Path) -> list[str]:
    """Back up each local source into `backup_dir`, then remove the original."""
    backup_dir.mkdir(parents=True, exist_ok=True)
    removed: list[str] = []
    for name in LOCAL_SOURCES:
        source = data_dir / name
        if not source.exists():
            logger.info("cleanup_source_missing", path=str(source))
            continue
        target = backup_dir / name
        try:
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
                shutil.rmtree(source)
            else:
                shutil.copy2(source, target)
                source.unlink()
        except OSError as exc:
            logger.error("cleanup_failed", path=str(source), error=str(exc))
            continue
        logger.info("cleanup_backed_up_and_removed", path=str(source), backup=str(target))
        removed.append(name)
    return removed
