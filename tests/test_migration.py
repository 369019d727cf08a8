import asyncio
import json
from pathlib import Path

import pytest

pytest.importorskip("pydantic_settings")

from legalbridge import cli
from legalbridge.dependencies import Services
from legalbridge.services.blob_store import InMemoryBlobStore
from legalbridge.services.document_store import InMemoryDocumentStore, LegalRecords
from legalbridge.services.migration import (
    check_storage,
    cleanup_local_files,
    migrate_local_data,
    migrate_pdfs,
)


class FlakyBlobStore(InMemoryBlobStore):
    def __init__(self, failing: set[str], reachable: bool = True):
        super().__init__()
        self.failing = failing
        self.reachable = reachable

    async def upload(self, data, filename):
        if filename in self.failing:
            raise RuntimeError("upload rejected")
        return await super().upload(data, filename)

    async def ping(self):
        return self.reachable


def _write_local_state(root: Path) -> None:
    (root / "cases.json").write_text(
        json.dumps([{"id": "c1", "messages": []}, "garbage", {"messages": []}]),
        encoding="utf-8",
    )
    (root / "documents.json").write_text(
        json.dumps([{"filename": "a.pdf", "originalName": "a.pdf"}]),
        encoding="utf-8",
    )
    (root / "graphData.json").write_text(json.dumps({"nodes": [], "edges": []}), encoding="utf-8")
    pdfs = root / "pdfs"
    pdfs.mkdir()
    (pdfs / "a.pdf").write_bytes(b"%PDF a")
    (pdfs / "bad.pdf").write_bytes(b"%PDF bad")
    (pdfs / "notes.txt").write_text("not a pdf", encoding="utf-8")


def test_migrate_local_data_continues_past_failures(tmp_path: Path):
    _write_local_state(tmp_path)
    records = LegalRecords(InMemoryDocumentStore())
    blobs = FlakyBlobStore(failing={"bad.pdf"})

    report = asyncio.run(migrate_local_data(tmp_path, records, blobs))

    assert "case:c1" in report.migrated
    assert "document:a.pdf" in report.migrated
    assert "graph" in report.migrated
    assert "pdf:a.pdf" in report.migrated
    assert set(report.failed) == {"case:invalid", "pdf:bad.pdf"}
    assert len(asyncio.run(records.get_cases())) == 2
    assert asyncio.run(records.get_graph_data())["nodes"] == []
    assert [blob.filename for blob in asyncio.run(blobs.list_blobs())] == ["a.pdf"]


def test_migrate_local_data_tolerates_missing_and_corrupt_sources(tmp_path: Path):
    (tmp_path / "cases.json").write_text("{not json", encoding="utf-8")
    records = LegalRecords(InMemoryDocumentStore())

    report = asyncio.run(migrate_local_data(tmp_path, records, InMemoryBlobStore()))

    assert report.migrated == []
    assert report.failed == ["cases.json"]


def test_migrate_pdfs_stops_when_upload_service_unreachable(tmp_path: Path):
    (tmp_path / "a.pdf").write_bytes(b"%PDF a")
    blobs = FlakyBlobStore(failing=set(), reachable=False)

    report = asyncio.run(migrate_pdfs(tmp_path, blobs))

    assert report.failed == ["connection"]
    assert asyncio.run(blobs.list_blobs()) == []


def test_migrate_pdfs_uploads_only_pdf_files(tmp_path: Path):
    (tmp_path / "a.pdf").write_bytes(b"%PDF a")
    (tmp_path / "B.PDF").write_bytes(b"%PDF b")
    (tmp_path / "readme.md").write_text("x", encoding="utf-8")

    report = asyncio.run(migrate_pdfs(tmp_path, InMemoryBlobStore()))

    assert sorted(report.migrated) == ["pdf:B.PDF", "pdf:a.pdf"]
    assert report.ok


def test_check_storage_reports_backends():
    blobs = InMemoryBlobStore()
    asyncio.run(blobs.upload(b"%PDF", "a.pdf"))

    status = asyncio.run(check_storage(LegalRecords(InMemoryDocumentStore()), blobs))

    assert status.document_store_ok is True
    assert status.blob_store_ok is True
    assert status.blob_count == 1


def test_cleanup_backs_up_then_removes(tmp_path: Path):
    _write_local_state(tmp_path)
    backup = tmp_path / "backup"

    removed = cleanup_local_files(tmp_path, backup)

    assert removed == ["cases.json", "documents.json", "graphData.json", "pdfs"]
    assert not (tmp_path / "cases.json").exists()
    assert not (tmp_path / "pdfs").exists()
    assert (backup / "pdfs" / "a.pdf").read_bytes() == b"%PDF a"
    assert json.loads((backup / "graphData.json").read_text(encoding="utf-8")) == {"nodes": [], "edges": []}


def test_cli_migrate_then_list_and_delete(tmp_path: Path, monkeypatch, capsys):
    _write_local_state(tmp_path)
    services = Services(records=LegalRecords(InMemoryDocumentStore()), blobs=InMemoryBlobStore())
    monkeypatch.setattr(cli, "build_services", lambda settings: services)

    assert cli.main(["migrate", "--data-dir", str(tmp_path)]) == 0
    assert cli.main(["list-pdfs"]) == 0
    assert '"public_id": "pdfs/bad"' in capsys.readouterr().out

    assert cli.main(["delete-pdf", "bad.pdf"]) == 0
    assert "bad.pdf deleted successfully" in capsys.readouterr().out
    assert [blob.filename for blob in asyncio.run(services.blobs.list_blobs())] == ["a.pdf"]


def test_cli_check_storage_exit_code(monkeypatch, capsys):
    services = Services(
        records=LegalRecords(InMemoryDocumentStore()),
        blobs=FlakyBlobStore(failing=set(), reachable=False),
    )
    monkeypatch.setattr(cli, "build_services", lambda settings: services)

    assert cli.main(["check-storage"]) == 1
    assert '"blob_store_ok": false' in capsys.readouterr().out
