from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path

import uvicorn

from legalbridge.config import get_settings
from legalbridge.dependencies import Services, build_services
from legalbridge.logging_config import configure_logging
from legalbridge.services.migration import (
    check_storage,
    cleanup_local_files,
    migrate_local_data,
    migrate_pdfs,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legalbridge-admin",
        description="Migrate local LegalBridge data and inspect cloud storage",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    migrate = commands.add_parser("migrate", help="Replay cases, documents, graph data and PDFs")
    migrate.add_argument("--data-dir", default=".")

    migrate_pdf = commands.add_parser("migrate-pdfs", help="Upload every PDF in a directory")
    migrate_pdf.add_argument("--pdf-dir", default="pdfs")

    commands.add_parser("check-storage", help="Ping the document store and the upload service")
    commands.add_parser("list-pdfs", help="List stored PDFs (first 100)")

    delete = commands.add_parser("delete-pdf", help="Delete a stored PDF by filename")
    delete.add_argument("filename")

    cleanup = commands.add_parser("cleanup", help="Back up and remove the local JSON files and pdfs/")
    cleanup.add_argument("--data-dir", default=".")
    cleanup.add_argument("--backup-dir", default="backup-local-files")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5001)
    return parser


async def _run(args: argparse.Namespace, services: Services) -> int:
    if args.command == "migrate":
        report = await migrate_local_data(Path(args.data_dir), services.records, services.blobs)
        print(f"Migrated {len(report.migrated)} items, {len(report.failed)} failed")
        return 0
    if args.command == "migrate-pdfs":
        report = await migrate_pdfs(Path(args.pdf_dir), services.blobs)
        if "connection" in report.failed:
            print("Upload service connection failed; check the Cloudinary settings.")
            return 1
        print(f"Uploaded {len(report.migrated)} PDFs, {len(report.failed)} failed")
        return 0
    if args.command == "check-storage":
        status = await check_storage(services.records, services.blobs)
        print(json.dumps(asdict(status), indent=2))
        return 0 if status.document_store_ok and status.blob_store_ok else 1
    if args.command == "list-pdfs":
        for blob in await services.blobs.list_blobs():
            print(json.dumps(asdict(blob)))
        return 0
    if args.command == "delete-pdf":
        result = await services.blobs.delete(args.filename)
        print(result["message"])
        return 0
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "serve":
        uvicorn.run("legalbridge.main:app", host=args.host, port=args.port)
        return 0

    if args.command == "cleanup":
        removed = cleanup_local_files(Path(args.data_dir), Path(args.backup_dir))
        print(f"Backed up and removed: {', '.join(removed) or 'nothing'}")
        return 0

    return asyncio.run(_run(args, build_services(settings)))


if __name__ == "__main__":
    raise SystemExit(main())
