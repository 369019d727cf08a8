from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from legalbridge.config import Settings
from legalbridge.dependencies import Services


@dataclass
class StartupCheckResult:
    ok: bool
    errors: list[str]
    warnings: list[str]


def _is_writable_path(path: Path) -> bool:
    if path.exists():
        return os.access(path, os.W_OK)
    try:
        path.mkdir(parents=True, exist_ok=True)
        test_file = path / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def run_startup_preflight(settings: Settings, services: Services) -> StartupCheckResult:
    errors: list[str] = []
    warnings: list[str] = []

    document_backend = services.records.store.backend_name
    if document_backend == "memory":
        warnings.append("Document store is in-memory; cases and document metadata are lost on restart.")
    elif document_backend == "sql":
        db_url = settings.database_url
        if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
            db_parent = Path(db_url.replace("sqlite:///", "", 1)).expanduser().parent
            if not _is_writable_path(db_parent):
                errors.append(f"Database directory is not writable: {db_parent.resolve()}")

    if services.blobs.backend_name == "memory":
        warnings.append("Upload service is in-memory; uploaded PDFs are lost on restart.")

    if services.completion is None:
        warnings.append("COMPLETION_URL is blank; assistant replies on cases are disabled.")

    return StartupCheckResult(ok=not errors, errors=errors, warnings=warnings)
