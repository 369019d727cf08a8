from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from legalbridge.config import Settings
from legalbridge.services.blob_store import BlobStore, build_blob_store
from legalbridge.services.completion import CompletionClient, build_completion_client
from legalbridge.services.document_store import LegalRecords, build_document_store


@dataclass
class Services:
    records: LegalRecords
    blobs: BlobStore
    completion: CompletionClient | None = None


def build_services(settings: Settings) -> Services:
    return Services(
        records=LegalRecords(build_document_store(settings)),
        blobs=build_blob_store(settings),
        completion=build_completion_client(settings.completion_url),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_records(request: Request) -> LegalRecords:
    return get_services(request).records


def get_blob_store(request: Request) -> BlobStore:
    return get_services(request).blobs


def get_completion_client(request: Request) -> CompletionClient | None:
    return get_services(request).completion
