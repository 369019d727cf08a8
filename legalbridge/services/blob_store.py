from __future__ import annotations

import base64
import re
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader
import httpx
import structlog
from fastapi.concurrency import run_in_threadpool

from legalbridge.config import Settings

logger = structlog.get_logger()

PDF_MIME_TYPE = "application/pdf"
MAX_LISTED_RESOURCES = 100


class BlobStoreError(RuntimeError):
    pass


class BlobNotFoundError(BlobStoreError):
    pass


@dataclass
class UploadResult:
    filename: str
    url: str
    public_id: str
    resource_type: str
    byte_count: int


@dataclass
class BlobResource:
    public_id: str
    secure_url: str
    original_filename: str | None = None
    byte_count: int | None = None
    created_at: str | None = None


@dataclass
class StoredBlob:
    filename: str
    url: str
    public_id: str
    size: int | None
    created_at: str | None


@dataclass
class FetchedPdf:
    filename: str
    base64: str
    mime_type: str = PDF_MIME_TYPE


def normalize_public_name(filename: str) -> str:
    stem = re.sub(r"\.[^/.]+$", "", filename)
    return re.sub(r"[^a-zA-Z0-9_-]", "_", stem)


def listed_filename(public_id: str) -> str:
    return f"{public_id.split('/')[-1]}.pdf"


def resource_matches(resource: BlobResource, filename: str) -> bool:
    return (
        listed_filename(resource.public_id) == filename
        or normalize_public_name(filename) in resource.public_id
        or resource.original_filename == filename
    )


class BlobStore:
    """PDF blob storage with a best-effort lookup by human filename.

    Subclasses provide the raw primitives; `fetch` walks the candidate URLs
    (stored identifier variants first, folder listing second) and stops at the
    first one that answers.
    """

    backend_name: str

    def __init__(self, folder: str = "pdfs"):
        self.folder = folder.strip("/")

    def derived_public_id(self, filename: str) -> str:
        return f"{self.folder}/{normalize_public_name(filename)}"

    async def upload(self, data: bytes, filename: str) -> UploadResult:
        raise NotImplementedError

    async def delete(self, filename: str) -> dict[str, Any]:
        raise NotImplementedError

    async def list_resources(self) -> list[BlobResource]:
        raise NotImplementedError

    async def read_url(self, url: str) -> bytes | None:
        raise NotImplementedError

    def variant_urls(self, public_id: str, stored_url: str | None) -> list[str]:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError

    async def list_blobs(self) -> list[StoredBlob]:
        resources = await self.list_resources()
        return [
            StoredBlob(
                filename=listed_filename(resource.public_id),
                url=resource.secure_url,
                public_id=resource.public_id,
                size=resource.byte_count,
                created_at=resource.created_at,
            )
            for resource in resources[:MAX_LISTED_RESOURCES]
        ]

    async def _find_listed(self, filename: str) -> BlobResource | None:
        try:
            resources = await self.list_resources()
        except Exception as exc:  # noqa: BLE001
            logger.error("blob_listing_failed", filename=filename, error=str(exc))
            return None
        logger.info("blob_listing_searched", filename=filename, candidates=len(resources))
        for resource in resources[:MAX_LISTED_RESOURCES]:
            if resource_matches(resource, filename):
                return resource
        return None

    async def _candidate_urls(self, filename: str, metadata: dict[str, Any] | None) -> AsyncIterator[str]:
        public_id = (metadata or {}).get("cloudinaryPublicId")
        if public_id:
            stored_url = metadata.get("cloudinaryUrl") or metadata.get("url")
            for url in self.variant_urls(public_id, stored_url):
                if url:
                    yield url
            logger.info("blob_variants_exhausted", filename=filename, public_id=public_id)
        resource = await self._find_listed(filename)
        if resource is not None:
            yield resource.secure_url

    async def fetch(self, filename: str, metadata: dict[str, Any] | None = None) -> FetchedPdf:
        async with aclosing(self._candidate_urls(filename, metadata)) as candidates:
            async for url in candidates:
                content = await self.read_url(url)
                if content is not None:
                    logger.info("blob_resolved", filename=filename, url=url)
                    return FetchedPdf(filename=filename, base64=base64.b64encode(content).decode("ascii"))
        raise BlobNotFoundError(f"File {filename} not found")


class CloudinaryBlobStore(BlobStore):
    backend_name = "cloudinary"
    listed_resource_types = ("image", "raw")

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "pdfs",
        delivery_base: str = "https://res.cloudinary.com",
        http_client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
    ):
        super().__init__(folder)
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.delivery_base = delivery_base.rstrip("/")
        self._http_client_factory = http_client_factory

    def _auth(self) -> dict[str, Any]:
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "secure": True,
        }

    async def upload(self, data: bytes, filename: str) -> UploadResult:
        data_uri = f"data:{PDF_MIME_TYPE};base64,{base64.b64encode(data).decode('ascii')}"
        try:
            result = await run_in_threadpool(
                cloudinary.uploader.upload,
                data_uri,
                resource_type="auto",
                folder=self.folder,
                public_id=normalize_public_name(filename),
                use_filename=False,
                unique_filename=True,
                overwrite=False,
                **self._auth(),
            )
        except cloudinary.exceptions.Error as exc:
            raise BlobStoreError(f"Upload of {filename} failed: {exc}") from exc
        logger.info("blob_uploaded", filename=filename, public_id=result.get("public_id"))
        return UploadResult(
            filename=filename,
            url=result.get("secure_url", ""),
            public_id=result.get("public_id", ""),
            resource_type=result.get("resource_type", ""),
            byte_count=int(result.get("bytes") or len(data)),
        )

    async def delete(self, filename: str) -> dict[str, Any]:
        public_id = self.derived_public_id(filename)
        try:
            result = await run_in_threadpool(
                cloudinary.uploader.destroy,
                public_id,
                resource_type="image",
                invalidate=True,
                **self._auth(),
            )
        except cloudinary.exceptions.Error as exc:
            raise BlobStoreError(f"Delete of {filename} failed: {exc}") from exc
        logger.info("blob_deleted", filename=filename, public_id=public_id, result=result.get("result"))
        return {"message": f"{filename} deleted successfully", "result": result}

    async def list_resources(self) -> list[BlobResource]:
        resources: list[BlobResource] = []
        for resource_type in self.listed_resource_types:
            try:
                payload = await run_in_threadpool(
                    cloudinary.api.resources,
                    type="upload",
                    prefix=f"{self.folder}/",
                    resource_type=resource_type,
                    max_results=MAX_LISTED_RESOURCES,
                    **self._auth(),
                )
            except cloudinary.exceptions.Error as exc:
                raise BlobStoreError(f"Listing {self.folder}/ failed: {exc}") from exc
            for item in payload.get("resources", []):
                resources.append(
                    BlobResource(
                        public_id=str(item.get("public_id", "")),
                        secure_url=str(item.get("secure_url", "")),
                        original_filename=item.get("original_filename"),
                        byte_count=item.get("bytes"),
                        created_at=item.get("created_at"),
                    )
                )
        return resources[:MAX_LISTED_RESOURCES]

    def variant_urls(self, public_id: str, stored_url: str | None) -> list[str]:
        base = f"{self.delivery_base}/{self.cloud_name}"
        return [
            f"{base}/image/upload/{public_id}.pdf",
            f"{base}/raw/upload/{public_id}.pdf",
            f"{base}/auto/upload/{public_id}.pdf",
            stored_url or "",
        ]

    async def read_url(self, url: str) -> bytes | None:
        try:
            async with self._http_client_factory() as client:
                response = await client.get(url, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.info("blob_url_failed", url=url, error=str(exc))
            return None
        if not response.is_success:
            logger.info("blob_url_rejected", url=url, status=response.status_code)
            return None
        return response.content

    async def ping(self) -> bool:
        try:
            await run_in_threadpool(cloudinary.api.ping, **self._auth())
        except Exception as exc:  # noqa: BLE001
            logger.error("cloudinary_ping_failed", error=str(exc))
            return False
        return True


@dataclass
class _MemoryBlob:
    data: bytes
    original_filename: str
    created_at: str


class InMemoryBlobStore(BlobStore):
    """Process-local stand-in for the upload service."""

    backend_name = "memory"
    url_prefix = "memory://blobs/"

    def __init__(self, folder: str = "pdfs"):
        super().__init__(folder)
        self._blobs: dict[str, _MemoryBlob] = {}

    def _url(self, public_id: str) -> str:
        return f"{self.url_prefix}{public_id}.pdf"

    async def upload(self, data: bytes, filename: str) -> UploadResult:
        public_id = self.derived_public_id(filename)
        if public_id in self._blobs:
            public_id = f"{public_id}_{uuid4().hex[:6]}"
        self._blobs[public_id] = _MemoryBlob(
            data=data,
            original_filename=filename,
            created_at=datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
        )
        return UploadResult(
            filename=filename,
            url=self._url(public_id),
            public_id=public_id,
            resource_type="image",
            byte_count=len(data),
        )

    async def delete(self, filename: str) -> dict[str, Any]:
        removed = self._blobs.pop(self.derived_public_id(filename), None)
        return {
            "message": f"{filename} deleted successfully",
            "result": {"result": "ok" if removed else "not found"},
        }

    async def list_resources(self) -> list[BlobResource]:
        return [
            BlobResource(
                public_id=public_id,
                secure_url=self._url(public_id),
                original_filename=blob.original_filename,
                byte_count=len(blob.data),
                created_at=blob.created_at,
            )
            for public_id, blob in list(self._blobs.items())[:MAX_LISTED_RESOURCES]
        ]

    def variant_urls(self, public_id: str, stored_url: str | None) -> list[str]:
        return [self._url(public_id), stored_url or ""]

    async def read_url(self, url: str) -> bytes | None:
        if not url.startswith(self.url_prefix):
            return None
        blob = self._blobs.get(url[len(self.url_prefix):].removesuffix(".pdf"))
        return blob.data if blob else None

    async def ping(self) -> bool:
        return True


def build_blob_store(settings: Settings) -> BlobStore:
    backend = settings.blob_backend.lower()
    if backend == "auto":
        backend = "cloudinary" if settings.has_cloudinary_credentials else "memory"
    if backend == "cloudinary":
        if not settings.has_cloudinary_credentials:
            raise BlobStoreError(
                "Cloudinary credentials are not configured. Set CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )
        return CloudinaryBlobStore(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
            delivery_base=settings.cloudinary_delivery_base,
        )
    if backend == "memory":
        return InMemoryBlobStore(folder=settings.cloudinary_folder)
    raise BlobStoreError(f"Unsupported blob backend: {settings.blob_backend}")
