from typing import Any

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from legalbridge.dependencies import get_blob_store, get_records
from legalbridge.schemas import PdfPayload, UploadResponse
from legalbridge.services.blob_store import PDF_MIME_TYPE, BlobNotFoundError, BlobStore
from legalbridge.services.document_store import LegalRecords

router = APIRouter(prefix="/api", tags=["documents"])
logger = structlog.get_logger()


@router.get("/documents")
async def list_documents(records: LegalRecords = Depends(get_records)) -> list[dict[str, Any]]:
    try:
        return await records.get_documents()
    except Exception as exc:  # noqa: BLE001
        logger.error("documents_read_failed", error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to read documents data") from exc


@router.get("/documents/{filename}", response_model=PdfPayload)
async def get_document(
    filename: str,
    records: LegalRecords = Depends(get_records),
    blobs: BlobStore = Depends(get_blob_store),
) -> PdfPayload:
    metadata = None
    try:
        metadata = await records.find_document(filename)
    except Exception as exc:  # noqa: BLE001
        logger.warning("document_metadata_lookup_failed", filename=filename, error=str(exc))

    try:
        pdf = await blobs.fetch(filename, metadata)
    except BlobNotFoundError as exc:
        logger.info("document_not_found", filename=filename)
        raise HTTPException(status_code=404, detail="File not found") from exc
    return PdfPayload(filename=pdf.filename, base64=pdf.base64, mimeType=pdf.mime_type)


@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    file: UploadFile | None = File(None),
    records: LegalRecords = Depends(get_records),
    blobs: BlobStore = Depends(get_blob_store),
) -> UploadResponse:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if file.content_type != PDF_MIME_TYPE:
        raise HTTPException(status_code=400, detail="Only PDF files are allowed!")

    content = await file.read()
    try:
        result = await blobs.upload(content, file.filename)
        await records.save_document_metadata(
            {
                "filename": file.filename,
                "originalName": file.filename,
                "size": len(content),
                "mimeType": file.content_type,
                "url": result.url,
                "cloudinaryPublicId": result.public_id,
                "cloudinaryUrl": result.url,
            }
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("document_upload_failed", filename=file.filename, error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to upload file") from exc

    return UploadResponse(
        filename=file.filename,
        message="File uploaded successfully to Cloudinary",
        url=result.url,
        publicId=result.public_id,
    )
