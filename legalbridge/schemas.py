from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CaseMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    type: Literal["user", "assistant"]
    content: str = ""
    timestamp: str | None = None


class CasePayload(BaseModel):
    """Body of POST/PUT on cases.

    Unknown client fields are kept and stored verbatim; only the fields the
    caller actually sent are written.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    messages: list[CaseMessage] | None = None

    def to_record(self) -> dict:
        return self.model_dump(exclude_unset=True)


class MessagesResponse(BaseModel):
    messages: list[dict] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str


class PdfPayload(BaseModel):
    filename: str
    base64: str
    mimeType: str = "application/pdf"


class UploadResponse(BaseModel):
    filename: str
    message: str
    url: str
    publicId: str
    cloudinary: bool = True


class HealthView(BaseModel):
    status: Literal["ok", "degraded"]
    app_version: str
    document_backend: str
    blob_backend: str
    completion_enabled: bool
    startup_errors: list[str] = Field(default_factory=list)
    startup_warnings: list[str] = Field(default_factory=list)
