"""Uploaded file model held by the document registry."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class UploadedFile(BaseModel):
    """Represents a file accepted by the upload endpoint."""

    id: str = Field(description="Registry identifier for the uploaded file.")
    name: str = Field(description="Original filename supplied by the client.")
    storage_name: str = Field(description="Name of the object in the object store.")
    mime_type: str
    size: int = Field(description="Size of the uploaded file in bytes.")
    url: str = Field(description="Retrievable address in the object store.")
    upload_time: str = Field(default_factory=_utcnow_iso)
    session_id: str
    analysis: dict[str, Any] = Field(
        default_factory=dict,
        description="Latest analysis payload, replaced wholesale on re-processing.",
    )
    processed_at: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


__all__ = ["UploadedFile"]
