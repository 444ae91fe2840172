"""Upload handling: validation, storage, registration and job hand-off."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Iterable, TYPE_CHECKING

from fastapi import UploadFile

from ..models.document import UploadedFile
from ..models.job import JobRecord
from ..observability import metrics_registry
from ..utils.errors import PayloadTooLargeError, ValidationError
from .object_store import storage_name_for

if TYPE_CHECKING:
    from ..dependencies import ServiceContainer

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB


def check_content_type(content_type: str | None, allowed: Iterable[str], *, label: str = "File") -> str:
    """Return the lower-cased type or raise :class:`ValidationError`."""

    normalised = (content_type or "").split(";", 1)[0].strip().lower()
    if not normalised or normalised not in set(allowed):
        raise ValidationError(f"{label} type {normalised or 'unknown'} not supported")
    return normalised


async def read_limited(upload: UploadFile, limit: int) -> bytes:
    """Read ``upload`` in chunks, failing as soon as ``limit`` bytes are exceeded."""

    chunks: list[bytes] = []
    total = 0
    try:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise PayloadTooLargeError(
                    f"File exceeds maximum allowed size of {limit} bytes",
                    details={"limit": limit},
                )
            chunks.append(chunk)
    finally:
        await upload.close()
    return b"".join(chunks)


def placeholder_analysis(uploaded: UploadedFile) -> dict[str, Any]:
    """Immediate analysis shown before the queued pipeline reports back."""

    if uploaded.is_image:
        return {
            "type": "image_analysis",
            "status": "queued",
            "description": "No description available",
            "objects": [],
            "tags": [],
            "categories": [],
        }
    return {
        "type": "document",
        "status": "uploaded",
        "message": "Document ready for processing",
    }


async def handle_upload(
    upload: UploadFile | None,
    *,
    session_id: str | None,
    services: "ServiceContainer",
) -> tuple[UploadedFile, JobRecord]:
    """Store, register and enqueue one uploaded file.

    The MIME type is checked before any bytes reach the object store.
    """

    if upload is None or not upload.filename:
        raise ValidationError("No file provided")
    settings = services.settings
    mime_type = check_content_type(upload.content_type, settings.allowed_upload_types)
    data = await read_limited(upload, settings.max_upload_size)

    metrics_registry.track_event("file_upload_started")
    original_name = upload.filename
    storage_name = storage_name_for(original_name)
    uploaded_at = datetime.now(UTC).isoformat()
    url = await asyncio.to_thread(
        services.object_store.put,
        storage_name,
        data,
        mime_type,
        {"originalName": original_name, "uploadTime": uploaded_at, "fileSize": str(len(data))},
    )

    uploaded = UploadedFile(
        id=uuid.uuid4().hex,
        name=original_name,
        storage_name=storage_name,
        mime_type=mime_type,
        size=len(data),
        url=url,
        upload_time=uploaded_at,
        session_id=session_id or uuid.uuid4().hex,
    )
    uploaded.analysis = placeholder_analysis(uploaded)
    services.registry.add(uploaded)

    job = await services.enqueue_file(uploaded)
    metrics_registry.track_event("file_upload_completed")
    logger.info("File upload completed: %s as %s (job %s)", original_name, storage_name, job.id)
    return uploaded, job


def upload_response(uploaded: UploadedFile, job: JobRecord) -> dict[str, Any]:
    return {
        "id": uploaded.id,
        "fileName": uploaded.name,
        "size": uploaded.size,
        "mimeType": uploaded.mime_type,
        "blobUrl": uploaded.url,
        "uploadTime": uploaded.upload_time,
        "analysis": uploaded.analysis,
        "sessionId": uploaded.session_id,
        "jobId": job.id,
    }


__all__ = [
    "CHUNK_SIZE",
    "check_content_type",
    "handle_upload",
    "placeholder_analysis",
    "read_limited",
    "upload_response",
]
