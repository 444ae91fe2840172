"""File upload and listing endpoints."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile

from ..dependencies import ServiceContainer, get_services
from ..services.uploads import handle_upload, upload_response

router = APIRouter(prefix="/api/upload", tags=["upload"])


@router.post("")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    session_id: Optional[str] = Form(None),
    x_session_id: Optional[str] = Header(None),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """Store an upload and queue it for analysis."""

    uploaded, job = await handle_upload(
        file,
        session_id=session_id or x_session_id,
        services=services,
    )
    return {"success": True, "data": upload_response(uploaded, job)}


@router.get("/files")
async def list_files(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Return registered uploads alongside what the object store holds."""

    stored = await asyncio.to_thread(services.object_store.list)
    files = [
        {
            "id": item.id,
            "name": item.name,
            "storageName": item.storage_name,
            "size": item.size,
            "mimeType": item.mime_type,
            "uploadTime": item.upload_time,
            "sessionId": item.session_id,
            "status": item.analysis.get("status", "processed") if item.analysis else "uploaded",
        }
        for item in services.registry.list()
    ]
    return {
        "success": True,
        "data": {
            "files": files,
            "stored": [
                {"name": item.name, "size": item.size, "url": item.url} for item in stored
            ],
        },
    }


__all__ = ["router"]
