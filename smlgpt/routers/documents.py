"""Document retrieval, re-processing and search endpoints."""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import ServiceContainer, get_services
from ..models.document import UploadedFile
from ..utils.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/api/documents", tags=["documents"])


def _require_document(services: ServiceContainer, document_id: str) -> UploadedFile:
    uploaded = services.registry.get(document_id)
    if uploaded is None:
        raise NotFoundError("Document not found", code="DOCUMENT_NOT_FOUND")
    return uploaded


@router.get("/analysis/{document_id}")
async def read_analysis(
    document_id: str, services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    uploaded = _require_document(services, document_id)
    return {
        "success": True,
        "data": {
            "id": uploaded.id,
            "name": uploaded.name,
            "analysis": uploaded.analysis,
            "uploadTime": uploaded.upload_time,
            "processedAt": uploaded.processed_at,
            "size": uploaded.size,
            "mimeType": uploaded.mime_type,
        },
    }


@router.post("/process/{document_id}")
async def process_document(
    document_id: str, services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """Queue the analysis pipeline again for an uploaded document."""

    uploaded = _require_document(services, document_id)
    job = await services.enqueue_file(uploaded)
    return {
        "success": True,
        "data": {
            "id": uploaded.id,
            "jobId": job.id,
            "status": "queued",
            "message": "Document queued for processing",
        },
    }


@router.get("/search")
async def search_documents(
    query: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=50),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    if not query or not query.strip():
        raise ValidationError("Search query is required")

    started = time.perf_counter()
    vector = None
    if services.gateway.capabilities.get("embeddings"):
        vector = await asyncio.to_thread(services.gateway.embed, query)
    results = await asyncio.to_thread(
        lambda: services.gateway.search(query, vector=vector, top=limit)
    )
    return {
        "success": True,
        "data": {
            "query": query,
            "results": [hit.model_dump() for hit in results.hits],
            "totalCount": results.total_count,
            "searchTime": round((time.perf_counter() - started) * 1000.0, 3),
        },
    }


@router.get("/health")
async def documents_health(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "service": "document-processing",
            "documentsConfigured": bool(services.gateway.capabilities.get("documents")),
            "registeredDocuments": len(services.registry),
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }


__all__ = ["router"]
