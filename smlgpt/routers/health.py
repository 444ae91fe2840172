"""Liveness and readiness probes."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import __version__
from ..dependencies import ServiceContainer, get_services


class HealthResponse(BaseModel):
    """Schema describing the liveness payload."""

    status: str
    timestamp: str
    version: str


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse, summary="Service liveness")
def read_health() -> HealthResponse:
    """Return a liveness payload; never depends on provider configuration."""

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC).isoformat(),
        version=__version__,
    )


async def _status_payload(services: ServiceContainer) -> dict[str, object]:
    capabilities = services.gateway.capabilities
    queue_ok = await asyncio.to_thread(services.queue.ping)
    return {
        "backend": True,
        "openai": bool(capabilities.get("openai")),
        "vision": bool(capabilities.get("vision")),
        "speech": bool(capabilities.get("speech")),
        "documents": bool(capabilities.get("documents")),
        "search": bool(capabilities.get("search")),
        "storage": True,
        "storageBackend": services.object_store.name,
        "queue": queue_ok,
        "worker": bool(services.worker and services.worker.running),
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/api/status")
async def read_status(services: ServiceContainer = Depends(get_services)) -> dict[str, object]:
    """Report per-dependency readiness; always answers 200."""

    return await _status_payload(services)


@router.get("/api/status/health")
async def read_status_health(services: ServiceContainer = Depends(get_services)) -> dict[str, object]:
    payload = await _status_payload(services)
    return {"success": True, "status": "healthy", "services": payload}


__all__ = ["router", "HealthResponse", "read_health"]
