"""Routes that expose operational observability data."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from .. import __version__
from ..dependencies import ServiceContainer, get_services
from ..observability import metrics_registry

router = APIRouter(prefix="/api", tags=["observability"])


@router.get("/metrics")
async def read_metrics(services: ServiceContainer = Depends(get_services)) -> dict[str, object]:
    """Return the request, dependency and job metrics snapshot."""

    jobs = await asyncio.to_thread(services.queue.counts)
    return {
        "app": {"version": __version__},
        "metrics": metrics_registry.snapshot(),
        "jobs": jobs,
    }


__all__ = ["router"]
