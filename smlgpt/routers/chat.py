"""Chat endpoint for the safety assistant."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from ..dependencies import ServiceContainer, get_services
from ..services import chat as chat_service

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat")
async def post_chat(
    body: Optional[Dict[str, Any]] = Body(None),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """Answer one user message, optionally grounded in uploaded documents."""

    reply = await chat_service.answer(
        body or {},
        gateway=services.gateway,
        registry=services.registry,
        settings=services.settings,
    )
    return {"success": True, "data": reply.as_dict()}


__all__ = ["router"]
