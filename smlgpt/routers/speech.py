"""Speech-to-text and text-to-speech endpoints."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, Response, UploadFile

from ..dependencies import ServiceContainer, get_services
from ..observability import metrics_registry
from ..services.uploads import check_content_type, read_limited
from ..utils.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/speech", tags=["speech"])


@router.post("/speech-to-text")
async def speech_to_text(
    audio: Optional[UploadFile] = File(None),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    if audio is None:
        raise ValidationError("No audio file provided")
    settings = services.settings
    mime_type = check_content_type(audio.content_type, settings.allowed_audio_types, label="Audio")
    data = await read_limited(audio, settings.max_audio_size)

    started = time.perf_counter()
    result = await asyncio.to_thread(services.gateway.transcribe, data, mime_type)
    duration_ms = int((time.perf_counter() - started) * 1000)
    if not result.text:
        logger.warning("No speech recognized in audio file")
    metrics_registry.track_event("speech_to_text_completed")
    return {
        "success": True,
        "data": {
            "transcription": result.text,
            "confidence": result.confidence,
            "duration_ms": duration_ms,
            "recognition_status": result.status,
        },
    }


@router.post("/text-to-speech")
async def text_to_speech(
    body: Optional[Dict[str, Any]] = Body(None),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    body = body or {}
    text = body.get("text")
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Text is required and must be a string")
    voice = body.get("voice") or services.settings.default_voice
    if not isinstance(voice, str):
        raise ValidationError("Voice must be a string")

    audio = await asyncio.to_thread(services.gateway.synthesize, text, voice)
    metrics_registry.track_event("text_to_speech_completed")
    return Response(content=audio, media_type="audio/mpeg")


__all__ = ["router"]
