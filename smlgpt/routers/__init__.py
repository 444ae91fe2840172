"""API router package."""

from fastapi import APIRouter

from .chat import router as chat_router
from .documents import router as documents_router
from .health import router as health_router
from .observability import router as observability_router
from .realtime import router as realtime_router
from .speech import router as speech_router
from .upload import router as upload_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(chat_router)
api_router.include_router(upload_router)
api_router.include_router(documents_router)
api_router.include_router(speech_router)
api_router.include_router(observability_router)
api_router.include_router(realtime_router)

__all__ = ["api_router"]
