"""SMLGPT backend entrypoint."""

from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import Settings, get_settings
from .database import init_db
from .dependencies import ServiceContainer, build_services
from .middleware import (
    RateLimitMiddleware,
    RequestIdMiddleware,
    SecurityHeadersMiddleware,
    get_request_id,
)
from .observability import RequestMetricsMiddleware
from .routers import api_router
from .utils.errors import AppError, error_envelope
from .utils.logging import configure_logging

logger = logging.getLogger("smlgpt.main")

_HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "FILE_TOO_LARGE",
    429: "RATE_LIMITED",
}


def _cors_settings(settings: Settings) -> tuple[list[str], bool]:
    origins = list(settings.cors_origins)
    if "*" in origins:
        return ["*"], False
    return origins or ["http://localhost:3000"], True


def _log_failure(request: Request, status_code: int, message: str, *, exc: BaseException | None = None) -> None:
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s %s -> %d %s (request_id=%s)",
        request.method,
        request.url.path,
        status_code,
        message,
        get_request_id("-"),
        exc_info=exc if status_code >= 500 else None,
    )


def _envelope(
    settings: Settings,
    message: str,
    code: str,
    *,
    exc: BaseException | None = None,
    details: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    if not settings.is_development:
        return error_envelope(message, code)
    stack = "".join(traceback.format_exception(exc)) if exc is not None else None
    return error_envelope(message, code, stack=stack, details=details)


def _install_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        _log_failure(request, exc.status_code, exc.message, exc=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(settings, exc.message, exc.code, exc=exc, details=exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        _log_failure(request, 400, "request validation failed")
        return JSONResponse(
            status_code=400,
            content=_envelope(
                settings,
                "Invalid request",
                "VALIDATION_ERROR",
                exc=exc,
                details={"errors": jsonable_errors(exc)},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        _log_failure(request, exc.status_code, message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(settings, message, _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        _log_failure(request, 500, "unhandled exception", exc=exc)
        message = str(exc) if settings.is_development else "Internal Server Error"
        return JSONResponse(
            status_code=500,
            content=_envelope(settings, message, "INTERNAL_ERROR", exc=exc),
        )


def jsonable_errors(exc: RequestValidationError) -> list[Dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def create_app(services: ServiceContainer | None = None, *, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    ``services`` lets callers supply pre-built collaborators; otherwise they
    are constructed from settings when the app starts.
    """

    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        container: ServiceContainer | None = getattr(app.state, "services", None)
        if container is None:
            container = build_services(settings)
            app.state.services = container
        if container.worker is not None:
            await container.worker.start()
        logger.info("Starting SMLGPT V%s backend (%s)", __version__, settings.app_env)
        try:
            yield
        finally:
            if container.worker is not None:
                await container.worker.stop()

    app = FastAPI(title="SMLGPT", version=__version__, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    origins, allow_credentials = _cors_settings(settings)
    app.add_middleware(
        RateLimitMiddleware,
        window_ms=settings.rate_limit_window_ms,
        max_requests=settings.rate_limit_max_requests,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestMetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    _install_exception_handlers(app, settings)
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
