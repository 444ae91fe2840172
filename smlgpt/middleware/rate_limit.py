"""Fixed-window request rate limiting for the public API."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Callable, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..utils.errors import error_envelope


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowLimiter:
    """Count hits per key inside consecutive fixed-length windows."""

    def __init__(
        self,
        *,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = Lock()
        self._windows: Dict[str, _Window] = {}

    def hit(self, key: str) -> tuple[bool, int, float]:
        """Register a hit and return ``(allowed, remaining, reset_in_seconds)``."""

        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.started_at >= self.window_seconds:
                window = _Window(started_at=now)
                self._windows[key] = window
                self._evict_expired(now)
            window.count += 1
            remaining = max(self.max_requests - window.count, 0)
            reset_in = max(self.window_seconds - (now - window.started_at), 0.0)
            return window.count <= self.max_requests, remaining, reset_in

    def reset(self) -> None:
        with self._lock:
            self._windows = {}

    def _evict_expired(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests beyond the configured limit under ``path_prefix``."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        window_ms: int,
        max_requests: int,
        path_prefix: str = "/api",
        limiter: FixedWindowLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self._path_prefix = path_prefix
        self._enabled = max_requests > 0 and window_ms > 0
        self.limiter = limiter or FixedWindowLimiter(
            window_seconds=window_ms / 1000.0, max_requests=max_requests
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled or not request.url.path.startswith(self._path_prefix):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        allowed, remaining, reset_in = self.limiter.hit(client)
        limit_headers = {
            "X-RateLimit-Limit": str(self.limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
        }
        if not allowed:
            limit_headers["Retry-After"] = str(int(reset_in) + 1)
            return JSONResponse(
                status_code=429,
                content=error_envelope(
                    "Too many requests from this IP, please try again later.",
                    "RATE_LIMITED",
                ),
                headers=limit_headers,
            )

        response = await call_next(request)
        response.headers.update(limit_headers)
        return response


__all__ = ["FixedWindowLimiter", "RateLimitMiddleware"]
