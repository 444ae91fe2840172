"""ASGI middleware utilities for the SMLGPT backend."""

from .rate_limit import FixedWindowLimiter, RateLimitMiddleware
from .request_context import RequestIdMiddleware, get_request_id
from .security import SecurityHeadersMiddleware

__all__ = [
    "FixedWindowLimiter",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "SecurityHeadersMiddleware",
    "get_request_id",
]
