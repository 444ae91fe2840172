"""Request and provider-dependency metrics collection utilities."""

from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Dict, Iterator

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


@dataclass
class RouteStats:
    """Mutable statistics for a single route."""

    count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float | None = None
    max_duration_ms: float | None = None

    def record(self, duration_ms: float) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        self.min_duration_ms = (
            duration_ms
            if self.min_duration_ms is None
            else min(self.min_duration_ms, duration_ms)
        )
        self.max_duration_ms = (
            duration_ms
            if self.max_duration_ms is None
            else max(self.max_duration_ms, duration_ms)
        )

    def as_dict(self) -> Dict[str, float | int | None]:
        count = self.count or 1
        return {
            "count": self.count,
            "avg_duration_ms": self.total_duration_ms / count,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
        }


@dataclass
class DependencyStats(RouteStats):
    """Statistics for calls to one external provider operation."""

    failures: int = 0

    def as_dict(self) -> Dict[str, float | int | None]:
        payload = super().as_dict()
        payload["failures"] = self.failures
        return payload


class MetricsRegistry:
    """In-memory collector for lightweight request and dependency metrics."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._in_flight = 0
        self._requests_total = 0
        self._status_families: Counter[str] = Counter()
        self._routes: Dict[str, RouteStats] = {}
        self._dependencies: Dict[str, DependencyStats] = {}
        self._events: Counter[str] = Counter()

    def reset(self) -> None:
        """Reset all counters (useful for tests)."""

        with self._lock:
            self._in_flight = 0
            self._requests_total = 0
            self._status_families = Counter()
            self._routes = {}
            self._dependencies = {}
            self._events = Counter()

    def request_started(self) -> None:
        """Mark the start of a request."""

        with self._lock:
            self._in_flight += 1

    def request_finished(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_seconds: float,
    ) -> None:
        """Record request completion statistics."""

        duration_ms = max(duration_seconds * 1000.0, 0.0)
        route_key = f"{method.upper()} {path}"
        status_family = f"{status_code // 100}xx"

        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
            self._requests_total += 1
            self._status_families[status_family] += 1
            self._routes.setdefault(route_key, RouteStats()).record(duration_ms)

    def dependency_finished(
        self, name: str, *, success: bool, duration_seconds: float
    ) -> None:
        """Record the outcome of one outbound provider call."""

        duration_ms = max(duration_seconds * 1000.0, 0.0)
        with self._lock:
            stats = self._dependencies.setdefault(name, DependencyStats())
            stats.record(duration_ms)
            if not success:
                stats.failures += 1

    @contextmanager
    def track_dependency(self, name: str) -> Iterator[None]:
        """Time the wrapped block and record it as a dependency call."""

        start = perf_counter()
        try:
            yield
        except BaseException:
            self.dependency_finished(
                name, success=False, duration_seconds=perf_counter() - start
            )
            raise
        self.dependency_finished(
            name, success=True, duration_seconds=perf_counter() - start
        )

    def track_event(self, name: str) -> None:
        """Count a named business event (uploads, chat responses, jobs)."""

        with self._lock:
            self._events[name] += 1

    def snapshot(self) -> Dict[str, object]:
        """Return an immutable view of the current metrics."""

        with self._lock:
            return {
                "requests_total": self._requests_total,
                "in_flight": self._in_flight,
                "status_codes": dict(self._status_families),
                "routes": {key: stats.as_dict() for key, stats in self._routes.items()},
                "dependencies": {
                    key: stats.as_dict() for key, stats in self._dependencies.items()
                },
                "events": dict(self._events),
            }


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records request metrics."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        registry: MetricsRegistry | None = None,
    ) -> None:
        super().__init__(app)
        self._registry = registry or metrics_registry

    async def dispatch(self, request: Request, call_next):
        start = perf_counter()
        self._registry.request_started()
        try:
            response = await call_next(request)
        except Exception:  # pragma: no cover - re-raise after recording metrics
            duration = perf_counter() - start
            self._registry.request_finished(
                request.method, request.url.path, 500, duration
            )
            raise
        else:
            duration = perf_counter() - start
            self._registry.request_finished(
                request.method,
                request.url.path,
                getattr(response, "status_code", 200),
                duration,
            )
            return response


metrics_registry = MetricsRegistry()

__all__ = [
    "DependencyStats",
    "MetricsRegistry",
    "RequestMetricsMiddleware",
    "metrics_registry",
]
