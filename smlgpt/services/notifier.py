"""Per-session publish/subscribe channel for realtime notifications."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)

FILE_PROCESSED = "file-processed"
CRITICAL_HAZARD_DETECTED = "critical-hazard-detected"
FILE_PROCESSING_ERROR = "file-processing-error"


class Notifier(ABC):
    """Delivers named events to every subscriber of a session."""

    @abstractmethod
    async def publish(self, session_id: str, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class JSONSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class SessionHub(Notifier):
    """Keeps WebSocket "rooms" keyed by session id.

    A socket may join several sessions. Sockets that fail on send are removed;
    :meth:`publish` never raises into the caller.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[JSONSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def join(self, session_id: str, socket: JSONSocket) -> None:
        async with self._lock:
            self._rooms[session_id].add(socket)
        logger.debug("Socket joined session %s", session_id)

    async def leave(self, session_id: str, socket: JSONSocket) -> None:
        async with self._lock:
            members = self._rooms.get(session_id)
            if members is None:
                return
            members.discard(socket)
            if not members:
                del self._rooms[session_id]

    async def disconnect(self, socket: JSONSocket) -> None:
        """Remove ``socket`` from every room it joined."""

        async with self._lock:
            for session_id in [key for key, members in self._rooms.items() if socket in members]:
                self._rooms[session_id].discard(socket)
                if not self._rooms[session_id]:
                    del self._rooms[session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._rooms.get(session_id, ()))

    async def publish(self, session_id, event, payload) -> None:
        async with self._lock:
            members = list(self._rooms.get(session_id, ()))
        if not members:
            logger.debug("No subscribers for %s on session %s", event, session_id)
            return

        message = {"event": event, "data": payload}
        dead: list[JSONSocket] = []
        for socket in members:
            try:
                await socket.send_json(message)
            except Exception as exc:  # noqa: BLE001 - any transport failure drops the socket
                logger.info("Dropping socket from session %s: %s", session_id, exc)
                dead.append(socket)
        for socket in dead:
            await self.disconnect(socket)


__all__ = [
    "CRITICAL_HAZARD_DETECTED",
    "FILE_PROCESSED",
    "FILE_PROCESSING_ERROR",
    "Notifier",
    "SessionHub",
]
