"""Process-local registry of uploaded files."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from threading import Lock
from typing import Any

from ..models.document import UploadedFile

logger = logging.getLogger(__name__)


class DocumentRegistry:
    """In-memory map from file id to :class:`UploadedFile`.

    The registry is injected wherever it is needed and is not shared across
    processes. Concurrent writers to the same id follow last-write-wins.
    """

    def __init__(self) -> None:
        self._files: dict[str, UploadedFile] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def add(self, uploaded: UploadedFile) -> UploadedFile:
        with self._lock:
            self._files[uploaded.id] = uploaded
        return uploaded

    def get(self, file_id: str) -> UploadedFile | None:
        with self._lock:
            return self._files.get(file_id)

    def list(self) -> list[UploadedFile]:
        with self._lock:
            files = list(self._files.values())
        return sorted(files, key=lambda item: item.upload_time, reverse=True)

    def attach_analysis(self, file_id: str, analysis: dict[str, Any]) -> UploadedFile | None:
        """Replace the stored analysis of ``file_id``; returns ``None`` if unknown."""

        with self._lock:
            current = self._files.get(file_id)
            if current is None:
                logger.warning("Analysis produced for unknown file %s", file_id)
                return None
            updated = current.model_copy(
                update={
                    "analysis": dict(analysis),
                    "processed_at": datetime.now(UTC).isoformat(),
                }
            )
            self._files[file_id] = updated
            return updated

    def context_text(self, file_id: str, *, limit: int | None = None) -> str | None:
        """Return ``"Document: <name>\\n<text>"`` for chat context, if known."""

        uploaded = self.get(file_id)
        if uploaded is None:
            return None
        content = _best_analysis_text(uploaded.analysis)
        if limit is not None and len(content) > limit:
            content = content[:limit]
        return f"Document: {uploaded.name}\n{content}"


def _best_analysis_text(analysis: dict[str, Any]) -> str:
    if not analysis:
        return ""
    for key in ("vision_text", "message"):
        value = analysis.get(key)
        if isinstance(value, str) and value.strip():
            return value
    extraction = analysis.get("extraction")
    if isinstance(extraction, dict) and extraction.get("extracted_text"):
        return str(extraction["extracted_text"])
    tagging = analysis.get("tagging")
    if isinstance(tagging, dict) and tagging.get("description"):
        return str(tagging["description"])
    description = analysis.get("description")
    return str(description) if description else ""


__all__ = ["DocumentRegistry"]
