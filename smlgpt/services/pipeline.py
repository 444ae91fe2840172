"""Analysis pipeline turning one uploaded file into an indexed, broadcast analysis."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any, Callable, TypeVar

from ..models.analysis import (
    AnalysisResult,
    DocumentAnalysis,
    EmptyAnalysis,
    ImageAnalysis,
)
from ..models.job import JobPayload
from ..observability import metrics_registry
from .gateway import AIProvider
from .hazards import HazardExtractor, SeverityMarkerExtractor, critical_only
from .notifier import CRITICAL_HAZARD_DETECTED, FILE_PROCESSED, Notifier
from .object_store import public_url
from .prompts import IMAGE_ANALYSIS_USER_PROMPT, SAFETY_ANALYSIS_PROMPT
from .registry import DocumentRegistry
from .vector_index import VECTOR_FIELD

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_document_type(file_type: str) -> bool:
    lowered = file_type.lower()
    return lowered == "application/pdf" or "document" in lowered


@dataclass(slots=True)
class JobOutcome:
    success: bool
    file_id: str
    analysis: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "fileId": self.file_id, "analysis": self.analysis}


class AnalysisPipeline:
    """Runs the per-file sequence: analysis, hazards, embedding, index, notify.

    Step order is fixed. The index write is the last external write, so a
    failure anywhere before it leaves nothing indexed for the attempt; the
    registry update and notifications only happen after it succeeds.
    """

    def __init__(
        self,
        gateway: AIProvider,
        registry: DocumentRegistry,
        notifier: Notifier,
        *,
        extractor: HazardExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.notifier = notifier
        self.extractor = extractor or SeverityMarkerExtractor()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def analyze(self, payload: JobPayload) -> AnalysisResult:
        """Call the providers appropriate for ``payload.file_type``."""

        file_type = payload.file_type.lower()
        if file_type.startswith("image/"):
            vision_text, tagging = await asyncio.gather(
                self._run(
                    self.gateway.analyze_image_for_hazards,
                    payload.file_url,
                    SAFETY_ANALYSIS_PROMPT,
                    IMAGE_ANALYSIS_USER_PROMPT,
                ),
                self._run(self.gateway.tag_and_describe_image, payload.file_url),
            )
            return ImageAnalysis(vision_text=vision_text, tagging=tagging)
        if is_document_type(file_type):
            extraction = await self._run(self.gateway.analyze_document, payload.file_url)
            return DocumentAnalysis(extraction=extraction)
        logger.info("No analyser for %s (%s); producing empty analysis", payload.file_name, file_type)
        return EmptyAnalysis()

    async def process(self, payload: JobPayload) -> JobOutcome:
        logger.info("Processing file: %s (%s)", payload.file_name, payload.file_id)

        analysis = await self.analyze(payload)
        analysis.hazards = self.extractor.extract(analysis.best_text())

        timestamp = self._clock().isoformat()
        analysis.analyzed_at = timestamp
        content = json.dumps(
            {
                "fileName": payload.file_name,
                "analysis": analysis.best_text(),
                "timestamp": timestamp,
            }
        )
        vector = await self._run(self.gateway.embed, content)
        analysis.embedding = [float(value) for value in vector]

        public = analysis.public_dump()
        record = {
            "id": payload.file_id,
            "fileName": payload.file_name,
            "fileType": payload.file_type,
            "fileUrl": public_url(payload.file_url),
            "content": content,
            VECTOR_FIELD: analysis.embedding,
            "analysis": json.dumps(public),
            "timestamp": timestamp,
            "sessionId": payload.session_id,
        }
        await self._run(self.gateway.index_record, record)

        self.registry.attach_analysis(payload.file_id, public)

        critical = critical_only(analysis.hazards)
        if critical:
            metrics_registry.track_event("critical_hazard_detected")
            await self.notifier.publish(
                payload.session_id,
                CRITICAL_HAZARD_DETECTED,
                {
                    "fileId": payload.file_id,
                    "fileName": payload.file_name,
                    "hazards": [hazard.model_dump(mode="json") for hazard in critical],
                },
            )
        await self.notifier.publish(
            payload.session_id,
            FILE_PROCESSED,
            {"fileId": payload.file_id, "fileName": payload.file_name, "analysis": public},
        )
        logger.info("Successfully processed file: %s", payload.file_name)
        return JobOutcome(success=True, file_id=payload.file_id, analysis=public)


__all__ = ["AnalysisPipeline", "JobOutcome", "is_document_type"]
