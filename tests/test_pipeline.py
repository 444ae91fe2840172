"""Tests for the per-file analysis pipeline."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import pytest

from smlgpt.models.document import UploadedFile
from smlgpt.models.job import JobPayload
from smlgpt.services.pipeline import AnalysisPipeline
from smlgpt.services.registry import DocumentRegistry
from smlgpt.utils.errors import ExternalServiceError


def _register(registry: DocumentRegistry, *, file_id: str, name: str, mime: str) -> JobPayload:
    registry.add(
        UploadedFile(
            id=file_id,
            name=name,
            storage_name=f"1700000000000-{name}",
            mime_type=mime,
            size=12,
            url=f"file:///tmp/{name}",
            session_id="session-1",
        )
    )
    return JobPayload(
        file_id=file_id,
        file_name=name,
        file_url=f"file:///tmp/{name}",
        file_type=mime,
        session_id="session-1",
    )


def _pipeline(gateway, notifier, registry) -> AnalysisPipeline:
    return AnalysisPipeline(
        gateway,
        registry,
        notifier,
        clock=lambda: datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC),
    )


def test_image_pipeline_indexes_and_notifies(gateway, notifier):
    gateway.vision_text = "CRITICAL: fall hazard near edge\nHIGH: unguarded conveyor belt"
    registry = DocumentRegistry()
    payload = _register(registry, file_id="img-1", name="floor.png", mime="image/png")

    outcome = asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert outcome.success is True
    assert outcome.file_id == "img-1"
    assert gateway.called("analyze_image_for_hazards") == 1
    assert gateway.called("tag_and_describe_image") == 1
    assert gateway.called("index_record") == 1

    embedded = json.loads(gateway.calls[[name for name, _ in gateway.calls].index("embed")][1][0])
    assert embedded == {
        "fileName": "floor.png",
        "analysis": gateway.vision_text,
        "timestamp": "2025-01-02T03:04:05+00:00",
    }

    record = gateway.index.get("img-1")
    assert record is not None
    assert record["sessionId"] == "session-1"

    stored = registry.get("img-1")
    assert stored.analysis["kind"] == "image"
    assert "embedding" not in stored.analysis
    assert [hazard["severity"] for hazard in stored.analysis["hazards"]] == ["critical", "high"]

    events = [name for _, name, _ in notifier.events]
    assert events == ["critical-hazard-detected", "file-processed"]
    critical = notifier.named("critical-hazard-detected")[0]
    assert [hazard["description"] for hazard in critical["hazards"]] == ["fall hazard near edge"]
    processed = notifier.named("file-processed")[0]
    assert processed["fileId"] == "img-1"
    assert processed["fileName"] == "floor.png"


def test_no_critical_event_without_critical_hazards(gateway, notifier):
    registry = DocumentRegistry()
    payload = _register(registry, file_id="img-2", name="desk.jpg", mime="image/jpeg")

    asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert [name for _, name, _ in notifier.events] == ["file-processed"]


def test_one_failing_image_call_fails_the_run_without_indexing(gateway, notifier):
    gateway.failures["tag_and_describe_image"] = ExternalServiceError("Computer Vision", "503")
    registry = DocumentRegistry()
    payload = _register(registry, file_id="img-3", name="yard.png", mime="image/png")

    with pytest.raises(ExternalServiceError):
        asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert gateway.called("index_record") == 0
    assert len(gateway.index) == 0
    assert notifier.events == []
    assert registry.get("img-3").analysis == {}


def test_pdf_uses_document_analysis(gateway, notifier):
    registry = DocumentRegistry()
    payload = _register(registry, file_id="doc-1", name="permit.pdf", mime="application/pdf")

    outcome = asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert gateway.called("analyze_document") == 1
    assert gateway.called("analyze_image_for_hazards") == 0
    assert outcome.analysis["kind"] == "document"
    assert outcome.analysis["hazards"][0]["severity"] == "medium"


def test_unsupported_type_produces_empty_analysis(gateway, notifier):
    registry = DocumentRegistry()
    payload = _register(registry, file_id="txt-1", name="notes.txt", mime="text/plain")

    outcome = asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert outcome.success is True
    assert outcome.analysis["kind"] == "none"
    assert outcome.analysis["hazards"] == []
    assert gateway.called("analyze_document") == 0
    assert gateway.called("index_record") == 1


def test_embedding_failure_fails_before_index(gateway, notifier):
    gateway.failures["embed"] = ExternalServiceError("Azure OpenAI Embeddings", "timeout")
    registry = DocumentRegistry()
    payload = _register(registry, file_id="doc-2", name="sds.pdf", mime="application/pdf")

    with pytest.raises(ExternalServiceError):
        asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert gateway.called("index_record") == 0
    assert notifier.events == []


def test_index_failure_leaves_registry_and_subscribers_untouched(gateway, notifier):
    gateway.vision_text = "CRITICAL: open trench without barrier"
    gateway.failures["index_record"] = ExternalServiceError("Azure AI Search", "503 Service Unavailable")
    registry = DocumentRegistry()
    payload = _register(registry, file_id="img-4", name="trench.png", mime="image/png")

    with pytest.raises(ExternalServiceError):
        asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert gateway.called("embed") == 1
    assert gateway.called("index_record") == 1
    assert len(gateway.index) == 0
    stored = registry.get("img-4")
    assert stored.analysis == {}
    assert stored.processed_at is None
    assert notifier.events == []


def test_index_record_keeps_signed_address_out(gateway, notifier):
    registry = DocumentRegistry()
    payload = _register(registry, file_id="img-5", name="dock.png", mime="image/png")
    payload.file_url = "https://acct.blob.core.windows.net/uploads/1-dock.png?sv=1&sig=secret"

    asyncio.run(_pipeline(gateway, notifier, registry).process(payload))

    assert gateway.calls[0][1][0] == payload.file_url
    assert gateway.index.get("img-5")["fileUrl"] == "https://acct.blob.core.windows.net/uploads/1-dock.png"
    assert "sig=" not in json.dumps(notifier.events)
