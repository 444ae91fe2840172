"""Test configuration for SMLGPT."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import numpy as np
import pytest
from fastapi.testclient import TestClient

from smlgpt.config import get_settings, reset_settings_cache
from smlgpt.database import get_engine, reset_database_state
from smlgpt.dependencies import ServiceContainer, build_services
from smlgpt.models.analysis import DocumentExtraction, ImageTags, SearchResults, Transcription
from smlgpt.observability import metrics_registry
from smlgpt.services.gateway import AIProvider
from smlgpt.services.job_queue import JobQueue
from smlgpt.services.notifier import Notifier
from smlgpt.services.vector_index import LocalVectorIndex

_PROVIDER_KEYS = (
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_KEY",
    "AZURE_OPENAI_EMBEDDING_ENDPOINT",
    "AZURE_OPENAI_EMBEDDING_API_KEY",
    "AZURE_COMPUTER_VISION_ENDPOINT",
    "AZURE_COMPUTER_VISION_KEY",
    "AZURE_VISION_ENDPOINT",
    "AZURE_VISION_KEY",
    "AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT",
    "AZURE_DOCUMENT_INTELLIGENCE_KEY",
    "AZURE_SPEECH_KEY",
    "AZURE_SPEECH_REGION",
    "AZURE_SPEECH_ENDPOINT",
    "AZURE_SEARCH_ENDPOINT",
    "AZURE_SEARCH_ADMIN_KEY",
    "AZURE_STORAGE_CONTAINER_URL",
    "AZURE_BLOB_SAS_TOKEN",
    "APP_ENV",
    "NODE_ENV",
    "JOB_QUEUE_URL",
    "PORT",
    "CORS_ORIGIN",
    "AZURE_OPENAI_DEPLOYMENT_NAME",
    "ALLOWED_UPLOAD_TYPES",
    "ALLOWED_AUDIO_TYPES",
    "JOB_QUEUE_CONCURRENCY",
    "JOB_MAX_ATTEMPTS",
    "JOB_BACKOFF_BASE_SECONDS",
)


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Provide isolated configuration for each test."""

    for key in _PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SMLGPT_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'jobs.db'}")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("JOB_QUEUE_ENABLED", "0")
    monkeypatch.setenv("MAX_UPLOAD_SIZE", str(1024))
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "1000")
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()
    yield
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()


class FakeGateway(AIProvider):
    """Scriptable provider recording every call it receives."""

    def __init__(self) -> None:
        self.calls: List[tuple[str, tuple]] = []
        self.vision_text = "HIGH: unguarded conveyor belt\nLOW: cluttered walkway"
        self.tags = ImageTags(description="a factory floor", tags=[{"name": "conveyor"}])
        self.extraction = DocumentExtraction(extracted_text="MEDIUM: expired extinguisher tag")
        self.chat_reply: Optional[str] = "Wear your hard hat."
        self.transcription = Transcription(text="hello there", confidence=0.92, status="Success")
        self.audio = b"ID3fake-mp3"
        self.failures: Dict[str, Exception] = {}
        self.index = LocalVectorIndex()
        self.configured = {
            "openai": True,
            "embeddings": True,
            "vision": True,
            "documents": True,
            "speech": True,
            "search": False,
        }

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def called(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    @property
    def capabilities(self) -> Dict[str, bool]:
        return dict(self.configured)

    def analyze_image_for_hazards(self, image_url, system_prompt, user_prompt) -> str:
        self._record("analyze_image_for_hazards", image_url)
        return self.vision_text

    def tag_and_describe_image(self, image_url) -> ImageTags:
        self._record("tag_and_describe_image", image_url)
        return self.tags

    def analyze_document(self, document_url) -> DocumentExtraction:
        self._record("analyze_document", document_url)
        return self.extraction

    def embed(self, text) -> np.ndarray:
        self._record("embed", text)
        return np.array([1.0, 0.0, 0.5], dtype=np.float32)

    def index_record(self, record) -> None:
        self._record("index_record", record["id"])
        self.index.upsert(record)

    def transcribe(self, audio, mime_type) -> Transcription:
        self._record("transcribe", mime_type)
        return self.transcription

    def synthesize(self, text, voice_id) -> bytes:
        self._record("synthesize", text, voice_id)
        return self.audio

    def complete_chat(self, messages):
        self._record("complete_chat", messages)
        return self.chat_reply

    def search(self, query, *, vector=None, top=10) -> SearchResults:
        self._record("search", query)
        return self.index.search(query, vector=vector, top=top)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: List[tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, session_id, event, payload) -> None:
        self.events.append((session_id, event, payload))

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [payload for _, name, payload in self.events if name == event]


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def job_queue() -> JobQueue:
    return JobQueue(get_engine(), max_attempts=3)


@pytest.fixture()
def services(gateway: FakeGateway, notifier: RecordingNotifier, job_queue: JobQueue) -> ServiceContainer:
    return build_services(get_settings(), gateway=gateway, notifier=notifier, queue=job_queue)


@pytest.fixture()
def client(services: ServiceContainer) -> Generator[TestClient, None, None]:
    """Return a test client wired to the fake collaborators."""

    from smlgpt.main import create_app

    with TestClient(create_app(services)) as test_client:
        yield test_client
