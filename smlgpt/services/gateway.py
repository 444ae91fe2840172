"""AI provider gateway: single-call wrappers around the external AI services.

Every operation is one request/response exchange with no retry; failures are
raised as :class:`~smlgpt.utils.errors.ExternalServiceError` and the caller
decides whether to retry. Calls are synchronous (``requests``); async code runs
them on the default executor.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence
from urllib.parse import unquote, urlparse
from xml.sax.saxutils import escape, quoteattr

import numpy as np
import requests

from ..config import Settings
from ..models.analysis import DocumentExtraction, ImageTags, SearchResults, Transcription
from ..observability import metrics_registry
from ..utils.errors import ExternalServiceError
from .openai_client import AzureOpenAIClient, AzureOpenAIError
from .vector_index import SearchIndex, build_search_index

logger = logging.getLogger(__name__)

VISION_FEATURES = ("Categories", "Description", "Objects", "Tags")
DOCUMENT_MODEL = "prebuilt-document"
DOCUMENT_API_VERSION = "2023-07-31"
TTS_OUTPUT_FORMAT = "audio-24khz-48kbitrate-mono-mp3"


class AIProvider(ABC):
    """Operations the pipeline, chat and speech handlers need from AI services."""

    @property
    @abstractmethod
    def capabilities(self) -> Dict[str, bool]:
        """Return which capabilities are configured."""

    @abstractmethod
    def analyze_image_for_hazards(self, image_url: str, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def tag_and_describe_image(self, image_url: str) -> ImageTags:
        raise NotImplementedError

    @abstractmethod
    def analyze_document(self, document_url: str) -> DocumentExtraction:
        raise NotImplementedError

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        raise NotImplementedError

    @abstractmethod
    def index_record(self, record: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def transcribe(self, audio: bytes, mime_type: str) -> Transcription:
        raise NotImplementedError

    @abstractmethod
    def synthesize(self, text: str, voice_id: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def complete_chat(self, messages: List[Dict[str, Any]]) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def search(
        self, query: str, *, vector: Sequence[float] | None = None, top: int = 10
    ) -> SearchResults:
        raise NotImplementedError


def _local_path(url: str) -> Path | None:
    parsed = urlparse(url)
    if parsed.scheme != "file":
        return None
    return Path(unquote(parsed.path))


def _read_local(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ExternalServiceError("Object Store", f"cannot read {path.name}: {exc}") from exc


def _as_data_url(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(_read_local(path)).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def build_ssml(text: str, voice_id: str) -> str:
    """Return an SSML document speaking ``text`` with ``voice_id``."""

    return (
        "<speak version='1.0' xml:lang='en-US'>"
        f"<voice name={quoteattr(voice_id)}>{escape(text)}</voice>"
        "</speak>"
    )


class AzureAIGateway(AIProvider):
    """Azure implementation of :class:`AIProvider` over the services' REST APIs."""

    def __init__(self, settings: Settings, *, search_index: SearchIndex | None = None) -> None:
        self.settings = settings
        self.timeout = settings.provider_timeout_s
        self.search_index = search_index if search_index is not None else build_search_index(settings)
        self._chat_client: AzureOpenAIClient | None = None
        self._embedding_client: AzureOpenAIClient | None = None
        if settings.openai_configured:
            self._chat_client = AzureOpenAIClient(
                settings.openai_endpoint,
                settings.openai_api_key,
                api_version=settings.openai_api_version,
                timeout_read=self.timeout,
            )
        if settings.embeddings_configured:
            self._embedding_client = AzureOpenAIClient(
                settings.embedding_endpoint,
                settings.embedding_api_key,
                api_version=settings.openai_api_version,
                timeout_read=self.timeout,
            )

    @property
    def capabilities(self) -> Dict[str, bool]:
        settings = self.settings
        return {
            "openai": settings.openai_configured,
            "embeddings": settings.embeddings_configured,
            "vision": settings.vision_configured,
            "documents": settings.documents_configured,
            "speech": settings.speech_configured,
            "search": settings.search_configured,
        }

    @contextmanager
    def _call(self, dependency: str, service: str) -> Iterator[None]:
        with metrics_registry.track_dependency(dependency):
            try:
                yield
            except ExternalServiceError:
                raise
            except AzureOpenAIError as exc:
                raise ExternalServiceError(service, str(exc), upstream_status=exc.status_code) from exc
            except requests.RequestException as exc:
                raise ExternalServiceError(service, str(exc)) from exc

    def _require(self, configured: bool, service: str) -> None:
        if not configured:
            raise ExternalServiceError(service, "service is not configured")

    @staticmethod
    def _check(response: requests.Response, service: str, expected: Sequence[int] = (200,)) -> None:
        if response.status_code in expected:
            return
        logger.error("%s error %s: %s", service, response.status_code, response.text[:500])
        raise ExternalServiceError(
            service,
            f"{response.status_code} {response.reason}",
            upstream_status=response.status_code,
        )

    # Vision ---------------------------------------------------------------

    def analyze_image_for_hazards(self, image_url, system_prompt, user_prompt) -> str:
        service = "Azure OpenAI Vision"
        self._require(self._chat_client is not None, service)
        local = _local_path(image_url)
        image_ref = _as_data_url(local) if local is not None else image_url
        messages = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_prompt},
                    {"type": "image_url", "image_url": {"url": image_ref}},
                ],
            },
        ]
        with self._call("openai.vision", service):
            content = self._chat_client.chat(
                self.settings.openai_deployment,
                messages,
                temperature=0.3,
                params={"max_tokens": 4096, "top_p": 0.95},
            )
        if not content:
            raise ExternalServiceError(service, "no content returned")
        return content

    def tag_and_describe_image(self, image_url) -> ImageTags:
        service = "Computer Vision"
        self._require(self.settings.vision_configured, service)
        url = (
            f"{self.settings.vision_endpoint.rstrip('/')}/vision/v3.2/analyze"
            f"?visualFeatures={','.join(VISION_FEATURES)}"
        )
        headers = {"Ocp-Apim-Subscription-Key": self.settings.vision_key}
        local = _local_path(image_url)
        with self._call("vision.analyze", service):
            if local is not None:
                headers["Content-Type"] = "application/octet-stream"
                response = requests.post(url, headers=headers, data=_read_local(local), timeout=self.timeout)
            else:
                response = requests.post(url, headers=headers, json={"url": image_url}, timeout=self.timeout)
            self._check(response, service)
            data = response.json()

        description = data.get("description") or {}
        captions = description.get("captions") or []
        caption = captions[0].get("text") if captions else None
        return ImageTags(
            description=caption or "No description available",
            tags=list(data.get("tags") or []),
            objects=list(data.get("objects") or []),
            categories=list(data.get("categories") or []),
        )

    # Documents ------------------------------------------------------------

    def analyze_document(self, document_url) -> DocumentExtraction:
        service = "Document Intelligence"
        self._require(self.settings.documents_configured, service)
        base = self.settings.document_endpoint.rstrip("/")
        url = (
            f"{base}/formrecognizer/documentModels/{DOCUMENT_MODEL}:analyze"
            f"?api-version={DOCUMENT_API_VERSION}"
        )
        headers = {"Ocp-Apim-Subscription-Key": self.settings.document_key}
        local = _local_path(document_url)
        if local is not None:
            body = {"base64Source": base64.b64encode(_read_local(local)).decode("ascii")}
        else:
            body = {"urlSource": document_url}

        with self._call("documents.analyze", service):
            response = requests.post(url, headers=headers, json=body, timeout=self.timeout)
            self._check(response, service, expected=(200, 202))
            operation = response.headers.get("Operation-Location")
            if not operation:
                raise ExternalServiceError(service, "missing Operation-Location header")
            result = self._poll_operation(operation, headers, service)

        return _document_extraction(result.get("analyzeResult") or {})

    def _poll_operation(self, operation_url: str, headers: Mapping[str, str], service: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        while True:
            response = requests.get(operation_url, headers=dict(headers), timeout=self.timeout)
            self._check(response, service)
            data = response.json()
            status = str(data.get("status", "")).lower()
            if status == "succeeded":
                return data
            if status == "failed":
                error = (data.get("error") or {}).get("message") or "analysis failed"
                raise ExternalServiceError(service, error)
            if time.monotonic() >= deadline:
                raise ExternalServiceError(service, "timed out waiting for analysis")
            retry_after = response.headers.get("Retry-After")
            time.sleep(min(float(retry_after) if retry_after else 1.0, 5.0))

    # Embeddings and index -------------------------------------------------

    def embed(self, text) -> np.ndarray:
        service = "Azure OpenAI Embeddings"
        self._require(self._embedding_client is not None, service)
        with self._call("openai.embeddings", service):
            vectors = self._embedding_client.embed(self.settings.embedding_model, [text])
        return vectors[0]

    def index_record(self, record) -> None:
        with self._call(f"search.index.{self.search_index.name}", "Azure Search"):
            self.search_index.upsert(record)

    def search(self, query, *, vector=None, top=10) -> SearchResults:
        with self._call(f"search.query.{self.search_index.name}", "Azure Search"):
            return self.search_index.search(query, vector=vector, top=top)

    # Speech ---------------------------------------------------------------

    def _speech_host(self, kind: str) -> str:
        if self.settings.speech_endpoint:
            return self.settings.speech_endpoint.rstrip("/")
        return f"https://{self.settings.speech_region}.{kind}.speech.microsoft.com"

    def transcribe(self, audio, mime_type) -> Transcription:
        service = "Speech"
        self._require(self.settings.speech_configured, service)
        url = (
            f"{self._speech_host('stt')}/speech/recognition/conversation/cognitiveservices/v1"
            "?language=en-US&format=detailed"
        )
        headers = {
            "Ocp-Apim-Subscription-Key": self.settings.speech_key,
            "Content-Type": mime_type,
            "Accept": "application/json",
        }
        with self._call("speech.stt", service):
            response = requests.post(url, headers=headers, data=audio, timeout=self.timeout)
            self._check(response, service)
            data = response.json()

        status = str(data.get("RecognitionStatus") or "Unknown")
        if status != "Success":
            return Transcription(text="", confidence=0.0, status=status)
        best = (data.get("NBest") or [{}])[0]
        text = data.get("DisplayText") or best.get("Display") or ""
        return Transcription(text=text, confidence=float(best.get("Confidence") or 0.0), status=status)

    def synthesize(self, text, voice_id) -> bytes:
        service = "Speech"
        self._require(self.settings.speech_configured, service)
        url = f"{self._speech_host('tts')}/cognitiveservices/v1"
        headers = {
            "Ocp-Apim-Subscription-Key": self.settings.speech_key,
            "Content-Type": "application/ssml+xml",
            "X-Microsoft-OutputFormat": TTS_OUTPUT_FORMAT,
            "User-Agent": "smlgpt-backend",
        }
        with self._call("speech.tts", service):
            response = requests.post(
                url,
                headers=headers,
                data=build_ssml(text, voice_id).encode("utf-8"),
                timeout=self.timeout,
            )
            self._check(response, service)
        if not response.content:
            raise ExternalServiceError(service, "no audio data generated")
        return response.content

    # Chat -----------------------------------------------------------------

    def complete_chat(self, messages) -> Optional[str]:
        service = "Azure OpenAI"
        self._require(self._chat_client is not None, service)
        with self._call("openai.chat", service):
            return self._chat_client.chat(
                self.settings.openai_deployment,
                messages,
                temperature=0.7,
                params={"max_tokens": 2000, "top_p": 0.9},
            )


def _document_extraction(result: Mapping[str, Any]) -> DocumentExtraction:
    tables = [
        {
            "rowCount": table.get("rowCount"),
            "columnCount": table.get("columnCount"),
            "cells": [
                {
                    "rowIndex": cell.get("rowIndex"),
                    "columnIndex": cell.get("columnIndex"),
                    "content": cell.get("content", ""),
                }
                for cell in table.get("cells") or []
            ],
        }
        for table in result.get("tables") or []
    ]
    pairs = [
        {
            "key": (pair.get("key") or {}).get("content", ""),
            "value": (pair.get("value") or {}).get("content", ""),
            "confidence": pair.get("confidence"),
        }
        for pair in result.get("keyValuePairs") or []
    ]
    entities = [
        {
            "category": entity.get("category"),
            "content": entity.get("content", ""),
            "confidence": entity.get("confidence"),
        }
        for entity in result.get("entities") or []
    ]
    return DocumentExtraction(
        extracted_text=result.get("content") or "",
        tables=tables,
        entities=entities,
        key_value_pairs=pairs,
    )


__all__ = ["AIProvider", "AzureAIGateway", "build_ssml"]
