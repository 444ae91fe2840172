"""Search indexes backing ``index_record`` and document search."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Mapping, Sequence

import numpy as np
import requests
from rapidfuzz import fuzz

from ..models.analysis import SearchHit, SearchResults
from ..utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"[\w\-']+")
VECTOR_FIELD = "contentVector"
SELECT_FIELDS = ("id", "fileName", "fileType", "fileUrl", "content", "timestamp", "sessionId")


def _tokenize(text: str) -> list[str]:
    return [match.group(0).lower() for match in TOKEN_PATTERN.finditer(text or "")]


def _normalise(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


class SearchIndex(ABC):
    """Write-only record sink with query support."""

    name = "search-index"

    @abstractmethod
    def upsert(self, record: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def search(
        self,
        query: str,
        *,
        vector: Sequence[float] | None = None,
        top: int = 10,
    ) -> SearchResults:
        raise NotImplementedError


class LocalVectorIndex(SearchIndex):
    """In-memory index used when no search service is configured.

    Records are keyed by ``id`` (re-indexing overwrites). Queries fuse a fuzzy
    lexical score with cosine similarity when a query vector is supplied.
    """

    name = "local"

    def __init__(self, *, lexical_weight: float = 0.4, cosine_weight: float = 0.6) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._lock = Lock()
        self.lexical_weight = lexical_weight
        self.cosine_weight = cosine_weight

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(record_id)
            return dict(record) if record is not None else None

    def upsert(self, record: Mapping[str, Any]) -> None:
        record_id = str(record.get("id") or "")
        if not record_id:
            raise ValueError("Index records require an 'id'")
        stored = {key: value for key, value in record.items() if key != VECTOR_FIELD}
        vector = record.get(VECTOR_FIELD)
        with self._lock:
            self._records[record_id] = stored
            if vector is not None and len(vector):
                self._vectors[record_id] = _normalise(np.asarray(vector, dtype=np.float32))
            else:
                self._vectors.pop(record_id, None)

    def search(self, query, *, vector=None, top=10) -> SearchResults:
        with self._lock:
            records = list(self._records.items())
            vectors = dict(self._vectors)

        query_vector = None
        if vector is not None and len(vector):
            query_vector = _normalise(np.asarray(vector, dtype=np.float32))
        query_tokens = _tokenize(query)

        hits: list[SearchHit] = []
        for record_id, record in records:
            text = " ".join(str(record.get(field) or "") for field in ("fileName", "content"))
            lexical = 0.0
            if query_tokens:
                lexical = fuzz.token_set_ratio(query, text) / 100.0
            cosine = 0.0
            stored_vector = vectors.get(record_id)
            if query_vector is not None and stored_vector is not None:
                if stored_vector.shape == query_vector.shape:
                    cosine = float(np.clip(stored_vector @ query_vector, -1.0, 1.0))
            if query_vector is None:
                score = lexical
            else:
                score = self.lexical_weight * lexical + self.cosine_weight * cosine
            if score <= 0.0:
                continue
            document = {field: record.get(field) for field in SELECT_FIELDS if field in record}
            hits.append(SearchHit(id=record_id, score=round(score, 6), document=document))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return SearchResults(hits=hits[: max(top, 0)], total_count=len(hits))


class AzureSearchIndex(SearchIndex):
    """Azure AI Search index accessed through its REST API."""

    name = "azure-search"
    api_version = "2023-11-01"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        index_name: str,
        *,
        timeout: float = 60.0,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.index_name = index_name
        self.timeout = timeout

    def _url(self, operation: str) -> str:
        return (
            f"{self.endpoint}/indexes/{self.index_name}/docs/{operation}"
            f"?api-version={self.api_version}"
        )

    def _post(self, operation: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "api-key": self.api_key}
        try:
            response = requests.post(
                self._url(operation), headers=headers, json=payload, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ExternalServiceError("Azure Search", str(exc)) from exc
        if response.status_code not in (200, 201):
            logger.error("Azure Search %s failed %s: %s", operation, response.status_code, response.text[:300])
            raise ExternalServiceError(
                "Azure Search",
                f"{response.status_code} {response.reason}",
                upstream_status=response.status_code,
            )
        return response.json()

    def upsert(self, record: Mapping[str, Any]) -> None:
        document = dict(record)
        vector = document.get(VECTOR_FIELD)
        if isinstance(vector, np.ndarray):
            document[VECTOR_FIELD] = vector.astype(float).tolist()
        document["@search.action"] = "mergeOrUpload"
        data = self._post("index", {"value": [document]})
        failed = [item for item in data.get("value", []) if not item.get("status", True)]
        if failed:
            raise ExternalServiceError("Azure Search", failed[0].get("errorMessage") or "index write rejected")

    def search(self, query, *, vector=None, top=10) -> SearchResults:
        payload: dict[str, Any] = {
            "search": query or "*",
            "count": True,
            "top": top,
            "select": ",".join(SELECT_FIELDS),
        }
        if vector is not None and len(vector):
            payload["vectorQueries"] = [
                {
                    "kind": "vector",
                    "vector": [float(value) for value in vector],
                    "fields": VECTOR_FIELD,
                    "k": top,
                }
            ]
        data = self._post("search", payload)
        hits = [
            SearchHit(
                id=str(item.get("id")),
                score=float(item.get("@search.score") or 0.0),
                document={key: value for key, value in item.items() if not key.startswith("@")},
            )
            for item in data.get("value", [])
        ]
        return SearchResults(hits=hits, total_count=int(data.get("@odata.count") or len(hits)))


def build_search_index(settings) -> SearchIndex:
    if settings.search_configured:
        return AzureSearchIndex(
            settings.search_endpoint,
            settings.search_key,
            settings.search_index,
            timeout=settings.provider_timeout_s,
        )
    return LocalVectorIndex()


__all__ = [
    "AzureSearchIndex",
    "LocalVectorIndex",
    "SearchIndex",
    "VECTOR_FIELD",
    "build_search_index",
]
