"""Synchronous Azure OpenAI client used for chat, vision and embeddings."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import numpy as np
import requests

log = logging.getLogger("azure_openai")


class AzureOpenAIError(RuntimeError):
    """Raised when an Azure OpenAI request fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _merge_payload(
    messages: List[Dict[str, Any]],
    temperature: float,
    params: Mapping[str, Any] | None,
) -> Dict[str, Any]:
    payload: MutableMapping[str, Any] = {
        "messages": messages,
        "temperature": temperature,
    }
    for key, value in (params or {}).items():
        if value is not None:
            payload[key] = value
    return dict(payload)


def _redacted(headers: Mapping[str, str]) -> Dict[str, str]:
    safe = dict(headers)
    if "api-key" in safe:
        safe["api-key"] = "***REDACTED***"
    return safe


class AzureOpenAIClient:
    """Thin wrapper over the Azure OpenAI REST surface.

    One instance talks to one resource; chat/vision and embeddings may live on
    different resources, so the gateway builds one client per pair.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        *,
        api_version: str = "2024-10-21",
        timeout_connect: float = 10,
        timeout_read: float = 120,
    ) -> None:
        if not endpoint.startswith("http"):
            raise AzureOpenAIError(f"Invalid Azure OpenAI endpoint: {endpoint!r}")
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.api_version = api_version
        self.timeout = (timeout_connect, timeout_read)

    def _url(self, deployment: str, operation: str) -> str:
        return (
            f"{self.endpoint}/openai/deployments/{deployment}/{operation}"
            f"?api-version={self.api_version}"
        )

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AzureOpenAIError("Missing Azure OpenAI API key")
        return {"Content-Type": "application/json", "api-key": self.api_key}

    def _post(self, url: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        headers = self._headers()
        log.debug(
            "Azure OpenAI request prepared",
            extra={"azure_openai": {"url": url, "headers": _redacted(headers)}},
        )
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            log.error("Azure OpenAI request failed: %s", exc)
            raise AzureOpenAIError(f"Azure OpenAI request failed: {exc}") from exc

        if response.status_code != 200:
            log.error("Azure OpenAI error %s: %s", response.status_code, response.text[:500])
            raise AzureOpenAIError(
                f"{response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except json.JSONDecodeError as exc:
            log.error("Azure OpenAI invalid JSON: %s", response.text[:500])
            raise AzureOpenAIError("Invalid JSON from Azure OpenAI") from exc

    def chat(
        self,
        deployment: str,
        messages: List[Dict[str, Any]],
        *,
        temperature: float = 0.7,
        params: Mapping[str, Any] | None = None,
    ) -> Optional[str]:
        """Send a chat completion and return the first choice's content."""

        payload = _merge_payload(messages, temperature, params)
        data = self._post(self._url(deployment, "chat/completions"), payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            log.error("Azure OpenAI bad shape: %s / %s", exc, data)
            raise AzureOpenAIError("No choices in Azure OpenAI response") from exc
        if isinstance(content, str) and content.strip():
            return content
        return None

    def embed(self, deployment: str, texts: List[str]) -> np.ndarray:
        """Return one float32 row per input text."""

        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        data = self._post(self._url(deployment, "embeddings"), {"input": texts})
        try:
            rows = sorted(data["data"], key=lambda item: item.get("index", 0))
            vectors = [row["embedding"] for row in rows]
        except (KeyError, TypeError) as exc:
            log.error("Azure OpenAI embedding bad shape: %s", exc)
            raise AzureOpenAIError("No embeddings in Azure OpenAI response") from exc
        if len(vectors) != len(texts):
            raise AzureOpenAIError("Embedding count does not match input count")
        return np.asarray(vectors, dtype=np.float32)


__all__ = ["AzureOpenAIClient", "AzureOpenAIError"]
