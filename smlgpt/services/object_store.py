"""Object storage for uploaded binaries."""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
from urllib.parse import quote, urlsplit, urlunsplit
from xml.etree import ElementTree

import requests

from ..observability import metrics_registry
from ..utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def secure_filename(filename: str) -> str:
    """Return a filesystem and URL safe variant of ``filename``."""

    name = Path(filename or "").name
    cleaned = _SAFE_NAME.sub("_", name).strip("._")
    return cleaned or "upload"


def storage_name_for(filename: str, *, now_ms: int | None = None) -> str:
    """Return ``<epoch-ms>-<safe-name>`` used as the stored object name."""

    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{stamp}-{secure_filename(filename)}"


def public_url(url: str) -> str:
    """Return ``url`` without its query string, dropping any access token."""

    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


@dataclass(slots=True)
class StoredObject:
    name: str
    url: str
    size: int
    content_type: str | None = None


class ObjectStore(ABC):
    """Persists uploaded bytes and hands back a retrievable address."""

    name = "object-store"

    @abstractmethod
    def put(
        self,
        name: str,
        data: bytes,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    def list(self) -> list[StoredObject]:
        raise NotImplementedError

    def access_url(self, url: str) -> str:
        """Return the address a provider can read ``url`` from."""

        return url


class LocalObjectStore(ObjectStore):
    """Stores objects as files below ``root``; URLs use the ``file://`` scheme."""

    name = "local"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, name, data, content_type, metadata=None) -> str:
        target = self.root / secure_filename(name)
        target.write_bytes(data)
        logger.debug("Stored %s (%d bytes, %s)", target, len(data), content_type)
        return target.resolve().as_uri()

    def list(self) -> list[StoredObject]:
        objects: list[StoredObject] = []
        for path in sorted(self.root.iterdir()):
            if not path.is_file():
                continue
            objects.append(
                StoredObject(name=path.name, url=path.resolve().as_uri(), size=path.stat().st_size)
            )
        return objects


class BlobObjectStore(ObjectStore):
    """Azure Blob container addressed by URL plus a SAS token."""

    name = "azure-blob"

    def __init__(self, container_url: str, sas_token: str | None, *, timeout: float = 60.0) -> None:
        self.container_url = container_url.rstrip("/")
        self.sas_token = (sas_token or "").lstrip("?")
        self.timeout = timeout

    def _blob_url(self, name: str) -> str:
        return f"{self.container_url}/{quote(name)}"

    def put(self, name, data, content_type, metadata=None) -> str:
        headers = {
            "x-ms-blob-type": "BlockBlob",
            "x-ms-version": "2021-08-06",
            "Content-Type": content_type,
        }
        for key, value in (metadata or {}).items():
            safe_key = re.sub(r"[^A-Za-z0-9_]", "_", key)
            headers[f"x-ms-meta-{safe_key}"] = quote(str(value))

        url = self._blob_url(name)
        with metrics_registry.track_dependency("blob.put"):
            try:
                response = requests.put(
                    self.access_url(url), data=data, headers=headers, timeout=self.timeout
                )
            except requests.RequestException as exc:
                raise ExternalServiceError("Blob Storage", str(exc)) from exc
        if response.status_code not in (200, 201):
            logger.error("Blob upload failed %s: %s", response.status_code, response.text[:300])
            raise ExternalServiceError(
                "Blob Storage",
                f"{response.status_code} {response.reason}",
                upstream_status=response.status_code,
            )
        return url

    def access_url(self, url: str) -> str:
        if not self.sas_token:
            return url
        return f"{public_url(url)}?{self.sas_token}"

    def list(self) -> list[StoredObject]:
        url = f"{self.container_url}?restype=container&comp=list&{self.sas_token}"
        with metrics_registry.track_dependency("blob.list"):
            try:
                response = requests.get(url, headers={"x-ms-version": "2021-08-06"}, timeout=self.timeout)
            except requests.RequestException as exc:
                raise ExternalServiceError("Blob Storage", str(exc)) from exc
        if response.status_code != 200:
            raise ExternalServiceError(
                "Blob Storage",
                f"{response.status_code} {response.reason}",
                upstream_status=response.status_code,
            )
        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise ExternalServiceError("Blob Storage", f"unreadable blob listing: {exc}") from exc
        return [
            StoredObject(
                name=name,
                url=self._blob_url(name),
                size=int(blob.findtext("Properties/Content-Length") or 0),
                content_type=blob.findtext("Properties/Content-Type"),
            )
            for blob in root.iterfind("Blobs/Blob")
            if (name := blob.findtext("Name"))
        ]


def build_object_store(settings) -> ObjectStore:
    """Return the blob store when configured, else the local filesystem store."""

    if settings.blob_configured:
        return BlobObjectStore(
            settings.storage_container_url,
            settings.storage_sas_token,
            timeout=settings.provider_timeout_s,
        )
    return LocalObjectStore(settings.upload_dir)


__all__ = [
    "BlobObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "StoredObject",
    "build_object_store",
    "public_url",
    "secure_filename",
    "storage_name_for",
]
