"""Tests covering the upload endpoint and its hand-off to the job queue."""

from __future__ import annotations

import asyncio
import io
import os
from pathlib import Path
from urllib.parse import urlsplit

import requests
from fastapi.testclient import TestClient

from smlgpt.config import get_settings
from smlgpt.dependencies import build_services
from smlgpt.models.job import JobStatus
from smlgpt.services.object_store import BlobObjectStore
from smlgpt.services.worker import Worker

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF\n"


def _upload(client: TestClient, name: str, content: bytes, mime: str, **kwargs):
    return client.post(
        "/api/upload",
        files={"file": (name, io.BytesIO(content), mime)},
        **kwargs,
    )


def _stored_files() -> list[Path]:
    return [path for path in Path(os.environ["UPLOAD_DIR"]).rglob("*") if path.is_file()]


def test_unsupported_type_is_rejected_before_storage(client: TestClient, job_queue):
    response = _upload(client, "tool.exe", b"MZ\x90\x00", "application/x-msdownload")

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"]["code"] == "VALIDATION_ERROR"
    assert _stored_files() == []
    assert job_queue.counts()["waiting"] == 0


def test_missing_file_is_rejected(client: TestClient):
    response = client.post("/api/upload", data={"session_id": "abc"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_oversized_upload_is_rejected(client: TestClient):
    response = _upload(client, "big.pdf", PDF_BYTES + b"A" * 2048, "application/pdf")

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "FILE_TOO_LARGE"
    assert _stored_files() == []


def test_image_upload_returns_placeholder_analysis(client: TestClient, job_queue):
    response = _upload(client, "site photo.png", PNG_BYTES, "image/png", data={"session_id": "sess-1"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["fileName"] == "site photo.png"
    assert data["mimeType"] == "image/png"
    assert data["size"] == len(PNG_BYTES)
    assert data["sessionId"] == "sess-1"
    assert data["analysis"]["type"] == "image_analysis"
    assert data["analysis"]["description"] == "No description available"
    assert data["blobUrl"].startswith("file://")

    stored = _stored_files()
    assert len(stored) == 1
    assert stored[0].name.endswith("-site_photo.png")
    assert stored[0].read_bytes() == PNG_BYTES

    job = job_queue.get(data["jobId"])
    assert job.status == JobStatus.WAITING.value
    assert job.payload["fileId"] == data["id"]
    assert job.payload["sessionId"] == "sess-1"


def test_document_upload_uses_header_session(client: TestClient):
    response = _upload(
        client, "permit.pdf", PDF_BYTES, "application/pdf", headers={"X-Session-ID": "hdr-session"}
    )

    data = response.json()["data"]
    assert data["sessionId"] == "hdr-session"
    assert data["analysis"] == {
        "type": "document",
        "status": "uploaded",
        "message": "Document ready for processing",
    }


def test_upload_round_trips_through_analysis_endpoint(client: TestClient):
    uploaded = _upload(client, "checklist.pdf", PDF_BYTES, "application/pdf").json()["data"]

    response = client.get(f"/api/documents/analysis/{uploaded['id']}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "checklist.pdf"
    assert data["mimeType"] == "application/pdf"
    assert data["size"] == len(PDF_BYTES)
    assert data["uploadTime"] == uploaded["uploadTime"]


def test_queued_upload_is_processed_by_worker(client: TestClient, services, gateway, notifier, job_queue):
    uploaded = _upload(client, "floor.png", PNG_BYTES, "image/png", data={"session_id": "s-2"}).json()["data"]
    worker = Worker(job_queue, services.pipeline, notifier, backoff_base_s=0.0)

    assert asyncio.run(worker.run_once()) is True

    assert gateway.calls[0][1][0] == uploaded["blobUrl"]
    analysis = client.get(f"/api/documents/analysis/{uploaded['id']}").json()["data"]["analysis"]
    assert analysis["kind"] == "image"
    assert analysis["tagging"]["description"] == "a factory floor"
    assert job_queue.get(uploaded["jobId"]).status == JobStatus.COMPLETED.value
    assert notifier.named("file-processed")[0]["fileId"] == uploaded["id"]


def test_listing_includes_registered_uploads(client: TestClient):
    uploaded = _upload(client, "notes.txt", b"hello", "text/plain").json()["data"]

    response = client.get("/api/upload/files")

    assert response.status_code == 200
    files = response.json()["data"]["files"]
    assert [item["id"] for item in files] == [uploaded["id"]]
    assert len(response.json()["data"]["stored"]) == 1


class _Stored:
    status_code = 201
    reason = "Created"
    text = ""


def test_blob_upload_hides_access_token(monkeypatch, gateway, notifier, job_queue):
    from smlgpt.main import create_app

    written = []
    monkeypatch.setattr(requests, "put", lambda url, **kwargs: written.append(url) or _Stored())
    store = BlobObjectStore("https://acct.blob.core.windows.net/uploads", "?sv=2022&sig=secret")
    services = build_services(
        get_settings(), object_store=store, gateway=gateway, notifier=notifier, queue=job_queue
    )

    with TestClient(create_app(services)) as test_client:
        data = _upload(test_client, "crane.png", PNG_BYTES, "image/png").json()["data"]

    assert urlsplit(data["blobUrl"]).query == ""
    assert data["blobUrl"].startswith("https://acct.blob.core.windows.net/uploads/")
    assert written == [f"{data['blobUrl']}?sv=2022&sig=secret"]
    assert services.registry.get(data["id"]).url == data["blobUrl"]
    assert job_queue.get(data["jobId"]).payload["fileUrl"] == f"{data['blobUrl']}?sv=2022&sig=secret"
