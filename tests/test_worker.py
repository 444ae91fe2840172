"""Tests for the job worker retry and failure semantics."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from smlgpt.models.document import UploadedFile
from smlgpt.models.job import JobStatus
from smlgpt.services.pipeline import AnalysisPipeline
from smlgpt.services.registry import DocumentRegistry
from smlgpt.services.worker import Worker, backoff_delay
from smlgpt.utils.errors import ExternalServiceError

PAYLOAD = {
    "fileId": "file-1",
    "fileName": "site.png",
    "fileUrl": "file:///tmp/site.png",
    "fileType": "image/png",
    "sessionId": "session-9",
}


def _worker(job_queue, gateway, notifier) -> Worker:
    registry = DocumentRegistry()
    registry.add(
        UploadedFile(
            id="file-1",
            name="site.png",
            storage_name="1-site.png",
            mime_type="image/png",
            size=3,
            url="file:///tmp/site.png",
            session_id="session-9",
        )
    )
    pipeline = AnalysisPipeline(gateway, registry, notifier)
    return Worker(job_queue, pipeline, notifier, backoff_base_s=0.0, poll_interval_s=0.01)


def test_backoff_doubles_from_base():
    assert [backoff_delay(2.0, attempt) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_successful_job_completes(job_queue, gateway, notifier):
    worker = _worker(job_queue, gateway, notifier)
    job = job_queue.enqueue("process-file", PAYLOAD)

    assert asyncio.run(worker.run_once()) is True

    stored = job_queue.get(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.attempts == 1
    assert stored.result["fileId"] == "file-1"
    assert stored.finished_at is not None
    assert notifier.named("file-processed")


def test_three_failures_mark_failed_and_notify_once(job_queue, gateway, notifier):
    gateway.failures["analyze_image_for_hazards"] = ExternalServiceError("Azure OpenAI Vision", "503 Service Unavailable")
    worker = _worker(job_queue, gateway, notifier)
    job = job_queue.enqueue("process-file", PAYLOAD)

    async def drain() -> None:
        while await worker.run_once():
            pass

    asyncio.run(drain())

    stored = job_queue.get(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.attempts == 3
    assert gateway.called("analyze_image_for_hazards") == 3
    assert gateway.called("index_record") == 0

    errors = notifier.named("file-processing-error")
    assert len(errors) == 1
    assert errors[0]["fileId"] == "file-1"
    assert errors[0]["fileName"] == "site.png"
    assert "503" in errors[0]["error"]
    assert notifier.named("file-processed") == []


def test_failed_attempt_is_scheduled_with_backoff(job_queue, gateway, notifier):
    gateway.failures["embed"] = ExternalServiceError("Azure OpenAI Embeddings", "timeout")
    worker = _worker(job_queue, gateway, notifier)
    worker.backoff_base_s = 60.0
    job = job_queue.enqueue("process-file", PAYLOAD)

    assert asyncio.run(worker.run_once()) is True
    assert asyncio.run(worker.run_once()) is False

    stored = job_queue.get(job.id)
    assert stored.status == JobStatus.WAITING.value
    assert stored.attempts == 1
    assert stored.available_at - stored.updated_at >= timedelta(seconds=59)
    assert notifier.events == []


def test_malformed_payload_fails_fast(job_queue, gateway, notifier):
    worker = _worker(job_queue, gateway, notifier)
    broken = {key: value for key, value in PAYLOAD.items() if key != "fileUrl"}
    job = job_queue.enqueue("process-file", broken)

    asyncio.run(worker.run_once())

    stored = job_queue.get(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.attempts == 1
    assert "fileUrl" in stored.last_error
    assert gateway.calls == []

    errors = notifier.named("file-processing-error")
    assert len(errors) == 1
    assert errors[0]["fileId"] == "file-1"


def _flaky(monkeypatch, job_queue, name: str) -> list[str]:
    """Make ``job_queue.<name>`` raise a locked-database error on its first call."""

    original = getattr(job_queue, name)
    calls: list[str] = []

    def wrapper(*args, **kwargs):
        calls.append(name)
        if len(calls) == 1:
            raise OperationalError("UPDATE jobs", {}, Exception("database is locked"))
        return original(*args, **kwargs)

    monkeypatch.setattr(job_queue, name, wrapper)
    return calls


async def _wait_for(condition, *, attempts: int = 500) -> bool:
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


def test_slot_survives_store_errors(monkeypatch, job_queue, gateway, notifier):
    worker = _worker(job_queue, gateway, notifier)
    worker.concurrency = 1
    first = job_queue.enqueue("process-file", PAYLOAD)
    second = job_queue.enqueue("process-file", PAYLOAD)
    claims = _flaky(monkeypatch, job_queue, "claim_next")
    completions = _flaky(monkeypatch, job_queue, "complete")

    def both_completed() -> bool:
        return all(
            job_queue.get(job.id).status == JobStatus.COMPLETED.value for job in (first, second)
        )

    async def scenario() -> tuple[bool, bool, bool]:
        await worker.start()
        worker.notify()
        done = await _wait_for(both_completed)
        alive = worker.running
        await worker.stop()
        return done, alive, worker.running

    done, alive, still_running = asyncio.run(scenario())

    assert done is True
    assert alive is True
    assert still_running is False
    assert len(claims) >= 3
    assert len(completions) == 3
    assert job_queue.get(first.id).attempts == 2
    assert len(notifier.named("file-processed")) == 3


def test_started_worker_processes_then_purges(job_queue, gateway, notifier):
    worker = _worker(job_queue, gateway, notifier)
    worker.retention = timedelta(0)
    worker.purge_interval_s = 0.0
    job = job_queue.enqueue("process-file", PAYLOAD)

    async def scenario() -> bool:
        await worker.start()
        purged = await _wait_for(lambda: job_queue.get(job.id) is None)
        await worker.stop()
        return purged

    assert asyncio.run(scenario()) is True
    assert worker.running is False
    assert job_queue.counts()["completed"] == 0
    processed = notifier.named("file-processed")
    assert len(processed) == 1
    assert processed[0]["fileId"] == "file-1"
