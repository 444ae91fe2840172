"""Asyncio worker pool draining the file-processing queue."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Optional

from pydantic import ValidationError as PayloadValidationError

from ..models.job import JobPayload, JobRecord
from ..observability import metrics_registry
from .job_queue import JobQueue
from .notifier import FILE_PROCESSING_ERROR, Notifier
from .pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)

PURGE_INTERVAL_SECONDS = 300.0


def backoff_delay(base_seconds: float, attempt: int) -> float:
    """Delay before retrying after failed attempt number ``attempt`` (1-based)."""

    return base_seconds * (2 ** max(attempt - 1, 0))


def _describe_payload_error(exc: PayloadValidationError) -> str:
    fields = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
    if fields:
        return "Invalid job payload: missing or invalid " + ", ".join(fields)
    return "Invalid job payload"


class Worker:
    """Pulls jobs with bounded concurrency and runs the analysis pipeline.

    Pipeline failures are retried with exponential backoff until the job's
    attempt ceiling; exhaustion marks the job failed and publishes exactly one
    ``file-processing-error``. Malformed payloads fail immediately.
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: AnalysisPipeline,
        notifier: Notifier,
        *,
        concurrency: int = 3,
        backoff_base_s: float = 2.0,
        poll_interval_s: float = 1.0,
        retention: timedelta = timedelta(hours=24),
        purge_interval_s: float = PURGE_INTERVAL_SECONDS,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.notifier = notifier
        self.concurrency = max(1, concurrency)
        self.backoff_base_s = backoff_base_s
        self.poll_interval_s = poll_interval_s
        self.retention = retention
        self.purge_interval_s = purge_interval_s
        self._wake = asyncio.Event()
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._last_purge = 0.0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def notify(self) -> None:
        """Wake idle slots after a new job was enqueued."""

        self._wake.set()

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        await asyncio.to_thread(self.queue.requeue_stale)
        self._tasks = [
            asyncio.create_task(self._slot(index), name=f"job-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Job worker started with concurrency %d", self.concurrency)

    async def stop(self) -> None:
        self._stopping.set()
        self._wake.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job worker stopped")

    async def _slot(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception:  # noqa: BLE001 - a store error must not end the slot
                logger.exception("Job worker slot %d iteration failed", index)
                processed = False
            if processed:
                continue
            if index == 0:
                await self._maybe_purge()
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_s)
            except asyncio.TimeoutError:
                pass

    async def _maybe_purge(self) -> None:
        now = time.monotonic()
        if now - self._last_purge < self.purge_interval_s:
            return
        self._last_purge = now
        try:
            await asyncio.to_thread(self.queue.purge_finished, self.retention)
        except Exception:  # noqa: BLE001 - housekeeping must not stop the worker
            logger.exception("Job purge failed")

    async def run_once(self) -> bool:
        """Claim and handle one due job; return ``False`` when none was waiting."""

        job = await asyncio.to_thread(self.queue.claim_next)
        if job is None:
            return False
        try:
            await self.handle(job)
        except Exception as exc:  # noqa: BLE001 - state write failed after the claim
            logger.exception("Could not record the outcome of job %s", job.id)
            await self._release(job, str(exc) or exc.__class__.__name__)
        return True

    async def _release(self, job: JobRecord, message: str) -> None:
        """Return ``job`` to the queue; ``requeue_stale`` recovers it if this fails too."""

        delay = backoff_delay(self.backoff_base_s, job.attempts)
        try:
            await asyncio.to_thread(self.queue.retry_later, job.id, delay, message)
        except Exception:  # noqa: BLE001 - job stays active until the next start
            logger.exception("Job %s left active", job.id)

    async def handle(self, job: JobRecord) -> None:
        try:
            payload = JobPayload.model_validate(job.payload or {})
        except PayloadValidationError as exc:
            await self._fail_permanently(job, _describe_payload_error(exc))
            return

        try:
            outcome = await self.pipeline.process(payload)
        except Exception as exc:  # noqa: BLE001 - every pipeline failure is retried or reported
            message = str(exc) or exc.__class__.__name__
            logger.error(
                "Error processing file %s (job %s, attempt %d/%d): %s",
                payload.file_name,
                job.id,
                job.attempts,
                job.max_attempts,
                message,
            )
            if job.attempts < job.max_attempts:
                delay = backoff_delay(self.backoff_base_s, job.attempts)
                await asyncio.to_thread(self.queue.retry_later, job.id, delay, message)
                metrics_registry.track_event("job_retried")
                return
            await self._fail_permanently(job, message, payload=payload)
            return

        await asyncio.to_thread(self.queue.complete, job.id, outcome.as_dict())
        metrics_registry.track_event("job_completed")
        logger.info("Job %s completed successfully", job.id)

    async def _fail_permanently(
        self,
        job: JobRecord,
        message: str,
        *,
        payload: Optional[JobPayload] = None,
    ) -> None:
        await asyncio.to_thread(self.queue.fail, job.id, message)
        metrics_registry.track_event("job_failed")
        logger.error("Job %s failed permanently: %s", job.id, message)

        raw: dict[str, Any] = job.payload or {}
        session_id = payload.session_id if payload else raw.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            return
        await self.notifier.publish(
            session_id,
            FILE_PROCESSING_ERROR,
            {
                "fileId": payload.file_id if payload else raw.get("fileId"),
                "fileName": payload.file_name if payload else raw.get("fileName"),
                "error": message,
            },
        )


__all__ = ["Worker", "backoff_delay"]
