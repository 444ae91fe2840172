"""Durable job queue stored through SQLModel."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from ..models.job import JobRecord, JobStatus, utcnow

logger = logging.getLogger(__name__)

FILE_PROCESSING_QUEUE = "file-processing"
FINISHED_STATES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobQueue:
    """At-least-once work queue backed by a relational table.

    Claiming is a conditional ``UPDATE ... WHERE status = 'waiting'`` so two
    workers, in one process or several, never run the same attempt.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        queue: str = FILE_PROCESSING_QUEUE,
        max_attempts: int = 3,
    ) -> None:
        self.engine = engine
        self.queue = queue
        self.max_attempts = max_attempts
        SQLModel.metadata.create_all(engine, tables=[JobRecord.__table__])

    def enqueue(self, name: str, payload: Dict[str, Any]) -> JobRecord:
        """Persist a waiting job and return it immediately."""

        now = utcnow()
        job = JobRecord(
            id=uuid.uuid4().hex,
            name=name,
            queue=self.queue,
            file_id=_text_or_none(payload.get("fileId")),
            session_id=_text_or_none(payload.get("sessionId")),
            status=JobStatus.WAITING.value,
            max_attempts=self.max_attempts,
            available_at=now,
            created_at=now,
            updated_at=now,
            payload=dict(payload),
        )
        with Session(self.engine) as session:
            session.add(job)
            session.commit()
            session.refresh(job)
        logger.info("Enqueued job %s (%s) for file %s", job.id, name, job.file_id)
        return job

    def get(self, job_id: str) -> Optional[JobRecord]:
        with Session(self.engine) as session:
            return session.get(JobRecord, job_id)

    def claim_next(self) -> Optional[JobRecord]:
        """Move the oldest due waiting job to ``active`` and return it."""

        with Session(self.engine) as session:
            for _ in range(5):
                now = utcnow()
                candidate = session.exec(
                    select(JobRecord.id)
                    .where(JobRecord.queue == self.queue)
                    .where(JobRecord.status == JobStatus.WAITING.value)
                    .where(JobRecord.available_at <= now)
                    .order_by(JobRecord.available_at, JobRecord.created_at)
                    .limit(1)
                ).first()
                if candidate is None:
                    return None
                result = session.exec(
                    update(JobRecord)
                    .where(JobRecord.id == candidate)
                    .where(JobRecord.status == JobStatus.WAITING.value)
                    .values(
                        status=JobStatus.ACTIVE.value,
                        attempts=JobRecord.attempts + 1,
                        updated_at=now,
                    )
                )
                session.commit()
                if result.rowcount == 1:
                    return session.get(JobRecord, candidate, populate_existing=True)
            return None

    def _finish(self, job_id: str, **values: Any) -> Optional[JobRecord]:
        with Session(self.engine) as session:
            job = session.get(JobRecord, job_id)
            if job is None:
                return None
            for key, value in values.items():
                setattr(job, key, value)
            job.updated_at = utcnow()
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    def complete(self, job_id: str, result: Dict[str, Any] | None = None) -> Optional[JobRecord]:
        now = utcnow()
        return self._finish(
            job_id,
            status=JobStatus.COMPLETED.value,
            result=result,
            last_error=None,
            finished_at=now,
        )

    def retry_later(self, job_id: str, delay_seconds: float, error: str) -> Optional[JobRecord]:
        return self._finish(
            job_id,
            status=JobStatus.WAITING.value,
            available_at=utcnow() + timedelta(seconds=max(delay_seconds, 0.0)),
            last_error=error,
        )

    def fail(self, job_id: str, error: str) -> Optional[JobRecord]:
        return self._finish(
            job_id,
            status=JobStatus.FAILED.value,
            last_error=error,
            finished_at=utcnow(),
        )

    def requeue_stale(self) -> int:
        """Return jobs left ``active`` by a previous process to ``waiting``."""

        with Session(self.engine) as session:
            result = session.exec(
                update(JobRecord)
                .where(JobRecord.queue == self.queue)
                .where(JobRecord.status == JobStatus.ACTIVE.value)
                .values(status=JobStatus.WAITING.value, updated_at=utcnow())
            )
            session.commit()
            count = result.rowcount or 0
        if count:
            logger.warning("Re-queued %d interrupted job(s)", count)
        return count

    def purge_finished(self, older_than: timedelta) -> int:
        """Delete completed and failed jobs finished before ``now - older_than``."""

        cutoff = utcnow() - older_than
        with Session(self.engine) as session:
            jobs = session.exec(
                select(JobRecord)
                .where(JobRecord.queue == self.queue)
                .where(JobRecord.status.in_(FINISHED_STATES))
                .where(JobRecord.finished_at.is_not(None))
                .where(JobRecord.finished_at < cutoff)
            ).all()
            for job in jobs:
                session.delete(job)
            session.commit()
        if jobs:
            logger.info("Purged %d finished job(s)", len(jobs))
        return len(jobs)

    def counts(self) -> Dict[str, int]:
        totals = {status.value: 0 for status in JobStatus}
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRecord.status, func.count())
                .where(JobRecord.queue == self.queue)
                .group_by(JobRecord.status)
            ).all()
        for status, count in rows:
            totals[str(status)] = int(count)
        return totals

    def ping(self) -> bool:
        """Return ``True`` when the queue store answers a trivial query."""

        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Job queue store unavailable: %s", exc)
            return False
        return True


def _text_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


__all__ = ["FILE_PROCESSING_QUEUE", "JobQueue"]
