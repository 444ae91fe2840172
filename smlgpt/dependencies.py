"""Explicitly constructed collaborators shared by routers and the worker."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Request, WebSocket

from .config import Settings
from .database import get_engine
from .models.document import UploadedFile
from .models.job import JobPayload, JobRecord
from .services.gateway import AIProvider, AzureAIGateway
from .services.job_queue import JobQueue
from .services.notifier import Notifier, SessionHub
from .services.object_store import ObjectStore, build_object_store
from .services.pipeline import AnalysisPipeline
from .services.registry import DocumentRegistry
from .services.worker import Worker

logger = logging.getLogger(__name__)

PROCESS_FILE_JOB = "process-file"


@dataclass
class ServiceContainer:
    settings: Settings
    registry: DocumentRegistry
    object_store: ObjectStore
    gateway: AIProvider
    notifier: Notifier
    queue: JobQueue
    pipeline: AnalysisPipeline
    worker: Optional[Worker] = None

    async def enqueue_file(self, uploaded: UploadedFile) -> JobRecord:
        """Queue the analysis pipeline for an already stored and registered file."""

        payload = JobPayload(
            file_id=uploaded.id,
            file_name=uploaded.name,
            file_url=self.object_store.access_url(uploaded.url),
            file_type=uploaded.mime_type,
            session_id=uploaded.session_id,
        )
        job = await asyncio.to_thread(self.queue.enqueue, PROCESS_FILE_JOB, payload.to_wire())
        if self.worker is not None:
            self.worker.notify()
        return job


def build_services(
    settings: Settings,
    *,
    registry: DocumentRegistry | None = None,
    object_store: ObjectStore | None = None,
    gateway: AIProvider | None = None,
    notifier: Notifier | None = None,
    queue: JobQueue | None = None,
) -> ServiceContainer:
    """Wire the default collaborators, keeping any that were supplied."""

    if registry is None:
        registry = DocumentRegistry()
    if notifier is None:
        notifier = SessionHub()
    if gateway is None:
        gateway = AzureAIGateway(settings)
    if queue is None:
        queue = JobQueue(get_engine(), max_attempts=settings.job_max_attempts)
    pipeline = AnalysisPipeline(gateway, registry, notifier)
    worker = None
    if settings.job_queue_enabled:
        worker = Worker(
            queue,
            pipeline,
            notifier,
            concurrency=settings.job_concurrency,
            backoff_base_s=settings.job_backoff_base_s,
            poll_interval_s=settings.job_poll_interval_s,
            retention=timedelta(hours=settings.job_retention_hours),
        )
    return ServiceContainer(
        settings=settings,
        registry=registry,
        object_store=object_store or build_object_store(settings),
        gateway=gateway,
        notifier=notifier,
        queue=queue,
        pipeline=pipeline,
        worker=worker,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_socket_services(websocket: WebSocket) -> ServiceContainer:
    return websocket.app.state.services


__all__ = [
    "PROCESS_FILE_JOB",
    "ServiceContainer",
    "build_services",
    "get_services",
    "get_socket_services",
]
