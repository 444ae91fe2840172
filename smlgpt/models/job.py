"""Persistence model and payload schema for queued file-processing jobs."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC timestamp."""

    return datetime.now(UTC)


def _timestamp_column(*, nullable: bool = False, index: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRecord(SQLModel, table=True):
    """One unit of queued, retryable background work."""

    __tablename__ = "jobs"

    id: str = Field(primary_key=True)
    name: str = Field(index=True, nullable=False)
    queue: str = Field(default="file-processing", index=True, nullable=False)
    file_id: str | None = Field(default=None, index=True, nullable=True)
    session_id: str | None = Field(default=None, index=True, nullable=True)
    status: str = Field(default=JobStatus.WAITING.value, index=True, nullable=False)
    attempts: int = Field(default=0, nullable=False)
    max_attempts: int = Field(default=3, nullable=False)
    available_at: datetime = Field(
        default_factory=utcnow, sa_column=_timestamp_column(index=True)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    finished_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column(nullable=True)
    )
    last_error: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    result: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )


class JobPayload(BaseModel):
    """Validated payload of a file-processing job."""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = PydanticField(alias="fileId", min_length=1)
    file_name: str = PydanticField(alias="fileName", min_length=1)
    file_url: str = PydanticField(alias="fileUrl", min_length=1)
    file_type: str = PydanticField(alias="fileType", min_length=1)
    session_id: str = PydanticField(alias="sessionId", min_length=1)

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


__all__ = ["JobPayload", "JobRecord", "JobStatus", "utcnow"]
