"""Chat message model."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ChatRole = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """A single conversation turn; never persisted server-side."""

    role: ChatRole
    content: str
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    metadata: dict[str, Any] | None = None

    def as_prompt(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


__all__ = ["ChatMessage", "ChatRole"]
