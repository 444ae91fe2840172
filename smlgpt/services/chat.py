"""Chat orchestration: prompt assembly and the completion call."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict, List, Sequence

from ..config import Settings
from ..models.chat import ChatMessage
from ..observability import metrics_registry
from ..utils.errors import ExternalServiceError, ValidationError
from .gateway import AIProvider
from .prompts import CHAT_SYSTEM_PROMPT, CRITICAL_HAZARD_MARKER, DOCUMENT_CONTEXT_HEADER
from .registry import DocumentRegistry

logger = logging.getLogger(__name__)

_CONTEXT_ROLES = {"user", "assistant"}


@dataclass(slots=True)
class ChatReply:
    response: str
    session_id: str | None
    model: str
    timestamp: str

    @property
    def has_critical_hazard(self) -> bool:
        return CRITICAL_HAZARD_MARKER in self.response

    def as_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "model": self.model,
            "has_critical_hazard": self.has_critical_hazard,
        }


def prior_turns(context: Any, limit: int) -> List[Dict[str, str]]:
    """Keep the last ``limit`` well-formed user/assistant turns."""

    if not isinstance(context, list):
        return []
    turns = [
        ChatMessage(role=item["role"], content=item["content"]).as_prompt()
        for item in context
        if isinstance(item, dict)
        and item.get("role") in _CONTEXT_ROLES
        and isinstance(item.get("content"), str)
    ]
    return turns[-limit:] if limit > 0 else []


def document_context(
    registry: DocumentRegistry, references: Sequence[Any] | None, *, limit: int
) -> str:
    if not references:
        return ""
    blocks = [
        block
        for block in (
            registry.context_text(str(reference), limit=limit)
            for reference in references
            if isinstance(reference, str)
        )
        if block is not None
    ]
    if not blocks:
        return ""
    return DOCUMENT_CONTEXT_HEADER + "\n\n".join(blocks)


def build_messages(
    message: str,
    *,
    context: Any = None,
    document_references: Sequence[Any] | None = None,
    registry: DocumentRegistry,
    settings: Settings,
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": CHAT_SYSTEM_PROMPT},
        *prior_turns(context, settings.chat_max_context_messages),
        {
            "role": "user",
            "content": message
            + document_context(
                registry,
                document_references,
                limit=settings.chat_document_context_chars,
            ),
        },
    ]


async def answer(
    body: Dict[str, Any],
    *,
    gateway: AIProvider,
    registry: DocumentRegistry,
    settings: Settings,
) -> ChatReply:
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required and must be a string")

    session_id = body.get("session_id")
    if session_id is not None and not isinstance(session_id, str):
        raise ValidationError("session_id must be a string")

    references = body.get("document_references")
    if references is not None and not isinstance(references, list):
        raise ValidationError("document_references must be a list of ids")

    messages = build_messages(
        message,
        context=body.get("context"),
        document_references=references,
        registry=registry,
        settings=settings,
    )
    metrics_registry.track_event("chat_request")
    content = await asyncio.to_thread(gateway.complete_chat, messages)
    if not content:
        raise ExternalServiceError("Azure OpenAI", "No response generated")

    reply = ChatReply(
        response=content,
        session_id=session_id,
        model=settings.openai_deployment,
        timestamp=datetime.now(UTC).isoformat(),
    )
    if reply.has_critical_hazard:
        metrics_registry.track_event("critical_hazard_in_chat")
    logger.info("Chat response generated (%d chars)", len(content))
    return reply


__all__ = ["ChatReply", "answer", "build_messages", "document_context", "prior_turns"]
