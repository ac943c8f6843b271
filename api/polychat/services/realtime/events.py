"""Events pushed to clients over the realtime channel."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventType(str, Enum):
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"
    NEW_MESSAGE = "new_message"
    MESSAGE_TRANSLATED = "message_translated"
    TYPING = "typing"
    ERROR = "error"


@dataclass(frozen=True)
class RealtimeEvent:
    """Envelope for everything written to a push connection."""

    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": self.data, "timestamp": self.timestamp}

    def to_sse(self) -> str:
        """Server-Sent Events frame: ``data: <json>`` and a blank line."""
        payload = json.dumps(self.to_dict(), ensure_ascii=False, default=str)
        return f"data: {payload}\n\n"


class NewMessagePayload(BaseModel):
    """A message as one member sees it. Serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    conversation_id: str = Field(..., alias="conversationId")
    content: str = Field(..., description="Text to display to this recipient")
    original_content: str = Field(..., alias="originalContent")
    sender_id: str = Field(..., alias="senderId")
    sender_name: str = Field(..., alias="senderName")
    timestamp: str
    original_language: Optional[str] = Field(None, alias="originalLanguage")
    translated_content: Optional[str] = Field(None, alias="translatedContent")
    target_language: Optional[str] = Field(None, alias="targetLanguage")
    detected_language: Optional[str] = Field(None, alias="detectedLanguage")
    is_translated: bool = Field(False, alias="isTranslated")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    translation_unavailable: Optional[bool] = Field(
        None, alias="translationUnavailable"
    )
    translation_error: Optional[str] = Field(None, alias="translationError")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def new_message_event(payload: NewMessagePayload) -> RealtimeEvent:
    return RealtimeEvent(EventType.NEW_MESSAGE, payload.to_wire())


def heartbeat_event() -> RealtimeEvent:
    return RealtimeEvent(EventType.HEARTBEAT)
