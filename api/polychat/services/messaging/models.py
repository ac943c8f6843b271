"""Value objects exchanged between the fan-out service and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

UNKNOWN_USER_NAME = "Unknown User"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A persisted chat message. Owned by the store, never mutated here."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    original_language: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def source_language(self) -> str:
        """Declared language, or "auto" when the sender did not state one."""
        language = (self.original_language or "").strip().lower()
        return language or "auto"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "content": self.content,
            "originalLanguage": self.original_language,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class User:
    user_id: str
    first_name: str = ""
    last_name: str = ""
    preferred_language: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or UNKNOWN_USER_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "displayName": self.display_name,
            "preferredLanguage": self.preferred_language,
        }


@dataclass(frozen=True)
class ConversationMember:
    user_id: str
    preferred_language: Optional[str] = None
    is_admin: bool = False
    display_name: str = UNKNOWN_USER_NAME


@dataclass(frozen=True)
class Conversation:
    id: str
    member_ids: FrozenSet[str]
    name: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_direct(self) -> bool:
        return len(self.member_ids) == 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "memberIds": sorted(self.member_ids),
            "isDirect": self.is_direct,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RecipientRendering:
    """How one recipient sees one message. Built per broadcast, never stored."""

    recipient_id: str
    display_text: str
    is_translated: bool
    target_language: Optional[str] = None
    detected_language: Optional[str] = None
    confidence: Optional[float] = None
    translation_unavailable: bool = False
    translation_error: Optional[str] = None
