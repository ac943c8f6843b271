"""Persistence collaborator used by the fan-out service.

The production store lives outside this service (relational CRUD). The
in-memory implementation backs development runs and tests.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from polychat.core.exceptions import ResourceNotFoundError
from polychat.services.messaging.models import (
    Conversation,
    ConversationMember,
    Message,
    User,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredTranslation:
    message_id: str
    target_language: str
    translated_text: str
    confidence: float


class MessageStore(Protocol):
    """Operations the fan-out service needs from persistence."""

    async def persist_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        source_language: Optional[str] = None,
    ) -> Message: ...

    async def get_conversation_members(
        self, conversation_id: str
    ) -> List[ConversationMember]: ...

    async def get_user_by_id(self, user_id: str) -> Optional[User]: ...

    async def get_message(self, message_id: str) -> Optional[Message]: ...

    async def get_conversation_messages(
        self, conversation_id: str, limit: int = 50
    ) -> List[Message]: ...

    async def is_member(self, conversation_id: str, user_id: str) -> bool: ...

    async def get_message_translation(
        self, message_id: str, target_language: str
    ) -> Optional[StoredTranslation]: ...

    async def save_message_translation(
        self,
        message_id: str,
        target_language: str,
        translated_text: str,
        confidence: float,
    ) -> None: ...


class InMemoryMessageStore:
    """Process-local MessageStore. Not durable across restarts."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._admins: Dict[str, Set[str]] = {}
        self._messages: Dict[str, Message] = {}
        self._conversation_messages: Dict[str, List[str]] = {}
        self._translations: Dict[Tuple[str, str], StoredTranslation] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # Users
    # =========================================================================

    async def upsert_user(
        self,
        user_id: str,
        first_name: str = "",
        last_name: str = "",
        preferred_language: Optional[str] = None,
    ) -> User:
        user = User(
            user_id=user_id,
            first_name=first_name,
            last_name=last_name,
            preferred_language=preferred_language,
        )
        async with self._lock:
            self._users[user_id] = user
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        async with self._lock:
            return self._users.get(user_id)

    async def set_preferred_language(self, user_id: str, language: str) -> User:
        """Update a user's preferred language, creating the user if unknown."""
        async with self._lock:
            current = self._users.get(user_id) or User(user_id=user_id)
            updated = User(
                user_id=current.user_id,
                first_name=current.first_name,
                last_name=current.last_name,
                preferred_language=language,
            )
            self._users[user_id] = updated
        logger.info(f"User {user_id} preferred language set to {language}")
        return updated

    # =========================================================================
    # Conversations
    # =========================================================================

    async def create_conversation(
        self,
        creator_id: str,
        member_ids: Iterable[str],
        name: Optional[str] = None,
    ) -> Conversation:
        members = frozenset({creator_id, *member_ids})
        conversation = Conversation(
            id=str(uuid.uuid4()),
            member_ids=members,
            name=name,
            created_by=creator_id,
        )
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._admins[conversation.id] = {creator_id}
            self._conversation_messages[conversation.id] = []
        logger.info(
            f"Conversation {conversation.id} created by {creator_id} "
            f"with {len(members)} members"
        )
        return conversation

    async def get_user_conversations(self, user_id: str) -> List[Conversation]:
        async with self._lock:
            return [
                conversation
                for conversation in self._conversations.values()
                if user_id in conversation.member_ids
            ]

    async def is_member(self, conversation_id: str, user_id: str) -> bool:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation is not None and user_id in conversation.member_ids

    async def get_conversation_members(
        self, conversation_id: str
    ) -> List[ConversationMember]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ResourceNotFoundError("Conversation", conversation_id)
            admins = self._admins.get(conversation_id, set())
            members = []
            for user_id in sorted(conversation.member_ids):
                user = self._users.get(user_id) or User(user_id=user_id)
                members.append(
                    ConversationMember(
                        user_id=user_id,
                        preferred_language=user.preferred_language,
                        is_admin=user_id in admins,
                        display_name=user.display_name,
                    )
                )
            return members

    # =========================================================================
    # Messages
    # =========================================================================

    async def persist_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        source_language: Optional[str] = None,
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            original_language=source_language,
            created_at=utc_now(),
        )
        async with self._lock:
            if conversation_id not in self._conversations:
                raise ResourceNotFoundError("Conversation", conversation_id)
            self._messages[message.id] = message
            self._conversation_messages[conversation_id].append(message.id)
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        async with self._lock:
            return self._messages.get(message_id)

    async def get_conversation_messages(
        self, conversation_id: str, limit: int = 50
    ) -> List[Message]:
        """Most recent ``limit`` messages, oldest first."""
        async with self._lock:
            message_ids = self._conversation_messages.get(conversation_id, [])
            return [self._messages[message_id] for message_id in message_ids[-limit:]]

    async def get_message_translation(
        self, message_id: str, target_language: str
    ) -> Optional[StoredTranslation]:
        async with self._lock:
            return self._translations.get((message_id, target_language))

    async def save_message_translation(
        self,
        message_id: str,
        target_language: str,
        translated_text: str,
        confidence: float,
    ) -> None:
        async with self._lock:
            self._translations[(message_id, target_language)] = StoredTranslation(
                message_id=message_id,
                target_language=target_language,
                translated_text=translated_text,
                confidence=confidence,
            )
