"""Messaging package: persistence collaborator and fan-out orchestration."""

from polychat.services.messaging.fanout import (
    DeliveryRecord,
    MessageFanoutService,
    SendResult,
    SendState,
)
from polychat.services.messaging.models import (
    Conversation,
    ConversationMember,
    Message,
    RecipientRendering,
    User,
)
from polychat.services.messaging.store import InMemoryMessageStore, MessageStore

__all__ = [
    "Conversation",
    "ConversationMember",
    "DeliveryRecord",
    "InMemoryMessageStore",
    "Message",
    "MessageFanoutService",
    "MessageStore",
    "RecipientRendering",
    "SendResult",
    "SendState",
    "User",
]
