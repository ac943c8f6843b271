"""Message fan-out with per-recipient translation.

One send is an independent unit of work:

    received -> persisted -> sender_notified -> translating
             -> delivered | partially_delivered

Only validation and persistence failures reach the caller. Translation and
push faults are contained per recipient, and every recipient is sent some
rendering of the message (translated, or the original as a fallback).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from polychat.core.exceptions import (
    BaseAppException,
    PermissionDeniedError,
    PersistenceError,
    ResourceNotFoundError,
    UnsupportedLanguageError,
    ValidationError,
)
from polychat.metrics.realtime_metrics import (
    fanout_duration_seconds,
    messages_sent_total,
    recipient_renderings_total,
)
from polychat.services.messaging.models import (
    UNKNOWN_USER_NAME,
    ConversationMember,
    Message,
    RecipientRendering,
)
from polychat.services.messaging.store import MessageStore
from polychat.services.realtime.broadcaster import BroadcastResult, ConnectionRegistry
from polychat.services.realtime.emitter import EventEmitter
from polychat.services.realtime.events import (
    EventType,
    NewMessagePayload,
    RealtimeEvent,
    new_message_event,
)
from polychat.services.translation.errors import TranslationErrorType, user_message
from polychat.services.translation.language_detector import is_supported_language
from polychat.services.translation.translator import (
    UNKNOWN_LANGUAGE,
    TranslationResult,
    TranslatorClient,
)
from polychat.utils.logging import preview_text

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message_sent"


class SendState(str, Enum):
    RECEIVED = "received"
    PERSISTED = "persisted"
    SENDER_NOTIFIED = "sender_notified"
    TRANSLATING = "translating"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"


@dataclass(frozen=True)
class DeliveryRecord:
    """One delivery attempt: the sender's own, or one recipient's."""

    recipient_id: str
    rendering: RecipientRendering
    result: BroadcastResult
    is_sender: bool = False

    @property
    def delivered(self) -> bool:
        return self.result.delivered > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipientId": self.recipient_id,
            "isSender": self.is_sender,
            "isTranslated": self.rendering.is_translated,
            "targetLanguage": self.rendering.target_language,
            "translationUnavailable": self.rendering.translation_unavailable,
            "delivered": self.result.delivered,
            "failed": self.result.failed,
        }


@dataclass
class SendResult:
    message: Message
    payload: NewMessagePayload
    deliveries: List[DeliveryRecord]
    state: SendState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": self.payload.to_wire(),
            "deliveries": [record.to_dict() for record in self.deliveries],
            "state": self.state.value,
        }


def normalize_language(code: Optional[str]) -> Optional[str]:
    """Lowercase a language code; blank and "auto" mean unknown (None)."""
    language = (code or "").strip().lower()
    if not language or language == "auto":
        return None
    return language


class MessageFanoutService:
    """Persists a message and pushes a language-appropriate copy to each member.

    Collaborators are injected: the message store, the translator client and
    the connection registry. The service itself holds no per-send state.
    """

    def __init__(
        self,
        store: MessageStore,
        translator: TranslatorClient,
        registry: ConnectionRegistry,
        emitter: Optional[EventEmitter] = None,
        recipient_timeout: float = 45.0,
        min_confidence: float = 0.0,
    ):
        """Initialize the fan-out service.

        Args:
            store: Persistence collaborator.
            translator: Translator client (never raises for translation faults).
            registry: Connection registry used for every push.
            emitter: Observer notified with MESSAGE_SENT after each send.
            recipient_timeout: Upper bound in seconds for one recipient's
                translation, including retries.
            min_confidence: Translations must score above this to be shown.
        """
        self.store = store
        self.translator = translator
        self.registry = registry
        self.emitter = emitter or registry.emitter
        self.recipient_timeout = recipient_timeout
        self.min_confidence = min_confidence

    # =========================================================================
    # Send
    # =========================================================================

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        source_language: Optional[str] = None,
    ) -> SendResult:
        """Persist a message and fan it out to every conversation member.

        Args:
            conversation_id: Target conversation.
            sender_id: Author; must be a member.
            content: Message text (trimmed before storing).
            source_language: Declared language of the text, or None/"auto".

        Returns:
            SendResult with one DeliveryRecord per member and the final state.

        Raises:
            ValidationError: If the content is blank.
            PermissionDeniedError: If the sender is not a member.
            PersistenceError: If the store fails. Nothing is delivered.
        """
        start_time = time.perf_counter()
        text = (content or "").strip()
        if not text:
            messages_sent_total.labels(state="rejected").inc()
            raise ValidationError("Message content is required", field="content")

        declared_language = normalize_language(source_language)
        message = await self._persist(conversation_id, sender_id, text, declared_language)
        self._log_state(message, SendState.PERSISTED)

        sender_name = await self._sender_name(sender_id)
        payload = NewMessagePayload(
            id=message.id,
            conversation_id=message.conversation_id,
            content=message.content,
            original_content=message.content,
            sender_id=message.sender_id,
            sender_name=sender_name,
            timestamp=message.created_at.isoformat(),
            original_language=message.original_language,
            is_translated=False,
        )

        deliveries = [self._notify_sender(message, payload)]
        self._log_state(message, SendState.SENDER_NOTIFIED)

        try:
            members = await self.store.get_conversation_members(conversation_id)
        except Exception as e:
            logger.error(
                f"Could not load members of {conversation_id} for message "
                f"{message.id}: {e}"
            )
            state = SendState.PARTIALLY_DELIVERED
        else:
            recipients = [member for member in members if member.user_id != sender_id]
            self._log_state(message, SendState.TRANSLATING, recipients=len(recipients))
            deliveries.extend(
                await asyncio.gather(
                    *(
                        self._deliver_to_recipient(message, payload, member)
                        for member in recipients
                    )
                )
            )
            state = (
                SendState.DELIVERED
                if all(record.delivered for record in deliveries)
                else SendState.PARTIALLY_DELIVERED
            )

        self._log_state(message, state, deliveries=len(deliveries))
        messages_sent_total.labels(state=state.value).inc()
        fanout_duration_seconds.observe(time.perf_counter() - start_time)

        result = SendResult(
            message=message, payload=payload, deliveries=deliveries, state=state
        )
        self.emitter.emit(MESSAGE_SENT, result)
        return result

    async def _persist(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        language: Optional[str],
    ) -> Message:
        try:
            if not await self.store.is_member(conversation_id, sender_id):
                raise PermissionDeniedError(
                    f"User '{sender_id}' is not a member of conversation "
                    f"'{conversation_id}'"
                )
            return await self.store.persist_message(
                conversation_id, sender_id, text, language
            )
        except BaseAppException:
            messages_sent_total.labels(state="rejected").inc()
            raise
        except Exception as e:
            messages_sent_total.labels(state="persistence_failed").inc()
            logger.error(f"Failed to persist message in {conversation_id}: {e}")
            raise PersistenceError(str(e), operation="write") from e

    async def _sender_name(self, sender_id: str) -> str:
        try:
            sender = await self.store.get_user_by_id(sender_id)
        except Exception as e:
            logger.warning(f"Sender lookup failed for {sender_id}: {e}")
            return UNKNOWN_USER_NAME
        return sender.display_name if sender is not None else UNKNOWN_USER_NAME

    def _notify_sender(
        self, message: Message, payload: NewMessagePayload
    ) -> DeliveryRecord:
        event = new_message_event(payload)
        conversation_result = self.registry.send_to_conversation(
            message.conversation_id, event
        )
        # The sender's devices that are not following this conversation
        own_result = self.registry.send_to_user(
            message.sender_id, event, exclude_conversation_id=message.conversation_id
        )
        combined = BroadcastResult(
            delivered=conversation_result.delivered + own_result.delivered,
            failed=conversation_result.failed + own_result.failed,
            total_subscribers=conversation_result.total_subscribers
            + own_result.delivered
            + own_result.failed,
        )
        rendering = RecipientRendering(
            recipient_id=message.sender_id,
            display_text=message.content,
            is_translated=False,
            target_language=message.original_language,
            detected_language=message.original_language,
        )
        return DeliveryRecord(message.sender_id, rendering, combined, is_sender=True)

    # =========================================================================
    # Per-recipient units
    # =========================================================================

    async def _deliver_to_recipient(
        self,
        message: Message,
        payload: NewMessagePayload,
        member: ConversationMember,
    ) -> DeliveryRecord:
        try:
            rendering = await self._render_for(message, member)
        except Exception:
            logger.exception(
                f"Rendering failed for {member.user_id} on message {message.id}"
            )
            rendering = self._unavailable(
                message, member, member.preferred_language, TranslationErrorType.UNKNOWN
            )

        recipient_payload = self._payload_for(payload, rendering)
        result = self.registry.send_to_user(
            member.user_id, new_message_event(recipient_payload)
        )
        if not result.delivered:
            logger.info(f"Recipient {member.user_id} has no live connection")
        return DeliveryRecord(member.user_id, rendering, result)

    async def _render_for(
        self, message: Message, member: ConversationMember
    ) -> RecipientRendering:
        target = normalize_language(member.preferred_language)
        if target is None or target == normalize_language(message.original_language):
            recipient_renderings_total.labels(kind="original").inc()
            return RecipientRendering(
                recipient_id=member.user_id,
                display_text=message.content,
                is_translated=False,
                target_language=target,
                detected_language=message.original_language,
            )

        try:
            result = await asyncio.wait_for(
                self.translator.translate(
                    message.content, target, message.source_language
                ),
                timeout=self.recipient_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Translation for {member.user_id} exceeded "
                f"{self.recipient_timeout}s, sending original"
            )
            return self._unavailable(
                message, member, target, TranslationErrorType.TIMEOUT
            )

        if result.failed:
            return self._unavailable(message, member, target, result.error_type)

        if (
            result.confidence > self.min_confidence
            and result.translated_text != message.content
        ):
            recipient_renderings_total.labels(kind="translated").inc()
            logger.debug(
                f"Translated '{preview_text(message.content)}' for "
                f"{member.user_id} -> {target}"
            )
            return RecipientRendering(
                recipient_id=member.user_id,
                display_text=result.translated_text,
                is_translated=True,
                target_language=target,
                detected_language=result.detected_language,
                confidence=result.confidence,
            )

        # Already in the target language, or too unreliable to show
        recipient_renderings_total.labels(kind="original").inc()
        return RecipientRendering(
            recipient_id=member.user_id,
            display_text=message.content,
            is_translated=False,
            target_language=target,
            detected_language=result.detected_language,
            confidence=result.confidence,
        )

    @staticmethod
    def _unavailable(
        message: Message,
        member: ConversationMember,
        target: Optional[str],
        error_type: Optional[TranslationErrorType],
    ) -> RecipientRendering:
        recipient_renderings_total.labels(kind="fallback").inc()
        return RecipientRendering(
            recipient_id=member.user_id,
            display_text=message.content,
            is_translated=False,
            target_language=normalize_language(target),
            detected_language=message.original_language,
            confidence=0.0,
            translation_unavailable=True,
            translation_error=user_message(error_type),
        )

    @staticmethod
    def _payload_for(
        base: NewMessagePayload, rendering: RecipientRendering
    ) -> NewMessagePayload:
        update: Dict[str, Any] = {
            "content": rendering.display_text,
            "is_translated": rendering.is_translated,
            "target_language": rendering.target_language,
            "detected_language": rendering.detected_language,
            "confidence": rendering.confidence,
        }
        if rendering.is_translated:
            update["translated_content"] = rendering.display_text
        if rendering.translation_unavailable:
            update["translation_unavailable"] = True
            update["translation_error"] = rendering.translation_error
        return base.model_copy(update=update)

    # =========================================================================
    # On-demand translation and typing
    # =========================================================================

    async def translate_message(
        self, message_id: str, user_id: str, target_language: str
    ) -> Dict[str, Any]:
        """Translate a stored message for one member and push the result.

        Raises:
            UnsupportedLanguageError: If the target is not a supported language.
            ResourceNotFoundError: If the message does not exist.
            PermissionDeniedError: If the user is not in the conversation.
        """
        target = normalize_language(target_language)
        if target is None or not is_supported_language(target):
            raise UnsupportedLanguageError(target_language)

        message = await self.store.get_message(message_id)
        if message is None:
            raise ResourceNotFoundError("Message", message_id)
        if not await self.store.is_member(message.conversation_id, user_id):
            raise PermissionDeniedError("Not a member of this conversation")

        stored = await self.store.get_message_translation(message_id, target)
        if stored is not None:
            data = {
                "messageId": message_id,
                "conversationId": message.conversation_id,
                "translatedContent": stored.translated_text,
                "targetLanguage": target,
                "confidence": stored.confidence,
                "isTranslated": stored.translated_text != message.content,
                "cached": True,
            }
        else:
            result = await self._translate_on_demand(message, target)
            if not result.failed and result.confidence > 0:
                await self._save_translation(
                    message_id, target, result.translated_text, result.confidence
                )
            data = {
                "messageId": message_id,
                "conversationId": message.conversation_id,
                "translatedContent": result.translated_text,
                "targetLanguage": target,
                "detectedLanguage": result.detected_language,
                "confidence": result.confidence,
                "isTranslated": (
                    not result.failed and result.translated_text != message.content
                ),
                "cached": result.cached,
            }
            if result.failed:
                data["translationUnavailable"] = True
                data["translationError"] = user_message(result.error_type)

        self.registry.send_to_user(
            user_id, RealtimeEvent(EventType.MESSAGE_TRANSLATED, data)
        )
        return data

    async def _translate_on_demand(
        self, message: Message, target: str
    ) -> TranslationResult:
        try:
            return await asyncio.wait_for(
                self.translator.translate(
                    message.content, target, message.source_language
                ),
                timeout=self.recipient_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"On-demand translation of {message.id} exceeded "
                f"{self.recipient_timeout}s, returning original"
            )
            return TranslationResult(
                translated_text=message.content,
                detected_language=UNKNOWN_LANGUAGE,
                confidence=0.0,
                error_type=TranslationErrorType.TIMEOUT,
            )

    async def _save_translation(
        self, message_id: str, target: str, text: str, confidence: float
    ) -> None:
        try:
            await self.store.save_message_translation(
                message_id, target, text, confidence
            )
        except Exception as e:
            logger.warning(f"Could not store translation of {message_id}: {e}")

    async def notify_typing(
        self, conversation_id: str, user_id: str, is_typing: bool
    ) -> BroadcastResult:
        """Broadcast a typing indicator to the conversation."""
        if not await self.store.is_member(conversation_id, user_id):
            raise PermissionDeniedError("Not a member of this conversation")

        user_name = await self._sender_name(user_id)
        event = RealtimeEvent(
            EventType.TYPING,
            {
                "conversationId": conversation_id,
                "userId": user_id,
                "userName": user_name,
                "isTyping": bool(is_typing),
            },
        )
        return self.registry.send_to_conversation(conversation_id, event)

    @staticmethod
    def _log_state(message: Message, state: SendState, **details: Any) -> None:
        extra = " ".join(f"{key}={value}" for key, value in details.items())
        logger.info(
            f"Message {message.id} in {message.conversation_id}: {state.value}"
            + (f" ({extra})" if extra else "")
        )
