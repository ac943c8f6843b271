"""Message endpoints: send, history, typing and on-demand translation."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from polychat.core.exceptions import PermissionDeniedError
from polychat.routes._identity import (
    get_current_user_id,
    get_fanout_service,
    get_message_store,
)
from polychat.services.messaging.fanout import MessageFanoutService
from polychat.services.messaging.store import InMemoryMessageStore

router = APIRouter()
logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., max_length=10000)
    original_language: Optional[str] = Field(
        None, alias="originalLanguage", max_length=16
    )


class TypingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_typing: bool = Field(True, alias="isTyping")


class TranslateMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_language: str = Field(..., alias="targetLanguage", max_length=16)


@router.post(
    "/conversations/{conversation_id}/messages",
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    fanout: MessageFanoutService = Depends(get_fanout_service),
):
    """Persist a message and push it to every member in their language."""
    result = await fanout.send_message(
        conversation_id, user_id, body.content, body.original_language
    )
    return result.to_dict()


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    """Conversation history, oldest first. Members only."""
    if not await store.is_member(conversation_id, user_id):
        raise PermissionDeniedError("Not a member of this conversation")
    messages = await store.get_conversation_messages(conversation_id, limit=limit)
    return {"success": True, "data": [message.to_dict() for message in messages]}


@router.post("/conversations/{conversation_id}/typing")
async def notify_typing(
    conversation_id: str,
    body: TypingRequest,
    user_id: str = Depends(get_current_user_id),
    fanout: MessageFanoutService = Depends(get_fanout_service),
):
    result = await fanout.notify_typing(conversation_id, user_id, body.is_typing)
    return {"success": True, "data": result.to_dict()}


@router.post("/messages/{message_id}/translate")
async def translate_message(
    message_id: str,
    body: TranslateMessageRequest,
    user_id: str = Depends(get_current_user_id),
    fanout: MessageFanoutService = Depends(get_fanout_service),
):
    """Translate a stored message on demand for the calling member."""
    data = await fanout.translate_message(message_id, user_id, body.target_language)
    return {"success": True, "data": data}
