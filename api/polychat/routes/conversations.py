"""Conversation and user preference endpoints backed by the message store."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from polychat.core.exceptions import UnsupportedLanguageError, ValidationError
from polychat.routes._identity import get_current_user_id, get_message_store
from polychat.services.messaging.store import InMemoryMessageStore
from polychat.services.translation.language_detector import (
    DEFAULT_LANGUAGE,
    is_supported_language,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    member_ids: List[str] = Field(..., alias="memberIds", max_length=100)
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("member_ids")
    @classmethod
    def strip_member_ids(cls, v: List[str]) -> List[str]:
        return [member_id.strip() for member_id in v if member_id.strip()]


class LanguagePreferenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    language: str = Field(..., alias="preferredLanguage", max_length=16)


@router.post("/conversations", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: CreateConversationRequest,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    others = [member_id for member_id in body.member_ids if member_id != user_id]
    if not others:
        raise ValidationError(
            "A conversation needs at least one other member", field="memberIds"
        )
    conversation = await store.create_conversation(user_id, others, name=body.name)
    return {"success": True, "data": conversation.to_dict()}


@router.get("/conversations")
async def list_conversations(
    user_id: str = Depends(get_current_user_id),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    conversations = await store.get_user_conversations(user_id)
    return {
        "success": True,
        "data": [conversation.to_dict() for conversation in conversations],
    }


@router.get("/users/me/language")
async def get_language_preference(
    user_id: str = Depends(get_current_user_id),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    user = await store.get_user_by_id(user_id)
    preferred = (user.preferred_language if user else None) or DEFAULT_LANGUAGE
    return {"success": True, "preferredLanguage": preferred}


@router.put("/users/me/language")
async def update_language_preference(
    body: LanguagePreferenceRequest,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    language = body.language.strip().lower()
    if not is_supported_language(language):
        raise UnsupportedLanguageError(body.language)
    user = await store.set_preferred_language(user_id, language)
    return {"success": True, "preferredLanguage": user.preferred_language}
