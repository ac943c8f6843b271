"""Server-Sent Events endpoint and subscription management."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from polychat.core.config import Settings, get_settings
from polychat.core.exceptions import PermissionDeniedError, ResourceNotFoundError
from polychat.routes._identity import (
    get_current_user_id,
    get_message_store,
    get_registry,
)
from polychat.services.messaging.store import InMemoryMessageStore
from polychat.services.realtime.broadcaster import (
    ConnectionNotFoundError,
    ConnectionRegistry,
)
from polychat.services.realtime.stream import SSE_HEADERS, stream_events

router = APIRouter(prefix="/realtime")
logger = logging.getLogger(__name__)


class SubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., alias="conversationId", max_length=128)


@router.get("")
async def open_stream(
    request: Request,
    conversation_id: Optional[str] = Query(None, alias="conversationId"),
    user_id: str = Depends(get_current_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
    store: InMemoryMessageStore = Depends(get_message_store),
    settings: Settings = Depends(get_settings),
):
    """Open a push stream for the caller, optionally following a conversation."""
    if conversation_id and not await store.is_member(conversation_id, user_id):
        raise PermissionDeniedError("Not a member of this conversation")

    connection_id = f"{user_id}-{uuid.uuid4().hex[:12]}"
    connection = registry.add_connection(connection_id, user_id)
    if conversation_id:
        registry.subscribe(conversation_id, connection_id)

    async def event_source():
        try:
            async for frame in stream_events(
                connection,
                heartbeat_interval=settings.REALTIME_HEARTBEAT_SECONDS,
                is_disconnected=request.is_disconnected,
            ):
                yield frame
        finally:
            registry.remove_connection(connection_id)

    return StreamingResponse(
        event_source(), media_type="text/event-stream", headers=SSE_HEADERS
    )


def _owned_connection(registry: ConnectionRegistry, connection_id: str, user_id: str):
    connection = registry.get_connection(connection_id)
    if connection is None:
        raise ResourceNotFoundError("Connection", connection_id)
    if connection.owner_user_id != user_id:
        raise PermissionDeniedError("Connection belongs to another user")
    return connection


@router.post("/{connection_id}/subscribe")
async def subscribe(
    connection_id: str,
    body: SubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
    store: InMemoryMessageStore = Depends(get_message_store),
):
    _owned_connection(registry, connection_id, user_id)
    if not await store.is_member(body.conversation_id, user_id):
        raise PermissionDeniedError("Not a member of this conversation")
    try:
        registry.subscribe(body.conversation_id, connection_id)
    except ConnectionNotFoundError as e:
        # Closed between the ownership check and the subscribe
        raise ResourceNotFoundError("Connection", connection_id) from e
    return {
        "success": True,
        "connectionId": connection_id,
        "conversationId": body.conversation_id,
    }


@router.post("/{connection_id}/unsubscribe")
async def unsubscribe(
    connection_id: str,
    body: SubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
):
    _owned_connection(registry, connection_id, user_id)
    registry.unsubscribe(body.conversation_id, connection_id)
    return {
        "success": True,
        "connectionId": connection_id,
        "conversationId": body.conversation_id,
    }


@router.get("/stats")
async def realtime_stats(
    user_id: str = Depends(get_current_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return {"success": True, "data": registry.get_stats()}
