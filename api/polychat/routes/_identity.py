"""Caller identity and service lookups shared by the routers.

Authentication is done by an upstream identity provider, which forwards the
verified user id in the ``X-User-Id`` header.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request

from polychat.core.exceptions import AuthenticationError
from polychat.services.messaging.fanout import MessageFanoutService
from polychat.services.messaging.store import InMemoryMessageStore
from polychat.services.realtime.broadcaster import ConnectionRegistry
from polychat.services.translation.translator import TranslatorClient

MAX_USER_ID_LENGTH = 128


def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Resolve the calling user from the identity header.

    Raises:
        AuthenticationError: If the header is missing, blank or oversized.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError("Missing X-User-Id header")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise AuthenticationError("Invalid X-User-Id header")
    return user_id


def _service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} not available")
    return service


def get_fanout_service(request: Request) -> MessageFanoutService:
    return _service(request, "fanout_service", "Messaging service")


def get_message_store(request: Request) -> InMemoryMessageStore:
    return _service(request, "message_store", "Message store")


def get_registry(request: Request) -> ConnectionRegistry:
    return _service(request, "connection_registry", "Realtime service")


def get_translator(request: Request) -> TranslatorClient:
    return _service(request, "translator", "Translation service")
