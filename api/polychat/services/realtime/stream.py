"""Server-Sent Events stream for one registered connection."""

import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from polychat.services.realtime.connection import Connection
from polychat.services.realtime.events import EventType, RealtimeEvent, heartbeat_event

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def stream_events(
    connection: Connection,
    heartbeat_interval: float = 30.0,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``connection`` until it closes.

    The first frame is ``connected``. While idle a ``heartbeat`` frame is sent
    every ``heartbeat_interval`` seconds. The generator stops when the registry
    closes the connection or ``is_disconnected`` reports the client went away.
    Unregistering is left to the caller.
    """
    yield RealtimeEvent(
        EventType.CONNECTED,
        {
            "connectionId": connection.connection_id,
            "userId": connection.owner_user_id,
            "conversationIds": sorted(connection.conversation_ids),
        },
    ).to_sse()

    while not connection.closed:
        if is_disconnected is not None and await is_disconnected():
            logger.info(f"Client disconnected from {connection.connection_id}")
            break

        event = await connection.next_event(timeout=heartbeat_interval)
        if event is None:
            if connection.closed:
                break
            yield heartbeat_event().to_sse()
            continue
        yield event.to_sse()
