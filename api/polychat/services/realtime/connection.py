"""A single client push connection and its outbound frame queue."""

import asyncio
import logging
from typing import Optional, Set

from polychat.services.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)


class ConnectionClosedError(Exception):
    """Raised when pushing to a connection that can no longer accept frames."""

    def __init__(self, connection_id: str, reason: str):
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(f"Connection '{connection_id}' rejected push: {reason}")


class Connection:
    """Push channel owned by one user on one device.

    Frames are buffered in a bounded queue drained by the stream generator. A
    full queue means the client stopped reading, so the push fails and the
    registry drops the connection.
    """

    def __init__(
        self,
        connection_id: str,
        owner_user_id: str,
        queue_size: int = 256,
    ):
        self.connection_id = connection_id
        self.owner_user_id = owner_user_id
        self.conversation_ids: Set[str] = set()
        self._queue: "asyncio.Queue[RealtimeEvent]" = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: RealtimeEvent) -> None:
        """Enqueue a frame without blocking.

        Raises:
            ConnectionClosedError: If the connection is closed or backed up.
        """
        if self._closed:
            raise ConnectionClosedError(self.connection_id, "closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise ConnectionClosedError(self.connection_id, "queue full") from e

    async def next_event(self, timeout: Optional[float] = None) -> Optional[RealtimeEvent]:
        """Wait for the next frame.

        Returns None after ``timeout`` seconds idle, or as soon as the
        connection is closed.
        """
        if self._closed:
            return None
        get_frame = asyncio.ensure_future(self._queue.get())
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait(
                {get_frame, closed},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed.cancel()
            if not get_frame.done():
                get_frame.cancel()
        if get_frame in done:
            return get_frame.result()
        return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed = True
        self._closed_event.set()

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.connection_id!r}, user={self.owner_user_id!r}, "
            f"conversations={sorted(self.conversation_ids)})"
        )
