"""Connection registry and broadcaster for realtime delivery.

Tracks every live push connection and which conversations each one follows.
Pushes never raise to the caller: a connection that rejects a frame is removed
from the registry on the spot, so the next broadcast no longer sees it.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from polychat.metrics.realtime_metrics import (
    broadcast_deliveries_total,
    realtime_connections_active,
    realtime_connections_total,
)
from polychat.services.realtime.connection import Connection, ConnectionClosedError
from polychat.services.realtime.emitter import EventEmitter
from polychat.services.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)

CONNECTION_OPENED = "connection_opened"
CONNECTION_CLOSED = "connection_closed"


class ConnectionNotFoundError(Exception):
    """Raised when subscribing a connection id that is not registered."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection '{connection_id}' not found in registry")


@dataclass(frozen=True)
class BroadcastResult:
    delivered: int = 0
    failed: int = 0
    total_subscribers: int = 0

    @property
    def success(self) -> bool:
        return self.delivered > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "delivered": self.delivered,
            "failed": self.failed,
            "totalSubscribers": self.total_subscribers,
        }


class ConnectionRegistry:
    """Registry of push connections plus the conversation subscription index.

    Invariant: every id in a subscription set is a key of the connection table.
    Both structures are only mutated together under one lock.

    Example:
        registry = ConnectionRegistry(emitter)
        conn = registry.add_connection("c1", "user-1")
        registry.subscribe("conv-1", "c1")
        result = registry.send_to_conversation("conv-1", event)
        registry.remove_connection("c1")
    """

    def __init__(self, emitter: Optional[EventEmitter] = None, queue_size: int = 256):
        self.emitter = emitter or EventEmitter()
        self.queue_size = queue_size
        self._connections: Dict[str, Connection] = {}
        self._subscribers: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def add_connection(
        self,
        connection_id: str,
        owner_user_id: str,
        channel: Optional[Connection] = None,
    ) -> Connection:
        """Register a connection, replacing any previous one with the same id."""
        connection = channel or Connection(
            connection_id, owner_user_id, queue_size=self.queue_size
        )
        with self._lock:
            if connection_id in self._connections:
                logger.warning(f"Replacing existing connection {connection_id}")
                self._drop(connection_id)
            self._connections[connection_id] = connection
            realtime_connections_active.set(len(self._connections))

        realtime_connections_total.labels(event="opened").inc()
        logger.info(f"Connection {connection_id} opened for user {owner_user_id}")
        self.emitter.emit(CONNECTION_OPENED, connection)
        return connection

    def remove_connection(self, connection_id: str) -> bool:
        """Remove a connection and all of its subscriptions. Idempotent."""
        with self._lock:
            connection = self._drop(connection_id)
        if connection is None:
            return False

        realtime_connections_total.labels(event="closed").inc()
        logger.info(f"Connection {connection_id} closed")
        self.emitter.emit(CONNECTION_CLOSED, connection)
        return True

    def _drop(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        connection.close()
        for conversation_id in list(connection.conversation_ids):
            subscribers = self._subscribers.get(conversation_id)
            if subscribers is not None:
                subscribers.discard(connection_id)
                if not subscribers:
                    del self._subscribers[conversation_id]
        realtime_connections_active.set(len(self._connections))
        return connection

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, conversation_id: str, connection_id: str) -> None:
        """Follow a conversation on a connection.

        Raises:
            ConnectionNotFoundError: If the connection is not registered.
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id)
            self._subscribers.setdefault(conversation_id, set()).add(connection_id)
            connection.conversation_ids.add(conversation_id)
        logger.debug(f"Connection {connection_id} subscribed to {conversation_id}")

    def unsubscribe(self, conversation_id: str, connection_id: str) -> None:
        with self._lock:
            subscribers = self._subscribers.get(conversation_id)
            if subscribers is not None:
                subscribers.discard(connection_id)
                if not subscribers:
                    del self._subscribers[conversation_id]
            connection = self._connections.get(connection_id)
            if connection is not None:
                connection.conversation_ids.discard(conversation_id)

    # =========================================================================
    # Delivery
    # =========================================================================

    def send_to_conversation(
        self, conversation_id: str, event: RealtimeEvent
    ) -> BroadcastResult:
        """Push an event to every connection following a conversation."""
        with self._lock:
            targets = list(self._subscribers.get(conversation_id, ()))
            delivered, failed, dropped = self._push_all(
                targets, event, scope="conversation"
            )
            total = len(self._subscribers.get(conversation_id, ()))
        self._announce_closed(dropped)

        if not targets:
            logger.debug(f"No subscribers for conversation {conversation_id}")
        else:
            logger.info(
                f"Broadcast {event.type.value} to conversation {conversation_id}: "
                f"{delivered} delivered, {failed} failed"
            )
        return BroadcastResult(delivered, failed, total)

    def send_to_user(
        self,
        user_id: str,
        event: RealtimeEvent,
        exclude_conversation_id: Optional[str] = None,
    ) -> BroadcastResult:
        """Push an event to every connection the user owns.

        Args:
            user_id: Recipient.
            event: Frame to push.
            exclude_conversation_id: Skip connections following this
                conversation (they already received a conversation broadcast).
        """
        with self._lock:
            owned = [
                connection
                for connection in self._connections.values()
                if connection.owner_user_id == user_id
            ]
            targets = [
                connection.connection_id
                for connection in owned
                if exclude_conversation_id is None
                or exclude_conversation_id not in connection.conversation_ids
            ]
            delivered, failed, dropped = self._push_all(targets, event, scope="user")
            total = sum(
                1
                for connection in self._connections.values()
                if connection.owner_user_id == user_id
            )
        self._announce_closed(dropped)

        logger.debug(
            f"Sent {event.type.value} to user {user_id}: "
            f"{delivered} delivered, {failed} failed"
        )
        return BroadcastResult(delivered, failed, total)

    def _push_all(
        self, connection_ids: List[str], event: RealtimeEvent, scope: str
    ) -> Tuple[int, int, List[Connection]]:
        delivered = 0
        failed = 0
        dropped: List[Connection] = []
        for connection_id in connection_ids:
            connection = self._connections.get(connection_id)
            if connection is None:
                failed += 1
                self._prune_subscriber(connection_id)
                continue
            try:
                connection.push(event)
                delivered += 1
            except ConnectionClosedError as e:
                failed += 1
                logger.warning(f"Dropping connection {connection_id}: {e.reason}")
                self._drop(connection_id)
                realtime_connections_total.labels(event="pruned").inc()
                dropped.append(connection)

        if delivered:
            broadcast_deliveries_total.labels(scope=scope, result="delivered").inc(
                delivered
            )
        if failed:
            broadcast_deliveries_total.labels(scope=scope, result="failed").inc(failed)
        return delivered, failed, dropped

    def _announce_closed(self, dropped: List[Connection]) -> None:
        for connection in dropped:
            self.emitter.emit(CONNECTION_CLOSED, connection)

    def _prune_subscriber(self, connection_id: str) -> None:
        for conversation_id in list(self._subscribers):
            subscribers = self._subscribers[conversation_id]
            subscribers.discard(connection_id)
            if not subscribers:
                del self._subscribers[conversation_id]

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def get_subscribers(self, conversation_id: str) -> Set[str]:
        with self._lock:
            return set(self._subscribers.get(conversation_id, ()))

    def get_user_connections(self, user_id: str) -> List[Connection]:
        with self._lock:
            return [
                connection
                for connection in self._connections.values()
                if connection.owner_user_id == user_id
            ]

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "connections": len(self._connections),
                "users": len(
                    {connection.owner_user_id for connection in self._connections.values()}
                ),
                "conversations": len(self._subscribers),
                "subscriptions": sum(len(ids) for ids in self._subscribers.values()),
            }

    def close_all(self) -> None:
        """Drop every connection, used on shutdown."""
        with self._lock:
            connection_ids = list(self._connections)
        for connection_id in connection_ids:
            self.remove_connection(connection_id)
