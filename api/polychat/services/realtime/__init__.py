"""Realtime delivery package.

This package provides:
- ConnectionRegistry: Live push connections and conversation subscriptions
- Connection: Bounded per-client frame queue
- EventEmitter: Observer for lifecycle and delivery notifications
- stream_events: Server-Sent Events generator with heartbeats
"""

from polychat.services.realtime.broadcaster import (
    BroadcastResult,
    ConnectionNotFoundError,
    ConnectionRegistry,
)
from polychat.services.realtime.connection import Connection, ConnectionClosedError
from polychat.services.realtime.emitter import EventEmitter
from polychat.services.realtime.events import (
    EventType,
    NewMessagePayload,
    RealtimeEvent,
)
from polychat.services.realtime.stream import stream_events

__all__ = [
    "BroadcastResult",
    "Connection",
    "ConnectionClosedError",
    "ConnectionNotFoundError",
    "ConnectionRegistry",
    "EventEmitter",
    "EventType",
    "NewMessagePayload",
    "RealtimeEvent",
    "stream_events",
]
