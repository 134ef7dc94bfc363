"""Realtime change feed, query cache and websocket fan-out."""

from wacrm.services.realtime.connections import ConnectionManager
from wacrm.services.realtime.feed import (
    ChangeEvent,
    ChangeFeed,
    EventType,
    QueryCache,
    RealtimeMultiplexer,
    build_message_notification,
)

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ConnectionManager",
    "EventType",
    "QueryCache",
    "RealtimeMultiplexer",
    "build_message_notification",
]
