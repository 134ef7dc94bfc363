"""Database change feed and the query cache it keeps fresh.

Storage backends publish a ``ChangeEvent`` after every committed write.
The ``RealtimeMultiplexer`` is the one subscriber that turns those events
into cache invalidations and inbound-message notifications; websocket
clients subscribe through the ``ConnectionManager``.
"""

import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable, Hashable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow
from wacrm.core.text import truncate
from wacrm.models.message import MEDIA_PREVIEWS, MessageType

logger = structlog.get_logger()

ALL_TABLES = "*"


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row change, shaped like a realtime ``postgres_changes`` payload."""

    table: str
    event_type: EventType
    record: dict[str, Any] = Field(default_factory=dict)
    old_record: dict[str, Any] | None = None
    commit_timestamp: datetime = Field(default_factory=utcnow)

    @property
    def owner_id(self) -> str | None:
        """User the row belongs to, used to route events to sockets."""
        row = self.record or self.old_record or {}
        owner = row.get("user_id")
        return str(owner) if owner is not None else None


Subscriber = Callable[[ChangeEvent], Awaitable[None] | None]


class ChangeFeed:
    """In-process fan-out of change events.

    Subscribers see events in publish order. A subscriber that raises is
    logged and skipped; the remaining subscribers still run.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, table: str, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to one table (or ``*``). Returns the unsubscribe callable."""
        self._subscribers[table].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(table, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def subscriber_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._subscribers.get(table, []))
        return sum(len(v) for v in self._subscribers.values())

    async def publish(self, event: ChangeEvent) -> None:
        callbacks = [*self._subscribers.get(event.table, []), *self._subscribers.get(ALL_TABLES, [])]
        for callback in callbacks:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Change feed subscriber failed",
                    table=event.table,
                    event_type=event.event_type.value,
                    error=str(e),
                )


class QueryCache:
    """Cached query results, each tagged with the tables it reads."""

    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}
        self._tables: dict[Hashable, frozenset[str]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def set(self, key: Hashable, value: Any, tables: tuple[str, ...] | list[str]) -> None:
        self._entries[key] = value
        self._tables[key] = frozenset(tables)

    async def get_or_load(
        self,
        key: Hashable,
        tables: tuple[str, ...] | list[str],
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        if key in self._entries:
            return self._entries[key]
        value = await loader()
        self.set(key, value, tables)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)
        self._tables.pop(key, None)

    def invalidate_table(self, table: str) -> int:
        """Drop every entry that depends on ``table``. Returns how many went."""
        stale = [key for key, tables in self._tables.items() if table in tables]
        for key in stale:
            self.invalidate(key)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._tables.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# Changed table -> cached tables that must be refetched
INVALIDATIONS: dict[str, tuple[str, ...]] = {
    "inbox_messages": ("inbox_messages", "conversations"),
    "conversations": ("conversations",),
    "contacts": ("contacts", "conversations"),
    "tag_assignments": ("tag_assignments", "conversations", "contacts"),
    "whatsapp_instances": ("whatsapp_instances", "warming_schedules"),
    "warming_schedules": ("warming_schedules",),
    "warming_activities": ("warming_activities", "warming_schedules"),
    "funnel_deals": ("funnel_deals", "funnel_metrics"),
    "funnel_stages": ("funnel_stages", "funnel_metrics"),
    "subscriptions": ("subscriptions",),
    "user_ai_tokens": ("user_ai_tokens", "ai_token_transactions"),
    "user_activity_sessions": ("user_activity_sessions",),
}

NOTIFICATION_BODY_LENGTH = 100


def build_message_notification(
    sender_name: str | None,
    content: str | None,
    conversation_id: str,
    message_type: str = "text",
) -> dict[str, Any]:
    """Payload for the browser notification shown on an inbound message.

    The conversation id doubles as the notification tag so repeated messages
    in the same thread replace each other.
    """
    body = truncate(content, NOTIFICATION_BODY_LENGTH) if content else ""
    if not body:
        try:
            body = MEDIA_PREVIEWS.get(MessageType(message_type), "Nova mensagem")
        except ValueError:
            body = "Nova mensagem"
    return {
        "title": f"Nova mensagem de {sender_name or 'Contato'}",
        "body": body,
        "tag": conversation_id,
        "data": {"conversation_id": conversation_id},
    }


Notifier = Callable[[str, dict[str, Any]], Awaitable[None]]
SenderResolver = Callable[[dict[str, Any]], Awaitable[str | None]]


class RealtimeMultiplexer:
    """Single change-feed subscription driving invalidation and notifications."""

    def __init__(
        self,
        feed: ChangeFeed,
        cache: QueryCache,
        notifier: Notifier | None = None,
        resolve_sender: SenderResolver | None = None,
    ) -> None:
        self.feed = feed
        self.cache = cache
        self._notifier = notifier
        self._resolve_sender = resolve_sender
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.feed.subscribe(ALL_TABLES, self.handle)
            logger.info("Realtime multiplexer started")

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Realtime multiplexer stopped")

    async def handle(self, event: ChangeEvent) -> None:
        for table in INVALIDATIONS.get(event.table, (event.table,)):
            self.cache.invalidate_table(table)

        if self._is_inbound_message(event) and self._notifier is not None:
            record = event.record
            sender = await self._resolve_sender(record) if self._resolve_sender else None
            notification = build_message_notification(
                sender,
                record.get("content"),
                str(record.get("conversation_id", "")),
                record.get("message_type", "text"),
            )
            owner = event.owner_id
            if owner:
                await self._notifier(owner, notification)

    @staticmethod
    def _is_inbound_message(event: ChangeEvent) -> bool:
        return (
            event.table == "inbox_messages"
            and event.event_type == EventType.INSERT
            and event.record.get("direction") == "inbound"
        )
