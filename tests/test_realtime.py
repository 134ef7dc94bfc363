"""Tests for the change feed, query cache and websocket fan-out."""

import json

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from wacrm.core.security import create_access_token
from wacrm.models import Contact, InboxMessage, MessageDirection, MessageType
from wacrm.services.realtime import (
    ChangeEvent,
    ChangeFeed,
    ConnectionManager,
    EventType,
    QueryCache,
    RealtimeMultiplexer,
    build_message_notification,
)


def event(table="contacts", **record) -> ChangeEvent:
    return ChangeEvent(table=table, event_type=EventType.INSERT, record=record)


@pytest.mark.asyncio
async def test_feed_fans_out_in_order_and_survives_failing_subscriber():
    feed = ChangeFeed()
    seen = []

    def broken(e):
        raise RuntimeError("subscriber bug")

    async def collect(e):
        seen.append(e.record["n"])

    feed.subscribe("contacts", broken)
    feed.subscribe("*", collect)

    await feed.publish(event(n=1))
    await feed.publish(event(n=2))

    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_unsubscribe():
    feed = ChangeFeed()
    seen = []
    unsubscribe = feed.subscribe("contacts", seen.append)
    unsubscribe()
    await feed.publish(event())
    assert seen == []
    assert feed.subscriber_count() == 0


@pytest.mark.asyncio
async def test_query_cache_loads_once_until_invalidated():
    cache = QueryCache()
    calls = []

    async def load():
        calls.append(1)
        return ["row"]

    assert await cache.get_or_load(("conversations", "u-1"), ("conversations",), load) == ["row"]
    assert await cache.get_or_load(("conversations", "u-1"), ("conversations",), load) == ["row"]
    assert len(calls) == 1

    assert cache.invalidate_table("conversations") == 1
    assert ("conversations", "u-1") not in cache
    await cache.get_or_load(("conversations", "u-1"), ("conversations",), load)
    assert len(calls) == 2


def test_message_notification_payload():
    long_text = "x" * 250
    payload = build_message_notification("Maria", long_text, "conv-9")
    assert payload["title"] == "Nova mensagem de Maria"
    assert payload["body"] == "x" * 100
    assert payload["tag"] == "conv-9"

    media = build_message_notification(None, "", "conv-9", "image")
    assert media["title"] == "Nova mensagem de Contato"
    assert media["body"] == "📷 Imagem"


@pytest.mark.asyncio
async def test_multiplexer_invalidates_and_notifies(storage, conversation):
    cache = QueryCache()
    cache.set(("conversations", "user-1"), [], ("conversations",))
    cache.set(("contacts", "user-1"), [], ("contacts",))
    notifications = []

    async def notify(user_id, payload):
        notifications.append((user_id, payload))

    async def resolve_sender(record):
        return "Maria Silva"

    multiplexer = RealtimeMultiplexer(storage.feed, cache, notifier=notify, resolve_sender=resolve_sender)
    multiplexer.start()
    try:
        await storage.save_message(
            InboxMessage(
                id="m-1",
                user_id="user-1",
                conversation_id=conversation.id,
                content="Quero um orçamento",
                direction=MessageDirection.INBOUND,
                message_type=MessageType.TEXT,
            )
        )
    finally:
        multiplexer.stop()

    assert ("conversations", "user-1") not in cache
    assert ("contacts", "user-1") in cache
    [(owner, payload)] = notifications
    assert owner == "user-1"
    assert payload["title"] == "Nova mensagem de Maria Silva"
    assert payload["tag"] == conversation.id


@pytest.mark.asyncio
async def test_outbound_messages_do_not_notify(storage, conversation):
    notifications = []

    async def notify(user_id, payload):
        notifications.append(payload)

    multiplexer = RealtimeMultiplexer(storage.feed, QueryCache(), notifier=notify)
    multiplexer.start()
    await storage.save_message(
        InboxMessage(id="m-1", user_id="user-1", conversation_id=conversation.id, content="Olá", direction=MessageDirection.OUTBOUND)
    )
    multiplexer.stop()

    assert notifications == []
    assert not multiplexer.running


class FakeSocket:
    def __init__(self, broken: bool = False) -> None:
        self.sent: list[dict] = []
        self.broken = broken

    async def accept(self) -> None:
        pass

    async def send_text(self, data: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))


@pytest.mark.asyncio
async def test_connection_manager_routes_changes_to_owner():
    manager = ConnectionManager()
    mine, theirs, dead = FakeSocket(), FakeSocket(), FakeSocket(broken=True)
    await manager.connect(mine, "u-1")
    await manager.connect(dead, "u-1")
    await manager.connect(theirs, "u-2")

    await manager.push_change(event(user_id="u-1", name="Ana"))

    assert mine.sent[0]["type"] == "change"
    assert mine.sent[0]["data"]["record"]["name"] == "Ana"
    assert theirs.sent == []
    # Dead sockets are dropped
    assert manager.get_connected_count("u-1") == 1
    assert manager.get_total_connections() == 2


@pytest.mark.asyncio
async def test_storage_writes_reach_connected_sockets(storage):
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket, "u-1")
    storage.feed.subscribe("*", manager.push_change)

    await storage.save_contact(Contact(id="c-1", user_id="u-1", phone="5511987654321"))

    assert socket.sent[0]["data"]["table"] == "contacts"
    assert socket.sent[0]["data"]["event_type"] == "INSERT"


def test_websocket_ping_pong(app):
    token = create_access_token("user-1")
    with TestClient(app) as test_client:
        with test_client.websocket_connect(f"/realtime/ws?token={token}") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"


def test_websocket_rejects_bad_token(app):
    with TestClient(app) as test_client:
        with pytest.raises(WebSocketDisconnect):
            with test_client.websocket_connect("/realtime/ws?token=garbage") as ws:
                ws.receive_text()
