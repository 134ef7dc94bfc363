"""Tests for gateway webhook processing."""

import pytest

from wacrm.core.exceptions import NotFound
from wacrm.models import (
    ConversationStatus,
    Funnel,
    FunnelStage,
    InstanceStatus,
    MessageDirection,
    MessageStatus,
    MessageType,
    WarmingContact,
    WarmingSchedule,
)
from wacrm.services.inbox import WebhookProcessor

GATEWAY_KEY = "gateway-key"


def upsert(
    message_id: str,
    jid: str = "5511987654321@s.whatsapp.net",
    text: str | None = "Olá, tudo bem?",
    from_me: bool = False,
    push_name: str | None = "MARIA SILVA",
    event: str = "messages.upsert",
    message: dict | None = None,
) -> dict:
    return {
        "event": event,
        "instance": "vendas",
        "data": {
            "key": {"remoteJid": jid, "fromMe": from_me, "id": message_id},
            "pushName": push_name,
            "message": message if message is not None else {"conversation": text},
            "messageTimestamp": 1767614400,
        },
    }


@pytest.fixture
def processor(storage, whatsapp):
    return WebhookProcessor(storage, whatsapp)


# ==================== Parsing ====================


def test_parse_batch_skips_groups_and_empty(whatsapp):
    payload = {
        "instance": "vendas",
        "data": {
            "messages": [
                {"key": {"remoteJid": "5511987654321@s.whatsapp.net", "id": "A"}, "message": {"conversation": "oi"}},
                {"key": {"remoteJid": "1203630@g.us", "id": "B"}, "message": {"conversation": "grupo"}},
                {"key": {"remoteJid": "status@broadcast", "id": "C"}, "message": {"conversation": "status"}},
                {"key": {"remoteJid": "5511987654321@s.whatsapp.net", "id": "D"}, "message": {}},
            ]
        },
    }

    parsed = whatsapp.parse_webhook(payload)

    assert [m.whatsapp_message_id for m in parsed] == ["A"]
    assert parsed[0].phone == "5511987654321"


def test_parse_media_and_label_jid(whatsapp):
    payload = upsert(
        "M1",
        jid="123456789@lid",
        message={"imageMessage": {"url": "https://mmg.example/img.jpg", "caption": "foto"}},
    )
    payload["data"]["key"]["remoteJidAlt"] = "5521999998888@s.whatsapp.net"

    [parsed] = whatsapp.parse_webhook(payload)

    assert parsed.message_type == MessageType.IMAGE
    assert parsed.content == "foto"
    assert parsed.media_url == "https://mmg.example/img.jpg"
    assert parsed.phone == "5521999998888"


def test_parse_voice_note(whatsapp):
    [parsed] = whatsapp.parse_webhook(upsert("V1", message={"audioMessage": {"url": "https://a/x.ogg", "ptt": True}}))
    assert parsed.message_type == MessageType.VOICE
    assert parsed.content == ""


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("DELIVERY_ACK", MessageStatus.DELIVERED),
        ("read", MessageStatus.READ),
        (3, MessageStatus.DELIVERED),
        ("SERVER_ACK", MessageStatus.SENT),
    ],
)
def test_parse_status_update(whatsapp, raw, expected):
    update = whatsapp.parse_status_update({"instance": "vendas", "data": {"keyId": "X", "status": raw}})
    assert update.status == expected


def test_validate_webhook(whatsapp):
    assert whatsapp.validate_webhook(GATEWAY_KEY) is True
    assert whatsapp.validate_webhook("wrong") is False
    assert whatsapp.validate_webhook(None) is False


# ==================== Messages ====================


@pytest.mark.asyncio
async def test_unknown_instance(processor):
    with pytest.raises(NotFound):
        await processor.handle(upsert("A1"))


@pytest.mark.asyncio
async def test_payload_without_instance_is_ignored(processor):
    assert await processor.handle({"event": "messages.upsert", "data": {}}) == {
        "success": True,
        "message": "No instance",
    }


@pytest.mark.asyncio
async def test_inbound_message_creates_contact_and_conversation(processor, instance, storage):
    result = await processor.handle(upsert("A1"))

    assert result == {"success": True, "stored": 1}
    contact = await storage.get_contact_by_phone("user-1", "5511987654321")
    assert contact.name == "Maria Silva"
    conversation = await storage.get_conversation_by_contact("user-1", contact.id)
    assert conversation.instance_id == "inst-1"
    assert conversation.unread_count == 1
    assert conversation.last_message_preview == "Olá, tudo bem?"
    [message] = await storage.list_messages(conversation.id)
    assert message.direction == MessageDirection.INBOUND
    assert message.status == MessageStatus.RECEIVED
    assert message.whatsapp_message_id == "A1"


@pytest.mark.asyncio
async def test_duplicate_message_is_stored_once(processor, instance, storage):
    await processor.handle(upsert("A1"))
    result = await processor.handle(upsert("A1"))

    assert result["stored"] == 0
    contact = await storage.get_contact_by_phone("user-1", "5511987654321")
    conversation = await storage.get_conversation_by_contact("user-1", contact.id)
    assert len(await storage.list_messages(conversation.id)) == 1


@pytest.mark.asyncio
async def test_outbound_echo_sets_first_response(processor, conversation, storage):
    await processor.handle(upsert("B1", from_me=True, text="Oi Maria!", push_name="Loja", event="send.message"))

    stored = await storage.get_conversation("conv-1")
    assert stored.first_response_at is not None
    assert stored.unread_count == 0
    contact = await storage.get_contact("contact-1")
    assert contact.name == "Maria Silva"


@pytest.mark.asyncio
async def test_inbound_reopens_closed_conversation(processor, conversation, storage):
    conversation.status = ConversationStatus.CLOSED
    await storage.save_conversation(conversation)

    await processor.handle(upsert("A2"))

    assert (await storage.get_conversation("conv-1")).status == ConversationStatus.OPEN


@pytest.mark.asyncio
async def test_notification_only_instance_ignores_messages(processor, instance, storage):
    instance.is_notification_only = True
    await storage.save_instance(instance)

    result = await processor.handle(upsert("A1"))

    assert result["message"] == "Notification-only instance - message ignored"
    assert await storage.get_contact_by_phone("user-1", "5511987654321") is None


@pytest.mark.asyncio
async def test_new_conversation_opens_deal_in_default_funnel(processor, instance, storage):
    await storage.save_funnel(Funnel(id="f-1", user_id="user-1", name="Vendas"))
    await storage.save_funnel_stage(FunnelStage(id="s-2", funnel_id="f-1", name="Proposta", position=1))
    await storage.save_funnel_stage(FunnelStage(id="s-1", funnel_id="f-1", name="Novo", position=0))
    instance.default_funnel_id = "f-1"
    await storage.save_instance(instance)

    await processor.handle(upsert("A1"))
    await processor.handle(upsert("A2"))

    [deal] = await storage.list_deals("f-1")
    assert deal.stage_id == "s-1"
    assert deal.title == "Lead - Maria Silva"
    assert deal.source == "whatsapp"


# ==================== Status / connection ====================


@pytest.mark.asyncio
async def test_status_never_goes_backwards(processor, instance, storage):
    await processor.handle(upsert("B1", from_me=True, text="Oi"))

    await processor.handle({"event": "messages.update", "instance": "vendas", "data": {"keyId": "B1", "status": "READ"}})
    await processor.handle(
        {"event": "MESSAGES_UPDATE", "instance": "vendas", "data": {"keyId": "B1", "status": "DELIVERY_ACK"}}
    )

    message = await storage.get_message_by_whatsapp_id("B1")
    assert message.status == MessageStatus.READ


@pytest.mark.asyncio
async def test_connection_update(processor, instance, storage):
    await processor.handle({"event": "connection.update", "instance": "vendas", "data": {"state": "close"}})
    assert (await storage.get_instance("inst-1")).status == InstanceStatus.DISCONNECTED

    await processor.handle({"event": "CONNECTION_UPDATE", "instance": "vendas", "data": {"state": "open"}})
    assert (await storage.get_instance("inst-1")).status == InstanceStatus.CONNECTED


# ==================== Warming ====================


@pytest.mark.asyncio
async def test_message_from_warming_contact_is_counted(processor, instance, storage):
    await storage.save_warming_schedule(WarmingSchedule(id="ws-1", user_id="user-1", instance_id="inst-1"))
    await storage.save_warming_contact(WarmingContact(id="wc-1", user_id="user-1", phone="(11) 91234-5678"))

    await processor.handle(upsert("W1", jid="5511912345678@s.whatsapp.net"))
    await processor.handle(upsert("W2"))

    schedule = await storage.get_warming_schedule("ws-1")
    assert schedule.messages_received_today == 1
    assert schedule.total_messages_received == 1
    [activity] = await storage.list_warming_activities("ws-1")
    assert activity.activity_type == "receive_message"


# ==================== Function ====================


@pytest.mark.asyncio
async def test_receive_webhook_rejects_bad_key(client, instance):
    response = await client.post("/functions/v1/receive-webhook", json=upsert("A1"), headers={"apikey": "nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_receive_webhook_accepts_key_in_header_or_body(client, instance, storage):
    response = await client.post("/functions/v1/receive-webhook", json=upsert("A1"), headers={"apikey": GATEWAY_KEY})
    assert response.status_code == 200
    assert response.json() == {"success": True, "stored": 1}

    payload = upsert("A2")
    payload["apikey"] = GATEWAY_KEY
    response = await client.post("/functions/v1/receive-webhook", json=payload)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_receive_webhook_rejects_non_json(client):
    response = await client.post(
        "/functions/v1/receive-webhook",
        content=b"not json",
        headers={"apikey": GATEWAY_KEY, "content-type": "application/json"},
    )
    assert response.status_code == 400
