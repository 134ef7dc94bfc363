"""Gateway webhook processing for the shared inbox."""

import uuid
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import NotFound
from wacrm.core.phone import only_digits, to_whatsapp_number
from wacrm.core.text import to_title_case
from wacrm.models import (
    Contact,
    Conversation,
    Deal,
    IncomingWebhookMessage,
    InboxMessage,
    MessageDirection,
    MessageStatus,
    WarmingActivity,
    WarmingSchedule,
    WhatsAppInstance,
    status_from_gateway_state,
)
from wacrm.services.channels.whatsapp import EvolutionWhatsAppAdapter, normalize_event
from wacrm.services.warming.scheduler import update_schedule
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

MESSAGE_EVENTS = frozenset({"messages.upsert", "send.message"})

# Delivery statuses only move forward
_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.PENDING: 0,
    MessageStatus.FAILED: 1,
    MessageStatus.SENT: 2,
    MessageStatus.RECEIVED: 2,
    MessageStatus.DELIVERED: 3,
    MessageStatus.READ: 4,
}


class WebhookProcessor:
    """Applies ``messages.upsert``, ``messages.update`` and ``connection.update`` events."""

    def __init__(self, storage: StorageBackend, adapter: EvolutionWhatsAppAdapter) -> None:
        self.storage = storage
        self.adapter = adapter

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Dispatch one webhook payload.

        Raises:
            NotFound: If the payload names an instance we do not know
        """
        instance_name = payload.get("instance")
        event = normalize_event(payload.get("event"))
        if not instance_name:
            logger.info("Webhook without instance, ignoring", event=event)
            return {"success": True, "message": "No instance"}

        instance = await self.storage.get_instance_by_name(instance_name)
        if instance is None:
            logger.warning("Webhook for unknown instance", instance_name=instance_name, event=event)
            raise NotFound("Instance not found", details={"instance": instance_name})

        if instance.is_notification_only and event in MESSAGE_EVENTS:
            logger.info("Ignoring message event for notification-only instance", instance_name=instance_name)
            return {"success": True, "message": "Notification-only instance - message ignored"}

        if event in MESSAGE_EVENTS:
            stored = 0
            for incoming in self.adapter.parse_webhook(payload):
                if await self.handle_message(instance, incoming) is not None:
                    stored += 1
            return {"success": True, "stored": stored}

        if event == "messages.update":
            update = self.adapter.parse_status_update(payload)
            if update is not None:
                await self.handle_status_update(update.whatsapp_message_id, update.status)
            return {"success": True}

        if event == "connection.update":
            update = self.adapter.parse_connection_update(payload)
            if update is not None:
                await self.handle_connection_update(instance, update.state)
            return {"success": True}

        logger.debug("Unhandled webhook event", event=event, instance_name=instance_name)
        return {"success": True}

    # ==================== messages.upsert ====================

    async def _find_or_create_contact(self, user_id: str, incoming: IncomingWebhookMessage) -> Contact:
        phone = only_digits(incoming.phone)
        contact = await self.storage.get_contact_by_phone(user_id, phone)
        if contact is not None:
            # Outbound echoes carry our own profile name, not the contact's
            if not contact.name and incoming.push_name and not incoming.from_me:
                contact.name = to_title_case(incoming.push_name)
                contact.updated_at = utcnow()
                await self.storage.save_contact(contact)
            return contact

        contact = Contact(
            id=str(uuid.uuid4()),
            user_id=user_id,
            phone=phone,
            name=to_title_case(incoming.push_name) if incoming.push_name and not incoming.from_me else None,
            label_id=incoming.remote_jid[: -len("@lid")] if incoming.remote_jid.endswith("@lid") else None,
        )
        await self.storage.save_contact(contact)
        logger.info("Contact created from webhook", contact_id=contact.id, user_id=user_id)
        return contact

    async def _find_or_create_conversation(
        self,
        instance: WhatsAppInstance,
        contact: Contact,
    ) -> tuple[Conversation, bool]:
        conversation = await self.storage.get_conversation_by_contact(instance.user_id, contact.id)
        if conversation is not None:
            return conversation, False
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=instance.user_id,
            contact_id=contact.id,
            instance_id=instance.id,
        )
        return conversation, True

    async def _open_deal(self, instance: WhatsAppInstance, contact: Contact, conversation: Conversation) -> None:
        """New conversations on an instance with a default funnel enter its first stage."""
        stages = await self.storage.list_funnel_stages(instance.default_funnel_id)
        if not stages:
            logger.warning("Default funnel has no stages", funnel_id=instance.default_funnel_id)
            return
        first = min(stages, key=lambda s: s.position)
        deal = Deal(
            id=str(uuid.uuid4()),
            user_id=instance.user_id,
            funnel_id=first.funnel_id,
            stage_id=first.id,
            contact_id=contact.id,
            conversation_id=conversation.id,
            title=f"Lead - {contact.display_name}",
            source="whatsapp",
        )
        await self.storage.save_deal(deal)
        logger.info("Deal opened for new conversation", deal_id=deal.id, funnel_id=deal.funnel_id)

    async def handle_message(
        self,
        instance: WhatsAppInstance,
        incoming: IncomingWebhookMessage,
    ) -> InboxMessage | None:
        """Store one gateway message. None when it was already stored."""
        existing = await self.storage.get_message_by_whatsapp_id(incoming.whatsapp_message_id)
        if existing is not None:
            logger.debug("Duplicate webhook message, skipping", whatsapp_message_id=incoming.whatsapp_message_id)
            return None

        contact = await self._find_or_create_contact(instance.user_id, incoming)
        conversation, created = await self._find_or_create_conversation(instance, contact)

        direction = MessageDirection.OUTBOUND if incoming.from_me else MessageDirection.INBOUND
        message = InboxMessage(
            id=str(uuid.uuid4()),
            user_id=instance.user_id,
            conversation_id=conversation.id,
            content=incoming.content,
            message_type=incoming.message_type,
            direction=direction,
            status=MessageStatus.SENT if incoming.from_me else MessageStatus.RECEIVED,
            media_url=incoming.media_url,
            whatsapp_message_id=incoming.whatsapp_message_id,
            sent_at=incoming.timestamp or utcnow(),
        )

        conversation.register_message(message)
        conversation.instance_id = conversation.instance_id or instance.id
        conversation.updated_at = utcnow()
        await self.storage.save_conversation(conversation)
        await self.storage.save_message(message)

        if created and instance.default_funnel_id:
            await self._open_deal(instance, contact, conversation)

        if direction == MessageDirection.INBOUND:
            await self.count_warming_receive(instance, incoming.phone)

        logger.info(
            "Webhook message stored",
            conversation_id=conversation.id,
            direction=direction.value,
            message_type=message.message_type.value,
        )
        return message

    async def _is_warming_sender(self, schedule: WarmingSchedule, phone: str) -> bool:
        for contact in await self.storage.list_warming_contacts(schedule.user_id, active_only=True):
            if to_whatsapp_number(contact.phone) == phone:
                return True
        for pair in await self.storage.list_warming_pairs(schedule.instance_id):
            other_id = pair.other(schedule.instance_id)
            other = await self.storage.get_instance(other_id) if other_id else None
            if other is not None and other.phone_number and to_whatsapp_number(other.phone_number) == phone:
                return True
        return False

    async def count_warming_receive(self, instance: WhatsAppInstance, phone: str) -> bool:
        """Count an inbound message from a warming partner against the schedule."""
        schedule = await self.storage.get_active_warming_schedule(instance.id)
        if schedule is None:
            return False
        phone = to_whatsapp_number(phone)
        if not await self._is_warming_sender(schedule, phone):
            return False

        now = utcnow()

        def apply(latest: WarmingSchedule) -> bool:
            if not latest.is_active:
                return False
            latest.messages_received_today += 1
            latest.total_messages_received += 1
            latest.last_activity_at = now
            return True

        if await update_schedule(self.storage, schedule.id, apply) is None:
            return False

        await self.storage.save_warming_activity(
            WarmingActivity(
                id=str(uuid.uuid4()),
                schedule_id=schedule.id,
                instance_id=instance.id,
                activity_type="receive_message",
                contact_phone=phone,
            )
        )
        logger.info("Warming message received", schedule_id=schedule.id, phone=phone)
        return True

    # ==================== messages.update / connection.update ====================

    async def handle_status_update(self, whatsapp_message_id: str, status: MessageStatus) -> InboxMessage | None:
        message = await self.storage.get_message_by_whatsapp_id(whatsapp_message_id)
        if message is None:
            logger.debug("Status update for unknown message", whatsapp_message_id=whatsapp_message_id)
            return None
        if _STATUS_RANK.get(status, 0) <= _STATUS_RANK.get(message.status, 0):
            return message
        message.status = status
        await self.storage.save_message(message)
        logger.debug("Message status updated", message_id=message.id, status=status.value)
        return message

    async def handle_connection_update(self, instance: WhatsAppInstance, state: str) -> WhatsAppInstance:
        status = status_from_gateway_state(state)
        if status != instance.status:
            instance.status = status
            if instance.is_connected:
                instance.qr_code = None
            await self.storage.save_instance(instance)
            logger.info("Instance connection changed", instance_name=instance.instance_name, status=status.value)
        return instance
