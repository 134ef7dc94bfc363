"""Agent replies sent from the shared inbox."""

import uuid
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import AppException, NotFound, ValidationFailed
from wacrm.core.phone import to_whatsapp_number, validate_brazilian_phone
from wacrm.models import InboxMessage, MessageDirection, MessageStatus, OutgoingMessage
from wacrm.services.channels.base import ChannelAdapter
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()


class InboxSender:
    """Sends a text reply through an instance and records it in the conversation."""

    def __init__(self, storage: StorageBackend, channel: ChannelAdapter) -> None:
        self.storage = storage
        self.channel = channel

    async def send(
        self,
        user_id: str,
        conversation_id: str | None,
        content: str | None,
        instance_id: str | None,
    ) -> dict[str, Any]:
        """Send ``content`` to the conversation's contact.

        The message is stored as pending first and marked sent or failed once
        the gateway answers.
        """
        if not conversation_id or not content or not instance_id:
            raise ValidationFailed("conversationId, content and instanceId are required")

        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            raise NotFound("Conversation not found", details={"conversation_id": conversation_id})

        instance = await self.storage.get_instance(instance_id)
        if instance is None or instance.user_id != user_id:
            raise NotFound("Instance not found", details={"instance_id": instance_id})
        if not instance.is_connected:
            raise ValidationFailed("Instance is not connected", details={"instance_id": instance_id})

        contact = await self.storage.get_contact(conversation.contact_id)
        if contact is None or not contact.phone:
            raise NotFound("Contact not found")
        if not validate_brazilian_phone(contact.phone):
            raise ValidationFailed(
                f"Número de telefone inválido: {contact.phone}",
                details={"contact_id": contact.id},
            )

        message = InboxMessage(
            id=str(uuid.uuid4()),
            user_id=conversation.user_id,
            conversation_id=conversation.id,
            content=content,
            direction=MessageDirection.OUTBOUND,
            status=MessageStatus.PENDING,
            sent_at=utcnow(),
        )
        await self.storage.save_message(message)

        try:
            result = await self.channel.send_message(
                OutgoingMessage(
                    instance_name=instance.instance_name,
                    number=to_whatsapp_number(contact.phone),
                    content=content,
                )
            )
        except AppException:
            message.status = MessageStatus.FAILED
            await self.storage.save_message(message)
            logger.warning("Inbox message failed", message_id=message.id, conversation_id=conversation.id)
            raise

        message.status = MessageStatus.SENT
        message.whatsapp_message_id = result.get("message_id")
        await self.storage.save_message(message)

        conversation.register_message(message)
        conversation.instance_id = instance.id
        conversation.updated_at = utcnow()
        await self.storage.save_conversation(conversation)

        logger.info("Inbox message sent", message_id=message.id, conversation_id=conversation.id)
        return {
            "success": True,
            "messageId": message.id,
            "whatsappMessageId": message.whatsapp_message_id,
        }
