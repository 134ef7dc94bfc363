"""Inbox message models and normalized gateway events."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow


class MessageDirection(str, Enum):
    """Direction of the message."""

    INBOUND = "inbound"  # From contact
    OUTBOUND = "outbound"  # To contact


class MessageStatus(str, Enum):
    """Delivery status reported by the gateway."""

    RECEIVED = "received"
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageType(str, Enum):
    """Type of message content."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VOICE = "voice"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"


# Conversation list preview for messages without text
MEDIA_PREVIEWS: dict[MessageType, str] = {
    MessageType.IMAGE: "📷 Imagem",
    MessageType.AUDIO: "🎵 Áudio",
    MessageType.VOICE: "🎵 Áudio",
    MessageType.VIDEO: "🎬 Vídeo",
    MessageType.DOCUMENT: "📄 Documento",
    MessageType.STICKER: "🏷️ Figurinha",
}


class InboxMessage(BaseModel):
    """A message stored in a conversation."""

    id: str = Field(..., description="Unique message identifier")
    user_id: str = Field(..., description="Owner account")
    conversation_id: str = Field(..., description="Parent conversation ID")

    content: str = ""
    message_type: MessageType = MessageType.TEXT
    direction: MessageDirection
    status: MessageStatus = MessageStatus.RECEIVED
    media_url: str | None = None

    whatsapp_message_id: str | None = None

    sent_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    def preview(self, length: int = 100) -> str:
        """Short text shown in the conversation list."""
        if self.content:
            return self.content[:length]
        return MEDIA_PREVIEWS.get(self.message_type, "")


class IncomingWebhookMessage(BaseModel):
    """Normalized message from a gateway ``messages.upsert`` event."""

    instance_name: str
    whatsapp_message_id: str
    remote_jid: str
    phone: str
    from_me: bool = False
    push_name: str | None = None

    content: str = ""
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
    timestamp: datetime | None = None

    raw_payload: dict[str, Any] = Field(default_factory=dict)


class MessageStatusUpdate(BaseModel):
    """Normalized ``messages.update`` event."""

    instance_name: str
    whatsapp_message_id: str
    status: MessageStatus


class ConnectionUpdate(BaseModel):
    """Normalized ``connection.update`` event."""

    instance_name: str
    state: str


class OutgoingMessage(BaseModel):
    """Message to be sent through an instance."""

    instance_name: str
    number: str
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
