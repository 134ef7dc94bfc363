"""Conversation model for the shared inbox."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow
from wacrm.models.message import InboxMessage, MessageDirection


class ConversationStatus(str, Enum):
    """Status of a conversation."""

    OPEN = "open"
    CLOSED = "closed"


class Conversation(BaseModel):
    """A thread with one contact. Never hard-deleted, only closed."""

    id: str = Field(..., description="Unique conversation identifier")
    user_id: str = Field(..., description="Owner account")
    contact_id: str
    instance_id: str | None = None

    status: ConversationStatus = ConversationStatus.OPEN
    assigned_to: str | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_message_at: datetime | None = None
    first_response_at: datetime | None = None

    last_message_preview: str | None = None
    last_message_direction: MessageDirection | None = None
    unread_count: int = Field(default=0, ge=0)

    def register_message(self, message: InboxMessage) -> None:
        """Apply a newly stored message to the conversation counters."""
        self.last_message_at = message.sent_at
        self.last_message_preview = message.preview()
        self.last_message_direction = message.direction

        if message.direction == MessageDirection.INBOUND:
            self.unread_count += 1
            if self.status == ConversationStatus.CLOSED:
                self.status = ConversationStatus.OPEN
        elif self.first_response_at is None:
            self.first_response_at = message.sent_at

    def mark_read(self) -> None:
        self.unread_count = 0

    @property
    def first_response_seconds(self) -> int | None:
        """Seconds between the conversation opening and the first reply."""
        if self.first_response_at is None:
            return None
        return max(0, int((self.first_response_at - self.created_at).total_seconds()))
