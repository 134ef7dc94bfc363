"""Abstract base class for channel adapters."""

from abc import ABC, abstractmethod
from typing import Any

from wacrm.models import (
    ConnectionUpdate,
    IncomingWebhookMessage,
    MessageStatusUpdate,
    MessageType,
    OutgoingMessage,
)


class ChannelAdapter(ABC):
    """Abstract base class for messaging gateway adapters."""

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Get the channel name identifier."""
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> list[IncomingWebhookMessage]:
        """Parse a message event into normalized messages.

        Args:
            payload: Raw webhook payload from the gateway

        Returns:
            Normalized messages; empty when the event carries none
        """
        ...

    @abstractmethod
    def parse_status_update(self, payload: dict[str, Any]) -> MessageStatusUpdate | None:
        """Parse a delivery status event."""
        ...

    @abstractmethod
    def parse_connection_update(self, payload: dict[str, Any]) -> ConnectionUpdate | None:
        """Parse a connection state event."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> dict[str, Any]:
        """Send a message through the gateway.

        Args:
            message: OutgoingMessage to send

        Returns:
            Response dict with the gateway message ID and status
        """
        ...

    @abstractmethod
    def validate_webhook(self, api_key: str | None) -> bool:
        """Check the credential a webhook request was sent with."""
        ...

    async def send_text(self, instance_name: str, number: str, text: str) -> dict[str, Any]:
        """Convenience method to send a simple text message."""
        message = OutgoingMessage(
            instance_name=instance_name,
            number=number,
            content=text,
            message_type=MessageType.TEXT,
        )
        return await self.send_message(message)
