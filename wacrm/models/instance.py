"""WhatsApp instance model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow


class InstanceStatus(str, Enum):
    """Connection status driven by gateway webhook events."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# Gateway connection states -> local status
_GATEWAY_STATES: dict[str, InstanceStatus] = {
    "open": InstanceStatus.CONNECTED,
    "connected": InstanceStatus.CONNECTED,
    "connecting": InstanceStatus.CONNECTING,
    "qrcode": InstanceStatus.CONNECTING,
}


def status_from_gateway_state(state: str | None) -> InstanceStatus:
    """Map a gateway connection state onto the local status."""
    return _GATEWAY_STATES.get((state or "").lower(), InstanceStatus.DISCONNECTED)


class WhatsAppInstance(BaseModel):
    """A WhatsApp number connected through the gateway."""

    id: str
    user_id: str
    organization_id: str | None = None
    instance_name: str = Field(..., min_length=3)
    status: InstanceStatus = InstanceStatus.DISCONNECTED

    qr_code: str | None = None
    qr_code_updated_at: datetime | None = None

    phone_number: str | None = None
    profile_name: str | None = None
    profile_picture_url: str | None = None
    profile_status: str | None = None
    is_business: bool = False

    warming_level: int = Field(default=1, ge=1, le=5)
    is_notification_only: bool = False
    default_funnel_id: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_connected(self) -> bool:
        return self.status == InstanceStatus.CONNECTED
