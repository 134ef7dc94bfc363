"""Warming schedule models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from wacrm.core.clock import utcnow


class WarmingStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class WarmingContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class WarmingSchedule(BaseModel):
    """Day-by-day ramp-up of message volume for one instance.

    ``version`` is bumped on every persisted write and is what conditional
    updates compare against.
    """

    id: str
    user_id: str
    instance_id: str

    current_day: int = Field(default=1, ge=1)
    target_days: int = Field(default=21, ge=1)

    messages_sent_today: int = Field(default=0, ge=0)
    messages_received_today: int = Field(default=0, ge=0)
    messages_target_today: int = Field(default=0, ge=0)
    total_messages_sent: int = Field(default=0, ge=0)
    total_messages_received: int = Field(default=0, ge=0)

    status: WarmingStatus = WarmingStatus.ACTIVE
    version: int = Field(default=0, ge=0)

    last_advanced_at: datetime | None = None
    last_activity_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _day_within_target(self) -> "WarmingSchedule":
        if self.current_day > self.target_days:
            raise ValueError("current_day cannot exceed target_days")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == WarmingStatus.ACTIVE

    @property
    def response_rate(self) -> float:
        if self.total_messages_sent <= 0:
            return 0.0
        return self.total_messages_received / self.total_messages_sent

    def advanced(self, now: datetime | None = None) -> "WarmingSchedule":
        """Return the schedule as it looks after one day-advance.

        Past the last day the schedule is completed and ``current_day`` stays
        at ``target_days``. Daily counters are zeroed either way.
        """
        now = now or utcnow()
        next_day = self.current_day + 1
        update: dict = {
            "messages_sent_today": 0,
            "messages_received_today": 0,
            "last_advanced_at": now,
        }
        if next_day > self.target_days:
            update["status"] = WarmingStatus.COMPLETED
            update["current_day"] = self.target_days
        else:
            update["current_day"] = next_day
        return self.model_copy(update=update)


class WarmingContact(BaseModel):
    """Manually registered phone used as a warming target."""

    id: str
    user_id: str
    phone: str
    name: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class WarmingPair(BaseModel):
    """Two instances of the same user that warm each other."""

    id: str
    user_id: str
    instance_a_id: str
    instance_b_id: str
    is_active: bool = True

    def other(self, instance_id: str) -> str | None:
        if instance_id == self.instance_a_id:
            return self.instance_b_id
        if instance_id == self.instance_b_id:
            return self.instance_a_id
        return None


# Content rows owned by this user id are shared with every account
SHARED_CONTENT_OWNER = "00000000-0000-0000-0000-000000000000"


class WarmingContent(BaseModel):
    """Message body or media used during warming."""

    id: str
    user_id: str = SHARED_CONTENT_OWNER
    content_type: WarmingContentType = WarmingContentType.TEXT
    content: str | None = None
    media_url: str | None = None
    is_active: bool = True


class WarmingActivity(BaseModel):
    """Log line for one warming send or receive."""

    id: str
    schedule_id: str
    instance_id: str
    activity_type: str
    contact_phone: str | None = None
    content_preview: str | None = None
    success: bool = True
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
