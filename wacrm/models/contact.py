"""Contact and tag models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow


class Contact(BaseModel):
    """A person reachable through WhatsApp."""

    id: str
    user_id: str
    phone: str
    name: str | None = None
    avatar_url: str | None = None
    # Short sequential number shown in the UI
    display_id: int | None = None
    # WhatsApp label id for contacts that reached us through ads without a phone
    label_id: str | None = None

    custom_fields: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.name or self.phone


class Tag(BaseModel):
    """User-scoped label."""

    id: str
    user_id: str
    name: str
    color: str = "#6366f1"
    created_at: datetime = Field(default_factory=utcnow)


class TagTarget(str, Enum):
    """What a tag can be attached to."""

    CONVERSATION = "conversation"
    CONTACT = "contact"


class TagAssignment(BaseModel):
    """Many-to-many join between tags and conversations or contacts."""

    tag_id: str
    target_type: TagTarget
    target_id: str
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return f"{self.tag_id}:{self.target_type.value}:{self.target_id}"
