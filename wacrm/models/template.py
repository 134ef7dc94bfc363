"""WhatsApp Business message templates.

Templates mirror Meta's approval workflow. Only the transitions listed in
``TEMPLATE_TRANSITIONS`` are accepted.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import ValidationFailed


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAUSED = "paused"
    DISABLED = "disabled"


class TemplateCategory(str, Enum):
    MARKETING = "MARKETING"
    UTILITY = "UTILITY"
    AUTHENTICATION = "AUTHENTICATION"


TEMPLATE_TRANSITIONS: dict[TemplateStatus, frozenset[TemplateStatus]] = {
    TemplateStatus.DRAFT: frozenset({TemplateStatus.PENDING}),
    TemplateStatus.PENDING: frozenset({TemplateStatus.APPROVED, TemplateStatus.REJECTED}),
    TemplateStatus.APPROVED: frozenset({TemplateStatus.PAUSED, TemplateStatus.DISABLED}),
    TemplateStatus.PAUSED: frozenset({TemplateStatus.APPROVED, TemplateStatus.DISABLED}),
    TemplateStatus.REJECTED: frozenset({TemplateStatus.DRAFT, TemplateStatus.PENDING}),
    TemplateStatus.DISABLED: frozenset(),
}


class MetaTemplate(BaseModel):
    id: str
    user_id: str
    name: str = Field(..., pattern=r"^[a-z0-9_]+$")
    language: str = "pt_BR"
    category: TemplateCategory = TemplateCategory.MARKETING

    header_type: str | None = None
    header_content: str | None = None
    body_text: str
    footer_text: str | None = None
    buttons: list[dict[str, Any]] = Field(default_factory=list)

    status: TemplateStatus = TemplateStatus.DRAFT
    meta_template_id: str | None = None
    waba_id: str | None = None
    rejection_reason: str | None = None

    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def can_transition(self, target: TemplateStatus) -> bool:
        return target in TEMPLATE_TRANSITIONS[self.status]

    def transition(
        self,
        target: TemplateStatus,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Move the template to ``target`` or raise ValidationFailed."""
        if not self.can_transition(target):
            raise ValidationFailed(
                f"Invalid template transition: {self.status.value} -> {target.value}",
                details={"from": self.status.value, "to": target.value},
            )
        now = now or utcnow()
        if target == TemplateStatus.PENDING:
            self.submitted_at = now
            self.rejection_reason = None
        elif target == TemplateStatus.APPROVED and self.approved_at is None:
            self.approved_at = now
        elif target == TemplateStatus.REJECTED:
            self.rejection_reason = reason
        self.status = target
        self.updated_at = now
