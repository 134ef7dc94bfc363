"""Sales pipeline models."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import ValidationFailed


class StageOutcome(str, Enum):
    """Final stages close the deal either way."""

    WON = "won"
    LOST = "lost"


class Funnel(BaseModel):
    id: str
    user_id: str
    name: str
    description: str | None = None
    color: str | None = None
    position: int = 0
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FunnelStage(BaseModel):
    id: str
    funnel_id: str
    name: str
    color: str | None = None
    position: int = 0
    # Win probability shown on the board, 0-100
    probability: int | None = Field(default=None, ge=0, le=100)
    final_type: StageOutcome | None = None

    @property
    def is_final(self) -> bool:
        return self.final_type is not None

    @property
    def is_won(self) -> bool:
        return self.final_type == StageOutcome.WON

    @property
    def is_lost(self) -> bool:
        return self.final_type == StageOutcome.LOST


class Deal(BaseModel):
    """Opportunity that sits in exactly one stage of its funnel."""

    id: str
    user_id: str
    funnel_id: str
    stage_id: str
    contact_id: str
    conversation_id: str | None = None

    title: str | None = None
    value: float = Field(default=0, ge=0)
    currency: str = "BRL"
    source: str | None = None
    notes: str | None = None
    responsible_id: str | None = None
    expected_close_date: date | None = None

    custom_fields: dict[str, Any] = Field(default_factory=dict)

    entered_stage_at: datetime = Field(default_factory=utcnow)
    closed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def move_to(self, stage: FunnelStage, now: datetime | None = None) -> None:
        """Move the deal into another stage of the same funnel."""
        if stage.funnel_id != self.funnel_id:
            raise ValidationFailed(
                "Stage belongs to another funnel",
                details={"stage_id": stage.id, "funnel_id": self.funnel_id},
            )
        if stage.id == self.stage_id:
            return
        now = now or utcnow()
        self.stage_id = stage.id
        self.entered_stage_at = now
        self.closed_at = now if stage.is_final else None
        self.updated_at = now
