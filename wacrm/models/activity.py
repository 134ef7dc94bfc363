"""Team activity (time tracking) sessions."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow


class SessionType(str, Enum):
    WORK = "work"
    BREAK = "break"
    LUNCH = "lunch"


class UserActivitySession(BaseModel):
    """A work, break or lunch session. Open while ``ended_at`` is None."""

    id: str
    user_id: str
    organization_id: str | None = None
    session_type: SessionType = SessionType.WORK
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    notes: str | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def close(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self.ended_at = now
        self.duration_seconds = max(0, int((now - self.started_at).total_seconds()))
