"""AI agent configuration record."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from wacrm.core.clock import utcnow


class AIAgentConfig(BaseModel):
    """Behavior of the AI agent attached to a funnel or a campaign."""

    id: str
    user_id: str
    funnel_id: str | None = None
    campaign_id: str | None = None

    agent_name: str = "Assistente"
    personality_prompt: str | None = None
    behavior_rules: str | None = None
    greeting_message: str | None = None
    fallback_message: str | None = None
    goodbye_message: str | None = None

    max_interactions: int = Field(default=10, ge=1)
    # Seconds to wait before replying, picked inside this window
    response_delay_min: int = Field(default=3, ge=0)
    response_delay_max: int = Field(default=8, ge=0)
    # Hours of the day (0-24) the agent answers in
    active_hours_start: int = Field(default=8, ge=0, le=23)
    active_hours_end: int = Field(default=20, ge=1, le=24)

    handoff_keywords: list[str] = Field(default_factory=list)
    voice_id: str | None = None
    is_active: bool = True

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_windows(self) -> "AIAgentConfig":
        if self.response_delay_min > self.response_delay_max:
            raise ValueError("response_delay_min must not exceed response_delay_max")
        if self.active_hours_start == self.active_hours_end:
            raise ValueError("active hours window is empty")
        return self

    def is_within_active_hours(self, hour: int) -> bool:
        """Check an hour of the day against the window, which may wrap midnight."""
        if self.active_hours_start < self.active_hours_end:
            return self.active_hours_start <= hour < self.active_hours_end
        return hour >= self.active_hours_start or hour < self.active_hours_end

    def wants_handoff(self, text: str | None) -> bool:
        """True when the message mentions one of the handoff keywords."""
        if not text:
            return False
        lowered = text.lower()
        return any(k.strip().lower() in lowered for k in self.handoff_keywords if k.strip())

    def system_prompt(self) -> str:
        """Prompt handed to the completion gateway."""
        parts = [f"Você é {self.agent_name}."]
        if self.personality_prompt:
            parts.append(self.personality_prompt)
        if self.behavior_rules:
            parts.append(f"Regras:\n{self.behavior_rules}")
        return "\n\n".join(parts)
