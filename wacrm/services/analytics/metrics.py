"""Dashboard metrics derived from stored rows. Nothing here is persisted."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from wacrm.core.clock import utcnow
from wacrm.models import Contact, Conversation, ConversationStatus, Deal, FunnelStage, MessageDirection

SLA_THRESHOLDS_MINUTES = {"15min": 15, "1h": 60, "24h": 1440}


class Urgency(str, Enum):
    CRITICAL = "critical"
    ALERT = "alert"
    ATTENTION = "attention"
    OK = "ok"


def urgency_for(minutes_waiting: int) -> Urgency:
    if minutes_waiting >= 1440:
        return Urgency.CRITICAL
    if minutes_waiting >= 60:
        return Urgency.ALERT
    if minutes_waiting >= 15:
        return Urgency.ATTENTION
    return Urgency.OK


# ==================== Funnel ====================


@dataclass
class StageMetrics:
    stage_id: str
    name: str
    position: int
    count: int = 0
    value: float = 0.0


@dataclass
class FunnelMetrics:
    stages: list[StageMetrics] = field(default_factory=list)
    total_deals: int = 0
    total_value: float = 0.0
    pipeline_value: float = 0.0
    won_count: int = 0
    won_value: float = 0.0
    lost_count: int = 0
    win_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def funnel_metrics(stages: list[FunnelStage], deals: list[Deal]) -> FunnelMetrics:
    """Per-stage counts and values plus win rate over closed deals.

    ``pipeline_value`` only counts deals that are not in a final stage.
    Deals pointing at unknown stages are ignored.
    """
    by_id = {s.id: s for s in stages}
    per_stage = {
        s.id: StageMetrics(stage_id=s.id, name=s.name, position=s.position)
        for s in sorted(stages, key=lambda s: s.position)
    }
    metrics = FunnelMetrics(stages=list(per_stage.values()))

    for deal in deals:
        stage = by_id.get(deal.stage_id)
        if stage is None:
            continue
        per_stage[stage.id].count += 1
        per_stage[stage.id].value += deal.value
        metrics.total_deals += 1
        metrics.total_value += deal.value
        if stage.is_won:
            metrics.won_count += 1
            metrics.won_value += deal.value
        elif stage.is_lost:
            metrics.lost_count += 1
        else:
            metrics.pipeline_value += deal.value

    closed = metrics.won_count + metrics.lost_count
    metrics.win_rate = round(metrics.won_count / closed, 4) if closed else 0.0
    return metrics


# ==================== SLA ====================


@dataclass
class SLAMetrics:
    conversations_received: int = 0
    conversations_responded: int = 0
    avg_first_response_seconds: float = 0.0
    sla_breached_15min: int = 0
    sla_breached_1h: int = 0
    sla_breached_24h: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def sla_metrics(conversations: list[Conversation], now: datetime | None = None) -> SLAMetrics:
    """First-response SLA over a set of conversations.

    A conversation breaches a threshold when its first reply took longer
    than it, or when it is still unanswered and has waited longer than it.
    """
    now = now or utcnow()
    metrics = SLAMetrics(conversations_received=len(conversations))
    response_seconds: list[int] = []

    for conversation in conversations:
        seconds = conversation.first_response_seconds
        if seconds is not None:
            response_seconds.append(seconds)
            waited_minutes = seconds / 60
        else:
            waited_minutes = max(0.0, (now - conversation.created_at).total_seconds() / 60)

        if waited_minutes > SLA_THRESHOLDS_MINUTES["15min"]:
            metrics.sla_breached_15min += 1
        if waited_minutes > SLA_THRESHOLDS_MINUTES["1h"]:
            metrics.sla_breached_1h += 1
        if waited_minutes > SLA_THRESHOLDS_MINUTES["24h"]:
            metrics.sla_breached_24h += 1

    metrics.conversations_responded = len(response_seconds)
    if response_seconds:
        metrics.avg_first_response_seconds = round(sum(response_seconds) / len(response_seconds), 1)
    return metrics


# ==================== Response queue ====================


@dataclass
class QueuedConversation:
    id: str
    contact_id: str
    contact_name: str | None
    contact_phone: str
    last_message_at: datetime
    last_message_preview: str | None
    assigned_to: str | None
    minutes_waiting: int
    urgency: Urgency

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_message_at"] = self.last_message_at.isoformat()
        data["urgency"] = self.urgency.value
        return data


def response_queue(
    conversations: list[Conversation],
    now: datetime | None = None,
    contacts: dict[str, Contact] | None = None,
    include_ok: bool = False,
) -> list[QueuedConversation]:
    """Open conversations whose last message is from the contact, longest wait first."""
    now = now or utcnow()
    contacts = contacts or {}
    queue: list[QueuedConversation] = []

    for conversation in conversations:
        if conversation.status != ConversationStatus.OPEN or conversation.last_message_at is None:
            continue
        if conversation.last_message_direction != MessageDirection.INBOUND:
            continue
        minutes = max(0, int((now - conversation.last_message_at).total_seconds() // 60))
        urgency = urgency_for(minutes)
        if urgency == Urgency.OK and not include_ok:
            continue
        contact = contacts.get(conversation.contact_id)
        queue.append(
            QueuedConversation(
                id=conversation.id,
                contact_id=conversation.contact_id,
                contact_name=contact.name if contact else None,
                contact_phone=contact.phone if contact else "",
                last_message_at=conversation.last_message_at,
                last_message_preview=conversation.last_message_preview,
                assigned_to=conversation.assigned_to,
                minutes_waiting=minutes,
                urgency=urgency,
            )
        )

    queue.sort(key=lambda q: q.minutes_waiting, reverse=True)
    return queue
