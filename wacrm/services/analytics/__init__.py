"""Derived dashboard metrics."""

from wacrm.services.analytics.metrics import (
    FunnelMetrics,
    SLAMetrics,
    Urgency,
    funnel_metrics,
    response_queue,
    sla_metrics,
    urgency_for,
)

__all__ = [
    "FunnelMetrics",
    "SLAMetrics",
    "Urgency",
    "funnel_metrics",
    "response_queue",
    "sla_metrics",
    "urgency_for",
]
