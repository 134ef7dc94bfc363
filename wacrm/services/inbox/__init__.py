"""Shared inbox: gateway webhooks and agent replies."""

from wacrm.services.inbox.outbound import InboxSender
from wacrm.services.inbox.webhook import WebhookProcessor

__all__ = ["InboxSender", "WebhookProcessor"]
