"""Data models for the application."""

from wacrm.models.activity import SessionType, UserActivitySession
from wacrm.models.agent import AIAgentConfig
from wacrm.models.billing import (
    FEATURE_ACCESS,
    PLANS,
    Plan,
    PlanKey,
    Subscription,
    SubscriptionStatus,
    TokenBalance,
    TokenPackage,
    TokenTransaction,
    TokenTransactionType,
    has_feature_access,
)
from wacrm.models.contact import Contact, Tag, TagAssignment, TagTarget
from wacrm.models.conversation import Conversation, ConversationStatus
from wacrm.models.custom_fields import (
    CustomFieldDefinition,
    CustomFieldScope,
    CustomFieldType,
    CustomFieldValue,
    dump_custom_field_values,
    parse_custom_field_values,
)
from wacrm.models.funnel import Deal, Funnel, FunnelStage, StageOutcome
from wacrm.models.instance import InstanceStatus, WhatsAppInstance, status_from_gateway_state
from wacrm.models.message import (
    ConnectionUpdate,
    IncomingWebhookMessage,
    InboxMessage,
    MessageDirection,
    MessageStatus,
    MessageStatusUpdate,
    MessageType,
    OutgoingMessage,
)
from wacrm.models.team import MemberStatus, Organization, TeamMember
from wacrm.models.template import MetaTemplate, TemplateCategory, TemplateStatus
from wacrm.models.warming import (
    WarmingActivity,
    WarmingContact,
    WarmingContent,
    WarmingContentType,
    WarmingPair,
    WarmingSchedule,
    WarmingStatus,
)

__all__ = [
    # Team
    "Organization",
    "TeamMember",
    "MemberStatus",
    # Contacts
    "Contact",
    "Tag",
    "TagAssignment",
    "TagTarget",
    # Custom fields
    "CustomFieldDefinition",
    "CustomFieldScope",
    "CustomFieldType",
    "CustomFieldValue",
    "parse_custom_field_values",
    "dump_custom_field_values",
    # Inbox
    "Conversation",
    "ConversationStatus",
    "InboxMessage",
    "MessageDirection",
    "MessageStatus",
    "MessageType",
    "IncomingWebhookMessage",
    "MessageStatusUpdate",
    "ConnectionUpdate",
    "OutgoingMessage",
    # Instances
    "WhatsAppInstance",
    "InstanceStatus",
    "status_from_gateway_state",
    # Warming
    "WarmingSchedule",
    "WarmingStatus",
    "WarmingContact",
    "WarmingContent",
    "WarmingContentType",
    "WarmingPair",
    "WarmingActivity",
    # Funnels
    "Funnel",
    "FunnelStage",
    "Deal",
    "StageOutcome",
    # Templates
    "MetaTemplate",
    "TemplateCategory",
    "TemplateStatus",
    # Agent
    "AIAgentConfig",
    # Activity
    "UserActivitySession",
    "SessionType",
    # Billing
    "Plan",
    "PlanKey",
    "PLANS",
    "FEATURE_ACCESS",
    "has_feature_access",
    "Subscription",
    "SubscriptionStatus",
    "TokenPackage",
    "TokenBalance",
    "TokenTransaction",
    "TokenTransactionType",
]
