"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod

import structlog
from pydantic import BaseModel

from wacrm.models import (
    AIAgentConfig,
    Contact,
    Conversation,
    CustomFieldDefinition,
    CustomFieldScope,
    Deal,
    Funnel,
    FunnelStage,
    InboxMessage,
    MetaTemplate,
    Organization,
    Subscription,
    Tag,
    TagAssignment,
    TagTarget,
    TeamMember,
    TemplateStatus,
    TokenBalance,
    TokenPackage,
    TokenTransaction,
    UserActivitySession,
    WarmingActivity,
    WarmingContact,
    WarmingContent,
    WarmingPair,
    WarmingSchedule,
    WarmingStatus,
    WhatsAppInstance,
)
from wacrm.services.realtime.feed import ChangeEvent, ChangeFeed, EventType

logger = structlog.get_logger()

# Table names as the realtime feed reports them
ORGANIZATIONS = "organizations"
TEAM_MEMBERS = "team_members"
CONTACTS = "contacts"
TAGS = "tags"
TAG_ASSIGNMENTS = "tag_assignments"
CUSTOM_FIELDS = "custom_field_definitions"
CONVERSATIONS = "conversations"
MESSAGES = "inbox_messages"
INSTANCES = "whatsapp_instances"
WARMING_SCHEDULES = "warming_schedules"
WARMING_CONTACTS = "warming_contacts"
WARMING_PAIRS = "warming_pairs"
WARMING_CONTENT = "warming_content"
WARMING_ACTIVITIES = "warming_activities"
FUNNELS = "funnels"
FUNNEL_STAGES = "funnel_stages"
DEALS = "funnel_deals"
TEMPLATES = "meta_templates"
AGENT_CONFIGS = "ai_agent_configs"
ACTIVITY_SESSIONS = "user_activity_sessions"
SUBSCRIPTIONS = "subscriptions"
TOKEN_PACKAGES = "ai_token_packages"
TOKEN_BALANCES = "user_ai_tokens"
TOKEN_TRANSACTIONS = "ai_token_transactions"


class StorageBackend(ABC):
    """Abstract storage backend interface.

    Every committed write is published to ``feed`` as a ``ChangeEvent``.
    """

    feed: ChangeFeed

    async def _publish(
        self,
        table: str,
        event_type: EventType,
        record: BaseModel | None,
        old_record: BaseModel | None = None,
    ) -> None:
        event = ChangeEvent(
            table=table,
            event_type=event_type,
            record=record.model_dump(mode="json") if record is not None else {},
            old_record=old_record.model_dump(mode="json") if old_record is not None else None,
        )
        await self.feed.publish(event)

    # ==================== Team Operations ====================

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Organization | None:
        """Get an organization by ID."""
        ...

    @abstractmethod
    async def save_organization(self, organization: Organization) -> Organization:
        """Save or update an organization."""
        ...

    @abstractmethod
    async def get_team_member_by_user(self, user_id: str) -> TeamMember | None:
        """Get the active membership of a user."""
        ...

    @abstractmethod
    async def save_team_member(self, member: TeamMember) -> TeamMember:
        """Save or update a team membership."""
        ...

    @abstractmethod
    async def list_team_members(self, organization_id: str) -> list[TeamMember]:
        """List members of an organization."""
        ...

    # ==================== Contact Operations ====================

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact | None:
        """Get a contact by ID."""
        ...

    @abstractmethod
    async def get_contact_by_phone(self, user_id: str, phone: str) -> Contact | None:
        """Get a user's contact by phone digits."""
        ...

    @abstractmethod
    async def save_contact(self, contact: Contact) -> Contact:
        """Save or update a contact."""
        ...

    @abstractmethod
    async def list_contacts(self, user_id: str, limit: int = 100) -> list[Contact]:
        """List a user's contacts."""
        ...

    # ==================== Tag Operations ====================

    @abstractmethod
    async def save_tag(self, tag: Tag) -> Tag:
        """Save or update a tag."""
        ...

    @abstractmethod
    async def list_tags(self, user_id: str) -> list[Tag]:
        """List a user's tags."""
        ...

    @abstractmethod
    async def assign_tag(self, assignment: TagAssignment) -> TagAssignment:
        """Attach a tag to a conversation or contact."""
        ...

    @abstractmethod
    async def unassign_tag(self, tag_id: str, target_type: TagTarget, target_id: str) -> bool:
        """Detach a tag. Returns False when it was not attached."""
        ...

    @abstractmethod
    async def list_tag_assignments(self, target_type: TagTarget, target_id: str) -> list[TagAssignment]:
        """List tags attached to a target."""
        ...

    # ==================== Custom Field Operations ====================

    @abstractmethod
    async def save_custom_field_definition(self, definition: CustomFieldDefinition) -> CustomFieldDefinition:
        """Save or update a custom field definition."""
        ...

    @abstractmethod
    async def list_custom_field_definitions(
        self,
        organization_id: str,
        applies_to: CustomFieldScope | None = None,
    ) -> list[CustomFieldDefinition]:
        """List an organization's custom fields ordered by position."""
        ...

    # ==================== Conversation Operations ====================

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        ...

    @abstractmethod
    async def get_conversation_by_contact(self, user_id: str, contact_id: str) -> Conversation | None:
        """Get the conversation thread with a contact."""
        ...

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Save or update a conversation."""
        ...

    @abstractmethod
    async def list_conversations(
        self,
        user_id: str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Conversation]:
        """List conversations, most recent activity first."""
        ...

    # ==================== Message Operations ====================

    @abstractmethod
    async def get_message(self, message_id: str) -> InboxMessage | None:
        """Get a message by ID."""
        ...

    @abstractmethod
    async def get_message_by_whatsapp_id(self, whatsapp_message_id: str) -> InboxMessage | None:
        """Get a message by the gateway message ID."""
        ...

    @abstractmethod
    async def save_message(self, message: InboxMessage) -> InboxMessage:
        """Save a message."""
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str, limit: int = 50) -> list[InboxMessage]:
        """Most recent messages of a conversation in chronological order."""
        ...

    # ==================== Instance Operations ====================

    @abstractmethod
    async def get_instance(self, instance_id: str) -> WhatsAppInstance | None:
        """Get an instance by ID."""
        ...

    @abstractmethod
    async def get_instance_by_name(self, instance_name: str) -> WhatsAppInstance | None:
        """Get an instance by its gateway name."""
        ...

    @abstractmethod
    async def list_instances(self, user_id: str | None = None) -> list[WhatsAppInstance]:
        """List instances, optionally for one user."""
        ...

    @abstractmethod
    async def save_instance(self, instance: WhatsAppInstance) -> WhatsAppInstance:
        """Save or update an instance."""
        ...

    @abstractmethod
    async def delete_instance(self, instance_id: str) -> bool:
        """Delete an instance row."""
        ...

    @abstractmethod
    async def clear_instance_references(self, instance_id: str) -> None:
        """Detach conversations and drop warming rows that point at an instance."""
        ...

    # ==================== Warming Operations ====================

    @abstractmethod
    async def get_warming_schedule(self, schedule_id: str) -> WarmingSchedule | None:
        """Get a warming schedule by ID."""
        ...

    @abstractmethod
    async def get_active_warming_schedule(self, instance_id: str) -> WarmingSchedule | None:
        """Get the active schedule of an instance."""
        ...

    @abstractmethod
    async def list_warming_schedules(self, status: WarmingStatus | None = None) -> list[WarmingSchedule]:
        """List schedules, optionally filtered by status."""
        ...

    @abstractmethod
    async def save_warming_schedule(self, schedule: WarmingSchedule) -> WarmingSchedule:
        """Save a schedule unconditionally, bumping its version."""
        ...

    @abstractmethod
    async def compare_and_save_warming_schedule(
        self,
        schedule: WarmingSchedule,
        expected_version: int,
    ) -> bool:
        """Save only if the stored version still equals ``expected_version``."""
        ...

    @abstractmethod
    async def list_warming_contacts(self, user_id: str, active_only: bool = True) -> list[WarmingContact]:
        """List a user's warming contacts."""
        ...

    @abstractmethod
    async def save_warming_contact(self, contact: WarmingContact) -> WarmingContact:
        """Save or update a warming contact."""
        ...

    @abstractmethod
    async def list_warming_pairs(self, instance_id: str) -> list[WarmingPair]:
        """List active pairs that include an instance."""
        ...

    @abstractmethod
    async def save_warming_pair(self, pair: WarmingPair) -> WarmingPair:
        """Save or update a warming pair."""
        ...

    @abstractmethod
    async def list_warming_content(self, user_id: str, content_type: str) -> list[WarmingContent]:
        """Active content of a type owned by the user or shared."""
        ...

    @abstractmethod
    async def save_warming_content(self, content: WarmingContent) -> WarmingContent:
        """Save or update warming content."""
        ...

    @abstractmethod
    async def save_warming_activity(self, activity: WarmingActivity) -> WarmingActivity:
        """Append a warming activity."""
        ...

    @abstractmethod
    async def list_warming_activities(self, schedule_id: str, limit: int = 100) -> list[WarmingActivity]:
        """Latest activities of a schedule, newest first."""
        ...

    # ==================== Funnel Operations ====================

    @abstractmethod
    async def get_funnel(self, funnel_id: str) -> Funnel | None:
        """Get a funnel by ID."""
        ...

    @abstractmethod
    async def save_funnel(self, funnel: Funnel) -> Funnel:
        """Save or update a funnel."""
        ...

    @abstractmethod
    async def list_funnels(self, user_id: str) -> list[Funnel]:
        """List a user's funnels."""
        ...

    @abstractmethod
    async def get_funnel_stage(self, stage_id: str) -> FunnelStage | None:
        """Get a stage by ID."""
        ...

    @abstractmethod
    async def save_funnel_stage(self, stage: FunnelStage) -> FunnelStage:
        """Save or update a stage."""
        ...

    @abstractmethod
    async def list_funnel_stages(self, funnel_id: str) -> list[FunnelStage]:
        """List a funnel's stages ordered by position."""
        ...

    @abstractmethod
    async def get_deal(self, deal_id: str) -> Deal | None:
        """Get a deal by ID."""
        ...

    @abstractmethod
    async def save_deal(self, deal: Deal) -> Deal:
        """Save or update a deal."""
        ...

    @abstractmethod
    async def list_deals(self, funnel_id: str) -> list[Deal]:
        """List a funnel's deals."""
        ...

    # ==================== Template Operations ====================

    @abstractmethod
    async def get_template(self, template_id: str) -> MetaTemplate | None:
        """Get a template by ID."""
        ...

    @abstractmethod
    async def save_template(self, template: MetaTemplate) -> MetaTemplate:
        """Save or update a template."""
        ...

    @abstractmethod
    async def list_templates(self, user_id: str, status: TemplateStatus | None = None) -> list[MetaTemplate]:
        """List a user's templates."""
        ...

    # ==================== Agent Config Operations ====================

    @abstractmethod
    async def get_agent_config(self, config_id: str) -> AIAgentConfig | None:
        """Get an agent config by ID."""
        ...

    @abstractmethod
    async def get_agent_config_for_funnel(self, funnel_id: str) -> AIAgentConfig | None:
        """Get the active agent config of a funnel."""
        ...

    @abstractmethod
    async def save_agent_config(self, config: AIAgentConfig) -> AIAgentConfig:
        """Save or update an agent config."""
        ...

    # ==================== Activity Session Operations ====================

    @abstractmethod
    async def get_open_activity_session(self, user_id: str) -> UserActivitySession | None:
        """Get the session of a user that has not ended."""
        ...

    @abstractmethod
    async def save_activity_session(self, session: UserActivitySession) -> UserActivitySession:
        """Save or update an activity session."""
        ...

    @abstractmethod
    async def list_activity_sessions(self, user_id: str, limit: int = 50) -> list[UserActivitySession]:
        """List a user's sessions, newest first."""
        ...

    # ==================== Billing Operations ====================

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Subscription | None:
        """Get a user's subscription mirror."""
        ...

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> Subscription:
        """Upsert a user's subscription mirror."""
        ...

    @abstractmethod
    async def get_token_package(self, package_id: str) -> TokenPackage | None:
        """Get a token package by ID."""
        ...

    @abstractmethod
    async def save_token_package(self, package: TokenPackage) -> TokenPackage:
        """Save or update a token package."""
        ...

    @abstractmethod
    async def list_token_packages(self, active_only: bool = True) -> list[TokenPackage]:
        """List token packages ordered by position."""
        ...

    @abstractmethod
    async def get_token_balance(self, user_id: str) -> TokenBalance | None:
        """Get a user's AI token balance."""
        ...

    @abstractmethod
    async def save_token_balance(self, balance: TokenBalance) -> TokenBalance:
        """Upsert a user's AI token balance."""
        ...

    @abstractmethod
    async def get_token_transaction(self, transaction_id: str) -> TokenTransaction | None:
        """Get a ledger entry by ID."""
        ...

    @abstractmethod
    async def save_token_transaction(self, transaction: TokenTransaction) -> TokenTransaction:
        """Append a token ledger entry."""
        ...

    @abstractmethod
    async def list_token_transactions(self, user_id: str, limit: int = 50) -> list[TokenTransaction]:
        """List a user's ledger entries, newest first."""
        ...

    # ==================== Health Check ====================

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        ...
