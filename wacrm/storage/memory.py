"""In-memory storage backend for development and testing."""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel

from wacrm.core.clock import utcnow
from wacrm.core.phone import only_digits
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
    MemberStatus,
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
from wacrm.models.warming import SHARED_CONTENT_OWNER
from wacrm.services.realtime.feed import ChangeFeed, EventType
from wacrm.storage import base as tables
from wacrm.storage.base import StorageBackend

M = TypeVar("M", bound=BaseModel)


class InMemoryStorage(StorageBackend):
    """In-memory storage implementation for development.

    Rows are copied on the way in and out so callers never share state with
    the store, the way they would not with a real database.
    """

    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or ChangeFeed()
        self._tables: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    # ==================== Helpers ====================

    def _rows(self, table: str) -> dict[str, Any]:
        return self._tables.setdefault(table, {})

    def _get(self, table: str, key: str) -> Any:
        row = self._rows(table).get(key)
        return row.model_copy(deep=True) if row is not None else None

    def _select(self, table: str, where: Callable[[Any], bool]) -> list[Any]:
        return [row.model_copy(deep=True) for row in self._rows(table).values() if where(row)]

    def _first(self, table: str, where: Callable[[Any], bool]) -> Any:
        rows = self._select(table, where)
        return rows[0] if rows else None

    async def _put(self, table: str, key: str, model: M) -> M:
        rows = self._rows(table)
        old = rows.get(key)
        rows[key] = model.model_copy(deep=True)
        await self._publish(table, EventType.INSERT if old is None else EventType.UPDATE, model, old)
        return model

    async def _remove(self, table: str, key: str) -> bool:
        old = self._rows(table).pop(key, None)
        if old is None:
            return False
        await self._publish(table, EventType.DELETE, None, old)
        return True

    # ==================== Team Operations ====================

    async def get_organization(self, organization_id: str) -> Organization | None:
        return self._get(tables.ORGANIZATIONS, organization_id)

    async def save_organization(self, organization: Organization) -> Organization:
        return await self._put(tables.ORGANIZATIONS, organization.id, organization)

    async def get_team_member_by_user(self, user_id: str) -> TeamMember | None:
        return self._first(
            tables.TEAM_MEMBERS,
            lambda m: m.user_id == user_id and m.status == MemberStatus.ACTIVE,
        )

    async def save_team_member(self, member: TeamMember) -> TeamMember:
        return await self._put(tables.TEAM_MEMBERS, member.id, member)

    async def list_team_members(self, organization_id: str) -> list[TeamMember]:
        return self._select(tables.TEAM_MEMBERS, lambda m: m.organization_id == organization_id)

    # ==================== Contact Operations ====================

    async def get_contact(self, contact_id: str) -> Contact | None:
        return self._get(tables.CONTACTS, contact_id)

    async def get_contact_by_phone(self, user_id: str, phone: str) -> Contact | None:
        digits = only_digits(phone)
        return self._first(
            tables.CONTACTS,
            lambda c: c.user_id == user_id and only_digits(c.phone) == digits,
        )

    async def save_contact(self, contact: Contact) -> Contact:
        contact.updated_at = utcnow()
        return await self._put(tables.CONTACTS, contact.id, contact)

    async def list_contacts(self, user_id: str, limit: int = 100) -> list[Contact]:
        contacts = self._select(tables.CONTACTS, lambda c: c.user_id == user_id)
        contacts.sort(key=lambda c: c.created_at, reverse=True)
        return contacts[:limit]

    # ==================== Tag Operations ====================

    async def save_tag(self, tag: Tag) -> Tag:
        return await self._put(tables.TAGS, tag.id, tag)

    async def list_tags(self, user_id: str) -> list[Tag]:
        return self._select(tables.TAGS, lambda t: t.user_id == user_id)

    async def assign_tag(self, assignment: TagAssignment) -> TagAssignment:
        return await self._put(tables.TAG_ASSIGNMENTS, assignment.key, assignment)

    async def unassign_tag(self, tag_id: str, target_type: TagTarget, target_id: str) -> bool:
        key = TagAssignment(tag_id=tag_id, target_type=target_type, target_id=target_id).key
        return await self._remove(tables.TAG_ASSIGNMENTS, key)

    async def list_tag_assignments(self, target_type: TagTarget, target_id: str) -> list[TagAssignment]:
        return self._select(
            tables.TAG_ASSIGNMENTS,
            lambda a: a.target_type == target_type and a.target_id == target_id,
        )

    # ==================== Custom Field Operations ====================

    async def save_custom_field_definition(self, definition: CustomFieldDefinition) -> CustomFieldDefinition:
        return await self._put(tables.CUSTOM_FIELDS, definition.id, definition)

    async def list_custom_field_definitions(
        self,
        organization_id: str,
        applies_to: CustomFieldScope | None = None,
    ) -> list[CustomFieldDefinition]:
        definitions = self._select(
            tables.CUSTOM_FIELDS,
            lambda d: d.organization_id == organization_id
            and (applies_to is None or d.applies_to == applies_to),
        )
        definitions.sort(key=lambda d: d.position)
        return definitions

    # ==================== Conversation Operations ====================

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._get(tables.CONVERSATIONS, conversation_id)

    async def get_conversation_by_contact(self, user_id: str, contact_id: str) -> Conversation | None:
        return self._first(
            tables.CONVERSATIONS,
            lambda c: c.user_id == user_id and c.contact_id == contact_id,
        )

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        conversation.updated_at = utcnow()
        return await self._put(tables.CONVERSATIONS, conversation.id, conversation)

    async def list_conversations(
        self,
        user_id: str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Conversation]:
        convs = self._select(
            tables.CONVERSATIONS,
            lambda c: c.user_id == user_id and (status is None or c.status == status),
        )
        convs.sort(key=lambda c: c.last_message_at or c.created_at, reverse=True)
        return convs[:limit]

    # ==================== Message Operations ====================

    async def get_message(self, message_id: str) -> InboxMessage | None:
        return self._get(tables.MESSAGES, message_id)

    async def get_message_by_whatsapp_id(self, whatsapp_message_id: str) -> InboxMessage | None:
        return self._first(tables.MESSAGES, lambda m: m.whatsapp_message_id == whatsapp_message_id)

    async def save_message(self, message: InboxMessage) -> InboxMessage:
        return await self._put(tables.MESSAGES, message.id, message)

    async def list_messages(self, conversation_id: str, limit: int = 50) -> list[InboxMessage]:
        messages = self._select(tables.MESSAGES, lambda m: m.conversation_id == conversation_id)
        messages.sort(key=lambda m: m.sent_at)
        return messages[-limit:]

    # ==================== Instance Operations ====================

    async def get_instance(self, instance_id: str) -> WhatsAppInstance | None:
        return self._get(tables.INSTANCES, instance_id)

    async def get_instance_by_name(self, instance_name: str) -> WhatsAppInstance | None:
        return self._first(tables.INSTANCES, lambda i: i.instance_name == instance_name)

    async def list_instances(self, user_id: str | None = None) -> list[WhatsAppInstance]:
        return self._select(tables.INSTANCES, lambda i: user_id is None or i.user_id == user_id)

    async def save_instance(self, instance: WhatsAppInstance) -> WhatsAppInstance:
        instance.updated_at = utcnow()
        return await self._put(tables.INSTANCES, instance.id, instance)

    async def delete_instance(self, instance_id: str) -> bool:
        return await self._remove(tables.INSTANCES, instance_id)

    async def clear_instance_references(self, instance_id: str) -> None:
        for conv in self._select(tables.CONVERSATIONS, lambda c: c.instance_id == instance_id):
            conv.instance_id = None
            await self.save_conversation(conv)
        for schedule in self._select(tables.WARMING_SCHEDULES, lambda s: s.instance_id == instance_id):
            await self._remove(tables.WARMING_SCHEDULES, schedule.id)
        for pair in self._select(
            tables.WARMING_PAIRS,
            lambda p: instance_id in (p.instance_a_id, p.instance_b_id),
        ):
            await self._remove(tables.WARMING_PAIRS, pair.id)

    # ==================== Warming Operations ====================

    async def get_warming_schedule(self, schedule_id: str) -> WarmingSchedule | None:
        return self._get(tables.WARMING_SCHEDULES, schedule_id)

    async def get_active_warming_schedule(self, instance_id: str) -> WarmingSchedule | None:
        return self._first(
            tables.WARMING_SCHEDULES,
            lambda s: s.instance_id == instance_id and s.status == WarmingStatus.ACTIVE,
        )

    async def list_warming_schedules(self, status: WarmingStatus | None = None) -> list[WarmingSchedule]:
        return self._select(tables.WARMING_SCHEDULES, lambda s: status is None or s.status == status)

    async def save_warming_schedule(self, schedule: WarmingSchedule) -> WarmingSchedule:
        async with self._lock:
            schedule.version += 1
            schedule.updated_at = utcnow()
            return await self._put(tables.WARMING_SCHEDULES, schedule.id, schedule)

    async def compare_and_save_warming_schedule(
        self,
        schedule: WarmingSchedule,
        expected_version: int,
    ) -> bool:
        async with self._lock:
            current = self._rows(tables.WARMING_SCHEDULES).get(schedule.id)
            if current is None or current.version != expected_version:
                return False
            schedule.version = expected_version + 1
            schedule.updated_at = utcnow()
            await self._put(tables.WARMING_SCHEDULES, schedule.id, schedule)
            return True

    async def list_warming_contacts(self, user_id: str, active_only: bool = True) -> list[WarmingContact]:
        return self._select(
            tables.WARMING_CONTACTS,
            lambda c: c.user_id == user_id and (c.is_active or not active_only),
        )

    async def save_warming_contact(self, contact: WarmingContact) -> WarmingContact:
        return await self._put(tables.WARMING_CONTACTS, contact.id, contact)

    async def list_warming_pairs(self, instance_id: str) -> list[WarmingPair]:
        return self._select(
            tables.WARMING_PAIRS,
            lambda p: p.is_active and instance_id in (p.instance_a_id, p.instance_b_id),
        )

    async def save_warming_pair(self, pair: WarmingPair) -> WarmingPair:
        return await self._put(tables.WARMING_PAIRS, pair.id, pair)

    async def list_warming_content(self, user_id: str, content_type: str) -> list[WarmingContent]:
        return self._select(
            tables.WARMING_CONTENT,
            lambda c: c.is_active
            and c.content_type == content_type
            and c.user_id in (user_id, SHARED_CONTENT_OWNER),
        )

    async def save_warming_content(self, content: WarmingContent) -> WarmingContent:
        return await self._put(tables.WARMING_CONTENT, content.id, content)

    async def save_warming_activity(self, activity: WarmingActivity) -> WarmingActivity:
        return await self._put(tables.WARMING_ACTIVITIES, activity.id, activity)

    async def list_warming_activities(self, schedule_id: str, limit: int = 100) -> list[WarmingActivity]:
        activities = self._select(tables.WARMING_ACTIVITIES, lambda a: a.schedule_id == schedule_id)
        activities.sort(key=lambda a: a.created_at, reverse=True)
        return activities[:limit]

    # ==================== Funnel Operations ====================

    async def get_funnel(self, funnel_id: str) -> Funnel | None:
        return self._get(tables.FUNNELS, funnel_id)

    async def save_funnel(self, funnel: Funnel) -> Funnel:
        funnel.updated_at = utcnow()
        return await self._put(tables.FUNNELS, funnel.id, funnel)

    async def list_funnels(self, user_id: str) -> list[Funnel]:
        funnels = self._select(tables.FUNNELS, lambda f: f.user_id == user_id)
        funnels.sort(key=lambda f: f.position)
        return funnels

    async def get_funnel_stage(self, stage_id: str) -> FunnelStage | None:
        return self._get(tables.FUNNEL_STAGES, stage_id)

    async def save_funnel_stage(self, stage: FunnelStage) -> FunnelStage:
        return await self._put(tables.FUNNEL_STAGES, stage.id, stage)

    async def list_funnel_stages(self, funnel_id: str) -> list[FunnelStage]:
        stages = self._select(tables.FUNNEL_STAGES, lambda s: s.funnel_id == funnel_id)
        stages.sort(key=lambda s: s.position)
        return stages

    async def get_deal(self, deal_id: str) -> Deal | None:
        return self._get(tables.DEALS, deal_id)

    async def save_deal(self, deal: Deal) -> Deal:
        deal.updated_at = utcnow()
        return await self._put(tables.DEALS, deal.id, deal)

    async def list_deals(self, funnel_id: str) -> list[Deal]:
        return self._select(tables.DEALS, lambda d: d.funnel_id == funnel_id)

    # ==================== Template Operations ====================

    async def get_template(self, template_id: str) -> MetaTemplate | None:
        return self._get(tables.TEMPLATES, template_id)

    async def save_template(self, template: MetaTemplate) -> MetaTemplate:
        return await self._put(tables.TEMPLATES, template.id, template)

    async def list_templates(self, user_id: str, status: TemplateStatus | None = None) -> list[MetaTemplate]:
        return self._select(
            tables.TEMPLATES,
            lambda t: t.user_id == user_id and (status is None or t.status == status),
        )

    # ==================== Agent Config Operations ====================

    async def get_agent_config(self, config_id: str) -> AIAgentConfig | None:
        return self._get(tables.AGENT_CONFIGS, config_id)

    async def get_agent_config_for_funnel(self, funnel_id: str) -> AIAgentConfig | None:
        return self._first(
            tables.AGENT_CONFIGS,
            lambda c: c.funnel_id == funnel_id and c.is_active,
        )

    async def save_agent_config(self, config: AIAgentConfig) -> AIAgentConfig:
        config.updated_at = utcnow()
        return await self._put(tables.AGENT_CONFIGS, config.id, config)

    # ==================== Activity Session Operations ====================

    async def get_open_activity_session(self, user_id: str) -> UserActivitySession | None:
        return self._first(
            tables.ACTIVITY_SESSIONS,
            lambda s: s.user_id == user_id and s.ended_at is None,
        )

    async def save_activity_session(self, session: UserActivitySession) -> UserActivitySession:
        return await self._put(tables.ACTIVITY_SESSIONS, session.id, session)

    async def list_activity_sessions(self, user_id: str, limit: int = 50) -> list[UserActivitySession]:
        sessions = self._select(tables.ACTIVITY_SESSIONS, lambda s: s.user_id == user_id)
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return sessions[:limit]

    # ==================== Billing Operations ====================

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return self._get(tables.SUBSCRIPTIONS, user_id)

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        subscription.updated_at = utcnow()
        return await self._put(tables.SUBSCRIPTIONS, subscription.user_id, subscription)

    async def get_token_package(self, package_id: str) -> TokenPackage | None:
        return self._get(tables.TOKEN_PACKAGES, package_id)

    async def save_token_package(self, package: TokenPackage) -> TokenPackage:
        return await self._put(tables.TOKEN_PACKAGES, package.id, package)

    async def list_token_packages(self, active_only: bool = True) -> list[TokenPackage]:
        packages = self._select(tables.TOKEN_PACKAGES, lambda p: p.is_active or not active_only)
        packages.sort(key=lambda p: p.position)
        return packages

    async def get_token_balance(self, user_id: str) -> TokenBalance | None:
        return self._get(tables.TOKEN_BALANCES, user_id)

    async def save_token_balance(self, balance: TokenBalance) -> TokenBalance:
        balance.updated_at = utcnow()
        return await self._put(tables.TOKEN_BALANCES, balance.user_id, balance)

    async def get_token_transaction(self, transaction_id: str) -> TokenTransaction | None:
        return self._get(tables.TOKEN_TRANSACTIONS, transaction_id)

    async def save_token_transaction(self, transaction: TokenTransaction) -> TokenTransaction:
        return await self._put(tables.TOKEN_TRANSACTIONS, transaction.id, transaction)

    async def list_token_transactions(self, user_id: str, limit: int = 50) -> list[TokenTransaction]:
        transactions = self._select(tables.TOKEN_TRANSACTIONS, lambda t: t.user_id == user_id)
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions[:limit]

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        return True

    # ==================== Development Helpers ====================

    async def clear_all(self) -> None:
        """Clear all data (for testing)."""
        self._tables.clear()
