"""Firestore storage backend for production."""

import os
from typing import Any, TypeVar

import structlog
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
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

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

Filter = tuple[str, str, Any]


class FirestoreStorage(StorageBackend):
    """Firestore storage implementation for production.

    One top-level collection per table, named after the table. Subscriptions
    and token balances are keyed by user id, tag assignments by
    ``tag:type:target``; everything else by its own id.
    """

    def __init__(self, project_id: str | None = None, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or ChangeFeed()
        self._project_id = project_id
        self._db: firestore.AsyncClient | None = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of Firestore client."""
        if self._initialized:
            return

        try:
            if os.environ.get("FIRESTORE_EMULATOR_HOST"):
                logger.info("Using Firestore emulator")

            self._db = firestore.AsyncClient(project=self._project_id)
            self._initialized = True
            logger.info("Firestore client initialized", project=self._project_id)
        except Exception as e:
            logger.error("Failed to initialize Firestore", error=str(e))
            raise

    # ==================== Helpers ====================

    async def _get(self, table: str, key: str, model: type[M]) -> M | None:
        await self._ensure_initialized()
        doc = await self._db.collection(table).document(key).get()
        if not doc.exists:
            return None
        return model.model_validate(doc.to_dict())

    async def _query(
        self,
        table: str,
        model: type[M],
        filters: list[Filter],
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[M]:
        await self._ensure_initialized()
        query = self._db.collection(table)
        for field, op, value in filters:
            query = query.where(filter=FieldFilter(field, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit:
            query = query.limit(limit)
        docs = await query.get()
        return [model.model_validate(doc.to_dict()) for doc in docs]

    async def _first(self, table: str, model: type[M], filters: list[Filter]) -> M | None:
        rows = await self._query(table, model, filters, limit=1)
        return rows[0] if rows else None

    async def _put(self, table: str, key: str, model: M) -> M:
        await self._ensure_initialized()
        ref = self._db.collection(table).document(key)
        old = await ref.get()
        await ref.set(model.model_dump(mode="json"))
        old_model = type(model).model_validate(old.to_dict()) if old.exists else None
        await self._publish(
            table,
            EventType.UPDATE if old_model is not None else EventType.INSERT,
            model,
            old_model,
        )
        return model

    async def _remove(self, table: str, key: str, model: type[M]) -> bool:
        await self._ensure_initialized()
        ref = self._db.collection(table).document(key)
        old = await ref.get()
        if not old.exists:
            return False
        await ref.delete()
        await self._publish(table, EventType.DELETE, None, model.model_validate(old.to_dict()))
        return True

    # ==================== Team Operations ====================

    async def get_organization(self, organization_id: str) -> Organization | None:
        return await self._get(tables.ORGANIZATIONS, organization_id, Organization)

    async def save_organization(self, organization: Organization) -> Organization:
        return await self._put(tables.ORGANIZATIONS, organization.id, organization)

    async def get_team_member_by_user(self, user_id: str) -> TeamMember | None:
        return await self._first(
            tables.TEAM_MEMBERS,
            TeamMember,
            [("user_id", "==", user_id), ("status", "==", MemberStatus.ACTIVE.value)],
        )

    async def save_team_member(self, member: TeamMember) -> TeamMember:
        return await self._put(tables.TEAM_MEMBERS, member.id, member)

    async def list_team_members(self, organization_id: str) -> list[TeamMember]:
        return await self._query(tables.TEAM_MEMBERS, TeamMember, [("organization_id", "==", organization_id)])

    # ==================== Contact Operations ====================

    async def get_contact(self, contact_id: str) -> Contact | None:
        return await self._get(tables.CONTACTS, contact_id, Contact)

    async def get_contact_by_phone(self, user_id: str, phone: str) -> Contact | None:
        # Contacts are written with digits-only phones
        return await self._first(
            tables.CONTACTS,
            Contact,
            [("user_id", "==", user_id), ("phone", "==", only_digits(phone))],
        )

    async def save_contact(self, contact: Contact) -> Contact:
        contact.updated_at = utcnow()
        return await self._put(tables.CONTACTS, contact.id, contact)

    async def list_contacts(self, user_id: str, limit: int = 100) -> list[Contact]:
        return await self._query(
            tables.CONTACTS,
            Contact,
            [("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    # ==================== Tag Operations ====================

    async def save_tag(self, tag: Tag) -> Tag:
        return await self._put(tables.TAGS, tag.id, tag)

    async def list_tags(self, user_id: str) -> list[Tag]:
        return await self._query(tables.TAGS, Tag, [("user_id", "==", user_id)])

    async def assign_tag(self, assignment: TagAssignment) -> TagAssignment:
        return await self._put(tables.TAG_ASSIGNMENTS, assignment.key, assignment)

    async def unassign_tag(self, tag_id: str, target_type: TagTarget, target_id: str) -> bool:
        key = TagAssignment(tag_id=tag_id, target_type=target_type, target_id=target_id).key
        return await self._remove(tables.TAG_ASSIGNMENTS, key, TagAssignment)

    async def list_tag_assignments(self, target_type: TagTarget, target_id: str) -> list[TagAssignment]:
        return await self._query(
            tables.TAG_ASSIGNMENTS,
            TagAssignment,
            [("target_type", "==", target_type.value), ("target_id", "==", target_id)],
        )

    # ==================== Custom Field Operations ====================

    async def save_custom_field_definition(self, definition: CustomFieldDefinition) -> CustomFieldDefinition:
        return await self._put(tables.CUSTOM_FIELDS, definition.id, definition)

    async def list_custom_field_definitions(
        self,
        organization_id: str,
        applies_to: CustomFieldScope | None = None,
    ) -> list[CustomFieldDefinition]:
        filters: list[Filter] = [("organization_id", "==", organization_id)]
        if applies_to is not None:
            filters.append(("applies_to", "==", applies_to.value))
        return await self._query(tables.CUSTOM_FIELDS, CustomFieldDefinition, filters, order_by="position")

    # ==================== Conversation Operations ====================

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return await self._get(tables.CONVERSATIONS, conversation_id, Conversation)

    async def get_conversation_by_contact(self, user_id: str, contact_id: str) -> Conversation | None:
        return await self._first(
            tables.CONVERSATIONS,
            Conversation,
            [("user_id", "==", user_id), ("contact_id", "==", contact_id)],
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
        filters: list[Filter] = [("user_id", "==", user_id)]
        if status:
            filters.append(("status", "==", status))
        return await self._query(
            tables.CONVERSATIONS,
            Conversation,
            filters,
            order_by="updated_at",
            descending=True,
            limit=limit,
        )

    # ==================== Message Operations ====================

    async def get_message(self, message_id: str) -> InboxMessage | None:
        return await self._get(tables.MESSAGES, message_id, InboxMessage)

    async def get_message_by_whatsapp_id(self, whatsapp_message_id: str) -> InboxMessage | None:
        return await self._first(
            tables.MESSAGES,
            InboxMessage,
            [("whatsapp_message_id", "==", whatsapp_message_id)],
        )

    async def save_message(self, message: InboxMessage) -> InboxMessage:
        return await self._put(tables.MESSAGES, message.id, message)

    async def list_messages(self, conversation_id: str, limit: int = 50) -> list[InboxMessage]:
        messages = await self._query(
            tables.MESSAGES,
            InboxMessage,
            [("conversation_id", "==", conversation_id)],
            order_by="sent_at",
            descending=True,
            limit=limit,
        )
        # Reverse to get chronological order
        return list(reversed(messages))

    # ==================== Instance Operations ====================

    async def get_instance(self, instance_id: str) -> WhatsAppInstance | None:
        return await self._get(tables.INSTANCES, instance_id, WhatsAppInstance)

    async def get_instance_by_name(self, instance_name: str) -> WhatsAppInstance | None:
        return await self._first(tables.INSTANCES, WhatsAppInstance, [("instance_name", "==", instance_name)])

    async def list_instances(self, user_id: str | None = None) -> list[WhatsAppInstance]:
        filters: list[Filter] = [("user_id", "==", user_id)] if user_id else []
        return await self._query(tables.INSTANCES, WhatsAppInstance, filters)

    async def save_instance(self, instance: WhatsAppInstance) -> WhatsAppInstance:
        instance.updated_at = utcnow()
        return await self._put(tables.INSTANCES, instance.id, instance)

    async def delete_instance(self, instance_id: str) -> bool:
        return await self._remove(tables.INSTANCES, instance_id, WhatsAppInstance)

    async def clear_instance_references(self, instance_id: str) -> None:
        convs = await self._query(tables.CONVERSATIONS, Conversation, [("instance_id", "==", instance_id)])
        for conv in convs:
            conv.instance_id = None
            await self.save_conversation(conv)

        schedules = await self._query(
            tables.WARMING_SCHEDULES,
            WarmingSchedule,
            [("instance_id", "==", instance_id)],
        )
        for schedule in schedules:
            await self._remove(tables.WARMING_SCHEDULES, schedule.id, WarmingSchedule)

        for pair in await self._query(tables.WARMING_PAIRS, WarmingPair, [("instance_a_id", "==", instance_id)]):
            await self._remove(tables.WARMING_PAIRS, pair.id, WarmingPair)
        for pair in await self._query(tables.WARMING_PAIRS, WarmingPair, [("instance_b_id", "==", instance_id)]):
            await self._remove(tables.WARMING_PAIRS, pair.id, WarmingPair)

    # ==================== Warming Operations ====================

    async def get_warming_schedule(self, schedule_id: str) -> WarmingSchedule | None:
        return await self._get(tables.WARMING_SCHEDULES, schedule_id, WarmingSchedule)

    async def get_active_warming_schedule(self, instance_id: str) -> WarmingSchedule | None:
        return await self._first(
            tables.WARMING_SCHEDULES,
            WarmingSchedule,
            [("instance_id", "==", instance_id), ("status", "==", WarmingStatus.ACTIVE.value)],
        )

    async def list_warming_schedules(self, status: WarmingStatus | None = None) -> list[WarmingSchedule]:
        filters: list[Filter] = [("status", "==", status.value)] if status else []
        return await self._query(tables.WARMING_SCHEDULES, WarmingSchedule, filters)

    async def save_warming_schedule(self, schedule: WarmingSchedule) -> WarmingSchedule:
        schedule.version += 1
        schedule.updated_at = utcnow()
        return await self._put(tables.WARMING_SCHEDULES, schedule.id, schedule)

    async def compare_and_save_warming_schedule(
        self,
        schedule: WarmingSchedule,
        expected_version: int,
    ) -> bool:
        await self._ensure_initialized()
        ref = self._db.collection(tables.WARMING_SCHEDULES).document(schedule.id)
        candidate = schedule.model_copy(
            update={"version": expected_version + 1, "updated_at": utcnow()}
        )

        @firestore.async_transactional
        async def apply(transaction: firestore.AsyncTransaction) -> dict[str, Any] | None:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            current = snapshot.to_dict()
            if current.get("version", 0) != expected_version:
                return None
            transaction.set(ref, candidate.model_dump(mode="json"))
            return current

        previous = await apply(self._db.transaction())
        if previous is None:
            logger.info(
                "Warming schedule changed concurrently",
                schedule_id=schedule.id,
                expected_version=expected_version,
            )
            return False

        schedule.version = candidate.version
        schedule.updated_at = candidate.updated_at
        await self._publish(
            tables.WARMING_SCHEDULES,
            EventType.UPDATE,
            schedule,
            WarmingSchedule.model_validate(previous),
        )
        return True

    async def list_warming_contacts(self, user_id: str, active_only: bool = True) -> list[WarmingContact]:
        filters: list[Filter] = [("user_id", "==", user_id)]
        if active_only:
            filters.append(("is_active", "==", True))
        return await self._query(tables.WARMING_CONTACTS, WarmingContact, filters)

    async def save_warming_contact(self, contact: WarmingContact) -> WarmingContact:
        return await self._put(tables.WARMING_CONTACTS, contact.id, contact)

    async def list_warming_pairs(self, instance_id: str) -> list[WarmingPair]:
        pairs = await self._query(
            tables.WARMING_PAIRS,
            WarmingPair,
            [("instance_a_id", "==", instance_id), ("is_active", "==", True)],
        )
        pairs += await self._query(
            tables.WARMING_PAIRS,
            WarmingPair,
            [("instance_b_id", "==", instance_id), ("is_active", "==", True)],
        )
        return pairs

    async def save_warming_pair(self, pair: WarmingPair) -> WarmingPair:
        return await self._put(tables.WARMING_PAIRS, pair.id, pair)

    async def list_warming_content(self, user_id: str, content_type: str) -> list[WarmingContent]:
        return await self._query(
            tables.WARMING_CONTENT,
            WarmingContent,
            [
                ("content_type", "==", content_type),
                ("is_active", "==", True),
                ("user_id", "in", [user_id, SHARED_CONTENT_OWNER]),
            ],
        )

    async def save_warming_content(self, content: WarmingContent) -> WarmingContent:
        return await self._put(tables.WARMING_CONTENT, content.id, content)

    async def save_warming_activity(self, activity: WarmingActivity) -> WarmingActivity:
        return await self._put(tables.WARMING_ACTIVITIES, activity.id, activity)

    async def list_warming_activities(self, schedule_id: str, limit: int = 100) -> list[WarmingActivity]:
        return await self._query(
            tables.WARMING_ACTIVITIES,
            WarmingActivity,
            [("schedule_id", "==", schedule_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    # ==================== Funnel Operations ====================

    async def get_funnel(self, funnel_id: str) -> Funnel | None:
        return await self._get(tables.FUNNELS, funnel_id, Funnel)

    async def save_funnel(self, funnel: Funnel) -> Funnel:
        funnel.updated_at = utcnow()
        return await self._put(tables.FUNNELS, funnel.id, funnel)

    async def list_funnels(self, user_id: str) -> list[Funnel]:
        return await self._query(tables.FUNNELS, Funnel, [("user_id", "==", user_id)], order_by="position")

    async def get_funnel_stage(self, stage_id: str) -> FunnelStage | None:
        return await self._get(tables.FUNNEL_STAGES, stage_id, FunnelStage)

    async def save_funnel_stage(self, stage: FunnelStage) -> FunnelStage:
        return await self._put(tables.FUNNEL_STAGES, stage.id, stage)

    async def list_funnel_stages(self, funnel_id: str) -> list[FunnelStage]:
        return await self._query(
            tables.FUNNEL_STAGES,
            FunnelStage,
            [("funnel_id", "==", funnel_id)],
            order_by="position",
        )

    async def get_deal(self, deal_id: str) -> Deal | None:
        return await self._get(tables.DEALS, deal_id, Deal)

    async def save_deal(self, deal: Deal) -> Deal:
        deal.updated_at = utcnow()
        return await self._put(tables.DEALS, deal.id, deal)

    async def list_deals(self, funnel_id: str) -> list[Deal]:
        return await self._query(tables.DEALS, Deal, [("funnel_id", "==", funnel_id)])

    # ==================== Template Operations ====================

    async def get_template(self, template_id: str) -> MetaTemplate | None:
        return await self._get(tables.TEMPLATES, template_id, MetaTemplate)

    async def save_template(self, template: MetaTemplate) -> MetaTemplate:
        return await self._put(tables.TEMPLATES, template.id, template)

    async def list_templates(self, user_id: str, status: TemplateStatus | None = None) -> list[MetaTemplate]:
        filters: list[Filter] = [("user_id", "==", user_id)]
        if status is not None:
            filters.append(("status", "==", status.value))
        return await self._query(tables.TEMPLATES, MetaTemplate, filters)

    # ==================== Agent Config Operations ====================

    async def get_agent_config(self, config_id: str) -> AIAgentConfig | None:
        return await self._get(tables.AGENT_CONFIGS, config_id, AIAgentConfig)

    async def get_agent_config_for_funnel(self, funnel_id: str) -> AIAgentConfig | None:
        return await self._first(
            tables.AGENT_CONFIGS,
            AIAgentConfig,
            [("funnel_id", "==", funnel_id), ("is_active", "==", True)],
        )

    async def save_agent_config(self, config: AIAgentConfig) -> AIAgentConfig:
        config.updated_at = utcnow()
        return await self._put(tables.AGENT_CONFIGS, config.id, config)

    # ==================== Activity Session Operations ====================

    async def get_open_activity_session(self, user_id: str) -> UserActivitySession | None:
        return await self._first(
            tables.ACTIVITY_SESSIONS,
            UserActivitySession,
            [("user_id", "==", user_id), ("ended_at", "==", None)],
        )

    async def save_activity_session(self, session: UserActivitySession) -> UserActivitySession:
        return await self._put(tables.ACTIVITY_SESSIONS, session.id, session)

    async def list_activity_sessions(self, user_id: str, limit: int = 50) -> list[UserActivitySession]:
        return await self._query(
            tables.ACTIVITY_SESSIONS,
            UserActivitySession,
            [("user_id", "==", user_id)],
            order_by="started_at",
            descending=True,
            limit=limit,
        )

    # ==================== Billing Operations ====================

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return await self._get(tables.SUBSCRIPTIONS, user_id, Subscription)

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        subscription.updated_at = utcnow()
        return await self._put(tables.SUBSCRIPTIONS, subscription.user_id, subscription)

    async def get_token_package(self, package_id: str) -> TokenPackage | None:
        return await self._get(tables.TOKEN_PACKAGES, package_id, TokenPackage)

    async def save_token_package(self, package: TokenPackage) -> TokenPackage:
        return await self._put(tables.TOKEN_PACKAGES, package.id, package)

    async def list_token_packages(self, active_only: bool = True) -> list[TokenPackage]:
        filters: list[Filter] = [("is_active", "==", True)] if active_only else []
        return await self._query(tables.TOKEN_PACKAGES, TokenPackage, filters, order_by="position")

    async def get_token_balance(self, user_id: str) -> TokenBalance | None:
        return await self._get(tables.TOKEN_BALANCES, user_id, TokenBalance)

    async def save_token_balance(self, balance: TokenBalance) -> TokenBalance:
        balance.updated_at = utcnow()
        return await self._put(tables.TOKEN_BALANCES, balance.user_id, balance)

    async def get_token_transaction(self, transaction_id: str) -> TokenTransaction | None:
        return await self._get(tables.TOKEN_TRANSACTIONS, transaction_id, TokenTransaction)

    async def save_token_transaction(self, transaction: TokenTransaction) -> TokenTransaction:
        return await self._put(tables.TOKEN_TRANSACTIONS, transaction.id, transaction)

    async def list_token_transactions(self, user_id: str, limit: int = 50) -> list[TokenTransaction]:
        return await self._query(
            tables.TOKEN_TRANSACTIONS,
            TokenTransaction,
            [("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        try:
            await self._ensure_initialized()
            await self._db.collection("_health").document("check").get()
            return True
        except Exception as e:
            logger.error("Firestore health check failed", error=str(e))
            return False
