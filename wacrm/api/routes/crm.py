"""Dashboard endpoints: permissions, activity sessions and metrics."""

from typing import Any

import structlog
from fastapi import APIRouter, Query
from pydantic import BaseModel

from wacrm.api.dependencies import CurrentUserDep, QueryCacheDep, StorageDep
from wacrm.core.clock import utcnow
from wacrm.core.exceptions import NotFound
from wacrm.core.permissions import TeamRole, allowed_sidebar_paths, resolve_all
from wacrm.models import (
    FEATURE_ACCESS,
    PlanKey,
    SessionType,
    SubscriptionStatus,
    UserActivitySession,
    has_feature_access,
)
from wacrm.services.activity import ActivitySessionService
from wacrm.services.analytics import funnel_metrics, response_queue, sla_metrics

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["CRM"])

_LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class SessionStart(BaseModel):
    """Schema for starting an activity session."""

    session_type: SessionType = SessionType.WORK


class SessionState(BaseModel):
    """Response schema for the current activity session."""

    session: UserActivitySession | None
    elapsed_seconds: int | None = None


def _state(session: UserActivitySession | None) -> SessionState:
    if session is None:
        return SessionState(session=None)
    end = session.ended_at or utcnow()
    return SessionState(session=session, elapsed_seconds=max(0, int((end - session.started_at).total_seconds())))


# ==================== Permissions ====================


@router.get("/me/permissions")
async def my_permissions(user: CurrentUserDep, storage: StorageDep) -> dict[str, Any]:
    """Resolved permission map and visible sidebar paths for the caller.

    Users outside any organization own their account and get the admin map.
    Feature flags follow the caller's plan; lapsed subscriptions count as free.
    """
    member = await storage.get_team_member_by_user(user.id)
    role = member.role if member else TeamRole.ADMIN
    overrides = member.permissions if member else None
    subscription = await storage.get_subscription(user.id)
    plan = PlanKey.FREE
    if subscription and (subscription.manual_override or subscription.status in _LIVE_STATUSES):
        plan = subscription.plan
    return {
        "role": role.value,
        "organization_id": member.organization_id if member else None,
        "permissions": resolve_all(role, overrides),
        "sidebar": allowed_sidebar_paths(role, overrides),
        "plan": plan.value,
        "features": {feature: has_feature_access(plan, feature) for feature in FEATURE_ACCESS},
    }


# ==================== Activity Sessions ====================


@router.get("/activity/session", response_model=SessionState)
async def current_session(user: CurrentUserDep, storage: StorageDep) -> SessionState:
    """The caller's open session, if any."""
    return _state(await ActivitySessionService(storage).current(user.id))


@router.post("/activity/session", response_model=SessionState)
async def start_session(data: SessionStart, user: CurrentUserDep, storage: StorageDep) -> SessionState:
    """Start a session, closing the open one first."""
    member = await storage.get_team_member_by_user(user.id)
    session = await ActivitySessionService(storage).start(
        user.id,
        data.session_type,
        organization_id=member.organization_id if member else None,
    )
    return _state(session)


@router.post("/activity/session/end", response_model=SessionState)
async def end_session(user: CurrentUserDep, storage: StorageDep) -> SessionState:
    """Close the open session."""
    return _state(await ActivitySessionService(storage).end(user.id))


@router.get("/activity/sessions", response_model=list[UserActivitySession])
async def session_history(
    user: CurrentUserDep,
    storage: StorageDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[UserActivitySession]:
    """Most recent sessions first."""
    return await ActivitySessionService(storage).history(user.id, limit=limit)


# ==================== Metrics ====================


@router.get("/metrics/funnels/{funnel_id}")
async def get_funnel_metrics(
    funnel_id: str,
    user: CurrentUserDep,
    storage: StorageDep,
    cache: QueryCacheDep,
) -> dict[str, Any]:
    """Per-stage counts and values, win rate and pipeline value."""
    funnel = await storage.get_funnel(funnel_id)
    if funnel is None or funnel.user_id != user.id:
        raise NotFound("Funnel not found", details={"funnel_id": funnel_id})

    async def load() -> dict[str, Any]:
        stages = await storage.list_funnel_stages(funnel_id)
        deals = await storage.list_deals(funnel_id)
        return funnel_metrics(stages, deals).to_dict()

    return await cache.get_or_load(("funnel_metrics", funnel_id), ("funnel_metrics",), load)


@router.get("/metrics/sla")
async def get_sla_metrics(
    user: CurrentUserDep,
    storage: StorageDep,
    limit: int = Query(500, ge=1, le=5000),
) -> dict[str, Any]:
    """First-response statistics over the caller's recent conversations."""
    conversations = await storage.list_conversations(user.id, limit=limit)
    return sla_metrics(conversations).to_dict()


@router.get("/metrics/response-queue")
async def get_response_queue(
    user: CurrentUserDep,
    storage: StorageDep,
    include_ok: bool = False,
    limit: int = Query(500, ge=1, le=5000),
) -> list[dict[str, Any]]:
    """Conversations waiting on a reply, longest wait first."""
    conversations = await storage.list_conversations(user.id, status="open", limit=limit)
    contacts = {}
    for conversation in conversations:
        if conversation.contact_id not in contacts:
            contact = await storage.get_contact(conversation.contact_id)
            if contact is not None:
                contacts[contact.id] = contact
    return [q.to_dict() for q in response_queue(conversations, contacts=contacts, include_ok=include_ok)]
