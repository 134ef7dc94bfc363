"""Organization and team membership models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow
from wacrm.core.permissions import TeamRole, resolve_all, resolve_permission


class MemberStatus(str, Enum):
    INVITED = "invited"
    ACTIVE = "active"
    REMOVED = "removed"


class Organization(BaseModel):
    """Tenant that owns instances, funnels and team members."""

    id: str
    name: str
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)


class TeamMember(BaseModel):
    """A user's membership in an organization."""

    id: str
    organization_id: str
    user_id: str
    email: str | None = None
    role: TeamRole = TeamRole.MEMBER
    # Free-form JSON column; only boolean values are honored
    permissions: dict[str, Any] = Field(default_factory=dict)
    status: MemberStatus = MemberStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == TeamRole.ADMIN

    def can(self, key: str) -> bool:
        return resolve_permission(self.role, self.permissions, key)

    def resolved_permissions(self) -> dict[str, bool]:
        return resolve_all(self.role, self.permissions)
