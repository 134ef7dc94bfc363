"""Team activity sessions."""

from wacrm.services.activity.sessions import ActivitySessionService

__all__ = ["ActivitySessionService"]
