"""Work, break and lunch time tracking."""

import uuid
from datetime import datetime

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import NotFound
from wacrm.models import SessionType, UserActivitySession
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()


class ActivitySessionService:
    """Keeps at most one open session per user."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def current(self, user_id: str) -> UserActivitySession | None:
        return await self.storage.get_open_activity_session(user_id)

    async def start(
        self,
        user_id: str,
        session_type: SessionType = SessionType.WORK,
        organization_id: str | None = None,
        now: datetime | None = None,
    ) -> UserActivitySession:
        """Open a new session, closing the one in progress first."""
        now = now or utcnow()
        open_session = await self.storage.get_open_activity_session(user_id)
        if open_session is not None:
            open_session.close(now)
            await self.storage.save_activity_session(open_session)
            logger.info(
                "Activity session closed by new session",
                session_id=open_session.id,
                session_type=open_session.session_type.value,
                duration_seconds=open_session.duration_seconds,
            )

        session = UserActivitySession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            organization_id=organization_id,
            session_type=session_type,
            started_at=now,
        )
        await self.storage.save_activity_session(session)
        logger.info("Activity session started", session_id=session.id, session_type=session_type.value)
        return session

    async def end(self, user_id: str, now: datetime | None = None) -> UserActivitySession:
        """Close the open session.

        Raises:
            NotFound: If the user has no open session
        """
        session = await self.storage.get_open_activity_session(user_id)
        if session is None:
            raise NotFound("No active session")
        session.close(now or utcnow())
        await self.storage.save_activity_session(session)
        logger.info("Activity session ended", session_id=session.id, duration_seconds=session.duration_seconds)
        return session

    async def history(self, user_id: str, limit: int = 50) -> list[UserActivitySession]:
        return await self.storage.list_activity_sessions(user_id, limit=limit)
