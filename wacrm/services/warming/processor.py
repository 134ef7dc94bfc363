"""Warming tick: one outbound message per eligible schedule."""

import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import AppException
from wacrm.core.phone import only_digits
from wacrm.models import (
    MessageType,
    OutgoingMessage,
    WarmingActivity,
    WarmingContent,
    WarmingContentType,
    WarmingSchedule,
    WarmingStatus,
    WhatsAppInstance,
)
from wacrm.services.channels.base import ChannelAdapter
from wacrm.services.warming.progression import (
    calculate_warming_level,
    get_progression,
    is_within_warming_hours,
)
from wacrm.services.warming.scheduler import update_schedule
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

_MESSAGE_TYPES: dict[WarmingContentType, MessageType] = {
    WarmingContentType.TEXT: MessageType.TEXT,
    WarmingContentType.IMAGE: MessageType.IMAGE,
    WarmingContentType.AUDIO: MessageType.AUDIO,
    WarmingContentType.VIDEO: MessageType.VIDEO,
}


@dataclass(frozen=True)
class WarmingTarget:
    phone: str
    name: str
    kind: str  # "pair" or "contact"


class WarmingProcessor:
    """Sends the warming traffic for every active schedule."""

    def __init__(
        self,
        storage: StorageBackend,
        channel: ChannelAdapter,
        rng: random.Random | None = None,
    ) -> None:
        self.storage = storage
        self.channel = channel
        self.rng = rng or random.Random()

    async def run(self, now: datetime | None = None) -> dict[str, Any]:
        """Process one tick. Outside the allowed hours nothing is sent."""
        now = now or utcnow()
        if not is_within_warming_hours(now):
            logger.info("Outside warming hours, skipping")
            return {"message": "Outside warming hours"}

        schedules = await self.storage.list_warming_schedules(status=WarmingStatus.ACTIVE)
        if not schedules:
            return {"message": "No active schedules"}

        results = []
        for schedule in schedules:
            try:
                result = await self.process_schedule(schedule, now)
            except Exception as e:
                logger.error("Error processing warming schedule", schedule_id=schedule.id, error=str(e))
                result = {"scheduleId": schedule.id, "error": str(e)}
            if result is not None:
                results.append(result)

        logger.info("Warming tick finished", schedules=len(schedules), results=len(results))
        return {"success": True, "results": results}

    async def _targets(self, schedule: WarmingSchedule) -> list[WarmingTarget]:
        targets: list[WarmingTarget] = []

        for pair in await self.storage.list_warming_pairs(schedule.instance_id):
            other_id = pair.other(schedule.instance_id)
            other = await self.storage.get_instance(other_id) if other_id else None
            if other is not None and other.is_connected and other.phone_number:
                targets.append(WarmingTarget(only_digits(other.phone_number), other.instance_name, "pair"))

        for contact in await self.storage.list_warming_contacts(schedule.user_id, active_only=True):
            targets.append(WarmingTarget(only_digits(contact.phone), contact.name or contact.phone, "contact"))

        return targets

    async def process_schedule(self, schedule: WarmingSchedule, now: datetime) -> dict[str, Any] | None:
        """Send one warming message for a schedule. None when it is not eligible."""
        instance = await self.storage.get_instance(schedule.instance_id)
        if instance is None or not instance.is_connected:
            logger.debug("Warming instance not connected, skipping", schedule_id=schedule.id)
            return None

        progression = get_progression(schedule.current_day)
        target_today = self.rng.randint(progression.min_messages, progression.max_messages)
        if schedule.messages_sent_today >= target_today:
            logger.debug(
                "Warming target reached for today",
                schedule_id=schedule.id,
                sent=schedule.messages_sent_today,
                target=target_today,
            )
            return None

        targets = await self._targets(schedule)
        if not targets:
            logger.info("No warming targets available", schedule_id=schedule.id)
            return None

        content_type = self.rng.choice(progression.content_types)
        contents = await self.storage.list_warming_content(schedule.user_id, content_type.value)
        if not contents:
            logger.info("No warming content available", schedule_id=schedule.id, content_type=content_type.value)
            return None

        content = self.rng.choice(contents)
        target = self.rng.choice(targets)
        sent, error = await self._send(instance, content, content_type, target)

        await self.storage.save_warming_activity(
            WarmingActivity(
                id=str(uuid.uuid4()),
                schedule_id=schedule.id,
                instance_id=schedule.instance_id,
                activity_type=f"send_{content_type.value}",
                contact_phone=target.phone,
                content_preview=(content.content or "")[:100] or content.media_url,
                success=sent,
                error_message=error,
            )
        )

        def apply(latest: WarmingSchedule) -> bool:
            if not latest.is_active:
                return False
            if sent:
                latest.messages_sent_today += 1
                latest.total_messages_sent += 1
            latest.messages_target_today = target_today
            latest.last_activity_at = now
            return True

        updated = await update_schedule(self.storage, schedule.id, apply)
        if updated is not None:
            level = calculate_warming_level(
                updated.current_day,
                updated.total_messages_sent,
                updated.total_messages_received,
            )
            if level != instance.warming_level:
                instance.warming_level = level
                await self.storage.save_instance(instance)

        return {
            "scheduleId": schedule.id,
            "instanceName": instance.instance_name,
            "sent": sent,
            "target": target.phone,
            "contentType": content_type.value,
            "error": error,
        }

    async def _send(
        self,
        instance: WhatsAppInstance,
        content: WarmingContent,
        content_type: WarmingContentType,
        target: WarmingTarget,
    ) -> tuple[bool, str | None]:
        if content_type == WarmingContentType.TEXT and not content.content:
            return False, "Empty text content"
        if content_type != WarmingContentType.TEXT and not content.media_url:
            return False, "Media content without media_url"

        message = OutgoingMessage(
            instance_name=instance.instance_name,
            number=target.phone,
            content=content.content or "",
            message_type=_MESSAGE_TYPES[content_type],
            media_url=content.media_url,
        )
        try:
            await self.channel.send_message(message)
        except AppException as e:
            logger.warning(
                "Warming send failed",
                instance_name=instance.instance_name,
                target=target.phone,
                error=e.message,
            )
            return False, e.message
        return True, None
