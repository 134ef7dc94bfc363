"""Daily warming day-advance and conditional schedule updates.

Schedules are written with a compare-and-set on ``version``. Two overlapping
day-advance runs cannot both move the same schedule forward: the loser
re-reads the row, sees it was already advanced today and skips it.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.models import WarmingSchedule, WarmingStatus
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

MAX_ATTEMPTS = 3


@dataclass
class AdvanceReport:
    """Outcome of one day-advance run."""

    advanced: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.advanced) + len(self.completed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "advanced": self.advanced,
            "completed": self.completed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _advanced_since(read: WarmingSchedule, latest: WarmingSchedule) -> bool:
    return latest.current_day != read.current_day or latest.status != read.status


async def update_schedule(
    storage: StorageBackend,
    schedule_id: str,
    mutate: Callable[[WarmingSchedule], bool],
) -> WarmingSchedule | None:
    """Apply ``mutate`` to the latest row and write it conditionally.

    ``mutate`` changes the schedule in place and returns False to abandon
    the update. The read-mutate-write is retried when another writer wins.
    Returns the stored schedule, or None when abandoned or never won.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        schedule = await storage.get_warming_schedule(schedule_id)
        if schedule is None:
            return None
        expected = schedule.version
        if not mutate(schedule):
            return None
        if await storage.compare_and_save_warming_schedule(schedule, expected):
            return schedule
        logger.debug("Warming schedule write conflict", schedule_id=schedule_id, attempt=attempt)

    logger.warning("Warming schedule update gave up", schedule_id=schedule_id)
    return None


async def advance_schedule(
    storage: StorageBackend,
    schedule: WarmingSchedule,
    now: datetime,
) -> WarmingSchedule | None:
    """Advance one schedule by a day. None means it was skipped."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        if not schedule.is_active:
            return None

        updated = schedule.advanced(now)
        if await storage.compare_and_save_warming_schedule(updated, schedule.version):
            return updated

        latest = await storage.get_warming_schedule(schedule.id)
        if latest is None:
            return None
        if _advanced_since(schedule, latest):
            logger.info("Warming schedule advanced by a concurrent run, skipping", schedule_id=schedule.id)
            return None
        # Only counters moved; retry on the fresh row
        logger.info("Concurrent warming counter write, retrying", schedule_id=schedule.id, attempt=attempt)
        schedule = latest

    return None


async def advance_warming_day(storage: StorageBackend, now: datetime | None = None) -> AdvanceReport:
    """Move every active warming schedule forward by one day.

    Past ``target_days`` a schedule is completed instead. Daily counters are
    reset in both cases.
    """
    now = now or utcnow()
    report = AdvanceReport()

    schedules = await storage.list_warming_schedules(status=WarmingStatus.ACTIVE)
    logger.info("Advancing warming schedules", count=len(schedules))

    for schedule in schedules:
        try:
            result = await advance_schedule(storage, schedule, now)
        except Exception as e:
            logger.error("Failed to advance warming schedule", schedule_id=schedule.id, error=str(e))
            report.failed.append(schedule.id)
            continue

        if result is None:
            report.skipped.append(schedule.id)
        elif result.status == WarmingStatus.COMPLETED:
            report.completed.append(schedule.id)
            logger.info("Warming schedule completed", schedule_id=schedule.id, target_days=result.target_days)
        else:
            report.advanced.append(schedule.id)
            logger.debug("Warming schedule advanced", schedule_id=schedule.id, current_day=result.current_day)

    logger.info(
        "Warming day-advance finished",
        advanced=len(report.advanced),
        completed=len(report.completed),
        skipped=len(report.skipped),
        failed=len(report.failed),
    )
    return report
