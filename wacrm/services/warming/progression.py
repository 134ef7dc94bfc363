"""Warming ramp-up table and derived values."""

from dataclasses import dataclass
from datetime import datetime

from wacrm.core.config import settings
from wacrm.models import WarmingContentType

_T = WarmingContentType


@dataclass(frozen=True)
class DayProgression:
    min_messages: int
    max_messages: int
    content_types: tuple[WarmingContentType, ...]


_TEXT = (_T.TEXT,)
_TEXT_IMAGE = (_T.TEXT, _T.IMAGE)
_NO_VIDEO = (_T.TEXT, _T.IMAGE, _T.AUDIO)
_ALL = (_T.TEXT, _T.IMAGE, _T.AUDIO, _T.VIDEO)

WARMING_PROGRESSION: dict[int, DayProgression] = {
    1: DayProgression(5, 10, _TEXT),
    2: DayProgression(8, 15, _TEXT),
    3: DayProgression(10, 20, _TEXT_IMAGE),
    4: DayProgression(15, 30, _TEXT_IMAGE),
    5: DayProgression(20, 40, _NO_VIDEO),
    6: DayProgression(25, 50, _NO_VIDEO),
    7: DayProgression(30, 60, _NO_VIDEO),
    8: DayProgression(40, 70, _NO_VIDEO),
    9: DayProgression(45, 80, _NO_VIDEO),
    10: DayProgression(50, 90, _NO_VIDEO),
    11: DayProgression(55, 100, _NO_VIDEO),
    12: DayProgression(60, 110, _NO_VIDEO),
    13: DayProgression(65, 120, _NO_VIDEO),
    14: DayProgression(70, 130, _NO_VIDEO),
    15: DayProgression(80, 150, _ALL),
    16: DayProgression(90, 160, _ALL),
    17: DayProgression(100, 170, _ALL),
    18: DayProgression(110, 180, _ALL),
    19: DayProgression(120, 190, _ALL),
    20: DayProgression(130, 200, _ALL),
    21: DayProgression(150, 250, _ALL),
}

MAX_PROGRESSION_DAY = max(WARMING_PROGRESSION)

# (min day, min total sent, min response rate) -> level, highest first
_LEVEL_THRESHOLDS: tuple[tuple[int, int, int, float], ...] = (
    (5, 21, 1000, 0.3),
    (4, 14, 500, 0.25),
    (3, 7, 200, 0.2),
    (2, 3, 50, 0.1),
)


def get_progression(day: int) -> DayProgression:
    """Progression for a day, capped at the last day of the table."""
    return WARMING_PROGRESSION[min(max(day, 1), MAX_PROGRESSION_DAY)]


def calculate_warming_level(current_day: int, total_sent: int, total_received: int) -> int:
    """Instance warming level from 1 (cold) to 5 (fully warmed)."""
    response_rate = total_received / total_sent if total_sent > 0 else 0.0
    for level, min_day, min_sent, min_rate in _LEVEL_THRESHOLDS:
        if current_day >= min_day and total_sent >= min_sent and response_rate >= min_rate:
            return level
    return 1


def local_hour(now: datetime, utc_offset_hours: int | None = None) -> int:
    offset = settings.warming_utc_offset_hours if utc_offset_hours is None else utc_offset_hours
    return (now.hour + offset) % 24


def is_within_warming_hours(
    now: datetime,
    start_hour: int | None = None,
    end_hour: int | None = None,
    utc_offset_hours: int | None = None,
) -> bool:
    """Check a UTC instant against the allowed local sending window."""
    start = settings.warming_start_hour if start_hour is None else start_hour
    end = settings.warming_end_hour if end_hour is None else end_hour
    return start <= local_hour(now, utc_offset_hours) < end
