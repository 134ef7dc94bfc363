"""WhatsApp number warming: daily ramp-up and message ticks."""

from wacrm.services.warming.processor import WarmingProcessor
from wacrm.services.warming.progression import (
    WARMING_PROGRESSION,
    calculate_warming_level,
    get_progression,
    is_within_warming_hours,
)
from wacrm.services.warming.scheduler import AdvanceReport, advance_warming_day, update_schedule

__all__ = [
    "WARMING_PROGRESSION",
    "AdvanceReport",
    "WarmingProcessor",
    "advance_warming_day",
    "calculate_warming_level",
    "get_progression",
    "is_within_warming_hours",
    "update_schedule",
]
