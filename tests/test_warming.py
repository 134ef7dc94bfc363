"""Tests for the warming day-advance and the warming tick."""

import asyncio
import random
from datetime import datetime

import pytest
import pytest_asyncio

from wacrm.models import (
    WarmingContact,
    WarmingContent,
    WarmingPair,
    WarmingSchedule,
    WarmingStatus,
    WhatsAppInstance,
    InstanceStatus,
)
from wacrm.services.warming import (
    WarmingProcessor,
    advance_warming_day,
    calculate_warming_level,
    get_progression,
    is_within_warming_hours,
    update_schedule,
)
from wacrm.services.warming.scheduler import advance_schedule

USER_ID = "user-1"
NOW = datetime(2026, 1, 5, 15, 0)  # 12:00 in UTC-3


def make_schedule(schedule_id="ws-1", **kwargs) -> WarmingSchedule:
    defaults = dict(id=schedule_id, user_id=USER_ID, instance_id="inst-1")
    defaults.update(kwargs)
    return WarmingSchedule(**defaults)


# ==================== Schedule model ====================


def test_advanced_moves_one_day_and_resets_counters():
    schedule = make_schedule(current_day=3, messages_sent_today=12, messages_received_today=4)
    after = schedule.advanced(NOW)
    assert after.current_day == 4
    assert after.messages_sent_today == 0
    assert after.messages_received_today == 0
    assert after.status == WarmingStatus.ACTIVE
    assert after.last_advanced_at == NOW
    # The original is untouched
    assert schedule.current_day == 3


def test_advanced_past_last_day_completes():
    after = make_schedule(current_day=21, target_days=21, messages_sent_today=7).advanced(NOW)
    assert after.status == WarmingStatus.COMPLETED
    assert after.current_day == 21
    assert after.messages_sent_today == 0


def test_current_day_cannot_exceed_target():
    with pytest.raises(ValueError):
        make_schedule(current_day=22, target_days=21)


# ==================== Progression ====================


def test_progression_is_capped_at_last_day():
    assert get_progression(40) == get_progression(21)
    assert get_progression(0) == get_progression(1)
    assert get_progression(1).min_messages == 5


@pytest.mark.parametrize(
    "day,sent,received,level",
    [
        (1, 0, 0, 1),
        (3, 50, 5, 2),
        (7, 200, 40, 3),
        (14, 500, 125, 4),
        (21, 1000, 300, 5),
        (21, 1000, 100, 2),
    ],
)
def test_calculate_warming_level(day, sent, received, level):
    assert calculate_warming_level(day, sent, received) == level


def test_warming_hours_use_local_offset():
    assert is_within_warming_hours(datetime(2026, 1, 5, 11, 0), 8, 22, -3)
    assert not is_within_warming_hours(datetime(2026, 1, 5, 10, 59), 8, 22, -3)
    assert not is_within_warming_hours(datetime(2026, 1, 6, 1, 0), 8, 22, -3)


# ==================== Day advance ====================


@pytest.mark.asyncio
async def test_advance_warming_day(storage):
    await storage.save_warming_schedule(make_schedule("a", current_day=2, messages_sent_today=9))
    await storage.save_warming_schedule(make_schedule("b", current_day=5, target_days=5))
    await storage.save_warming_schedule(make_schedule("c", status=WarmingStatus.PAUSED))

    report = await advance_warming_day(storage, NOW)

    assert report.advanced == ["a"]
    assert report.completed == ["b"]
    assert report.processed == 2

    a = await storage.get_warming_schedule("a")
    assert a.current_day == 3
    assert a.messages_sent_today == 0
    b = await storage.get_warming_schedule("b")
    assert b.status == WarmingStatus.COMPLETED
    assert b.current_day == 5
    c = await storage.get_warming_schedule("c")
    assert c.current_day == 1


@pytest.mark.asyncio
async def test_each_invocation_advances_once(storage):
    await storage.save_warming_schedule(make_schedule(current_day=4))

    await advance_warming_day(storage, NOW)
    second = await advance_warming_day(storage, NOW.replace(hour=20))

    assert second.advanced == ["ws-1"]
    assert (await storage.get_warming_schedule("ws-1")).current_day == 6


@pytest.mark.asyncio
async def test_counter_write_during_advance_is_retried(storage):
    await storage.save_warming_schedule(make_schedule(current_day=4, messages_sent_today=2))
    stale = await storage.get_warming_schedule("ws-1")

    def bump(schedule):
        schedule.messages_sent_today += 1
        return True

    await update_schedule(storage, "ws-1", bump)

    result = await advance_schedule(storage, stale, NOW)

    assert result is not None
    stored = await storage.get_warming_schedule("ws-1")
    assert stored.current_day == 5
    assert stored.messages_sent_today == 0


@pytest.mark.asyncio
async def test_stale_writer_skips_instead_of_double_advancing(storage):
    await storage.save_warming_schedule(make_schedule(current_day=4))
    stale = await storage.get_warming_schedule("ws-1")

    # Another invocation wins the race
    fresh = await storage.get_warming_schedule("ws-1")
    assert await storage.compare_and_save_warming_schedule(fresh.advanced(NOW), fresh.version)

    assert await advance_schedule(storage, stale, NOW) is None
    assert (await storage.get_warming_schedule("ws-1")).current_day == 5


@pytest.mark.asyncio
async def test_concurrent_day_advances_advance_once(storage):
    for i in range(5):
        await storage.save_warming_schedule(make_schedule(f"s{i}", current_day=2))

    first, second = await asyncio.gather(
        advance_warming_day(storage, NOW),
        advance_warming_day(storage, NOW),
    )

    assert sorted(first.advanced + second.advanced) == [f"s{i}" for i in range(5)]
    for i in range(5):
        assert (await storage.get_warming_schedule(f"s{i}")).current_day == 3


@pytest.mark.asyncio
async def test_counter_write_after_advance_does_not_lose_the_advance(storage):
    await storage.save_warming_schedule(make_schedule(current_day=2, messages_sent_today=3))

    def bump(schedule):
        schedule.messages_sent_today += 1
        return True

    await advance_warming_day(storage, NOW)
    await update_schedule(storage, "ws-1", bump)

    stored = await storage.get_warming_schedule("ws-1")
    assert stored.current_day == 3
    assert stored.messages_sent_today == 1


@pytest.mark.asyncio
async def test_update_schedule_can_be_abandoned(storage):
    await storage.save_warming_schedule(make_schedule())
    version = (await storage.get_warming_schedule("ws-1")).version

    assert await update_schedule(storage, "ws-1", lambda s: False) is None
    assert (await storage.get_warming_schedule("ws-1")).version == version


@pytest.mark.asyncio
async def test_version_bumps_on_every_save(storage):
    schedule = make_schedule()
    await storage.save_warming_schedule(schedule)
    await storage.save_warming_schedule(schedule)
    assert (await storage.get_warming_schedule("ws-1")).version == 2
    assert not await storage.compare_and_save_warming_schedule(schedule, 1)


# ==================== Warming tick ====================


@pytest_asyncio.fixture
async def warming_setup(storage, instance):
    await storage.save_warming_schedule(make_schedule())
    await storage.save_warming_contact(WarmingContact(id="wc-1", user_id=USER_ID, phone="(11) 91234-5678", name="Ana"))
    await storage.save_warming_content(WarmingContent(id="text-1", content="Bom dia! Tudo certo?"))
    return instance


@pytest.mark.asyncio
async def test_tick_outside_hours_sends_nothing(storage, whatsapp, gateway, warming_setup):
    result = await WarmingProcessor(storage, whatsapp).run(datetime(2026, 1, 5, 3, 0))
    assert result == {"message": "Outside warming hours"}
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_tick_without_schedules(storage, whatsapp):
    assert await WarmingProcessor(storage, whatsapp).run(NOW) == {"message": "No active schedules"}


@pytest.mark.asyncio
async def test_tick_sends_one_message(storage, whatsapp, gateway, warming_setup):
    processor = WarmingProcessor(storage, whatsapp, rng=random.Random(7))
    result = await processor.run(NOW)

    assert result["success"] is True
    [entry] = result["results"]
    assert entry["sent"] is True
    assert entry["contentType"] == "text"
    assert entry["target"] == "11912345678"

    [sent] = gateway.sent
    assert sent["instance"] == "vendas"
    assert sent["text"] == "Bom dia! Tudo certo?"

    schedule = await storage.get_warming_schedule("ws-1")
    assert schedule.messages_sent_today == 1
    assert schedule.total_messages_sent == 1
    assert 5 <= schedule.messages_target_today <= 10
    assert schedule.last_activity_at == NOW

    [activity] = await storage.list_warming_activities("ws-1")
    assert activity.activity_type == "send_text"
    assert activity.success


@pytest.mark.asyncio
async def test_tick_targets_paired_instances(storage, whatsapp, gateway, instance):
    await storage.save_warming_schedule(make_schedule())
    await storage.save_warming_content(WarmingContent(id="text-1", content="Oi"))
    await storage.save_instance(
        WhatsAppInstance(
            id="inst-2",
            user_id=USER_ID,
            instance_name="suporte",
            status=InstanceStatus.CONNECTED,
            phone_number="5511955554444",
        )
    )
    await storage.save_warming_pair(WarmingPair(id="p1", user_id=USER_ID, instance_a_id="inst-2", instance_b_id="inst-1"))

    result = await WarmingProcessor(storage, whatsapp).run(NOW)

    assert result["results"][0]["target"] == "5511955554444"
    assert gateway.sent[0]["number"] == "5511955554444"


@pytest.mark.asyncio
async def test_failed_send_is_logged_but_not_counted(storage, whatsapp, gateway, warming_setup):
    gateway.fail_send = True

    result = await WarmingProcessor(storage, whatsapp).run(NOW)

    [entry] = result["results"]
    assert entry["sent"] is False
    assert entry["error"] == "number does not exist"
    schedule = await storage.get_warming_schedule("ws-1")
    assert schedule.messages_sent_today == 0
    [activity] = await storage.list_warming_activities("ws-1")
    assert activity.success is False


@pytest.mark.asyncio
async def test_schedule_at_daily_target_is_skipped(storage, whatsapp, gateway, warming_setup):
    await storage.save_warming_schedule(make_schedule(messages_sent_today=10))

    result = await WarmingProcessor(storage, whatsapp).run(NOW)

    assert result == {"success": True, "results": []}
    assert gateway.sent == []
