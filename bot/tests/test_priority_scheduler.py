from __future__ import annotations

import dataclasses

import pytest

from core.config import SchedulerConfig
from services.cache import MemoryCache
from services.priority_scheduler import PriorityScheduler
from tests.fakes import FakeGuildRepo, FakeNotifier, FakeTicketRepo, ManualSleep, make_ticket, settle
from utils.constants import priority_lease_key

PING_ROLE = 777


def _scheduler(
    notifier: FakeNotifier,
    sleep: ManualSleep,
    tickets: FakeTicketRepo,
    ping_role_id: int | None = PING_ROLE,
) -> tuple[PriorityScheduler, MemoryCache]:
    cache = MemoryCache()
    scheduler = PriorityScheduler(
        cache, tickets, FakeGuildRepo(ping_role_id), notifier, SchedulerConfig(), sleep=sleep  # type: ignore[arg-type]
    )
    return scheduler, cache


@pytest.mark.asyncio
async def test_urgent_pings_immediately_then_hourly(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    assert await scheduler.start(ticket.id, "urgent") is True
    await settle()
    assert notifier.channel_contents(ticket.channel_id) == [f"<@&{PING_ROLE}> URGENT ticket requires attention!"]
    assert await cache.get(priority_lease_key(ticket.id)) == "urgent"

    await manual_sleep.advance(3599)
    assert len(notifier.channel_contents(ticket.channel_id)) == 1

    await manual_sleep.advance(1)
    assert notifier.channel_contents(ticket.channel_id)[-1] == (
        f"<@&{PING_ROLE}> URGENT ticket still needs attention!"
    )

    await manual_sleep.advance(3600)
    assert len(notifier.channel_contents(ticket.channel_id)) == 3
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_low_priority_waits_two_hours_without_immediate_ping(
    notifier: FakeNotifier, manual_sleep: ManualSleep
) -> None:
    ticket = make_ticket()
    scheduler, _ = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "low")
    await manual_sleep.advance(3600)
    assert notifier.channel_contents(ticket.channel_id) == []

    await manual_sleep.advance(3600)
    assert notifier.channel_contents(ticket.channel_id) == [
        f"<@&{PING_ROLE}> Low priority ticket still needs attention!"
    ]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_restart_replaces_running_task(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "urgent")
    await settle()
    await scheduler.start(ticket.id, "high")
    await settle()

    assert scheduler.active_ticket_ids() == [ticket.id]
    assert await cache.get(priority_lease_key(ticket.id)) == "high"
    assert manual_sleep.pending == 1

    await manual_sleep.advance(3600)
    pings = notifier.channel_contents(ticket.channel_id)
    assert pings == [
        f"<@&{PING_ROLE}> URGENT ticket requires attention!",
        f"<@&{PING_ROLE}> High priority ticket requires attention!",
        f"<@&{PING_ROLE}> High priority ticket still needs attention!",
    ]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_normal_cancels_and_clears_lease(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "high")
    await settle()
    assert await scheduler.start(ticket.id, "normal") is False

    assert not scheduler.is_running(ticket.id)
    assert await cache.get(priority_lease_key(ticket.id)) is None
    await manual_sleep.advance(7200)
    assert len(notifier.channel_contents(ticket.channel_id)) == 1


@pytest.mark.asyncio
async def test_task_stops_when_lease_disappears(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "low")
    await cache.delete(priority_lease_key(ticket.id))
    await manual_sleep.advance(7200)

    assert notifier.channel_contents(ticket.channel_id) == []
    assert not scheduler.is_running(ticket.id)
    assert scheduler.active_ticket_ids() == []


@pytest.mark.asyncio
async def test_task_stops_when_lease_value_changes(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "low")
    await cache.set(priority_lease_key(ticket.id), "urgent", ttl=60)
    await manual_sleep.advance(7200)

    assert notifier.channel_contents(ticket.channel_id) == []
    assert not scheduler.is_running(ticket.id)


@pytest.mark.asyncio
async def test_missing_ticket_clears_lease(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    tickets = FakeTicketRepo([ticket])
    scheduler, cache = _scheduler(notifier, manual_sleep, tickets)

    await scheduler.start(ticket.id, "low")
    del tickets.tickets[ticket.id]
    await manual_sleep.advance(7200)

    assert await cache.get(priority_lease_key(ticket.id)) is None
    assert not scheduler.is_running(ticket.id)


@pytest.mark.asyncio
async def test_failed_refetch_is_treated_as_closed(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    tickets = FakeTicketRepo([ticket])
    scheduler, cache = _scheduler(notifier, manual_sleep, tickets)

    await scheduler.start(ticket.id, "low")
    tickets.fail = True
    await manual_sleep.advance(7200)

    assert notifier.channel_contents(ticket.channel_id) == []
    assert await cache.get(priority_lease_key(ticket.id)) is None


@pytest.mark.asyncio
async def test_settings_lookup_failure_skips_one_ping(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))
    scheduler.guild_repo.failures = 1

    await scheduler.start(ticket.id, "high")
    await settle()
    assert notifier.channel_contents(ticket.channel_id) == []

    await manual_sleep.advance(3600)
    assert notifier.channel_contents(ticket.channel_id) == [
        f"<@&{PING_ROLE}> High priority ticket still needs attention!"
    ]

    # The failure hits a scheduled wake this time.
    scheduler.guild_repo.failures = 1
    await manual_sleep.advance(3600)
    assert len(notifier.channel_contents(ticket.channel_id)) == 1
    assert scheduler.is_running(ticket.id)
    assert await cache.get(priority_lease_key(ticket.id)) == "high"

    await manual_sleep.advance(3600)
    assert len(notifier.channel_contents(ticket.channel_id)) == 2
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_cancel_twice_is_harmless(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]))

    await scheduler.start(ticket.id, "urgent")
    await settle()
    await scheduler.cancel(ticket.id)
    await scheduler.cancel(ticket.id)

    assert await cache.get(priority_lease_key(ticket.id)) is None
    assert not scheduler.is_running(ticket.id)
    assert scheduler.active_ticket_ids() == []
    await manual_sleep.advance(3600)
    assert len(notifier.channel_contents(ticket.channel_id)) == 1


@pytest.mark.asyncio
async def test_no_ping_role_means_silent_task(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    ticket = make_ticket()
    scheduler, _ = _scheduler(notifier, manual_sleep, FakeTicketRepo([ticket]), ping_role_id=None)

    await scheduler.start(ticket.id, "urgent")
    await manual_sleep.advance(3600)

    assert notifier.channel_messages == []
    assert scheduler.is_running(ticket.id)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_claimed_ticket_keeps_pinging_while_lease_exists(
    notifier: FakeNotifier, manual_sleep: ManualSleep
) -> None:
    ticket = make_ticket()
    tickets = FakeTicketRepo([ticket])
    scheduler, _ = _scheduler(notifier, manual_sleep, tickets)

    await scheduler.start(ticket.id, "urgent")
    tickets.tickets[ticket.id] = dataclasses.replace(ticket, claimed_by=99)
    await manual_sleep.advance(3600)

    assert notifier.channel_contents(ticket.channel_id)[-1].endswith("URGENT ticket still needs attention!")
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_resume_only_restarts_matching_leases(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    matching = make_ticket("t-1", priority="high")
    stale = make_ticket("t-2", channel_id=501, priority="low")
    plain = make_ticket("t-3", channel_id=502, priority="normal")
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo([matching, stale, plain]))
    await cache.set(priority_lease_key(matching.id), "high", ttl=86_400)
    await cache.set(priority_lease_key(stale.id), "urgent", ttl=86_400)

    resumed = await scheduler.resume([matching, stale, plain])
    await settle()

    assert resumed == 1
    assert scheduler.active_ticket_ids() == [matching.id]
    assert notifier.channel_messages == []

    await manual_sleep.advance(3600)
    assert notifier.channel_contents(matching.channel_id) == [
        f"<@&{PING_ROLE}> High priority ticket still needs attention!"
    ]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_every_task(notifier: FakeNotifier, manual_sleep: ManualSleep) -> None:
    tickets = [make_ticket(f"t-{index}", channel_id=500 + index) for index in range(3)]
    scheduler, cache = _scheduler(notifier, manual_sleep, FakeTicketRepo(tickets))
    for ticket in tickets:
        await scheduler.start(ticket.id, "low")

    await scheduler.shutdown()

    assert scheduler.active_ticket_ids() == []
    # Leases survive a shutdown so the next process can resume.
    assert await cache.get(priority_lease_key("t-0")) == "low"
