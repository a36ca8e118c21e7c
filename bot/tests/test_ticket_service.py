from __future__ import annotations

import asyncio

import pytest

from core.errors import (
    BlacklistedError,
    PermissionDeniedError,
    TicketLimitReachedError,
    TicketNotFoundError,
    TicketStateError,
    ValidationError,
)
from tests.fakes import GUILD_ID, SUPPORT_ROLE, ServiceEnv, settle
from utils.constants import BLACKLIST_GUILD, BLACKLIST_USER, priority_lease_key

STAFF = 201
OTHER_STAFF = 202


@pytest.mark.asyncio
async def test_ticket_numbers_increase_per_guild(env: ServiceEnv) -> None:
    first = await env.open(owner_id=1)
    second = await env.open(owner_id=2)
    elsewhere = await env.open(owner_id=3, guild_id=99, channel_id=3003)

    assert (first.ticket_number, second.ticket_number) == (1, 2)
    assert elsewhere.ticket_number == 1
    stored = await env.ticket_repo.get_by_channel(second.channel_id)
    assert stored is not None
    assert stored.owner_id == 2
    assert stored.has_messages is False


@pytest.mark.asyncio
async def test_concurrent_creation_can_share_a_number(env: ServiceEnv) -> None:
    both_opening = asyncio.Event()
    opened: list[int] = []

    def opener(channel_id: int):
        async def open_channel(ticket_number: int) -> int:
            opened.append(ticket_number)
            if len(opened) == 2:
                both_opening.set()
            await both_opening.wait()
            return channel_id

        return open_channel

    first, second = await asyncio.gather(
        env.service.create_ticket(GUILD_ID, 1, opener(9001)),
        env.service.create_ticket(GUILD_ID, 2, opener(9002)),
    )

    assert first.ticket_number == second.ticket_number == 1
    assert {first.channel_id, second.channel_id} == {9001, 9002}


@pytest.mark.asyncio
async def test_ticket_limit_is_enforced_before_opening_a_channel(env: ServiceEnv) -> None:
    await env.open(owner_id=5)
    calls: list[int] = []

    async def open_channel(ticket_number: int) -> int:
        calls.append(ticket_number)
        return 5555

    with pytest.raises(TicketLimitReachedError):
        await env.service.create_ticket(GUILD_ID, 5, open_channel)
    assert calls == []

    await env.guild_repo.update_settings(GUILD_ID, ticket_limit_per_user=2)
    ticket = await env.service.create_ticket(GUILD_ID, 5, open_channel)
    assert ticket.ticket_number == 2


@pytest.mark.asyncio
async def test_blacklisted_user_and_guild_cannot_open(env: ServiceEnv) -> None:
    await env.service.blacklist(7, BLACKLIST_USER, actor_id=1, reason="spam")
    with pytest.raises(BlacklistedError):
        await env.open(owner_id=7)

    assert await env.service.unblacklist(7, BLACKLIST_USER) is True
    await env.open(owner_id=7)

    await env.service.blacklist(GUILD_ID, BLACKLIST_GUILD, actor_id=1)
    with pytest.raises(BlacklistedError) as excinfo:
        await env.open(owner_id=8)
    assert "server" in excinfo.value.user_message


@pytest.mark.asyncio
async def test_blacklist_rejects_unknown_target_type(env: ServiceEnv) -> None:
    with pytest.raises(ValidationError):
        await env.service.blacklist(7, "channel", actor_id=1)


@pytest.mark.asyncio
async def test_cooldown_blocks_rapid_reopen(env: ServiceEnv) -> None:
    await env.guild_repo.update_settings(GUILD_ID, ticket_limit_per_user=5, ticket_cooldown_seconds=300)
    await env.open(owner_id=11)
    with pytest.raises(ValidationError) as excinfo:
        await env.open(owner_id=11)
    assert "300 seconds" in excinfo.value.user_message


@pytest.mark.asyncio
async def test_get_by_channel_raises_for_unknown_channel(env: ServiceEnv) -> None:
    with pytest.raises(TicketNotFoundError):
        await env.service.get_by_channel(123456)
    assert await env.service.find_by_channel(123456) is None


@pytest.mark.asyncio
async def test_claim_requires_configured_support_role(env: ServiceEnv) -> None:
    ticket = await env.open()

    with pytest.raises(PermissionDeniedError) as excinfo:
        await env.service.claim(ticket, STAFF, [SUPPORT_ROLE])
    assert "No support roles" in excinfo.value.user_message

    await env.add_support_role()
    with pytest.raises(PermissionDeniedError):
        await env.service.claim(ticket, STAFF, [999])

    claimed = await env.service.claim(ticket, STAFF, [SUPPORT_ROLE])
    assert claimed.claimed_by == STAFF
    stored = await env.ticket_repo.get_by_id(ticket.id)
    assert stored is not None and stored.claimed_by == STAFF

    with pytest.raises(TicketStateError):
        await env.service.claim(claimed, OTHER_STAFF, [SUPPORT_ROLE])


@pytest.mark.asyncio
async def test_claim_ends_escalation_but_keeps_priority_lease(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()
    await env.service.set_priority(ticket, STAFF, [SUPPORT_ROLE], "low")
    await env.service.escalate(ticket, ticket.owner_id)

    await env.service.claim(ticket, STAFF, [SUPPORT_ROLE])

    escalation = await env.escalation_repo.get(ticket.id)
    assert escalation is not None and escalation.active is False
    assert await env.cache.get(priority_lease_key(ticket.id)) == "low"
    assert env.scheduler.is_running(ticket.id)


@pytest.mark.asyncio
async def test_only_the_claimant_can_unclaim(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()
    claimed = await env.service.claim(ticket, STAFF, [SUPPORT_ROLE])

    with pytest.raises(PermissionDeniedError):
        await env.service.unclaim(claimed, OTHER_STAFF, [SUPPORT_ROLE])

    released = await env.service.unclaim(claimed, STAFF, [SUPPORT_ROLE])
    assert released.claimed_by is None
    with pytest.raises(TicketStateError):
        await env.service.unclaim(released, STAFF, [SUPPORT_ROLE])


@pytest.mark.asyncio
async def test_assign_requires_support_assignee(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()

    with pytest.raises(ValidationError):
        await env.service.assign(ticket, STAFF, [SUPPORT_ROLE], 55, [])

    assigned = await env.service.assign(ticket, STAFF, [SUPPORT_ROLE], OTHER_STAFF, [SUPPORT_ROLE])
    assert assigned.assigned_to == OTHER_STAFF
    assert [msg.target for msg in env.notifier.direct_messages] == [OTHER_STAFF]
    assert env.notifier.direct_messages[0].title == "Ticket Assigned"


@pytest.mark.asyncio
async def test_set_priority_starts_and_resets_the_scheduler(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()

    urgent = await env.service.set_priority(ticket, STAFF, [SUPPORT_ROLE], "URGENT")
    assert urgent.priority == "urgent"
    assert await env.cache.get(priority_lease_key(ticket.id)) == "urgent"
    assert env.scheduler.active_ticket_ids() == [ticket.id]

    reset = await env.service.set_priority(urgent, STAFF, [SUPPORT_ROLE], "reset")
    assert reset.priority == "normal"
    stored = await env.ticket_repo.get_by_id(ticket.id)
    assert stored is not None and stored.priority == "normal"
    assert await env.cache.get(priority_lease_key(ticket.id)) is None
    assert env.scheduler.active_ticket_ids() == []


@pytest.mark.asyncio
async def test_set_priority_validation(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()

    with pytest.raises(ValidationError):
        await env.service.set_priority(ticket, STAFF, [SUPPORT_ROLE], "critical")
    with pytest.raises(PermissionDeniedError):
        await env.service.set_priority(ticket, ticket.owner_id, [], "high")


@pytest.mark.asyncio
async def test_priority_change_is_logged(env: ServiceEnv) -> None:
    await env.add_support_role()
    await env.guild_repo.update_settings(GUILD_ID, log_channel_id=700)
    ticket = await env.open()
    env.notifier.channel_messages.clear()

    await env.service.set_priority(ticket, STAFF, [SUPPORT_ROLE], "low")

    logged = [msg for msg in env.notifier.channel_messages if msg.target == 700]
    assert [msg.title for msg in logged] == ["Priority Set"]
    assert "LOW" in logged[0].description


@pytest.mark.asyncio
async def test_escalate_notifies_support_members(env: ServiceEnv) -> None:
    await env.add_support_role()
    env.notifier.support_members[GUILD_ID] = [STAFF, OTHER_STAFF]
    ticket = await env.open()

    reached = await env.service.escalate(ticket, ticket.owner_id)

    assert reached == 2
    assert {msg.target for msg in env.notifier.direct_messages} == {STAFF, OTHER_STAFF}
    assert all(msg.title == "Ticket Escalated" for msg in env.notifier.direct_messages)
    assert f"#{ticket.ticket_number}" in env.notifier.direct_messages[0].description
    assert env.notifier.channel_contents(ticket.channel_id)[-1] == (
        f"<@&{SUPPORT_ROLE}> This ticket has been escalated."
    )
    escalation = await env.escalation_repo.get(ticket.id)
    assert escalation is not None and escalation.active is True


@pytest.mark.asyncio
async def test_escalate_rejected_once_staff_replied(env: ServiceEnv) -> None:
    ticket = await env.open()
    await env.service.record_message(ticket, 1, STAFF, "staff#0001", "hello")
    replied = await env.ticket_repo.get_by_id(ticket.id)
    assert replied is not None and replied.has_messages is True

    with pytest.raises(TicketStateError):
        await env.service.escalate(replied, replied.owner_id)
    assert await env.escalation_repo.get(ticket.id) is None


@pytest.mark.asyncio
async def test_owner_messages_do_not_count_as_replies(env: ServiceEnv) -> None:
    ticket = await env.open()
    env.clock.advance(minutes=5)

    await env.service.record_message(ticket, 1, ticket.owner_id, "owner#0001", "any update?", ["https://cdn/x.png"])

    stored = await env.ticket_repo.get_by_id(ticket.id)
    assert stored is not None
    assert stored.has_messages is False
    assert stored.last_activity > ticket.last_activity
    messages = await env.message_repo.list_for_ticket(ticket.id)
    assert [m.attachments for m in messages] == [["https://cdn/x.png"]]


@pytest.mark.asyncio
async def test_notes_are_staff_only(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()

    with pytest.raises(PermissionDeniedError):
        await env.service.add_note(ticket, ticket.owner_id, [], "let me in")
    with pytest.raises(ValidationError):
        await env.service.add_note(ticket, STAFF, [SUPPORT_ROLE], "   ")

    await env.service.add_note(ticket, STAFF, [SUPPORT_ROLE], "refund approved")
    notes = await env.service.list_notes(ticket, [SUPPORT_ROLE])
    assert [(n.author_id, n.note) for n in notes] == [(STAFF, "refund approved")]


@pytest.mark.asyncio
async def test_close_removes_every_trace_of_the_ticket(env: ServiceEnv) -> None:
    await env.add_support_role()
    await env.guild_repo.update_settings(GUILD_ID, transcript_channel_id=800, log_channel_id=700)
    ticket = await env.open()
    await env.service.record_message(ticket, 1, ticket.owner_id, "owner#0001", "help")
    await env.service.add_note(ticket, STAFF, [SUPPORT_ROLE], "internal")
    await env.service.set_priority(ticket, STAFF, [SUPPORT_ROLE], "high")
    await settle()

    await env.service.close_ticket(ticket, STAFF, [SUPPORT_ROLE], reason="resolved")

    assert await env.ticket_repo.get_by_id(ticket.id) is None
    assert await env.message_repo.list_for_ticket(ticket.id) == []
    assert await env.note_repo.list_for_ticket(ticket.id) == []
    assert await env.cache.get(priority_lease_key(ticket.id)) is None
    assert not env.scheduler.is_running(ticket.id)
    assert env.notifier.deleted_channels == [ticket.channel_id]
    assert env.close_sleep.calls == [env.config.tickets.close_delay_seconds]

    transcript = [msg for msg in env.notifier.channel_messages if msg.target == 800]
    assert len(transcript) == 1 and len(transcript[0].files) == 2
    assert [msg.target for msg in env.notifier.direct_messages] == [ticket.owner_id]
    closed_log = [msg for msg in env.notifier.channel_messages if msg.target == 700 and msg.title == "Ticket Closed"]
    assert "resolved" in closed_log[0].description
    # Transcript files are removed once delivered.
    assert all(not path.exists() for path in transcript[0].files)


@pytest.mark.asyncio
async def test_close_permissions(env: ServiceEnv) -> None:
    await env.add_support_role()
    ticket = await env.open()

    with pytest.raises(PermissionDeniedError):
        await env.service.close_ticket(ticket, 12345, [])
    assert await env.ticket_repo.get_by_id(ticket.id) is not None

    await env.service.close_ticket(ticket, ticket.owner_id, [], notify_owner=False, delete_delay=0)
    assert await env.ticket_repo.get_by_id(ticket.id) is None
    assert env.notifier.direct_messages == []
    assert env.close_sleep.calls == []
