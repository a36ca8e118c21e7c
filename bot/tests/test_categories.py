from __future__ import annotations

import pytest

from core.errors import PermissionDeniedError, ValidationError
from services.ticket_service import MAX_CATEGORIES
from tests.fakes import GUILD_ID, SUPPORT_ROLE, ServiceEnv

STAFF = 201
OTHER_STAFF = 202


@pytest.mark.asyncio
async def test_categories_are_listed_in_creation_order(env: ServiceEnv) -> None:
    await env.service.add_category(GUILD_ID, "Billing", "Payments and refunds", "💳")
    await env.service.add_category(GUILD_ID, "  Bug Report  ", "   ", None)
    await env.service.add_category(99, "Elsewhere")

    categories = await env.service.list_categories(GUILD_ID)

    assert [category.name for category in categories] == ["Billing", "Bug Report"]
    assert categories[0].label == "💳 Billing"
    assert categories[0].description == "Payments and refunds"
    assert categories[1].label == "Bug Report"
    assert categories[1].description is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("name", "description", "message"),
    [
        ("   ", None, "Category names cannot be empty."),
        ("x" * 51, None, "Category names are limited to 50 characters."),
        ("General", "d" * 101, "Category descriptions are limited to 100 characters."),
        ("billing", None, "A category named `billing` already exists."),
    ],
)
async def test_category_validation(env: ServiceEnv, name: str, description: str | None, message: str) -> None:
    await env.service.add_category(GUILD_ID, "Billing")
    with pytest.raises(ValidationError) as exc:
        await env.service.add_category(GUILD_ID, name, description)
    assert exc.value.user_message == message


@pytest.mark.asyncio
async def test_category_count_is_capped(env: ServiceEnv) -> None:
    for index in range(MAX_CATEGORIES):
        await env.service.add_category(GUILD_ID, f"Topic {index}")
    with pytest.raises(ValidationError):
        await env.service.add_category(GUILD_ID, "One Too Many")
    assert len(await env.service.list_categories(GUILD_ID)) == MAX_CATEGORIES


@pytest.mark.asyncio
async def test_resolve_category_ignores_case(env: ServiceEnv) -> None:
    with pytest.raises(ValidationError) as exc:
        await env.service.resolve_category(GUILD_ID, "billing")
    assert exc.value.user_message == "This server has no ticket categories."

    billing = await env.service.add_category(GUILD_ID, "Billing")
    assert (await env.service.resolve_category(GUILD_ID, " BILLING ")).id == billing.id

    with pytest.raises(ValidationError) as exc:
        await env.service.resolve_category(GUILD_ID, "Shipping")
    assert exc.value.user_message == "Unknown category `Shipping`. Available: Billing"


@pytest.mark.asyncio
async def test_ticket_keeps_the_chosen_category(env: ServiceEnv) -> None:
    await env.guild_repo.update_settings(GUILD_ID, log_channel_id=700)
    billing = await env.service.add_category(GUILD_ID, "Billing", emoji="💳")

    ticket = await env.open(category=billing)

    assert ticket.category_name == "Billing"
    stored = await env.ticket_repo.get_by_id(ticket.id)
    assert stored is not None and stored.category_name == "Billing"
    log = [msg for msg in env.notifier.channel_messages if msg.target == 700][-1]
    assert log.title == "Ticket Created"
    assert "Category: 💳 Billing" in log.description

    # Removing the category leaves open tickets untouched.
    assert await env.service.remove_category(GUILD_ID, "billing") is True
    assert await env.service.remove_category(GUILD_ID, "billing") is False
    assert await env.service.list_categories(GUILD_ID) == []
    stored = await env.ticket_repo.get_by_id(ticket.id)
    assert stored is not None and stored.category_name == "Billing"


@pytest.mark.asyncio
async def test_category_from_another_guild_is_rejected(env: ServiceEnv) -> None:
    foreign = await env.service.add_category(99, "Billing")

    with pytest.raises(ValidationError):
        await env.open(owner_id=7, category=foreign)
    assert await env.ticket_repo.count_open_by_owner(GUILD_ID, 7) == 0


@pytest.mark.asyncio
async def test_stats_cover_open_tickets_of_one_guild(env: ServiceEnv) -> None:
    await env.add_support_role()
    billing = await env.service.add_category(GUILD_ID, "Billing")
    first = await env.open(owner_id=1, category=billing)
    env.clock.advance(minutes=5)
    second = await env.open(owner_id=2, category=billing)
    third = await env.open(owner_id=3)
    await env.open(owner_id=4, guild_id=99, channel_id=3003)

    await env.ticket_repo.set_priority(first.id, "urgent")
    await env.ticket_repo.claim(first.id, STAFF)
    await env.ticket_repo.claim(second.id, STAFF)
    await env.ticket_repo.claim(third.id, OTHER_STAFF)
    await env.ticket_repo.unclaim(third.id)
    await env.escalation_repo.create(third.id, third.owner_id, first.created_at)
    await env.service.record_message(first, 1, first.owner_id, "one#0001", "hello")
    await env.service.record_message(first, 2, STAFF, "staff#0001", "on it")
    await env.service.record_message(third, 3, third.owner_id, "three#0003", "anyone?")

    stats = await env.service.stats(GUILD_ID, [SUPPORT_ROLE])

    assert stats.open_tickets == 3
    assert stats.claimed == 2
    assert stats.unclaimed == 1
    assert stats.escalated == 1
    assert stats.messages == 3
    assert stats.by_priority == {"normal": 2, "urgent": 1}
    assert stats.by_category == {"Billing": 2}
    assert stats.top_claimers == [(STAFF, 2)]
    assert stats.oldest_created_at == first.created_at


@pytest.mark.asyncio
async def test_stats_are_empty_for_a_quiet_guild(env: ServiceEnv) -> None:
    await env.add_support_role()

    stats = await env.service.stats(GUILD_ID, [SUPPORT_ROLE])

    assert stats.open_tickets == 0
    assert stats.unclaimed == 0
    assert stats.by_priority == {}
    assert stats.top_claimers == []
    assert stats.oldest_created_at is None


@pytest.mark.asyncio
async def test_stats_are_staff_only(env: ServiceEnv) -> None:
    await env.add_support_role()
    with pytest.raises(PermissionDeniedError):
        await env.service.stats(GUILD_ID, [1234])
