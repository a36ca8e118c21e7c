from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from core.api import create_api_app
from core.config import AppConfig, DiscordConfig, FastApiConfig
from database.models import TicketStats
from tests.fakes import GUILD_ID, make_ticket


def _client(api_key: str = "") -> tuple[TestClient, SimpleNamespace]:
    bot = SimpleNamespace(
        config=AppConfig(discord=DiscordConfig(token="x"), fastapi=FastApiConfig(enabled=True, api_key=api_key)),
        database=SimpleNamespace(is_connected=True),
        ticket_service=SimpleNamespace(
            list_open_tickets=AsyncMock(return_value=[make_ticket(priority="urgent", claimed_by=5)])
        ),
        scheduler=SimpleNamespace(active_ticket_ids=MagicMock(return_value=["t-1"])),
    )
    return TestClient(create_api_app(bot)), bot


def test_health_needs_no_key() -> None:
    client, _ = _client(api_key="secret")
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": True}


def test_open_tickets_are_listed() -> None:
    client, bot = _client()
    response = client.get(f"/guilds/{GUILD_ID}/tickets/open")

    assert response.status_code == 200
    item = response.json()["items"][0]
    assert item["id"] == "t-1"
    assert item["priority"] == "urgent"
    assert item["claimed_by"] == 5
    bot.ticket_service.list_open_tickets.assert_awaited_once_with(guild_id=GUILD_ID, limit=200)


@pytest.mark.parametrize("header", [None, "wrong"])
def test_api_key_is_enforced(header: str | None) -> None:
    client, _ = _client(api_key="secret")
    headers = {"X-API-Key": header} if header else {}
    assert client.get("/scheduler/priority", headers=headers).status_code == 401


def test_scheduler_listing_with_key() -> None:
    client, _ = _client(api_key="secret")
    response = client.get("/scheduler/priority", headers={"X-API-Key": "secret"})
    assert response.status_code == 200
    assert response.json() == {"active": ["t-1"]}


def test_guild_stats_are_reported() -> None:
    client, bot = _client()
    bot.ticket_repo = SimpleNamespace(
        stats=AsyncMock(
            return_value=TicketStats(
                open_tickets=3,
                claimed=1,
                messages=12,
                by_priority={"normal": 2, "urgent": 1},
                by_category={"Billing": 2},
                top_claimers=[(5, 1)],
            )
        )
    )

    response = client.get(f"/guilds/{GUILD_ID}/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["open_tickets"] == 3
    assert body["unclaimed"] == 2
    assert body["by_category"] == {"Billing": 2}
    assert body["top_claimers"] == [{"staff_id": 5, "tickets": 1}]
    bot.ticket_repo.stats.assert_awaited_once_with(GUILD_ID)
