from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Header, HTTPException

if TYPE_CHECKING:
    from core.bot import TicketBot


def _auth(x_api_key: str | None, expected: str) -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def create_api_app(bot: TicketBot) -> FastAPI:
    """Read-only status surface served next to the gateway connection."""
    app = FastAPI(title="Ticket Lifecycle API", version="1.0.0")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "database": bot.database.is_connected}

    @app.get("/guilds/{guild_id}/tickets/open")
    async def open_tickets(guild_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        rows = await bot.ticket_service.list_open_tickets(guild_id=guild_id, limit=200)
        return {
            "items": [
                {
                    "id": row.id,
                    "ticket_number": row.ticket_number,
                    "channel_id": row.channel_id,
                    "owner_id": row.owner_id,
                    "status": row.status,
                    "priority": row.priority,
                    "category": row.category_name,
                    "claimed_by": row.claimed_by,
                    "last_activity": row.last_activity,
                }
                for row in rows
            ]
        }

    @app.get("/guilds/{guild_id}/stats")
    async def guild_stats(guild_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        stats = await bot.ticket_repo.stats(guild_id)
        return {
            "open_tickets": stats.open_tickets,
            "claimed": stats.claimed,
            "unclaimed": stats.unclaimed,
            "escalated": stats.escalated,
            "messages": stats.messages,
            "by_priority": stats.by_priority,
            "by_category": stats.by_category,
            "top_claimers": [{"staff_id": staff_id, "tickets": count} for staff_id, count in stats.top_claimers],
            "oldest_created_at": stats.oldest_created_at,
        }

    @app.get("/scheduler/priority")
    async def priority_tasks(x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        return {"active": bot.scheduler.active_ticket_ids()}

    return app
