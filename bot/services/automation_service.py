from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.config import TicketConfig
from database.models import InactiveTicket
from database.repositories import GuildRepository, TicketRepository
from services.notifier import Notifier
from utils.embeds import alert_embed
from utils.time import parse_iso, utc_now

if TYPE_CHECKING:
    from services.ticket_service import TicketService

LOGGER = logging.getLogger(__name__)


class AutoCloseService:
    """Closes tickets whose guild has an inactivity window and that went quiet past it."""

    def __init__(
        self,
        ticket_repo: TicketRepository,
        guild_repo: GuildRepository,
        ticket_service: TicketService,
        notifier: Notifier,
        config: TicketConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ticket_repo = ticket_repo
        self.guild_repo = guild_repo
        self.ticket_service = ticket_service
        self.notifier = notifier
        self.config = config
        self._clock = clock

    def is_inactive(self, candidate: InactiveTicket, now: datetime) -> bool:
        last_activity = parse_iso(candidate.ticket.last_activity)
        if last_activity is None:
            return False
        return now - last_activity > timedelta(hours=candidate.auto_close_hours)

    async def sweep(self) -> list[str]:
        """Returns the ids of the tickets closed in this pass."""
        now = self._clock()
        closed: list[str] = []
        for candidate in await self.ticket_repo.list_auto_close_candidates():
            if not self.is_inactive(candidate, now):
                continue
            try:
                if not await self._close(candidate, now):
                    continue
            except Exception:
                LOGGER.exception("Auto-close failed for ticket %s", candidate.ticket.id)
                continue
            closed.append(candidate.ticket.id)
        return closed

    async def _close(self, candidate: InactiveTicket, now: datetime) -> bool:
        ticket = await self.ticket_repo.get_by_id(candidate.ticket.id)
        if ticket is None:
            LOGGER.debug("Ticket %s was closed before auto-close reached it", candidate.ticket.id)
            return False
        candidate = InactiveTicket(ticket=ticket, auto_close_hours=candidate.auto_close_hours)
        if not self.is_inactive(candidate, now):
            return False
        await self.notifier.send_channel(
            ticket.channel_id,
            embed=alert_embed(
                "Ticket Auto-Closed",
                "This ticket has been automatically closed due to inactivity.",
            ),
        )
        settings = await self.guild_repo.get_settings(ticket.guild_id)
        if settings.log_channel_id:
            await self.notifier.send_channel(
                settings.log_channel_id,
                embed=alert_embed(
                    "Ticket Auto-Closed",
                    f"Ticket #{ticket.ticket_number} was automatically closed due to inactivity\n"
                    f"Channel: <#{ticket.channel_id}>",
                ),
            )
        LOGGER.info(
            "Auto-closing ticket %s after %s hour(s) of inactivity", ticket.id, candidate.auto_close_hours
        )
        await self.ticket_service.close_ticket(
            ticket,
            actor_id=ticket.owner_id,
            notify_owner=False,
            delete_delay=self.config.autoclose_delete_delay_seconds,
            system=True,
            reason="Inactivity",
        )
        return True
