from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from core.config import SchedulerConfig
from database.repositories import EscalationRepository, SupportRoleRepository, TicketRepository
from services.notifier import Notifier
from utils.embeds import alert_embed
from utils.time import parse_iso, to_iso, utc_now

LOGGER = logging.getLogger(__name__)


class EscalationService:
    """Re-notifies support staff about escalated tickets nobody has claimed."""

    def __init__(
        self,
        escalation_repo: EscalationRepository,
        ticket_repo: TicketRepository,
        support_role_repo: SupportRoleRepository,
        notifier: Notifier,
        config: SchedulerConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.escalation_repo = escalation_repo
        self.ticket_repo = ticket_repo
        self.support_role_repo = support_role_repo
        self.notifier = notifier
        self.config = config
        self._clock = clock

    async def sweep(self) -> int:
        """Returns the number of escalations that were re-pinged."""
        now = self._clock()
        pinged = 0
        for escalation in await self.escalation_repo.list_active():
            last_ping = parse_iso(escalation.last_ping_at)
            if last_ping is not None and (now - last_ping).total_seconds() < self.config.escalation_ping_seconds:
                continue
            try:
                if await self._remind(escalation.ticket_id, now):
                    pinged += 1
            except Exception:
                LOGGER.exception("Escalation reminder failed for ticket %s", escalation.ticket_id)
        return pinged

    async def _remind(self, ticket_id: str, now: datetime) -> bool:
        ticket = await self.ticket_repo.get_by_id(ticket_id)
        if ticket is None or ticket.is_claimed:
            await self.escalation_repo.deactivate(ticket_id)
            return False

        role_ids = await self.support_role_repo.list_role_ids(ticket.guild_id)
        for member_id in await self.notifier.support_member_ids(ticket.guild_id, role_ids):
            await self.notifier.send_direct(
                member_id,
                embed=alert_embed(
                    "Escalated Ticket Reminder",
                    "**Reminder:** This ticket still needs attention!\n\n"
                    f"**Ticket:** #{ticket.ticket_number}\n"
                    f"**User:** <@{ticket.owner_id}>\n"
                    f"**Channel:** <#{ticket.channel_id}>\n\n"
                    "Please claim this ticket to stop these reminders.",
                ),
            )
        await self.escalation_repo.update_ping_time(ticket_id, to_iso(now) or "")
        LOGGER.info("Escalation reminder sent for ticket %s", ticket_id)
        return True
