from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

import discord

from core.config import AppConfig
from core.errors import (
    BlacklistedError,
    PermissionDeniedError,
    TicketLimitReachedError,
    TicketNotFoundError,
    TicketStateError,
    ValidationError,
)
from database.models import TicketCategory, TicketMessageRecord, TicketNote, TicketRecord, TicketStats
from database.repositories import (
    BlacklistRepository,
    CategoryRepository,
    EscalationRepository,
    GuildRepository,
    MessageRepository,
    NoteRepository,
    SupportRoleRepository,
    TicketRepository,
)
from services.cache import CacheBackend
from services.notifier import Notifier
from services.priority_scheduler import PriorityScheduler
from services.transcript_service import TranscriptArtifacts, TranscriptService
from utils.constants import (
    BLACKLIST_GUILD,
    BLACKLIST_USER,
    PRIORITY_CHOICES,
    PRIORITY_NORMAL,
    PRIORITY_RESET,
    SCHEDULED_PRIORITIES,
    TICKET_STATUS_OPEN,
    ticket_cooldown_key,
)
from utils.embeds import PRIORITY_COLORS, alert_embed, make_embed, staff_embed
from utils.rate_limit import DistributedRateLimiter
from utils.time import to_iso, utc_now

LOGGER = logging.getLogger(__name__)

ChannelOpener = Callable[[int], Awaitable[int]]
MAX_NOTE_LENGTH = 1000
MAX_CATEGORIES = 25
MAX_CATEGORY_NAME_LENGTH = 50
MAX_CATEGORY_DESCRIPTION_LENGTH = 100


@dataclass(slots=True)
class TicketServiceDeps:
    guild_repo: GuildRepository
    support_role_repo: SupportRoleRepository
    ticket_repo: TicketRepository
    message_repo: MessageRepository
    note_repo: NoteRepository
    escalation_repo: EscalationRepository
    blacklist_repo: BlacklistRepository
    category_repo: CategoryRepository
    cache: CacheBackend
    notifier: Notifier
    scheduler: PriorityScheduler
    transcripts: TranscriptService


class TicketService:
    def __init__(
        self,
        config: AppConfig,
        deps: TicketServiceDeps,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.deps = deps
        self.rate_limiter = DistributedRateLimiter(deps.cache)
        self._clock = clock
        self._sleep = sleep

    def _now_iso(self) -> str:
        return to_iso(self._clock()) or ""

    # -- permissions -------------------------------------------------------

    async def is_support(self, guild_id: int, role_ids: Iterable[int]) -> bool:
        support_roles = set(await self.deps.support_role_repo.list_role_ids(guild_id))
        return bool(support_roles & set(role_ids))

    async def require_support(self, guild_id: int, role_ids: Iterable[int]) -> None:
        support_roles = set(await self.deps.support_role_repo.list_role_ids(guild_id))
        if not support_roles:
            raise PermissionDeniedError(
                "No support roles are configured. Ask an administrator to run `setup supportrole add`."
            )
        if not support_roles & set(role_ids):
            raise PermissionDeniedError("You need a support role to do this.")

    # -- lookups -----------------------------------------------------------

    async def get_by_channel(self, channel_id: int) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_channel(channel_id)
        if not ticket:
            raise TicketNotFoundError()
        return ticket

    async def find_by_channel(self, channel_id: int) -> TicketRecord | None:
        return await self.deps.ticket_repo.get_by_channel(channel_id)

    async def get_by_id(self, ticket_id: str) -> TicketRecord | None:
        return await self.deps.ticket_repo.get_by_id(ticket_id)

    async def list_open_tickets(self, guild_id: int, limit: int = 100) -> list[TicketRecord]:
        return await self.deps.ticket_repo.list_open(guild_id=guild_id, limit=limit)

    # -- creation ----------------------------------------------------------

    async def check_can_open(self, guild_id: int, owner_id: int) -> None:
        if await self.deps.blacklist_repo.is_blacklisted(owner_id, BLACKLIST_USER):
            raise BlacklistedError()
        if await self.deps.blacklist_repo.is_blacklisted(guild_id, BLACKLIST_GUILD):
            raise BlacklistedError("This server is blacklisted from using tickets.")

        settings = await self.deps.guild_repo.get_settings(guild_id)
        limit = settings.ticket_limit_per_user or self.config.tickets.default_ticket_limit
        open_count = await self.deps.ticket_repo.count_open_by_owner(guild_id, owner_id)
        if open_count >= limit:
            raise TicketLimitReachedError(
                f"You already have {open_count} open ticket(s). The limit is {limit}."
            )

        cooldown = settings.ticket_cooldown_seconds
        if cooldown is None:
            cooldown = self.config.tickets.default_cooldown_seconds
        if cooldown > 0:
            hit = await self.rate_limiter.hit(
                ticket_cooldown_key(guild_id, owner_id), limit=1, window_seconds=cooldown
            )
            if not hit.allowed:
                raise ValidationError(f"Please wait {cooldown} seconds between opening tickets.")

    async def create_ticket(
        self,
        guild_id: int,
        owner_id: int,
        open_channel: ChannelOpener,
        category_id: int | None = None,
        category: TicketCategory | None = None,
    ) -> TicketRecord:
        """Validate limits, open the platform channel and persist the ticket.

        ``open_channel`` receives the ticket number and returns the new channel id.
        The number is read as ``max + 1`` before the channel is opened, so two
        concurrent creations in one guild may share a number. ``category`` is the
        topic the owner picked, if the guild defines any.
        """
        if category is not None and category.guild_id != guild_id:
            raise ValidationError("That category belongs to another server.")
        await self.check_can_open(guild_id, owner_id)
        ticket_number = await self.deps.ticket_repo.next_ticket_number(guild_id)
        channel_id = await open_channel(ticket_number)

        now = self._now_iso()
        record = TicketRecord(
            id=str(uuid4()),
            guild_id=guild_id,
            channel_id=channel_id,
            ticket_number=ticket_number,
            owner_id=owner_id,
            created_at=now,
            last_activity=now,
            category_id=category_id,
            status=TICKET_STATUS_OPEN,
            category_name=category.name if category else None,
        )
        await self.deps.ticket_repo.create(record)
        LOGGER.info(
            "Ticket created. ticket=%s guild=%s number=%s owner=%s category=%s",
            record.id,
            guild_id,
            ticket_number,
            owner_id,
            record.category_name,
        )
        description = f"Ticket #{ticket_number} opened by <@{owner_id}>\nChannel: <#{channel_id}>"
        if category is not None:
            description += f"\nCategory: {category.label}"
        await self._log(
            guild_id,
            make_embed("Ticket Created", description, color=discord.Color.green()),
        )
        return record

    async def set_opening_message(self, ticket: TicketRecord, message_id: int) -> TicketRecord:
        await self.deps.ticket_repo.set_opening_message(ticket.id, message_id)
        return dataclasses.replace(ticket, opening_message_id=message_id)

    # -- staff transitions -------------------------------------------------

    async def claim(self, ticket: TicketRecord, actor_id: int, actor_role_ids: Iterable[int]) -> TicketRecord:
        await self.require_support(ticket.guild_id, actor_role_ids)
        if ticket.claimed_by is not None:
            raise TicketStateError(f"This ticket is already claimed by <@{ticket.claimed_by}>.")
        await self.deps.ticket_repo.claim(ticket.id, actor_id)
        await self.deps.escalation_repo.deactivate(ticket.id)
        LOGGER.info("Ticket claimed. ticket=%s staff=%s", ticket.id, actor_id)
        await self._log(
            ticket.guild_id,
            staff_embed("Ticket Claimed", f"Ticket #{ticket.ticket_number} claimed by <@{actor_id}>"),
        )
        return dataclasses.replace(ticket, claimed_by=actor_id)

    async def unclaim(self, ticket: TicketRecord, actor_id: int, actor_role_ids: Iterable[int]) -> TicketRecord:
        await self.require_support(ticket.guild_id, actor_role_ids)
        if ticket.claimed_by is None:
            raise TicketStateError("This ticket is not claimed.")
        if ticket.claimed_by != actor_id:
            raise PermissionDeniedError("Only the staff member who claimed this ticket can unclaim it.")
        await self.deps.ticket_repo.unclaim(ticket.id)
        LOGGER.info("Ticket unclaimed. ticket=%s staff=%s", ticket.id, actor_id)
        return dataclasses.replace(ticket, claimed_by=None)

    async def assign(
        self,
        ticket: TicketRecord,
        actor_id: int,
        actor_role_ids: Iterable[int],
        assignee_id: int,
        assignee_role_ids: Iterable[int],
    ) -> TicketRecord:
        await self.require_support(ticket.guild_id, actor_role_ids)
        if not await self.is_support(ticket.guild_id, assignee_role_ids):
            raise ValidationError("The assignee must hold a support role.")
        await self.deps.ticket_repo.assign(ticket.id, assignee_id)
        await self.deps.notifier.send_direct(
            assignee_id,
            embed=staff_embed(
                "Ticket Assigned",
                f"You were assigned ticket #{ticket.ticket_number} by <@{actor_id}>.\nChannel: <#{ticket.channel_id}>",
            ),
        )
        LOGGER.info("Ticket assigned. ticket=%s assignee=%s by=%s", ticket.id, assignee_id, actor_id)
        return dataclasses.replace(ticket, assigned_to=assignee_id)

    async def set_priority(
        self,
        ticket: TicketRecord,
        actor_id: int,
        actor_role_ids: Iterable[int],
        level: str,
    ) -> TicketRecord:
        level = level.strip().lower()
        if level not in PRIORITY_CHOICES:
            raise ValidationError(f"Invalid priority. Use one of: {', '.join(PRIORITY_CHOICES)}.")
        await self.require_support(ticket.guild_id, actor_role_ids)

        stored = PRIORITY_NORMAL if level == PRIORITY_RESET else level
        await self.deps.ticket_repo.set_priority(ticket.id, stored)
        if stored in SCHEDULED_PRIORITIES:
            await self.deps.scheduler.start(ticket.id, stored)
        else:
            await self.deps.scheduler.cancel(ticket.id)

        title = "Priority Reset" if level == PRIORITY_RESET else "Priority Set"
        await self._log(
            ticket.guild_id,
            make_embed(
                title,
                f"Ticket #{ticket.ticket_number}\nPriority: **{stored.upper()}**\nSet by: <@{actor_id}>",
                color=PRIORITY_COLORS.get(stored),
            ),
        )
        return dataclasses.replace(ticket, priority=stored)

    async def add_note(
        self, ticket: TicketRecord, author_id: int, author_role_ids: Iterable[int], note: str
    ) -> TicketNote:
        await self.require_support(ticket.guild_id, author_role_ids)
        note = note.strip()
        if not note:
            raise ValidationError("Note cannot be empty.")
        if len(note) > MAX_NOTE_LENGTH:
            raise ValidationError(f"Notes are limited to {MAX_NOTE_LENGTH} characters.")
        return await self.deps.note_repo.add(ticket.id, author_id, note, self._now_iso())

    async def list_notes(self, ticket: TicketRecord, actor_role_ids: Iterable[int]) -> list[TicketNote]:
        await self.require_support(ticket.guild_id, actor_role_ids)
        return await self.deps.note_repo.list_for_ticket(ticket.id)

    async def escalate(self, ticket: TicketRecord, requester_id: int) -> int:
        """Open an escalation and notify every support member. Returns how many were reached."""
        if ticket.has_messages:
            raise TicketStateError(
                "This ticket has already received messages. Escalation is only for tickets without responses."
            )
        await self.deps.escalation_repo.create(ticket.id, requester_id, self._now_iso())

        role_ids = await self.deps.support_role_repo.list_role_ids(ticket.guild_id)
        member_ids = await self.deps.notifier.support_member_ids(ticket.guild_id, role_ids)
        reached = 0
        for member_id in member_ids:
            delivered = await self.deps.notifier.send_direct(
                member_id,
                embed=alert_embed(
                    "Ticket Escalated",
                    "A ticket has been escalated and requires attention!\n\n"
                    f"**Ticket:** #{ticket.ticket_number}\n"
                    f"**User:** <@{ticket.owner_id}>\n"
                    f"**Channel:** <#{ticket.channel_id}>\n\n"
                    "You will receive hourly reminders until this ticket is claimed or closed.",
                ),
            )
            reached += int(delivered)
        if role_ids:
            mentions = " ".join(f"<@&{role_id}>" for role_id in role_ids)
            await self.deps.notifier.send_channel(
                ticket.channel_id, content=f"{mentions} This ticket has been escalated."
            )
        LOGGER.info("Ticket escalated. ticket=%s requester=%s notified=%s", ticket.id, requester_id, reached)
        return reached

    # -- close -------------------------------------------------------------

    async def close_ticket(
        self,
        ticket: TicketRecord,
        actor_id: int,
        actor_role_ids: Iterable[int] = (),
        *,
        notify_owner: bool = True,
        delete_delay: float | None = None,
        system: bool = False,
        reason: str | None = None,
    ) -> None:
        """Terminal transition. The row is deleted, not archived."""
        if not system and actor_id != ticket.owner_id:
            if not await self.is_support(ticket.guild_id, actor_role_ids):
                raise PermissionDeniedError("Only the ticket owner or support staff can close this ticket.")

        closer = "the system" if system else f"<@{actor_id}>"
        settings = await self.deps.guild_repo.get_settings(ticket.guild_id)
        messages = await self.deps.message_repo.list_for_ticket(ticket.id)
        artifacts = self._render_transcript(ticket, messages)
        if artifacts is not None:
            summary = make_embed(
                "Ticket Transcript",
                f"Ticket #{ticket.ticket_number}\nOwner: <@{ticket.owner_id}>\n"
                f"Closed by: {closer}\nMessages: {len(messages)}",
            )
            if settings.transcript_channel_id:
                await self.deps.notifier.send_channel(
                    settings.transcript_channel_id, embed=summary, files=artifacts.paths
                )
            if notify_owner:
                await self.deps.notifier.send_direct(ticket.owner_id, embed=summary, files=artifacts.paths)
            self.deps.transcripts.cleanup(artifacts)

        await self.deps.message_repo.delete_for_ticket(ticket.id)
        await self.deps.note_repo.delete_for_ticket(ticket.id)
        await self.deps.scheduler.cancel(ticket.id)
        await self.deps.escalation_repo.deactivate(ticket.id)

        description = f"Ticket #{ticket.ticket_number} closed by {closer}"
        if reason:
            description += f"\nReason: {reason}"
        await self._log(ticket.guild_id, alert_embed("Ticket Closed", description))

        await self.deps.ticket_repo.delete(ticket.id)
        LOGGER.info("Ticket closed. ticket=%s by=%s system=%s", ticket.id, actor_id, system)

        delay = self.config.tickets.close_delay_seconds if delete_delay is None else delete_delay
        if delay > 0:
            await self._sleep(delay)
        await self.deps.notifier.delete_channel(ticket.channel_id, reason=f"Ticket #{ticket.ticket_number} closed")

    def _render_transcript(
        self, ticket: TicketRecord, messages: Sequence[TicketMessageRecord]
    ) -> TranscriptArtifacts | None:
        try:
            return self.deps.transcripts.generate(ticket, messages)
        except OSError:
            LOGGER.exception("Transcript generation failed for ticket %s", ticket.id)
            return None

    # -- activity ----------------------------------------------------------

    async def record_message(
        self,
        ticket: TicketRecord,
        message_id: int,
        author_id: int,
        author_name: str,
        content: str,
        attachments: Sequence[str] = (),
    ) -> None:
        await self.deps.message_repo.add(
            TicketMessageRecord(
                id=str(uuid4()),
                ticket_id=ticket.id,
                message_id=message_id,
                author_id=author_id,
                author_name=author_name,
                content=content,
                created_at=self._now_iso(),
                attachments=list(attachments),
            )
        )
        if author_id != ticket.owner_id and not ticket.has_messages:
            await self.mark_has_messages(ticket.id)
        await self.touch_activity(ticket.id)

    async def mark_has_messages(self, ticket_id: str) -> None:
        await self.deps.ticket_repo.mark_has_messages(ticket_id)

    async def touch_activity(self, ticket_id: str) -> None:
        await self.deps.ticket_repo.touch_activity(ticket_id, self._now_iso())

    # -- categories --------------------------------------------------------

    async def list_categories(self, guild_id: int) -> list[TicketCategory]:
        return await self.deps.category_repo.list_for_guild(guild_id)

    async def resolve_category(self, guild_id: int, name: str) -> TicketCategory:
        category = await self.deps.category_repo.get_by_name(guild_id, name.strip())
        if category is not None:
            return category
        names = ", ".join(item.name for item in await self.list_categories(guild_id))
        if not names:
            raise ValidationError("This server has no ticket categories.")
        raise ValidationError(f"Unknown category `{name.strip()}`. Available: {names}")

    async def add_category(
        self,
        guild_id: int,
        name: str,
        description: str | None = None,
        emoji: str | None = None,
    ) -> TicketCategory:
        name = name.strip()
        description = description.strip() if description and description.strip() else None
        emoji = emoji.strip() if emoji and emoji.strip() else None
        if not name:
            raise ValidationError("Category names cannot be empty.")
        if len(name) > MAX_CATEGORY_NAME_LENGTH:
            raise ValidationError(f"Category names are limited to {MAX_CATEGORY_NAME_LENGTH} characters.")
        if description and len(description) > MAX_CATEGORY_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Category descriptions are limited to {MAX_CATEGORY_DESCRIPTION_LENGTH} characters."
            )
        existing = await self.list_categories(guild_id)
        if any(item.name.lower() == name.lower() for item in existing):
            raise ValidationError(f"A category named `{name}` already exists.")
        if len(existing) >= MAX_CATEGORIES:
            raise ValidationError(f"A server can have at most {MAX_CATEGORIES} categories.")
        category = await self.deps.category_repo.add(guild_id, name, description, emoji)
        LOGGER.info("Ticket category added. guild=%s category=%s name=%s", guild_id, category.id, name)
        return category

    async def remove_category(self, guild_id: int, name: str) -> bool:
        """Open tickets keep the category name they were opened with."""
        category = await self.deps.category_repo.get_by_name(guild_id, name.strip())
        if category is None:
            return False
        removed = await self.deps.category_repo.remove(guild_id, category.id)
        if removed:
            LOGGER.info("Ticket category removed. guild=%s category=%s", guild_id, category.id)
        return removed

    # -- stats -------------------------------------------------------------

    async def stats(self, guild_id: int, actor_role_ids: Iterable[int]) -> TicketStats:
        await self.require_support(guild_id, actor_role_ids)
        return await self.deps.ticket_repo.stats(guild_id)

    # -- blacklist ---------------------------------------------------------

    async def blacklist(self, target_id: int, target_type: str, actor_id: int, reason: str | None = None) -> None:
        if target_type not in {BLACKLIST_USER, BLACKLIST_GUILD}:
            raise ValidationError("Blacklist target must be `user` or `guild`.")
        await self.deps.blacklist_repo.add(target_id, target_type, (reason or "").strip() or None, actor_id)
        LOGGER.info("Blacklisted %s %s by %s", target_type, target_id, actor_id)

    async def unblacklist(self, target_id: int, target_type: str) -> bool:
        return await self.deps.blacklist_repo.remove(target_id, target_type)

    async def _log(self, guild_id: int, embed: discord.Embed) -> None:
        settings = await self.deps.guild_repo.get_settings(guild_id)
        if settings.log_channel_id:
            await self.deps.notifier.send_channel(settings.log_channel_id, embed=embed)

