from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

import discord

from core.errors import ValidationError
from database.models import ReminderRecord
from database.repositories import ReminderRepository
from services.notifier import Notifier
from utils.constants import jump_url
from utils.embeds import make_embed
from utils.time import parse_iso, parse_relative_duration, to_iso, utc_now

LOGGER = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


class ReminderService:
    def __init__(
        self,
        reminder_repo: ReminderRepository,
        notifier: Notifier,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.reminder_repo = reminder_repo
        self.notifier = notifier
        self._clock = clock

    async def create_reminder(
        self,
        user_id: int,
        channel_id: int,
        guild_id: int | None,
        message_id: int | None,
        reason: str,
        duration_text: str,
    ) -> ReminderRecord:
        try:
            delta = parse_relative_duration(duration_text)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        reason = reason.strip()
        if not reason:
            raise ValidationError("Please give the reminder a reason.")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Reminder reasons are limited to {MAX_REASON_LENGTH} characters.")

        now = self._clock()
        try:
            remind_at = now + delta
        except OverflowError as exc:
            raise ValidationError("Duration is too long.") from exc
        reminder = ReminderRecord(
            id=str(uuid4()),
            user_id=user_id,
            channel_id=channel_id,
            guild_id=guild_id,
            message_id=message_id,
            reason=reason,
            remind_at=to_iso(remind_at) or "",
            created_at=to_iso(now) or "",
        )
        await self.reminder_repo.create(reminder)
        LOGGER.info("Reminder %s set for user %s at %s", reminder.id, user_id, reminder.remind_at)
        return reminder

    async def list_pending(self, user_id: int) -> list[ReminderRecord]:
        return await self.reminder_repo.list_pending_for_user(user_id)

    async def sweep(self) -> int:
        """Deliver every due reminder. A reminder is only completed after delivery was attempted."""
        delivered = 0
        for reminder in await self.reminder_repo.list_due(to_iso(self._clock()) or ""):
            try:
                await self._deliver(reminder)
                await self.reminder_repo.mark_complete(reminder.id)
            except Exception:
                LOGGER.exception("Delivering reminder %s failed", reminder.id)
                continue
            delivered += 1
        return delivered

    async def _deliver(self, reminder: ReminderRecord) -> None:
        created = parse_iso(reminder.created_at)
        stamp = int(created.timestamp()) if created else 0
        link = ""
        if reminder.message_id is not None:
            link = f"\n\n[Jump to Message]({jump_url(reminder.guild_id, reminder.channel_id, reminder.message_id)})"

        await self.notifier.send_direct(
            reminder.user_id,
            embed=self._embed(f"<@{reminder.user_id}> {reminder.reason}", stamp, link),
        )
        await self.notifier.send_channel(
            reminder.channel_id,
            content=f"<@{reminder.user_id}>",
            embed=self._embed(f"<@{reminder.user_id}> {reminder.reason}", stamp, link),
        )

    @staticmethod
    def _embed(body: str, stamp: int, link: str) -> discord.Embed:
        return make_embed(
            "Reminder",
            f"{body}\n\n**Set:** <t:{stamp}:F> (<t:{stamp}:R>){link}",
            color=discord.Color.blurple(),
        )
