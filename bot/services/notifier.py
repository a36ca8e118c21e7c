from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

import discord
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    """Best-effort delivery surface. Every method reports success instead of raising."""

    async def send_channel(
        self,
        channel_id: int,
        content: str | None = None,
        embed: discord.Embed | None = None,
        files: Sequence[Path] = (),
    ) -> bool: ...

    async def send_direct(
        self,
        user_id: int,
        content: str | None = None,
        embed: discord.Embed | None = None,
        files: Sequence[Path] = (),
    ) -> bool: ...

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> bool: ...

    async def support_member_ids(self, guild_id: int, role_ids: Iterable[int]) -> list[int]: ...


class DiscordNotifier(Notifier):
    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _resolve_channel(
        self, channel_id: int
    ) -> discord.abc.GuildChannel | discord.abc.PrivateChannel | discord.Thread | None:
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except discord.HTTPException:
            LOGGER.debug("Channel %s is not reachable", channel_id)
            return None

    @staticmethod
    def _payload(
        content: str | None, embed: discord.Embed | None, paths: Sequence[Path]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": content, "embed": embed}
        files = [discord.File(path) for path in paths if path.exists()]
        if files:
            payload["files"] = files
        return payload

    async def send_channel(
        self,
        channel_id: int,
        content: str | None = None,
        embed: discord.Embed | None = None,
        files: Sequence[Path] = (),
    ) -> bool:
        channel = await self._resolve_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            return False
        try:
            await channel.send(**self._payload(content, embed, files))
        except discord.HTTPException as exc:
            LOGGER.warning("Send to channel %s failed: %s", channel_id, exc)
            return False
        return True

    async def send_direct(
        self,
        user_id: int,
        content: str | None = None,
        embed: discord.Embed | None = None,
        files: Sequence[Path] = (),
    ) -> bool:
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(**self._payload(content, embed, files))
        except discord.HTTPException as exc:
            LOGGER.debug("Direct message to %s failed: %s", user_id, exc)
            return False
        return True

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> bool:
        channel = await self._resolve_channel(channel_id)
        if not isinstance(channel, discord.abc.GuildChannel):
            return False
        try:
            await channel.delete(reason=reason)
        except discord.HTTPException as exc:
            LOGGER.warning("Delete of channel %s failed: %s", channel_id, exc)
            return False
        return True

    async def support_member_ids(self, guild_id: int, role_ids: Iterable[int]) -> list[int]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return []
        member_ids: list[int] = []
        seen: set[int] = set()
        for role_id in role_ids:
            role = guild.get_role(role_id)
            if role is None:
                continue
            for member in role.members:
                if member.bot or member.id in seen:
                    continue
                seen.add(member.id)
                member_ids.append(member.id)
        return member_ids
