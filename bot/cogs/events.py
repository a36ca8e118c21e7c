from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.guild_repo.ensure_guild(guild.id)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.guild_repo.ensure_guild(guild.id)
        LOGGER.info("Registered settings for new guild %s", guild.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not message.guild or not isinstance(message.channel, discord.TextChannel):
            return

        ticket = await self.bot.ticket_service.find_by_channel(message.channel.id)
        if not ticket:
            return
        await self.bot.ticket_service.record_message(
            ticket,
            message_id=message.id,
            author_id=message.author.id,
            author_name=str(message.author),
            content=message.content,
            attachments=[attachment.url for attachment in message.attachments],
        )

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        ticket = await self.bot.ticket_service.find_by_channel(channel.id)
        if not ticket:
            return
        # Channel removed by hand, so nobody can read further pings.
        await self.bot.scheduler.cancel(ticket.id)
        LOGGER.info("Ticket channel %s deleted outside the bot; priority pings stopped", channel.id)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(EventsCog(bot))
