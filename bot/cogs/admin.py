from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import ValidationError
from utils.constants import BLACKLIST_GUILD, BLACKLIST_USER
from utils.embeds import error_embed, make_embed, panel_embed, success_embed
from utils.time import format_duration
from views.panel_editor import PanelEditorView

LOGGER = logging.getLogger(__name__)

MAX_AUTO_CLOSE_HOURS = 720
MAX_TICKET_LIMIT = 25
MAX_COOLDOWN_SECONDS = 86_400


def _is_admin(member: discord.Member) -> bool:
    return member.guild_permissions.administrator


def _mention(kind: str, value: int | None) -> str:
    if value is None:
        return "Not set"
    return f"<{kind}{value}>"


class AdminCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def _assert_admin(self, ctx: commands.Context[TicketBot]) -> discord.Guild:
        if not ctx.guild or not isinstance(ctx.author, discord.Member) or not _is_admin(ctx.author):
            raise commands.CheckFailure("Administrator permission required.")
        return ctx.guild

    @commands.hybrid_group(name="setup", with_app_command=True, description="Configure the ticket system.")
    async def setup_group(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is not None:
            return
        guild = await self._assert_admin(ctx)
        settings = await self.bot.guild_repo.get_settings(guild.id)
        role_ids = await self.bot.support_role_repo.list_role_ids(guild.id)
        embed = make_embed("Server Settings", "Current ticket configuration.")
        embed.add_field(
            name="Support Roles",
            value=", ".join(f"<@&{role_id}>" for role_id in role_ids) or "None",
            inline=False,
        )
        embed.add_field(name="Ping Role", value=_mention("@&", settings.ping_role_id), inline=True)
        embed.add_field(name="Log Channel", value=_mention("#", settings.log_channel_id), inline=True)
        embed.add_field(name="Transcripts", value=_mention("#", settings.transcript_channel_id), inline=True)
        embed.add_field(name="Channel Category", value=_mention("#", settings.ticket_category_id), inline=True)
        embed.add_field(
            name="Auto-Close",
            value=f"{settings.auto_close_hours}h" if settings.auto_close_hours else "Disabled",
            inline=True,
        )
        embed.add_field(
            name="Ticket Limit",
            value=str(settings.ticket_limit_per_user or self.bot.config.tickets.default_ticket_limit),
            inline=True,
        )
        cooldown = settings.ticket_cooldown_seconds or 0
        embed.add_field(name="Cooldown", value=format_duration(cooldown) if cooldown else "None", inline=True)
        await ctx.reply(embed=embed, mention_author=False)

    @setup_group.group(name="supportrole", with_app_command=True, description="Manage support roles.")
    async def supportrole(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed("Support Roles", "`setup supportrole add <role>`\n`setup supportrole remove <role>`"),
                mention_author=False,
            )

    @supportrole.command(name="add", description="Allow a role to handle tickets.")
    async def supportrole_add(self, ctx: commands.Context[TicketBot], role: discord.Role) -> None:
        guild = await self._assert_admin(ctx)
        await self.bot.support_role_repo.add(guild.id, role.id)
        LOGGER.info("Support role added. guild=%s role=%s", guild.id, role.id)
        await ctx.reply(embed=success_embed(f"{role.mention} is now a support role."), mention_author=False)

    @supportrole.command(name="remove", description="Stop a role from handling tickets.")
    async def supportrole_remove(self, ctx: commands.Context[TicketBot], role: discord.Role) -> None:
        guild = await self._assert_admin(ctx)
        if not await self.bot.support_role_repo.remove(guild.id, role.id):
            await ctx.reply(embed=error_embed(f"{role.mention} is not a support role."), mention_author=False)
            return
        await ctx.reply(embed=success_embed(f"{role.mention} is no longer a support role."), mention_author=False)

    @setup_group.command(name="pingrole", description="Role pinged for new and prioritized tickets.")
    async def pingrole(self, ctx: commands.Context[TicketBot], role: discord.Role | None = None) -> None:
        guild = await self._assert_admin(ctx)
        await self.bot.guild_repo.update_settings(guild.id, ping_role_id=role.id if role else None)
        message = f"Ping role set to {role.mention}." if role else "Ping role cleared. Priority pings are disabled."
        await ctx.reply(embed=success_embed(message), mention_author=False)

    @setup_group.command(name="logchannel", description="Channel that receives ticket log entries.")
    async def logchannel(self, ctx: commands.Context[TicketBot], channel: discord.TextChannel) -> None:
        guild = await self._assert_admin(ctx)
        await self.bot.guild_repo.update_settings(guild.id, log_channel_id=channel.id)
        await ctx.reply(embed=success_embed(f"Log channel set to {channel.mention}."), mention_author=False)

    @setup_group.command(name="transcriptchannel", description="Channel that receives closed ticket transcripts.")
    async def transcriptchannel(self, ctx: commands.Context[TicketBot], channel: discord.TextChannel) -> None:
        guild = await self._assert_admin(ctx)
        await self.bot.guild_repo.update_settings(guild.id, transcript_channel_id=channel.id)
        await ctx.reply(embed=success_embed(f"Transcript channel set to {channel.mention}."), mention_author=False)

    @setup_group.group(name="category", with_app_command=True, description="Manage ticket categories.")
    async def category_group(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Categories",
                    "`setup category add <name> [emoji] [description]`\n"
                    "`setup category remove <name>`\n"
                    "`setup category list`\n"
                    "`setup category channel <category>`",
                ),
                mention_author=False,
            )

    @category_group.command(name="add", description="Add a category users pick when opening a ticket.")
    async def category_add(
        self,
        ctx: commands.Context[TicketBot],
        name: str,
        emoji: str | None = None,
        *,
        description: str | None = None,
    ) -> None:
        guild = await self._assert_admin(ctx)
        category = await self.bot.ticket_service.add_category(guild.id, name, description, emoji)
        await ctx.reply(embed=success_embed(f"Category **{category.label}** created."), mention_author=False)

    @category_group.command(name="remove", description="Remove a ticket category.")
    async def category_remove(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        guild = await self._assert_admin(ctx)
        if not await self.bot.ticket_service.remove_category(guild.id, name):
            await ctx.reply(embed=error_embed(f"No category named `{name}`."), mention_author=False)
            return
        await ctx.reply(embed=success_embed(f"Category `{name}` removed."), mention_author=False)

    @category_group.command(name="list", description="List the ticket categories.")
    async def category_list(self, ctx: commands.Context[TicketBot]) -> None:
        guild = await self._assert_admin(ctx)
        categories = await self.bot.ticket_service.list_categories(guild.id)
        if not categories:
            await ctx.reply(
                embed=make_embed("Ticket Categories", "No categories yet. Tickets open without one."),
                mention_author=False,
            )
            return
        lines = [
            f"**{category.label}**" + (f"\n{category.description}" if category.description else "")
            for category in categories
        ]
        await ctx.reply(embed=make_embed("Ticket Categories", "\n\n".join(lines)), mention_author=False)

    @category_group.command(name="channel", description="Category new ticket channels are created under.")
    async def category_channel(self, ctx: commands.Context[TicketBot], category: discord.CategoryChannel) -> None:
        guild = await self._assert_admin(ctx)
        await self.bot.guild_repo.update_settings(guild.id, ticket_category_id=category.id)
        await ctx.reply(embed=success_embed(f"Tickets will open under **{category.name}**."), mention_author=False)


    @setup_group.command(name="autoclose", description="Close tickets after this many idle hours. 0 disables.")
    async def autoclose(self, ctx: commands.Context[TicketBot], hours: int) -> None:
        guild = await self._assert_admin(ctx)
        if hours < 0 or hours > MAX_AUTO_CLOSE_HOURS:
            raise ValidationError(f"Hours must be between 0 and {MAX_AUTO_CLOSE_HOURS}.")
        await self.bot.guild_repo.update_settings(guild.id, auto_close_hours=hours or None)
        message = f"Tickets idle for {hours} hour(s) will be closed." if hours else "Auto-close disabled."
        await ctx.reply(embed=success_embed(message), mention_author=False)

    @setup_group.command(name="ticketlimit", description="Open tickets allowed per user.")
    async def ticketlimit(self, ctx: commands.Context[TicketBot], limit: int) -> None:
        guild = await self._assert_admin(ctx)
        if limit < 1 or limit > MAX_TICKET_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_TICKET_LIMIT}.")
        await self.bot.guild_repo.update_settings(guild.id, ticket_limit_per_user=limit)
        await ctx.reply(embed=success_embed(f"Users may now hold {limit} open ticket(s)."), mention_author=False)

    @setup_group.command(name="cooldown", description="Seconds a user must wait between opening tickets.")
    async def cooldown(self, ctx: commands.Context[TicketBot], seconds: int) -> None:
        guild = await self._assert_admin(ctx)
        if seconds < 0 or seconds > MAX_COOLDOWN_SECONDS:
            raise ValidationError(f"Cooldown must be between 0 and {MAX_COOLDOWN_SECONDS} seconds.")
        await self.bot.guild_repo.update_settings(guild.id, ticket_cooldown_seconds=seconds)
        await ctx.reply(embed=success_embed(f"Ticket cooldown set to {seconds} second(s)."), mention_author=False)

    @setup_group.command(name="blacklist", description="Block a user from opening tickets.")
    async def blacklist(
        self, ctx: commands.Context[TicketBot], user: discord.User, *, reason: str | None = None
    ) -> None:
        await self._assert_admin(ctx)
        await self.bot.ticket_service.blacklist(user.id, BLACKLIST_USER, ctx.author.id, reason)
        await ctx.reply(embed=success_embed(f"{user.mention} has been blacklisted."), mention_author=False)

    @setup_group.command(name="unblacklist", description="Allow a blacklisted user to open tickets again.")
    async def unblacklist(self, ctx: commands.Context[TicketBot], user: discord.User) -> None:
        await self._assert_admin(ctx)
        if not await self.bot.ticket_service.unblacklist(user.id, BLACKLIST_USER):
            await ctx.reply(embed=error_embed(f"{user.mention} is not blacklisted."), mention_author=False)
            return
        await ctx.reply(embed=success_embed(f"{user.mention} removed from the blacklist."), mention_author=False)

    @commands.command(name="blacklistguild", hidden=True)
    @commands.is_owner()
    async def blacklist_guild(self, ctx: commands.Context[TicketBot], guild_id: int, *, reason: str | None = None) -> None:
        await self.bot.ticket_service.blacklist(guild_id, BLACKLIST_GUILD, ctx.author.id, reason)
        await ctx.reply(embed=success_embed(f"Guild `{guild_id}` has been blacklisted."), mention_author=False)

    @setup_group.command(name="panel", description="Preview, edit and post the ticket panel.")
    async def panel(self, ctx: commands.Context[TicketBot]) -> None:
        guild = await self._assert_admin(ctx)
        settings = await self.bot.guild_repo.get_settings(guild.id)
        await ctx.send(
            content="Panel preview. Use the buttons below to edit it or post it in this channel.",
            embed=panel_embed(settings),
            view=PanelEditorView(self.bot, guild.id, ctx.author.id),
            ephemeral=True,
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(AdminCog(bot))
