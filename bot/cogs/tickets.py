from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from core.bot import TicketBot
from core.errors import ValidationError
from database.models import TicketRecord
from utils.constants import PRIORITY_CHOICES, PRIORITY_RESET
from utils.embeds import PRIORITY_COLORS, make_embed, staff_embed, success_embed
from utils.time import parse_iso
from views.ticket_controls import TicketControlsView
from views.ticket_panel import TicketCategoryView, TicketPanelView, open_ticket

LOGGER = logging.getLogger(__name__)

PRIORITY_APP_CHOICES = [app_commands.Choice(name=level.title(), value=level) for level in PRIORITY_CHOICES]


def _role_ids(member: discord.Member) -> list[int]:
    return [role.id for role in member.roles]


class TicketsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.bot.add_view(TicketPanelView(self.bot))
        self.bot.add_view(TicketControlsView(self.bot))

    async def _current_ticket(
        self, ctx: commands.Context[TicketBot]
    ) -> tuple[discord.TextChannel, TicketRecord, discord.Member]:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        channel = ctx.channel
        if not isinstance(channel, discord.TextChannel):
            raise ValidationError("Ticket commands require a text channel.")
        ticket = await self.bot.ticket_service.get_by_channel(channel.id)
        return channel, ticket, ctx.author

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Ticket command group.")
    async def ticket(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/ticket open [category]` to open a ticket\n"
                    "`/ticket claim` and `/ticket unclaim`\n"
                    "`/ticket assign <member>`\n"
                    "`/ticket priority <level>`\n"
                    "`/ticket note <text>` and `/ticket notes`\n"
                    "`/ticket escalate`\n"
                    "`/ticket close [reason]`\n"
                    "`/ticket info`\n"
                    "`/ticket stats`",
                ),
                mention_author=False,
            )

    @ticket.command(name="open", description="Open a private support ticket.")
    @app_commands.describe(category="Ticket category, when the server defines any.")
    async def ticket_open(self, ctx: commands.Context[TicketBot], *, category: str | None = None) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        chosen = None
        if category:
            chosen = await self.bot.ticket_service.resolve_category(ctx.guild.id, category)
        else:
            categories = await self.bot.ticket_service.list_categories(ctx.guild.id)
            if categories:
                await ctx.send(
                    "Select a category to continue:",
                    view=TicketCategoryView(self.bot, categories),
                    ephemeral=True,
                )
                return
        await ctx.defer(ephemeral=True)
        record = await open_ticket(self.bot, ctx.guild, ctx.author, chosen)
        await ctx.reply(embed=success_embed(f"Ticket created: <#{record.channel_id}>"), mention_author=False)

    @ticket_open.autocomplete("category")
    async def ticket_open_category(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        if not interaction.guild:
            return []
        categories = await self.bot.ticket_service.list_categories(interaction.guild.id)
        needle = current.lower()
        return [
            app_commands.Choice(name=category.label[:100], value=category.name)
            for category in categories
            if needle in category.name.lower()
        ][:25]

    @ticket.command(name="claim", description="Claim the current ticket.")
    async def ticket_claim(self, ctx: commands.Context[TicketBot]) -> None:
        channel, ticket, member = await self._current_ticket(ctx)
        await self.bot.ticket_service.claim(ticket, member.id, _role_ids(member))
        await channel.send(embed=staff_embed("Ticket Claimed", f"This ticket has been claimed by {member.mention}."))
        if ctx.interaction:
            await ctx.reply(embed=success_embed("Claimed."), ephemeral=True)

    @ticket.command(name="unclaim", description="Release your claim on the current ticket.")
    async def ticket_unclaim(self, ctx: commands.Context[TicketBot]) -> None:
        _, ticket, member = await self._current_ticket(ctx)
        await self.bot.ticket_service.unclaim(ticket, member.id, _role_ids(member))
        await ctx.reply(embed=success_embed("Ticket unclaimed."), mention_author=False)

    @ticket.command(name="assign", description="Assign the current ticket to a support member.")
    async def ticket_assign(self, ctx: commands.Context[TicketBot], member: discord.Member) -> None:
        _, ticket, actor = await self._current_ticket(ctx)
        await self.bot.ticket_service.assign(ticket, actor.id, _role_ids(actor), member.id, _role_ids(member))
        await ctx.reply(
            embed=staff_embed("Ticket Assigned", f"This ticket has been assigned to {member.mention}."),
            mention_author=False,
        )

    @ticket.command(name="priority", description="Set the ticket priority and its reminder cadence.")
    @app_commands.choices(level=PRIORITY_APP_CHOICES)
    async def ticket_priority(self, ctx: commands.Context[TicketBot], level: str) -> None:
        _, ticket, actor = await self._current_ticket(ctx)
        updated = await self.bot.ticket_service.set_priority(ticket, actor.id, _role_ids(actor), level)
        if level.strip().lower() == PRIORITY_RESET:
            embed = make_embed("Priority Reset", "Ticket priority has been reset to normal.")
        else:
            embed = make_embed(
                "Priority Set",
                f"Ticket priority set to **{(updated.priority or '').upper()}**",
                color=PRIORITY_COLORS.get(updated.priority or ""),
            )
        await ctx.reply(embed=embed, mention_author=False)

    @ticket.command(name="note", description="Add an internal staff note.")
    async def ticket_note(self, ctx: commands.Context[TicketBot], *, note: str) -> None:
        _, ticket, actor = await self._current_ticket(ctx)
        await self.bot.ticket_service.add_note(ticket, actor.id, _role_ids(actor), note)
        await ctx.reply(embed=staff_embed("Internal Note Added", note), mention_author=False, ephemeral=True)

    @ticket.command(name="notes", description="List internal staff notes.")
    async def ticket_notes(self, ctx: commands.Context[TicketBot]) -> None:
        _, ticket, actor = await self._current_ticket(ctx)
        notes = await self.bot.ticket_service.list_notes(ticket, _role_ids(actor))
        if not notes:
            await ctx.reply(embed=success_embed("No notes for this ticket."), mention_author=False, ephemeral=True)
            return
        lines = []
        for note in notes[:20]:
            created = parse_iso(note.created_at)
            stamp = discord.utils.format_dt(created, style="R") if created else note.created_at
            lines.append(f"<@{note.author_id}> {stamp}\n{note.note}")
        await ctx.reply(
            embed=staff_embed("Ticket Notes", "\n\n".join(lines)[:4000]),
            mention_author=False,
            ephemeral=True,
        )

    @ticket.command(name="escalate", description="Alert every support member about an unanswered ticket.")
    async def ticket_escalate(self, ctx: commands.Context[TicketBot]) -> None:
        _, ticket, actor = await self._current_ticket(ctx)
        await ctx.defer()
        reached = await self.bot.ticket_service.escalate(ticket, actor.id)
        await ctx.reply(
            embed=staff_embed(
                "Ticket Escalated",
                f"{reached} support member(s) were notified. They will be reminded until the ticket is claimed.",
            ),
            mention_author=False,
        )

    @ticket.command(name="close", description="Close the current ticket and delete its channel.")
    async def ticket_close(self, ctx: commands.Context[TicketBot], *, reason: str | None = None) -> None:
        _, ticket, member = await self._current_ticket(ctx)
        if member.id != ticket.owner_id:
            await self.bot.ticket_service.require_support(ticket.guild_id, _role_ids(member))
        await ctx.reply(
            embed=success_embed(
                f"Ticket closed by {member.mention}. "
                f"This channel will be deleted in {self.bot.config.tickets.close_delay_seconds:g} seconds."
            ),
            mention_author=False,
        )
        await self.bot.ticket_service.close_ticket(ticket, member.id, _role_ids(member), reason=reason)

    @ticket.command(name="info", description="Show ticket details.")
    async def ticket_info(self, ctx: commands.Context[TicketBot]) -> None:
        _, ticket, _ = await self._current_ticket(ctx)
        embed = make_embed(
            title=f"Ticket #{ticket.ticket_number}",
            description=f"ID: `{ticket.id}`",
            color=PRIORITY_COLORS.get(ticket.priority or "normal"),
        )
        embed.add_field(name="Owner", value=f"<@{ticket.owner_id}>", inline=True)
        embed.add_field(name="Priority", value=(ticket.priority or "normal").title(), inline=True)
        embed.add_field(name="Claimed By", value=f"<@{ticket.claimed_by}>" if ticket.claimed_by else "None", inline=True)
        embed.add_field(
            name="Assigned To", value=f"<@{ticket.assigned_to}>" if ticket.assigned_to else "None", inline=True
        )
        embed.add_field(name="Staff Replied", value="Yes" if ticket.has_messages else "No", inline=True)
        if ticket.category_name:
            embed.add_field(name="Category", value=ticket.category_name, inline=True)
        created = parse_iso(ticket.created_at)
        if created:
            embed.add_field(name="Opened", value=discord.utils.format_dt(created, style="R"), inline=True)
        await ctx.reply(embed=embed, mention_author=False)

    @ticket.command(name="stats", description="Show counts for the tickets open in this server.")
    async def ticket_stats(self, ctx: commands.Context[TicketBot]) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        stats = await self.bot.ticket_service.stats(ctx.guild.id, _role_ids(ctx.author))
        embed = make_embed("Ticket Statistics", f"Open tickets in **{ctx.guild.name}**.")
        embed.add_field(name="Open", value=str(stats.open_tickets), inline=True)
        embed.add_field(name="Claimed", value=str(stats.claimed), inline=True)
        embed.add_field(name="Unclaimed", value=str(stats.unclaimed), inline=True)
        embed.add_field(name="Escalated", value=str(stats.escalated), inline=True)
        embed.add_field(name="Messages", value=str(stats.messages), inline=True)
        oldest = parse_iso(stats.oldest_created_at)
        if oldest:
            embed.add_field(name="Oldest", value=discord.utils.format_dt(oldest, style="R"), inline=True)
        if stats.by_priority:
            embed.add_field(
                name="By Priority",
                value="\n".join(f"{level.title()}: {count}" for level, count in sorted(stats.by_priority.items())),
                inline=False,
            )
        if stats.by_category:
            embed.add_field(
                name="By Category",
                value="\n".join(f"{name}: {count}" for name, count in sorted(stats.by_category.items())),
                inline=False,
            )
        if stats.top_claimers:
            embed.add_field(
                name="Top Support Staff",
                value="\n".join(
                    f"{index}. <@{staff_id}> - {count} ticket(s)"
                    for index, (staff_id, count) in enumerate(stats.top_claimers, start=1)
                ),
                inline=False,
            )
        await ctx.reply(embed=embed, mention_author=False)

    @commands.hybrid_command(name="remind", description="Get reminded about something later, e.g. 30m or 2h.")
    async def remind(self, ctx: commands.Context[TicketBot], duration: str, *, reason: str) -> None:
        message_id = ctx.message.id if ctx.interaction is None else None
        reminder = await self.bot.reminder_service.create_reminder(
            user_id=ctx.author.id,
            channel_id=ctx.channel.id,
            guild_id=ctx.guild.id if ctx.guild else None,
            message_id=message_id,
            reason=reason,
            duration_text=duration,
        )
        remind_at = parse_iso(reminder.remind_at)
        stamp = int(remind_at.timestamp()) if remind_at else 0
        await ctx.reply(
            embed=make_embed(
                "Reminder Set",
                f"**Reason:** {reminder.reason}\n**Remind at:** <t:{stamp}:F> (<t:{stamp}:R>)",
            ),
            mention_author=False,
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
