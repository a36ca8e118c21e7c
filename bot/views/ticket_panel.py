from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from core.errors import ValidationError, handle_view_error
from utils.embeds import make_embed, success_embed
from views.ticket_controls import TicketControlsView

if TYPE_CHECKING:
    from core.bot import TicketBot
    from database.models import TicketCategory, TicketRecord

LOGGER = logging.getLogger(__name__)


async def _ticket_overwrites(
    bot: TicketBot, guild: discord.Guild, owner: discord.Member
) -> dict[discord.Role | discord.Member, discord.PermissionOverwrite]:
    overwrites: dict[discord.Role | discord.Member, discord.PermissionOverwrite] = {
        guild.default_role: discord.PermissionOverwrite(view_channel=False),
        owner: discord.PermissionOverwrite(
            view_channel=True, send_messages=True, read_message_history=True, attach_files=True
        ),
        guild.me: discord.PermissionOverwrite(
            view_channel=True, send_messages=True, read_message_history=True, manage_channels=True
        ),
    }
    for role_id in await bot.support_role_repo.list_role_ids(guild.id):
        role = guild.get_role(role_id)
        if role is not None:
            overwrites[role] = discord.PermissionOverwrite(
                view_channel=True, send_messages=True, read_message_history=True
            )
    return overwrites


async def open_ticket(
    bot: TicketBot,
    guild: discord.Guild,
    owner: discord.Member,
    ticket_category: TicketCategory | None = None,
) -> TicketRecord:
    """Create the private channel and the ticket row, then post the welcome message."""
    settings = await bot.guild_repo.get_settings(guild.id)
    parent = guild.get_channel(settings.ticket_category_id) if settings.ticket_category_id else None
    if not isinstance(parent, discord.CategoryChannel):
        parent = None
    created: list[discord.TextChannel] = []

    async def open_channel(ticket_number: int) -> int:
        channel = await guild.create_text_channel(
            name=f"{bot.config.tickets.channel_prefix}-{ticket_number}",
            category=parent,
            overwrites=await _ticket_overwrites(bot, guild, owner),
            reason=f"Ticket opened by {owner} ({owner.id})",
        )
        created.append(channel)
        return channel.id

    try:
        ticket = await bot.ticket_service.create_ticket(
            guild.id,
            owner.id,
            open_channel,
            category_id=parent.id if parent else None,
            category=ticket_category,
        )
    except Exception:
        for channel in created:
            await channel.delete(reason="Ticket creation failed")
        raise

    channel = created[0]
    embed = make_embed(
        f"Ticket #{ticket.ticket_number}",
        f"Welcome {owner.mention}!\n\nA support team member will be with you shortly.\n"
        "To close this ticket, press **Close** or use `/ticket close`.",
    )
    if ticket_category is not None:
        embed.add_field(name="Category", value=ticket_category.label, inline=True)
    if guild.icon:
        embed.set_thumbnail(url=guild.icon.url)
    content = f"<@&{settings.ping_role_id}>" if settings.ping_role_id else None
    message = await channel.send(content=content, embed=embed, view=TicketControlsView(bot))
    return await bot.ticket_service.set_opening_message(ticket, message.id)


class TicketCategorySelect(discord.ui.Select["TicketCategoryView"]):
    def __init__(self, bot: TicketBot, categories: list[TicketCategory]) -> None:
        options = [
            discord.SelectOption(
                label=category.label[:100],
                value=category.id,
                description=category.description[:100] if category.description else None,
            )
            for category in categories[:25]
        ]
        super().__init__(placeholder="Select ticket category", options=options, min_values=1, max_values=1)
        self.bot = bot
        self.categories = {category.id: category for category in categories}

    async def callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            raise ValidationError("Guild context is required.")
        category = self.categories.get(self.values[0])
        if category is None:
            raise ValidationError("Invalid category selected.")
        await interaction.response.defer(ephemeral=True, thinking=True)
        ticket = await open_ticket(self.bot, interaction.guild, interaction.user, category)
        await interaction.followup.send(
            embed=success_embed(f"Ticket created: <#{ticket.channel_id}>"),
            ephemeral=True,
        )


class TicketCategoryView(discord.ui.View):
    def __init__(self, bot: TicketBot, categories: list[TicketCategory]) -> None:
        super().__init__(timeout=300)
        self.add_item(TicketCategorySelect(bot, categories))

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[Any]) -> None:
        await handle_view_error(interaction, error, item)


class TicketPanelView(discord.ui.View):
    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(
        label="Create Ticket",
        style=discord.ButtonStyle.primary,
        emoji="🎫",
        custom_id="ticket:create",
    )
    async def create_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            raise ValidationError("Guild context is required.")
        categories = await self.bot.ticket_service.list_categories(interaction.guild.id)
        if categories:
            await interaction.response.send_message(
                "Select a category to continue:",
                view=TicketCategoryView(self.bot, categories),
                ephemeral=True,
            )
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        ticket = await open_ticket(self.bot, interaction.guild, interaction.user)
        await interaction.followup.send(
            embed=success_embed(f"Ticket created: <#{ticket.channel_id}>"),
            ephemeral=True,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[Any]) -> None:
        await handle_view_error(interaction, error, item)
