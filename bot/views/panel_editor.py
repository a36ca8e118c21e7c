from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from core.errors import ValidationError, handle_view_error
from utils.embeds import (
    DEFAULT_PANEL_DESCRIPTION,
    DEFAULT_PANEL_TITLE,
    make_embed,
    panel_embed,
    parse_color,
    success_embed,
)
from views.ticket_panel import TicketPanelView

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class PanelTextModal(discord.ui.Modal, title="Edit Panel Embed"):
    panel_title = discord.ui.TextInput(label="Title", placeholder=DEFAULT_PANEL_TITLE, max_length=256)
    panel_description = discord.ui.TextInput(
        label="Description",
        placeholder=DEFAULT_PANEL_DESCRIPTION,
        style=discord.TextStyle.long,
        max_length=2000,
    )

    def __init__(self, bot: TicketBot, guild_id: int) -> None:
        super().__init__(timeout=600)
        self.bot = bot
        self.guild_id = guild_id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.bot.edit_sessions.require_active(interaction.user.id)
        title = str(self.panel_title).strip()
        await self.bot.guild_repo.update_settings(
            self.guild_id,
            panel_title=title,
            panel_description=str(self.panel_description).strip(),
        )
        LOGGER.info("Panel text updated. guild=%s operator=%s", self.guild_id, interaction.user.id)
        await interaction.response.send_message(
            embed=success_embed(f"Panel embed updated.\n\n**Title:** {title}"),
            ephemeral=True,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await handle_view_error(interaction, error, self.panel_title)


class PanelAdvancedModal(discord.ui.Modal, title="Advanced Embed Options"):
    panel_color = discord.ui.TextInput(label="Color (Hex)", placeholder="#5865F2", required=False, max_length=7)
    panel_footer = discord.ui.TextInput(label="Footer", placeholder="Powered by Ticket Bot", required=False, max_length=2048)

    def __init__(self, bot: TicketBot, guild_id: int) -> None:
        super().__init__(timeout=600)
        self.bot = bot
        self.guild_id = guild_id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.bot.edit_sessions.require_active(interaction.user.id)
        color = str(self.panel_color).strip()
        if color and parse_color(color) is None:
            raise ValidationError("Colors must be hex values like `#5865F2`.")
        await self.bot.guild_repo.update_settings(
            self.guild_id,
            panel_color=color or None,
            panel_footer=str(self.panel_footer).strip() or None,
        )
        await self.bot.edit_sessions.release(interaction.user.id)
        await interaction.response.send_message(
            embed=success_embed("Advanced options saved. Your editing session has ended."),
            ephemeral=True,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await handle_view_error(interaction, error, self.panel_color)


class PanelEditorView(discord.ui.View):
    """Ephemeral editor bound to one operator. Editing is guarded by a per-operator session lease."""

    def __init__(self, bot: TicketBot, guild_id: int, operator_id: int) -> None:
        super().__init__(timeout=bot.config.scheduler.edit_session_ttl_seconds)
        self.bot = bot
        self.guild_id = guild_id
        self.operator_id = operator_id

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.operator_id:
            await interaction.response.send_message(
                embed=make_embed("Not yours", "Only the operator who opened this editor can use it."),
                ephemeral=True,
            )
            return False
        return True

    @discord.ui.button(label="Edit Embed", style=discord.ButtonStyle.primary)
    async def edit_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self.bot.edit_sessions.acquire(self.operator_id)
        await interaction.response.send_modal(PanelTextModal(self.bot, self.guild_id))

    @discord.ui.button(label="Advanced", style=discord.ButtonStyle.secondary)
    async def advanced_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self.bot.edit_sessions.require_active(self.operator_id)
        await interaction.response.send_modal(PanelAdvancedModal(self.bot, self.guild_id))

    @discord.ui.button(label="Send Here", style=discord.ButtonStyle.success)
    async def send_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        if not isinstance(interaction.channel, discord.abc.Messageable):
            raise ValidationError("This channel cannot hold a panel.")
        settings = await self.bot.guild_repo.get_settings(self.guild_id)
        message = await interaction.channel.send(embed=panel_embed(settings), view=TicketPanelView(self.bot))
        await self.bot.edit_sessions.release(self.operator_id)
        LOGGER.info("Panel sent. guild=%s channel=%s message=%s", self.guild_id, message.channel.id, message.id)
        self.stop()
        await interaction.response.edit_message(
            embed=success_embed(f"Panel has been sent to <#{message.channel.id}>"), view=None
        )

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.danger)
    async def cancel_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self.bot.edit_sessions.release(self.operator_id)
        self.stop()
        await interaction.response.edit_message(
            embed=make_embed("Cancelled", "Panel editing cancelled.", color=discord.Color.light_grey()),
            view=None,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[Any]) -> None:
        await handle_view_error(interaction, error, item)
