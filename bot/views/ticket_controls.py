from __future__ import annotations

from typing import TYPE_CHECKING, Any

import discord

from core.errors import ValidationError, handle_view_error
from utils.embeds import staff_embed, success_embed

if TYPE_CHECKING:
    from core.bot import TicketBot


def _role_ids(member: discord.Member) -> list[int]:
    return [role.id for role in member.roles]


def _require_member(interaction: discord.Interaction) -> discord.Member:
    if not interaction.guild or not isinstance(interaction.user, discord.Member) or interaction.channel is None:
        raise ValidationError("Guild context is required.")
    return interaction.user


class CloseReasonModal(discord.ui.Modal, title="Close Ticket"):
    reason = discord.ui.TextInput(
        label="Close Reason",
        placeholder="Optional reason shown in the log channel",
        style=discord.TextStyle.long,
        max_length=1024,
        required=False,
    )

    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=300)
        self.bot = bot

    async def on_submit(self, interaction: discord.Interaction) -> None:
        member = _require_member(interaction)
        ticket = await self.bot.ticket_service.get_by_channel(interaction.channel_id or 0)
        if member.id != ticket.owner_id:
            await self.bot.ticket_service.require_support(ticket.guild_id, _role_ids(member))
        await interaction.response.send_message(
            embed=success_embed(
                f"Ticket closed by {member.mention}. "
                f"This channel will be deleted in {self.bot.config.tickets.close_delay_seconds:g} seconds."
            )
        )
        await self.bot.ticket_service.close_ticket(
            ticket,
            member.id,
            _role_ids(member),
            reason=str(self.reason).strip() or None,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await handle_view_error(interaction, error, self.reason)


class TicketControlsView(discord.ui.View):
    """Buttons attached to the welcome message of every ticket. Stateless, so one instance serves all tickets."""

    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(label="Claim", style=discord.ButtonStyle.success, custom_id="ticket:claim")
    async def claim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        member = _require_member(interaction)
        ticket = await self.bot.ticket_service.get_by_channel(interaction.channel_id or 0)
        await self.bot.ticket_service.claim(ticket, member.id, _role_ids(member))
        await interaction.response.send_message(
            embed=staff_embed("Ticket Claimed", f"This ticket has been claimed by {member.mention}.")
        )

    @discord.ui.button(label="Close", style=discord.ButtonStyle.danger, custom_id="ticket:close")
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        _require_member(interaction)
        await self.bot.ticket_service.get_by_channel(interaction.channel_id or 0)
        await interaction.response.send_modal(CloseReasonModal(self.bot))

    @discord.ui.button(label="Escalate", style=discord.ButtonStyle.secondary, custom_id="ticket:escalate")
    async def escalate_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        member = _require_member(interaction)
        ticket = await self.bot.ticket_service.get_by_channel(interaction.channel_id or 0)
        await interaction.response.defer(ephemeral=True, thinking=True)
        reached = await self.bot.ticket_service.escalate(ticket, member.id)
        await interaction.followup.send(
            embed=success_embed(f"Ticket escalated. {reached} support member(s) were notified."),
            ephemeral=True,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[Any]) -> None:
        await handle_view_error(interaction, error, item)
