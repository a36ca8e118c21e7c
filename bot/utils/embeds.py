from __future__ import annotations

from datetime import UTC, datetime

import discord

from database.models import GuildSettings

PRIORITY_COLORS = {
    "low": discord.Color.from_rgb(149, 165, 166),
    "normal": discord.Color.blurple(),
    "high": discord.Color.gold(),
    "urgent": discord.Color.red(),
}

DEFAULT_PANEL_TITLE = "Support Tickets"
DEFAULT_PANEL_DESCRIPTION = "Press the button below to open a private ticket with the support team."


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def staff_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, color=discord.Color.gold())


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def alert_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, color=discord.Color.red())


def parse_color(value: str | None) -> discord.Color | None:
    if not value:
        return None
    try:
        return discord.Color.from_str(value if value.startswith("#") else f"#{value}")
    except ValueError:
        return None


def panel_embed(settings: GuildSettings) -> discord.Embed:
    return make_embed(
        title=settings.panel_title or DEFAULT_PANEL_TITLE,
        description=settings.panel_description or DEFAULT_PANEL_DESCRIPTION,
        color=parse_color(settings.panel_color),
        footer=settings.panel_footer,
    )
