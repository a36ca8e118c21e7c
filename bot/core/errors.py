from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred. Please try again later."


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class TicketLimitReachedError(BotError):
    user_message: str = "You reached the maximum open ticket limit."


@dataclass(slots=True)
class TicketNotFoundError(BotError):
    user_message: str = "This channel is not a ticket."


@dataclass(slots=True)
class TicketStateError(BotError):
    user_message: str = "The ticket is not in a valid state for this action."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class BlacklistedError(BotError):
    user_message: str = "You are blacklisted from creating tickets."


@dataclass(slots=True)
class EditSessionActiveError(BotError):
    user_message: str = (
        "You already have an active editing session. "
        "Finish or cancel it before starting a new one."
    )


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _unwrap(error: Exception) -> Exception:
    original = getattr(error, "original", None)
    if isinstance(original, Exception):
        return _unwrap(original)
    return error


def humanize_error(error: Exception) -> str:
    error = _unwrap(error)
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
        return "Command argument was invalid."
    return GENERIC_ERROR_MESSAGE


def _is_expected(error: Exception) -> bool:
    return isinstance(
        _unwrap(error),
        (BotError, commands.CheckFailure, commands.UserInputError, app_commands.CheckFailure),
    )


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    if isinstance(error, commands.CommandNotFound):
        return
    message = humanize_error(error)
    log = LOGGER.info if _is_expected(error) else LOGGER.exception
    log(
        "Prefix command failed. command=%s guild=%s user=%s",
        getattr(ctx.command, "qualified_name", None),
        getattr(ctx.guild, "id", None),
        ctx.author.id,
        exc_info=error,
    )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    message = humanize_error(error)
    log = LOGGER.info if _is_expected(error) else LOGGER.exception
    log(
        "Slash command failed. command=%s guild=%s user=%s",
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
        exc_info=error,
    )
    await send_error_response(interaction, message)


async def handle_view_error(
    interaction: discord.Interaction[commands.Bot], error: Exception, item: discord.ui.Item[Any]
) -> None:
    message = humanize_error(error)
    log = LOGGER.info if _is_expected(error) else LOGGER.exception
    log(
        "Component interaction failed. custom_id=%s guild=%s user=%s",
        getattr(item, "custom_id", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
        exc_info=error,
    )
    await send_error_response(interaction, message)
