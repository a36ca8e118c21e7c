from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import ValidationError
from database.models import Tag
from utils.embeds import make_embed, success_embed
from utils.time import parse_iso

LOGGER = logging.getLogger(__name__)

LIST_LIMIT = 25


def _can_manage(member: discord.abc.User) -> bool:
    return isinstance(member, discord.Member) and member.guild_permissions.manage_guild


def _tag_lines(tags: list[Tag]) -> str:
    return "\n".join(f"`{tag.name}` (uses: {tag.uses})" for tag in tags[:LIST_LIMIT])


def _stamp(value: str) -> str:
    moment = parse_iso(value)
    return discord.utils.format_dt(moment, style="R") if moment else "Unknown"


class TagsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @staticmethod
    def _guild_id(ctx: commands.Context[TicketBot]) -> int:
        if not ctx.guild:
            raise ValidationError("Tags only work inside a server.")
        return ctx.guild.id

    @commands.hybrid_group(name="tag", with_app_command=True, description="Saved replies for common questions.")
    async def tag(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Tag Commands",
                    "`/tag use <name>` to post a tag\n"
                    "`/tag create <name> <content>` and `/tag edit <name> <content>`\n"
                    "`/tag rename <old> <new>` and `/tag delete <name>`\n"
                    "`/tag info <name>` and `/tag raw <name>`\n"
                    "`/tag list`, `/tag search <query>` and `/tag popular`",
                ),
                mention_author=False,
            )

    @tag.command(name="use", description="Post a saved tag.")
    async def tag_use(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        tag = await self.bot.tag_service.use_tag(self._guild_id(ctx), name)
        await ctx.send(embed=make_embed(tag.name, tag.content))

    @tag.command(name="create", description="Save a new tag.")
    async def tag_create(self, ctx: commands.Context[TicketBot], name: str, *, content: str) -> None:
        tag = await self.bot.tag_service.create_tag(self._guild_id(ctx), name, content, ctx.author.id)
        await ctx.reply(embed=success_embed(f"Tag `{tag.name}` has been created."), mention_author=False)

    @tag.command(name="edit", description="Replace the content of a tag you created.")
    async def tag_edit(self, ctx: commands.Context[TicketBot], name: str, *, content: str) -> None:
        tag = await self.bot.tag_service.edit_tag(
            self._guild_id(ctx), name, content, ctx.author.id, is_admin=_can_manage(ctx.author)
        )
        await ctx.reply(embed=success_embed(f"Tag `{tag.name}` has been updated."), mention_author=False)

    @tag.command(name="rename", description="Rename a tag you created.")
    async def tag_rename(self, ctx: commands.Context[TicketBot], old_name: str, new_name: str) -> None:
        tag = await self.bot.tag_service.rename_tag(
            self._guild_id(ctx), old_name, new_name, ctx.author.id, is_admin=_can_manage(ctx.author)
        )
        await ctx.reply(
            embed=success_embed(f"Tag `{old_name.strip()}` has been renamed to `{tag.name}`."),
            mention_author=False,
        )

    @tag.command(name="delete", description="Delete a tag you created.")
    async def tag_delete(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        await self.bot.tag_service.delete_tag(
            self._guild_id(ctx), name, ctx.author.id, is_admin=_can_manage(ctx.author)
        )
        await ctx.reply(embed=success_embed(f"Tag `{name.strip()}` has been deleted."), mention_author=False)

    @tag.command(name="info", description="Show who made a tag and how often it is used.")
    async def tag_info(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        tag = await self.bot.tag_service.get_tag(self._guild_id(ctx), name)
        embed = make_embed(
            f"Tag: {tag.name}",
            f"**Creator:** <@{tag.creator_id}>\n"
            f"**Uses:** {tag.uses}\n"
            f"**Created:** {_stamp(tag.created_at)}\n"
            f"**Updated:** {_stamp(tag.updated_at)}",
        )
        await ctx.reply(embed=embed, mention_author=False)

    @tag.command(name="raw", description="Show a tag's markdown source.")
    async def tag_raw(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        tag = await self.bot.tag_service.get_tag(self._guild_id(ctx), name)
        source = tag.content.replace("```", "\\`\\`\\`")
        await ctx.reply(f"```\n{source}\n```", mention_author=False)

    @tag.command(name="list", description="List the tags in this server.")
    async def tag_list(self, ctx: commands.Context[TicketBot]) -> None:
        tags = await self.bot.tag_service.list_tags(self._guild_id(ctx))
        if not tags:
            raise ValidationError("There are no tags in this server.")
        await ctx.reply(embed=make_embed(f"Tags ({len(tags)} total)", _tag_lines(tags)), mention_author=False)

    @tag.command(name="search", description="Find tags by name or content.")
    async def tag_search(self, ctx: commands.Context[TicketBot], *, query: str) -> None:
        tags = await self.bot.tag_service.search_tags(self._guild_id(ctx), query)
        if not tags:
            raise ValidationError(f"No tags found matching `{query.strip()}`.")
        await ctx.reply(embed=make_embed(f"Search Results ({len(tags)})", _tag_lines(tags)), mention_author=False)

    @tag.command(name="popular", description="Show the most used tags.")
    async def tag_popular(self, ctx: commands.Context[TicketBot]) -> None:
        tags = await self.bot.tag_service.popular_tags(self._guild_id(ctx))
        if not tags:
            raise ValidationError("There are no tags in this server.")
        lines = "\n".join(f"`{tag.name}` - {tag.uses} uses" for tag in tags)
        await ctx.reply(embed=make_embed("Most Popular Tags", lines), mention_author=False)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TagsCog(bot))
