from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from core.errors import PermissionDeniedError, ValidationError
from database.models import Tag
from database.repositories import TagRepository
from utils.time import to_iso, utc_now

LOGGER = logging.getLogger(__name__)

MAX_TAG_NAME_LENGTH = 100
MAX_TAG_CONTENT_LENGTH = 2000
POPULAR_TAG_LIMIT = 10


class TagService:
    """Saved text snippets staff can post by name. Names are unique per guild, ignoring case."""

    def __init__(self, tag_repo: TagRepository, clock: Callable[[], datetime] = utc_now) -> None:
        self.tag_repo = tag_repo
        self._clock = clock

    def _now_iso(self) -> str:
        return to_iso(self._clock()) or ""

    @staticmethod
    def _clean_name(name: str) -> str:
        name = name.strip()
        if not name:
            raise ValidationError("Tag names cannot be empty.")
        if len(name) > MAX_TAG_NAME_LENGTH:
            raise ValidationError(f"Tag names are limited to {MAX_TAG_NAME_LENGTH} characters.")
        return name

    @staticmethod
    def _clean_content(content: str) -> str:
        content = content.strip()
        if not content:
            raise ValidationError("Tag content cannot be empty.")
        if len(content) > MAX_TAG_CONTENT_LENGTH:
            raise ValidationError(f"Tag content is limited to {MAX_TAG_CONTENT_LENGTH} characters.")
        return content

    async def get_tag(self, guild_id: int, name: str) -> Tag:
        tag = await self.tag_repo.get(guild_id, name.strip())
        if tag is None:
            raise ValidationError(f"Tag `{name.strip()}` does not exist.")
        return tag

    async def _owned_tag(self, guild_id: int, name: str, actor_id: int, is_admin: bool) -> Tag:
        tag = await self.get_tag(guild_id, name)
        if tag.creator_id != actor_id and not is_admin:
            raise PermissionDeniedError("You can only change tags you created.")
        return tag

    async def create_tag(self, guild_id: int, name: str, content: str, creator_id: int) -> Tag:
        name = self._clean_name(name)
        content = self._clean_content(content)
        if await self.tag_repo.get(guild_id, name) is not None:
            raise ValidationError(f"Tag `{name}` already exists.")
        now = self._now_iso()
        tag = Tag(
            id=str(uuid4()),
            guild_id=guild_id,
            name=name,
            content=content,
            creator_id=creator_id,
            created_at=now,
            updated_at=now,
        )
        await self.tag_repo.create(tag)
        LOGGER.info("Tag created. guild=%s tag=%s creator=%s", guild_id, name, creator_id)
        return tag

    async def edit_tag(self, guild_id: int, name: str, content: str, actor_id: int, is_admin: bool = False) -> Tag:
        tag = await self._owned_tag(guild_id, name, actor_id, is_admin)
        content = self._clean_content(content)
        now = self._now_iso()
        await self.tag_repo.update_content(tag.id, content, now)
        tag.content = content
        tag.updated_at = now
        return tag

    async def rename_tag(
        self, guild_id: int, old_name: str, new_name: str, actor_id: int, is_admin: bool = False
    ) -> Tag:
        tag = await self._owned_tag(guild_id, old_name, actor_id, is_admin)
        new_name = self._clean_name(new_name)
        clash = await self.tag_repo.get(guild_id, new_name)
        if clash is not None and clash.id != tag.id:
            raise ValidationError(f"Tag `{new_name}` already exists.")
        now = self._now_iso()
        await self.tag_repo.rename(tag.id, new_name, now)
        LOGGER.info("Tag renamed. guild=%s from=%s to=%s", guild_id, tag.name, new_name)
        tag.name = new_name
        tag.updated_at = now
        return tag

    async def delete_tag(self, guild_id: int, name: str, actor_id: int, is_admin: bool = False) -> None:
        tag = await self._owned_tag(guild_id, name, actor_id, is_admin)
        await self.tag_repo.delete(tag.id)
        LOGGER.info("Tag deleted. guild=%s tag=%s actor=%s", guild_id, tag.name, actor_id)

    async def use_tag(self, guild_id: int, name: str) -> Tag:
        """Fetch a tag for posting and count the use."""
        tag = await self.get_tag(guild_id, name)
        await self.tag_repo.increment_uses(tag.id)
        tag.uses += 1
        return tag

    async def list_tags(self, guild_id: int) -> list[Tag]:
        return await self.tag_repo.list_for_guild(guild_id)

    async def search_tags(self, guild_id: int, query: str) -> list[Tag]:
        query = query.strip()
        if not query:
            raise ValidationError("Search for at least one character.")
        return await self.tag_repo.search(guild_id, query)

    async def popular_tags(self, guild_id: int) -> list[Tag]:
        return await self.tag_repo.popular(guild_id, POPULAR_TAG_LIMIT)
