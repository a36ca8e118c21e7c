from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    BlacklistRepository,
    CategoryRepository,
    EscalationRepository,
    GuildRepository,
    MessageRepository,
    NoteRepository,
    ReminderRepository,
    SupportRoleRepository,
    TagRepository,
    TicketRepository,
)
from services.automation_service import AutoCloseService
from services.cache import CacheBackend, build_cache
from services.edit_session import EditSessionLock
from services.escalation_service import EscalationService
from services.notifier import DiscordNotifier
from services.priority_scheduler import PriorityScheduler
from services.reminder_service import ReminderService
from services.tag_service import TagService
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService

LOGGER = logging.getLogger(__name__)


class TicketBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=config.discord.allowed_mentions_everyone,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None
        self.notifier = DiscordNotifier(self)

        # Repositories and services are initialized during setup_hook.
        self.guild_repo: GuildRepository
        self.support_role_repo: SupportRoleRepository
        self.ticket_repo: TicketRepository
        self.message_repo: MessageRepository
        self.note_repo: NoteRepository
        self.escalation_repo: EscalationRepository
        self.reminder_repo: ReminderRepository
        self.blacklist_repo: BlacklistRepository
        self.category_repo: CategoryRepository
        self.tag_repo: TagRepository

        self.scheduler: PriorityScheduler
        self.ticket_service: TicketService
        self.transcript_service: TranscriptService
        self.escalation_service: EscalationService
        self.auto_close_service: AutoCloseService
        self.reminder_service: ReminderService
        self.tag_service: TagService
        self.edit_sessions: EditSessionLock

    async def setup_hook(self) -> None:
        await self.database.connect()
        applied = await run_migrations(self.database)
        if applied:
            LOGGER.info("Applied migrations: %s", ", ".join(applied))
        self.cache = await build_cache(self.config.redis)

        self.guild_repo = GuildRepository(self.database)
        self.support_role_repo = SupportRoleRepository(self.database)
        self.ticket_repo = TicketRepository(self.database)
        self.message_repo = MessageRepository(self.database)
        self.note_repo = NoteRepository(self.database)
        self.escalation_repo = EscalationRepository(self.database)
        self.reminder_repo = ReminderRepository(self.database)
        self.blacklist_repo = BlacklistRepository(self.database)
        self.category_repo = CategoryRepository(self.database)
        self.tag_repo = TagRepository(self.database)

        self.scheduler = PriorityScheduler(
            self.cache, self.ticket_repo, self.guild_repo, self.notifier, self.config.scheduler
        )
        self.transcript_service = TranscriptService(self.config.transcripts)
        deps = TicketServiceDeps(
            guild_repo=self.guild_repo,
            support_role_repo=self.support_role_repo,
            ticket_repo=self.ticket_repo,
            message_repo=self.message_repo,
            note_repo=self.note_repo,
            escalation_repo=self.escalation_repo,
            blacklist_repo=self.blacklist_repo,
            category_repo=self.category_repo,
            cache=self.cache,
            notifier=self.notifier,
            scheduler=self.scheduler,
            transcripts=self.transcript_service,
        )
        self.ticket_service = TicketService(self.config, deps)
        self.escalation_service = EscalationService(
            self.escalation_repo,
            self.ticket_repo,
            self.support_role_repo,
            self.notifier,
            self.config.scheduler,
        )
        self.auto_close_service = AutoCloseService(
            self.ticket_repo, self.guild_repo, self.ticket_service, self.notifier, self.config.tickets
        )
        self.reminder_service = ReminderService(self.reminder_repo, self.notifier)
        self.tag_service = TagService(self.tag_repo)
        self.edit_sessions = EditSessionLock(self.cache, self.config.scheduler.edit_session_ttl_seconds)

        resumed = await self.scheduler.resume(await self.ticket_repo.list_with_scheduled_priority())
        LOGGER.info("Resumed %s priority ping task(s)", resumed)

        await self._load_extensions()

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def _load_extensions(self) -> None:
        for ext in self.config.enabled_extensions:
            try:
                await self.load_extension(ext)
                LOGGER.info("Loaded extension: %s", ext)
            except commands.ExtensionAlreadyLoaded:
                LOGGER.warning("Extension already loaded: %s", ext)
            except commands.ExtensionError:
                LOGGER.exception("Failed to load extension: %s", ext)

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        if hasattr(self, "scheduler"):
            await self.scheduler.shutdown()
        await super().close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
