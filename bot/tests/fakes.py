from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from core.config import AppConfig
from database.base import Database
from database.models import GuildSettings, TicketCategory, TicketRecord
from database.repositories import (
    BlacklistRepository,
    CategoryRepository,
    EscalationRepository,
    GuildRepository,
    MessageRepository,
    NoteRepository,
    ReminderRepository,
    SupportRoleRepository,
    TicketRepository,
)
from services.cache import MemoryCache
from services.priority_scheduler import PriorityScheduler
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService

GUILD_ID = 10
SUPPORT_ROLE = 300


@dataclass
class SentMessage:
    target: int
    content: str | None
    embed: Any
    files: list[Path] = field(default_factory=list)

    @property
    def title(self) -> str | None:
        return getattr(self.embed, "title", None)

    @property
    def description(self) -> str:
        return getattr(self.embed, "description", None) or ""


class FakeNotifier:
    """Records every outbound message instead of talking to Discord."""

    def __init__(self, support_members: dict[int, list[int]] | None = None) -> None:
        self.channel_messages: list[SentMessage] = []
        self.direct_messages: list[SentMessage] = []
        self.deleted_channels: list[int] = []
        self.support_members = support_members or {}
        self.fail_direct = False

    async def send_channel(
        self, channel_id: int, content: str | None = None, embed: Any = None, files: Sequence[Path] = ()
    ) -> bool:
        self.channel_messages.append(SentMessage(channel_id, content, embed, list(files)))
        return True

    async def send_direct(
        self, user_id: int, content: str | None = None, embed: Any = None, files: Sequence[Path] = ()
    ) -> bool:
        if self.fail_direct:
            return False
        self.direct_messages.append(SentMessage(user_id, content, embed, list(files)))
        return True

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> bool:
        self.deleted_channels.append(channel_id)
        return True

    async def support_member_ids(self, guild_id: int, role_ids: Iterable[int]) -> list[int]:
        return list(self.support_members.get(guild_id, []))

    def channel_contents(self, channel_id: int) -> list[str]:
        return [msg.content or "" for msg in self.channel_messages if msg.target == channel_id]


class ManualSleep:
    """Stand-in for ``asyncio.sleep`` that only wakes sleepers when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + seconds, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while True:
            due = [
                (deadline, future)
                for deadline, future in self._sleepers
                if deadline <= target and not future.done()
            ]
            if not due:
                break
            deadline, future = min(due, key=lambda item: item[0])
            self.now = deadline
            future.set_result(None)
            await settle()
        self._sleepers = [(d, f) for d, f in self._sleepers if not f.done()]
        self.now = target
        await settle()


async def settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeTicketRepo:
    """Dict-backed subset of TicketRepository used by the scheduler."""

    def __init__(self, tickets: Iterable[TicketRecord] = ()) -> None:
        self.tickets = {ticket.id: ticket for ticket in tickets}
        self.fail = False

    async def get_by_id(self, ticket_id: str) -> TicketRecord | None:
        if self.fail:
            raise RuntimeError("database unavailable")
        return self.tickets.get(ticket_id)


class FakeGuildRepo:
    def __init__(self, ping_role_id: int | None = None) -> None:
        self.ping_role_id = ping_role_id
        self.failures = 0

    async def get_settings(self, guild_id: int) -> GuildSettings:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("settings lookup failed")
        return GuildSettings(guild_id=guild_id, ping_role_id=self.ping_role_id)


def make_ticket(ticket_id: str = "t-1", **overrides: Any) -> TicketRecord:
    values: dict[str, Any] = {
        "id": ticket_id,
        "guild_id": GUILD_ID,
        "channel_id": 500,
        "ticket_number": 1,
        "owner_id": 42,
        "created_at": "2024-01-01T12:00:00.000000+00:00",
        "last_activity": "2024-01-01T12:00:00.000000+00:00",
    }
    values.update(overrides)
    return TicketRecord(**values)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@dataclass
class ServiceEnv:
    """Real repositories on a temporary SQLite file wired to fake Discord delivery."""

    db: Database
    config: AppConfig
    notifier: FakeNotifier
    cache: MemoryCache
    clock: FakeClock
    close_sleep: SleepRecorder
    ping_sleep: ManualSleep
    guild_repo: GuildRepository
    support_role_repo: SupportRoleRepository
    ticket_repo: TicketRepository
    message_repo: MessageRepository
    note_repo: NoteRepository
    escalation_repo: EscalationRepository
    reminder_repo: ReminderRepository
    blacklist_repo: BlacklistRepository
    category_repo: CategoryRepository
    scheduler: PriorityScheduler
    service: TicketService

    async def open(
        self,
        owner_id: int = 42,
        guild_id: int = GUILD_ID,
        channel_id: int | None = None,
        category: TicketCategory | None = None,
    ) -> TicketRecord:
        async def open_channel(ticket_number: int) -> int:
            return channel_id if channel_id is not None else 1000 + ticket_number + owner_id

        return await self.service.create_ticket(guild_id, owner_id, open_channel, category=category)

    async def add_support_role(self, role_id: int = SUPPORT_ROLE, guild_id: int = GUILD_ID) -> None:
        await self.support_role_repo.add(guild_id, role_id)


def build_service_env(db: Database, config: AppConfig, notifier: FakeNotifier) -> ServiceEnv:
    cache = MemoryCache()
    clock = FakeClock()
    close_sleep = SleepRecorder()
    ping_sleep = ManualSleep()
    guild_repo = GuildRepository(db)
    ticket_repo = TicketRepository(db)
    scheduler = PriorityScheduler(cache, ticket_repo, guild_repo, notifier, config.scheduler, sleep=ping_sleep)
    env = ServiceEnv(
        db=db,
        config=config,
        notifier=notifier,
        cache=cache,
        clock=clock,
        close_sleep=close_sleep,
        ping_sleep=ping_sleep,
        guild_repo=guild_repo,
        support_role_repo=SupportRoleRepository(db),
        ticket_repo=ticket_repo,
        message_repo=MessageRepository(db),
        note_repo=NoteRepository(db),
        escalation_repo=EscalationRepository(db),
        reminder_repo=ReminderRepository(db),
        blacklist_repo=BlacklistRepository(db),
        category_repo=CategoryRepository(db),
        scheduler=scheduler,
        service=None,  # type: ignore[arg-type]
    )
    deps = TicketServiceDeps(
        guild_repo=env.guild_repo,
        support_role_repo=env.support_role_repo,
        ticket_repo=env.ticket_repo,
        message_repo=env.message_repo,
        note_repo=env.note_repo,
        escalation_repo=env.escalation_repo,
        blacklist_repo=env.blacklist_repo,
        category_repo=env.category_repo,
        cache=cache,
        notifier=notifier,
        scheduler=scheduler,
        transcripts=TranscriptService(config.transcripts),
    )
    env.service = TicketService(config, deps, clock=clock, sleep=close_sleep)
    return env
