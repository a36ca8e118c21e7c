from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable

from core.config import SchedulerConfig
from database.models import TicketRecord
from database.repositories import GuildRepository, TicketRepository
from services.cache import CacheBackend
from services.notifier import Notifier
from utils.constants import IMMEDIATE_PING_PRIORITIES, PRIORITY_LABELS, priority_lease_key

LOGGER = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class PriorityScheduler:
    """Owns at most one ping task per ticket.

    Each running task is paired with a lease ``priority_ping:<ticket_id>`` whose
    value is the priority the task was started for. The task stops when the
    lease disappears or changes value, when the ticket row is gone, or when
    :meth:`cancel` cancels it directly.
    """

    def __init__(
        self,
        cache: CacheBackend,
        ticket_repo: TicketRepository,
        guild_repo: GuildRepository,
        notifier: Notifier,
        config: SchedulerConfig,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.ticket_repo = ticket_repo
        self.guild_repo = guild_repo
        self.notifier = notifier
        self.config = config
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    def active_ticket_ids(self) -> list[str]:
        return sorted(ticket_id for ticket_id, task in self._tasks.items() if not task.done())

    def is_running(self, ticket_id: str) -> bool:
        task = self._tasks.get(ticket_id)
        return task is not None and not task.done()

    async def start(self, ticket_id: str, priority: str) -> bool:
        """Replace any running task for ``ticket_id`` with one for ``priority``.

        Priorities without a cadence (``normal``) only clear the lease. Returns
        whether a task was started.
        """
        interval = self.config.interval_for(priority)
        if interval is None:
            await self.cancel(ticket_id)
            return False
        async with self._lock:
            await self._stop_task(ticket_id)
            await self.cache.set(
                priority_lease_key(ticket_id), priority, ttl=self.config.priority_lease_ttl_seconds
            )
            self._spawn(ticket_id, priority, interval, immediate=priority in IMMEDIATE_PING_PRIORITIES)
        LOGGER.info("Priority pings started. ticket=%s priority=%s interval=%ss", ticket_id, priority, interval)
        return True

    async def cancel(self, ticket_id: str) -> None:
        """Delete the lease and stop the task. Safe to call when nothing is running."""
        async with self._lock:
            await self.cache.delete(priority_lease_key(ticket_id))
            await self._stop_task(ticket_id)

    async def resume(self, tickets: Iterable[TicketRecord]) -> int:
        """Restart tasks for tickets whose lease outlived a restart. No immediate ping."""
        resumed = 0
        for ticket in tickets:
            if not ticket.priority:
                continue
            interval = self.config.interval_for(ticket.priority)
            if interval is None:
                continue
            async with self._lock:
                if self.is_running(ticket.id):
                    continue
                lease = await self.cache.get(priority_lease_key(ticket.id))
                if lease != ticket.priority:
                    continue
                self._spawn(ticket.id, ticket.priority, interval, immediate=False)
                resumed += 1
        if resumed:
            LOGGER.info("Resumed %s priority ping tasks", resumed)
        return resumed

    async def shutdown(self) -> None:
        async with self._lock:
            for ticket_id in list(self._tasks):
                await self._stop_task(ticket_id)

    def _spawn(self, ticket_id: str, priority: str, interval: int, *, immediate: bool) -> None:
        task = asyncio.create_task(
            self._run(ticket_id, priority, interval, immediate),
            name=f"priority-ping:{ticket_id}",
        )
        self._tasks[ticket_id] = task

    async def _stop_task(self, ticket_id: str) -> None:
        task = self._tasks.pop(ticket_id, None)
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self, ticket_id: str, priority: str, interval: int, immediate: bool) -> None:
        label = PRIORITY_LABELS[priority]
        key = priority_lease_key(ticket_id)
        try:
            if immediate:
                ticket = await self._fetch_ticket(ticket_id)
                if ticket is None:
                    await self.cache.delete(key)
                    return
                await self._safe_ping(ticket, f"{label} ticket requires attention!")

            while True:
                await self._sleep(interval)
                lease = await self.cache.get(key)
                if lease is None or lease != priority:
                    LOGGER.debug("Lease for ticket %s is gone or replaced; stopping", ticket_id)
                    return
                ticket = await self._fetch_ticket(ticket_id)
                if ticket is None:
                    await self.cache.delete(key)
                    return
                await self._safe_ping(ticket, f"{label} ticket still needs attention!")
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Priority ping task failed for ticket %s; stopping", ticket_id)
        finally:
            if self._tasks.get(ticket_id) is asyncio.current_task():
                self._tasks.pop(ticket_id, None)

    async def _fetch_ticket(self, ticket_id: str) -> TicketRecord | None:
        try:
            return await self.ticket_repo.get_by_id(ticket_id)
        except Exception:
            LOGGER.warning("Ticket re-fetch failed for %s; treating as closed", ticket_id, exc_info=True)
            return None

    async def _safe_ping(self, ticket: TicketRecord, text: str) -> None:
        # Only a missing ticket ends the task; a failed ping waits for the next wake.
        try:
            await self._ping(ticket, text)
        except Exception:
            LOGGER.warning("Priority ping failed for ticket %s; retrying next interval", ticket.id, exc_info=True)

    async def _ping(self, ticket: TicketRecord, text: str) -> None:
        settings = await self.guild_repo.get_settings(ticket.guild_id)
        if settings.ping_role_id is None:
            return
        await self.notifier.send_channel(ticket.channel_id, content=f"<@&{settings.ping_role_id}> {text}")
