from __future__ import annotations

import logging

from discord.ext import commands, tasks

from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class AutomationCog(commands.Cog):
    """Periodic sweeps: escalation reminders, inactivity auto-close and user reminders."""

    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot
        scheduler = bot.config.scheduler
        self.escalation_worker.change_interval(seconds=scheduler.escalation_sweep_seconds)
        self.auto_close_worker.change_interval(seconds=scheduler.autoclose_sweep_seconds)
        self.reminder_worker.change_interval(seconds=scheduler.reminder_sweep_seconds)

    async def cog_load(self) -> None:
        self.escalation_worker.start()
        self.auto_close_worker.start()
        self.reminder_worker.start()

    async def cog_unload(self) -> None:
        self.escalation_worker.cancel()
        self.auto_close_worker.cancel()
        self.reminder_worker.cancel()

    @tasks.loop(seconds=3600)
    async def escalation_worker(self) -> None:
        try:
            pinged = await self.bot.escalation_service.sweep()
        except Exception:
            LOGGER.exception("Escalation sweep failed")
            return
        if pinged:
            LOGGER.info("Escalation sweep re-notified %s ticket(s)", pinged)

    @tasks.loop(seconds=60)
    async def auto_close_worker(self) -> None:
        try:
            closed = await self.bot.auto_close_service.sweep()
        except Exception:
            LOGGER.exception("Auto-close sweep failed")
            return
        if closed:
            LOGGER.info("Auto-closed %s inactive ticket(s)", len(closed))

    @tasks.loop(seconds=30)
    async def reminder_worker(self) -> None:
        try:
            await self.bot.reminder_service.sweep()
        except Exception:
            LOGGER.exception("Reminder sweep failed")

    @escalation_worker.before_loop
    @auto_close_worker.before_loop
    @reminder_worker.before_loop
    async def before_workers(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(AutomationCog(bot))
