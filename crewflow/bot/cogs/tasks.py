"""
crewflow.bot.cogs.tasks — Periodic Background Tasks
=====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Event reminders** — every ``reminder_sweep_minutes`` (default 10),
  sends reminders whose fire time lands in the current window.

These tasks fire in the bot process (not a separate worker) to keep
the deployment simple.  They run via ``run_db()`` to avoid blocking
the event loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from crewflow.database.engine import run_db
from crewflow.services.reminder_service import send_event_reminders

if TYPE_CHECKING:
    from crewflow.bot.core import CrewflowBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background tasks."""

    def __init__(self, bot: CrewflowBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.reminder_loop.change_interval(minutes=self.bot.cfg.reminder_sweep_minutes)
        self.reminder_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.reminder_loop.cancel()

    # -------------------------------------------------------------------
    # Event reminders
    # -------------------------------------------------------------------
    @tasks.loop(minutes=10)
    async def reminder_loop(self):
        """Sweep unsent reminders and deliver the ones that are due."""
        try:
            result = await run_db(send_event_reminders, self.bot.store, self.bot.dispatcher)
            if result.due:
                logger.info(
                    "Reminder task complete: due=%d sent=%d", result.due, result.sent,
                )
        except Exception:
            logger.exception("Reminder task failed", extra={"task": "event_reminders"})

    @reminder_loop.before_loop
    async def _wait_reminders(self):
        await self.bot.wait_until_ready()


async def setup(bot: CrewflowBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
