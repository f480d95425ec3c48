"""
bloxguard.bot.cogs.tasks — Periodic maintenance
================================================

Hourly sweep on a ``discord.ext.tasks`` loop:

- deletes expired pending verifications (``/checkverify`` also discards
  them lazily, this catches codes nobody came back for);
- drops detection-window entries that have aged out, so the trackers
  don't grow with every member who ever deleted a channel.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from bloxguard.database.engine import run_db
from bloxguard.services.verification_service import purge_expired_pending

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.sweep_loop.start()

    async def cog_unload(self) -> None:
        self.sweep_loop.cancel()

    @tasks.loop(hours=1)
    async def sweep_loop(self):
        try:
            purged = await run_db(purge_expired_pending, self.bot.engine)
        except Exception:
            logger.exception("Pending verification purge failed", extra={"task": "sweep"})
            purged = 0

        dropped = sum(tracker.sweep() for tracker in self.bot.window_trackers)
        if purged or dropped:
            logger.info(
                "Sweep: %d expired verification(s), %d stale window key(s)", purged, dropped,
            )

    @sweep_loop.before_loop
    async def _wait_sweep(self):
        await self.bot.wait_until_ready()


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
