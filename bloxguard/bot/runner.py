"""
bloxguard.bot.runner — Bot lifecycle owned by the process
==========================================================

The dashboard can ask for a full bot restart (``POST /api/bot/reset``).
A closed ``discord.Client`` can't be reused, so :class:`BotRunner` owns
the current :class:`BloxGuardBot` and swaps in a fresh one on restart.
Detection state lives on the bot, so a restart also resets it.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import Engine

from bloxguard.bot.core import BloxGuardBot
from bloxguard.config import BloxGuardConfig
from bloxguard.services.roblox import RobloxClient

logger = logging.getLogger(__name__)


class BotRunner:
    def __init__(
        self,
        cfg: BloxGuardConfig,
        engine: Engine,
        roblox: RobloxClient,
        token: str,
    ) -> None:
        self.cfg = cfg
        self.engine = engine
        self.roblox = roblox
        self._token = token
        self._bot: BloxGuardBot | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def bot(self) -> BloxGuardBot | None:
        return self._bot

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        async with self._lock:
            if self.is_running:
                return
            self._bot = BloxGuardBot(cfg=self.cfg, engine=self.engine, roblox=self.roblox)
            self._task = asyncio.get_running_loop().create_task(
                self._bot.start(self._token), name="bloxguard-bot",
            )
            self._task.add_done_callback(self._on_done)
            logger.info("Bot starting…")

    async def stop(self) -> None:
        async with self._lock:
            bot, task = self._bot, self._task
            self._task = None
            if bot is not None and not bot.is_closed():
                await bot.close()
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("Bot stopped")

    async def restart(self) -> None:
        logger.info("Restarting bot…")
        await self.stop()
        await self.start()

    def apply_settings(self, settings: dict) -> None:
        """Push dashboard bot settings into the live bot, if any."""
        if self._bot is not None:
            self._bot.apply_bot_settings(settings)

    @staticmethod
    def _on_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Bot task exited with an error", exc_info=exc)
