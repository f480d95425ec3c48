"""
bloxguard.bot.core — Bot Instance & Cog Loader
===============================================

Defines :class:`BloxGuardBot`, a ``commands.Bot`` subclass that:

1. Carries the shared config (``bot.cfg``), DB engine (``bot.engine``),
   Roblox client (``bot.roblox``) and the in-memory detection trackers,
   so every Cog reaches them via ``self.bot.*``.  Nothing is a module
   global: a restarted bot gets fresh trackers.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Registers every guild it can see, so settings exist before the first
   event arrives.
5. Answers failed permission checks with an ephemeral message.
"""

from __future__ import annotations

import logging
import os

import discord
from discord import app_commands
from discord.ext import commands
from sqlalchemy import Engine

from bloxguard.config import BloxGuardConfig
from bloxguard.constants import (
    NUKE_THRESHOLD,
    NUKE_TIMEFRAME_SECONDS,
    PERMISSION_THRESHOLD,
    PERMISSION_TIMEFRAME_SECONDS,
)
from bloxguard.database.engine import run_db
from bloxguard.database.models import SecuritySettings
from bloxguard.database.seed import ensure_server
from bloxguard.engine.raid import RaidTracker
from bloxguard.engine.windows import ActorWindowTracker
from bloxguard.services.roblox import RobloxClient
from bloxguard.services.settings_service import get_bot_settings, get_security_settings

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "bloxguard.bot.cogs.membership",
    "bloxguard.bot.cogs.anti_nuke",
    "bloxguard.bot.cogs.anti_hack",
    "bloxguard.bot.cogs.anti_raid",
    "bloxguard.bot.cogs.website_filter",
    "bloxguard.bot.cogs.verification",
    "bloxguard.bot.cogs.tickets",
    "bloxguard.bot.cogs.security",
    "bloxguard.bot.cogs.promotion",
    "bloxguard.bot.cogs.tasks",
]


def _dynamic_prefix(bot: BloxGuardBot, message: discord.Message):
    return commands.when_mentioned_or(bot.text_prefix)(bot, message)


class BloxGuardBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`BloxGuardConfig` from ``config.yaml``.
    engine:
        SQLAlchemy :class:`Engine` shared with the dashboard API.
    roblox:
        Roblox API client shared with the dashboard API.
    """

    def __init__(self, cfg: BloxGuardConfig, engine: Engine, roblox: RobloxClient) -> None:
        # Privileged intents (must be enabled in the Developer Portal):
        #   MESSAGE_CONTENT — website filter reads message text
        #   GUILD_MEMBERS   — join bursts, role stripping, member counts
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=_dynamic_prefix,
            intents=intents,
            description="BloxGuard — security and Roblox verification",
        )

        self.cfg = cfg
        self.engine = engine
        self.roblox = roblox
        self.text_prefix: str = cfg.bot_prefix
        self.delete_commands: bool = cfg.delete_commands

        # Detection state, one tracker per event kind
        self.channel_deletions = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
        self.role_deletions = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
        self.bans = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
        self.permission_grants = ActorWindowTracker(
            PERMISSION_THRESHOLD, PERMISSION_TIMEFRAME_SECONDS,
        )
        self.raids = RaidTracker()

    @property
    def window_trackers(self) -> tuple[ActorWindowTracker, ...]:
        return (self.channel_deletions, self.role_deletions, self.bans, self.permission_grants)

    async def security_settings(self, guild_id: int) -> SecuritySettings | None:
        """Current toggles for *guild_id* — read fresh for every event."""
        return await run_db(get_security_settings, self.engine, guild_id)

    def apply_bot_settings(self, settings: dict) -> None:
        """Apply dashboard-editable settings to the running bot."""
        self.text_prefix = settings.get("prefix") or self.cfg.bot_prefix
        self.delete_commands = bool(settings.get("deleteCommands", False))
        level = logging.DEBUG if settings.get("debugMode") else logging.INFO
        logging.getLogger("bloxguard").setLevel(level)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions before connecting.

        A Cog that fails to load is logged and skipped — one broken Cog
        shouldn't take down the whole bot.
        """
        self.tree.on_error = self.on_app_command_error

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        self.apply_bot_settings(await run_db(get_bot_settings, self.engine))

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # --- Slash-command sync ---------------------------------------------
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        # --- Register guilds ------------------------------------------------
        for guild in self.guilds:
            await self.register_guild(guild)

        # --- Roblox login ---------------------------------------------------
        await self.roblox.refresh_connection()

    async def register_guild(self, guild: discord.Guild) -> None:
        try:
            await run_db(
                ensure_server,
                self.engine,
                guild.id,
                guild.name,
                guild.owner_id or 0,
                guild.member_count or 0,
            )
        except Exception:
            logger.exception("Failed to register guild %s (%d)", guild.name, guild.id)

    async def on_command_completion(self, ctx: commands.Context) -> None:
        if not self.delete_commands or ctx.interaction is not None:
            return
        try:
            await ctx.message.delete()
        except discord.HTTPException:
            logger.debug("Could not delete command message %d", ctx.message.id)

    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "You do not have permission to use this command."
        else:
            logger.error(
                "Command /%s failed",
                interaction.command.qualified_name if interaction.command else "?",
                exc_info=error,
            )
            message = "There was an error running this command. Please try again later."

        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException:
            logger.debug("Could not deliver error message for interaction %d", interaction.id)

    async def close(self) -> None:
        """Graceful shutdown — cancel pending raid timers."""
        logger.info("Bot shutting down…")
        for guild in self.guilds:
            self.raids.end(guild.id)
        await super().close()
