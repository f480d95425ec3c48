"""
bloxguard.bot.cogs.security — Security slash commands
======================================================

- /securitystats                  — score, counters, toggles, recent events
- /lockdown <reason> [duration]   — deny @everyone Send Messages for N minutes
- /allowsite <url>                — add a domain to the website allow-list
- /disallowsite <url>             — remove a domain from the allow-list
- /endraid                        — leave raid mode early
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from bloxguard.bot.permissions import require_permission
from bloxguard.constants import (
    EVENT_LOCKDOWN,
    EVENT_WEBSITE_FILTER,
    LOCKDOWN_DEFAULT_MINUTES,
)
from bloxguard.database.engine import run_db
from bloxguard.engine.url_filter import normalize_domain
from bloxguard.services.embeds import build_lockdown_embed, build_security_stats_embed
from bloxguard.services.log_channel import send_log_embed
from bloxguard.services.log_service import get_recent_logs, write_log
from bloxguard.services.settings_service import add_allowed_domain, remove_allowed_domain
from bloxguard.services.stats_service import compute_stats

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


async def set_send_messages(
    guild: discord.Guild, allowed: bool | None, reason: str,
) -> tuple[int, int]:
    """Set @everyone's Send Messages overwrite on every text channel.

    ``None`` restores inheritance.  Returns ``(changed, failed)``.
    """
    everyone = guild.default_role
    changed = failed = 0
    for channel in guild.text_channels:
        overwrite = channel.overwrites_for(everyone)
        overwrite.send_messages = allowed
        try:
            await channel.set_permissions(everyone, overwrite=overwrite, reason=reason)
            changed += 1
        except discord.HTTPException:
            failed += 1
            logger.warning("Could not update #%s (%d) during lockdown", channel.name, channel.id)
    return changed, failed


class Security(commands.Cog, name="Security"):
    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot
        self._unlocks: dict[int, asyncio.Task] = {}

    async def cog_unload(self) -> None:
        for task in self._unlocks.values():
            task.cancel()

    # -------------------------------------------------------------------
    # /securitystats
    # -------------------------------------------------------------------
    @app_commands.command(name="securitystats", description="Show this server's security status.")
    @app_commands.guild_only()
    async def securitystats(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        settings = await self.bot.security_settings(guild.id)
        if settings is None:
            await self.bot.register_guild(guild)
            settings = await self.bot.security_settings(guild.id)
        stats = await run_db(compute_stats, self.bot.engine, guild.id)
        logs = await run_db(get_recent_logs, self.bot.engine, guild.id, 5)
        await interaction.response.send_message(
            embed=build_security_stats_embed(guild.name, settings, stats, logs),
        )

    # -------------------------------------------------------------------
    # /lockdown
    # -------------------------------------------------------------------
    @app_commands.command(name="lockdown", description="Temporarily stop everyone from chatting.")
    @app_commands.describe(reason="Why the server is being locked", duration="Minutes (default 10)")
    @app_commands.guild_only()
    @require_permission("manage_guild")
    async def lockdown(
        self,
        interaction: discord.Interaction,
        reason: str,
        duration: app_commands.Range[int, 1, 1440] = LOCKDOWN_DEFAULT_MINUTES,
    ) -> None:
        guild = interaction.guild
        await interaction.response.defer(thinking=True)

        changed, failed = await set_send_messages(guild, False, f"Lockdown: {reason}")
        await run_db(
            write_log,
            self.bot.engine,
            guild.id,
            EVENT_LOCKDOWN,
            "Server lockdown",
            user_id=interaction.user.id,
            details=f"Reason: {reason} | Duration: {duration} minutes",
        )
        logger.info("Guild %d locked down (%d channels, %d failed)", guild.id, changed, failed)

        previous = self._unlocks.pop(guild.id, None)
        if previous is not None and not previous.done():
            previous.cancel()
        self._unlocks[guild.id] = asyncio.get_running_loop().create_task(
            self._unlock_later(guild, duration * 60),
        )

        embed = build_lockdown_embed(reason, duration)
        await interaction.followup.send(embed=embed)
        settings = await self.bot.security_settings(guild.id)
        await send_log_embed(guild, settings, embed)

    async def _unlock_later(self, guild: discord.Guild, seconds: float) -> None:
        await asyncio.sleep(seconds)
        try:
            await self.end_lockdown(guild)
        except Exception:
            logger.exception("Automatic unlock failed in guild %d", guild.id)
        finally:
            if self._unlocks.get(guild.id) is asyncio.current_task():
                del self._unlocks[guild.id]

    async def end_lockdown(self, guild: discord.Guild) -> None:
        await set_send_messages(guild, None, "Lockdown ended")
        await run_db(
            write_log,
            self.bot.engine,
            guild.id,
            EVENT_LOCKDOWN,
            "Server lockdown ended",
            details="Send Messages restored for @everyone",
        )
        settings = await self.bot.security_settings(guild.id)
        await send_log_embed(guild, settings, build_lockdown_embed("", 0, ended=True))

    # -------------------------------------------------------------------
    # Website allow-list
    # -------------------------------------------------------------------
    @app_commands.command(name="allowsite", description="Allow links to a website.")
    @app_commands.describe(url="Domain or URL to allow, e.g. youtube.com")
    @app_commands.guild_only()
    @require_permission("administrator")
    async def allowsite(self, interaction: discord.Interaction, url: str) -> None:
        domain = normalize_domain(url)
        if not domain or "." not in domain:
            await interaction.response.send_message(
                f"`{url}` doesn't look like a website.", ephemeral=True,
            )
            return

        await self.bot.register_guild(interaction.guild)
        added = await run_db(add_allowed_domain, self.bot.engine, interaction.guild_id, domain)
        if not added:
            await interaction.response.send_message(
                f"`{domain}` is already allowed.", ephemeral=True,
            )
            return

        await run_db(
            write_log,
            self.bot.engine,
            interaction.guild_id,
            EVENT_WEBSITE_FILTER,
            "Domain whitelisted",
            user_id=interaction.user.id,
            details=f"Added {domain} to allowed domains",
        )
        await interaction.response.send_message(f"✅ `{domain}` is now allowed.", ephemeral=True)

    @app_commands.command(name="disallowsite", description="Stop allowing links to a website.")
    @app_commands.describe(url="Domain or URL to remove")
    @app_commands.guild_only()
    @require_permission("administrator")
    async def disallowsite(self, interaction: discord.Interaction, url: str) -> None:
        domain = normalize_domain(url)
        await self.bot.register_guild(interaction.guild)
        removed = await run_db(remove_allowed_domain, self.bot.engine, interaction.guild_id, domain)
        if not removed:
            await interaction.response.send_message(
                f"`{domain}` isn't on the allowed list.", ephemeral=True,
            )
            return

        await run_db(
            write_log,
            self.bot.engine,
            interaction.guild_id,
            EVENT_WEBSITE_FILTER,
            "Domain removed",
            user_id=interaction.user.id,
            details=f"Removed {domain} from allowed domains",
        )
        await interaction.response.send_message(f"`{domain}` is no longer allowed.", ephemeral=True)

    # -------------------------------------------------------------------
    # /endraid
    # -------------------------------------------------------------------
    @app_commands.command(name="endraid", description="End raid protection mode.")
    @app_commands.guild_only()
    @require_permission("manage_guild")
    async def endraid(self, interaction: discord.Interaction) -> None:
        anti_raid = self.bot.get_cog("AntiRaid")
        if anti_raid is None:
            await interaction.response.send_message(
                "Anti-raid protection isn't loaded.", ephemeral=True,
            )
            return
        ended = await anti_raid.end_raid_mode(interaction.guild)
        message = "Raid mode ended." if ended else "This server is not in raid mode."
        await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(Security(bot))
