"""
bloxguard.bot.cogs.anti_raid — Join-burst detection
====================================================

Feeds every join into :class:`~bloxguard.engine.raid.RaidTracker`.
When a burst looks like a raid, every buffered joiner is timed out for
three hours and the guild enters raid mode: later joiners are timed out
on arrival until the mode ends, either by ``/endraid`` or automatically
after fifteen minutes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from bloxguard.bot.enforcement import timeout_member
from bloxguard.constants import (
    EVENT_ANTI_RAID,
    RAID_MODE_DURATION_SECONDS,
    RAID_TIMEOUT_HOURS,
)
from bloxguard.database.engine import run_db
from bloxguard.database.models import SecuritySettings
from bloxguard.engine.raid import JoinOutcome, JoinRecord
from bloxguard.services.embeds import build_raid_embed, build_raid_ended_embed
from bloxguard.services.log_channel import send_log_embed
from bloxguard.services.log_service import write_log

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)

_TIMEOUT_REASON = "Anti-Raid protection"


class AntiRaid(commands.Cog, name="AntiRaid"):
    """Times out join bursts and manages per-guild raid mode."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot
        self.raid_duration: float = RAID_MODE_DURATION_SECONDS

    async def cog_unload(self) -> None:
        for guild in self.bot.guilds:
            self.bot.raids.end(guild.id)

    # -------------------------------------------------------------------
    # Listener
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        guild = member.guild
        try:
            settings = await self.bot.security_settings(guild.id)
            if settings is None or not settings.anti_raid:
                return

            outcome = self.bot.raids.record_join(
                guild.id,
                JoinRecord(
                    member_id=member.id,
                    username=member.name,
                    account_created_at=member.created_at,
                ),
            )

            if outcome is JoinOutcome.RAID_DETECTED:
                await self.handle_raid(guild, settings)
            elif outcome is JoinOutcome.RAID_ACTIVE:
                await timeout_member(member, RAID_TIMEOUT_HOURS, _TIMEOUT_REASON)
        except Exception:
            logger.exception("Anti-raid check failed in guild %d", guild.id)

    # -------------------------------------------------------------------
    # Raid mode
    # -------------------------------------------------------------------
    async def handle_raid(self, guild: discord.Guild, settings: SecuritySettings) -> None:
        # Timer first: raid mode must end even if anything below fails
        task = asyncio.get_running_loop().create_task(self._auto_end(guild))
        self.bot.raids.set_end_task(guild.id, task)

        joins = self.bot.raids.buffered(guild.id)
        restricted = 0
        for join in joins:
            member = guild.get_member(join.member_id)
            if member is None:
                continue
            if await timeout_member(member, RAID_TIMEOUT_HOURS, _TIMEOUT_REASON):
                restricted += 1

        logger.warning(
            "Raid in guild %d: %d/%d buffered joiners restricted", guild.id, restricted, len(joins),
        )
        await run_db(
            write_log,
            self.bot.engine,
            guild.id,
            EVENT_ANTI_RAID,
            "Raid detected",
            details=f"Raid with {len(joins)} members detected and mitigated",
            threat_blocked=True,
        )
        await send_log_embed(guild, settings, build_raid_embed(len(joins)))

    async def _auto_end(self, guild: discord.Guild) -> None:
        await asyncio.sleep(self.raid_duration)
        try:
            await self.end_raid_mode(guild)
        except Exception:
            logger.exception("Automatic raid-mode end failed in guild %d", guild.id)

    async def end_raid_mode(self, guild: discord.Guild) -> bool:
        """Leave raid mode.  Returns ``False`` if the guild wasn't in it."""
        if not self.bot.raids.end(guild.id):
            return False

        await run_db(
            write_log,
            self.bot.engine,
            guild.id,
            EVENT_ANTI_RAID,
            "Raid mode ended",
            details="Raid protection has been deactivated",
        )
        settings = await self.bot.security_settings(guild.id)
        await send_log_embed(guild, settings, build_raid_ended_embed())
        return True


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(AntiRaid(bot))
