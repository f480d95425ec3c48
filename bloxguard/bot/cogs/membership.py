"""
bloxguard.bot.cogs.membership — Guild registration & member counts
===================================================================

Keeps the ``discord_servers`` rows current: new guilds are registered
(with default security settings) and the member count follows joins
and leaves.  Requires the GUILD_MEMBERS privileged intent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from bloxguard.database.engine import run_db
from bloxguard.services.settings_service import set_member_count

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


class Membership(commands.Cog, name="Membership"):
    """Tracks which guilds the bot is in and how big they are."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("Joined guild %s (ID: %d)", guild.name, guild.id)
        await self.bot.register_guild(guild)

    @commands.Cog.listener()
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        if before.name != after.name or before.owner_id != after.owner_id:
            await self.bot.register_guild(after)

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        await self._sync_count(member.guild)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        await self._sync_count(member.guild)

    async def _sync_count(self, guild: discord.Guild) -> None:
        try:
            await run_db(set_member_count, self.bot.engine, guild.id, guild.member_count or 0)
        except Exception:
            logger.exception(
                "Error updating member count for guild %d", guild.id,
                extra={"guild_id": guild.id},
            )


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(Membership(bot))
