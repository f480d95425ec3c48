"""
bloxguard.bot.cogs.website_filter — Link allow-list enforcement
================================================================

Deletes guild messages (new or edited) that link to a domain outside
the server's allow-list, tells the author by DM, and records the block.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from bloxguard.constants import EVENT_WEBSITE_FILTER
from bloxguard.database.engine import run_db
from bloxguard.engine.url_filter import find_blocked_urls
from bloxguard.services.embeds import build_url_blocked_dm_embed, build_url_blocked_embed
from bloxguard.services.log_channel import send_log_embed
from bloxguard.services.log_service import write_log

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


class WebsiteFilter(commands.Cog, name="WebsiteFilter"):
    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        await self.check_message(message)

    @commands.Cog.listener()
    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if before.content == after.content:
            return
        await self.check_message(after)

    async def check_message(self, message: discord.Message) -> bool:
        """Returns whether the message was blocked."""
        if message.guild is None or message.author.bot or not message.content:
            return False

        guild = message.guild
        try:
            settings = await self.bot.security_settings(guild.id)
            if settings is None or not settings.website_filter:
                return False

            blocked = find_blocked_urls(message.content, settings.allowed_domains)
            if not blocked:
                return False

            try:
                await message.delete()
            except discord.HTTPException:
                logger.warning("Could not delete message %d in guild %d", message.id, guild.id)

            try:
                await message.author.send(embed=build_url_blocked_dm_embed(guild.name, blocked))
            except discord.HTTPException:
                logger.debug("Could not DM %d about a blocked link", message.author.id)

            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_WEBSITE_FILTER,
                "URL blocked",
                user_id=message.author.id,
                details=f"Blocked URLs: {', '.join(blocked)}",
                threat_blocked=True,
            )
            await send_log_embed(
                guild, settings, build_url_blocked_embed(message.author, message.channel, blocked),
            )
            logger.info("Blocked %d link(s) from %d in guild %d", len(blocked), message.author.id, guild.id)
            return True
        except Exception:
            logger.exception("Website filter failed on message %d", message.id)
            return False


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(WebsiteFilter(bot))
