"""
bloxguard.bot.cogs.anti_nuke — Mass deletion / mass ban protection
===================================================================

Watches channel deletions, role deletions and bans.  Each event is
attributed through the audit log and counted in a per-member sliding
window (3 events in 10 seconds).  On the third:

* regular members lose every role, are banned (7 days of messages
  purged) and one ``anti-nuke``/``Auto-ban`` entry is logged;
* the owner and administrators are never punished — the crossing is
  logged as ``anti-nuke``/``Warning only``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from bloxguard.bot.audit import fetch_executor
from bloxguard.bot.enforcement import ban_member, resolve_member, strip_roles
from bloxguard.bot.permissions import is_privileged
from bloxguard.constants import EVENT_ANTI_NUKE, NUKE_BAN_DELETE_SECONDS
from bloxguard.database.engine import run_db
from bloxguard.database.models import SecuritySettings
from bloxguard.engine.windows import ActorWindowTracker
from bloxguard.services.embeds import build_nuke_embed
from bloxguard.services.log_channel import send_log_embed
from bloxguard.services.log_service import write_log

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


class AntiNuke(commands.Cog, name="AntiNuke"):
    """Bans members who mass-delete channels/roles or mass-ban."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # Gateway listeners
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        await self.track(
            channel.guild,
            discord.AuditLogAction.channel_delete,
            self.bot.channel_deletions,
            "mass_channel_deletion",
            target_id=channel.id,
        )

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await self.track(
            role.guild,
            discord.AuditLogAction.role_delete,
            self.bot.role_deletions,
            "mass_role_deletion",
            target_id=role.id,
        )

    @commands.Cog.listener()
    async def on_member_ban(self, guild: discord.Guild, user: discord.abc.User) -> None:
        await self.track(
            guild,
            discord.AuditLogAction.ban,
            self.bot.bans,
            "mass_ban",
            target_id=user.id,
        )

    # -------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------
    async def track(
        self,
        guild: discord.Guild,
        action: discord.AuditLogAction,
        tracker: ActorWindowTracker,
        reason: str,
        *,
        target_id: int | None = None,
    ) -> bool:
        """Attribute one destructive event and act if the window fills.

        Returns whether enforcement ran.
        """
        try:
            settings = await self.bot.security_settings(guild.id)
            if settings is None or not settings.anti_nuke:
                return False

            found = await fetch_executor(guild, action, target_id=target_id)
            if found is None:
                return False
            _, executor = found

            if not tracker.record(guild.id, executor.id):
                return False

            logger.warning(
                "Anti-nuke threshold reached in guild %d by %s (%d): %s",
                guild.id, executor, executor.id, reason,
            )
            await self.handle_nuke_attempt(guild, executor, reason, settings)
            return True
        except Exception:
            logger.exception("Anti-nuke check failed in guild %d (%s)", guild.id, reason)
            return False

    async def handle_nuke_attempt(
        self,
        guild: discord.Guild,
        executor: discord.abc.User,
        reason: str,
        settings: SecuritySettings,
    ) -> None:
        member = await resolve_member(guild, executor.id)
        if member is None:
            logger.warning("Nuke executor %d is no longer in guild %d", executor.id, guild.id)
            return

        if is_privileged(member):
            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_ANTI_NUKE,
                "Warning only",
                user_id=member.id,
                details=f"Owner/administrator crossed the nuke threshold: {reason}",
            )
            await send_log_embed(guild, settings, build_nuke_embed(member, reason, banned=False))
            return

        audit_reason = f"[SECURITY] Auto-ban: Anti-Nuke triggered ({reason})"
        await strip_roles(member, audit_reason)
        if not await ban_member(member, audit_reason, NUKE_BAN_DELETE_SECONDS):
            return

        await run_db(
            write_log,
            self.bot.engine,
            guild.id,
            EVENT_ANTI_NUKE,
            "Auto-ban",
            user_id=member.id,
            details=f"User banned for nuke attempt: {reason}",
            threat_blocked=True,
        )
        await send_log_embed(guild, settings, build_nuke_embed(member, reason, banned=True))


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(AntiNuke(bot))
