"""
bloxguard.bot.cogs.anti_hack — Permission escalation & webhook watch
=====================================================================

* Role updates that newly grant a dangerous permission are attributed
  via the audit log and counted per member (3 in 30 seconds).  On the
  third the change is reverted; regular members also lose their roles.
* Webhooks created by members who joined less than a week ago are
  flagged.
* Every integration change is logged.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from bloxguard.bot.audit import fetch_executor
from bloxguard.bot.enforcement import resolve_member, strip_roles
from bloxguard.bot.permissions import is_privileged
from bloxguard.constants import (
    DANGEROUS_PERMISSIONS,
    EVENT_ANTI_HACK,
    WEBHOOK_NEW_MEMBER_DAYS,
)
from bloxguard.database.engine import run_db
from bloxguard.database.models import SecuritySettings
from bloxguard.services.embeds import (
    build_integration_embed,
    build_suspicious_activity_embed,
    build_webhook_embed,
)
from bloxguard.services.log_channel import send_log_embed
from bloxguard.services.log_service import write_log

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)

_REASON = "suspicious_permission_changes"


def newly_granted(before: discord.Permissions, after: discord.Permissions) -> list[str]:
    """Dangerous permissions present in *after* but not in *before*."""
    return sorted(
        p for p in DANGEROUS_PERMISSIONS
        if getattr(after, p, False) and not getattr(before, p, False)
    )


class AntiHack(commands.Cog, name="AntiHack"):
    """Reverts bursts of dangerous role grants and flags new-member webhooks."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    async def _enabled(self, guild: discord.Guild) -> SecuritySettings | None:
        settings = await self.bot.security_settings(guild.id)
        if settings is None or not settings.anti_hack:
            return None
        return settings

    # -------------------------------------------------------------------
    # Role permission changes
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        guild = after.guild
        try:
            granted = newly_granted(before.permissions, after.permissions)
            if not granted:
                return

            settings = await self._enabled(guild)
            if settings is None:
                return

            found = await fetch_executor(
                guild, discord.AuditLogAction.role_update, target_id=after.id,
            )
            if found is None:
                return
            _, executor = found

            logger.info(
                "Role %s gained %s via %s (%d)", after.name, ", ".join(granted), executor, executor.id,
            )
            if not self.bot.permission_grants.record(guild.id, executor.id):
                return

            await self.handle_suspicious_activity(guild, executor, before, after, settings)
        except Exception:
            logger.exception("Anti-hack role check failed in guild %d", guild.id)

    async def handle_suspicious_activity(
        self,
        guild: discord.Guild,
        executor: discord.abc.User,
        before: discord.Role,
        after: discord.Role,
        settings: SecuritySettings,
    ) -> None:
        member = await resolve_member(guild, executor.id)
        if member is None:
            logger.warning("Anti-hack executor %d is no longer in guild %d", executor.id, guild.id)
            return

        privileged = is_privileged(member)
        audit_reason = "[SECURITY] Anti-Hack: suspicious permission changes"

        if privileged:
            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_ANTI_HACK,
                "Warning only",
                user_id=member.id,
                details=f"Owner/administrator granted dangerous permissions to role {after.name}",
            )
        else:
            await strip_roles(member, audit_reason)
            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_ANTI_HACK,
                "Suspicious activity detected",
                user_id=member.id,
                details=f"Dangerous permissions granted to role {after.name}; roles removed",
                threat_blocked=True,
            )

        try:
            await after.edit(permissions=before.permissions, reason=audit_reason)
        except discord.HTTPException:
            logger.exception("Failed to revert permissions on role %s (%d)", after.name, after.id)

        await send_log_embed(
            guild, settings, build_suspicious_activity_embed(member, _REASON, stripped=not privileged),
        )

    # -------------------------------------------------------------------
    # Webhooks & integrations
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_webhooks_update(self, channel: discord.abc.GuildChannel) -> None:
        guild = channel.guild
        try:
            settings = await self._enabled(guild)
            if settings is None:
                return

            found = await fetch_executor(guild, discord.AuditLogAction.webhook_create)
            if found is None:
                return
            _, executor = found

            member = guild.get_member(executor.id)
            if member is None or member.joined_at is None:
                return
            if datetime.now(UTC) - member.joined_at >= timedelta(days=WEBHOOK_NEW_MEMBER_DAYS):
                return

            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_ANTI_HACK,
                "Suspicious webhook creation",
                user_id=member.id,
                details=f"Webhook created in #{channel.name} by a member who joined recently",
            )
            await send_log_embed(guild, settings, build_webhook_embed(member, channel))
        except Exception:
            logger.exception("Anti-hack webhook check failed in guild %d", guild.id)

    @commands.Cog.listener()
    async def on_guild_integrations_update(self, guild: discord.Guild) -> None:
        try:
            settings = await self._enabled(guild)
            if settings is None:
                return

            await run_db(
                write_log,
                self.bot.engine,
                guild.id,
                EVENT_ANTI_HACK,
                "Integration update",
                details="Server integrations were modified",
            )
            await send_log_embed(guild, settings, build_integration_embed(guild))
        except Exception:
            logger.exception("Anti-hack integration check failed in guild %d", guild.id)


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(AntiHack(bot))
