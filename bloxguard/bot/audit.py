"""
bloxguard.bot.audit — Audit-log attribution
============================================

Gateway events like ``on_guild_channel_delete`` don't say *who* acted.
The protection cogs ask the audit log for the newest entry of the
matching action and treat its ``user`` as the executor.  Anything that
prevents attribution (no entry, no executor, missing View Audit Log
permission) means "do nothing".
"""

from __future__ import annotations

import logging

import discord

logger = logging.getLogger(__name__)


async def fetch_latest_entry(
    guild: discord.Guild,
    action: discord.AuditLogAction,
    *,
    target_id: int | None = None,
) -> discord.AuditLogEntry | None:
    """Newest audit entry for *action*, optionally required to hit *target_id*."""
    try:
        async for entry in guild.audit_logs(limit=1, action=action):
            target = getattr(entry.target, "id", None)
            if target_id is not None and target is not None and target != target_id:
                logger.debug(
                    "Latest %s entry targets %s, not %s — cannot attribute",
                    action.name, target, target_id,
                )
                return None
            return entry
    except discord.Forbidden:
        logger.warning("Missing View Audit Log permission in guild %d", guild.id)
    except discord.HTTPException:
        logger.exception("Audit log fetch failed in guild %d", guild.id)
    return None


async def fetch_executor(
    guild: discord.Guild,
    action: discord.AuditLogAction,
    *,
    target_id: int | None = None,
) -> tuple[discord.AuditLogEntry, discord.abc.User] | None:
    """``(entry, executor)`` for a human-performed action, else ``None``.

    Bot executors are skipped so the bot's own cleanup (ticket channels,
    raid timeouts) never counts against anyone.
    """
    entry = await fetch_latest_entry(guild, action, target_id=target_id)
    if entry is None or entry.user is None:
        return None
    if entry.user.bot:
        return None
    return entry, entry.user
