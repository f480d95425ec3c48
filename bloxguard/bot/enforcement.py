"""
bloxguard.bot.enforcement — Punitive actions shared by the protection cogs
===========================================================================

Each helper performs one Discord call, logs any failure, and reports
success as a bool so callers can decide whether to continue.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import discord

logger = logging.getLogger(__name__)


async def resolve_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    """Cached member, else a REST fetch.  ``None`` if they're gone."""
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
    except discord.HTTPException:
        logger.exception("Failed to fetch member %d in guild %d", user_id, guild.id)
        return None


async def strip_roles(member: discord.Member, reason: str) -> bool:
    """Remove every removable role (``@everyone`` and integration roles stay)."""
    removable = [r for r in member.roles if not r.is_default() and not r.managed]
    if not removable:
        return True
    try:
        await member.remove_roles(*removable, reason=reason)
    except discord.HTTPException:
        logger.exception("Failed to strip roles from %s (%d)", member, member.id)
        return False
    logger.warning("Stripped %d roles from %s (%d)", len(removable), member, member.id)
    return True


async def ban_member(member: discord.Member, reason: str, delete_message_seconds: int) -> bool:
    try:
        await member.guild.ban(member, reason=reason, delete_message_seconds=delete_message_seconds)
    except discord.HTTPException:
        logger.exception("Failed to ban %s (%d)", member, member.id)
        return False
    logger.warning("Banned %s (%d): %s", member, member.id, reason)
    return True


async def timeout_member(member: discord.Member, hours: int, reason: str) -> bool:
    try:
        await member.timeout(timedelta(hours=hours), reason=reason)
    except discord.HTTPException:
        logger.exception("Failed to time out %s (%d)", member, member.id)
        return False
    logger.info("Timed out %s (%d) for %dh", member, member.id, hours)
    return True
