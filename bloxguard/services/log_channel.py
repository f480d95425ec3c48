"""
bloxguard.services.log_channel — Log-channel delivery
======================================================

Posts enforcement embeds to the guild's configured log channel.  The
setting may hold a channel snowflake or a plain channel name (the
dashboard offers names).  Delivery is best-effort: a missing channel or
a Discord error is logged and never interrupts the enforcement path.
"""

from __future__ import annotations

import logging

import discord

from bloxguard.database.models import SecuritySettings

logger = logging.getLogger(__name__)


def _resolve(guild: discord.Guild, ref: str) -> discord.abc.GuildChannel | None:
    ref = ref.strip().lstrip("#")
    if ref.isdigit():
        return guild.get_channel(int(ref))
    return discord.utils.get(guild.text_channels, name=ref)


def resolve_role(guild: discord.Guild, ref: str | None) -> discord.Role | None:
    """Same id-or-name rule, for the verified role."""
    if not ref:
        return None
    ref = ref.strip().lstrip("@")
    if ref.isdigit():
        return guild.get_role(int(ref))
    return discord.utils.get(guild.roles, name=ref)


def resolve_log_channel(
    guild: discord.Guild, settings: SecuritySettings | None,
) -> discord.abc.Messageable | None:
    if settings is None or not settings.log_channel_id:
        return None
    channel = _resolve(guild, settings.log_channel_id)
    if channel is None or not isinstance(channel, discord.abc.Messageable):
        logger.warning(
            "Log channel %r not found in guild %d", settings.log_channel_id, guild.id,
        )
        return None
    return channel


async def send_log_embed(
    guild: discord.Guild,
    settings: SecuritySettings | None,
    embed: discord.Embed,
) -> bool:
    """Send *embed* to the log channel.  Returns whether it was delivered."""
    channel = resolve_log_channel(guild, settings)
    if channel is None:
        return False
    try:
        await channel.send(embed=embed)
        return True
    except discord.HTTPException:
        logger.exception("Failed to post to log channel in guild %d", guild.id)
        return False
