"""
bloxguard.bot.permissions — Permission checks for slash commands
================================================================

The guild owner and administrators pass every check; everyone else
needs the specific Discord permission.  The same rule decides who the
protection cogs may punish: owners and administrators only ever get a
warning.
"""

from __future__ import annotations

import discord
from discord import app_commands


def is_privileged(member: discord.Member) -> bool:
    """Owner or administrator: never punished automatically."""
    return member.id == member.guild.owner_id or member.guild_permissions.administrator


def has_permission(member: discord.abc.User | None, permission: str) -> bool:
    if not isinstance(member, discord.Member):
        return False
    if is_privileged(member):
        return True
    return bool(getattr(member.guild_permissions, permission, False))


def require_permission(permission: str):
    """Decorator: allow the command only for members holding *permission*."""
    async def predicate(interaction: discord.Interaction) -> bool:
        return has_permission(interaction.user, permission)
    return app_commands.check(predicate)
