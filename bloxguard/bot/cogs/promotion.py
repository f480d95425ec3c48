"""
bloxguard.bot.cogs.promotion — Roblox group management
=======================================================

- /promote <username> <rank> — move a Roblox user to a named group rank
- /ranks                     — list the group's ranks
- /groupinfo                 — show the configured group
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from bloxguard.bot.permissions import require_permission
from bloxguard.constants import EVENT_PROMOTION
from bloxguard.database.engine import run_db
from bloxguard.services.embeds import build_group_info_embed, build_ranks_embed
from bloxguard.services.log_service import write_log
from bloxguard.services.roblox import RobloxAPIError, RobloxGroupError

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)


class Promotion(commands.Cog, name="Promotion"):
    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    @app_commands.command(name="promote", description="Set a Roblox user's group rank.")
    @app_commands.describe(username="Roblox username", rank="Name of the group rank")
    @app_commands.guild_only()
    @require_permission("manage_roles")
    async def promote(self, interaction: discord.Interaction, username: str, rank: str) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        roblox = self.bot.roblox
        try:
            user = await roblox.get_user_by_username(username.strip())
            if user is None:
                await interaction.followup.send(
                    f"Could not find a Roblox user with the username {username}.", ephemeral=True,
                )
                return

            role = await roblox.find_role(rank)
            if role is None:
                roles = await roblox.get_group_roles()
                available = ", ".join(r.name for r in roles if r.rank > 0)
                await interaction.followup.send(
                    f"Rank `{rank}` not found. Available ranks: {available}", ephemeral=True,
                )
                return

            await roblox.set_rank(user.id, role)
        except RobloxGroupError as exc:
            await interaction.followup.send(f"Failed to promote {username}: {exc}", ephemeral=True)
            return
        except RobloxAPIError:
            logger.exception("Roblox request failed during /promote")
            await interaction.followup.send(
                "There was an error contacting Roblox. Please try again later.", ephemeral=True,
            )
            return

        await run_db(
            write_log,
            self.bot.engine,
            interaction.guild_id,
            EVENT_PROMOTION,
            "User promotion",
            user_id=interaction.user.id,
            details=f"Promoted Roblox user {user.username} to rank {role.name}",
        )
        await interaction.followup.send(
            f"✅ Promoted **{user.username}** to **{role.name}**.", ephemeral=True,
        )

    @app_commands.command(name="ranks", description="List the Roblox group's ranks.")
    async def ranks(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(thinking=True)
        try:
            roles = await self.bot.roblox.get_group_roles()
        except RobloxAPIError as exc:
            await interaction.followup.send(f"Could not load ranks: {exc}")
            return
        await interaction.followup.send(embed=build_ranks_embed(roles))

    @app_commands.command(name="groupinfo", description="Show the Roblox group's details.")
    async def groupinfo(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(thinking=True)
        try:
            info = await self.bot.roblox.get_group_info()
        except RobloxAPIError as exc:
            await interaction.followup.send(f"Could not load group info: {exc}")
            return
        await interaction.followup.send(embed=build_group_info_embed(info))


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(Promotion(bot))
