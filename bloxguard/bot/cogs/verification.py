"""
bloxguard.bot.cogs.verification — Roblox account linking
=========================================================

Slash commands:
- /verify <username>   — issue a code to put in the Roblox profile
- /checkverify         — look for the code and complete the link
- /reverify <username> — drop the current link and start over
- /whois <user>        — show a member's linked Roblox account

All replies are ephemeral except /whois.  Flow errors carry their own
user-facing message; Roblox outages get a generic retry message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from bloxguard.constants import VERIFIED_ROLE_FALLBACK_NAME
from bloxguard.database.engine import run_db
from bloxguard.database.models import RobloxVerification
from bloxguard.services.embeds import (
    build_verification_instructions_embed,
    build_verified_embed,
    build_whois_embed,
)
from bloxguard.services.log_channel import resolve_role
from bloxguard.services.roblox import RobloxAPIError
from bloxguard.services.verification_service import (
    VerificationError,
    check_verification,
    get_verification,
    reverify,
    start_verification,
)

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)

_RETRY_MESSAGE = "There was an error contacting Roblox. Please try again later."


class Verification(commands.Cog, name="Verification"):
    """Links Discord members to Roblox accounts."""

    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /verify
    # -------------------------------------------------------------------
    @app_commands.command(name="verify", description="Link your Roblox account.")
    @app_commands.describe(username="Your Roblox username")
    @app_commands.guild_only()
    async def verify(self, interaction: discord.Interaction, username: str) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            pending = await start_verification(
                self.bot.engine,
                self.bot.roblox,
                discord_user_id=interaction.user.id,
                server_id=interaction.guild_id,
                username=username.strip(),
            )
        except VerificationError as exc:
            await interaction.followup.send(exc.message, ephemeral=True)
            return
        except RobloxAPIError:
            logger.exception("Roblox lookup failed during /verify")
            await interaction.followup.send(_RETRY_MESSAGE, ephemeral=True)
            return

        await interaction.followup.send(
            embed=build_verification_instructions_embed(pending), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /checkverify
    # -------------------------------------------------------------------
    @app_commands.command(name="checkverify", description="Finish linking your Roblox account.")
    @app_commands.guild_only()
    async def checkverify(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            record = await check_verification(
                self.bot.engine,
                self.bot.roblox,
                discord_user_id=interaction.user.id,
                server_id=interaction.guild_id,
            )
        except VerificationError as exc:
            await interaction.followup.send(exc.message, ephemeral=True)
            return
        except RobloxAPIError:
            logger.exception("Roblox lookup failed during /checkverify")
            await interaction.followup.send(_RETRY_MESSAGE, ephemeral=True)
            return

        if isinstance(interaction.user, discord.Member):
            await self.apply_verified_state(interaction.user, record)

        await interaction.followup.send(embed=build_verified_embed(record), ephemeral=True)

    async def apply_verified_state(self, member: discord.Member, record: RobloxVerification) -> None:
        """Nickname + verified role.  Both best-effort."""
        try:
            await member.edit(nick=record.roblox_username, reason="Roblox verification")
        except discord.HTTPException:
            logger.debug("Could not set nickname for %d", member.id)

        settings = await self.bot.security_settings(member.guild.id)
        role = resolve_role(member.guild, settings.verified_role_id if settings else None)
        if role is None:
            role = discord.utils.get(member.guild.roles, name=VERIFIED_ROLE_FALLBACK_NAME)
        if role is None:
            logger.info("No verified role configured in guild %d", member.guild.id)
            return
        try:
            await member.add_roles(role, reason="Roblox verification")
        except discord.HTTPException:
            logger.warning("Could not give %s to %d", role.name, member.id)

    # -------------------------------------------------------------------
    # /reverify
    # -------------------------------------------------------------------
    @app_commands.command(name="reverify", description="Link a different Roblox account.")
    @app_commands.describe(username="The Roblox username to link instead")
    @app_commands.guild_only()
    async def reverify_cmd(self, interaction: discord.Interaction, username: str) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            pending = await reverify(
                self.bot.engine,
                self.bot.roblox,
                discord_user_id=interaction.user.id,
                server_id=interaction.guild_id,
                username=username.strip(),
            )
        except VerificationError as exc:
            await interaction.followup.send(exc.message, ephemeral=True)
            return
        except RobloxAPIError:
            logger.exception("Roblox lookup failed during /reverify")
            await interaction.followup.send(_RETRY_MESSAGE, ephemeral=True)
            return

        await interaction.followup.send(
            embed=build_verification_instructions_embed(pending), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /whois
    # -------------------------------------------------------------------
    @app_commands.command(name="whois", description="Show a member's linked Roblox account.")
    @app_commands.describe(user="The member to look up")
    @app_commands.guild_only()
    async def whois(self, interaction: discord.Interaction, user: discord.Member) -> None:
        record = await run_db(get_verification, self.bot.engine, user.id)
        if record is None:
            await interaction.response.send_message(
                f"{user.display_name} has not linked a Roblox account.", ephemeral=True,
            )
            return
        await interaction.response.send_message(embed=build_whois_embed(user, record))


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(Verification(bot))
