"""
bloxguard.bot.cogs.tickets — Private support channels
======================================================

Slash commands:
- /ticket <issue>         — open a private ticket channel
- /closeticket [reason]   — close the ticket this channel belongs to
- /ticketpanel <channel>  — post a persistent "Create Ticket" button

A member may hold one open ticket per server.  Ticket channels are
visible to the member, the bot, and roles with Manage Channels.  Closed
ticket channels are deleted ten seconds after the close message.

Both button views are registered with ``bot.add_view`` so they keep
working across restarts.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from bloxguard.bot.permissions import has_permission, require_permission
from bloxguard.constants import (
    CLOSE_TICKET_CUSTOM_ID,
    CREATE_TICKET_CUSTOM_ID,
    TICKET_DELETE_DELAY_SECONDS,
)
from bloxguard.database.engine import run_db
from bloxguard.services.embeds import (
    build_ticket_closed_embed,
    build_ticket_embed,
    build_ticket_panel_embed,
)
from bloxguard.services.ticket_service import (
    close_ticket,
    create_ticket,
    get_open_ticket_for_user,
    get_ticket_by_channel,
)

if TYPE_CHECKING:
    from bloxguard.bot.core import BloxGuardBot

logger = logging.getLogger(__name__)

_CHANNEL_SAFE = re.compile(r"[^a-z0-9-]+")
_PANEL_ISSUE = "Opened from the ticket panel"


def ticket_channel_name(username: str, now_ms: int | None = None) -> str:
    """``ticket-<username>-<last four digits of the ms clock>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    slug = _CHANNEL_SAFE.sub("", username.lower().replace(" ", "-")) or "user"
    return f"ticket-{slug}-{now_ms % 10000:04d}"


# ---------------------------------------------------------------------------
# Persistent views
# ---------------------------------------------------------------------------
class TicketPanelView(discord.ui.View):
    def __init__(self, cog: Tickets) -> None:
        super().__init__(timeout=None)
        self.cog = cog

    @discord.ui.button(
        label="Create Ticket",
        style=discord.ButtonStyle.primary,
        emoji="\U0001f3ab",
        custom_id=CREATE_TICKET_CUSTOM_ID,
    )
    async def create(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self.cog.open_ticket(interaction, _PANEL_ISSUE)


class CloseTicketView(discord.ui.View):
    def __init__(self, cog: Tickets) -> None:
        super().__init__(timeout=None)
        self.cog = cog

    @discord.ui.button(
        label="Close Ticket",
        style=discord.ButtonStyle.danger,
        emoji="\U0001f512",
        custom_id=CLOSE_TICKET_CUSTOM_ID,
    )
    async def close(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self.cog.close_ticket_channel(interaction, "Closed via button")


# ---------------------------------------------------------------------------
# Cog
# ---------------------------------------------------------------------------
class Tickets(commands.Cog, name="Tickets"):
    def __init__(self, bot: BloxGuardBot) -> None:
        self.bot = bot
        self.delete_delay: float = TICKET_DELETE_DELAY_SECONDS
        self._deletions: set[asyncio.Task] = set()

    async def cog_load(self) -> None:
        self.bot.add_view(TicketPanelView(self))
        self.bot.add_view(CloseTicketView(self))

    async def cog_unload(self) -> None:
        for task in self._deletions:
            task.cancel()

    # -------------------------------------------------------------------
    # Slash commands
    # -------------------------------------------------------------------
    @app_commands.command(name="ticket", description="Open a private support ticket.")
    @app_commands.describe(issue="What do you need help with?")
    @app_commands.guild_only()
    async def ticket(self, interaction: discord.Interaction, issue: str) -> None:
        await self.open_ticket(interaction, issue)

    @app_commands.command(name="closeticket", description="Close this ticket.")
    @app_commands.describe(reason="Why the ticket is being closed")
    @app_commands.guild_only()
    async def closeticket(
        self, interaction: discord.Interaction, reason: str = "No reason provided",
    ) -> None:
        await self.close_ticket_channel(interaction, reason)

    @app_commands.command(name="ticketpanel", description="Post a ticket creation panel.")
    @app_commands.describe(channel="Channel to post the panel in")
    @app_commands.guild_only()
    @require_permission("manage_channels")
    async def ticketpanel(
        self, interaction: discord.Interaction, channel: discord.TextChannel,
    ) -> None:
        try:
            await channel.send(embed=build_ticket_panel_embed(), view=TicketPanelView(self))
        except discord.HTTPException:
            logger.exception("Failed to post ticket panel in %d", channel.id)
            await interaction.response.send_message(
                f"I couldn't post in {channel.mention}. Check my permissions there.", ephemeral=True,
            )
            return
        await interaction.response.send_message(
            f"Ticket panel posted in {channel.mention}.", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Open / close
    # -------------------------------------------------------------------
    async def open_ticket(self, interaction: discord.Interaction, issue: str) -> None:
        guild = interaction.guild
        user = interaction.user
        if guild is None:
            await interaction.response.send_message(
                "Tickets can only be opened inside a server.", ephemeral=True,
            )
            return

        existing = await run_db(get_open_ticket_for_user, self.bot.engine, guild.id, user.id)
        if existing is not None:
            await interaction.response.send_message(
                f"You already have an open ticket: <#{existing.channel_id}>", ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)

        overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            user: discord.PermissionOverwrite(
                view_channel=True, send_messages=True, read_message_history=True, attach_files=True,
            ),
            guild.me: discord.PermissionOverwrite(
                view_channel=True, send_messages=True, manage_channels=True, embed_links=True,
            ),
        }
        for role in guild.roles:
            if role.permissions.manage_channels and not role.is_default():
                overwrites[role] = discord.PermissionOverwrite(
                    view_channel=True, send_messages=True, read_message_history=True,
                )

        category = discord.utils.get(guild.categories, name="Tickets")
        try:
            channel = await guild.create_text_channel(
                ticket_channel_name(user.name),
                overwrites=overwrites,
                category=category,
                topic=f"Support ticket for {user} ({user.id})",
                reason=f"Ticket opened by {user}",
            )
        except discord.HTTPException:
            logger.exception("Failed to create ticket channel in guild %d", guild.id)
            await interaction.followup.send(
                "I couldn't create a ticket channel. Please contact a moderator.", ephemeral=True,
            )
            return

        record = await run_db(
            create_ticket,
            self.bot.engine,
            server_id=guild.id,
            channel_id=channel.id,
            user_id=user.id,
            issue=issue,
        )

        await channel.send(
            content=user.mention,
            embed=build_ticket_embed(user, issue, record.id),
            view=CloseTicketView(self),
        )
        await interaction.followup.send(f"Ticket created: {channel.mention}", ephemeral=True)

    async def close_ticket_channel(self, interaction: discord.Interaction, reason: str) -> None:
        channel = interaction.channel
        if channel is None or interaction.guild is None:
            return

        ticket = await run_db(get_ticket_by_channel, self.bot.engine, channel.id)
        if ticket is None or ticket.status == "closed":
            await interaction.response.send_message(
                "This channel is not an open ticket.", ephemeral=True,
            )
            return

        if interaction.user.id != ticket.user_id and not has_permission(
            interaction.user, "manage_channels",
        ):
            await interaction.response.send_message(
                "Only the ticket creator or staff can close this ticket.", ephemeral=True,
            )
            return

        closed = await run_db(
            close_ticket, self.bot.engine, ticket.id, closed_by=interaction.user.id, reason=reason,
        )
        if closed is None:
            await interaction.response.send_message(
                "This ticket is already closed.", ephemeral=True,
            )
            return

        await interaction.response.send_message(
            embed=build_ticket_closed_embed(interaction.user, reason, int(self.delete_delay)),
        )
        task = asyncio.get_running_loop().create_task(self._delete_later(channel))
        self._deletions.add(task)
        task.add_done_callback(self._deletions.discard)

    async def _delete_later(self, channel: discord.abc.GuildChannel) -> None:
        await asyncio.sleep(self.delete_delay)
        try:
            await channel.delete(reason="Ticket closed")
        except discord.HTTPException:
            logger.warning("Could not delete ticket channel %d", channel.id)


async def setup(bot: BloxGuardBot) -> None:
    await bot.add_cog(Tickets(bot))
