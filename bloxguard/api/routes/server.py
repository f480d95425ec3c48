"""
bloxguard.api.routes.server — Guild info for dashboard pickers
===============================================================

Reads the live guild from the running bot when it's connected; falls
back to the stored ``discord_servers`` row (info) or an empty list
(roles, channels) otherwise.  Roles and channels are returned as names
because that's what the dashboard stores in the settings.
"""

from __future__ import annotations

import discord
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from bloxguard.api.deps import get_current_admin, get_engine, get_runner, get_server_id
from bloxguard.bot.runner import BotRunner
from bloxguard.database.models import DiscordServer

router = APIRouter(prefix="/server", tags=["server"])


def _live_guild(runner: BotRunner | None, server_id: int) -> discord.Guild | None:
    bot = runner.bot if runner is not None else None
    if bot is None or not bot.is_ready():
        return None
    return bot.get_guild(server_id)


@router.get("/info")
def get_info(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
    runner: BotRunner | None = Depends(get_runner),
):
    guild = _live_guild(runner, server_id)
    if guild is not None:
        owner = guild.owner
        return {
            "id": str(guild.id),
            "name": guild.name,
            "memberCount": guild.member_count or 0,
            "owner": {
                "id": str(guild.owner_id),
                "username": owner.name if owner else "Server Owner",
            },
        }

    with Session(engine) as session:
        server = session.get(DiscordServer, server_id)
        return {
            "id": str(server.id),
            "name": server.name,
            "memberCount": server.member_count,
            "owner": {"id": str(server.owner_id), "username": "Server Owner"},
        }


@router.get("/roles")
def get_roles(
    admin: dict = Depends(get_current_admin),
    server_id: int = Depends(get_server_id),
    runner: BotRunner | None = Depends(get_runner),
):
    guild = _live_guild(runner, server_id)
    if guild is None:
        return []
    return [
        r.name for r in sorted(guild.roles, key=lambda r: r.position, reverse=True)
        if not r.is_default() and not r.managed
    ]


@router.get("/channels")
def get_channels(
    admin: dict = Depends(get_current_admin),
    server_id: int = Depends(get_server_id),
    runner: BotRunner | None = Depends(get_runner),
):
    guild = _live_guild(runner, server_id)
    if guild is None:
        return []
    return [c.name for c in guild.text_channels]
