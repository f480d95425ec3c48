"""
bloxguard.api.routes.system — Bot settings & restart
=====================================================

``prefix``, ``deleteCommands`` and ``debugMode`` are bot-wide and live
in the ``settings`` key/value table; ``logChannelId`` belongs to the
server's security settings.  Saved values are pushed into the running
bot immediately.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bloxguard.api.deps import (
    admin_user_id,
    get_current_admin,
    get_engine,
    get_runner,
    get_server_id,
    get_server_settings,
)
from bloxguard.bot.runner import BotRunner
from bloxguard.constants import EVENT_SETTINGS
from bloxguard.database.models import SecuritySettings
from bloxguard.services.log_service import write_log
from bloxguard.services.settings_service import (
    get_bot_settings,
    update_bot_settings,
    update_security_settings,
)

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)


class BotSettingsUpdate(BaseModel):
    prefix: str | None = Field(default=None, min_length=1, max_length=5)
    logChannelId: str | None = None
    deleteCommands: bool | None = None
    debugMode: bool | None = None


@router.get("/settings")
def get_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    settings: SecuritySettings = Depends(get_server_settings),
):
    return {**get_bot_settings(engine), "logChannelId": settings.log_channel_id}


@router.post("/settings")
def post_settings(
    body: BotSettingsUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
    settings: SecuritySettings = Depends(get_server_settings),
    runner: BotRunner | None = Depends(get_runner),
):
    if body.logChannelId is not None:
        update_security_settings(engine, server_id, log_channel_id=body.logChannelId)
    update_bot_settings(
        engine,
        prefix=body.prefix,
        delete_commands=body.deleteCommands,
        debug_mode=body.debugMode,
    )
    if runner is not None:
        runner.apply_settings(get_bot_settings(engine))

    write_log(
        engine,
        server_id,
        EVENT_SETTINGS,
        "Bot settings updated",
        user_id=admin_user_id(admin),
        details="Updated bot configuration settings",
    )
    return {"success": True, "message": "Bot settings updated successfully"}


@router.post("/bot/reset")
async def reset_bot(
    admin: dict = Depends(get_current_admin),
    runner: BotRunner | None = Depends(get_runner),
):
    if runner is None:
        raise HTTPException(503, "Bot is not managed by this process")
    logger.info("Bot reset requested by %s", admin.get("username"))
    await runner.restart()
    return {"success": True, "message": "Bot has been reset successfully"}
