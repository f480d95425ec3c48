"""
bloxguard.api.routes.verification — Verified role & Roblox connection
======================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bloxguard.api.deps import (
    admin_user_id,
    get_current_admin,
    get_engine,
    get_roblox,
    get_server_id,
    get_server_settings,
)
from bloxguard.constants import EVENT_VERIFICATION, VERIFIED_ROLE_FALLBACK_NAME
from bloxguard.database.engine import run_db
from bloxguard.database.models import RobloxVerification, SecuritySettings, as_utc
from bloxguard.services.log_service import write_log
from bloxguard.services.roblox import RobloxClient
from bloxguard.services.settings_service import update_security_settings
from bloxguard.services.verification_service import list_verifications

router = APIRouter(prefix="/verification", tags=["verification"])
logger = logging.getLogger(__name__)


class VerificationSettingsUpdate(BaseModel):
    verifiedRole: str


def _verification_dict(v: RobloxVerification) -> dict:
    return {
        "id": v.id,
        "discordUserId": str(v.discord_user_id),
        "robloxUserId": str(v.roblox_user_id),
        "robloxUsername": v.roblox_username,
        "serverId": str(v.server_id),
        "verifiedAt": as_utc(v.verified_at).isoformat(),
    }


@router.get("/settings")
def get_settings(
    admin: dict = Depends(get_current_admin),
    settings: SecuritySettings = Depends(get_server_settings),
    roblox: RobloxClient = Depends(get_roblox),
):
    return {
        "verifiedRole": settings.verified_role_id or VERIFIED_ROLE_FALLBACK_NAME,
        "robloxApiConnected": roblox.is_connected,
    }


@router.post("/settings")
def post_settings(
    body: VerificationSettingsUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
    settings: SecuritySettings = Depends(get_server_settings),
):
    update_security_settings(engine, server_id, verified_role_id=body.verifiedRole)
    write_log(
        engine,
        server_id,
        EVENT_VERIFICATION,
        "Verification settings updated",
        user_id=admin_user_id(admin),
        details=f"Updated verified role to {body.verifiedRole}",
    )
    return {"success": True, "message": "Verification settings updated successfully"}


@router.post("/refresh-connection")
async def refresh_connection(
    admin: dict = Depends(get_current_admin),
    roblox: RobloxClient = Depends(get_roblox),
):
    ok = await roblox.refresh_connection()
    logger.info("Roblox connection refresh requested: %s", "ok" if ok else "failed")
    return {
        "success": ok,
        "connected": roblox.is_connected,
        "message": (
            "Roblox connection refreshed successfully" if ok
            else "Failed to refresh Roblox connection"
        ),
    }


@router.get("/list")
async def get_verifications(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    rows = await run_db(list_verifications, engine, server_id)
    return [_verification_dict(v) for v in rows]
