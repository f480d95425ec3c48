"""
bloxguard.api.routes.security — Protection toggles & security log
==================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bloxguard.api.deps import (
    admin_user_id,
    get_current_admin,
    get_engine,
    get_server_id,
    get_server_settings,
)
from bloxguard.constants import EVENT_SETTINGS
from bloxguard.database.models import SecuritySettings
from bloxguard.engine.url_filter import normalize_domain
from bloxguard.services.log_service import get_activity, write_log
from bloxguard.services.settings_service import update_security_settings

router = APIRouter(prefix="/security", tags=["security"])
logger = logging.getLogger(__name__)

LOG_LIMIT = 20


class SecuritySettingsUpdate(BaseModel):
    antiNuke: bool | None = None
    antiHack: bool | None = None
    antiRaid: bool | None = None
    websiteFilter: bool | None = None
    allowedDomains: list[str] | None = None


def _settings_dict(settings: SecuritySettings) -> dict:
    return {
        "antiNuke": settings.anti_nuke,
        "antiHack": settings.anti_hack,
        "antiRaid": settings.anti_raid,
        "websiteFilter": settings.website_filter,
        "allowedDomains": list(settings.allowed_domains or []),
    }


@router.get("/settings")
def get_settings(
    admin: dict = Depends(get_current_admin),
    settings: SecuritySettings = Depends(get_server_settings),
):
    return _settings_dict(settings)


@router.post("/settings")
def post_settings(
    body: SecuritySettingsUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
    settings: SecuritySettings = Depends(get_server_settings),
):
    domains = None
    if body.allowedDomains is not None:
        domains = [d for d in (normalize_domain(x) for x in body.allowedDomains) if d]

    update_security_settings(
        engine,
        server_id,
        anti_nuke=body.antiNuke,
        anti_hack=body.antiHack,
        anti_raid=body.antiRaid,
        website_filter=body.websiteFilter,
        allowed_domains=domains,
    )
    write_log(
        engine,
        server_id,
        EVENT_SETTINGS,
        "Security settings updated",
        user_id=admin_user_id(admin),
        details="Updated security feature settings",
    )
    logger.info("Security settings updated by %s", admin.get("username"))
    return {"success": True, "message": "Security settings updated successfully"}


@router.get("/logs")
def get_logs(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    return get_activity(engine, server_id, LOG_LIMIT)

