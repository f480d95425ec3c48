"""
bloxguard.api.routes.dashboard — Overview widgets
==================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from bloxguard.api.deps import get_current_admin, get_engine, get_server_id
from bloxguard.constants import COMMAND_DOCS
from bloxguard.services.log_service import get_activity
from bloxguard.services.stats_service import compute_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

ACTIVITY_LIMIT = 10


@router.get("/stats")
def get_stats(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    return compute_stats(engine, server_id).to_dict()


@router.get("/activity")
def get_recent_activity(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    return get_activity(engine, server_id, ACTIVITY_LIMIT)


@router.get("/commands")
def get_commands(admin: dict = Depends(get_current_admin)):
    return COMMAND_DOCS
