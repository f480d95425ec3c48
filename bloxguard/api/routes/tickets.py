"""
bloxguard.api.routes.tickets — Ticket lists
============================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from bloxguard.api.deps import get_current_admin, get_engine, get_server_id
from bloxguard.services.ticket_service import list_tickets, ticket_summary, ticket_to_dict

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("/list")
def get_open_tickets(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    return [ticket_summary(t) for t in list_tickets(engine, server_id, open_only=True)]


@router.get("/all")
def get_all_tickets(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    server_id: int = Depends(get_server_id),
):
    return [ticket_to_dict(t) for t in list_tickets(engine, server_id)]
