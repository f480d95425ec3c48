"""
bloxguard.services.ticket_service — Support Ticket Records
===========================================================

Ticket rows are never deleted: closing a ticket removes its Discord
channel, but the record (issue, who closed it, why) stays for history.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from bloxguard.constants import EVENT_TICKET
from bloxguard.database.engine import get_session
from bloxguard.database.models import SecurityLog, Ticket, TicketStatus, as_utc, utcnow
from bloxguard.services.log_service import time_ago

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_open_ticket_for_user(engine, server_id: int, user_id: int) -> Ticket | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.scalars(
            select(Ticket).where(
                Ticket.server_id == server_id,
                Ticket.user_id == user_id,
                Ticket.status != TicketStatus.CLOSED,
            ).limit(1)
        ).first()


def get_ticket_by_channel(engine, channel_id: int) -> Ticket | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.scalars(
            select(Ticket).where(Ticket.channel_id == channel_id).order_by(Ticket.id.desc()).limit(1)
        ).first()


def list_tickets(engine, server_id: int, *, open_only: bool = False) -> list[Ticket]:
    """Tickets for *server_id*, newest first."""
    stmt = select(Ticket).where(Ticket.server_id == server_id)
    if open_only:
        stmt = stmt.where(Ticket.status != TicketStatus.CLOSED)
    stmt = stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc())
    with Session(engine, expire_on_commit=False) as session:
        return list(session.scalars(stmt).all())


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_ticket(
    engine,
    *,
    server_id: int,
    channel_id: int,
    user_id: int,
    issue: str,
) -> Ticket:
    with get_session(engine) as session:
        ticket = Ticket(
            server_id=server_id,
            channel_id=channel_id,
            user_id=user_id,
            issue=issue,
            status=TicketStatus.OPEN,
        )
        session.add(ticket)
        session.add(SecurityLog(
            server_id=server_id,
            event_type=EVENT_TICKET,
            action="Ticket opened",
            user_id=user_id,
            details=f"Issue: {issue}",
        ))
    logger.info("Ticket #%s opened by %d in channel %d", ticket.id, user_id, channel_id)
    return ticket


def close_ticket(
    engine,
    ticket_id: int,
    *,
    closed_by: int,
    reason: str,
) -> Ticket | None:
    """Mark a ticket closed.  Returns ``None`` if it doesn't exist or is already closed."""
    with get_session(engine) as session:
        ticket = session.get(Ticket, ticket_id)
        if ticket is None or ticket.status == TicketStatus.CLOSED:
            return None
        ticket.status = TicketStatus.CLOSED
        ticket.closed_at = utcnow()
        ticket.closed_by = closed_by
        ticket.closed_reason = reason
        session.add(SecurityLog(
            server_id=ticket.server_id,
            event_type=EVENT_TICKET,
            action="Ticket closed",
            user_id=closed_by,
            details=f"Ticket #{ticket.id} closed: {reason}",
        ))
    logger.info("Ticket #%d closed by %d (%s)", ticket_id, closed_by, reason)
    return ticket


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def ticket_summary(ticket: Ticket, now: datetime | None = None) -> dict:
    """Compact shape used by the dashboard's open-ticket widget."""
    return {
        "id": str(ticket.id),
        "status": ticket.status,
        "title": ticket.issue,
        "user": str(ticket.user_id),
        "timeAgo": time_ago(ticket.created_at, now, with_days=False),
    }


def ticket_to_dict(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "serverId": str(ticket.server_id),
        "channelId": str(ticket.channel_id),
        "userId": str(ticket.user_id),
        "issue": ticket.issue,
        "status": ticket.status,
        "createdAt": as_utc(ticket.created_at).isoformat(),
        "closedAt": as_utc(ticket.closed_at).isoformat() if ticket.closed_at else None,
        "closedBy": str(ticket.closed_by) if ticket.closed_by else None,
        "closedReason": ticket.closed_reason,
    }
