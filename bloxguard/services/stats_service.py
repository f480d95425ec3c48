"""
bloxguard.services.stats_service — Computed Server Stats
=========================================================

Dashboard and ``/securitystats`` figures are derived on read from the
authoritative tables instead of being bumped by individual handlers, so
they can never drift:

* ``threatsBlocked``  — security logs flagged ``threat_blocked``
* ``verifiedMembers`` — Roblox verification records
* ``totalMembers``    — the guild's last known member count
* ``openTickets``     — tickets not yet closed
* ``needAttention``   — open tickets older than 24 hours
* ``securityScore``   — see :func:`security_score`
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bloxguard.constants import TICKET_ATTENTION_HOURS
from bloxguard.database.models import (
    DiscordServer,
    RobloxVerification,
    SecurityLog,
    SecuritySettings,
    Ticket,
    TicketStatus,
    utcnow,
)


@dataclass(frozen=True, slots=True)
class ServerStats:
    security_score: int
    threats_blocked: int
    verified_members: int
    total_members: int
    open_tickets: int
    need_attention: int

    def to_dict(self) -> dict:
        """camelCase keys, as served to the dashboard."""
        return {
            "securityScore": self.security_score,
            "threatsBlocked": self.threats_blocked,
            "verifiedMembers": self.verified_members,
            "totalMembers": self.total_members,
            "openTickets": self.open_tickets,
            "needAttention": self.need_attention,
        }


def security_score(
    settings: SecuritySettings | None,
    verified: int,
    total: int,
) -> int:
    """Score out of 100.

    20 points per enabled protection, 5 for a log channel, 5 for a
    verified role, and up to 10 for the share of members verified.
    """
    if settings is None:
        return 0
    score = 20 * sum((
        settings.anti_nuke,
        settings.anti_hack,
        settings.anti_raid,
        settings.website_filter,
    ))
    if settings.log_channel_id:
        score += 5
    if settings.verified_role_id:
        score += 5
    if total > 0:
        score += round(10 * min(verified, total) / total)
    return min(score, 100)


def compute_stats(engine, server_id: int, now: datetime | None = None) -> ServerStats:
    now = now or utcnow()
    attention_cutoff = now - timedelta(hours=TICKET_ATTENTION_HOURS)

    with Session(engine) as session:
        threats = session.scalar(
            select(func.count()).select_from(SecurityLog).where(
                SecurityLog.server_id == server_id,
                SecurityLog.threat_blocked.is_(True),
            )
        ) or 0
        verified = session.scalar(
            select(func.count()).select_from(RobloxVerification).where(
                RobloxVerification.server_id == server_id,
            )
        ) or 0
        open_tickets = session.scalar(
            select(func.count()).select_from(Ticket).where(
                Ticket.server_id == server_id,
                Ticket.status != TicketStatus.CLOSED,
            )
        ) or 0
        stale_tickets = session.scalar(
            select(func.count()).select_from(Ticket).where(
                Ticket.server_id == server_id,
                Ticket.status != TicketStatus.CLOSED,
                Ticket.created_at < attention_cutoff,
            )
        ) or 0
        server = session.get(DiscordServer, server_id)
        total = server.member_count if server else 0
        settings = session.get(SecuritySettings, server_id)
        score = security_score(settings, verified, total)

    return ServerStats(
        security_score=score,
        threats_blocked=threats,
        verified_members=verified,
        total_members=total,
        open_tickets=open_tickets,
        need_attention=stale_tickets,
    )
