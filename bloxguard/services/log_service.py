"""
bloxguard.services.log_service — Security Log Journal
======================================================

Every enforcement action (ban, timeout, deleted link, …) and every
configuration change writes exactly one :class:`SecurityLog` row.  The
dashboard's activity feed and the ``/securitystats`` command both read
from here.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from bloxguard.constants import ACTIVITY_TYPES, DEFAULT_ACTIVITY_TYPE
from bloxguard.database.engine import get_session
from bloxguard.database.models import SecurityLog, as_utc, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def write_log(
    engine,
    server_id: int,
    event_type: str,
    action: str,
    *,
    user_id: int | None = None,
    details: str | None = None,
    threat_blocked: bool = False,
) -> SecurityLog:
    """Append one security log entry and return it."""
    with get_session(engine) as session:
        entry = SecurityLog(
            server_id=server_id,
            event_type=event_type,
            action=action,
            user_id=user_id,
            details=details,
            threat_blocked=threat_blocked,
        )
        session.add(entry)
    logger.info("[%s] %s: %s — %s", server_id, event_type, action, details or "")
    return entry


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_recent_logs(engine, server_id: int, limit: int | None = None) -> list[SecurityLog]:
    """Logs for *server_id*, newest first, optionally capped at *limit*."""
    stmt = (
        select(SecurityLog)
        .where(SecurityLog.server_id == server_id)
        .order_by(SecurityLog.timestamp.desc(), SecurityLog.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    with Session(engine, expire_on_commit=False) as session:
        return list(session.scalars(stmt).all())


# ---------------------------------------------------------------------------
# Activity feed formatting
# ---------------------------------------------------------------------------
def time_ago(when: datetime, now: datetime | None = None, *, with_days: bool = True) -> str:
    """Human "3 minutes ago" string.

    Ticket lists on the dashboard stop at hours (``with_days=False``) and
    use the shorter ``min`` unit.
    """
    now = now or utcnow()
    seconds = max(0, int((now - as_utc(when)).total_seconds()))
    days, hours, minutes = seconds // 86400, seconds // 3600, seconds // 60

    if with_days and days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    if minutes > 0:
        if not with_days:
            return f"{minutes} min ago"
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    return "just now"


def activity_type(event_type: str) -> str:
    return ACTIVITY_TYPES.get(event_type, DEFAULT_ACTIVITY_TYPE)


def format_activity(entry: SecurityLog, now: datetime | None = None) -> dict:
    """Shape a log row the way the dashboard's activity panel expects."""
    ts = as_utc(entry.timestamp)
    return {
        "id": str(entry.id),
        "type": activity_type(entry.event_type),
        "icon": "",
        "title": entry.action,
        "description": entry.details or "",
        "timestamp": ts.isoformat(),
        "timeAgo": time_ago(ts, now),
    }


def get_activity(engine, server_id: int, limit: int) -> list[dict]:
    now = utcnow()
    return [format_activity(e, now) for e in get_recent_logs(engine, server_id, limit)]
