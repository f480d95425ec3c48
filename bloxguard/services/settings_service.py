"""
bloxguard.services.settings_service — Settings CRUD
====================================================

Typed read/write access to:

* ``security_settings`` — the per-guild toggles every event handler reads
  before acting, plus the website allow-list;
* ``discord_servers`` — which guild the dashboard is looking at;
* ``settings`` — bot-wide key/value knobs (prefix, debug mode, …).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bloxguard.database.engine import get_session
from bloxguard.database.models import DiscordServer, SecuritySettings, Setting

logger = logging.getLogger(__name__)

SECURITY_FIELDS = frozenset({
    "anti_nuke",
    "anti_hack",
    "anti_raid",
    "website_filter",
    "allowed_domains",
    "verified_role_id",
    "log_channel_id",
})


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------
def get_primary_server(engine, preferred_id: int | None = None) -> DiscordServer | None:
    """The configured guild if known, else the first registered one."""
    with Session(engine, expire_on_commit=False) as session:
        if preferred_id is not None:
            server = session.get(DiscordServer, preferred_id)
            if server is not None:
                return server
        return session.scalars(
            select(DiscordServer).order_by(DiscordServer.created_at, DiscordServer.id).limit(1)
        ).first()


def set_member_count(engine, server_id: int, member_count: int) -> None:
    with get_session(engine) as session:
        server = session.get(DiscordServer, server_id)
        if server is not None:
            server.member_count = member_count


# ---------------------------------------------------------------------------
# Security settings
# ---------------------------------------------------------------------------
def get_security_settings(engine, server_id: int) -> SecuritySettings | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.get(SecuritySettings, server_id)


def update_security_settings(engine, server_id: int, **changes: Any) -> SecuritySettings | None:
    """Apply *changes* and return the updated row.

    ``None`` values are skipped; an empty string clears the role/channel.
    """
    unknown = set(changes) - SECURITY_FIELDS
    if unknown:
        raise ValueError(f"Unknown security setting(s): {', '.join(sorted(unknown))}")

    with get_session(engine) as session:
        row = session.get(SecuritySettings, server_id)
        if row is None:
            return None
        for name, value in changes.items():
            if value is None:
                continue
            if name == "allowed_domains":
                value = list(dict.fromkeys(value))
            elif name in ("verified_role_id", "log_channel_id"):
                value = str(value).strip() or None
            setattr(row, name, value)
    return row


def add_allowed_domain(engine, server_id: int, domain: str) -> bool:
    """Add *domain* to the allow-list.  Returns False if it was already there."""
    with get_session(engine) as session:
        row = session.get(SecuritySettings, server_id)
        if row is None:
            raise LookupError(f"No security settings for server {server_id}")
        current = list(row.allowed_domains or [])
        if domain in current:
            return False
        row.allowed_domains = [*current, domain]
    return True


def remove_allowed_domain(engine, server_id: int, domain: str) -> bool:
    """Remove *domain* from the allow-list.  Returns False if it wasn't there."""
    with get_session(engine) as session:
        row = session.get(SecuritySettings, server_id)
        if row is None:
            raise LookupError(f"No security settings for server {server_id}")
        current = list(row.allowed_domains or [])
        if domain not in current:
            return False
        row.allowed_domains = [d for d in current if d != domain]
    return True


# ---------------------------------------------------------------------------
# Bot-wide key/value settings
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session."""
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def upsert_setting(engine, *, key: str, value: Any, category: str = "general") -> None:
    with get_session(engine) as session:
        existing = session.get(Setting, key)
        if existing:
            existing.value_json = json.dumps(value)
        else:
            session.add(Setting(key=key, value_json=json.dumps(value), category=category))


def get_bot_settings(engine) -> dict:
    with Session(engine) as session:
        return {
            "prefix": get_setting_value(session, "bot.prefix", "!"),
            "deleteCommands": bool(get_setting_value(session, "bot.delete_commands", False)),
            "debugMode": bool(get_setting_value(session, "bot.debug_mode", False)),
        }


def update_bot_settings(
    engine,
    *,
    prefix: str | None = None,
    delete_commands: bool | None = None,
    debug_mode: bool | None = None,
) -> None:
    for key, value in (
        ("bot.prefix", prefix),
        ("bot.delete_commands", delete_commands),
        ("bot.debug_mode", debug_mode),
    ):
        if value is not None:
            upsert_setting(engine, key=key, value=value, category="bot")
