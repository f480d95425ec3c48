"""
bloxguard.database.seed — Default Rows Seeder
==============================================

Baseline rows so the bot and dashboard work the moment a guild is seen:

* bot-wide ``settings`` keys (prefix, command deletion, debug mode);
* one ``discord_servers`` row per guild, with default
  ``security_settings`` (every protection on, the default allow-list).

Idempotent — only inserts what doesn't already exist.  Settings edited
from the dashboard are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from bloxguard.config import BloxGuardConfig
from bloxguard.constants import DEFAULT_ALLOWED_DOMAINS
from bloxguard.database.engine import get_session
from bloxguard.database.models import DiscordServer, SecuritySettings, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "bot.prefix": ("!", "bot", "Prefix for text commands"),
    "bot.delete_commands": (False, "bot", "Delete the invoking message after a text command"),
    "bot.debug_mode": (False, "bot", "Verbose (DEBUG) logging"),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


def _defaults_from_config(cfg: BloxGuardConfig | None) -> dict[str, object]:
    if cfg is None:
        return {}
    return {
        "bot.prefix": cfg.bot_prefix,
        "bot.delete_commands": cfg.delete_commands,
        "bot.debug_mode": cfg.debug_mode,
    }


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine, cfg: BloxGuardConfig | None = None) -> None:
    """Insert default bot settings that don't yet exist."""
    overrides = _defaults_from_config(cfg)
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(overrides.get(key, value)),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)


def ensure_server(
    engine: Engine,
    server_id: int,
    name: str,
    owner_id: int,
    member_count: int = 0,
) -> DiscordServer:
    """Upsert the guild row and create default security settings if missing."""
    with get_session(engine) as session:
        server = session.get(DiscordServer, server_id)
        if server is None:
            server = DiscordServer(
                id=server_id,
                name=name,
                owner_id=owner_id,
                member_count=member_count,
            )
            session.add(server)
            logger.info("Registered guild %s (%d)", name, server_id)
        else:
            server.name = name
            server.owner_id = owner_id
            server.member_count = member_count

        if session.get(SecuritySettings, server_id) is None:
            session.add(SecuritySettings(
                server_id=server_id,
                allowed_domains=list(DEFAULT_ALLOWED_DOMAINS),
            ))
            logger.info("Created default security settings for guild %d", server_id)
    return server
