"""
bloxguard.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for the bot's identity and dashboard settings.
Secrets (bot token, JWT secret, Roblox cookie) stay in ``.env``; the
per-guild security toggles live in the ``security_settings`` table and are
edited from the dashboard.

Usage::

    from bloxguard.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.bot_prefix)        # "!"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BloxGuardConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Discord
    bot_prefix: str = "!"
    guild_id: int | None = None  # Primary guild shown on the dashboard

    # Dashboard
    dashboard_host: str = "0.0.0.0"
    dashboard_port: int = 5000

    # Admin / Hardened Access
    admin_role_id: int | None = None  # Dashboard login requires this role (or Administrator)

    # Bot behaviour (editable from the dashboard at runtime)
    debug_mode: bool = False
    delete_commands: bool = False


def _optional_int(value) -> int | None:
    return int(value) if value else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> BloxGuardConfig:
    """Read *path* and return a :class:`BloxGuardConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return BloxGuardConfig(
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=_optional_int(raw.get("guild_id")),
        dashboard_host=raw.get("dashboard_host", "0.0.0.0"),
        dashboard_port=int(raw.get("dashboard_port", 5000)),
        admin_role_id=_optional_int(raw.get("admin_role_id")),
        debug_mode=bool(raw.get("debug_mode", False)),
        delete_commands=bool(raw.get("delete_commands", False)),
    )
