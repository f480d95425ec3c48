"""
BloxGuard — Discord Security & Roblox Verification Bot
========================================================
Protects a Discord community from nukes, compromised staff accounts,
join raids and phishing links, links members to their Roblox accounts,
runs support tickets, and exposes a JSON API for the admin dashboard.

Package layout::

    bloxguard/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Thresholds, alphabets, default allow-list
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (servers, settings, logs, tickets, …)
    │   └── seed.py        # Default server/settings rows
    ├── engine/
    │   ├── windows.py     # Per-actor sliding-window counters
    │   ├── raid.py        # Join-burst raid detector
    │   └── url_filter.py  # URL extraction + allow-list matching
    ├── services/
    │   ├── log_service.py          # Security log writes + activity feed
    │   ├── settings_service.py     # Security/bot settings CRUD
    │   ├── stats_service.py        # Computed server stats
    │   ├── verification_service.py # Roblox verification state machine
    │   ├── ticket_service.py       # Ticket records
    │   ├── roblox.py               # Roblox web API client
    │   ├── log_channel.py          # Log-channel delivery
    │   └── embeds.py               # Discord embed builders
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── runner.py      # Start/restart wrapper used by the dashboard
    │   └── cogs/          # Anti-nuke, anti-hack, anti-raid, filter, tickets, …
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Discord OAuth2 → JWT
        └── routes/        # Dashboard REST endpoints
"""

__version__ = "0.1.0"
