"""
bloxguard.constants — Shared Constants
=======================================

Single source of truth for detection thresholds, the verification code
alphabet, the default website allow-list, log event types and embed
colours.  Import from here instead of duplicating in cogs and services.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Anti-nuke / anti-hack sliding windows (threshold, timeframe seconds)
# ---------------------------------------------------------------------------
NUKE_THRESHOLD = 3
NUKE_TIMEFRAME_SECONDS = 10.0

PERMISSION_THRESHOLD = 3
PERMISSION_TIMEFRAME_SECONDS = 30.0

# Permissions whose sudden grant on a role counts as escalation
DANGEROUS_PERMISSIONS: frozenset[str] = frozenset({
    "administrator",
    "ban_members",
    "kick_members",
    "manage_channels",
    "manage_guild",
    "manage_roles",
    "manage_webhooks",
})

# Purge this much message history when banning a nuker
NUKE_BAN_DELETE_SECONDS = 7 * 24 * 3600

# Webhooks created by members younger than this are flagged
WEBHOOK_NEW_MEMBER_DAYS = 7

# ---------------------------------------------------------------------------
# Anti-raid
# ---------------------------------------------------------------------------
RAID_JOIN_THRESHOLD = 5
RAID_JOIN_TIMEFRAME_SECONDS = 10.0
RAID_NEW_ACCOUNT_HOURS = 24
RAID_NEW_ACCOUNT_RATIO = 0.6
RAID_SIMILAR_NAME_RATIO = 0.8
RAID_TIMEOUT_HOURS = 3
RAID_MODE_DURATION_SECONDS = 15 * 60

# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------
# No 0/O or 1/I so codes survive being retyped by hand
VERIFICATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
VERIFICATION_CODE_LENGTH = 8
VERIFICATION_TTL_MINUTES = 30
VERIFIED_ROLE_FALLBACK_NAME = "Verified"

# ---------------------------------------------------------------------------
# Tickets / lockdown
# ---------------------------------------------------------------------------
TICKET_DELETE_DELAY_SECONDS = 10
TICKET_ATTENTION_HOURS = 24
LOCKDOWN_DEFAULT_MINUTES = 10

CREATE_TICKET_CUSTOM_ID = "bloxguard:create_ticket"
CLOSE_TICKET_CUSTOM_ID = "bloxguard:close_ticket"

# ---------------------------------------------------------------------------
# Website filter
# ---------------------------------------------------------------------------
DEFAULT_ALLOWED_DOMAINS: tuple[str, ...] = ("roblox.com", "docs.google.com")

# Used whenever a guild's allow-list is empty
FALLBACK_ALLOWED_DOMAINS: tuple[str, ...] = (
    "roblox.com",
    "www.roblox.com",
    "docs.google.com",
    "drive.google.com",
    "discord.com",
    "discord.gg",
    "media.discordapp.net",
    "cdn.discordapp.com",
    "tenor.com",
    "giphy.com",
    "github.com",
    "youtube.com",
    "youtu.be",
    "twitch.tv",
)

URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)",
    re.IGNORECASE,
)

# ---------------------------------------------------------------------------
# Security log event types
# ---------------------------------------------------------------------------
EVENT_ANTI_NUKE = "anti-nuke"
EVENT_ANTI_HACK = "anti-hack"
EVENT_ANTI_RAID = "anti-raid"
EVENT_WEBSITE_FILTER = "websiteFilter"
EVENT_VERIFICATION = "verification"
EVENT_TICKET = "ticket"
EVENT_LOCKDOWN = "lockdown"
EVENT_PROMOTION = "promotion"
EVENT_SETTINGS = "settings"

# Dashboard activity categories
ACTIVITY_TYPES: dict[str, str] = {
    EVENT_ANTI_RAID: "antiRaid",
    EVENT_ANTI_NUKE: "antiRaid",
    EVENT_ANTI_HACK: "antiRaid",
    EVENT_WEBSITE_FILTER: "websiteFilter",
    EVENT_VERIFICATION: "verification",
    EVENT_TICKET: "ticket",
}
DEFAULT_ACTIVITY_TYPE = "settings"

# ---------------------------------------------------------------------------
# Embed colours (hex ints, wrapped in discord.Color by embeds.py)
# ---------------------------------------------------------------------------
COLOR_DANGER = 0xED4245
COLOR_WARNING = 0xFEE75C
COLOR_SUCCESS = 0x57F287
COLOR_INFO = 0x3498DB
COLOR_BRAND = 0x5865F2

# ---------------------------------------------------------------------------
# Command reference served to the dashboard
# ---------------------------------------------------------------------------
COMMAND_DOCS: list[dict] = [
    {
        "name": "Verification Commands",
        "color": "hsl(235, 86%, 65%)",
        "commands": [
            {"command": "/verify [username]", "description": "Starts linking your Discord account to a Roblox account."},
            {"command": "/checkverify", "description": "Checks your Roblox profile for the verification code."},
            {"command": "/reverify [username]", "description": "Removes your current link and starts verification again."},
            {"command": "/whois @user", "description": "Shows the Roblox account linked to the mentioned Discord user."},
        ],
    },
    {
        "name": "Roblox Management",
        "color": "hsl(150, 86%, 65%)",
        "commands": [
            {"command": "/promote [username] [rank]", "description": "Sets the Roblox user's rank in the linked group."},
            {"command": "/groupinfo", "description": "Displays information about the connected Roblox group."},
            {"command": "/ranks", "description": "Lists all available ranks in the Roblox group."},
        ],
    },
    {
        "name": "Security Commands",
        "color": "hsl(0, 86%, 65%)",
        "commands": [
            {"command": "/securitystats", "description": "Shows current security status and recent threats."},
            {"command": "/lockdown [reason] [duration]", "description": "Temporarily stops members from sending messages."},
            {"command": "/allowsite [url]", "description": "Adds a website to the allowed URLs list (Admin only)."},
            {"command": "/disallowsite [url]", "description": "Removes a website from the allowed URLs list (Admin only)."},
            {"command": "/endraid", "description": "Ends raid mode before its automatic timeout."},
        ],
    },
    {
        "name": "Ticket Commands",
        "color": "hsl(60, 86%, 65%)",
        "commands": [
            {"command": "/ticket [issue]", "description": "Creates a new support ticket with the specified issue."},
            {"command": "/closeticket [reason]", "description": "Closes an active ticket channel with the given reason."},
            {"command": "/ticketpanel [channel]", "description": "Posts a ticket panel users can open tickets from (Admin only)."},
        ],
    },
]
