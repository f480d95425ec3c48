"""
bloxguard.services.embeds — Discord embed builders
===================================================

All embed construction lives here so cogs only supply data — no layout
concerns.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

import discord

from bloxguard.constants import (
    COLOR_BRAND,
    COLOR_DANGER,
    COLOR_INFO,
    COLOR_SUCCESS,
    COLOR_WARNING,
    RAID_MODE_DURATION_SECONDS,
    VERIFICATION_TTL_MINUTES,
)
from bloxguard.database.models import (
    PendingVerification,
    RobloxVerification,
    SecurityLog,
    SecuritySettings,
    as_utc,
)
from bloxguard.services.roblox import GroupRole
from bloxguard.services.stats_service import ServerStats

NUKE_REASON_LABELS: dict[str, str] = {
    "mass_channel_deletion": "Mass channel deletion",
    "mass_role_deletion": "Mass role deletion",
    "mass_ban": "Mass banning",
    "suspicious_permission_changes": "Suspicious permission changes",
}


def _now() -> datetime:
    return datetime.now(UTC)


def _check(flag: bool) -> str:
    return "✅ Enabled" if flag else "❌ Disabled"


# ---------------------------------------------------------------------------
# Anti-nuke / anti-hack
# ---------------------------------------------------------------------------
def build_nuke_embed(user: discord.abc.User, reason: str, *, banned: bool) -> discord.Embed:
    label = NUKE_REASON_LABELS.get(reason, reason)
    if banned:
        embed = discord.Embed(
            title="\U0001f6e1️ Anti-Nuke Protection Triggered",
            description=f"{user.mention} was banned for a nuke attempt.",
            color=COLOR_DANGER,
            timestamp=_now(),
        )
        embed.add_field(name="Action", value="Roles removed, member banned", inline=False)
    else:
        embed = discord.Embed(
            title="⚠️ Anti-Nuke Warning",
            description=(
                f"{user.mention} crossed the anti-nuke threshold but is the owner "
                "or an administrator. No action was taken."
            ),
            color=COLOR_WARNING,
            timestamp=_now(),
        )
    embed.add_field(name="User", value=f"{user} ({user.id})", inline=True)
    embed.add_field(name="Reason", value=label, inline=True)
    return embed


def build_suspicious_activity_embed(
    user: discord.abc.User, reason: str, *, stripped: bool,
) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f6a8 Anti-Hack Protection Triggered" if stripped else "⚠️ Anti-Hack Warning",
        description=(
            f"Suspicious activity by {user.mention}."
            + ("" if stripped else " They are the owner or an administrator, so only the change was reverted.")
        ),
        color=COLOR_DANGER if stripped else COLOR_WARNING,
        timestamp=_now(),
    )
    embed.add_field(name="User", value=f"{user} ({user.id})", inline=True)
    embed.add_field(name="Reason", value=NUKE_REASON_LABELS.get(reason, reason), inline=True)
    embed.add_field(
        name="Action",
        value="Roles removed, role permissions reverted" if stripped else "Role permissions reverted",
        inline=False,
    )
    return embed


def build_webhook_embed(user: discord.abc.User, channel: discord.abc.GuildChannel) -> discord.Embed:
    embed = discord.Embed(
        title="⚠️ Suspicious Webhook Creation",
        description=f"A recently joined member created a webhook in {channel.mention}.",
        color=COLOR_WARNING,
        timestamp=_now(),
    )
    embed.add_field(name="User", value=f"{user} ({user.id})", inline=True)
    return embed


def build_integration_embed(guild: discord.Guild) -> discord.Embed:
    return discord.Embed(
        title="⚠️ Integration Updated",
        description=f"The integrations of **{guild.name}** were changed. Review them if unexpected.",
        color=COLOR_WARNING,
        timestamp=_now(),
    )


# ---------------------------------------------------------------------------
# Anti-raid
# ---------------------------------------------------------------------------
def build_raid_embed(member_count: int) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f6e1️ Anti-Raid Protection Activated",
        description="A raid has been detected and mitigated.",
        color=COLOR_DANGER,
        timestamp=_now(),
    )
    embed.add_field(name="Members Affected", value=f"{member_count} suspicious joins", inline=False)
    embed.add_field(name="Action Taken", value="New members timed out for 3 hours", inline=False)
    embed.add_field(
        name="Note",
        value=(
            f"Raid mode ends automatically in {RAID_MODE_DURATION_SECONDS // 60} minutes, "
            "or use /endraid."
        ),
        inline=False,
    )
    return embed


def build_raid_ended_embed() -> discord.Embed:
    return discord.Embed(
        title="✅ Raid Mode Deactivated",
        description="The server is no longer in raid protection mode.",
        color=COLOR_SUCCESS,
        timestamp=_now(),
    )


# ---------------------------------------------------------------------------
# Website filter
# ---------------------------------------------------------------------------
def build_url_blocked_embed(
    author: discord.abc.User, channel: discord.abc.GuildChannel, urls: Sequence[str],
) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f517 Blocked Link Removed",
        description=f"A message from {author.mention} in {channel.mention} contained blocked links.",
        color=COLOR_WARNING,
        timestamp=_now(),
    )
    embed.add_field(name="Blocked URLs", value="\n".join(urls)[:1024], inline=False)
    return embed


def build_url_blocked_dm_embed(guild_name: str, urls: Sequence[str]) -> discord.Embed:
    embed = discord.Embed(
        title="Message Removed",
        description=(
            f"Your message in **{guild_name}** was removed because it linked to "
            "a website that isn't on the server's allowed list."
        ),
        color=COLOR_WARNING,
    )
    embed.add_field(name="Blocked URLs", value="\n".join(urls)[:1024], inline=False)
    embed.set_footer(text="Ask a moderator if you think this website should be allowed.")
    return embed


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------
def build_verification_instructions_embed(pending: PendingVerification) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f510 Roblox Verification",
        description=(
            f"Verifying **{pending.pending_roblox_username}**. "
            "Follow these steps to link your account:"
        ),
        color=COLOR_BRAND,
    )
    embed.add_field(
        name="Steps",
        value=(
            "1. Go to your Roblox profile and edit your **About** section\n"
            f"2. Paste this code anywhere in it: `{pending.verification_code}`\n"
            "3. Save your profile\n"
            "4. Run `/checkverify` here"
        ),
        inline=False,
    )
    embed.add_field(name="Verification Code", value=f"`{pending.verification_code}`", inline=True)
    embed.set_footer(text=f"This code expires in {VERIFICATION_TTL_MINUTES} minutes.")
    return embed


def build_verified_embed(record: RobloxVerification) -> discord.Embed:
    return discord.Embed(
        title="✅ Verification Complete",
        description=(
            f"Your Discord account is now linked to Roblox user **{record.roblox_username}**. "
            "You may remove the code from your profile."
        ),
        color=COLOR_SUCCESS,
    )


def build_whois_embed(user: discord.abc.User, record: RobloxVerification) -> discord.Embed:
    embed = discord.Embed(
        title=f"Roblox account of {user.display_name}",
        url=f"https://www.roblox.com/users/{record.roblox_user_id}/profile",
        color=COLOR_INFO,
    )
    embed.add_field(name="Roblox Username", value=record.roblox_username, inline=True)
    embed.add_field(name="Roblox ID", value=str(record.roblox_user_id), inline=True)
    embed.add_field(
        name="Verified",
        value=discord.utils.format_dt(as_utc(record.verified_at), style="R"),
        inline=True,
    )
    embed.set_thumbnail(url=user.display_avatar.url)
    return embed


# ---------------------------------------------------------------------------
# Security commands
# ---------------------------------------------------------------------------
def build_security_stats_embed(
    guild_name: str,
    settings: SecuritySettings,
    stats: ServerStats,
    logs: Sequence[SecurityLog],
) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f6e1️ Security Status — {guild_name}",
        color=COLOR_BRAND,
        timestamp=_now(),
    )
    embed.add_field(name="Security Score", value=f"{stats.security_score}/100", inline=True)
    embed.add_field(name="Threats Blocked", value=str(stats.threats_blocked), inline=True)
    embed.add_field(
        name="Verified Members",
        value=f"{stats.verified_members}/{stats.total_members}",
        inline=True,
    )
    embed.add_field(
        name="Protections",
        value=(
            f"Anti-Nuke: {_check(settings.anti_nuke)}\n"
            f"Anti-Hack: {_check(settings.anti_hack)}\n"
            f"Anti-Raid: {_check(settings.anti_raid)}\n"
            f"Website Filter: {_check(settings.website_filter)}"
        ),
        inline=False,
    )
    if logs:
        lines = [
            f"{discord.utils.format_dt(as_utc(log.timestamp), style='R')} "
            f"**{log.action}** ({log.event_type})"
            for log in logs
        ]
        embed.add_field(name="Recent Events", value="\n".join(lines)[:1024], inline=False)
    else:
        embed.add_field(name="Recent Events", value="No security events recorded.", inline=False)
    return embed


def build_lockdown_embed(reason: str, minutes: int, *, ended: bool = False) -> discord.Embed:
    if ended:
        return discord.Embed(
            title="\U0001f513 Lockdown Lifted",
            description="Members can send messages again.",
            color=COLOR_SUCCESS,
            timestamp=_now(),
        )
    embed = discord.Embed(
        title="\U0001f512 Server Lockdown",
        description="Sending messages has been temporarily disabled.",
        color=COLOR_DANGER,
        timestamp=_now(),
    )
    embed.add_field(name="Reason", value=reason, inline=False)
    embed.add_field(name="Duration", value=f"{minutes} minute{'s' if minutes != 1 else ''}", inline=True)
    return embed


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------
def build_ticket_embed(user: discord.abc.User, issue: str, ticket_id: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f3ab Ticket #{ticket_id}",
        description=(
            f"Thanks {user.mention}, a staff member will be with you shortly.\n"
            "Press **Close Ticket** when your issue is resolved."
        ),
        color=COLOR_BRAND,
        timestamp=_now(),
    )
    embed.add_field(name="Issue", value=issue[:1024], inline=False)
    return embed


def build_ticket_panel_embed() -> discord.Embed:
    return discord.Embed(
        title="\U0001f3ab Support Tickets",
        description="Need help? Press the button below to open a private ticket with the staff team.",
        color=COLOR_BRAND,
    )


def build_ticket_closed_embed(closed_by: discord.abc.User, reason: str, delay: int) -> discord.Embed:
    embed = discord.Embed(
        title="Ticket Closed",
        description=f"Closed by {closed_by.mention}. This channel will be deleted in {delay} seconds.",
        color=COLOR_DANGER,
    )
    embed.add_field(name="Reason", value=reason[:1024], inline=False)
    return embed


# ---------------------------------------------------------------------------
# Roblox group
# ---------------------------------------------------------------------------
def build_group_info_embed(info: dict) -> discord.Embed:
    embed = discord.Embed(
        title=info["name"],
        url=f"https://www.roblox.com/groups/{info['id']}",
        description=(info.get("description") or "No description.")[:2048],
        color=COLOR_INFO,
    )
    embed.add_field(name="Group ID", value=str(info["id"]), inline=True)
    embed.add_field(name="Members", value=f"{info['memberCount']:,}", inline=True)
    if info.get("owner"):
        embed.add_field(name="Owner", value=info["owner"], inline=True)
    return embed


def build_ranks_embed(roles: Sequence[GroupRole]) -> discord.Embed:
    lines = [f"`{r.rank:>3}` {r.name}" for r in roles if r.rank > 0]
    return discord.Embed(
        title="Group Ranks",
        description="\n".join(lines)[:4096] or "No ranks found.",
        color=COLOR_INFO,
    )
