"""
tests/test_protection_cogs.py — Anti-nuke, anti-raid, anti-hack & link filter
==============================================================================

The cogs run against a lightweight mock bot whose trackers are real and
whose database is the in-memory test engine, so every assertion about
"exactly one log entry" hits actual rows.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import discord
from sqlalchemy import select
from sqlalchemy.orm import Session

from bloxguard.bot.cogs.anti_hack import AntiHack, newly_granted
from bloxguard.bot.cogs.anti_nuke import AntiNuke
from bloxguard.bot.cogs.anti_raid import AntiRaid
from bloxguard.bot.cogs.tickets import Tickets, ticket_channel_name
from bloxguard.bot.cogs.website_filter import WebsiteFilter
from bloxguard.constants import (
    NUKE_THRESHOLD,
    NUKE_TIMEFRAME_SECONDS,
    PERMISSION_THRESHOLD,
    PERMISSION_TIMEFRAME_SECONDS,
)
from bloxguard.database.models import SecurityLog
from bloxguard.engine.raid import RaidTracker
from bloxguard.engine.windows import ActorWindowTracker
from bloxguard.services.settings_service import get_security_settings, update_security_settings
from bloxguard.services.ticket_service import create_ticket, get_ticket_by_channel
from conftest import GUILD_ID, OWNER_ID

ATTACKER_ID = 2002


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_bot(engine) -> MagicMock:
    """Create a lightweight mock BloxGuardBot backed by the test engine."""
    bot = MagicMock()
    bot.engine = engine
    bot.channel_deletions = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
    bot.role_deletions = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
    bot.bans = ActorWindowTracker(NUKE_THRESHOLD, NUKE_TIMEFRAME_SECONDS)
    bot.permission_grants = ActorWindowTracker(PERMISSION_THRESHOLD, PERMISSION_TIMEFRAME_SECONDS)
    bot.raids = RaidTracker()

    async def _settings(guild_id):
        return get_security_settings(engine, guild_id)

    bot.security_settings = _settings
    return bot


def _make_guild(executor: MagicMock | None = None) -> MagicMock:
    """Mock guild whose audit log always names ``guild.executor``."""
    guild = MagicMock()
    guild.id = GUILD_ID
    guild.name = "Test Guild"
    guild.owner_id = OWNER_ID
    guild.ban = AsyncMock()
    guild.text_channels = []
    members: dict[int, MagicMock] = {}
    guild.members_by_id = members
    guild.get_member = members.get
    guild.audit_calls = 0
    guild.executor = executor

    def _audit_logs(limit=1, action=None):
        guild.audit_calls += 1

        async def _entries():
            entry = MagicMock()
            entry.user = guild.executor
            entry.target = None
            yield entry

        return _entries()

    guild.audit_logs = _audit_logs
    return guild


def _make_member(
    guild: MagicMock,
    member_id: int,
    *,
    name: str = "member",
    admin: bool = False,
    bot: bool = False,
    created_at: datetime | None = None,
) -> MagicMock:
    role = MagicMock()
    role.is_default.return_value = False
    role.managed = False
    everyone = MagicMock()
    everyone.is_default.return_value = True

    member = MagicMock()
    member.id = member_id
    member.name = name
    member.bot = bot
    member.guild = guild
    member.roles = [everyone, role]
    member.guild_permissions.administrator = admin
    member.created_at = created_at or datetime.now(UTC) - timedelta(days=400)
    member.remove_roles = AsyncMock()
    member.timeout = AsyncMock()
    member.send = AsyncMock()
    guild.members_by_id[member_id] = member
    return member


def _logs(engine, action: str) -> list[SecurityLog]:
    with Session(engine) as s:
        return list(s.scalars(select(SecurityLog).where(SecurityLog.action == action)).all())


def _deleted_channel(guild: MagicMock, channel_id: int) -> MagicMock:
    channel = MagicMock()
    channel.id = channel_id
    channel.guild = guild
    return channel


# ===========================================================================
# Anti-nuke
# ===========================================================================
class TestAntiNuke:
    def _setup(self, db_engine, **member_kwargs):
        bot = _make_bot(db_engine)
        guild = _make_guild()
        attacker = _make_member(guild, member_kwargs.pop("member_id", ATTACKER_ID), **member_kwargs)
        guild.executor = attacker
        return bot, guild, attacker, AntiNuke(bot)

    def _delete_channels(self, cog, guild, count):
        async def _go():
            for i in range(count):
                await cog.on_guild_channel_delete(_deleted_channel(guild, 900 + i))
        run_async(_go())

    def test_third_deletion_bans_once(self, db_engine, server):
        bot, guild, attacker, cog = self._setup(db_engine)

        self._delete_channels(cog, guild, 3)

        guild.ban.assert_awaited_once()
        _, kwargs = guild.ban.call_args
        assert kwargs["delete_message_seconds"] == 7 * 24 * 3600
        assert "Anti-Nuke triggered" in kwargs["reason"]
        attacker.remove_roles.assert_awaited_once()
        bans = _logs(db_engine, "Auto-ban")
        assert len(bans) == 1
        assert bans[0].threat_blocked is True
        assert bans[0].details == "User banned for nuke attempt: mass_channel_deletion"

    def test_two_deletions_do_nothing(self, db_engine, server):
        _, guild, _, cog = self._setup(db_engine)
        self._delete_channels(cog, guild, 2)
        guild.ban.assert_not_awaited()
        assert _logs(db_engine, "Auto-ban") == []

    def test_deletions_spread_over_window(self, db_engine, server):
        bot, guild, attacker, cog = self._setup(db_engine)
        long_ago = time.time() - 20
        bot.channel_deletions.record(GUILD_ID, attacker.id, now=long_ago)
        bot.channel_deletions.record(GUILD_ID, attacker.id, now=long_ago + 1)

        self._delete_channels(cog, guild, 1)

        guild.ban.assert_not_awaited()

    def test_owner_only_gets_warning(self, db_engine, server):
        _, guild, owner, cog = self._setup(db_engine, member_id=OWNER_ID)

        self._delete_channels(cog, guild, 3)

        guild.ban.assert_not_awaited()
        owner.remove_roles.assert_not_awaited()
        assert len(_logs(db_engine, "Warning only")) == 1
        assert _logs(db_engine, "Auto-ban") == []

    def test_administrator_only_gets_warning(self, db_engine, server):
        _, guild, admin, cog = self._setup(db_engine, admin=True)
        self._delete_channels(cog, guild, 3)
        guild.ban.assert_not_awaited()
        assert len(_logs(db_engine, "Warning only")) == 1

    def test_disabled_toggle_skips_audit_lookup(self, db_engine, server):
        update_security_settings(db_engine, GUILD_ID, anti_nuke=False)
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiNuke(bot)

        self._delete_channels(cog, guild, 3)

        assert guild.audit_calls == 0
        guild.ban.assert_not_awaited()

    def test_bot_executor_is_ignored(self, db_engine, server):
        _, guild, _, cog = self._setup(db_engine, bot=True)
        self._delete_channels(cog, guild, 3)
        guild.ban.assert_not_awaited()

    def test_failed_ban_writes_no_log(self, db_engine, server):
        _, guild, _, cog = self._setup(db_engine)
        guild.ban.side_effect = discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "no")
        self._delete_channels(cog, guild, 3)
        assert _logs(db_engine, "Auto-ban") == []

    def test_each_action_has_its_own_window(self, db_engine, server):
        bot, guild, attacker, cog = self._setup(db_engine)
        role = MagicMock()
        role.guild = guild
        role.id = 77

        async def _go():
            await cog.on_guild_channel_delete(_deleted_channel(guild, 1))
            await cog.on_guild_channel_delete(_deleted_channel(guild, 2))
            await cog.on_guild_role_delete(role)

        run_async(_go())
        guild.ban.assert_not_awaited()
        assert bot.role_deletions.count(GUILD_ID, attacker.id) == 1


# ===========================================================================
# Anti-hack
# ===========================================================================
class TestNewlyGranted:
    def test_only_new_dangerous_permissions(self):
        before = discord.Permissions(kick_members=True, send_messages=True)
        after = discord.Permissions(
            kick_members=True, ban_members=True, administrator=True, embed_links=True,
        )
        assert newly_granted(before, after) == ["administrator", "ban_members"]

    def test_revocation_is_not_a_grant(self):
        before = discord.Permissions(manage_roles=True)
        assert newly_granted(before, discord.Permissions.none()) == []


class TestAntiHack:
    def _escalate(self, cog, guild, times):
        async def _go():
            roles = []
            for i in range(times):
                before = MagicMock()
                before.permissions = discord.Permissions.none()
                after = MagicMock()
                after.id = 600 + i
                after.name = f"role{i}"
                after.guild = guild
                after.permissions = discord.Permissions(administrator=True)
                after.edit = AsyncMock()
                await cog.on_guild_role_update(before, after)
                roles.append(after)
            return roles
        return run_async(_go())

    def test_third_escalation_strips_and_reverts(self, db_engine, server):
        guild = _make_guild()
        attacker = _make_member(guild, ATTACKER_ID)
        guild.executor = attacker
        cog = AntiHack(_make_bot(db_engine))

        roles = self._escalate(cog, guild, 3)

        attacker.remove_roles.assert_awaited_once()
        roles[2].edit.assert_awaited_once()
        assert roles[2].edit.call_args.kwargs["permissions"] == discord.Permissions.none()
        roles[0].edit.assert_not_awaited()
        logs = _logs(db_engine, "Suspicious activity detected")
        assert len(logs) == 1
        assert logs[0].threat_blocked is True

    def test_administrator_is_warned_but_change_reverted(self, db_engine, server):
        guild = _make_guild()
        admin = _make_member(guild, ATTACKER_ID, admin=True)
        guild.executor = admin
        cog = AntiHack(_make_bot(db_engine))

        roles = self._escalate(cog, guild, 3)

        admin.remove_roles.assert_not_awaited()
        roles[2].edit.assert_awaited_once()
        assert len(_logs(db_engine, "Warning only")) == 1

    def test_disabled_toggle(self, db_engine, server):
        update_security_settings(db_engine, GUILD_ID, anti_hack=False)
        guild = _make_guild()
        guild.executor = _make_member(guild, ATTACKER_ID)
        self._escalate(AntiHack(_make_bot(db_engine)), guild, 3)
        assert guild.audit_calls == 0


# ===========================================================================
# Anti-raid
# ===========================================================================
class TestAntiRaid:
    NAMES = ["alice", "bob", "charlie", "dmitri", "eve"]

    def _joiners(self, guild):
        new = datetime.now(UTC) - timedelta(hours=2)
        return [
            _make_member(guild, 3000 + i, name=name, created_at=new)
            for i, name in enumerate(self.NAMES)
        ]

    def test_burst_of_new_accounts_is_restricted(self, db_engine, server):
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiRaid(bot)
        joiners = self._joiners(guild)
        late = _make_member(guild, 4000, name="latecomer")

        async def _go():
            for m in joiners:
                await cog.on_member_join(m)
            active = bot.raids.is_active(GUILD_ID)
            has_timer = bot.raids.state(GUILD_ID).end_task is not None
            await cog.on_member_join(late)
            ended = await cog.end_raid_mode(guild)
            await asyncio.sleep(0)
            return active, has_timer, ended

        active, has_timer, ended = run_async(_go())

        assert active and has_timer and ended
        for m in joiners:
            m.timeout.assert_awaited_once()
            assert m.timeout.call_args.args[0] == timedelta(hours=3)
        late.timeout.assert_awaited_once()
        detected = _logs(db_engine, "Raid detected")
        assert len(detected) == 1
        assert detected[0].details == "Raid with 5 members detected and mitigated"
        assert len(_logs(db_engine, "Raid mode ended")) == 1
        assert bot.raids.buffered(GUILD_ID) == []

    def test_raid_mode_ends_on_its_own(self, db_engine, server):
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiRaid(bot)
        cog.raid_duration = 0
        joiners = self._joiners(guild)

        async def _go():
            for m in joiners:
                await cog.on_member_join(m)
            timer = bot.raids.state(GUILD_ID).end_task
            await asyncio.wait_for(timer, timeout=2)
            return timer

        timer = run_async(_go())

        assert timer.done() and not timer.cancelled()
        assert not bot.raids.is_active(GUILD_ID)
        assert bot.raids.buffered(GUILD_ID) == []
        assert bot.raids.state(GUILD_ID).end_task is None
        assert len(_logs(db_engine, "Raid detected")) == 1
        assert len(_logs(db_engine, "Raid mode ended")) == 1

    def test_failed_raid_log_still_schedules_auto_end(self, db_engine, server):
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiRaid(bot)
        cog.raid_duration = 0
        joiners = self._joiners(guild)

        async def _go():
            with patch("bloxguard.bot.cogs.anti_raid.write_log", side_effect=RuntimeError("db down")):
                for m in joiners:
                    await cog.on_member_join(m)
                timer = bot.raids.state(GUILD_ID).end_task
                if timer is not None:
                    await asyncio.wait_for(timer, timeout=2)
            return timer

        timer = run_async(_go())

        assert timer is not None
        assert not bot.raids.is_active(GUILD_ID)
        assert bot.raids.buffered(GUILD_ID) == []
        for m in joiners:
            m.timeout.assert_awaited_once()

    def test_established_accounts_are_left_alone(self, db_engine, server):
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiRaid(bot)
        members = [_make_member(guild, 3000 + i, name=n) for i, n in enumerate(self.NAMES)]

        async def _go():
            for m in members:
                await cog.on_member_join(m)

        run_async(_go())
        assert not bot.raids.is_active(GUILD_ID)
        for m in members:
            m.timeout.assert_not_awaited()

    def test_disabled_toggle(self, db_engine, server):
        update_security_settings(db_engine, GUILD_ID, anti_raid=False)
        bot = _make_bot(db_engine)
        guild = _make_guild()
        cog = AntiRaid(bot)
        joiners = self._joiners(guild)

        async def _go():
            for m in joiners:
                await cog.on_member_join(m)

        run_async(_go())
        assert bot.raids.buffered(GUILD_ID) == []

    def test_end_when_idle_reports_false(self, db_engine, server):
        cog = AntiRaid(_make_bot(db_engine))
        assert run_async(cog.end_raid_mode(_make_guild())) is False
        assert _logs(db_engine, "Raid mode ended") == []


# ===========================================================================
# Website filter
# ===========================================================================
class TestWebsiteFilter:
    def _message(self, guild, content, *, author_bot=False):
        author = _make_member(guild, 5000, bot=author_bot)
        message = MagicMock()
        message.id = 1
        message.guild = guild
        message.author = author
        message.content = content
        message.delete = AsyncMock()
        return message

    def test_blocked_link_is_removed_and_logged(self, db_engine, server):
        cog = WebsiteFilter(_make_bot(db_engine))
        message = self._message(_make_guild(), "free robux https://evil.example/claim")

        assert run_async(cog.check_message(message)) is True

        message.delete.assert_awaited_once()
        message.author.send.assert_awaited_once()
        logs = _logs(db_engine, "URL blocked")
        assert len(logs) == 1
        assert logs[0].details == "Blocked URLs: https://evil.example/claim"
        assert logs[0].user_id == 5000
        assert logs[0].threat_blocked is True

    def test_allowed_link_is_untouched(self, db_engine, server):
        cog = WebsiteFilter(_make_bot(db_engine))
        message = self._message(_make_guild(), "my game https://www.roblox.com/games/1")
        assert run_async(cog.check_message(message)) is False
        message.delete.assert_not_awaited()

    def test_closed_dms_still_block(self, db_engine, server):
        cog = WebsiteFilter(_make_bot(db_engine))
        message = self._message(_make_guild(), "https://evil.example")
        message.author.send.side_effect = discord.Forbidden(
            MagicMock(status=403, reason="Forbidden"), "Cannot send messages to this user",
        )
        assert run_async(cog.check_message(message)) is True
        assert len(_logs(db_engine, "URL blocked")) == 1

    def test_disabled_filter(self, db_engine, server):
        update_security_settings(db_engine, GUILD_ID, website_filter=False)
        cog = WebsiteFilter(_make_bot(db_engine))
        message = self._message(_make_guild(), "https://evil.example")
        assert run_async(cog.check_message(message)) is False

    def test_bots_and_dms_are_skipped(self, db_engine, server):
        cog = WebsiteFilter(_make_bot(db_engine))
        from_bot = self._message(_make_guild(), "https://evil.example", author_bot=True)
        in_dm = self._message(_make_guild(), "https://evil.example")
        in_dm.guild = None
        assert run_async(cog.check_message(from_bot)) is False
        assert run_async(cog.check_message(in_dm)) is False

    def test_unchanged_edit_is_ignored(self, db_engine, server):
        cog = WebsiteFilter(_make_bot(db_engine))
        message = self._message(_make_guild(), "https://evil.example")
        run_async(cog.on_message_edit(message, message))
        message.delete.assert_not_awaited()


# ===========================================================================
# Tickets
# ===========================================================================
class TestTicketChannelName:
    def test_slug_and_suffix(self):
        assert ticket_channel_name("Cool User!", now_ms=1_700_000_012_345) == "ticket-cool-user-2345"

    def test_suffix_is_zero_padded(self):
        assert ticket_channel_name("bob", now_ms=10_007) == "ticket-bob-0007"


class TestTicketsCog:
    CHANNEL_ID = 8080

    def _interaction(self, user_id: int) -> MagicMock:
        guild = _make_guild()
        interaction = MagicMock()
        interaction.guild = guild
        interaction.user = _make_member(guild, user_id)
        interaction.channel.id = self.CHANNEL_ID
        interaction.channel.delete = AsyncMock()
        interaction.response.send_message = AsyncMock()
        return interaction

    def _cog(self, db_engine) -> Tickets:
        cog = Tickets(_make_bot(db_engine))
        cog.delete_delay = 0
        return cog

    def test_creator_closes_and_channel_is_deleted(self, db_engine, server):
        create_ticket(db_engine, server_id=GUILD_ID, channel_id=self.CHANNEL_ID, user_id=10, issue="help")
        cog = self._cog(db_engine)
        interaction = self._interaction(10)

        async def _go():
            await cog.close_ticket_channel(interaction, "solved")
            await asyncio.gather(*cog._deletions)

        run_async(_go())

        assert get_ticket_by_channel(db_engine, self.CHANNEL_ID).status == "closed"
        interaction.channel.delete.assert_awaited_once()
        assert len(_logs(db_engine, "Ticket closed")) == 1

    def test_other_members_cannot_close(self, db_engine, server):
        create_ticket(db_engine, server_id=GUILD_ID, channel_id=self.CHANNEL_ID, user_id=10, issue="help")
        interaction = self._interaction(11)

        run_async(self._cog(db_engine).close_ticket_channel(interaction, "nope"))

        assert get_ticket_by_channel(db_engine, self.CHANNEL_ID).status == "open"
        interaction.channel.delete.assert_not_awaited()

    def test_non_ticket_channel(self, db_engine, server):
        interaction = self._interaction(10)
        run_async(self._cog(db_engine).close_ticket_channel(interaction, "x"))
        message = interaction.response.send_message.call_args.args[0]
        assert message == "This channel is not an open ticket."
