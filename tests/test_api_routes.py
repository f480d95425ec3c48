"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the dashboard API using the FastAPI TestClient.

These tests verify:
- Auth guards on every dashboard endpoint
- Response shapes the dashboard frontend relies on
- Settings writes land in the database and the security log
- Health endpoint availability
"""

from __future__ import annotations

import importlib
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from bloxguard.api.auth import (
    DiscordIdentity,
    is_dashboard_admin,
    issue_dashboard_token,
    issue_state,
    redeem_state,
)
from bloxguard.api.deps import JWT_ALGORITHM, JWT_SECRET
from bloxguard.database.models import SecurityLog
from bloxguard.services.log_service import write_log
from bloxguard.services.settings_service import get_bot_settings, get_security_settings
from bloxguard.services.ticket_service import close_ticket, create_ticket
from bloxguard.services.verification_service import complete_verification
from conftest import GUILD_ID, OWNER_ID


@pytest.fixture
def non_admin_token():
    return jwt.encode(
        {"sub": "67890", "username": "RegularUser", "is_admin": False},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def auth(admin_token):
    return _auth(admin_token)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _logs(engine, action: str) -> list[SecurityLog]:
    with Session(engine) as s:
        return list(s.scalars(select(SecurityLog).where(SecurityLog.action == action)).all())


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAppFactory:
    def test_import_builds_nothing(self):
        import bloxguard.api.main as main_mod

        try:
            with patch("bloxguard.database.engine.create_db_engine") as make_engine:
                reloaded = importlib.reload(main_mod)
            make_engine.assert_not_called()
            assert not hasattr(reloaded, "app")
        finally:
            importlib.reload(main_mod)


# ===========================================================================
# Auth guards — every dashboard endpoint needs an admin token
# ===========================================================================
class TestAdminAuthGuards:
    """All dashboard endpoints must return 401/403 for missing/invalid/non-admin tokens."""

    GET_ENDPOINTS = [
        "/api/dashboard/stats",
        "/api/dashboard/activity",
        "/api/dashboard/commands",
        "/api/security/settings",
        "/api/security/logs",
        "/api/verification/settings",
        "/api/verification/list",
        "/api/server/info",
        "/api/server/roles",
        "/api/server/channels",
        "/api/tickets/list",
        "/api/tickets/all",
        "/api/settings",
        "/api/auth/me",
    ]

    POST_ENDPOINTS = [
        "/api/security/settings",
        "/api/verification/settings",
        "/api/verification/refresh-connection",
        "/api/settings",
        "/api/bot/reset",
    ]

    @pytest.mark.parametrize("endpoint", GET_ENDPOINTS)
    def test_get_rejects_no_auth(self, client, server, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", POST_ENDPOINTS)
    def test_post_rejects_no_auth(self, client, server, endpoint):
        resp = client.post(endpoint, json={})
        assert resp.status_code in (401, 422)

    @pytest.mark.parametrize("endpoint", GET_ENDPOINTS)
    def test_get_rejects_invalid_token(self, client, server, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", GET_ENDPOINTS)
    def test_get_rejects_non_admin(self, client, server, non_admin_token, endpoint):
        resp = client.get(endpoint, headers=_auth(non_admin_token))
        assert resp.status_code == 403

    def test_rejects_token_signed_with_other_secret(self, client, server):
        forged = jwt.encode({"sub": "1", "is_admin": True}, "x" * 64, algorithm=JWT_ALGORITHM)
        resp = client.get("/api/dashboard/stats", headers=_auth(forged))
        assert resp.status_code == 401


# ===========================================================================
# No registered server
# ===========================================================================
class TestNoServer:
    @pytest.mark.parametrize("endpoint", [
        "/api/dashboard/stats",
        "/api/security/settings",
        "/api/tickets/list",
        "/api/server/info",
    ])
    def test_returns_404(self, client, auth, endpoint):
        resp = client.get(endpoint, headers=auth)
        assert resp.status_code == 404


# ===========================================================================
# Dashboard
# ===========================================================================
class TestDashboard:
    def test_stats_shape(self, client, auth, db_engine, server):
        write_log(db_engine, GUILD_ID, "anti-nuke", "Auto-ban", threat_blocked=True)
        resp = client.get("/api/dashboard/stats", headers=auth)
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {
            "securityScore", "threatsBlocked", "verifiedMembers",
            "totalMembers", "openTickets", "needAttention",
        }
        assert body["threatsBlocked"] == 1
        assert body["totalMembers"] == 50
        assert 0 <= body["securityScore"] <= 100

    def test_activity_is_newest_first(self, client, auth, db_engine, server):
        for i in range(12):
            write_log(db_engine, GUILD_ID, "websiteFilter", f"event {i}")
        body = client.get("/api/dashboard/activity", headers=auth).json()
        assert len(body) == 10
        assert body[0]["title"] == "event 11"
        assert body[0]["type"] == "websiteFilter"
        assert {"id", "type", "icon", "title", "description", "timestamp", "timeAgo"} <= set(body[0])

    def test_commands_list(self, client, auth):
        body = client.get("/api/dashboard/commands", headers=auth).json()
        commands = {c["command"].split()[0] for group in body for c in group["commands"]}
        assert {"/verify", "/lockdown", "/ticket"} <= commands


# ===========================================================================
# Security settings
# ===========================================================================
class TestSecuritySettings:
    def test_get_defaults(self, client, auth, server):
        body = client.get("/api/security/settings", headers=auth).json()
        assert body == {
            "antiNuke": True,
            "antiHack": True,
            "antiRaid": True,
            "websiteFilter": True,
            "allowedDomains": ["roblox.com", "docs.google.com"],
        }

    def test_partial_update_is_logged(self, client, auth, db_engine, server):
        resp = client.post(
            "/api/security/settings",
            json={"antiRaid": False, "allowedDomains": ["https://www.YouTube.com/", "roblox.com"]},
            headers=auth,
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        settings = get_security_settings(db_engine, GUILD_ID)
        assert settings.anti_raid is False
        assert settings.anti_nuke is True
        assert settings.allowed_domains == ["youtube.com", "roblox.com"]

        logs = _logs(db_engine, "Security settings updated")
        assert len(logs) == 1
        assert logs[0].event_type == "settings"
        assert logs[0].user_id == 99999

    def test_rejects_wrong_types(self, client, auth, server):
        resp = client.post("/api/security/settings", json={"antiNuke": "maybe"}, headers=auth)
        assert resp.status_code == 422

    def test_logs_capped_at_twenty(self, client, auth, db_engine, server):
        for i in range(25):
            write_log(db_engine, GUILD_ID, "anti-raid", f"event {i}")
        body = client.get("/api/security/logs", headers=auth).json()
        assert len(body) == 20


# ===========================================================================
# Verification
# ===========================================================================
class TestVerificationRoutes:
    def test_settings_fall_back_to_role_name(self, client, auth, server):
        body = client.get("/api/verification/settings", headers=auth).json()
        assert body == {"verifiedRole": "Verified", "robloxApiConnected": False}

    def test_update_verified_role(self, client, auth, db_engine, server):
        resp = client.post(
            "/api/verification/settings", json={"verifiedRole": "Members"}, headers=auth,
        )
        assert resp.status_code == 200
        assert get_security_settings(db_engine, GUILD_ID).verified_role_id == "Members"
        assert len(_logs(db_engine, "Verification settings updated")) == 1

    def test_refresh_without_cookie(self, client, auth):
        body = client.post("/api/verification/refresh-connection", headers=auth).json()
        assert body["success"] is False
        assert body["connected"] is False

    def test_list(self, client, auth, db_engine, server):
        complete_verification(
            db_engine, discord_user_id=555, server_id=GUILD_ID,
            roblox_user_id=156, roblox_username="builderman",
        )
        body = client.get("/api/verification/list", headers=auth).json()
        assert len(body) == 1
        assert body[0]["discordUserId"] == "555"
        assert body[0]["robloxUsername"] == "builderman"


# ===========================================================================
# Server info
# ===========================================================================
class TestServerRoutes:
    def test_info_from_database_without_bot(self, client, auth, server):
        body = client.get("/api/server/info", headers=auth).json()
        assert body["id"] == str(GUILD_ID)
        assert body["name"] == "Test Guild"
        assert body["memberCount"] == 50
        assert body["owner"]["id"] == str(OWNER_ID)

    def test_roles_and_channels_empty_without_bot(self, client, auth, server):
        assert client.get("/api/server/roles", headers=auth).json() == []
        assert client.get("/api/server/channels", headers=auth).json() == []

    def test_live_guild_is_preferred(self, app, client, auth, server):
        everyone = MagicMock()
        everyone.name = "@everyone"
        everyone.is_default.return_value = True
        everyone.managed = False
        everyone.position = 0
        mod = MagicMock()
        mod.name = "Moderator"
        mod.is_default.return_value = False
        mod.managed = False
        mod.position = 3
        general = MagicMock()
        general.name = "general"

        guild = MagicMock()
        guild.id = GUILD_ID
        guild.name = "Live Guild"
        guild.member_count = 120
        guild.owner_id = OWNER_ID
        guild.owner = SimpleNamespace(name="owner")
        guild.roles = [everyone, mod]
        guild.text_channels = [general]

        runner = MagicMock()
        runner.bot.is_ready.return_value = True
        runner.bot.get_guild.return_value = guild
        app.state.runner = runner

        info = client.get("/api/server/info", headers=auth).json()
        assert info["name"] == "Live Guild"
        assert info["memberCount"] == 120
        assert info["owner"]["username"] == "owner"
        assert client.get("/api/server/roles", headers=auth).json() == ["Moderator"]
        assert client.get("/api/server/channels", headers=auth).json() == ["general"]


# ===========================================================================
# Tickets
# ===========================================================================
class TestTicketRoutes:
    def test_list_shows_open_only(self, client, auth, db_engine, server):
        done = create_ticket(db_engine, server_id=GUILD_ID, channel_id=1, user_id=10, issue="done")
        create_ticket(db_engine, server_id=GUILD_ID, channel_id=2, user_id=11, issue="help me")
        close_ticket(db_engine, done.id, closed_by=10, reason="fixed")

        body = client.get("/api/tickets/list", headers=auth).json()
        assert [t["title"] for t in body] == ["help me"]
        assert body[0]["user"] == "11"
        assert body[0]["status"] == "open"

        everything = client.get("/api/tickets/all", headers=auth).json()
        assert len(everything) == 2
        assert {t["status"] for t in everything} == {"open", "closed"}


# ===========================================================================
# Bot settings & reset
# ===========================================================================
class TestSystemRoutes:
    def test_get_settings(self, client, auth, server):
        body = client.get("/api/settings", headers=auth).json()
        assert body == {
            "prefix": "!", "deleteCommands": False, "debugMode": False, "logChannelId": None,
        }

    def test_update_settings_pushes_to_bot(self, app, client, auth, db_engine, server):
        runner = MagicMock()
        app.state.runner = runner

        resp = client.post(
            "/api/settings",
            json={"prefix": "?", "debugMode": True, "logChannelId": "mod-logs"},
            headers=auth,
        )

        assert resp.status_code == 200
        assert get_bot_settings(db_engine)["prefix"] == "?"
        assert get_security_settings(db_engine, GUILD_ID).log_channel_id == "mod-logs"
        runner.apply_settings.assert_called_once()
        assert runner.apply_settings.call_args.args[0]["debugMode"] is True
        assert len(_logs(db_engine, "Bot settings updated")) == 1

    def test_prefix_length_is_validated(self, client, auth, server):
        resp = client.post("/api/settings", json={"prefix": "toolong"}, headers=auth)
        assert resp.status_code == 422

    def test_reset_without_bot(self, client, auth):
        assert client.post("/api/bot/reset", headers=auth).status_code == 503

    def test_reset_restarts_bot(self, app, client, auth):
        runner = MagicMock()
        runner.restart = AsyncMock()
        app.state.runner = runner
        resp = client.post("/api/bot/reset", headers=auth)
        assert resp.status_code == 200
        runner.restart.assert_awaited_once()


# ===========================================================================
# Auth
# ===========================================================================
class TestAuthMe:
    def test_me_returns_admin_info(self, client, admin_token):
        resp = client.get("/api/auth/me", headers=_auth(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == "99999"
        assert body["username"] == "FixtureAdmin"
        assert body["is_admin"] is True

    def test_login_without_oauth_config(self, client, monkeypatch):
        monkeypatch.delenv("DISCORD_CLIENT_ID", raising=False)
        resp = client.get("/api/auth/login", follow_redirects=False)
        assert resp.status_code == 500
        assert "DISCORD_CLIENT_ID" in resp.json()["detail"]

    def test_login_redirects_to_discord(self, client, monkeypatch):
        for name, value in {
            "DISCORD_CLIENT_ID": "123",
            "DISCORD_CLIENT_SECRET": "shh",
            "DISCORD_REDIRECT_URI": "http://localhost:8000/api/auth/callback",
            "FRONTEND_URL": "http://localhost:5173/",
        }.items():
            monkeypatch.setenv(name, value)
        resp = client.get("/api/auth/login", follow_redirects=False)
        assert resp.status_code in (302, 307)
        assert resp.headers["location"].startswith("https://discord.com/oauth2/authorize?")
        assert "state=" in resp.headers["location"]

    def test_callback_rejects_unknown_state(self, client, monkeypatch):
        for name in ("DISCORD_CLIENT_ID", "DISCORD_CLIENT_SECRET", "DISCORD_REDIRECT_URI", "FRONTEND_URL"):
            monkeypatch.setenv(name, "x")
        resp = client.get("/api/auth/callback?code=abc&state=forged", follow_redirects=False)
        assert resp.status_code == 400


class TestDashboardAdminRule:
    def test_owner_without_member_payload(self):
        assert is_dashboard_admin(1, None, owner_id=1, admin_role_id=None)

    def test_configured_admin_role(self):
        member = {"roles": ["55", "66"]}
        assert is_dashboard_admin(2, member, owner_id=1, admin_role_id=66)
        assert not is_dashboard_admin(2, member, owner_id=1, admin_role_id=77)

    def test_role_with_administrator_permission(self):
        member = {"roles": ["55"]}
        roles = [{"id": 55, "permissions": 8}, {"id": 66, "permissions": 0}]
        assert is_dashboard_admin(2, member, owner_id=1, admin_role_id=None, guild_roles=roles)

    def test_plain_member_is_rejected(self):
        member = {"roles": ["66"]}
        roles = [{"id": 55, "permissions": 8}, {"id": 66, "permissions": 2048}]
        assert not is_dashboard_admin(2, member, owner_id=1, admin_role_id=None, guild_roles=roles)


class TestLoginTokens:
    def test_state_is_single_use(self, db_engine):
        state = issue_state(db_engine)
        assert redeem_state(db_engine, state) is True
        assert redeem_state(db_engine, state) is False
        assert redeem_state(db_engine, "never-issued") is False

    def test_issued_token_opens_the_dashboard(self, client, server):
        identity = DiscordIdentity(user_id=OWNER_ID, username="owner", avatar=None, role_ids=None)
        token = issue_dashboard_token(identity)
        resp = client.get("/api/auth/me", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["id"] == str(OWNER_ID)
