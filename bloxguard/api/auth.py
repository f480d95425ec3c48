"""
bloxguard.api.auth — Dashboard login via Discord
=================================================

Flow:

    /api/auth/login     → redirect to Discord with a one-time ``state``
    /api/auth/callback  → trade the code for an access token, look the
                          user up in the dashboard's guild, and hand the
                          frontend a 12-hour JWT

Only the guild owner, holders of ``admin_role_id`` and members with a
role granting Administrator get a token.  Everyone else is sent back to
the frontend with ``?auth_error=not_admin``.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import delete
from sqlalchemy.orm import Session

from bloxguard.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    get_config,
    get_current_admin,
    get_engine,
    get_runner,
)
from bloxguard.config import BloxGuardConfig
from bloxguard.database.engine import get_session, run_db
from bloxguard.database.models import OAuthState
from bloxguard.services.settings_service import get_primary_server

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

DISCORD_API = "https://discord.com/api/v10"
DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
OAUTH_SCOPE = "identify guilds.members.read"
STATE_TTL = timedelta(minutes=10)
TOKEN_LIFETIME = timedelta(hours=12)

_ADMINISTRATOR = 0x8


# ---------------------------------------------------------------------------
# OAuth application settings
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class OAuthApp:
    client_id: str
    client_secret: str
    redirect_uri: str
    frontend_url: str

    @classmethod
    def from_env(cls) -> OAuthApp:
        """Read the Discord application from the environment (500 if incomplete)."""
        env = {
            "DISCORD_CLIENT_ID": os.getenv("DISCORD_CLIENT_ID", "").strip(),
            "DISCORD_CLIENT_SECRET": os.getenv("DISCORD_CLIENT_SECRET", "").strip(),
            "DISCORD_REDIRECT_URI": os.getenv("DISCORD_REDIRECT_URI", "").strip(),
            "FRONTEND_URL": os.getenv("FRONTEND_URL", "").strip(),
        }
        missing = sorted(k for k, v in env.items() if not v)
        if missing:
            raise HTTPException(500, f"Discord OAuth is not configured: missing {', '.join(missing)}")
        return cls(
            client_id=env["DISCORD_CLIENT_ID"],
            client_secret=env["DISCORD_CLIENT_SECRET"],
            redirect_uri=env["DISCORD_REDIRECT_URI"],
            frontend_url=env["FRONTEND_URL"].rstrip("/"),
        )


@dataclass(frozen=True, slots=True)
class DiscordIdentity:
    user_id: int
    username: str
    avatar: str | None
    role_ids: frozenset[int] | None  # None: not a member of the guild


# ---------------------------------------------------------------------------
# One-time state tokens
# ---------------------------------------------------------------------------
def _prune_states(session: Session) -> None:
    session.execute(delete(OAuthState).where(OAuthState.created_at < datetime.now(UTC) - STATE_TTL))


def issue_state(engine) -> str:
    state = secrets.token_urlsafe(32)
    with get_session(engine) as session:
        _prune_states(session)
        session.add(OAuthState(state=state))
    return state


def redeem_state(engine, state: str) -> bool:
    """True exactly once per issued, unexpired state."""
    with get_session(engine) as session:
        _prune_states(session)
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
    return True


# ---------------------------------------------------------------------------
# Access rule
# ---------------------------------------------------------------------------
def is_dashboard_admin(
    user_id: int,
    member: dict | None,
    *,
    owner_id: int | None,
    admin_role_id: int | None,
    guild_roles: list[dict] | None = None,
) -> bool:
    """Owner, ``admin_role_id`` holder, or holder of an Administrator role.

    *member* is Discord's guild-member payload (``None`` if the user isn't
    in the guild); *guild_roles* is ``[{"id", "permissions"}, …]`` and is
    only consulted for the Administrator check.
    """
    if owner_id and user_id == owner_id:
        return True
    if member is None:
        return False

    held = {int(r) for r in member.get("roles", [])}
    if admin_role_id is not None and admin_role_id in held:
        return True
    return any(
        int(role["id"]) in held and int(role.get("permissions", 0)) & _ADMINISTRATOR
        for role in guild_roles or []
    )


def _live_guild_roles(runner, guild_id: int) -> list[dict] | None:
    guild = runner.bot.get_guild(guild_id) if runner is not None and runner.bot else None
    if guild is None:
        return None
    return [{"id": r.id, "permissions": r.permissions.value} for r in guild.roles]


# ---------------------------------------------------------------------------
# Discord calls
# ---------------------------------------------------------------------------
async def _exchange_code(client: httpx.AsyncClient, app: OAuthApp, code: str) -> str:
    resp = await client.post(
        f"{DISCORD_API}/oauth2/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": app.redirect_uri,
            "client_id": app.client_id,
            "client_secret": app.client_secret,
            "scope": OAUTH_SCOPE,
        },
    )
    if resp.status_code != 200:
        logger.warning("Discord token exchange returned %d", resp.status_code)
        raise HTTPException(400, "OAuth token exchange failed")
    access_token = resp.json().get("access_token")
    if not access_token:
        raise HTTPException(400, "No access token returned")
    return access_token


async def _fetch_identity(
    client: httpx.AsyncClient, access_token: str, guild_id: int,
) -> DiscordIdentity:
    headers = {"Authorization": f"Bearer {access_token}"}
    user = await client.get(f"{DISCORD_API}/users/@me", headers=headers)
    if user.status_code != 200:
        raise HTTPException(400, "Failed to fetch Discord user")
    member = await client.get(f"{DISCORD_API}/users/@me/guilds/{guild_id}/member", headers=headers)

    data = user.json()
    roles = None
    if member.status_code == 200:
        roles = frozenset(int(r) for r in member.json().get("roles", []))
    return DiscordIdentity(
        user_id=int(data["id"]),
        username=data.get("username", "Unknown"),
        avatar=data.get("avatar"),
        role_ids=roles,
    )


def issue_dashboard_token(identity: DiscordIdentity, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return jwt.encode(
        {
            "sub": str(identity.user_id),
            "username": identity.username,
            "avatar": identity.avatar,
            "is_admin": True,
            "exp": now + TOKEN_LIFETIME,
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/login")
async def login(engine=Depends(get_engine)):
    app = OAuthApp.from_env()
    state = await run_db(issue_state, engine)
    query = urlencode({
        "client_id": app.client_id,
        "redirect_uri": app.redirect_uri,
        "response_type": "code",
        "scope": OAUTH_SCOPE,
        "state": state,
    })
    return RedirectResponse(f"{DISCORD_AUTHORIZE_URL}?{query}")


@router.get("/callback")
async def callback(
    code: str,
    state: str,
    cfg: BloxGuardConfig = Depends(get_config),
    engine=Depends(get_engine),
    runner=Depends(get_runner),
):
    app = OAuthApp.from_env()
    if not await run_db(redeem_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    server = await run_db(get_primary_server, engine, cfg.guild_id)
    if server is None:
        return RedirectResponse(f"{app.frontend_url}?auth_error=no_server")

    async with httpx.AsyncClient(timeout=10, transport=httpx.AsyncHTTPTransport(retries=1)) as client:
        access_token = await _exchange_code(client, app, code)
        identity = await _fetch_identity(client, access_token, server.id)

    member = None if identity.role_ids is None else {"roles": list(identity.role_ids)}
    # Without a configured role, Administrator is judged from the live guild
    guild_roles = _live_guild_roles(runner, server.id) if cfg.admin_role_id is None else None
    if not is_dashboard_admin(
        identity.user_id,
        member,
        owner_id=server.owner_id,
        admin_role_id=cfg.admin_role_id,
        guild_roles=guild_roles,
    ):
        logger.info("Dashboard login refused for %s (%d)", identity.username, identity.user_id)
        return RedirectResponse(f"{app.frontend_url}?auth_error=not_admin")

    logger.info("Dashboard login for %s (%d)", identity.username, identity.user_id)
    token = issue_dashboard_token(identity)
    return RedirectResponse(f"{app.frontend_url}/auth/callback?token={token}")


@router.get("/me")
async def me(admin: dict = Depends(get_current_admin)):
    return {
        "id": admin["sub"],
        "username": admin.get("username", "Unknown"),
        "avatar": admin.get("avatar"),
        "is_admin": True,
    }
