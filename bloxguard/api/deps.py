"""
bloxguard.api.deps — FastAPI dependency injection
==================================================

The engine, config, Roblox client and bot runner live on
``app.state`` (set by :func:`bloxguard.api.main.create_app`), so the
API and the bot share one store.

``JWT_SECRET`` is checked when this module is imported: the API will not
start with a missing, short or placeholder secret.
"""

from __future__ import annotations

import os
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from bloxguard.bot.runner import BotRunner
from bloxguard.config import BloxGuardConfig
from bloxguard.database.models import SecuritySettings
from bloxguard.services.roblox import RobloxClient
from bloxguard.services.settings_service import get_primary_server, get_security_settings

JWT_ALGORITHM = "HS256"

# Placeholders that ship in example files and docs
_PLACEHOLDER_SECRETS = frozenset({
    "bloxguard-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
})
_MIN_SECRET_LENGTH = 32


def _load_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET", "").strip()
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set; "
            "create one with `openssl rand -base64 48` and add it to .env"
        )
    if secret in _PLACEHOLDER_SECRETS:
        raise RuntimeError(f"JWT_SECRET is a known weak default ({secret!r}); replace it")
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars, need {_MIN_SECRET_LENGTH})"
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_config(request: Request) -> BloxGuardConfig:
    return request.app.state.cfg


def get_roblox(request: Request) -> RobloxClient:
    return request.app.state.roblox


def get_runner(request: Request) -> BotRunner | None:
    return request.app.state.runner


def get_server_id(
    engine: Engine = Depends(get_engine),
    cfg: BloxGuardConfig = Depends(get_config),
) -> int:
    """The dashboard's current server: the configured guild, else the first known."""
    server = get_primary_server(engine, cfg.guild_id)
    if server is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No servers found")
    return server.id


def _bearer_token(header: str | None) -> str:
    scheme, _, token = (header or "").partition(" ")
    if scheme != "Bearer" or not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return token


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Decoded dashboard token; 401 when absent or bad, 403 without ``is_admin``."""
    try:
        claims = jwt.decode(_bearer_token(authorization), JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token") from exc
    if claims.get("is_admin") is not True:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return claims


def get_server_settings(
    engine: Engine = Depends(get_engine),
    server_id: int = Depends(get_server_id),
) -> SecuritySettings:
    settings = get_security_settings(engine, server_id)
    if settings is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Security settings not found")
    return settings


def admin_user_id(admin: dict) -> int | None:
    """Discord id from the token's ``sub``, for log attribution."""
    sub = str(admin.get("sub", ""))
    return int(sub) if sub.isdigit() else None
