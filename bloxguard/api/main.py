"""
bloxguard.api.main — FastAPI application
=========================================

Normally built by ``bloxguard.bot.__main__`` with the bot's engine,
config, Roblox client and runner, then served on the bot's event loop.
For API development without the bot, let uvicorn call the factory
(the app then builds its own engine)::

    uvicorn bloxguard.api.main:create_app --factory --reload --port 5000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Engine

load_dotenv()

from bloxguard.api.auth import router as auth_router  # noqa: E402
from bloxguard.api.routes.dashboard import router as dashboard_router  # noqa: E402
from bloxguard.api.routes.security import router as security_router  # noqa: E402
from bloxguard.api.routes.server import router as server_router  # noqa: E402
from bloxguard.api.routes.system import router as system_router  # noqa: E402
from bloxguard.api.routes.tickets import router as tickets_router  # noqa: E402
from bloxguard.api.routes.verification import router as verification_router  # noqa: E402
from bloxguard.bot.runner import BotRunner  # noqa: E402
from bloxguard.config import BloxGuardConfig, load_config  # noqa: E402
from bloxguard.database.engine import create_db_engine, init_db  # noqa: E402
from bloxguard.services.roblox import RobloxClient  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """``CORS_ALLOW_ORIGINS`` (comma-separated), falling back to ``FRONTEND_URL``."""
    configured = os.getenv("CORS_ALLOW_ORIGINS") or os.getenv("FRONTEND_URL") or ""
    origins = (part.strip().rstrip("/") for part in configured.split(","))
    return [o for o in origins if o]


def _standalone_config() -> BloxGuardConfig:
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("config.yaml not found — API running with default settings")
        return BloxGuardConfig()


def create_app(
    engine: Engine | None = None,
    cfg: BloxGuardConfig | None = None,
    roblox: RobloxClient | None = None,
    runner: BotRunner | None = None,
) -> FastAPI:
    """Build the dashboard API around shared state."""
    cfg = cfg or _standalone_config()
    if engine is None:
        engine = create_db_engine()
        init_db(engine, cfg)
    owns_roblox = roblox is None
    if roblox is None:
        roblox = RobloxClient(os.getenv("ROBLOX_COOKIE") or None)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("BloxGuard API started — engine ready (%s)", engine.url)
        yield
        if owns_roblox:
            await roblox.aclose()
        logger.info("BloxGuard API shutting down")

    app = FastAPI(
        title="BloxGuard Dashboard API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.cfg = cfg
    app.state.roblox = roblox
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for router in (
        auth_router,
        dashboard_router,
        security_router,
        verification_router,
        server_router,
        tickets_router,
        system_router,
    ):
        app.include_router(router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app

