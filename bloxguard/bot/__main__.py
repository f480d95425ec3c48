"""
bloxguard.bot.__main__ — Entry point for ``python -m bloxguard.bot``
====================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed bot settings.
4. Create the Roblox client.
5. Start the bot through a :class:`BotRunner`.
6. Serve the dashboard API with uvicorn on the same event loop, so the
   bot and the API share one (possibly in-memory) database.

Run with::

    python -m bloxguard.bot      # or the ``bloxguard`` console script
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from bloxguard.config import load_config

logger = logging.getLogger("bloxguard")


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    # discord.py's gateway chatter is noisy at DEBUG.
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)


def main() -> None:
    """Bootstrap and run the BloxGuard bot plus dashboard API."""

    # 1. Environment variables (secrets).
    load_dotenv()
    _configure_logging()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — prefix %r, dashboard port %d", cfg.bot_prefix, cfg.dashboard_port)

    # Imported after load_dotenv: the API validates JWT_SECRET at import.
    from bloxguard.api.main import create_app
    from bloxguard.bot.runner import BotRunner
    from bloxguard.database.engine import create_db_engine, init_db
    from bloxguard.services.roblox import RobloxClient

    # 3. Database.
    engine = create_db_engine()
    init_db(engine, cfg)

    # 4. Roblox.
    group_id = os.getenv("ROBLOX_GROUP_ID", "").strip()
    roblox = RobloxClient(
        os.getenv("ROBLOX_COOKIE") or None,
        group_id=int(group_id) if group_id.isdigit() else None,
    )

    # 5/6. Bot + API on one loop.
    runner = BotRunner(cfg, engine, roblox, token)
    app = create_app(engine=engine, cfg=cfg, roblox=roblox, runner=runner)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=cfg.dashboard_host,
        port=cfg.dashboard_port,
        log_config=None,
    ))

    async def serve() -> None:
        await runner.start()
        try:
            await server.serve()
        finally:
            await runner.stop()
            await roblox.aclose()

    logger.info("Starting BloxGuard…")
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
