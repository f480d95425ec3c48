"""
bloxguard.database.engine — Engine, sessions & the thread bridge
=================================================================

The bot and the dashboard API share one synchronous SQLAlchemy engine.
Cogs and async routes never touch it on the event loop directly; they go
through :func:`run_db`, which hands the call to a worker thread::

    settings = await run_db(get_security_settings, engine, guild.id)

Storage:

* ``DATABASE_URL`` set   → that database (PostgreSQL in production)
* ``DATABASE_URL`` unset → in-memory SQLite behind a ``StaticPool`` so
  every worker thread sees the same data; it is gone on restart
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from bloxguard.config import BloxGuardConfig
from bloxguard.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

IN_MEMORY_URL = "sqlite://"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Engine for *url*, ``DATABASE_URL``, or in-memory SQLite, in that order."""
    url = url or os.getenv("DATABASE_URL") or IN_MEMORY_URL

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        if url == IN_MEMORY_URL:
            logger.warning("DATABASE_URL not set — using in-memory SQLite, nothing will persist")
    else:
        # Small pool: one bot plus one dashboard process at most
        engine = create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine → %s", engine.url.render_as_string(hide_password=True))
    return engine


def init_db(engine: Engine, cfg: BloxGuardConfig | None = None) -> None:
    """Create missing tables, then seed bot settings that don't exist yet.

    Idempotent; run it on every start.  Seed values come from *cfg*.
    """
    Base.metadata.create_all(engine)
    logger.info("Schema ready (%d tables)", len(Base.metadata.tables))

    from bloxguard.database.seed import seed_default_settings

    seed_default_settings(engine, cfg)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Unit of work: commit when the block exits cleanly, roll back otherwise.

    Objects stay readable after the block (``expire_on_commit=False``)::

        with get_session(engine) as session:
            session.add(SecurityLog(server_id=gid, event_type="settings", action="…"))
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Thread bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a blocking database helper without stalling the event loop."""
    return await asyncio.to_thread(func, *args, **kwargs)
