"""
tests/conftest.py — Shared Test Fixtures
=========================================
Database, server, token and API-client fixtures used across the suite.
"""

from __future__ import annotations

import os

# bloxguard.api.deps refuses to import without a strong JWT_SECRET
os.environ.setdefault("JWT_SECRET", "pytest-only-signing-key-" + "k" * 40)

import pytest  # noqa: E402
from sqlalchemy import Engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from bloxguard.config import BloxGuardConfig  # noqa: E402
from bloxguard.database.engine import create_db_engine  # noqa: E402
from bloxguard.database.models import Base  # noqa: E402
from bloxguard.database.seed import ensure_server, seed_default_settings  # noqa: E402

GUILD_ID = 424242
OWNER_ID = 1001


@pytest.fixture
def db_engine() -> Engine:
    """Fresh in-memory store, shared across the worker threads ``run_db`` uses."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def server(db_engine: Engine):
    return ensure_server(db_engine, GUILD_ID, "Test Guild", OWNER_ID, member_count=50)


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Signed dashboard token; import it directly when a test needs several."""
    import jwt

    from bloxguard.api.deps import JWT_ALGORITHM, JWT_SECRET

    claims = {"sub": sub, "username": username, "is_admin": True}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def admin_token():
    return make_admin_token()


@pytest.fixture
def app(db_engine: Engine):
    """Dashboard app over the test engine with no bot attached."""
    from bloxguard.api.main import create_app
    from bloxguard.services.roblox import RobloxClient

    return create_app(engine=db_engine, cfg=BloxGuardConfig(), roblox=RobloxClient(), runner=None)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app, raise_server_exceptions=False)
