"""
bloxguard.services.verification_service — Roblox Verification Flow
===================================================================

Per-user state machine::

    Unverified ──/verify──▶ Pending ──/checkverify (code found)──▶ Verified
                               │
                               └── expiry (lazy, on lookup) / re-verify ──▶ Unverified

``/verify`` stores a :class:`PendingVerification` holding an 8-character
code.  The member pastes the code into their Roblox profile "About"
text, then runs ``/checkverify``, which reads the profile exactly once.
No polling, no retry: a miss yields the same generic failure whether the
profile hasn't been saved yet or the code is wrong.

The DB functions are synchronous (call them through ``run_db``); the
three flow functions are ``async`` because they talk to Roblox.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bloxguard.constants import (
    EVENT_VERIFICATION,
    VERIFICATION_CODE_ALPHABET,
    VERIFICATION_CODE_LENGTH,
    VERIFICATION_TTL_MINUTES,
)
from bloxguard.database.engine import get_session, run_db
from bloxguard.database.models import (
    PendingVerification,
    RobloxVerification,
    SecurityLog,
    utcnow,
)
from bloxguard.services.roblox import RobloxClient, RobloxUser

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors — each carries the message shown to the member
# ---------------------------------------------------------------------------
class VerificationError(Exception):
    """Base class for expected, user-facing verification failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AlreadyVerifiedError(VerificationError):
    def __init__(self, roblox_username: str) -> None:
        super().__init__(
            f"You are already verified as {roblox_username}. "
            "Use /reverify if you want to link a different account."
        )
        self.roblox_username = roblox_username


class RobloxUserNotFoundError(VerificationError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Could not find a Roblox user with the username {username}.")


class NoPendingVerificationError(VerificationError):
    def __init__(self) -> None:
        super().__init__(
            "You don't have a pending verification. Use /verify to start the process."
        )


class VerificationExpiredError(VerificationError):
    def __init__(self) -> None:
        super().__init__(
            "Your verification code has expired. Use /verify to get a new code."
        )


class InsufficientInformationError(VerificationError):
    def __init__(self) -> None:
        super().__init__(
            "Verification is missing the Roblox account to check. "
            "Use /verify with your Roblox username to start again."
        )


class VerificationFailedError(VerificationError):
    def __init__(self) -> None:
        super().__init__(
            "Verification failed. Make sure the code is in your Roblox profile "
            "description and try again."
        )


# ---------------------------------------------------------------------------
# Code generation
# ---------------------------------------------------------------------------
def generate_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    return "".join(secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(length))


# ---------------------------------------------------------------------------
# Sync DB helpers
# ---------------------------------------------------------------------------
def get_verification(engine, discord_user_id: int) -> RobloxVerification | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.scalars(
            select(RobloxVerification)
            .where(RobloxVerification.discord_user_id == discord_user_id)
            .order_by(RobloxVerification.id.desc())
            .limit(1)
        ).first()


def list_verifications(engine, server_id: int) -> list[RobloxVerification]:
    with Session(engine, expire_on_commit=False) as session:
        return list(session.scalars(
            select(RobloxVerification)
            .where(RobloxVerification.server_id == server_id)
            .order_by(RobloxVerification.verified_at.desc())
        ).all())


def get_pending(engine, discord_user_id: int) -> PendingVerification | None:
    with Session(engine, expire_on_commit=False) as session:
        return session.scalars(
            select(PendingVerification)
            .where(PendingVerification.discord_user_id == discord_user_id)
            .order_by(PendingVerification.id.desc())
            .limit(1)
        ).first()


def create_pending(
    engine,
    *,
    discord_user_id: int,
    server_id: int,
    code: str,
    roblox_user: RobloxUser,
    now: datetime | None = None,
) -> PendingVerification:
    """Store a fresh challenge, replacing any earlier one for this member."""
    now = now or utcnow()
    with get_session(engine) as session:
        session.execute(
            delete(PendingVerification)
            .where(PendingVerification.discord_user_id == discord_user_id)
        )
        pending = PendingVerification(
            discord_user_id=discord_user_id,
            verification_code=code,
            server_id=server_id,
            created_at=now,
            expires_at=now + timedelta(minutes=VERIFICATION_TTL_MINUTES),
            pending_roblox_username=roblox_user.username,
            pending_roblox_user_id=roblox_user.id,
        )
        session.add(pending)
    return pending


def delete_pending(engine, discord_user_id: int) -> int:
    with get_session(engine) as session:
        result = session.execute(
            delete(PendingVerification)
            .where(PendingVerification.discord_user_id == discord_user_id)
        )
        return result.rowcount or 0


def purge_expired_pending(engine, now: datetime | None = None) -> int:
    """Delete every expired challenge.  Run periodically to bound the table."""
    now = now or utcnow()
    with get_session(engine) as session:
        result = session.execute(
            delete(PendingVerification).where(PendingVerification.expires_at < now)
        )
        return result.rowcount or 0


def complete_verification(
    engine,
    *,
    discord_user_id: int,
    server_id: int,
    roblox_user_id: int,
    roblox_username: str,
) -> RobloxVerification:
    """Record the link, consume the challenge, and log it — one transaction."""
    with get_session(engine) as session:
        record = session.scalars(
            select(RobloxVerification)
            .where(RobloxVerification.discord_user_id == discord_user_id)
            .limit(1)
        ).first()
        if record is None:
            record = RobloxVerification(
                discord_user_id=discord_user_id,
                roblox_user_id=roblox_user_id,
                roblox_username=roblox_username,
                server_id=server_id,
            )
            session.add(record)
        else:
            record.roblox_user_id = roblox_user_id
            record.roblox_username = roblox_username
            record.server_id = server_id
            record.verified_at = utcnow()

        session.execute(
            delete(PendingVerification)
            .where(PendingVerification.discord_user_id == discord_user_id)
        )
        session.add(SecurityLog(
            server_id=server_id,
            event_type=EVENT_VERIFICATION,
            action="User verified",
            user_id=discord_user_id,
            details=f"Verified as Roblox user {roblox_username} ({roblox_user_id})",
        ))
    return record


def remove_verification(
    engine, *, discord_user_id: int, server_id: int,
) -> RobloxVerification | None:
    """Delete the member's link, keeping an audit entry naming the old account."""
    with get_session(engine) as session:
        records = list(session.scalars(
            select(RobloxVerification)
            .where(RobloxVerification.discord_user_id == discord_user_id)
        ).all())
        if not records:
            return None
        for record in records:
            session.delete(record)
        previous = records[-1]
        session.add(SecurityLog(
            server_id=server_id,
            event_type=EVENT_VERIFICATION,
            action="Verification removed",
            user_id=discord_user_id,
            details=(
                f"Unlinked Roblox user {previous.roblox_username} "
                f"({previous.roblox_user_id}) for re-verification"
            ),
        ))
    return previous


# ---------------------------------------------------------------------------
# Flow
# ---------------------------------------------------------------------------
async def start_verification(
    engine,
    roblox: RobloxClient,
    *,
    discord_user_id: int,
    server_id: int,
    username: str,
) -> PendingVerification:
    """``/verify``: validate, resolve the account, and issue a code."""
    existing = await run_db(get_verification, engine, discord_user_id)
    if existing is not None:
        raise AlreadyVerifiedError(existing.roblox_username)

    roblox_user = await roblox.get_user_by_username(username)
    if roblox_user is None:
        raise RobloxUserNotFoundError(username)

    pending = await run_db(
        create_pending,
        engine,
        discord_user_id=discord_user_id,
        server_id=server_id,
        code=generate_code(),
        roblox_user=roblox_user,
    )
    logger.info(
        "Verification started: discord=%d roblox=%s (%d)",
        discord_user_id, roblox_user.username, roblox_user.id,
    )
    return pending


async def _resolve_account(
    roblox: RobloxClient,
    existing: RobloxVerification | None,
    pending: PendingVerification,
) -> tuple[int, str]:
    if existing is not None:
        return existing.roblox_user_id, existing.roblox_username

    if pending.pending_roblox_user_id:
        name = pending.pending_roblox_username or await roblox.get_username(
            pending.pending_roblox_user_id
        )
        if name:
            return pending.pending_roblox_user_id, name

    if pending.pending_roblox_username:
        user = await roblox.get_user_by_username(pending.pending_roblox_username)
        if user is not None:
            return user.id, user.username

    raise InsufficientInformationError()


async def check_verification(
    engine,
    roblox: RobloxClient,
    *,
    discord_user_id: int,
    server_id: int,
    now: datetime | None = None,
) -> RobloxVerification:
    """``/checkverify``: look for the code in the profile, once."""
    pending = await run_db(get_pending, engine, discord_user_id)
    if pending is None:
        raise NoPendingVerificationError()

    if pending.is_expired(now):
        await run_db(delete_pending, engine, discord_user_id)
        logger.info("Expired verification discarded for %d", discord_user_id)
        raise VerificationExpiredError()

    existing = await run_db(get_verification, engine, discord_user_id)
    roblox_user_id, roblox_username = await _resolve_account(roblox, existing, pending)

    if not await roblox.profile_contains(roblox_user_id, pending.verification_code):
        logger.info(
            "Verification code not found for discord=%d roblox=%d", discord_user_id, roblox_user_id,
        )
        raise VerificationFailedError()

    record = await run_db(
        complete_verification,
        engine,
        discord_user_id=discord_user_id,
        server_id=server_id,
        roblox_user_id=roblox_user_id,
        roblox_username=roblox_username,
    )
    logger.info("Verified discord=%d as roblox=%s", discord_user_id, roblox_username)
    return record


async def reverify(
    engine,
    roblox: RobloxClient,
    *,
    discord_user_id: int,
    server_id: int,
    username: str,
) -> PendingVerification:
    """``/reverify``: drop the current link (logged), then start over."""
    removed = await run_db(
        remove_verification, engine, discord_user_id=discord_user_id, server_id=server_id,
    )
    if removed is not None:
        logger.info(
            "Removed link discord=%d → roblox=%s for re-verification",
            discord_user_id, removed.roblox_username,
        )
    return await start_verification(
        engine, roblox, discord_user_id=discord_user_id, server_id=server_id, username=username,
    )
