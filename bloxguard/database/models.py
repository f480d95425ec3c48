"""
bloxguard.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- discord_servers        — Guilds the bot has seen (name, owner, member count)
- security_settings      — Per-guild feature toggles, allow-list, role/channel
- roblox_verifications   — Discord ↔ Roblox account links
- pending_verifications  — Outstanding profile-code challenges (30 min TTL)
- security_logs          — Append-only enforcement/audit journal
- tickets                — Support tickets (never hard-deleted)
- settings               — Key-value bot settings (prefix, debug mode, …)
- oauth_states           — One-time dashboard OAuth state tokens

Discord snowflakes are stored as ``BigInteger``; the API layer renders
them as strings because they overflow JavaScript numbers.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all BloxGuard ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TicketStatus(enum.StrEnum):
    OPEN = "open"
    IN_PROGRESS = "inProgress"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# DiscordServer — one row per guild
# ---------------------------------------------------------------------------
class DiscordServer(Base):
    __tablename__ = "discord_servers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    security_settings: Mapped[SecuritySettings | None] = relationship(
        back_populates="server", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<DiscordServer id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# SecuritySettings — per-guild toggles read by every event handler
# ---------------------------------------------------------------------------
class SecuritySettings(Base):
    """Feature switches and filter configuration for one guild.

    ``verified_role_id`` and ``log_channel_id`` accept either a snowflake
    or a plain name; the dashboard historically stores names.
    """
    __tablename__ = "security_settings"

    server_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("discord_servers.id", ondelete="CASCADE"), primary_key=True
    )
    anti_nuke: Mapped[bool] = mapped_column(Boolean, default=True)
    anti_hack: Mapped[bool] = mapped_column(Boolean, default=True)
    anti_raid: Mapped[bool] = mapped_column(Boolean, default=True)
    website_filter: Mapped[bool] = mapped_column(Boolean, default=True)
    allowed_domains: Mapped[list[str]] = mapped_column(JSON, default=list)
    verified_role_id: Mapped[str | None] = mapped_column(String(100), default=None)
    log_channel_id: Mapped[str | None] = mapped_column(String(100), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    server: Mapped[DiscordServer] = relationship(back_populates="security_settings")

    def __repr__(self) -> str:
        return f"<SecuritySettings server={self.server_id}>"


# ---------------------------------------------------------------------------
# RobloxVerification — completed account links
# ---------------------------------------------------------------------------
class RobloxVerification(Base):
    __tablename__ = "roblox_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    roblox_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    roblox_username: Mapped[str] = mapped_column(String(50), nullable=False)
    server_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_roblox_verifications_discord_user", "discord_user_id"),
        Index("ix_roblox_verifications_server", "server_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<RobloxVerification discord={self.discord_user_id} "
            f"roblox={self.roblox_username!r}>"
        )


# ---------------------------------------------------------------------------
# PendingVerification — outstanding profile-code challenges
# ---------------------------------------------------------------------------
class PendingVerification(Base):
    __tablename__ = "pending_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    verification_code: Mapped[str] = mapped_column(String(16), nullable=False)
    server_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pending_roblox_username: Mapped[str | None] = mapped_column(String(50), default=None)
    pending_roblox_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    __table_args__ = (
        Index("ix_pending_verifications_discord_user", "discord_user_id"),
        Index("ix_pending_verifications_expires", "expires_at"),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > as_utc(self.expires_at)

    def __repr__(self) -> str:
        return f"<PendingVerification discord={self.discord_user_id} code={self.verification_code}>"


# ---------------------------------------------------------------------------
# SecurityLog — append-only enforcement journal
# ---------------------------------------------------------------------------
class SecurityLog(Base):
    """One row per enforcement or configuration action.

    ``threat_blocked`` marks rows that represent a neutralised threat; the
    dashboard's "threats blocked" figure is a count over this flag.
    """
    __tablename__ = "security_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    server_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    details: Mapped[str | None] = mapped_column(Text, default=None)
    threat_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_security_logs_server_time", "server_id", "timestamp"),
        Index("ix_security_logs_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<SecurityLog id={self.id} type={self.event_type} action={self.action!r}>"


# ---------------------------------------------------------------------------
# Ticket — support tickets
# ---------------------------------------------------------------------------
class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    server_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    issue: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TicketStatus.OPEN)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    closed_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    closed_reason: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        Index("ix_tickets_server_status", "server_id", "status"),
        Index("ix_tickets_channel", "channel_id"),
        Index("ix_tickets_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} user={self.user_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Setting — key-value bot settings
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Holds the bot-wide knobs the dashboard edits at runtime (command
    prefix, debug mode, command deletion).  Values are stored as JSON.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# OAuthState — one-time dashboard login state tokens
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"
