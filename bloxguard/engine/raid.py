"""
bloxguard.engine.raid — Join-Burst Raid Detector
=================================================

Pure bookkeeping for the anti-raid cog: a per-guild join buffer, the
raid-confirmation heuristic, and the ``Idle → Active → Idle`` state.
Discord side effects (timeouts, log-channel posts) stay in the cog.

State machine::

    Idle ──(≥5 joins in 10 s AND heuristic says raid)──▶ Active
    Active ──(15 min timer OR /endraid)──▶ Idle

Heuristic (either is enough):

* at least 60 % of the buffered accounts are younger than 24 hours, or
* at least 80 % of username pairs look related — same first three
  letters, or the same ``name`` stem with trailing numbers one apart
  (``raider41`` / ``raider42``).
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from bloxguard.constants import (
    RAID_JOIN_THRESHOLD,
    RAID_JOIN_TIMEFRAME_SECONDS,
    RAID_NEW_ACCOUNT_HOURS,
    RAID_NEW_ACCOUNT_RATIO,
    RAID_SIMILAR_NAME_RATIO,
)

logger = logging.getLogger(__name__)

_TRAILING_NUMBER = re.compile(r"(\D+)(\d+)$")


@dataclass(slots=True)
class JoinRecord:
    """One member join as seen by the detector."""

    member_id: int
    username: str
    account_created_at: datetime
    timestamp: float = field(default_factory=time.time)


@dataclass
class RaidState:
    """Per-guild raid bookkeeping.  Created lazily on the first join."""

    joins: list[JoinRecord] = field(default_factory=list)
    active: bool = False
    end_task: asyncio.Task | None = None


class JoinOutcome(Enum):
    IGNORED = "ignored"          # Buffer updated, no raid
    RAID_DETECTED = "detected"   # Idle → Active on this join
    RAID_ACTIVE = "active"       # Already Active, restrict the newcomer


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------
def names_look_related(a: str, b: str) -> bool:
    """Return True if two lower-cased usernames look machine-generated together."""
    if len(a) > 3 and len(b) > 3 and a[:3] == b[:3]:
        return True

    m1 = _TRAILING_NUMBER.search(a)
    m2 = _TRAILING_NUMBER.search(b)
    if m1 and m2 and m1.group(1) == m2.group(1):
        return abs(int(m1.group(2)) - int(m2.group(2))) == 1
    return False


def new_account_count(joins: list[JoinRecord], now: datetime) -> int:
    cutoff = now - timedelta(hours=RAID_NEW_ACCOUNT_HOURS)
    return sum(1 for j in joins if j.account_created_at > cutoff)


def similar_name_ratio(joins: list[JoinRecord]) -> float:
    names = [j.username.lower() for j in joins]
    total = len(names) * (len(names) - 1) // 2
    if total == 0:
        return 0.0
    similar = sum(
        1
        for i in range(len(names))
        for k in range(i + 1, len(names))
        if names_look_related(names[i], names[k])
    )
    return similar / total


def is_raid(joins: list[JoinRecord], now: datetime | None = None) -> bool:
    """Apply the raid-confirmation heuristic to a join buffer."""
    if not joins:
        return False
    now = now or datetime.now(UTC)

    fresh = new_account_count(joins, now)
    if fresh >= math.ceil(len(joins) * RAID_NEW_ACCOUNT_RATIO):
        logger.warning("Raid heuristic: %d/%d accounts are new", fresh, len(joins))
        return True

    ratio = similar_name_ratio(joins)
    if ratio >= RAID_SIMILAR_NAME_RATIO:
        logger.warning("Raid heuristic: %.0f%% of username pairs look related", ratio * 100)
        return True

    return False


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------
class RaidTracker:
    """Holds :class:`RaidState` for every guild and drives its transitions."""

    def __init__(
        self,
        join_threshold: int = RAID_JOIN_THRESHOLD,
        timeframe: float = RAID_JOIN_TIMEFRAME_SECONDS,
    ) -> None:
        self.join_threshold = join_threshold
        self.timeframe = timeframe
        self._states: dict[int, RaidState] = {}

    def state(self, guild_id: int) -> RaidState:
        if guild_id not in self._states:
            self._states[guild_id] = RaidState()
        return self._states[guild_id]

    def is_active(self, guild_id: int) -> bool:
        st = self._states.get(guild_id)
        return bool(st and st.active)

    def record_join(
        self,
        guild_id: int,
        join: JoinRecord,
        *,
        now: datetime | None = None,
    ) -> JoinOutcome:
        """Buffer *join* and report what the cog should do about it."""
        st = self.state(guild_id)
        st.joins = [j for j in st.joins if join.timestamp - j.timestamp < self.timeframe]
        st.joins.append(join)

        if st.active:
            return JoinOutcome.RAID_ACTIVE

        if len(st.joins) >= self.join_threshold and is_raid(st.joins, now):
            st.active = True
            logger.warning(
                "Raid mode activated in guild %d (%d buffered joins)", guild_id, len(st.joins),
            )
            return JoinOutcome.RAID_DETECTED

        return JoinOutcome.IGNORED

    def buffered(self, guild_id: int) -> list[JoinRecord]:
        return list(self.state(guild_id).joins)

    def set_end_task(self, guild_id: int, task: asyncio.Task) -> None:
        """Attach the auto-end timer, cancelling any previous one."""
        st = self.state(guild_id)
        if st.end_task is not None and not st.end_task.done():
            st.end_task.cancel()
        st.end_task = task

    def end(self, guild_id: int) -> bool:
        """Return the guild to Idle.  Returns whether raid mode was active."""
        st = self._states.get(guild_id)
        if st is None:
            return False

        was_active = st.active
        st.active = False
        st.joins.clear()

        task, st.end_task = st.end_task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        if was_active:
            logger.info("Raid mode ended in guild %d", guild_id)
        return was_active


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
