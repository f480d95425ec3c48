"""
bloxguard.engine.windows — Per-Actor Sliding-Window Counters
=============================================================

Anti-nuke and anti-hack both ask the same question: "has this member done
X at least N times in the last T seconds?"  :class:`ActorWindowTracker`
answers it with one timestamp list per ``(guild, actor)`` pair, so two
people acting at once never reset each other's counts.

The window stays live after a trigger.  A fourth deletion inside the
window reports ``True`` again; the handler acting twice on an already
stripped member is harmless.

Usage::

    tracker = ActorWindowTracker(threshold=3, timeframe=10.0)
    if tracker.record(guild.id, executor.id):
        await punish(executor)
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from threading import Lock

logger = logging.getLogger(__name__)


class ActorWindowTracker:
    """Sliding-window event counter keyed by ``(guild_id, actor_id)``.

    Thread-safe.  Expired timestamps are pruned whenever the same actor
    records again; :meth:`sweep` drops windows that have gone quiet.
    """

    def __init__(self, threshold: int, timeframe: float) -> None:
        self.threshold = threshold
        self.timeframe = timeframe
        self._lock = Lock()
        self._windows: dict[tuple[int, int], list[float]] = defaultdict(list)

    def record(self, guild_id: int, actor_id: int, now: float | None = None) -> bool:
        """Append an event for *actor_id* and return whether the threshold is reached."""
        now = time.time() if now is None else now
        key = (guild_id, actor_id)

        with self._lock:
            stamps = [t for t in self._windows[key] if now - t < self.timeframe]
            stamps.append(now)
            self._windows[key] = stamps
            count = len(stamps)

        logger.debug(
            "Window %s: %d/%d within %.0fs", key, count, self.threshold, self.timeframe,
        )
        return count >= self.threshold

    def count(self, guild_id: int, actor_id: int, now: float | None = None) -> int:
        """Number of live events for the actor (no recording)."""
        now = time.time() if now is None else now
        with self._lock:
            return sum(
                1 for t in self._windows.get((guild_id, actor_id), ())
                if now - t < self.timeframe
            )

    def reset(self, guild_id: int, actor_id: int) -> None:
        with self._lock:
            self._windows.pop((guild_id, actor_id), None)

    def sweep(self, now: float | None = None) -> int:
        """Drop windows whose every timestamp has expired.  Returns how many."""
        now = time.time() if now is None else now
        with self._lock:
            stale = [
                key for key, stamps in self._windows.items()
                if all(now - t >= self.timeframe for t in stamps)
            ]
            for key in stale:
                del self._windows[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)
