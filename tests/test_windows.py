"""
tests/test_windows.py — Sliding-window counter tests
=====================================================
"""

from __future__ import annotations

from bloxguard.engine.windows import ActorWindowTracker

G = 1
A = 10
B = 20


class TestActorWindowTracker:
    def test_third_event_within_window_triggers(self):
        t = ActorWindowTracker(3, 10)
        assert t.record(G, A, now=100.0) is False
        assert t.record(G, A, now=101.0) is False
        assert t.record(G, A, now=102.0) is True

    def test_events_spread_over_window_do_not_trigger(self):
        t = ActorWindowTracker(3, 10)
        assert t.record(G, A, now=100.0) is False
        assert t.record(G, A, now=106.0) is False
        # First event has aged out (exactly 10s old is outside the window)
        assert t.record(G, A, now=110.0) is False
        assert t.count(G, A, now=110.0) == 2

    def test_actors_are_counted_independently(self):
        t = ActorWindowTracker(3, 10)
        t.record(G, A, now=1.0)
        t.record(G, A, now=2.0)
        assert t.record(G, B, now=3.0) is False
        assert t.count(G, A, now=3.0) == 2
        assert t.count(G, B, now=3.0) == 1

    def test_guilds_are_counted_independently(self):
        t = ActorWindowTracker(3, 10)
        t.record(1, A, now=1.0)
        t.record(1, A, now=2.0)
        assert t.record(2, A, now=3.0) is False

    def test_window_stays_live_after_trigger(self):
        t = ActorWindowTracker(3, 10)
        for ts in (1.0, 2.0, 3.0):
            t.record(G, A, now=ts)
        assert t.record(G, A, now=4.0) is True

    def test_reset_clears_actor(self):
        t = ActorWindowTracker(3, 10)
        t.record(G, A, now=1.0)
        t.reset(G, A)
        assert t.count(G, A, now=1.0) == 0

    def test_sweep_drops_quiet_windows(self):
        t = ActorWindowTracker(3, 10)
        t.record(G, A, now=1.0)
        t.record(G, B, now=50.0)
        assert t.sweep(now=55.0) == 1
        assert len(t) == 1
        assert t.count(G, B, now=55.0) == 1
