"""
tests/test_raid.py — Raid detection heuristics & state machine
===============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from bloxguard.engine.raid import (
    JoinOutcome,
    JoinRecord,
    RaidTracker,
    is_raid,
    names_look_related,
    similar_name_ratio,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
OLD = NOW - timedelta(days=400)
NEW = NOW - timedelta(hours=2)
DISTINCT = ["alice", "bob", "charlie", "dmitri", "eve", "frank"]


def _join(i: int, name: str, created: datetime, ts: float = 1000.0) -> JoinRecord:
    return JoinRecord(member_id=i, username=name, account_created_at=created, timestamp=ts + i * 0.5)


class TestNameSimilarity:
    def test_shared_three_letter_prefix(self):
        assert names_look_related("raider01", "raidking")

    def test_short_names_need_number_rule(self):
        assert not names_look_related("bob", "bot")

    def test_consecutive_trailing_numbers(self):
        assert names_look_related("x7", "x8")
        assert not names_look_related("x7", "x9")

    def test_pair_counted_once(self):
        joins = [_join(i, n, OLD) for i, n in enumerate(["spam1", "spam2", "zed"])]
        # 1 related pair out of 3
        assert similar_name_ratio(joins) == 1 / 3


class TestIsRaid:
    def test_mostly_new_accounts(self):
        joins = [_join(i, DISTINCT[i], NEW if i < 3 else OLD) for i in range(5)]
        # ceil(5 * 0.6) == 3
        assert is_raid(joins, NOW)

    def test_too_few_new_accounts(self):
        joins = [_join(i, DISTINCT[i], NEW if i < 2 else OLD) for i in range(5)]
        assert not is_raid(joins, NOW)

    def test_similar_names_on_old_accounts(self):
        joins = [_join(i, f"raider{i}", OLD) for i in range(5)]
        assert is_raid(joins, NOW)

    def test_empty_buffer(self):
        assert not is_raid([], NOW)


class TestRaidTracker:
    def test_fifth_suspicious_join_activates(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        outcomes = [t.record_join(1, _join(i, DISTINCT[i], NEW), now=NOW) for i in range(5)]
        assert outcomes[:4] == [JoinOutcome.IGNORED] * 4
        assert outcomes[4] is JoinOutcome.RAID_DETECTED
        assert t.is_active(1)
        assert len(t.buffered(1)) == 5

    def test_joins_while_active_are_restricted(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        for i in range(5):
            t.record_join(1, _join(i, DISTINCT[i], NEW), now=NOW)
        assert t.record_join(1, _join(5, "late", OLD), now=NOW) is JoinOutcome.RAID_ACTIVE

    def test_legit_burst_stays_idle(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        outcomes = [t.record_join(1, _join(i, DISTINCT[i], OLD), now=NOW) for i in range(6)]
        assert JoinOutcome.RAID_DETECTED not in outcomes
        assert not t.is_active(1)

    def test_joins_outside_window_are_pruned(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        for i in range(4):
            t.record_join(1, _join(i, DISTINCT[i], NEW, ts=0.0), now=NOW)
        outcome = t.record_join(1, _join(9, "late", NEW, ts=100.0), now=NOW)
        assert outcome is JoinOutcome.IGNORED
        assert len(t.buffered(1)) == 1

    def test_end_clears_buffer_and_reports(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        for i in range(5):
            t.record_join(1, _join(i, DISTINCT[i], NEW), now=NOW)
        assert t.end(1) is True
        assert not t.is_active(1)
        assert t.buffered(1) == []
        assert t.end(1) is False

    def test_guilds_are_independent(self):
        t = RaidTracker(join_threshold=5, timeframe=10)
        for i in range(5):
            t.record_join(1, _join(i, DISTINCT[i], NEW), now=NOW)
        assert not t.is_active(2)
