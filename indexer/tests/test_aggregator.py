"""
Unit Tests for the WindowAggregator

Tests cover:
1. Rolling 30-day deposit totals and pruning
2. Active referee threshold
3. Weekly referral streak heuristic
"""

import pytest

from indexer.aggregator import WindowAggregator, has_weekly_streak
from indexer.models import DepositEntry, LedgerSnapshot
from indexer.reducer import LedgerReducer

from .conftest import (
    DAY_MS,
    NOW,
    REFERRER,
    TOKEN,
    USER_A,
    USER_B,
    USER_C,
    USER_D,
    deposit,
)

THRESHOLD = 250 * TOKEN


def build(events) -> LedgerSnapshot:
    snapshot = LedgerSnapshot()
    LedgerReducer().reduce(snapshot, events, lambda block: 0)
    return snapshot


class TestRollingWindow:
    """Tests for the trailing 30-day total."""

    def test_old_deposits_pruned(self):
        """Test that only deposits inside the window count."""
        snapshot = build([
            deposit(USER_A, 700, block=1, timestamp=NOW - 31 * DAY_MS),
            deposit(USER_A, 300, block=2, timestamp=NOW - 1 * DAY_MS),
        ])

        WindowAggregator().recompute(snapshot, NOW)

        user = snapshot.user_records[USER_A]
        assert user.rolling_deposited_30d == 300
        assert [d.amount for d in user.deposits] == [300]

    def test_window_start_is_inclusive(self):
        """Test that a deposit exactly 30 days old is still inside the window."""
        snapshot = build([deposit(USER_A, 5, timestamp=NOW - 30 * DAY_MS)])

        WindowAggregator().recompute(snapshot, NOW)

        assert snapshot.user_records[USER_A].rolling_deposited_30d == 5

    def test_recompute_is_idempotent(self):
        """Test that recomputing at the same instant changes nothing."""
        snapshot = build([
            deposit(USER_A, 700, referrer=REFERRER, block=1, timestamp=NOW - 40 * DAY_MS),
            deposit(USER_A, 300, referrer=REFERRER, block=2, timestamp=NOW - 2 * DAY_MS),
        ])
        aggregator = WindowAggregator()

        aggregator.recompute(snapshot, NOW)
        first = snapshot.model_dump()
        aggregator.recompute(snapshot, NOW)

        assert snapshot.model_dump() == first

    def test_all_deposits_expired(self):
        """Test that a user with no recent deposits drops to zero."""
        snapshot = build([deposit(USER_A, 5, timestamp=NOW - 45 * DAY_MS)])

        WindowAggregator().recompute(snapshot, NOW)

        assert snapshot.user_records[USER_A].rolling_deposited_30d == 0
        assert snapshot.user_records[USER_A].deposits == []

    def test_referred_history_pruned(self):
        """Test that old referred deposits are dropped while the lifetime total stays."""
        snapshot = build([
            deposit(USER_A, 700, referrer=REFERRER, block=1, timestamp=NOW - 31 * DAY_MS),
            deposit(USER_A, 300, referrer=REFERRER, block=2, timestamp=NOW - DAY_MS),
        ])

        WindowAggregator().recompute(snapshot, NOW)

        referred = snapshot.referrer_records[REFERRER].referred_users[USER_A]
        assert [d.amount for d in referred.deposits] == [300]
        assert referred.total_deposited == 1000
        assert snapshot.referrer_records[REFERRER].total_referred_volume == 1000


class TestActiveReferees:
    """Tests for the active referee count."""

    def test_threshold_is_inclusive(self):
        """Test that exactly the threshold counts and one unit below does not."""
        snapshot = build([
            deposit(USER_A, THRESHOLD, referrer=REFERRER, block=1, timestamp=NOW - DAY_MS),
            deposit(USER_B, THRESHOLD - 1, referrer=REFERRER, block=2, timestamp=NOW - DAY_MS),
        ])

        WindowAggregator(active_threshold=THRESHOLD).recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].active_referees_count == 1

    def test_uses_referee_global_total(self):
        """Test that deposits made without this referrer still count toward activity."""
        snapshot = build([
            deposit(USER_A, 150 * TOKEN, referrer=REFERRER, block=1, timestamp=NOW - DAY_MS),
            deposit(USER_A, 100 * TOKEN, block=2, timestamp=NOW - DAY_MS),
        ])

        WindowAggregator(active_threshold=THRESHOLD).recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].active_referees_count == 1

    def test_expired_deposits_do_not_count(self):
        """Test that a referee whose large deposit left the window is inactive."""
        snapshot = build([
            deposit(USER_A, 1000 * TOKEN, referrer=REFERRER, timestamp=NOW - 31 * DAY_MS),
        ])

        WindowAggregator(active_threshold=THRESHOLD).recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].active_referees_count == 0


STREAK_TIMES = [NOW - 1 * DAY_MS, NOW - 8 * DAY_MS, NOW - 15 * DAY_MS, NOW - 22 * DAY_MS]


class TestReferralStreak:
    """Tests for the four-week streak heuristic."""

    def test_one_deposit_per_week(self):
        """Test that referred deposits in each of the last four weeks give a streak."""
        users = [USER_A, USER_B, USER_C, USER_D]
        snapshot = build([
            deposit(user, 10, referrer=REFERRER, block=i + 1, timestamp=ts)
            for i, (user, ts) in enumerate(zip(users, STREAK_TIMES))
        ])

        WindowAggregator().recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].has_referral_streak is True

    @pytest.mark.parametrize("missing", range(4))
    def test_missing_week_breaks_streak(self, missing):
        """Test that removing any one week's deposit clears the streak."""
        times = [ts for i, ts in enumerate(STREAK_TIMES) if i != missing]
        # Pad back to four deposits inside the remaining weeks
        times.append(times[0] + 60_000)
        snapshot = build([
            deposit(USER_A, 10, referrer=REFERRER, block=i + 1, timestamp=ts)
            for i, ts in enumerate(times)
        ])

        WindowAggregator().recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].has_referral_streak is False

    def test_fewer_than_four_deposits(self):
        """Test that three deposits never make a streak."""
        entries = [DepositEntry(amount=1, timestamp=ts) for ts in STREAK_TIMES[:3]]

        assert has_weekly_streak(entries, NOW) is False

    def test_deposit_at_now_outside_current_week(self):
        """Test that the current week window excludes `now` itself."""
        entries = [DepositEntry(amount=1, timestamp=ts) for ts in [NOW, *STREAK_TIMES[1:], NOW - 23 * DAY_MS]]

        assert has_weekly_streak(entries, NOW) is False

    def test_referrer_own_deposits_ignored(self):
        """Test that only referred users' deposits feed the streak."""
        snapshot = build(
            [deposit(REFERRER, 10, block=i + 1, timestamp=ts) for i, ts in enumerate(STREAK_TIMES)]
            + [deposit(USER_A, 10, referrer=REFERRER, block=9, timestamp=NOW - DAY_MS)]
        )

        WindowAggregator().recompute(snapshot, NOW)

        assert snapshot.referrer_records[REFERRER].has_referral_streak is False
