"""
Time-windowed fields derived from the ledger.

Every cycle recomputes, for all known records:
- `rolling_deposited_30d`: a user's deposits inside the trailing 30 days
  (older entries are pruned for good, here and in each referrer's
  per-referee history; `total_deposited` keeps the lifetime sum),
- `active_referees_count`: referred users whose own 30-day total reaches the
  activity threshold,
- `has_referral_streak`: at least one referred deposit in each of the last
  four 7-day buckets counted back from `now`.

The streak check is a weekly engagement heuristic; it does not verify that
the buckets line up with the referrer's activation or calendar weeks.
"""

import logging

from .models import DepositEntry, LedgerSnapshot

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
WINDOW_MS = 30 * DAY_MS
WEEK_MS = 7 * DAY_MS
STREAK_WEEKS = 4
DEFAULT_ACTIVE_THRESHOLD = 250 * 10 ** 18


def has_weekly_streak(deposits: list[DepositEntry], now: int, weeks: int = STREAK_WEEKS) -> bool:
    if len(deposits) < weeks:
        return False
    for i in range(weeks):
        week_end = now - i * WEEK_MS
        week_start = week_end - WEEK_MS
        if not any(week_start <= d.timestamp < week_end for d in deposits):
            return False
    return True


class WindowAggregator:
    def __init__(self, active_threshold: int = DEFAULT_ACTIVE_THRESHOLD, window_ms: int = WINDOW_MS):
        self.active_threshold = active_threshold
        self.window_ms = window_ms

    def recompute(self, snapshot: LedgerSnapshot, now: int) -> None:
        cutoff = now - self.window_ms

        for user in snapshot.user_records.values():
            user.deposits = [d for d in user.deposits if d.timestamp >= cutoff]
            user.rolling_deposited_30d = sum(d.amount for d in user.deposits)

        streaks = 0
        for referrer in snapshot.referrer_records.values():
            active = 0
            pooled: list[DepositEntry] = []
            for address, referred in referrer.referred_users.items():
                referred.deposits = [d for d in referred.deposits if d.timestamp >= cutoff]
                pooled.extend(referred.deposits)
                user = snapshot.user_records.get(address)
                if user is not None and user.rolling_deposited_30d >= self.active_threshold:
                    active += 1
            referrer.active_referees_count = active
            referrer.has_referral_streak = has_weekly_streak(pooled, now)
            streaks += referrer.has_referral_streak

        logger.debug(
            "Recomputed windows for %d users and %d referrers (%d with streak)",
            len(snapshot.user_records), len(snapshot.referrer_records), streaks,
        )
