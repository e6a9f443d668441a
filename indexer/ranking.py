from typing import Mapping

from .models import LeaderboardEntry, ReferrerRecord

LEADERBOARD_SIZE = 10


class LeaderboardRanker:
    def __init__(self, size: int = LEADERBOARD_SIZE):
        self.size = size

    def rank(self, referrer_records: Mapping[str, ReferrerRecord]) -> list[LeaderboardEntry]:
        # Equal totals are ordered by address.
        ordered = sorted(referrer_records.items(), key=lambda item: (-item[1].total_rewards, item[0]))
        return [
            LeaderboardEntry(
                address=address,
                total_rewards=record.total_rewards,
                active_referees=record.active_referees_count,
            )
            for address, record in ordered[: self.size]
        ]
