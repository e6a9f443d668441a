from typing import TYPE_CHECKING, Optional

from .errors import InvalidAddressError, ReferrerNotFoundError
from .models import (
    ActiveRefereesResponse,
    LeaderboardEntry,
    LedgerSnapshot,
    ReferralStreakResponse,
    ReferrerSummary,
    SyncPhase,
    SyncStatusResponse,
    normalize_address,
)

if TYPE_CHECKING:
    from .sync import SyncDriver


class SnapshotHolder:
    """Reference to the last committed snapshot.

    A committed snapshot is never mutated; the sync driver builds the next one
    on a copy and swaps the reference in `publish`, so readers always see a
    whole cycle or none of it.
    """

    def __init__(self, snapshot: Optional[LedgerSnapshot] = None):
        self._snapshot = snapshot or LedgerSnapshot.empty()

    @property
    def current(self) -> LedgerSnapshot:
        return self._snapshot

    def publish(self, snapshot: LedgerSnapshot) -> None:
        self._snapshot = snapshot


class QueryService:
    def __init__(self, holder: SnapshotHolder, driver: Optional["SyncDriver"] = None):
        self.holder = holder
        self.driver = driver

    def get_active_referees_count(self, address: Optional[str]) -> ActiveRefereesResponse:
        address = self._require_address(address)
        record = self.holder.current.referrer_records.get(address)
        return ActiveRefereesResponse(
            address=address,
            active_referees_count=record.active_referees_count if record else 0,
        )

    def get_has_referral_streak(self, address: Optional[str]) -> ReferralStreakResponse:
        address = self._require_address(address)
        record = self.holder.current.referrer_records.get(address)
        return ReferralStreakResponse(
            address=address,
            has_referral_streak=record.has_referral_streak if record else False,
        )

    def get_leaderboard(self) -> list[LeaderboardEntry]:
        return list(self.holder.current.leaderboard)

    def get_referrer(self, address: Optional[str]) -> ReferrerSummary:
        address = self._require_address(address)
        record = self.holder.current.referrer_records.get(address)
        if record is None:
            raise ReferrerNotFoundError(f"Referrer {address} not found")
        return ReferrerSummary(
            address=address,
            total_rewards=record.total_rewards,
            total_withdrawn=record.total_withdrawn,
            total_referred_volume=record.total_referred_volume,
            referred_count=record.referred_count,
            active_referees_count=record.active_referees_count,
            has_referral_streak=record.has_referral_streak,
        )

    def get_sync_status(self) -> SyncStatusResponse:
        return SyncStatusResponse(
            last_processed_block=self.holder.current.sync_state.last_processed_block,
            phase=self.driver.phase if self.driver else SyncPhase.IDLE,
            last_cycle=self.driver.last_result if self.driver else None,
        )

    def _require_address(self, address: Optional[str]) -> str:
        address = normalize_address(address)
        if not address:
            raise InvalidAddressError("Address parameter is required.")
        return address
