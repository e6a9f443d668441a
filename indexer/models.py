from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Token amounts are unbounded ints; JSON carries them as decimal strings.
Amount = Annotated[int, Field(ge=0), PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]


def normalize_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip().lower()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EventKind(str, Enum):
    DEPOSIT = "Deposit"
    REFERRAL_WITHDRAWAL = "ReferralWithdrawal"
    REWARD_WITHDRAWAL = "RewardWithdrawal"


class SyncPhase(str, Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    REDUCING = "Reducing"
    AGGREGATING = "Aggregating"
    RANKING = "Ranking"
    COMMITTING = "Committing"
    FAILED = "Failed"


class CycleStatus(str, Enum):
    COMMITTED = "committed"
    NO_NEW_BLOCKS = "no_new_blocks"
    FAILED = "failed"
    SKIPPED = "skipped"


class LedgerEvent(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    kind: EventKind
    user_address: str
    amount: int
    referrer_address: Optional[str] = None
    block_number: int = Field(..., ge=0)
    log_index: int = 0
    timestamp: Optional[int] = Field(default=None, description="Block time in milliseconds")

    @field_validator("user_address", "referrer_address", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return normalize_address(value)

    @property
    def has_referrer(self) -> bool:
        return bool(self.referrer_address) and self.referrer_address != ZERO_ADDRESS


class DepositEntry(CamelModel):
    amount: Amount
    timestamp: int


class UserRecord(CamelModel):
    deposits: list[DepositEntry] = Field(default_factory=list)
    last_deposit_time: Optional[int] = None
    rolling_deposited_30d: Amount = Field(default=0, alias="rollingDeposited30d")
    rewards_withdrawn: Amount = 0


class ReferredUser(CamelModel):
    deposits: list[DepositEntry] = Field(default_factory=list)
    total_deposited: Amount = 0


class ReferrerRecord(CamelModel):
    total_rewards: Amount = 0
    available_rewards: Amount = 0
    referred_count: int = 0
    total_referred_volume: Amount = 0
    total_withdrawn: Amount = 0
    referred_users: dict[str, ReferredUser] = Field(default_factory=dict)
    active_referees_count: int = 0
    has_referral_streak: bool = False


class LeaderboardEntry(CamelModel):
    address: str
    total_rewards: Amount
    active_referees: int = 0


class SyncState(CamelModel):
    last_processed_block: int = -1


class LedgerSnapshot(CamelModel):
    user_records: dict[str, UserRecord] = Field(default_factory=dict)
    referrer_records: dict[str, ReferrerRecord] = Field(default_factory=dict)
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)
    sync_state: SyncState = Field(default_factory=SyncState)

    @classmethod
    def empty(cls, start_block: int = 0) -> "LedgerSnapshot":
        return cls(sync_state=SyncState(last_processed_block=start_block - 1))


class CycleResult(CamelModel):
    status: CycleStatus
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    events: dict[str, int] = Field(default_factory=dict)
    anomalies: int = 0
    persisted: bool = False
    error: Optional[str] = None
    started_at: int
    finished_at: Optional[int] = None


class ActiveRefereesResponse(CamelModel):
    address: str
    active_referees_count: int


class ReferralStreakResponse(CamelModel):
    address: str
    has_referral_streak: bool


class LeaderboardResponse(CamelModel):
    leaderboard: list[LeaderboardEntry]


class ReferrerSummary(CamelModel):
    address: str
    total_rewards: Amount
    total_withdrawn: Amount
    total_referred_volume: Amount
    referred_count: int
    active_referees_count: int
    has_referral_streak: bool


class SyncStatusResponse(CamelModel):
    last_processed_block: int
    phase: SyncPhase
    last_cycle: Optional[CycleResult] = None
