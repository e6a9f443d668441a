import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .models import (
    DepositEntry,
    EventKind,
    LedgerEvent,
    LedgerSnapshot,
    ReferredUser,
    ReferrerRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

# Within a batch, kinds are applied in this order.
KIND_ORDER = (EventKind.DEPOSIT, EventKind.REFERRAL_WITHDRAWAL, EventKind.REWARD_WITHDRAWAL)


@dataclass
class ReduceStats:
    applied: dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    anomalies: list[str] = field(default_factory=list)

    def count(self, kind: EventKind) -> None:
        self.applied[kind.value] = self.applied.get(kind.value, 0) + 1

    def flag(self, message: str) -> None:
        logger.warning("Data integrity: %s", message)
        self.anomalies.append(message)


class LedgerReducer:
    def reduce(
        self,
        snapshot: LedgerSnapshot,
        events: Iterable[LedgerEvent],
        block_timestamp: Callable[[int], int],
    ) -> ReduceStats:
        """Fold a batch of events into `snapshot` in place.

        `block_timestamp` returns a block's time in seconds; it is only
        consulted for events that do not carry a timestamp yet.
        """
        stats = ReduceStats()
        timestamps: dict[int, int] = {}

        def resolve(event: LedgerEvent) -> int:
            if event.timestamp is not None:
                return event.timestamp
            if event.block_number not in timestamps:
                timestamps[event.block_number] = int(block_timestamp(event.block_number)) * 1000
            return timestamps[event.block_number]

        ordered = sorted(events, key=lambda e: (KIND_ORDER.index(e.kind), e.block_number, e.log_index))
        for event in ordered:
            if event.amount < 0:
                stats.skipped += 1
                stats.flag(f"negative amount {event.amount} in {event.kind.value} at block {event.block_number}, skipped")
                continue
            if event.kind == EventKind.DEPOSIT:
                self._apply_deposit(snapshot, event, resolve(event), stats)
            elif event.kind == EventKind.REFERRAL_WITHDRAWAL:
                self._apply_referral_withdrawal(snapshot, event, stats)
            else:
                self._apply_reward_withdrawal(snapshot, event, stats)
            stats.count(event.kind)
        return stats

    def _apply_deposit(self, snapshot: LedgerSnapshot, event: LedgerEvent, timestamp: int, stats: ReduceStats) -> None:
        user = snapshot.user_records.setdefault(event.user_address, UserRecord())
        user.deposits.append(DepositEntry(amount=event.amount, timestamp=timestamp))
        user.last_deposit_time = timestamp

        if not event.has_referrer:
            return
        if event.referrer_address == event.user_address:
            stats.flag(f"self-referral by {event.user_address} at block {event.block_number}")

        referrer = snapshot.referrer_records.setdefault(event.referrer_address, ReferrerRecord())
        referrer.total_referred_volume += event.amount
        referred = referrer.referred_users.get(event.user_address)
        if referred is None:
            referred = referrer.referred_users[event.user_address] = ReferredUser()
            referrer.referred_count = len(referrer.referred_users)
        referred.deposits.append(DepositEntry(amount=event.amount, timestamp=timestamp))
        referred.total_deposited += event.amount

    def _apply_referral_withdrawal(self, snapshot: LedgerSnapshot, event: LedgerEvent, stats: ReduceStats) -> None:
        depositor = snapshot.user_records.get(event.user_address)
        if depositor is None or depositor.last_deposit_time is None:
            stats.flag(f"referral withdrawal by {event.user_address} with no deposit history")
        referrer = snapshot.referrer_records.get(event.user_address)
        if referrer is None:
            stats.flag(f"referral withdrawal by {event.user_address} with no referral history")
            referrer = snapshot.referrer_records[event.user_address] = ReferrerRecord()
        referrer.total_rewards += event.amount
        referrer.total_withdrawn += event.amount

    def _apply_reward_withdrawal(self, snapshot: LedgerSnapshot, event: LedgerEvent, stats: ReduceStats) -> None:
        user = snapshot.user_records.get(event.user_address)
        if user is None:
            stats.flag(f"reward withdrawal by {event.user_address} with no deposit history")
            user = snapshot.user_records[event.user_address] = UserRecord()
        user.rewards_withdrawn += event.amount
