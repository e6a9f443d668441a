from typing import Optional

import pytest

from indexer.models import EventKind, LedgerEvent

DAY_MS = 24 * 60 * 60 * 1000
# 2025-10-09T12:26:40Z
NOW = 1_760_012_800_000
TOKEN = 10 ** 18

REFERRER = "0x1111111111111111111111111111111111111111"
USER_A = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
USER_B = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
USER_C = "0xcccccccccccccccccccccccccccccccccccccccc"
USER_D = "0xdddddddddddddddddddddddddddddddddddddddd"


def deposit(user: str, amount: int, referrer: Optional[str] = None, block: int = 1,
            timestamp: Optional[int] = None, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        kind=EventKind.DEPOSIT, user_address=user, amount=amount, referrer_address=referrer,
        block_number=block, log_index=log_index, timestamp=timestamp,
    )


def referral_withdrawal(user: str, amount: int, block: int = 1, timestamp: Optional[int] = None) -> LedgerEvent:
    return LedgerEvent(
        kind=EventKind.REFERRAL_WITHDRAWAL, user_address=user, amount=amount,
        block_number=block, timestamp=timestamp,
    )


def reward_withdrawal(user: str, amount: int, block: int = 1, timestamp: Optional[int] = None) -> LedgerEvent:
    return LedgerEvent(
        kind=EventKind.REWARD_WITHDRAWAL, user_address=user, amount=amount,
        block_number=block, timestamp=timestamp,
    )


class FakeLedgerSource:
    """In-memory chain: events, per-block timestamps (seconds) and a head."""

    def __init__(self, head: int = 0):
        self.head = head
        self.events: list[LedgerEvent] = []
        self.timestamps: dict[int, int] = {}
        self.calls: list[tuple[EventKind, int, int]] = []
        self.fail_chunks: dict[int, int] = {}
        self.fail_all = False
        self.fail_timestamps = False

    def add(self, *events: LedgerEvent) -> None:
        self.events.extend(events)

    def get_events(self, kind, from_block, to_block):
        self.calls.append((kind, from_block, to_block))
        if self.fail_all:
            raise ConnectionError("rpc unavailable")
        remaining = self.fail_chunks.get(from_block, 0)
        if remaining:
            self.fail_chunks[from_block] = remaining - 1
            raise TimeoutError(f"timeout at block {from_block}")
        found = [e for e in self.events if e.kind == kind and from_block <= e.block_number <= to_block]
        return sorted(found, key=lambda e: (e.block_number, e.log_index))

    def get_block_timestamp(self, block_number):
        if self.fail_timestamps:
            raise ConnectionError("block lookup failed")
        return self.timestamps.get(block_number, NOW // 1000 - 3600 + block_number)

    def get_chain_head(self):
        return self.head


@pytest.fixture
def source():
    return FakeLedgerSource()


@pytest.fixture
def sleeps():
    return []
