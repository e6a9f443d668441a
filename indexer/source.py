"""
Read-only access to the vault contract's event log.

The engine only needs three calls from the chain: events of one kind in a
block range, a block's timestamp, and the current head. `LedgerSource` is
that contract; `Web3LedgerSource` serves it from a JSON-RPC node.
"""

import json
import logging
from functools import lru_cache
from typing import Protocol

from web3 import Web3

from .models import EventKind, LedgerEvent

logger = logging.getLogger(__name__)

VAULT_EVENTS_ABI = json.loads("""[
 {"anonymous":false,"name":"Deposited","type":"event","inputs":[
  {"indexed":true,"internalType":"address","name":"user","type":"address"},
  {"indexed":false,"internalType":"uint256","name":"amount","type":"uint256"},
  {"indexed":true,"internalType":"address","name":"referrer","type":"address"},
  {"indexed":false,"internalType":"uint256","name":"cycle","type":"uint256"}]},
 {"anonymous":false,"name":"RewardsWithdrawn","type":"event","inputs":[
  {"indexed":true,"internalType":"address","name":"user","type":"address"},
  {"indexed":false,"internalType":"uint256","name":"amount","type":"uint256"}]},
 {"anonymous":false,"name":"ReferralRewardsWithdrawn","type":"event","inputs":[
  {"indexed":true,"internalType":"address","name":"user","type":"address"},
  {"indexed":false,"internalType":"uint256","name":"amount","type":"uint256"}]}
]""")

EVENT_NAMES = {
    EventKind.DEPOSIT: "Deposited",
    EventKind.REWARD_WITHDRAWAL: "RewardsWithdrawn",
    EventKind.REFERRAL_WITHDRAWAL: "ReferralRewardsWithdrawn",
}

# Blocks whose timestamps are kept between cycles, enough for a failed cycle to retry.
TIMESTAMP_CACHE_SIZE = 4096


class LedgerSource(Protocol):
    def get_events(self, kind: EventKind, from_block: int, to_block: int) -> list[LedgerEvent]:
        ...

    def get_block_timestamp(self, block_number: int) -> int:
        ...

    def get_chain_head(self) -> int:
        ...


def decode_log(kind: EventKind, log) -> LedgerEvent:
    args = log["args"]
    return LedgerEvent(
        kind=kind,
        user_address=args["user"],
        amount=int(args["amount"]),
        referrer_address=args.get("referrer") if kind == EventKind.DEPOSIT else None,
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
    )


class Web3LedgerSource:
    def __init__(self, rpc_url: str, contract_address: str, timeout: float = 60,
                 timestamp_cache_size: int = TIMESTAMP_CACHE_SIZE):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=VAULT_EVENTS_ABI,
        )
        self._block_timestamp = lru_cache(maxsize=timestamp_cache_size)(self._fetch_block_timestamp)

    def get_events(self, kind: EventKind, from_block: int, to_block: int) -> list[LedgerEvent]:
        event = getattr(self.contract.events, EVENT_NAMES[kind])
        logs = event().get_logs(from_block=from_block, to_block=to_block)
        events = [decode_log(kind, log) for log in logs]
        events.sort(key=lambda e: (e.block_number, e.log_index))
        logger.debug("%s logs in blocks %d-%d: %d", kind.value, from_block, to_block, len(events))
        return events

    def get_block_timestamp(self, block_number: int) -> int:
        return self._block_timestamp(block_number)

    def _fetch_block_timestamp(self, block_number: int) -> int:
        return int(self.w3.eth.get_block(block_number)["timestamp"])

    def get_chain_head(self) -> int:
        return int(self.w3.eth.block_number)
