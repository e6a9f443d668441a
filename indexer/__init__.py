"""
Referral Analytics Indexer for the vault contract

This module provides:
- Chunked, retrying event fetch from the chain
- Deposit / withdrawal reduction into per-user and per-referrer records
- Rolling 30-day totals, active referees and weekly referral streaks
- Top referrer leaderboard
- Crash-safe snapshot checkpointing
"""

from .models import (
    EventKind,
    LedgerEvent,
    UserRecord,
    ReferrerRecord,
    LeaderboardEntry,
    LedgerSnapshot,
)
from .fetcher import RangeFetcher
from .reducer import LedgerReducer
from .aggregator import WindowAggregator
from .ranking import LeaderboardRanker
from .store import CheckpointStore
from .service import QueryService, SnapshotHolder
from .sync import SyncDriver

__all__ = [
    "EventKind",
    "LedgerEvent",
    "UserRecord",
    "ReferrerRecord",
    "LeaderboardEntry",
    "LedgerSnapshot",
    "RangeFetcher",
    "LedgerReducer",
    "WindowAggregator",
    "LeaderboardRanker",
    "CheckpointStore",
    "QueryService",
    "SnapshotHolder",
    "SyncDriver",
]
