"""
One ingestion cycle, end to end.

    Idle -> Fetching -> Reducing -> Aggregating -> Ranking -> Committing -> Idle

A cycle covers `[last_processed_block + 1, chain head]`. All work happens on
a deep copy of the committed snapshot; a failure while fetching or reducing
drops the copy, so the checkpoint stays put and the next cycle retries the
same range. Only one cycle runs at a time; triggers that arrive meanwhile are
coalesced into a single follow-up cycle, which is reported only if it found
new blocks.
"""

import logging
import threading
import time
from itertools import chain
from typing import Callable, Optional

from .aggregator import WindowAggregator
from .config import Settings
from .errors import FetchError, PersistenceError
from .fetcher import RangeFetcher
from .models import CycleResult, CycleStatus, LedgerSnapshot, SyncPhase
from .ranking import LeaderboardRanker
from .reducer import KIND_ORDER, LedgerReducer
from .service import SnapshotHolder
from .source import LedgerSource
from .store import CheckpointStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class SyncDriver:
    def __init__(
        self,
        source: LedgerSource,
        holder: SnapshotHolder,
        store: Optional[CheckpointStore] = None,
        fetcher: Optional[RangeFetcher] = None,
        reducer: Optional[LedgerReducer] = None,
        aggregator: Optional[WindowAggregator] = None,
        ranker: Optional[LeaderboardRanker] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.source = source
        self.holder = holder
        self.store = store
        self.fetcher = fetcher or RangeFetcher(source)
        self.reducer = reducer or LedgerReducer()
        self.aggregator = aggregator or WindowAggregator()
        self.ranker = ranker or LeaderboardRanker()
        self.clock = clock
        self.phase = SyncPhase.IDLE
        self.last_result: Optional[CycleResult] = None
        self._lock = threading.Lock()
        self._pending = False

    @classmethod
    def from_settings(cls, settings: Settings, source: LedgerSource, holder: SnapshotHolder,
                      store: Optional[CheckpointStore] = None) -> "SyncDriver":
        return cls(
            source,
            holder,
            store=store,
            fetcher=RangeFetcher(
                source,
                chunk_size=settings.block_chunk_size,
                chunk_delay=settings.request_delay_ms / 1000,
                retries=settings.fetch_retries,
                backoff=settings.retry_backoff,
            ),
            aggregator=WindowAggregator(active_threshold=settings.active_threshold_units),
            ranker=LeaderboardRanker(size=settings.leaderboard_size),
        )

    def trigger(self) -> CycleResult:
        if not self._lock.acquire(blocking=False):
            self._pending = True
            logger.info("Sync cycle already running, trigger coalesced")
            return CycleResult(status=CycleStatus.SKIPPED, started_at=self.clock())
        try:
            result = self.run_cycle()
            while self._pending:
                self._pending = False
                follow_up = self.run_cycle()
                if follow_up.status != CycleStatus.NO_NEW_BLOCKS:
                    result = follow_up
            # An empty follow-up keeps the earlier result.
            self.last_result = result
            return result
        finally:
            self._lock.release()

    def run_cycle(self) -> CycleResult:
        started = self.clock()
        try:
            result = self._cycle(started)
        finally:
            self.phase = SyncPhase.IDLE
        result.finished_at = self.clock()
        self.last_result = result
        return result

    def _cycle(self, started: int) -> CycleResult:
        committed = self.holder.current
        from_block = committed.sync_state.last_processed_block + 1
        try:
            head = self.source.get_chain_head()
        except Exception as e:
            return self._fail(started, from_block, None, FetchError(f"Cannot read chain head: {e}"))

        if from_block > head:
            logger.info("No new blocks to process (last processed %d, head %d)", from_block - 1, head)
            return CycleResult(status=CycleStatus.NO_NEW_BLOCKS, from_block=from_block, to_block=head, started_at=started)

        logger.info("Sync cycle over blocks %d-%d", from_block, head)
        self.phase = SyncPhase.FETCHING
        try:
            batches = {kind: self.fetcher.fetch(kind, from_block, head) for kind in KIND_ORDER}
        except FetchError as e:
            return self._fail(started, from_block, head, e)
        for kind, events in batches.items():
            logger.info("Found %d %s events", len(events), kind.value)

        self.phase = SyncPhase.REDUCING
        working = committed.model_copy(deep=True)
        try:
            stats = self.reducer.reduce(working, chain(*batches.values()), self.source.get_block_timestamp)
        except Exception as e:
            logger.exception("Reducing blocks %d-%d failed", from_block, head)
            return self._fail(started, from_block, head, e)

        self.phase = SyncPhase.AGGREGATING
        self.aggregator.recompute(working, self.clock())

        self.phase = SyncPhase.RANKING
        working.leaderboard = self.ranker.rank(working.referrer_records)

        self.phase = SyncPhase.COMMITTING
        working.sync_state.last_processed_block = max(head, committed.sync_state.last_processed_block)
        self.holder.publish(working)
        persisted = self._persist(working)
        logger.info("Sync cycle committed through block %d", head)
        return CycleResult(
            status=CycleStatus.COMMITTED,
            from_block=from_block,
            to_block=head,
            events={kind.value: len(events) for kind, events in batches.items()},
            anomalies=len(stats.anomalies),
            persisted=persisted,
            started_at=started,
        )

    def _persist(self, snapshot: LedgerSnapshot) -> bool:
        if self.store is None:
            return False
        try:
            self.store.save(snapshot)
        except PersistenceError as e:
            logger.error("Snapshot not persisted, serving from memory: %s", e)
            return False
        return True

    def _fail(self, started: int, from_block: int, to_block: Optional[int], error: Exception) -> CycleResult:
        self.phase = SyncPhase.FAILED
        logger.error("Sync cycle aborted, checkpoint stays at %d: %s", from_block - 1, error)
        return CycleResult(
            status=CycleStatus.FAILED,
            from_block=from_block,
            to_block=to_block,
            error=str(error),
            started_at=started,
        )


class SyncScheduler:
    """Runs a sync cycle every `interval` seconds on a daemon thread."""

    def __init__(self, driver: SyncDriver, interval: float):
        self.driver = driver
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started, interval %.0fs", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.driver.trigger()
            except Exception:
                logger.exception("Sync cycle crashed")
            self._stop.wait(self.interval)
