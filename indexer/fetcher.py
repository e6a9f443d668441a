import logging
import time
from typing import Callable

from .errors import FetchError
from .models import EventKind, LedgerEvent
from .source import LedgerSource

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10_000
DEFAULT_CHUNK_DELAY = 0.1


class RangeFetcher:
    """Pulls one event kind over a block range in bounded chunks.

    Chunks are queried sequentially with `chunk_delay` seconds between them.
    A failing chunk is retried with `backoff ** attempt` second pauses; once
    `retries` is exhausted the whole fetch raises FetchError, so a block is
    never silently skipped.
    """

    def __init__(
        self,
        source: LedgerSource,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_delay: float = DEFAULT_CHUNK_DELAY,
        retries: int = 3,
        backoff: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.source = source
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.retries = retries
        self.backoff = backoff
        self.sleep = sleep

    def chunks(self, from_block: int, to_block: int) -> list[tuple[int, int]]:
        out = []
        curr = from_block
        while curr <= to_block:
            end = min(curr + self.chunk_size - 1, to_block)
            out.append((curr, end))
            curr = end + 1
        return out

    def fetch(self, kind: EventKind, from_block: int, to_block: int) -> list[LedgerEvent]:
        if from_block > to_block:
            return []

        events: list[LedgerEvent] = []
        ranges = self.chunks(from_block, to_block)
        for i, (start, end) in enumerate(ranges):
            chunk_events = self._fetch_chunk(kind, start, end)
            events.extend(chunk_events)
            logger.debug(
                "Fetched %d %s events in blocks %d-%d (total %d)",
                len(chunk_events), kind.value, start, end, len(events),
            )
            if self.chunk_delay and i < len(ranges) - 1:
                self.sleep(self.chunk_delay)

        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    def _fetch_chunk(self, kind: EventKind, start: int, end: int) -> list[LedgerEvent]:
        attempt = 0
        while True:
            try:
                return self.source.get_events(kind, start, end)
            except Exception as e:
                attempt += 1
                if attempt > self.retries:
                    logger.error(
                        "Giving up on %s events in blocks %d-%d after %d attempts: %s",
                        kind.value, start, end, attempt, e,
                    )
                    raise FetchError(
                        f"Fetching {kind.value} events in blocks {start}-{end} failed: {e}",
                        kind=kind.value, from_block=start, to_block=end,
                    ) from e
                delay = self.backoff ** attempt
                logger.warning(
                    "Fetching %s events in blocks %d-%d failed (%s), retry %d/%d in %.1fs",
                    kind.value, start, end, e, attempt, self.retries, delay,
                )
                self.sleep(delay)
