import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from .errors import PersistenceError, SnapshotLoadError
from .models import LedgerSnapshot

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Single-file JSON snapshot of the ledger and its sync checkpoint."""

    def __init__(self, path: Union[str, Path], start_block: int = 0):
        self.path = Path(path)
        self.start_block = start_block

    def load(self) -> LedgerSnapshot:
        if not self.path.exists():
            logger.info("No snapshot at %s, starting from block %d", self.path, self.start_block)
            return LedgerSnapshot.empty(self.start_block)
        try:
            snapshot = LedgerSnapshot.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            raise SnapshotLoadError(f"Cannot load snapshot {self.path}: {e}") from e
        logger.info(
            "Loaded snapshot %s at block %d (%d users, %d referrers)",
            self.path, snapshot.sync_state.last_processed_block,
            len(snapshot.user_records), len(snapshot.referrer_records),
        )
        return snapshot

    def save(self, snapshot: LedgerSnapshot) -> None:
        payload = snapshot.model_dump_json(by_alias=True, indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
                delete=False, encoding="utf-8",
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
            self._fsync_dir()
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Cannot remove temp snapshot %s", tmp_name)
            raise PersistenceError(f"Cannot write snapshot {self.path}: {e}") from e
        logger.info("Snapshot saved at block %d", snapshot.sync_state.last_processed_block)

    def _fsync_dir(self) -> None:
        # Directories cannot be opened on Windows.
        if os.name != "posix":
            return
        fd = os.open(self.path.parent, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
