from typing import Optional


class IndexerError(Exception):
    pass


class FetchError(IndexerError):
    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.from_block = from_block
        self.to_block = to_block


class PersistenceError(IndexerError):
    pass


class SnapshotLoadError(IndexerError):
    pass


class InvalidAddressError(IndexerError):
    pass


class ReferrerNotFoundError(IndexerError):
    pass
