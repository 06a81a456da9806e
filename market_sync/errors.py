from __future__ import annotations


class SyncError(Exception):
    """Fatal failure: aborts the whole run."""


class SyncLockError(SyncError):
    pass


class SubgraphError(SyncError):
    pass


class CursorError(SyncError):
    pass


class RecordError(Exception):
    """Failure confined to one upstream record; the run continues."""

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(message)
        self.record_id = record_id
        self.message = message


class MetadataError(RecordError):
    pass
