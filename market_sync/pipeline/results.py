from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class Processed:
    record_id: str
    event_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Skipped:
    record_id: str
    reason: str


@dataclass(frozen=True)
class Failed:
    record_id: str
    error: str


RecordResult = Union[Processed, Skipped, Failed]


@dataclass
class SyncStats:
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    error_details: list[dict[str, str]] = field(default_factory=list)
    time_limit_reached: bool = False
    pages: int = 0

    def record(self, result: RecordResult) -> None:
        if isinstance(result, Processed):
            self.processed += 1
        elif isinstance(result, Skipped):
            self.skipped += 1
        else:
            self.error_details.append({"id": result.record_id, "error": result.error})

    def to_response(self) -> dict:
        return {
            "success": True,
            "fetched": self.fetched,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": len(self.error_details),
            "errorDetails": list(self.error_details),
            "timeLimitReached": self.time_limit_reached,
        }
