from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import islice
from typing import Optional, Protocol


@dataclass
class RateBucket:
    count: int
    window_expires_at: int

    def is_live(self, now: int) -> bool:
        return now < self.window_expires_at


@dataclass(frozen=True)
class DuplicateRecord:
    content_fingerprint: str
    window_expires_at: int

    def is_live(self, now: int) -> bool:
        return now < self.window_expires_at


class _Expiring(Protocol):
    window_expires_at: int


class GateStore(ABC):
    """Storage for the contact gate's per-client throttle state.

    Expired entries may still be returned by the getters; callers compare
    ``window_expires_at`` with their own clock and treat stale entries as absent.
    """

    @abstractmethod
    def get_bucket(self, key: str) -> Optional[RateBucket]:
        ...

    @abstractmethod
    def set_bucket(self, key: str, bucket: RateBucket) -> None:
        ...

    @abstractmethod
    def get_record(self, key: str) -> Optional[DuplicateRecord]:
        ...

    @abstractmethod
    def set_record(self, key: str, record: DuplicateRecord) -> None:
        ...

    @abstractmethod
    def sweep_buckets(self, now: int, limit: Optional[int] = None) -> int:
        """Drop expired buckets among the first ``limit`` scanned; return how many were dropped."""

    @abstractmethod
    def sweep_records(self, now: int, limit: Optional[int] = None) -> int:
        """Drop expired duplicate records among the first ``limit`` scanned."""

    def sweep_expired(self, now: int, limit: Optional[int] = None) -> int:
        return self.sweep_buckets(now, limit) + self.sweep_records(now, limit)


def _sweep(entries: dict[str, _Expiring], now: int, limit: Optional[int]) -> int:
    scanned = entries.items() if limit is None else islice(entries.items(), limit)
    expired = [key for key, value in scanned if value.window_expires_at <= now]
    for key in expired:
        del entries[key]
    return len(expired)


class InMemoryGateStore(GateStore):
    """Process-local store. Each instance enforces its own window; nothing is shared across workers.

    A bounded sweep scans entries in insertion order, so it always looks at
    the oldest keys first. Long-lived buckets at the front can keep expired
    entries behind them out of reach of the inline sweep; set
    ``ABUSE_SWEEP_INTERVAL_SECONDS`` to run an unbounded sweep on a timer.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, RateBucket] = {}
        self._records: dict[str, DuplicateRecord] = {}

    def get_bucket(self, key: str) -> Optional[RateBucket]:
        return self._buckets.get(key)

    def set_bucket(self, key: str, bucket: RateBucket) -> None:
        self._buckets[key] = bucket

    def get_record(self, key: str) -> Optional[DuplicateRecord]:
        return self._records.get(key)

    def set_record(self, key: str, record: DuplicateRecord) -> None:
        self._records[key] = record

    def sweep_buckets(self, now: int, limit: Optional[int] = None) -> int:
        return _sweep(self._buckets, now, limit)

    def sweep_records(self, now: int, limit: Optional[int] = None) -> int:
        return _sweep(self._records, now, limit)

    def __len__(self) -> int:
        return len(self._buckets) + len(self._records)
