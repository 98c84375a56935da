"""Expiring snapshot cache for the latest reading of each scale."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

TELEMETRY_TTL_SECONDS = int(os.getenv("TELEMETRY_TTL_SECONDS", "30"))

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    value: str
    stored_at: datetime
    expires_at: datetime


class SnapshotCache:
    """Key/value store with a per-key TTL.

    Values are opaque strings (JSON snapshots). A key past its expiry reads as
    absent and is dropped on access. Writes replace the previous value and
    restart its TTL.

    The store lives in this process only. Run the API as a single worker
    (one uvicorn process) so pushes and reads of a scale hit the same cache.
    """

    def __init__(self, ttl_seconds: int = TELEMETRY_TTL_SECONDS, *, clock: Clock = utc_clock):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl.total_seconds()

    def now(self) -> datetime:
        return self._clock()

    def setex(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        now = self._clock()
        ttl = timedelta(seconds=ttl_seconds) if ttl_seconds is not None else self._ttl
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=now + ttl)

    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired key and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
