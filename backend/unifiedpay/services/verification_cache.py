"""
Time-bounded memo of verification verdicts keyed by transaction hash.

Load shedding only: a miss always falls back to a full on-chain check.
Entries expire lazily on lookup and in bulk through sweep(), which the
application scheduler runs on a fixed interval.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class CacheEntry:
    tx_hash: str
    valid: bool
    created_at: float
    expires_at: float
    result: Any = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class VerificationCache:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(tx_hash: str) -> str:
        return tx_hash.lower()

    def get(self, tx_hash: str) -> Optional[CacheEntry]:
        key = self._key(tx_hash)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            return entry

    def put(self, tx_hash: str, valid: bool, result: Any = None) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            tx_hash=tx_hash,
            valid=valid,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            result=result,
        )
        with self._lock:
            self._entries[self._key(tx_hash)] = entry
        return entry

    def invalidate(self, tx_hash: str) -> None:
        with self._lock:
            self._entries.pop(self._key(tx_hash), None)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
