"""Per-identity fixed-window rate limiter.

Single-process and best-effort. Expired windows are removed by ``sweep``,
which the scheduler runs periodically so the map does not grow without bound.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(self, window_seconds: float, max_requests: int):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def admit(self, identity: str, now: float) -> bool:
        """Return True and count the attempt if the caller is under the limit."""
        with self._lock:
            record = self._records.get(identity)
            if record is None or now > record.reset_at:
                self._records[identity] = RateLimitRecord(
                    count=1, reset_at=now + self.window_seconds
                )
                return True

            if record.count >= self.max_requests:
                return False

            record.count += 1
            return True

    def sweep(self, now: float) -> int:
        """Drop every record whose window has ended. Returns how many were dropped."""
        with self._lock:
            expired = [key for key, rec in self._records.items() if now > rec.reset_at]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"Rate limiter swept {len(expired)} expired record(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
