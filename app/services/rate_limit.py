"""In-memory fixed-window rate limiting, keyed by operation and client IP.

Per-process only: with several workers each keeps its own counters.
"""
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Request


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int
    prefix: str


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after_seconds: int | None = None

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()


RATE_LIMITS = {
    # Prevents brute-forcing checkout session ids
    "verify_payment": RateLimitRule(limit=10, window_seconds=3600, prefix="verify-payment"),
    "create_checkout": RateLimitRule(limit=5, window_seconds=3600, prefix="signup"),
    "check_slug": RateLimitRule(limit=30, window_seconds=60, prefix="slug-check"),
}


class RateLimiter:
    def __init__(self, clock=time.time):
        self.clock = clock
        self._records: dict[str, list] = {}  # key -> [count, reset_at]
        self._lock = threading.Lock()

    def check(self, identifier: str, rule: RateLimitRule) -> RateLimitResult:
        key = f"{rule.prefix}:{identifier}"
        now = self.clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or record[1] < now:
                record = [0, now + rule.window_seconds]
            if record[0] >= rule.limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=record[1],
                    retry_after_seconds=max(1, math.ceil(record[1] - now)),
                )
            record[0] += 1
            self._records[key] = record
            return RateLimitResult(allowed=True, remaining=rule.limit - record[0], reset_at=record[1])

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, (_, reset_at) in self._records.items() if reset_at < now]
            for k in expired:
                del self._records[k]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


rate_limiter = RateLimiter()
