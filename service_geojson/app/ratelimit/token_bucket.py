"""
In-process token bucket rate limiter for the GeoJSON service.

One bucket per client identity, refilled continuously at ``rate`` tokens per
second up to ``burst``. The table lock only guards lookup, insertion and
eviction; token arithmetic happens under the bucket's own lock, so clients never
serialize against each other. Buckets idle for longer than ``ttl`` are evicted,
lazily on access and by an optional background sweeper.
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request

from shared.logging import null_logger


@dataclass
class ClientBucket:
    """Token state for one client."""
    tokens: float
    last_refill: float
    last_access: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    evicted: bool = False


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: float

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


class TokenBucketRateLimiter:
    """Per-client token buckets with idle eviction."""

    def __init__(
        self,
        rate: float,
        burst: int,
        ttl: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: Optional[float] = None,
        logger: Any = None,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self.ttl = float(ttl)
        self.sweep_interval = sweep_interval if sweep_interval is not None else max(self.ttl / 2, 0.001)
        self.logger = logger if logger is not None else null_logger()
        self._clock = clock
        self._buckets: Dict[str, ClientBucket] = {}
        self._table_lock = threading.Lock()
        self._last_sweep = clock()
        self._sweeper_task: Optional[asyncio.Task] = None

    @classmethod
    def from_context(cls, ctx, **kwargs) -> "TokenBucketRateLimiter":
        config = ctx.config
        return cls(config.rate, config.rate_burst, config.rate_ttl, logger=ctx.logger, **kwargs)

    def allow(self, client_id: str) -> bool:
        """Consume one token for ``client_id``; False when the bucket is empty."""
        return self.check(client_id).allowed

    def check(self, client_id: str) -> RateLimitDecision:
        """Like :meth:`allow`, with the numbers needed for response headers."""
        self._maybe_sweep()
        while True:
            bucket = self._get_bucket(client_id)
            with bucket.lock:
                if bucket.evicted:
                    # lost a race with eviction; use the fresh table entry
                    continue
                now = self._clock()
                self._refill(bucket, now)
                bucket.last_access = now
                if bucket.tokens >= 1.0:
                    bucket.tokens -= 1.0
                    return RateLimitDecision(True, self.burst, int(bucket.tokens), 0.0)
                retry_after = (1.0 - bucket.tokens) / self.rate
                return RateLimitDecision(False, self.burst, 0, retry_after)

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict buckets idle longer than the TTL; returns how many were removed."""
        now = self._clock() if now is None else now
        removed = 0
        with self._table_lock:
            for client_id, bucket in list(self._buckets.items()):
                # a bucket whose lock is held is being used right now
                if not bucket.lock.acquire(blocking=False):
                    continue
                try:
                    if now - bucket.last_access > self.ttl:
                        bucket.evicted = True
                        del self._buckets[client_id]
                        removed += 1
                finally:
                    bucket.lock.release()
            self._last_sweep = now
        if removed:
            self.logger.debug("Evicted idle rate limit buckets", removed=removed, remaining=len(self._buckets))
        return removed

    def tracked_clients(self) -> List[str]:
        with self._table_lock:
            return sorted(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._buckets

    async def start(self) -> None:
        """Start the periodic sweeper."""
        if self._sweeper_task is None:
            self._sweeper_task = asyncio.create_task(self._sweep_loop())
            self.logger.info("Rate limit sweeper started", interval=self.sweep_interval, ttl=self.ttl)

    async def stop(self) -> None:
        """Stop the periodic sweeper."""
        if self._sweeper_task:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None
            self.logger.info("Rate limit sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def _get_bucket(self, client_id: str) -> ClientBucket:
        with self._table_lock:
            bucket = self._buckets.get(client_id)
            if bucket is None:
                now = self._clock()
                bucket = ClientBucket(tokens=float(self.burst), last_refill=now, last_access=now)
                self._buckets[client_id] = bucket
            return bucket

    def _refill(self, bucket: ClientBucket, now: float) -> None:
        elapsed = now - bucket.last_refill
        if elapsed > 0:
            bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.sweep_interval:
            self.sweep()


class RateLimitMiddleware:
    """Resolves the client identity of a request and checks its bucket."""

    def __init__(self, rate_limiter: TokenBucketRateLimiter, *, trust_proxy_headers: bool = False):
        self.rate_limiter = rate_limiter
        self.trust_proxy_headers = trust_proxy_headers

    def check_request(self, request: Request) -> RateLimitDecision:
        return self.rate_limiter.check(self.get_client_id(request))

    def get_client_id(self, request: Request) -> str:
        """Extract client ID from request."""
        if self.trust_proxy_headers:
            forwarded_for = request.headers.get('X-Forwarded-For')
            if isinstance(forwarded_for, str) and forwarded_for:
                return forwarded_for.split(',')[0].strip()

            real_ip = request.headers.get('X-Real-IP')
            if isinstance(real_ip, str) and real_ip:
                return real_ip

        return request.client.host if request.client else 'unknown'
