"""
Token Bucket Rate Limiter - Per-Endpoint Request Throttling

Implements a token-bucket algorithm with a sliding-window secondary check.

Mathematical Model:
==================
- Bucket capacity: burst_limit tokens
- Refill rate: requests_per_second tokens per second, continuous
- Window: at most max(burst_limit, ceil(rps × window)) requests in the
  trailing window_ms

A request is allowed only when BOTH rules pass. When blocked, retry_after_ms
is the time until the sooner of the blocking rules clears (one token refills,
or the oldest in-window timestamp expires).

Example (2 req/sec, burst 5):
- 5 requests pass instantly (burst)
- the 6th is rejected with retry_after_ms ~ 500
- sustained rate then settles at 2 req/sec

The limiter is designed for a single asyncio event loop: state is mutated
synchronously between awaits, so check_limit() needs no lock.
"""

import math
import time
import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Any

from pydantic import BaseModel, ConfigDict, Field

from config.constants import DEFAULT_RATE_WINDOW_MS
from utils.logger import get_logger


logger = get_logger(__name__)


class RateLimitConfig(BaseModel):
    """Throttling parameters for one endpoint"""

    model_config = ConfigDict(frozen=True)

    requests_per_second: float = Field(gt=0, description="Sustained refill rate")
    burst_limit: int = Field(ge=1, description="Bucket capacity")
    window_ms: int = Field(default=DEFAULT_RATE_WINDOW_MS, gt=0, description="Sliding window length")


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_ms: Optional[int] = None
    remaining_requests: int = 0


class RateLimiter:
    """
    Token Bucket Rate Limiter with sliding-window check.

    Attributes:
        config: Immutable throttling parameters
        tokens: Current token count in [0, burst_limit]
        last_refill_time: Clock reading at the last refill (seconds)
        request_timestamps: Clock readings of admitted requests inside the window
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            config: Throttling parameters
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.config = config
        self._clock = clock
        self.tokens: float = float(config.burst_limit)
        self.last_refill_time: float = clock()
        self.request_timestamps: Deque[float] = deque()
        self._wait_lock = asyncio.Lock()

    @property
    def window_capacity(self) -> int:
        by_rate = math.ceil(self.config.requests_per_second * self.config.window_ms / 1000.0)
        return max(self.config.burst_limit, by_rate)

    def _refill(self, now: float) -> None:
        """
        Tokens added = rate × elapsed_time, capped at bucket capacity.
        """
        elapsed = max(0.0, now - self.last_refill_time)
        self.tokens = min(
            float(self.config.burst_limit),
            self.tokens + elapsed * self.config.requests_per_second
        )
        self.last_refill_time = now

    def _prune_window(self, now: float) -> None:
        window_sec = self.config.window_ms / 1000.0
        while self.request_timestamps and now - self.request_timestamps[0] >= window_sec:
            self.request_timestamps.popleft()

    def check_limit(self) -> RateLimitResult:
        """
        Try to admit one request (non-blocking).

        Consumes a token and records the request when allowed.
        """
        now = self._clock()
        self._refill(now)
        self._prune_window(now)

        token_ok = self.tokens >= 1.0
        window_ok = len(self.request_timestamps) < self.window_capacity

        if token_ok and window_ok:
            self.tokens -= 1.0
            self.request_timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                remaining_requests=int(self.tokens)
            )

        waits = []
        if not token_ok:
            waits.append((1.0 - self.tokens) / self.config.requests_per_second)
        if not window_ok:
            oldest = self.request_timestamps[0]
            waits.append(oldest + self.config.window_ms / 1000.0 - now)

        retry_after_ms = max(1, math.ceil(min(waits) * 1000))
        return RateLimitResult(
            allowed=False,
            retry_after_ms=retry_after_ms,
            remaining_requests=0
        )

    def try_acquire(self) -> bool:
        return self.check_limit().allowed

    async def wait_for_limit(self) -> None:
        """
        Block until a request is admitted.

        Waiters are served one at a time, so a burst of callers drains the
        bucket in arrival order instead of all waking at once.
        """
        async with self._wait_lock:
            while True:
                result = self.check_limit()
                if result.allowed:
                    return
                logger.debug(f"Rate limit reached, waiting {result.retry_after_ms}ms")
                await asyncio.sleep(result.retry_after_ms / 1000.0)

    def get_status(self) -> Dict[str, Any]:
        now = self._clock()
        self._refill(now)
        self._prune_window(now)
        in_window = len(self.request_timestamps)
        return {
            'tokens_available': self.tokens,
            'requests_in_window': in_window,
            'window_utilization': in_window / self.window_capacity,
        }

    def reset(self) -> None:
        """Reset bucket to full capacity and clear window history."""
        self.tokens = float(self.config.burst_limit)
        self.last_refill_time = self._clock()
        self.request_timestamps.clear()


class RateLimiterManager:
    """
    One RateLimiter per logical endpoint name, created lazily.

    Endpoints listed in endpoint_overrides get their own configuration; all
    others share the default parameters (but not state).
    """

    def __init__(
        self,
        default_config: RateLimitConfig,
        endpoint_overrides: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.default_config = default_config
        self.endpoint_overrides: Dict[str, RateLimitConfig] = dict(endpoint_overrides or {})
        self._clock = clock
        self._limiters: Dict[str, RateLimiter] = {}

    def get_limiter(self, endpoint: str) -> RateLimiter:
        limiter = self._limiters.get(endpoint)
        if limiter is None:
            config = self.endpoint_overrides.get(endpoint, self.default_config)
            limiter = RateLimiter(config, clock=self._clock)
            self._limiters[endpoint] = limiter
            logger.debug(
                f"Created rate limiter for {endpoint}: "
                f"{config.requests_per_second}/s, burst {config.burst_limit}"
            )
        return limiter

    def check_endpoint_limit(self, endpoint: str) -> RateLimitResult:
        return self.get_limiter(endpoint).check_limit()

    async def wait_for_endpoint_limit(self, endpoint: str) -> None:
        await self.get_limiter(endpoint).wait_for_limit()

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: limiter.get_status() for name, limiter in self._limiters.items()}

    def reset_all(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()
        logger.info(f"Reset {len(self._limiters)} rate limiters")

    def dispose(self) -> None:
        """Drop every limiter; the next lookup starts from a full bucket."""
        self._limiters.clear()
