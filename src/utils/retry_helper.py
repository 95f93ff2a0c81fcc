"""
Retry Helper - Exponential Backoff for Async Operations

Provides:
- with_retry(): re-invoke an async operation until success, exhaustion, or a
  non-retryable error
- with_retry_parallel(): run several operations concurrently, each retried
- is_retryable_error(): transport/rate-limit/server failures are retryable,
  validation and business-logic failures are not
- get_api_retry_options(): presets per API call category
- ExponentialBackoff: stateful delay sequence for reconnect/poll loops
- create_circuit_breaker(): wrap an operation in a CircuitBreaker

Delay for attempt n (0-based) = min(base_delay_ms × multiplier^n, max_delay_ms),
optionally jittered uniformly by ±10%.
"""

import asyncio
import random
import socket
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from config.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    JITTER_RATIO,
    RETRY_CATEGORIES,
    RETRYABLE_STATUS_CODES,
)
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from utils.exceptions import (
    ConfigurationError,
    ErrorKind,
    GalaSwapBotError,
)
from utils.helpers import safe_error_message
from utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar('T')


# Checked first: these mean the request itself is wrong and will fail again
NON_RETRYABLE_PATTERNS = (
    'invalid token',
    'unauthorized',
    'forbidden',
    'not found',
    'bad request',
    'invalid signature',
    'invalid amount',
    'insufficient balance',
    'insufficient funds',
    'insufficient liquidity',
    'no pools found',
    'slippage tolerance exceeded',
    'amount must be greater than zero',
)

RETRYABLE_PATTERNS = (
    'network',
    'timeout',
    'timed out',
    'econnreset',
    'enotfound',
    'econnrefused',
    'etimedout',
    'socket hang up',
    'connection reset',
    'connection refused',
    'service unavailable',
    'bad gateway',
    'gateway timeout',
    'rate limit',
    'too many requests',
    'temporarily unavailable',
    'temporary failure',
)

_RETRYABLE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER})

_TRANSPORT_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)


def _error_status(error: BaseException) -> Optional[int]:
    for attr in ('status_code', 'status'):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify a failure as transient (retry) or permanent (surface now).

    Order: permanent bot error kinds, domain message patterns, retryable
    bot error kinds, HTTP status, transport exception types, transport
    message patterns. A domain error wins even when it arrives with a 5xx.
    """
    if isinstance(error, GalaSwapBotError) and error.kind in (
        ErrorKind.CIRCUIT_OPEN, ErrorKind.FILTERED, ErrorKind.VALIDATION
    ):
        return False

    message = str(error).lower()
    if any(pattern in message for pattern in NON_RETRYABLE_PATTERNS):
        return False

    if isinstance(error, GalaSwapBotError) and error.kind in _RETRYABLE_KINDS:
        return True

    status = _error_status(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    if isinstance(error, _TRANSPORT_EXCEPTIONS):
        return True

    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def is_transport_error(error: BaseException) -> bool:
    """Conservative condition for trade submission: only connection-level failures"""
    if isinstance(error, GalaSwapBotError):
        return error.kind == ErrorKind.TRANSPORT or (
            error.kind == ErrorKind.SERVER and _error_status(error) == 503
        )
    if isinstance(error, _TRANSPORT_EXCEPTIONS):
        return True
    message = str(error).lower()
    return any(p in message for p in ('network', 'timeout', 'service unavailable'))


class RetryOptions(BaseModel):
    """Retry policy for one operation"""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    base_delay_ms: int = Field(default=DEFAULT_BASE_DELAY_MS, ge=0)
    max_delay_ms: int = Field(default=DEFAULT_MAX_DELAY_MS, ge=0)
    backoff_multiplier: float = Field(default=DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)
    jitter: bool = True
    retry_condition: Callable[[BaseException], bool] = is_retryable_error


def calculate_delay(attempt: int, options: RetryOptions) -> int:
    """Backoff delay in ms before retry number attempt+1"""
    delay = min(
        options.base_delay_ms * (options.backoff_multiplier ** attempt),
        options.max_delay_ms
    )
    if options.jitter:
        delay *= 1 + random.uniform(-JITTER_RATIO, JITTER_RATIO)
    return max(0, round(delay))


async def _sleep_ms(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000.0)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    operation_name: str = 'operation'
) -> T:
    """
    Run operation with exponential backoff.

    The operation is invoked at most max_retries + 1 times. A failure that
    retry_condition rejects, or the failure of the last attempt, propagates
    unchanged.

    Args:
        operation: Zero-argument coroutine factory
        options: Retry policy (defaults to RetryOptions())
        operation_name: Label for logs
    """
    opts = options or RetryOptions()
    attempt = 0

    while True:
        try:
            result = await operation()
            if attempt > 0:
                logger.info(
                    f"{operation_name} succeeded after {attempt + 1} attempts",
                    extra={'operation': operation_name, 'attempts': attempt + 1}
                )
            return result
        except Exception as e:
            if attempt >= opts.max_retries:
                logger.error(
                    f"{operation_name} failed after {attempt + 1} attempts: {safe_error_message(e)}",
                    extra={'operation': operation_name, 'attempts': attempt + 1}
                )
                raise
            if not opts.retry_condition(e):
                logger.debug(
                    f"{operation_name} failed with non-retryable error: {safe_error_message(e)}"
                )
                raise

            delay_ms = calculate_delay(attempt, opts)
            logger.warning(
                f"{operation_name} attempt {attempt + 1} failed, retrying in {delay_ms}ms",
                extra={
                    'operation': operation_name,
                    'attempt': attempt + 1,
                    'max_retries': opts.max_retries,
                    'error': safe_error_message(e),
                }
            )
            await _sleep_ms(delay_ms)
            attempt += 1


async def with_retry_parallel(
    operations: Sequence[Callable[[], Awaitable[Any]]],
    options: Optional[RetryOptions] = None,
    operation_name: str = 'parallel operation'
) -> List[Any]:
    """
    Run every operation concurrently, each under with_retry().

    All operations are awaited to completion. If any failed, the failure that
    happened first in time is raised; otherwise results come back in input
    order.
    """
    failures: List[BaseException] = []

    async def run(index: int, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await with_retry(operation, options, f"{operation_name}[{index}]")
        except Exception as e:
            failures.append(e)
            raise

    results = await asyncio.gather(
        *(run(i, op) for i, op in enumerate(operations)),
        return_exceptions=True
    )

    if failures:
        logger.warning(
            f"{operation_name}: {len(failures)}/{len(operations)} operations failed"
        )
        raise failures[0]
    return list(results)


def get_api_retry_options(category: str = 'standard') -> RetryOptions:
    """
    Retry preset for a category of API call.

    fast: 2/500/5000, standard: 3/1000/10000, slow: 4/2000/20000,
    transaction: 5/3000/30000 (max_retries/base_delay_ms/max_delay_ms).
    The transaction preset retries connection-level failures only.

    Raises:
        ConfigurationError: For an unknown category
    """
    try:
        max_retries, base_delay_ms, max_delay_ms = RETRY_CATEGORIES[category]
    except KeyError:
        raise ConfigurationError(
            f"Unknown retry category '{category}'",
            error_code='UNKNOWN_RETRY_CATEGORY',
            details={'available': sorted(RETRY_CATEGORIES)}
        )

    return RetryOptions(
        max_retries=max_retries,
        base_delay_ms=base_delay_ms,
        max_delay_ms=max_delay_ms,
        retry_condition=is_transport_error if category == 'transaction' else is_retryable_error
    )


class ExponentialBackoff:
    """
    Stateful backoff sequence for loops that are not a single retried call
    (WebSocket reconnects, status polling).
    """

    def __init__(
        self,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        jitter: bool = True
    ):
        self._options = RetryOptions(
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
            backoff_multiplier=multiplier,
            jitter=jitter
        )
        self.attempt = 0

    def get_next_delay(self) -> int:
        delay = calculate_delay(self.attempt, self._options)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0

    @property
    def current_attempt(self) -> int:
        return self.attempt


def create_circuit_breaker(
    operation: Callable[..., Awaitable[T]],
    config: CircuitBreakerConfig,
    name: str = 'operation'
) -> Callable[..., Awaitable[T]]:
    """
    Wrap operation in its own CircuitBreaker.

    The returned coroutine function raises CircuitOpenError while the breaker
    is OPEN. The breaker itself is available as the wrapper's `breaker`
    attribute.
    """
    breaker = CircuitBreaker(config, name=name)

    async def guarded(*args, **kwargs) -> T:
        return await breaker.call(lambda: operation(*args, **kwargs))

    guarded.breaker = breaker
    return guarded
