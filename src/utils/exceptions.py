"""
Custom Exception Classes for the GalaSwap Arbitrage Bot

Provides a hierarchy of specific exceptions for the API access layer. Every
exception carries an ErrorKind tag so callers branch on the failure category
instead of parsing message text.

Exception Hierarchy:
├── GalaSwapBotError (Base)
│   ├── ConfigurationError
│   ├── AuthenticationError
│   ├── APIError
│   │   ├── RateLimitError
│   │   ├── APITimeoutError
│   │   ├── ServerError
│   │   └── InvalidResponseError
│   ├── NetworkError
│   ├── CircuitOpenError
│   ├── PairFilteredError
│   ├── DataValidationError
│   └── TradingError
│       ├── InsufficientBalanceError
│       ├── InsufficientLiquidityError
│       ├── SlippageExceededError
│       ├── UnviableTradeError
│       └── TradeExecutionError
"""

import asyncio
from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(str, Enum):
    """Failure category used for retry and alerting decisions"""

    TRANSPORT = 'transport'
    RATE_LIMITED = 'rate_limited'
    SERVER = 'server'
    CIRCUIT_OPEN = 'circuit_open'
    FILTERED = 'filtered'
    VALIDATION = 'validation'
    UNKNOWN = 'unknown'


class GalaSwapBotError(Exception):
    """
    Base exception for all GalaSwap bot errors.
    Enables catching all bot errors with: except GalaSwapBotError
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize bot error with structured information.

        Args:
            message: Human-readable error message
            error_code: Error code for classification (e.g., 'PAIR_FILTERED')
            details: Additional context dict
            original_error: Original exception that caused this (for error chaining)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            error_str += f" (Code: {self.error_code})"
        if self.details:
            error_str += f" | Details: {self.details}"
        return error_str


# ============================================================================
# CONFIGURATION & AUTHENTICATION ERRORS
# ============================================================================

class ConfigurationError(GalaSwapBotError):
    """
    Raised when configuration is invalid or incomplete.
    Examples: unknown retry category, malformed rate-limit overrides
    """
    kind = ErrorKind.VALIDATION


class AuthenticationError(GalaSwapBotError):
    """
    Raised when a request cannot be authenticated.
    Examples: no signer configured, rejected signature
    """
    kind = ErrorKind.VALIDATION


# ============================================================================
# API & NETWORK ERRORS
# ============================================================================

class APIError(GalaSwapBotError):
    """
    Base exception for GalaSwap API errors.
    Kind is derived from the HTTP status code.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.response_data = response_data
        self.endpoint = endpoint
        super().__init__(message, **kwargs)
        self.kind = _kind_for_status(status_code, type(self).kind)

    @property
    def status(self) -> Optional[int]:
        return self.status_code


class RateLimitError(APIError):
    """
    Raised when the API rate limit is exceeded (HTTP 429).
    Retried with exponential backoff.
    """
    kind = ErrorKind.RATE_LIMITED


class APITimeoutError(APIError):
    """
    Raised when an API request times out.
    Treated as a transport failure and retried.
    """
    kind = ErrorKind.TRANSPORT


class ServerError(APIError):
    """Raised on 5xx responses from the exchange"""
    kind = ErrorKind.SERVER


class InvalidResponseError(APIError):
    """
    Raised when an API response cannot be parsed or is invalid.
    Indicates potential API changes or data corruption.
    """
    kind = ErrorKind.UNKNOWN


class NetworkError(GalaSwapBotError):
    """
    Raised on connection-level failures (reset, refused, DNS).
    Always retryable.
    """
    kind = ErrorKind.TRANSPORT


# ============================================================================
# RESILIENCE ERRORS
# ============================================================================

class CircuitOpenError(GalaSwapBotError):
    """
    Raised instantly while a circuit breaker is OPEN.
    The wrapped operation was NOT attempted.
    """
    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, breaker_name: str, retry_after_ms: int = 0, **kwargs):
        self.breaker_name = breaker_name
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"Circuit '{breaker_name}' is open, retry in {retry_after_ms}ms",
            error_code='CIRCUIT_OPEN',
            **kwargs
        )


class PairFilteredError(GalaSwapBotError):
    """
    Raised before any network call when the liquidity filter rejects a pair.
    Distinct from an API error: no request was sent.
    """
    kind = ErrorKind.FILTERED

    def __init__(self, token_in: str, token_out: str, **kwargs):
        self.token_in = token_in
        self.token_out = token_out
        super().__init__(
            f"Pair {token_in} -> {token_out} filtered for low liquidity",
            error_code='PAIR_FILTERED',
            **kwargs
        )


class DataValidationError(GalaSwapBotError):
    """
    Raised when input data fails validation.
    Examples: malformed token key, non-positive amount, slippage out of range
    """
    kind = ErrorKind.VALIDATION


# ============================================================================
# TRADING ERRORS
# ============================================================================

class TradingError(GalaSwapBotError):
    """Base exception for trading-related errors"""
    kind = ErrorKind.VALIDATION


class InsufficientBalanceError(TradingError):
    """Raised when the wallet cannot cover the trade amount"""
    pass


class InsufficientLiquidityError(TradingError):
    """
    Raised when the exchange reports no usable pool liquidity for a pair.
    Callers feed these pairs into the dynamic blacklist.
    """
    pass


class SlippageExceededError(TradingError):
    """Raised when the quoted output falls below the slippage floor"""
    pass


class UnviableTradeError(TradingError):
    """Raised when the gas bid says execution would not preserve profit"""
    pass


class TradeExecutionError(TradingError):
    """
    Raised when a trade submission fails after all retries.

    The message is redacted and bounded; cause_kind names the category of the
    underlying failure.
    """

    def __init__(self, message: str, cause_kind: ErrorKind = ErrorKind.UNKNOWN, **kwargs):
        self.cause_kind = cause_kind
        super().__init__(message, error_code='TRADE_EXECUTION_FAILED', **kwargs)


# ============================================================================
# CLASSIFICATION
# ============================================================================

def _kind_for_status(status_code: Optional[int], default: ErrorKind) -> ErrorKind:
    if status_code is None:
        return default
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 408:
        return ErrorKind.TRANSPORT
    if status_code >= 500:
        return ErrorKind.SERVER
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return default


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map any exception onto an ErrorKind.

    Bot errors carry their own kind; builtin connection and timeout errors
    are transport failures; objects exposing an HTTP status are mapped by
    status; everything else is UNKNOWN.
    """
    if isinstance(error, GalaSwapBotError):
        return error.kind
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TRANSPORT
    status = getattr(error, 'status', None) or getattr(error, 'status_code', None)
    if isinstance(status, int):
        return _kind_for_status(status, ErrorKind.UNKNOWN)
    return ErrorKind.UNKNOWN
