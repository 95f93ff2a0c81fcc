"""
Configuration Constants for the GalaSwap Arbitrage Bot

This module centralizes the static parameters of the GalaSwap V3 API access
layer: endpoints, per-endpoint throttling, retry and circuit-breaker presets,
gas costs and the curated token-pair lists used by the liquidity filter.

Key Principles:
- Single source of truth for all constants
- All constants are Final (immutable)
- Runtime overrides live in config.settings (environment variables / .env)
"""

from typing import Final, Dict, List, Tuple
import os


# ============================================================================
# 1. API ENDPOINTS
# ============================================================================

GALASWAP_API_BASE_URL: Final[str] = os.getenv(
    'GALASWAP_API_BASE_URL',
    'https://dex-backend-prod1.defi.gala.com'
)

GALASWAP_WS_URL: Final[str] = os.getenv(
    'GALASWAP_WS_URL',
    'wss://bundle-backend-prod1.defi.gala.com'
)

API_TIMEOUT_SEC: Final[int] = 10

# REST endpoint paths, keyed by the logical endpoint name used for throttling
API_ENDPOINTS: Final[Dict[str, str]] = {
    'QUOTE': '/v1/trade/quote',
    'PRICE': '/v1/trade/price',
    'PRICE_MULTIPLE': '/v1/trade/price-multiple',
    'POOL': '/v1/trade/pool',
    'POSITION': '/v1/trade/position',
    'POSITIONS': '/v1/trade/positions',
    'SWAP': '/v1/trade/swap',
    'BUNDLE': '/v1/trade/bundle',
    'TRANSACTION_STATUS': '/v1/trade/transaction-status',
    'HEALTH': '/health',
}

WS_ENDPOINTS: Final[Dict[str, str]] = {
    'PRICE_UPDATES': '/price-updates',
    'TRANSACTION_UPDATES': '/transaction-updates',
}


# ============================================================================
# 2. RATE LIMITING
# ============================================================================
# (requests_per_second, burst_limit) per logical endpoint.
# Write endpoints (SWAP/BUNDLE) are throttled hardest.

DEFAULT_REQUESTS_PER_SECOND: Final[float] = 10.0
DEFAULT_BURST_LIMIT: Final[int] = 20
DEFAULT_RATE_WINDOW_MS: Final[int] = 1000

ENDPOINT_RATE_LIMITS: Final[Dict[str, Tuple[float, int]]] = {
    'QUOTE': (10.0, 20),
    'PRICE': (20.0, 50),
    'PRICE_MULTIPLE': (5.0, 10),
    'POOL': (10.0, 20),
    'POSITION': (5.0, 10),
    'POSITIONS': (3.0, 5),
    'SWAP': (2.0, 5),
    'BUNDLE': (1.0, 3),
    'TRANSACTION_STATUS': (5.0, 10),
    'HEALTH': (1.0, 2),
}

# Per-request timeouts (ms); anything not listed uses API_TIMEOUT_SEC
ENDPOINT_TIMEOUTS_MS: Final[Dict[str, int]] = {
    'HEALTH': 3000,
    'QUOTE': 5000,
    'PRICE': 5000,
}


# ============================================================================
# 3. RETRY PRESETS
# ============================================================================
# category -> (max_retries, base_delay_ms, max_delay_ms)

RETRY_CATEGORIES: Final[Dict[str, Tuple[int, int, int]]] = {
    'fast': (2, 500, 5000),
    'standard': (3, 1000, 10000),
    'slow': (4, 2000, 20000),
    'transaction': (5, 3000, 30000),
}

DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BASE_DELAY_MS: Final[int] = 1000
DEFAULT_MAX_DELAY_MS: Final[int] = 30000
DEFAULT_BACKOFF_MULTIPLIER: Final[float] = 2.0
JITTER_RATIO: Final[float] = 0.1

RETRYABLE_STATUS_CODES: Final[frozenset] = frozenset({408, 429, 500, 502, 503, 504})


# ============================================================================
# 4. CIRCUIT BREAKER PRESETS
# ============================================================================
# operation -> (failure_threshold, reset_timeout_ms, monitor_window_ms)

CIRCUIT_BREAKER_PRESETS: Final[Dict[str, Tuple[int, int, int]]] = {
    'galaswap-api': (5, 30000, 60000),
    'quote': (3, 15000, 30000),
    'swap': (2, 60000, 120000),
    'transaction-poll': (4, 20000, 45000),
}


# ============================================================================
# 5. GAS COSTS (GALA)
# ============================================================================

BASE_GAS: Final[float] = 0.08

# Fraction of expected profit that must survive gas when protection is on
MIN_PROFIT_RETENTION: Final[float] = 0.10
MAX_PRIORITY_MULTIPLIER: Final[float] = 5.0
MAX_COMPETITIVE_ADJUSTMENT: Final[float] = 3.0
BID_HISTORY_SIZE: Final[int] = 100
BID_STATS_WINDOW: Final[int] = 50


# ============================================================================
# 6. TOKENS & LIQUIDITY LISTS
# ============================================================================

TOKENS: Final[Dict[str, str]] = {
    'GALA': 'GALA$Unit$none$none',
    'GUSDC': 'GUSDC$Unit$none$none',
    'GUSDT': 'GUSDT$Unit$none$none',
    'GWETH': 'GWETH$Unit$none$none',
    'GWBTC': 'GWBTC$Unit$none$none',
    'SILK': 'SILK$Unit$none$none',
    'ETIME': 'ETIME$Unit$none$none',
    'GTON': 'GTON$Unit$none$none',
    'TOWN': 'TOWN$Unit$none$none',
}

DEFAULT_SCAN_TOKENS: Final[List[str]] = ['GALA', 'GUSDC', 'GUSDT', 'ETIME', 'SILK']
SCAN_INTERVAL_SEC: Final[float] = float(os.getenv('SCAN_INTERVAL_SEC', '30'))


def _both_ways(base: str, others: List[str]) -> List[Tuple[str, str]]:
    pairs = []
    for other in others:
        pairs.append((TOKENS[base], TOKENS[other]))
        pairs.append((TOKENS[other], TOKENS[base]))
    return pairs


# Pairs observed to have no usable pool liquidity
STATIC_BLACKLIST_PAIRS: Final[List[Tuple[str, str]]] = (
    _both_ways('SILK', ['GWBTC', 'GWETH', 'GUSDC', 'GUSDT'])
    + _both_ways('GTON', ['GALA', 'GUSDC', 'GUSDT', 'SILK', 'GWETH', 'GWBTC'])
    + _both_ways('ETIME', ['GUSDT', 'GWBTC', 'GUSDC', 'GWETH'])
    + _both_ways('GWBTC', ['GWETH'])
    + _both_ways('TOWN', ['GALA', 'GUSDC', 'GUSDT', 'ETIME'])
)

# Pairs with confirmed deep liquidity; never filtered
WHITELIST_PAIRS: Final[List[Tuple[str, str]]] = (
    _both_ways('GALA', ['GUSDC', 'GUSDT', 'ETIME', 'SILK'])
    + _both_ways('GUSDC', ['GUSDT'])
)

AUDIT_HISTORY_SIZE: Final[int] = 1000
REMOTE_CONFIG_TIMEOUT_SEC: Final[int] = 10


# ============================================================================
# 7. TRADING SAFETY
# ============================================================================

DEFAULT_SLIPPAGE_TOLERANCE: Final[float] = 0.01  # 1%
MAX_SLIPPAGE_TOLERANCE: Final[float] = 0.5

# Transaction monitoring fallback polling
TX_POLL_INTERVAL_MS: Final[int] = 2000
TX_POLL_MAX_INTERVAL_MS: Final[int] = 30000
TX_POLL_MAX_CONSECUTIVE_ERRORS: Final[int] = 10
TX_MONITOR_TIMEOUT_MS: Final[int] = 300000
TX_FINAL_STATUSES: Final[frozenset] = frozenset({'CONFIRMED', 'FAILED', 'REJECTED'})


# ============================================================================
# 8. LOGGING & ERROR REPORTING
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE_PATH: Final[str] = os.getenv('LOG_FILE_PATH', 'logs/galaswap_bot.log')
MAX_LOG_FILE_SIZE: Final[int] = 50 * 1024 * 1024  # 50MB
LOG_BACKUP_COUNT: Final[int] = 10
STRUCTURED_LOGGING: Final[bool] = os.getenv('STRUCTURED_LOGGING', 'true').lower() == 'true'

# Upper bound for any error text surfaced to callers
MAX_ERROR_MESSAGE_LENGTH: Final[int] = 500
