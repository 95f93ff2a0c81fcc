"""
Runtime Configuration for the GalaSwap Arbitrage Bot

pydantic-settings based configuration: every parameter can be overridden by
an environment variable (or .env entry) of the same name, upper-cased.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    limiter_manager = RateLimiterManager(*settings.rate_limit_configs())

    # Override via environment:
    # export MAX_GAS_BUDGET_PERCENT=0.10
"""

import json
from typing import Dict, List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import (
    API_TIMEOUT_SEC,
    DEFAULT_BURST_LIMIT,
    DEFAULT_RATE_WINDOW_MS,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_SCAN_TOKENS,
    DEFAULT_SLIPPAGE_TOLERANCE,
    ENDPOINT_RATE_LIMITS,
    GALASWAP_API_BASE_URL,
    GALASWAP_WS_URL,
    LOG_FILE_PATH,
    LOG_LEVEL,
    STRUCTURED_LOGGING,
)
from core.gas_bidding import GasBiddingConfig
from core.liquidity_filter import LiquidityFilterConfig
from utils.circuit_breaker import CircuitBreakerConfig
from utils.rate_limiter import RateLimitConfig


class BotSettings(BaseSettings):
    """
    GalaSwap bot configuration

    All parameters can be overridden via environment variables.
    Example: GAS_BIDDING_ENABLED=false galaswap-bot
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ============================================================================
    # API
    # ============================================================================

    galaswap_api_base_url: str = Field(default=GALASWAP_API_BASE_URL)
    galaswap_ws_url: str = Field(default=GALASWAP_WS_URL)
    wallet_address: Optional[str] = Field(
        default=None,
        description="GalaChain wallet id (e.g. eth|abc...); required for swaps"
    )
    api_timeout_sec: float = Field(default=API_TIMEOUT_SEC, gt=0, le=120)

    # ============================================================================
    # RATE LIMITING
    # ============================================================================

    default_requests_per_second: float = Field(default=DEFAULT_REQUESTS_PER_SECOND, gt=0)
    default_burst_limit: int = Field(default=DEFAULT_BURST_LIMIT, ge=1)
    rate_limit_window_ms: int = Field(default=DEFAULT_RATE_WINDOW_MS, gt=0)
    rate_limit_overrides: Dict[str, Tuple[float, int]] = Field(
        default_factory=dict,
        description='JSON object, e.g. {"QUOTE": [5, 10]}; merged over built-in endpoint limits'
    )

    # ============================================================================
    # CIRCUIT BREAKER (fallback for operations without a preset)
    # ============================================================================

    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout_ms: int = Field(default=30000, gt=0)
    circuit_monitor_window_ms: int = Field(default=60000, gt=0)

    # ============================================================================
    # GAS BIDDING
    # ============================================================================

    gas_bidding_enabled: bool = True
    max_gas_budget_percent: float = Field(default=0.15, gt=0.0, le=1.0)
    base_gas_premium: float = Field(default=1.0, gt=0.0)
    competitive_factor: float = Field(default=1.5, ge=1.0)
    emergency_multiplier: float = Field(default=3.0, gt=2.0)
    market_analysis_enabled: bool = True
    profit_protection_enabled: bool = True

    # ============================================================================
    # LIQUIDITY FILTER
    # ============================================================================

    enable_liquidity_filtering: bool = True
    log_filtered_pairs: bool = False
    update_blacklist_from_errors: bool = True
    liquidity_config_path: Optional[str] = None
    liquidity_config_url: Optional[str] = None

    # ============================================================================
    # TRADING & SCANNING
    # ============================================================================

    default_slippage_tolerance: float = Field(default=DEFAULT_SLIPPAGE_TOLERANCE, ge=0.0, le=0.5)
    scan_tokens: List[str] = Field(default_factory=lambda: list(DEFAULT_SCAN_TOKENS))
    scan_amount: float = Field(default=100.0, gt=0)

    # ============================================================================
    # LOGGING
    # ============================================================================

    log_level: str = Field(default=LOG_LEVEL)
    log_file_path: str = Field(default=LOG_FILE_PATH)
    structured_logging: bool = Field(default=STRUCTURED_LOGGING)

    @field_validator('rate_limit_overrides', mode='before')
    @classmethod
    def parse_overrides(cls, v):
        """Accept a JSON string from the environment"""
        if isinstance(v, str):
            v = json.loads(v) if v.strip() else {}
        return {str(k).upper(): tuple(val) for k, val in (v or {}).items()}

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    # ============================================================================
    # COMPONENT CONFIG BUILDERS
    # ============================================================================

    def rate_limit_configs(self) -> Tuple[RateLimitConfig, Dict[str, RateLimitConfig]]:
        """(default config, per-endpoint overrides) for RateLimiterManager"""
        default = RateLimitConfig(
            requests_per_second=self.default_requests_per_second,
            burst_limit=self.default_burst_limit,
            window_ms=self.rate_limit_window_ms
        )
        limits = dict(ENDPOINT_RATE_LIMITS)
        limits.update(self.rate_limit_overrides)
        overrides = {
            endpoint: RateLimitConfig(
                requests_per_second=rps,
                burst_limit=burst,
                window_ms=self.rate_limit_window_ms
            )
            for endpoint, (rps, burst) in limits.items()
        }
        return default, overrides

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout_ms=self.circuit_reset_timeout_ms,
            monitor_window_ms=self.circuit_monitor_window_ms
        )

    def gas_bidding_config(self) -> GasBiddingConfig:
        return GasBiddingConfig(
            enabled=self.gas_bidding_enabled,
            max_gas_budget_percent=self.max_gas_budget_percent,
            base_gas_premium=self.base_gas_premium,
            competitive_factor=self.competitive_factor,
            emergency_multiplier=self.emergency_multiplier,
            market_analysis_enabled=self.market_analysis_enabled,
            profit_protection_enabled=self.profit_protection_enabled
        )

    def liquidity_filter_config(self) -> LiquidityFilterConfig:
        return LiquidityFilterConfig(
            enable_filtering=self.enable_liquidity_filtering,
            log_filtered_pairs=self.log_filtered_pairs,
            update_blacklist_from_errors=self.update_blacklist_from_errors
        )


# Singleton instance
_settings: Optional[BotSettings] = None


def get_settings() -> BotSettings:
    """
    Get singleton settings instance.

    Example:
        >>> settings = get_settings()
        >>> settings.max_gas_budget_percent
        0.15
    """
    global _settings
    if _settings is None:
        _settings = BotSettings()
    return _settings


def reload_settings() -> BotSettings:
    """
    Force reload settings from environment.

    Example:
        >>> os.environ['MAX_GAS_BUDGET_PERCENT'] = '0.1'
        >>> reload_settings().max_gas_budget_percent
        0.1
    """
    global _settings
    _settings = BotSettings()
    return _settings


__all__ = ['get_settings', 'reload_settings', 'BotSettings']
