"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from config.settings import BotSettings
from utils.circuit_breaker import CircuitBreakerManager
from utils.rate_limiter import RateLimitConfig, RateLimiterManager


class FakeClock:
    """Manually advanced monotonic clock (seconds)"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Patch the retry helper's sleep so backoff delays are recorded, not waited"""
    with patch('utils.retry_helper._sleep_ms', new=AsyncMock()) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and .env"""
    return BotSettings(
        _env_file=None,
        galaswap_api_base_url='https://api.test.local',
        galaswap_ws_url='wss://ws.test.local',
        wallet_address='eth|1234567890abcdef1234567890abcdef12345678',
        liquidity_config_path=None,
        liquidity_config_url=None,
    )


@pytest.fixture
def generous_rate_limiters():
    """Limiters that never block in tests"""
    return RateLimiterManager(RateLimitConfig(requests_per_second=1000, burst_limit=1000))


@pytest.fixture
def circuit_breakers():
    return CircuitBreakerManager()


class FakeResponse:
    """Minimal aiohttp response stand-in usable as an async context manager"""

    def __init__(self, status: int = 200, text: str = '{}'):
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def make_session(*responses):
    """
    Mock aiohttp session whose request() yields the given FakeResponses in
    order. Exceptions in the list are raised instead.
    """
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()

    queue = list(responses)

    def request(method, url, **kwargs):
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    session.request = MagicMock(side_effect=request)
    return session
