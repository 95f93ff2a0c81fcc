"""
Test Suite for Settings and Component Config Builders
"""

import pytest
from pydantic import ValidationError

from config.constants import ENDPOINT_RATE_LIMITS
from config.settings import BotSettings, get_settings, reload_settings


class TestBotSettings:
    """Environment overrides and validation"""

    def test_defaults(self):
        settings = BotSettings(_env_file=None)
        assert settings.max_gas_budget_percent == 0.15
        assert settings.enable_liquidity_filtering is True
        assert settings.wallet_address is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv('MAX_GAS_BUDGET_PERCENT', '0.1')
        monkeypatch.setenv('GAS_BIDDING_ENABLED', 'false')
        settings = BotSettings(_env_file=None)
        assert settings.max_gas_budget_percent == 0.1
        assert settings.gas_bidding_enabled is False

    def test_rate_limit_overrides_from_json(self, monkeypatch):
        monkeypatch.setenv('RATE_LIMIT_OVERRIDES', '{"quote": [2, 4]}')
        settings = BotSettings(_env_file=None)
        assert settings.rate_limit_overrides == {'QUOTE': (2.0, 4)}

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            BotSettings(_env_file=None, max_gas_budget_percent=1.5)
        with pytest.raises(ValidationError):
            BotSettings(_env_file=None, emergency_multiplier=1.0)

    def test_log_level_normalized(self):
        assert BotSettings(_env_file=None, log_level='debug').log_level == 'DEBUG'
        with pytest.raises(ValidationError):
            BotSettings(_env_file=None, log_level='chatty')


class TestConfigBuilders:
    def test_rate_limit_configs_merge_overrides(self):
        settings = BotSettings(_env_file=None, rate_limit_overrides={'QUOTE': (2, 4), 'CUSTOM': (1, 1)})
        default, overrides = settings.rate_limit_configs()

        assert default.requests_per_second == settings.default_requests_per_second
        assert overrides['QUOTE'].burst_limit == 4
        assert overrides['CUSTOM'].requests_per_second == 1
        assert set(ENDPOINT_RATE_LIMITS) <= set(overrides)

    def test_component_configs(self):
        settings = BotSettings(
            _env_file=None,
            circuit_failure_threshold=7,
            profit_protection_enabled=False,
            update_blacklist_from_errors=False,
        )
        assert settings.circuit_breaker_config().failure_threshold == 7
        assert settings.gas_bidding_config().profit_protection_enabled is False
        assert settings.liquidity_filter_config().update_blacklist_from_errors is False


class TestSingleton:
    def test_get_settings_cached_and_reload(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv('SCAN_AMOUNT', '42')
        reloaded = reload_settings()
        assert reloaded is not first
        assert reloaded.scan_amount == 42.0
        assert get_settings() is reloaded

        monkeypatch.delenv('SCAN_AMOUNT')
        reload_settings()
