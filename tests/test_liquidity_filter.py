"""
Test Suite for the Liquidity Pair Filter

Tests:
1. Static blacklist and whitelist precedence
2. Dynamic blacklist learning and idempotence
3. Directional pair enumeration
4. Remote configuration sync (file)
5. Statistics and audit trail
"""

import json
from unittest.mock import patch

import pytest

from core.liquidity_filter import (
    LiquidityFilter,
    LiquidityFilterConfig,
    TokenPair,
    pair_key,
)

GALA = 'GALA$Unit$none$none'
GUSDC = 'GUSDC$Unit$none$none'
SILK = 'SILK$Unit$none$none'
GWBTC = 'GWBTC$Unit$none$none'
FOO = 'FOO$Unit$none$none'
BAR = 'BAR$Unit$none$none'


class TestStaticLists:
    """Known dead and known liquid pairs"""

    def test_dead_pair_filtered_pipe_format(self):
        liquidity_filter = LiquidityFilter()
        assert liquidity_filter.should_filter_pair('SILK|Unit|none|none', 'GWBTC|Unit|none|none') is True

    def test_liquid_pair_not_filtered_pipe_format(self):
        liquidity_filter = LiquidityFilter()
        assert liquidity_filter.should_filter_pair('GALA|Unit|none|none', 'GUSDC|Unit|none|none') is False

    def test_whitelist_overrides_blacklist(self):
        liquidity_filter = LiquidityFilter(extra_blacklist=[(GALA, GUSDC)])
        assert liquidity_filter.is_pair_blacklisted(GALA, GUSDC) is True
        assert liquidity_filter.should_filter_pair(GALA, GUSDC) is False
        assert liquidity_filter.get_statistics()['whitelist_overrides'] == 1

    def test_unknown_pair_passes(self):
        assert LiquidityFilter().should_filter_pair(FOO, BAR) is False

    def test_filtering_disabled(self):
        liquidity_filter = LiquidityFilter(LiquidityFilterConfig(enable_filtering=False))
        assert liquidity_filter.should_filter_pair(SILK, GWBTC) is False

        liquidity_filter.set_filtering_enabled(True)
        assert liquidity_filter.should_filter_pair(SILK, GWBTC) is True

    def test_pair_key_normalizes_separator(self):
        assert pair_key('GALA|Unit|none|none', ' GUSDC$Unit$none$none ') == f"{GALA}→{GUSDC}"


class TestDynamicBlacklist:
    """Runtime learning from insufficient-liquidity responses"""

    def test_added_pair_is_filtered(self):
        liquidity_filter = LiquidityFilter()
        assert liquidity_filter.add_to_blacklist(FOO, BAR) is True
        assert liquidity_filter.should_filter_pair(FOO, BAR) is True
        assert liquidity_filter.should_filter_pair(BAR, FOO) is False

    def test_adding_twice_is_idempotent(self):
        once = LiquidityFilter()
        once.add_to_blacklist(FOO, BAR)

        twice = LiquidityFilter()
        twice.add_to_blacklist(FOO, BAR)
        assert twice.add_to_blacklist(FOO, BAR) is False

        assert twice.get_blacklisted_pairs() == once.get_blacklisted_pairs()
        assert twice.should_filter_pair(FOO, BAR) == once.should_filter_pair(FOO, BAR)

    def test_whitelisted_pair_never_learned(self):
        liquidity_filter = LiquidityFilter()
        assert liquidity_filter.add_to_blacklist(GALA, GUSDC) is False
        assert liquidity_filter.should_filter_pair(GALA, GUSDC) is False

    def test_learning_can_be_disabled(self):
        liquidity_filter = LiquidityFilter(LiquidityFilterConfig(update_blacklist_from_errors=False))
        assert liquidity_filter.add_to_blacklist(FOO, BAR) is False
        assert liquidity_filter.should_filter_pair(FOO, BAR) is False

    def test_reset_clears_only_dynamic(self):
        liquidity_filter = LiquidityFilter()
        liquidity_filter.add_to_blacklist(FOO, BAR)

        liquidity_filter.reset_dynamic_blacklist()
        assert liquidity_filter.should_filter_pair(FOO, BAR) is False
        assert liquidity_filter.should_filter_pair(SILK, GWBTC) is True

    def test_reason_recorded(self):
        liquidity_filter = LiquidityFilter()
        liquidity_filter.add_to_blacklist(FOO, BAR, reason='no_pool')
        assert liquidity_filter.dynamic_blacklist[pair_key(FOO, BAR)]['reason'] == 'no_pool'


class TestPairEnumeration:
    def test_liquid_pairs_are_directional(self):
        liquidity_filter = LiquidityFilter()
        liquidity_filter.add_to_blacklist(FOO, BAR)

        pairs = liquidity_filter.get_liquid_pairs([FOO, BAR])
        assert pairs == [TokenPair(BAR, FOO)]

    def test_liquid_pairs_skip_static_blacklist(self):
        pairs = LiquidityFilter().get_liquid_pairs([GALA, SILK, GWBTC])
        keys = {p.key for p in pairs}
        assert pair_key(SILK, GWBTC) not in keys
        assert pair_key(GALA, SILK) in keys

    def test_liquid_pairs_are_normalized(self):
        pairs = LiquidityFilter().get_liquid_pairs(['FOO|Unit|none|none', 'BAR|Unit|none|none'])
        assert TokenPair(FOO, BAR) in pairs

    def test_duplicate_tokens_yield_no_self_pairs(self):
        pairs = LiquidityFilter().get_liquid_pairs([FOO, 'FOO|Unit|none|none', BAR, FOO])

        assert pairs == [TokenPair(FOO, BAR), TokenPair(BAR, FOO)]
        assert all(p.token_in != p.token_out for p in pairs)

    def test_high_confidence_pairs_are_whitelist(self):
        liquidity_filter = LiquidityFilter()
        pairs = liquidity_filter.get_high_confidence_pairs()
        assert TokenPair(GALA, GUSDC) in pairs
        assert len(pairs) == len(liquidity_filter.whitelist)


class TestRemoteSync:
    """sync_blacklist from a JSON file"""

    @pytest.mark.asyncio
    async def test_sync_from_file(self, tmp_path):
        config_file = tmp_path / 'liquidity.json'
        config_file.write_text(json.dumps({
            'blacklist': [[FOO, BAR]],
            'whitelist': [['FOO|Unit|none|none', GALA]],
        }))

        liquidity_filter = LiquidityFilter(remote_config_path=str(config_file))
        assert await liquidity_filter.sync_blacklist() is True
        assert liquidity_filter.should_filter_pair(FOO, BAR) is True
        assert liquidity_filter.is_pair_whitelisted(FOO, GALA) is True

    @pytest.mark.asyncio
    async def test_sync_without_source_returns_false(self):
        assert await LiquidityFilter().sync_blacklist() is False

    @pytest.mark.asyncio
    async def test_sync_missing_file_returns_false(self, tmp_path):
        liquidity_filter = LiquidityFilter(remote_config_path=str(tmp_path / 'missing.json'))
        assert await liquidity_filter.sync_blacklist() is False

    @pytest.mark.asyncio
    async def test_sync_malformed_json_returns_false(self, tmp_path):
        config_file = tmp_path / 'broken.json'
        config_file.write_text('{not json')

        liquidity_filter = LiquidityFilter(remote_config_path=str(config_file))
        assert await liquidity_filter.sync_blacklist() is False

    @pytest.mark.asyncio
    async def test_sync_bad_pair_shape_leaves_lists_untouched(self, tmp_path):
        config_file = tmp_path / 'bad.json'
        config_file.write_text(json.dumps({'blacklist': [[FOO, BAR], ['ONLY_ONE']]}))

        liquidity_filter = LiquidityFilter(remote_config_path=str(config_file))
        before = set(liquidity_filter.static_blacklist)
        assert await liquidity_filter.sync_blacklist() is False
        assert liquidity_filter.static_blacklist == before


class TestStatsAndAudit:
    def test_statistics_count_hits(self):
        liquidity_filter = LiquidityFilter()
        liquidity_filter.add_to_blacklist(FOO, BAR)
        liquidity_filter.should_filter_pair(SILK, GWBTC)
        liquidity_filter.should_filter_pair(FOO, BAR)

        stats = liquidity_filter.get_statistics()
        assert stats['total_filtered'] == 2
        assert stats['blacklist_hits'] == 1
        assert stats['dynamic_blacklist_hits'] == 1
        assert stats['dynamic_blacklist_size'] == 1

        liquidity_filter.reset_stats()
        assert liquidity_filter.get_statistics()['total_filtered'] == 0

    def test_audit_report_is_json(self):
        liquidity_filter = LiquidityFilter()
        liquidity_filter.add_to_blacklist(FOO, BAR)
        liquidity_filter.should_filter_pair(FOO, BAR)

        report = json.loads(liquidity_filter.get_audit_report())
        assert [entry['action'] for entry in report] == ['blacklisted', 'filtered']

    def test_filtered_pairs_logged_when_enabled(self):
        liquidity_filter = LiquidityFilter(LiquidityFilterConfig(log_filtered_pairs=True))
        with patch('core.liquidity_filter.logger') as mock_logger:
            liquidity_filter.should_filter_pair(SILK, GWBTC)
        mock_logger.info.assert_called_once()
