"""
Liquidity Pair Filter - Pre-emptive Dead-Pair Filtering

OBJECTIVE: Skip quote requests for token pairs that have no usable pool
liquidity BEFORE they reach the API, saving rate-limit budget and latency.

Architecture:
1. Whitelist: confirmed-liquid pairs, never filtered (overrides everything)
2. Static blacklist: known dead pairs, loaded at startup (optionally synced
   from a remote JSON file or URL)
3. Dynamic blacklist: pairs learned at runtime from "insufficient liquidity"
   responses; kept until reset_dynamic_blacklist()
4. Performance: O(1) set lookups keyed by "tokenIn→tokenOut"

Pairs are directional: A→B and B→A are tracked independently.
"""

import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import aiohttp
from pydantic import BaseModel

from config.constants import (
    AUDIT_HISTORY_SIZE,
    REMOTE_CONFIG_TIMEOUT_SEC,
    STATIC_BLACKLIST_PAIRS,
    WHITELIST_PAIRS,
)
from utils.helpers import normalize_token
from utils.logger import get_logger


logger = get_logger(__name__)

PAIR_SEPARATOR = '→'


class LiquidityFilterConfig(BaseModel):
    enable_filtering: bool = True
    log_filtered_pairs: bool = False
    update_blacklist_from_errors: bool = True


@dataclass(frozen=True)
class TokenPair:
    token_in: str
    token_out: str

    @property
    def key(self) -> str:
        return pair_key(self.token_in, self.token_out)


def pair_key(token_in: str, token_out: str) -> str:
    """Canonical lookup key: normalized tokens joined by '→'"""
    return f"{normalize_token(token_in)}{PAIR_SEPARATOR}{normalize_token(token_out)}"


def _split_key(key: str) -> TokenPair:
    token_in, token_out = key.split(PAIR_SEPARATOR, 1)
    return TokenPair(token_in, token_out)


class LiquidityFilter:
    """
    Set-membership filter for token pairs.

    Lookup order in should_filter_pair():
        disabled -> False
        whitelist -> False
        static blacklist -> True
        dynamic blacklist -> True
        otherwise -> False
    """

    def __init__(
        self,
        config: Optional[LiquidityFilterConfig] = None,
        extra_blacklist: Optional[Iterable[Tuple[str, str]]] = None,
        extra_whitelist: Optional[Iterable[Tuple[str, str]]] = None,
        remote_config_path: Optional[str] = None,
        remote_config_url: Optional[str] = None
    ):
        """
        Args:
            config: Filter switches (defaults: filtering on, quiet, learn from errors)
            extra_blacklist: Additional static (tokenIn, tokenOut) pairs
            extra_whitelist: Additional always-allowed pairs
            remote_config_path: JSON file with {"blacklist": [...], "whitelist": [...]}
            remote_config_url: URL serving the same JSON document
        """
        self.config = config or LiquidityFilterConfig()

        self.static_blacklist: Set[str] = {
            pair_key(a, b) for a, b in list(STATIC_BLACKLIST_PAIRS) + list(extra_blacklist or [])
        }
        self.whitelist: Set[str] = {
            pair_key(a, b) for a, b in list(WHITELIST_PAIRS) + list(extra_whitelist or [])
        }
        self.dynamic_blacklist: Dict[str, Dict[str, Any]] = {}

        self.remote_config_path = remote_config_path
        self.remote_config_url = remote_config_url

        self._stats = self._empty_stats()

        # Last filter decisions and blacklist additions, for forensics
        self.audit_history: deque = deque(maxlen=AUDIT_HISTORY_SIZE)

        logger.info(
            f"LiquidityFilter initialized: {len(self.static_blacklist)} blacklisted pairs, "
            f"{len(self.whitelist)} whitelisted pairs, "
            f"filtering {'enabled' if self.config.enable_filtering else 'disabled'}"
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'total_filtered': 0,
            'blacklist_hits': 0,
            'dynamic_blacklist_hits': 0,
            'whitelist_overrides': 0,
        }

    # ========================================================================
    # FILTERING
    # ========================================================================

    def should_filter_pair(self, token_in: str, token_out: str) -> bool:
        """
        Returns:
            True if the pair should be skipped (no quote request)
        """
        if not self.config.enable_filtering:
            return False

        key = pair_key(token_in, token_out)

        if key in self.whitelist:
            self._stats['whitelist_overrides'] += 1
            return False

        if key in self.static_blacklist:
            self._stats['blacklist_hits'] += 1
            self._stats['total_filtered'] += 1
            self._record('filtered', key, 'static_blacklist')
            return True

        if key in self.dynamic_blacklist:
            self._stats['dynamic_blacklist_hits'] += 1
            self._stats['total_filtered'] += 1
            self._record('filtered', key, 'dynamic_blacklist')
            return True

        return False

    def add_to_blacklist(
        self,
        token_in: str,
        token_out: str,
        reason: str = 'insufficient_liquidity'
    ) -> bool:
        """
        Learn a dead pair at runtime.

        Ignored for whitelisted pairs and when learning from errors is off.
        Repeated additions of the same pair are no-ops.

        Returns:
            True if the pair was newly added
        """
        if not self.config.update_blacklist_from_errors:
            return False

        key = pair_key(token_in, token_out)
        if key in self.whitelist:
            logger.debug(f"[LIQUIDITY] Not blacklisting whitelisted pair {key}")
            return False
        if key in self.dynamic_blacklist or key in self.static_blacklist:
            return False

        self.dynamic_blacklist[key] = {
            'reason': reason,
            'added_at': datetime.now(timezone.utc).isoformat(),
        }
        self._record('blacklisted', key, reason)
        logger.warning(f"[LIQUIDITY] Added {key} to dynamic blacklist | Reason: {reason}")
        return True

    def get_liquid_pairs(self, tokens: List[str]) -> List[TokenPair]:
        """
        All directional pairs among tokens that pass the filter.
        A→B and B→A are evaluated independently.
        """
        unique = list(dict.fromkeys(normalize_token(t) for t in tokens))
        liquid = []
        for a, b in combinations(unique, 2):
            for token_in, token_out in ((a, b), (b, a)):
                if not self.should_filter_pair(token_in, token_out):
                    liquid.append(TokenPair(token_in, token_out))

        if self.config.log_filtered_pairs:
            logger.info(f"[LIQUIDITY] {len(liquid)} liquid directional pairs from {len(tokens)} tokens")
        return liquid

    def get_high_confidence_pairs(self) -> List[TokenPair]:
        return [_split_key(key) for key in sorted(self.whitelist)]

    def is_pair_blacklisted(self, token_in: str, token_out: str) -> bool:
        key = pair_key(token_in, token_out)
        return key in self.static_blacklist or key in self.dynamic_blacklist

    def is_pair_whitelisted(self, token_in: str, token_out: str) -> bool:
        return pair_key(token_in, token_out) in self.whitelist

    def get_blacklisted_pairs(self) -> Dict[str, List[str]]:
        return {
            'static': sorted(self.static_blacklist),
            'dynamic': sorted(self.dynamic_blacklist),
        }

    def set_filtering_enabled(self, enabled: bool) -> None:
        self.config = self.config.model_copy(update={'enable_filtering': enabled})
        logger.info(f"[LIQUIDITY] Filtering {'enabled' if enabled else 'disabled'}")

    def reset_dynamic_blacklist(self) -> None:
        """Forget runtime-learned pairs; static list and whitelist are untouched."""
        count = len(self.dynamic_blacklist)
        self.dynamic_blacklist.clear()
        logger.info(f"[LIQUIDITY] Cleared {count} dynamically blacklisted pairs")

    # ========================================================================
    # REMOTE CONFIGURATION
    # ========================================================================

    async def sync_blacklist(self) -> bool:
        """
        Load additional static blacklist/whitelist pairs from the configured
        file or URL.

        Expected format:
            {"blacklist": [["A$Unit$none$none", "B$Unit$none$none"], ...],
             "whitelist": [[...], ...]}

        Returns:
            True if sync succeeded, False otherwise
        """
        if not self.remote_config_url and not self.remote_config_path:
            logger.debug("No remote liquidity config configured, skipping sync")
            return False

        try:
            if self.remote_config_url:
                timeout = aiohttp.ClientTimeout(total=REMOTE_CONFIG_TIMEOUT_SEC)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.get(self.remote_config_url) as response:
                        if response.status != 200:
                            logger.warning(f"Failed to fetch liquidity config: HTTP {response.status}")
                            return False
                        config_data = await response.json()
            else:
                with open(self.remote_config_path, 'r') as f:
                    config_data = json.load(f)

            if not isinstance(config_data, dict):
                logger.error("Liquidity config must be a JSON object")
                return False

            new_blacklist = {pair_key(a, b) for a, b in config_data.get('blacklist', [])}
            new_whitelist = {pair_key(a, b) for a, b in config_data.get('whitelist', [])}

        except aiohttp.ClientError as e:
            logger.error(f"Network error fetching liquidity config: {e}")
            return False
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in liquidity config: {e}")
            return False
        except FileNotFoundError:
            logger.error("Liquidity config file not found")
            return False
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Malformed pair entry in liquidity config: {e}")
            return False

        self.static_blacklist.update(new_blacklist)
        self.whitelist.update(new_whitelist)
        logger.info(
            f"✅ Synced liquidity config: +{len(new_blacklist)} blacklisted, "
            f"+{len(new_whitelist)} whitelisted pairs"
        )
        return True

    # ========================================================================
    # STATISTICS & AUDIT
    # ========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats.update({
            'static_blacklist_size': len(self.static_blacklist),
            'dynamic_blacklist_size': len(self.dynamic_blacklist),
            'whitelist_size': len(self.whitelist),
            'filtering_enabled': self.config.enable_filtering,
        })
        return stats

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()

    def log_summary(self) -> None:
        stats = self.get_statistics()
        if stats['total_filtered'] > 0:
            logger.info(
                f"[LIQUIDITY] Filtered {stats['total_filtered']} pair requests | "
                f"Static={stats['blacklist_hits']}, Dynamic={stats['dynamic_blacklist_hits']}, "
                f"Whitelist overrides={stats['whitelist_overrides']}"
            )

    def _record(self, action: str, key: str, reason: str) -> None:
        self.audit_history.append({
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'action': action,
            'pair': key,
            'reason': reason,
        })
        if action == 'filtered' and self.config.log_filtered_pairs:
            logger.info(f"[LIQUIDITY] Filtered {key} ({reason})")

    def get_audit_report(self) -> str:
        """JSON export of the last filter decisions and blacklist additions"""
        return json.dumps(list(self.audit_history), indent=2, ensure_ascii=False)
