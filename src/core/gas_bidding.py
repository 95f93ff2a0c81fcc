"""
Gas Bidding Engine - Priority Fees with Profit Protection

Given an arbitrage opportunity, computes how much gas (GALA) to bid for
execution priority without giving the profit away.

Pipeline:
1. Base gas price from fee-market data (estimated from recent bids when the
   caller supplies none), with a congestion premium
2. Priority multiplier: profit size × time pressure × profit margin (cap 5x)
3. Competitive adjustment: risk × volatility × liquidity depth × congestion (cap 3x)
4. Strategy tier from the combined multiplier
5. Profit protection ceiling:
       budget = profit × max_gas_budget_percent
       (protection on) budget = min(budget, profit - 10% of profit)
       final  = min(recommended, budget)

The ceiling guarantees recommended_gas_price <= profit × max_gas_budget_percent
for every opportunity while bidding is enabled. Non-viable opportunities are
reported through profit_protection.is_viable, never by raising.
"""

import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Deque, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from config.constants import (
    BASE_GAS,
    BID_HISTORY_SIZE,
    BID_STATS_WINDOW,
    MAX_COMPETITIVE_ADJUSTMENT,
    MAX_PRIORITY_MULTIPLIER,
    MIN_PROFIT_RETENTION,
)
from utils.exceptions import DataValidationError
from utils.logger import get_logger


logger = get_logger(__name__)

Risk = Literal['low', 'medium', 'high']
Congestion = Literal['low', 'medium', 'high']
BidStrategy = Literal['conservative', 'moderate', 'aggressive', 'emergency']


class OpportunityMetrics(BaseModel):
    """Immutable description of one opportunity, built per evaluation"""

    model_config = ConfigDict(frozen=True)

    profit_amount_usd: float = Field(ge=0)
    profit_percent: float = Field(description="Profit margin as a fraction, 0.015 == 1.5%")
    time_to_expiration_ms: float = Field(ge=0)
    competitive_risk: Risk = 'medium'
    market_volatility: float = Field(default=0.0, ge=0.0, le=1.0)
    liquidity_depth: float = Field(default=0.0, ge=0)


class GasBiddingConfig(BaseModel):
    enabled: bool = True
    max_gas_budget_percent: float = Field(default=0.15, gt=0.0, le=1.0)
    base_gas_premium: float = Field(default=1.0, gt=0.0)
    competitive_factor: float = Field(default=1.5, ge=1.0)
    emergency_multiplier: float = Field(default=3.0, gt=2.0)
    market_analysis_enabled: bool = True
    profit_protection_enabled: bool = True


@dataclass
class FeeMarketData:
    average_gas_price: float
    fast_gas_price: float
    safe_low_gas_price: float
    network_congestion: Congestion
    recent_transaction_costs: List[float] = field(default_factory=list)
    estimated_confirmation_time_s: float = 30.0


@dataclass
class ProfitProtection:
    is_viable: bool
    max_gas_budget: float
    remaining_profit_after_gas: float


@dataclass
class GasBid:
    recommended_gas_price: float
    max_gas_price: float
    bid_strategy: BidStrategy
    competitive_adjustment: float
    priority_multiplier: float
    profit_protection: ProfitProtection
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _BidRecord:
    timestamp: float
    gas_price: float
    profit_amount: float
    strategy: str
    success: bool = True


class GasBiddingEngine:
    """
    Computes gas bids and keeps a rolling history for market estimation
    and monitoring.
    """

    def __init__(self, config: Optional[GasBiddingConfig] = None):
        self._config = config or GasBiddingConfig()
        self._bids: Deque[_BidRecord] = deque(maxlen=BID_HISTORY_SIZE)
        self._fee_market_history: Deque[FeeMarketData] = deque(maxlen=BID_HISTORY_SIZE)
        self._total_bids = 0
        self._strategy_counts: Dict[str, int] = {
            'conservative': 0, 'moderate': 0, 'aggressive': 0, 'emergency': 0,
        }

        logger.info(
            f"GasBiddingEngine initialized: enabled={self._config.enabled}, "
            f"max budget {self._config.max_gas_budget_percent:.0%} of profit"
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def calculate_gas_bid(
        self,
        metrics: OpportunityMetrics,
        market_data: Optional[FeeMarketData] = None
    ) -> GasBid:
        """
        Recommend a gas price for the opportunity.

        Args:
            metrics: Opportunity being evaluated
            market_data: Current fee market; estimated from history if None

        Returns:
            GasBid; callers must not execute when profit_protection.is_viable is False
        """
        if not self._config.enabled:
            return self._default_bid(metrics)

        try:
            bid = self._calculate(metrics, market_data)
        except (ArithmeticError, ValueError, TypeError) as e:
            logger.error(f"Gas bid calculation failed, using default bid: {e}")
            return self._default_bid(metrics)

        logger.info(
            "Gas bid calculated",
            extra={
                'profit_usd': metrics.profit_amount_usd,
                'gas_price': round(bid.recommended_gas_price, 6),
                'strategy': bid.bid_strategy,
                'viable': bid.profit_protection.is_viable,
            }
        )
        self._record_bid(bid, metrics)
        return bid

    def update_bid_result(self, gas_price: float, success: bool) -> bool:
        """
        Mark the most recent bid at this gas price as succeeded/failed.

        Returns:
            True if a matching bid was found
        """
        for record in reversed(self._bids):
            if abs(record.gas_price - gas_price) < 0.001:
                record.success = success
                logger.debug(f"Updated bid result: gas={gas_price:.4f} success={success}")
                return True
        return False

    def get_bidding_stats(self) -> Dict[str, Any]:
        recent = list(self._bids)[-BID_STATS_WINDOW:]
        count = len(recent)

        return {
            'total_bids': self._total_bids,
            'success_rate': sum(1 for b in recent if b.success) / count if count else 0.0,
            'average_gas_price': sum(b.gas_price for b in recent) / count if count else 0.0,
            'average_profit_amount': sum(b.profit_amount for b in recent) / count if count else 0.0,
            'strategy_distribution': dict(self._strategy_counts),
            'recent_performance': [
                {'timestamp': b.timestamp, 'success': b.success, 'gas_price': b.gas_price}
                for b in recent
            ],
        }

    def update_config(self, **updates: Any) -> GasBiddingConfig:
        """
        Merge a partial update into the live config.

        Unrelated fields keep their values; the merged config is validated
        before it replaces the current one.

        Raises:
            DataValidationError: If a key is unknown or a value out of range
        """
        unknown = set(updates) - set(GasBiddingConfig.model_fields)
        if unknown:
            raise DataValidationError(
                f"Unknown gas bidding option(s): {', '.join(sorted(unknown))}",
                error_code='INVALID_GAS_CONFIG'
            )
        merged = self._config.model_dump()
        merged.update(updates)
        try:
            self._config = GasBiddingConfig(**merged)
        except ValueError as e:
            raise DataValidationError(
                "Invalid gas bidding configuration",
                error_code='INVALID_GAS_CONFIG',
                details={'fields': sorted(updates)},
                original_error=e
            )
        logger.info(f"Gas bidding config updated: {updates}")
        return self._config

    def get_config(self) -> GasBiddingConfig:
        return self._config.model_copy()

    # ========================================================================
    # CALCULATION STEPS
    # ========================================================================

    def _calculate(
        self,
        metrics: OpportunityMetrics,
        market_data: Optional[FeeMarketData]
    ) -> GasBid:
        market = market_data or self.estimate_fee_market()

        base_price = self._base_gas_price(market)
        priority = self._priority_multiplier(metrics)
        competitive = self._competitive_adjustment(metrics, market)
        proposed = base_price * priority * competitive

        protection = self._profit_protection(metrics, proposed)
        strategy = self._bid_strategy(metrics, priority, competitive)
        final_price = max(0.0, min(proposed, protection.max_gas_budget))

        return GasBid(
            recommended_gas_price=final_price,
            max_gas_price=protection.max_gas_budget,
            bid_strategy=strategy,
            competitive_adjustment=competitive,
            priority_multiplier=priority,
            profit_protection=protection,
            reasoning=self._reasoning(metrics, strategy, protection),
        )

    def estimate_fee_market(self) -> FeeMarketData:
        """
        Fee market snapshot derived from recent bid history.

        With market analysis disabled the base gas constant is used with low
        congestion.
        """
        if not self._config.market_analysis_enabled:
            return FeeMarketData(
                average_gas_price=BASE_GAS,
                fast_gas_price=BASE_GAS * 1.5,
                safe_low_gas_price=BASE_GAS * 0.8,
                network_congestion='low',
                recent_transaction_costs=[BASE_GAS],
            )

        load = self._estimate_network_load()
        if load > 0.7:
            congestion = 'high'
        elif load > 0.3:
            congestion = 'medium'
        else:
            congestion = 'low'

        recent_costs = [b.gas_price for b in list(self._bids)[-10:] if b.gas_price > 0]
        market = FeeMarketData(
            average_gas_price=BASE_GAS * (1 + load * 0.5),
            fast_gas_price=BASE_GAS * (1.5 + load * 0.5),
            safe_low_gas_price=BASE_GAS * (0.8 + load * 0.2),
            network_congestion=congestion,
            recent_transaction_costs=recent_costs or [BASE_GAS],
            # 15s baseline, up to 2 minutes under full load
            estimated_confirmation_time_s=min(15 + load * 105, 120),
        )
        self._fee_market_history.append(market)
        return market

    def _estimate_network_load(self) -> float:
        """0-1 load estimate; higher bids and lower success imply a busier network"""
        recent = list(self._bids)[-20:]
        if len(recent) < 5:
            return 0.3

        success_rate = sum(1 for b in recent if b.success) / len(recent)
        avg_gas = sum(b.gas_price for b in recent) / len(recent)
        gas_indicator = min(avg_gas / BASE_GAS - 1, 1.0)
        success_indicator = 1 - success_rate
        return max(0.0, min(1.0, (gas_indicator + success_indicator) / 2))

    @staticmethod
    def _base_gas_price(market: FeeMarketData) -> float:
        price = market.average_gas_price or BASE_GAS
        if market.network_congestion == 'high':
            price *= 1.3
        elif market.network_congestion == 'medium':
            price *= 1.1
        return price

    def _priority_multiplier(self, metrics: OpportunityMetrics) -> float:
        multiplier = self._config.base_gas_premium

        profit = metrics.profit_amount_usd
        if profit >= 1000:
            multiplier *= 2.5
        elif profit >= 100:
            multiplier *= 2.0
        elif profit >= 10:
            multiplier *= 1.5
        else:
            multiplier *= 1.1

        minutes_left = metrics.time_to_expiration_ms / 60000
        if minutes_left < 1:
            multiplier *= self._config.emergency_multiplier
        elif minutes_left < 5:
            multiplier *= 2.0
        elif minutes_left < 15:
            multiplier *= 1.5

        if metrics.profit_percent >= 0.05:
            multiplier *= 1.3
        elif metrics.profit_percent >= 0.02:
            multiplier *= 1.2
        elif metrics.profit_percent >= 0.01:
            multiplier *= 1.1

        return min(multiplier, MAX_PRIORITY_MULTIPLIER)

    def _competitive_adjustment(self, metrics: OpportunityMetrics, market: FeeMarketData) -> float:
        adjustment = 1.0

        if metrics.competitive_risk == 'high':
            adjustment *= self._config.competitive_factor * 1.2
        elif metrics.competitive_risk == 'medium':
            adjustment *= self._config.competitive_factor

        if metrics.market_volatility > 0.3:
            adjustment *= 1.3
        elif metrics.market_volatility > 0.1:
            adjustment *= 1.1

        if metrics.liquidity_depth > 1_000_000:
            adjustment *= 1.2
        elif metrics.liquidity_depth > 100_000:
            adjustment *= 1.1

        if market.network_congestion == 'high':
            adjustment *= 1.4
        elif market.network_congestion == 'medium':
            adjustment *= 1.2

        return min(adjustment, MAX_COMPETITIVE_ADJUSTMENT)

    def _profit_protection(self, metrics: OpportunityMetrics, proposed: float) -> ProfitProtection:
        profit = metrics.profit_amount_usd
        budget = profit * self._config.max_gas_budget_percent

        if self._config.profit_protection_enabled:
            budget = min(budget, profit * (1 - MIN_PROFIT_RETENTION))

        # budget already leaves the retention floor, so remaining >= floor
        spent = max(0.0, min(proposed, budget))
        remaining = profit - spent
        is_viable = budget > 0 and remaining > 0

        return ProfitProtection(
            is_viable=is_viable,
            max_gas_budget=max(0.0, budget),
            remaining_profit_after_gas=remaining,
        )

    @staticmethod
    def _bid_strategy(
        metrics: OpportunityMetrics,
        priority: float,
        competitive: float
    ) -> BidStrategy:
        combined = priority * competitive
        if combined >= 4.0 or metrics.time_to_expiration_ms < 60000:
            return 'emergency'
        if combined >= 2.5 or metrics.competitive_risk == 'high':
            return 'aggressive'
        if combined >= 1.5:
            return 'moderate'
        return 'conservative'

    @staticmethod
    def _reasoning(
        metrics: OpportunityMetrics,
        strategy: str,
        protection: ProfitProtection
    ) -> str:
        reasons = []

        profit = metrics.profit_amount_usd
        if profit >= 1000:
            reasons.append(f"High-value opportunity (${profit:.0f})")
        elif profit >= 100:
            reasons.append(f"Medium-value opportunity (${profit:.0f})")
        else:
            reasons.append(f"Small opportunity (${profit:.2f})")

        minutes_left = metrics.time_to_expiration_ms / 60000
        if minutes_left < 1:
            reasons.append("Critical time pressure (<1 min)")
        elif minutes_left < 5:
            reasons.append("High time pressure (<5 min)")

        if metrics.competitive_risk == 'high':
            reasons.append("High bot competition")
        elif metrics.competitive_risk == 'medium':
            reasons.append("Moderate competition")

        if not protection.is_viable:
            reasons.append("PROTECTED: Gas cost would eliminate profit")
        elif protection.remaining_profit_after_gas < profit * 0.5:
            reasons.append("Gas cost capped to preserve 50%+ profit")

        return f"{strategy.upper()} strategy: {', '.join(reasons)}"

    def _default_bid(self, metrics: OpportunityMetrics) -> GasBid:
        """Fixed conservative bid used when bidding is disabled"""
        return GasBid(
            recommended_gas_price=BASE_GAS,
            max_gas_price=BASE_GAS * 2,
            bid_strategy='conservative',
            competitive_adjustment=1.0,
            priority_multiplier=1.0,
            profit_protection=ProfitProtection(
                is_viable=metrics.profit_amount_usd > BASE_GAS * 2,
                max_gas_budget=BASE_GAS * 2,
                remaining_profit_after_gas=metrics.profit_amount_usd - BASE_GAS,
            ),
            reasoning="Gas bidding disabled - using base gas price",
        )

    def _record_bid(self, bid: GasBid, metrics: OpportunityMetrics) -> None:
        self._bids.append(_BidRecord(
            timestamp=time.time(),
            gas_price=bid.recommended_gas_price,
            profit_amount=metrics.profit_amount_usd,
            strategy=bid.bid_strategy,
        ))
        self._total_bids += 1
        self._strategy_counts[bid.bid_strategy] += 1
