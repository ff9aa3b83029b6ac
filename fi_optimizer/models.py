# fi_optimizer/models.py
"""
Records exchanged between the engine and its callers.

All records are frozen; a new snapshot is built with ``dataclasses.replace``
rather than by mutating bonds in place. Numeric fields on bond records may
still hold raw text from CSV-origin data; the metrics engine coerces them and
reports what it could not read.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import FrozenSet, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from fi_optimizer.config import BASE_CURRENCY
from fi_optimizer.errors import DataQualityWarning

KRD_TENORS = ("1y", "2y", "3y", "5y", "7y", "10y")
KRD_FIELDS = tuple(f"krd_{t}" for t in KRD_TENORS)
TENOR_YEARS = {"1y": 1.0, "2y": 2.0, "3y": 3.0, "5y": 5.0, "7y": 7.0, "10y": 10.0}

SWITCH = "switch"
BUY_ONLY = "buy-only"
SELL_ONLY = "sell-only"
BUY = "BUY"
SELL = "SELL"


def to_float(x) -> float:
    """Coerce a scalar to float; anything unreadable becomes NaN."""
    if x is None:
        return float("nan")
    try:
        return float(x)
    except (TypeError, ValueError):
        return float(pd.to_numeric(str(x).replace(",", "").strip(), errors="coerce"))


def fx_rate(currency: str, fx_rates: Optional[Mapping[str, float]]) -> float:
    """USD per unit of ``currency``. Missing base currency is 1, other gaps are NaN."""
    rates = fx_rates or {}
    if currency in rates:
        return to_float(rates[currency])
    return 1.0 if currency == BASE_CURRENCY else float("nan")


@dataclass(frozen=True)
class KRDFields:
    krd_1y: float = 0.0
    krd_2y: float = 0.0
    krd_3y: float = 0.0
    krd_5y: float = 0.0
    krd_7y: float = 0.0
    krd_10y: float = 0.0


def krd_vector(entity) -> np.ndarray:
    """Six KRDs as a float vector; unreadable values count as zero."""
    vals = np.array([to_float(getattr(entity, k, 0.0)) for k in KRD_FIELDS], dtype=float)
    return np.nan_to_num(vals, nan=0.0, posinf=0.0, neginf=0.0)


@dataclass(frozen=True)
class BondStaticData(KRDFields):
    isin: str = ""
    name: str = ""
    currency: str = BASE_CURRENCY
    maturity_date: str = ""
    coupon: float = 0.0
    price: float = 0.0  # per 100 face
    yield_to_maturity: float = 0.0
    modified_duration: float = 0.0
    credit_rating: str = "N/A"
    liquidity_score: float = 0.0
    bid_ask_spread: float = 0.0  # % of price
    min_trade_size: Optional[float] = None
    trade_increment: Optional[float] = None


@dataclass(frozen=True)
class Bond(BondStaticData):
    notional: float = 0.0
    market_value: float = 0.0  # local currency
    market_value_usd: float = 0.0
    portfolio_weight: float = 0.0
    duration_contribution: float = 0.0

    @classmethod
    def from_static(cls, static: BondStaticData, notional: float,
                    fx_rates: Optional[Mapping[str, float]] = None) -> Bond:
        """Position on ``static`` with market values derived from notional and price."""
        values = {f.name: getattr(static, f.name) for f in fields(BondStaticData)}
        notional = to_float(notional)
        market_value = notional * to_float(static.price) / 100.0
        return cls(
            **values,
            notional=notional,
            market_value=market_value,
            market_value_usd=market_value * fx_rate(static.currency, fx_rates),
        )

    def static_data(self) -> BondStaticData:
        return BondStaticData(**{f.name: getattr(self, f.name) for f in fields(BondStaticData)})

    def with_weight(self, weight: float) -> Bond:
        return replace(
            self,
            portfolio_weight=weight,
            duration_contribution=to_float(self.modified_duration) * weight,
        )


@dataclass(frozen=True)
class PortfolioHolding:
    isin: str
    notional: float


@dataclass(frozen=True)
class BenchmarkHolding:
    isin: str
    weight: float


@dataclass(frozen=True)
class Portfolio(KRDFields):
    bonds: Tuple[Bond, ...] = ()
    total_market_value: float = 0.0  # USD
    modified_duration: float = 0.0
    average_yield: float = 0.0
    warnings: Tuple[DataQualityWarning, ...] = ()

    @property
    def isins(self) -> FrozenSet[str]:
        return frozenset(b.isin for b in self.bonds)


@dataclass(frozen=True)
class BenchmarkAggregate:
    name: str
    ticker: str
    modified_duration: float


@dataclass(frozen=True)
class Benchmark(KRDFields):
    name: str = ""
    ticker: str = ""
    modified_duration: float = 0.0

    @classmethod
    def from_parts(cls, aggregate: BenchmarkAggregate, krds: KRDFields) -> Benchmark:
        return cls(
            name=aggregate.name,
            ticker=aggregate.ticker,
            modified_duration=aggregate.modified_duration,
            **{k: getattr(krds, k) for k in KRD_FIELDS},
        )


@dataclass(frozen=True)
class OptimizationParams:
    max_duration_shortfall: float
    max_duration_surplus: float
    max_turnover: float  # % of NAV
    transaction_cost: float  # bps per leg
    excluded_bonds: FrozenSet[str] = frozenset()
    mode: str = SWITCH
    investment_horizon_limit: float = 10.0  # years
    minimum_purchase_rating: str = "BB-"
    is_targeting_mode: bool = False
    target_duration_gap: Optional[float] = None

    @property
    def target_gap(self) -> float:
        """Centre of the tolerance band."""
        if self.is_targeting_mode and self.target_duration_gap is not None:
            return float(self.target_duration_gap)
        return 0.0


@dataclass(frozen=True)
class ProposedTrade:
    action: str
    isin: str
    name: str
    notional: float
    market_value: float  # local currency
    market_value_usd: float
    price: float
    modified_duration: float
    yield_to_maturity: float
    pair_id: int
    spread_cost: float  # USD
    credit_rating: str


@dataclass(frozen=True)
class ImpactMetrics:
    modified_duration: float
    duration_gap: float
    tracking_error: float
    average_yield: float
    portfolio: Portfolio


@dataclass(frozen=True)
class CostBreakdown:
    fee_cost: float = 0.0
    spread_cost: float = 0.0
    total_cost: float = 0.0
    cost_bps_of_nav: float = 0.0
    aggregate_fee_bps: float = 0.0


@dataclass(frozen=True)
class OptimizationResult:
    proposed_trades: Tuple[ProposedTrade, ...]
    before: ImpactMetrics
    after: ImpactMetrics
    costs: CostBreakdown = field(default_factory=CostBreakdown)
    rationale: str = ""
    trace: Tuple[str, ...] = ()
    halt_reason: str = ""
    iterations: int = 0
    warnings: Tuple[DataQualityWarning, ...] = ()
    # bonds left out of the buy universe, with Reason_Filtered
    filtered_universe: Optional[pd.DataFrame] = field(default=None, compare=False, repr=False)

    @property
    def estimated_fee_cost(self) -> float:
        return self.costs.fee_cost

    @property
    def estimated_spread_cost(self) -> float:
        return self.costs.spread_cost

    @property
    def estimated_cost(self) -> float:
        return self.costs.total_cost

    @property
    def estimated_cost_bps_of_nav(self) -> float:
        return self.costs.cost_bps_of_nav

    @property
    def pair_ids(self) -> Tuple[int, ...]:
        return tuple(sorted({t.pair_id for t in self.proposed_trades}))


@dataclass(frozen=True)
class TradeSelectionImpact:
    active_trades: Tuple[ProposedTrade, ...]
    after: ImpactMetrics
    costs: CostBreakdown


@dataclass(frozen=True)
class ScenarioPnl:
    pnl: float = 0.0
    pnl_percent: float = 0.0


@dataclass(frozen=True)
class ScenarioComparison:
    kind: str
    shifts: Mapping[str, float]
    portfolio: ScenarioPnl
    benchmark: ScenarioPnl

    @property
    def active_pnl(self) -> float:
        return self.portfolio.pnl - self.benchmark.pnl


@dataclass(frozen=True)
class TradeSimulation:
    """Hypothetical trades applied to a portfolio, with the rate scenario before and after."""

    trades: Tuple[ProposedTrade, ...]
    before: ImpactMetrics
    after: ImpactMetrics
    scenario_before: Optional[ScenarioComparison] = None
    scenario_after: Optional[ScenarioComparison] = None
