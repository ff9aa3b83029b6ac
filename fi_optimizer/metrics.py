# fi_optimizer/metrics.py - Portfolio aggregation, tracking error, benchmark KRDs
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from fi_optimizer.errors import DataQualityWarning
from fi_optimizer.models import (
    KRD_FIELDS,
    Benchmark,
    BenchmarkAggregate,
    BenchmarkHolding,
    Bond,
    BondStaticData,
    ImpactMetrics,
    KRDFields,
    Portfolio,
    PortfolioHolding,
    krd_vector,
    to_float,
)

logger = logging.getLogger(__name__)

# Aggregated field -> label used in warnings
AGGREGATE_FIELDS = {
    "modified_duration": "modified duration",
    "yield_to_maturity": "average yield",
    **{k: f"KRD {k.split('_', 1)[1]}" for k in KRD_FIELDS},
}


def _isin_list(isins: Sequence[str], limit: int = 5) -> str:
    shown = ", ".join(isins[:limit])
    return shown + (f" (+{len(isins) - limit} more)" if len(isins) > limit else "")


def build_portfolio(
        holdings: Sequence[PortfolioHolding],
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
) -> List[Bond]:
    """
    Turn holdings into unweighted Bond positions using bond master static data.
    Holdings without master data are skipped. Run compute_metrics on the result.
    """
    bonds = []
    for holding in holdings:
        static = bond_master.get(holding.isin)
        if static is None:
            logger.warning("Master data not found for ISIN %s. Skipping holding.", holding.isin)
            continue
        bonds.append(Bond.from_static(static, holding.notional, fx_rates))
    return bonds


def _column(bonds: Sequence[Bond], name: str) -> np.ndarray:
    return np.array([to_float(getattr(b, name)) for b in bonds], dtype=float)


def compute_metrics(bonds: Sequence[Bond], log_level: int = logging.DEBUG) -> Portfolio:
    """
    Aggregate bonds into a market-value-weighted Portfolio.

    Weights are marketValueUSD / total. An aggregate that comes out NaN
    (non-numeric source fields) is replaced by 0 and reported as a
    DataQualityWarning instead of propagating. Warnings are logged at
    ``log_level``: DEBUG by default since the optimizer re-aggregates on every
    simulated pair, WARNING when checking input portfolios.
    """
    warnings: List[DataQualityWarning] = []
    if not bonds:
        return Portfolio()

    isin_arr = np.array([str(b.isin) for b in bonds], dtype=object)
    mv = _column(bonds, "market_value_usd")

    bad_mv = ~np.isfinite(mv)
    if bad_mv.any():
        isins = isin_arr[bad_mv].tolist()
        warnings.append(DataQualityWarning(
            field="market_value_usd",
            message=(f"Market value could not be computed for {_isin_list(isins)} "
                     f"(non-numeric price, notional or FX rate); excluded from weights."),
            isins=tuple(isins),
        ))
        mv = np.where(bad_mv, 0.0, mv)

    total = float(mv.sum())
    if total == 0:
        warnings.append(DataQualityWarning(
            field="total_market_value",
            message=(f"Total market value of {len(bonds)} position(s) is zero; "
                     f"portfolio metrics are reported as zero."),
        ))
        for w in warnings:
            logger.log(log_level, w.message)
        return Portfolio(warnings=tuple(warnings))

    weights = mv / total
    aggregates: Dict[str, float] = {}
    for col, label in AGGREGATE_FIELDS.items():
        values = _column(bonds, col)
        # zero-weight rows never poison an aggregate
        with np.errstate(invalid="ignore"):
            contrib = np.where(weights != 0, values * weights, 0.0)
        value = float(contrib.sum())
        if not np.isfinite(value):
            isins = isin_arr[~np.isfinite(contrib)].tolist()
            warnings.append(DataQualityWarning(
                field=col,
                message=(f"Aggregate {label} could not be computed because of "
                         f"non-numeric values for {_isin_list(isins)}; defaulted to 0."),
                isins=tuple(isins),
            ))
            value = 0.0
        aggregates[col] = value

    for w in warnings:
        logger.log(log_level, w.message)

    weighted = tuple(b.with_weight(float(w)) for b, w in zip(bonds, weights))
    return Portfolio(
        bonds=weighted,
        total_market_value=total,
        modified_duration=aggregates["modified_duration"],
        average_yield=aggregates["yield_to_maturity"],
        warnings=tuple(warnings),
        **{k: aggregates[k] for k in KRD_FIELDS},
    )


def tracking_error(portfolio_krds, benchmark_krds) -> float:
    """Euclidean distance between the two KRD vectors, in bps."""
    diff = krd_vector(portfolio_krds) - krd_vector(benchmark_krds)
    return float(np.sqrt(np.sum(diff * diff)) * 100.0)


def build_benchmark_krds(
        holdings: Sequence[BenchmarkHolding],
        bond_master: Mapping[str, BondStaticData],
) -> KRDFields:
    """Holding-weighted constituent KRDs, normalised by total weight."""
    if not holdings:
        return KRDFields()

    weights = np.array([to_float(h.weight) for h in holdings], dtype=float)
    weights = np.nan_to_num(weights, nan=0.0)
    total_weight = float(weights.sum())
    if total_weight == 0:
        return KRDFields()

    weighted = np.zeros(len(KRD_FIELDS))
    for holding, weight in zip(holdings, weights):
        static = bond_master.get(holding.isin)
        if static is None or weight == 0:
            continue
        weighted += krd_vector(static) * weight

    # weights may sum to 1, 100 or anything else
    weighted /= total_weight
    return KRDFields(**{k: float(v) for k, v in zip(KRD_FIELDS, weighted)})


def build_benchmark(
        aggregate: BenchmarkAggregate,
        holdings: Sequence[BenchmarkHolding],
        bond_master: Mapping[str, BondStaticData],
) -> Benchmark:
    return Benchmark.from_parts(aggregate, build_benchmark_krds(holdings, bond_master))


def impact_metrics(portfolio: Portfolio, benchmark: Benchmark) -> ImpactMetrics:
    return ImpactMetrics(
        modified_duration=portfolio.modified_duration,
        duration_gap=portfolio.modified_duration - to_float(benchmark.modified_duration),
        tracking_error=tracking_error(portfolio, benchmark),
        average_yield=portfolio.average_yield,
        portfolio=portfolio,
    )
