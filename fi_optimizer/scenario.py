# fi_optimizer/scenario.py - Rate scenario repricing
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from fi_optimizer.config import SHIFT_KINDS, SHIFT_PRESETS
from fi_optimizer.metrics import compute_metrics, impact_metrics
from fi_optimizer.models import (
    KRD_TENORS,
    TENOR_YEARS,
    Benchmark,
    BondStaticData,
    Portfolio,
    ProposedTrade,
    ScenarioComparison,
    ScenarioPnl,
    TradeSimulation,
    krd_vector,
    to_float,
)
from fi_optimizer.trades import apply_trades


def _shift_vector(shift_by_tenor: Mapping[str, float]) -> np.ndarray:
    """Per-tenor shifts in bps, missing tenors are zero."""
    unknown = set(shift_by_tenor) - set(KRD_TENORS)
    if unknown:
        raise ValueError(f"Unknown tenor(s) in rate shift: {sorted(unknown)}")
    return np.array([float(shift_by_tenor.get(t, 0.0) or 0.0) for t in KRD_TENORS], dtype=float)


def _price_change_dollar(market_value: float, duration_years: float, shift_bps: float) -> float:
    """First-order price change in dollars for a parallel rate shift"""
    dy = shift_bps / 10000.0
    return float(-market_value * duration_years * dy)


def scenario_pnl(
        entity,
        shift_by_tenor: Mapping[str, float],
        reference_market_value: float,
        kind: str = "custom",
) -> ScenarioPnl:
    """
    Estimated P&L of a Portfolio or Benchmark under a rate shift.

    ``kind == "parallel"`` reprices with modified duration and needs the same
    shift on every tenor. Every other kind (steepener, flattener, custom) uses
    the per-tenor KRDs: pnl = -MV * sum(KRD_t * shift_t / 10000).

    Benchmarks carry no market value, so ``reference_market_value`` (normally
    the portfolio's total) is used for them; a Portfolio uses its own total.
    """
    if kind not in SHIFT_KINDS:
        raise ValueError(f"Unknown shift kind '{kind}'. Available: {list(SHIFT_KINDS)}")

    shifts = _shift_vector(shift_by_tenor)
    if isinstance(entity, Portfolio):
        market_value = entity.total_market_value
    else:
        market_value = to_float(reference_market_value)

    if not market_value or not np.isfinite(market_value):
        return ScenarioPnl(0.0, 0.0)

    if kind == "parallel":
        if not np.allclose(shifts, shifts[0]):
            raise ValueError("A parallel shift needs the same bps move on every tenor.")
        duration = to_float(entity.modified_duration)
        pnl = _price_change_dollar(market_value, 0.0 if np.isnan(duration) else duration, shifts[0])
    else:
        pnl = float(-market_value * np.sum(krd_vector(entity) * shifts / 10000.0))

    pnl = pnl + 0.0  # normalise -0.0
    return ScenarioPnl(pnl=pnl, pnl_percent=pnl / market_value * 100.0)


def build_shift_curve(
        kind: str,
        shift_bps: Optional[float] = None,
        short_bps: Optional[float] = None,
        long_bps: Optional[float] = None,
        custom: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """
    Per-tenor shifts for a scenario kind.

    Steepeners and flatteners interpolate linearly in tenor years between the
    short (1y) and long (10y) end. Missing inputs fall back to SHIFT_PRESETS.
    """
    if kind == "parallel":
        shift = SHIFT_PRESETS["parallel"]["shift_bps"] if shift_bps is None else shift_bps
        return {t: float(shift) for t in KRD_TENORS}

    if kind in ("steepener", "flattener"):
        preset = SHIFT_PRESETS[kind]
        short = preset["short_bps"] if short_bps is None else short_bps
        long_ = preset["long_bps"] if long_bps is None else long_bps
        lo, hi = TENOR_YEARS[KRD_TENORS[0]], TENOR_YEARS[KRD_TENORS[-1]]
        return {
            t: float(short + (TENOR_YEARS[t] - lo) / (hi - lo) * (long_ - short))
            for t in KRD_TENORS
        }

    if kind == "custom":
        custom = custom or {}
        _shift_vector(custom)
        return {t: float(custom.get(t, 0.0)) for t in KRD_TENORS}

    raise ValueError(f"Unknown shift kind '{kind}'. Available: {list(SHIFT_KINDS)}")


def run_rate_scenario(
        portfolio: Portfolio,
        benchmark: Benchmark,
        shift_by_tenor: Mapping[str, float],
        kind: str,
) -> ScenarioComparison:
    """Portfolio vs benchmark P&L on the portfolio's notional base."""
    shifts = {t: float(shift_by_tenor.get(t, 0.0)) for t in KRD_TENORS}
    return ScenarioComparison(
        kind=kind,
        shifts=shifts,
        portfolio=scenario_pnl(portfolio, shifts, portfolio.total_market_value, kind),
        benchmark=scenario_pnl(benchmark, shifts, portfolio.total_market_value, kind),
    )


def simulate_trades(
        portfolio: Portfolio,
        benchmark: Benchmark,
        trades: Sequence[ProposedTrade],
        bond_master: Mapping[str, BondStaticData],
        shift_by_tenor: Optional[Mapping[str, float]] = None,
        kind: str = "custom",
        fx_rates: Optional[Mapping[str, float]] = None,
) -> TradeSimulation:
    """
    Apply hypothetical trades and compare the book before and after.

    With ``shift_by_tenor`` the rate scenario is run on both the current and
    the simulated portfolio, each on its own market value base.
    """
    after = compute_metrics(apply_trades(portfolio.bonds, trades, bond_master, fx_rates))
    scenario_before = scenario_after = None
    if shift_by_tenor is not None:
        scenario_before = run_rate_scenario(portfolio, benchmark, shift_by_tenor, kind)
        scenario_after = run_rate_scenario(after, benchmark, shift_by_tenor, kind)
    return TradeSimulation(
        trades=tuple(trades),
        before=impact_metrics(portfolio, benchmark),
        after=impact_metrics(after, benchmark),
        scenario_before=scenario_before,
        scenario_after=scenario_after,
    )
