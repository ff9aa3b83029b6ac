# fi_optimizer/optimizer.py
"""
Greedy switch optimizer for duration-gap breaches and tracking error.

Each iteration shortlists sell and buy candidates by modified duration, sizes
every sell x buy pair, simulates it (trade application + re-aggregation) and
commits the best-scoring pair if its score is strictly positive:

1. In breach: score = reduction of the distance outside the duration band.
2. Within the band: a pair that creates a breach is rejected; otherwise
   score = weighted tracking-error improvement - penalty for yield given up.

The loop stops when the portfolio is acceptable, candidates run out, the
turnover budget is spent, no pair scores above zero, the caller cancels, or
the iteration cap / wall-clock budget is hit. Every stop and every commit
leaves a line in the rationale trace.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from tqdm import tqdm

from fi_optimizer.config import DEFAULT_CONFIG, OptimizerConfig
from fi_optimizer.errors import DataQualityWarning, OptimizationError, OptimizerError, UnsupportedModeError
from fi_optimizer.metrics import compute_metrics, impact_metrics, tracking_error
from fi_optimizer.models import (
    BUY,
    SELL,
    SWITCH,
    Benchmark,
    Bond,
    BondStaticData,
    CostBreakdown,
    OptimizationParams,
    OptimizationResult,
    Portfolio,
    ProposedTrade,
    TradeSelectionImpact,
    fx_rate,
    to_float,
)
from fi_optimizer.trades import apply_trades, create_trade, estimate_costs, round_to_increment, trade_constraints
from fi_optimizer.universe import select_buy_universe, sell_eligible

logger = logging.getLogger(__name__)

# Halt reasons
HALT_ACCEPTABLE = ("The portfolio is already acceptable: the duration gap is within limits "
                   "and tracking error is already minimal.")
HALT_NO_BUYS = "There were no eligible purchase candidates left in the bond universe."
HALT_NO_SELLS = "There were no eligible bonds available to sell."
HALT_NO_IMPROVEMENT = "No further beneficial trades could be found to improve the portfolio's risk profile."
HALT_MAX_ITERATIONS = "The maximum number of iterations was reached."
HALT_CANCELLED = "The optimization was cancelled by the caller."


def breach_distance(gap: float, max_shortfall: float, max_surplus: float) -> float:
    """How far ``gap`` lies outside the asymmetric tolerance band (0 inside it)."""
    return max(0.0, -gap - max_shortfall, gap - max_surplus)


def validate_params(params: OptimizationParams) -> None:
    """Caller-side check that every scalar input is a non-negative number."""
    bad = []
    for name in ("max_duration_shortfall", "max_duration_surplus", "max_turnover",
                 "transaction_cost", "investment_horizon_limit"):
        value = to_float(getattr(params, name))
        if not math.isfinite(value) or value < 0:
            bad.append(f"{name}={getattr(params, name)!r}")
    if params.is_targeting_mode and not math.isfinite(to_float(params.target_duration_gap)):
        bad.append(f"target_duration_gap={params.target_duration_gap!r}")
    if bad:
        raise ValueError("Optimization parameters must be non-negative numbers: " + ", ".join(bad))


@dataclass(frozen=True)
class _PairCandidate:
    sell: ProposedTrade
    buy: ProposedTrade
    score: float
    after: Portfolio
    breach: float
    tracking_error: float


def _unit_value(bond: BondStaticData, fx_rates) -> float:
    """USD market value of one unit of face."""
    return to_float(bond.price) / 100.0 * fx_rate(bond.currency, fx_rates)


def _by_duration(bonds: Iterable[BondStaticData], ascending: bool, top_n: int) -> List[BondStaticData]:
    sign = 1.0 if ascending else -1.0
    return sorted(bonds, key=lambda b: (sign * to_float(b.modified_duration), b.isin))[:top_n]


def _size_pair(
        sell: Bond,
        buy: BondStaticData,
        *,
        in_breach: bool,
        breach: float,
        nav: float,
        remaining_budget: float,
        config: OptimizerConfig,
        fx_rates,
) -> Optional[Tuple[float, float]]:
    """(sell_notional, buy_notional) for a pair, or None if it cannot be traded."""
    sell_px = _unit_value(sell, fx_rates)
    buy_px = _unit_value(buy, fx_rates)
    held = to_float(sell.notional)
    held_mv = held * sell_px
    min_sell, inc_sell = trade_constraints(sell)
    min_buy, inc_buy = trade_constraints(buy)

    if in_breach:
        # market value that closes the remaining gap in one trade
        diff = to_float(buy.modified_duration) - to_float(sell.modified_duration)
        ideal_mv = abs(breach * nav / diff)
        cap_mv = min(remaining_budget, held_mv)
        min_mv = max(min_sell * sell_px, min_buy * buy_px)
        if min_mv > cap_mv:
            return None
        trade_mv = min(max(ideal_mv, min_mv), cap_mv)
    else:
        trade_mv = min(remaining_budget * config.exploratory_turnover_fraction, held_mv)

    if not trade_mv > 0:
        return None

    sell_notional = round_to_increment(min(trade_mv / sell_px, held), inc_sell)
    if sell_notional < min_sell or sell_notional <= 0:
        return None

    buy_notional = round_to_increment(sell_notional * sell_px / buy_px, inc_buy)
    if buy_notional < min_buy or buy_notional <= 0:
        return None

    return sell_notional, buy_notional


def _empty_result(before, trace, halt_reason, iterations, warnings, filtered=None) -> OptimizationResult:
    rationale = f"No trades were proposed. {halt_reason}"
    if trace:
        rationale += "\n\n" + "\n".join(trace)
    return OptimizationResult(
        proposed_trades=(),
        before=before,
        after=before,
        costs=CostBreakdown(),
        rationale=rationale,
        trace=tuple(trace),
        halt_reason=halt_reason,
        iterations=iterations,
        warnings=tuple(warnings),
        filtered_universe=filtered,
    )


def run_optimizer(
        portfolio: Portfolio,
        benchmark: Benchmark,
        params: OptimizationParams,
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
        config: Optional[OptimizerConfig] = None,
        as_of: Optional[date] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
) -> OptimizationResult:
    """
    Propose switch trades (sell + buy pairs) that bring the portfolio's
    duration gap back inside its band and then reduce tracking error.

    ``bond_master`` is read-only for the whole run. ``should_cancel`` is
    polled once per iteration. Raises UnsupportedModeError for single-leg
    modes and OptimizationError for any unexpected internal failure.
    """
    if params.mode != SWITCH:
        raise UnsupportedModeError(params.mode)

    try:
        return _run_switch(
            portfolio, benchmark, params, bond_master,
            fx_rates or {}, config or DEFAULT_CONFIG, as_of or date.today(), should_cancel,
        )
    except OptimizerError:
        raise
    except Exception as e:
        logger.exception("Critical error in optimizer")
        raise OptimizationError("The optimization engine failed.", cause=e) from e


def _run_switch(
        portfolio: Portfolio,
        benchmark: Benchmark,
        params: OptimizationParams,
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Mapping[str, float],
        config: OptimizerConfig,
        as_of: date,
        should_cancel: Optional[Callable[[], bool]],
) -> OptimizationResult:
    # --- 1. SETUP ---
    before = impact_metrics(portfolio, benchmark)
    benchmark_duration = to_float(benchmark.modified_duration)
    target = params.target_gap
    shortfall = to_float(params.max_duration_shortfall)
    surplus = to_float(params.max_duration_surplus)

    def gap_of(p: Portfolio) -> float:
        return p.modified_duration - benchmark_duration - target

    initial_breach = breach_distance(gap_of(portfolio), shortfall, surplus)

    universe = select_buy_universe(bond_master, portfolio.isins, params, as_of, fx_rates)
    buy_universe: List[BondStaticData] = list(universe.candidates)
    warnings = list(portfolio.warnings) + list(universe.warnings)
    unreadable_spread = sorted(
        b.isin for b in list(portfolio.bonds) + buy_universe
        if not math.isfinite(to_float(b.bid_ask_spread))
    )
    if unreadable_spread:
        warnings.append(DataQualityWarning(
            field="bid_ask_spread",
            message=(f"Bid/ask spread could not be read for {len(unreadable_spread)} bond(s) "
                     f"({', '.join(unreadable_spread[:5])}); spread cost counted as zero."),
            isins=tuple(unreadable_spread),
        ))
        logger.warning(warnings[-1].message)

    trace: List[str] = [
        f"Setup: duration gap {before.duration_gap:+.3f}y vs band "
        f"[-{shortfall:g}, +{surplus:g}]y around {target:+g}y, "
        f"tracking error {before.tracking_error:.2f} bps, "
        f"{len(buy_universe)} eligible purchase candidate(s)."
    ]
    if not buy_universe:
        trace.append("No eligible purchase candidates passed the maturity horizon, rating and data filters.")

    nav = portfolio.total_market_value
    max_trade_value = to_float(params.max_turnover) / 100.0 * nav
    working = portfolio
    proposed: List[ProposedTrade] = []
    total_traded = 0.0
    pair_id = 0
    iterations = 0
    halt_reason = HALT_MAX_ITERATIONS
    started = time.monotonic()

    # --- 2. SEARCH ---
    if not max_trade_value > 0:
        if initial_breach > 0:
            halt_reason = (f"The turnover budget is zero, so the duration breach of "
                           f"{initial_breach:.3f} years cannot be corrected.")
        else:
            halt_reason = "The turnover budget is zero, so no trades are allowed."
        trace.append(f"Halt: {halt_reason}")
    else:
        for iteration in tqdm(range(config.max_iterations), desc="Optimizing", unit="iter",
                              disable=not config.show_progress):
            if should_cancel is not None and should_cancel():
                halt_reason = HALT_CANCELLED
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break
            budget_s = config.wall_clock_budget_seconds
            if budget_s is not None and time.monotonic() - started > budget_s:
                halt_reason = f"The wall-clock budget of {budget_s:g}s was exhausted."
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break
            if total_traded >= max_trade_value:
                break

            gap = gap_of(working)
            current_te = tracking_error(working, benchmark)
            current_breach = breach_distance(gap, shortfall, surplus)
            in_breach = current_breach > 0

            if not in_breach and current_te < config.tracking_error_epsilon_bps:
                halt_reason = HALT_ACCEPTABLE
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break

            sellable = sell_eligible(working.bonds, params.excluded_bonds, fx_rates)
            if not buy_universe:
                halt_reason = HALT_NO_BUYS
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break
            if not sellable:
                halt_reason = HALT_NO_SELLS
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break

            # short duration: sell low-duration bonds, buy high-duration ones
            needs_increase = gap < 0
            sell_candidates = _by_duration(sellable, needs_increase, config.top_n_candidates)
            buy_candidates = _by_duration(buy_universe, not needs_increase, config.top_n_candidates)
            remaining = max_trade_value - total_traded

            best: Optional[_PairCandidate] = None
            for sell_bond in sell_candidates:
                for buy_bond in buy_candidates:
                    diff = to_float(buy_bond.modified_duration) - to_float(sell_bond.modified_duration)
                    if abs(diff) < config.degenerate_duration_epsilon:
                        continue
                    if in_breach and ((needs_increase and diff <= 0) or (not needs_increase and diff >= 0)):
                        continue  # wrong direction

                    sizing = _size_pair(
                        sell_bond, buy_bond,
                        in_breach=in_breach, breach=current_breach, nav=working.total_market_value,
                        remaining_budget=remaining, config=config, fx_rates=fx_rates,
                    )
                    if sizing is None:
                        continue
                    sell_notional, buy_notional = sizing

                    sell_trade = create_trade(SELL, sell_bond, sell_notional, pair_id, fx_rates)
                    buy_trade = create_trade(BUY, buy_bond, buy_notional, pair_id, fx_rates)
                    after = compute_metrics(apply_trades(
                        working.bonds, [sell_trade, buy_trade], bond_master, fx_rates, config.dust_notional,
                    ))
                    new_breach = breach_distance(gap_of(after), shortfall, surplus)
                    new_te = tracking_error(after, benchmark)

                    if in_breach:
                        score = current_breach - new_breach
                    elif new_breach > 0:
                        score = -math.inf
                    else:
                        yield_given_up = max(0.0, working.average_yield - after.average_yield)
                        score = (config.tracking_error_weight * (current_te - new_te)
                                 - config.yield_penalty_weight * yield_given_up)

                    if math.isnan(score):
                        continue
                    logger.debug("Pair %s -> %s: score %.6f", sell_bond.isin, buy_bond.isin, score)

                    if best is None or score > best.score:
                        best = _PairCandidate(sell_trade, buy_trade, score, after, new_breach, new_te)

            if best is None or not best.score > 0:
                halt_reason = HALT_NO_IMPROVEMENT
                trace.append(f"Iteration {iteration + 1}: {halt_reason}")
                break

            # --- commit ---
            proposed.extend([best.sell, best.buy])
            total_traded += best.sell.market_value_usd
            working = best.after
            buy_universe = [b for b in buy_universe if b.isin != best.buy.isin]
            iterations += 1

            if in_breach:
                effect = f"breach {current_breach:.3f}y -> {best.breach:.3f}y"
            else:
                effect = f"tracking error {current_te:.2f} -> {best.tracking_error:.2f} bps"
            trace.append(
                f"Iteration {iteration + 1}: sell {best.sell.notional:,.0f} {best.sell.isin} "
                f"({best.sell.modified_duration:.2f}y) / buy {best.buy.notional:,.0f} {best.buy.isin} "
                f"({best.buy.modified_duration:.2f}y); {effect}; score {best.score:.4f}."
            )
            logger.info("Committed pair %d: %s -> %s (score %.4f)",
                        pair_id, best.sell.isin, best.buy.isin, best.score)
            pair_id += 1

        if max_trade_value > 0 and total_traded >= max_trade_value:
            halt_reason = f"The turnover limit of {to_float(params.max_turnover):g}% was reached."
            trace.append(f"Halt: {halt_reason}")

    logger.info("Optimizer halted after %d iteration(s): %s", iterations, halt_reason)

    # --- 3. FINALIZATION ---
    if not proposed:
        return _empty_result(before, trace, halt_reason, iterations, warnings, universe.filtered)

    after_metrics = impact_metrics(working, benchmark)
    costs = estimate_costs(proposed, to_float(params.transaction_cost), nav)

    summary = (f"The optimizer identified {len(proposed)} trade(s) over {iterations} iteration(s) "
               f"to improve the portfolio's risk profile.\n\n")
    if initial_breach > 0:
        summary += (f"The primary objective was to correct the duration gap, which was in breach by "
                    f"{initial_breach:,.2f} years. The secondary objective was to then improve tracking error.\n\n")
    else:
        summary += (f"The primary objective was to reduce tracking error from "
                    f"{before.tracking_error:,.2f} bps while respecting all risk limits.\n\n")
    summary += f"The process concluded because: {halt_reason}"

    return OptimizationResult(
        proposed_trades=tuple(proposed),
        before=before,
        after=after_metrics,
        costs=costs,
        rationale=summary + "\n\n" + "\n".join(trace),
        trace=tuple(trace),
        halt_reason=halt_reason,
        iterations=iterations,
        warnings=tuple(warnings),
        filtered_universe=universe.filtered,
    )


def evaluate_trade_selection(
        result: OptimizationResult,
        benchmark: Benchmark,
        active_pair_ids: Iterable[int],
        params: OptimizationParams,
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
) -> TradeSelectionImpact:
    """After-state and costs when only some of the proposed pairs are executed."""
    active_ids = set(active_pair_ids)
    active = tuple(t for t in result.proposed_trades if t.pair_id in active_ids)
    if not active:
        return TradeSelectionImpact((), result.before, CostBreakdown())

    start = result.before.portfolio
    after = compute_metrics(apply_trades(start.bonds, active, bond_master, fx_rates))
    return TradeSelectionImpact(
        active_trades=active,
        after=impact_metrics(after, benchmark),
        costs=estimate_costs(active, to_float(params.transaction_cost), start.total_market_value),
    )


def compare_parameter_sets(
        portfolio: Portfolio,
        benchmark: Benchmark,
        param_sets: Mapping[str, OptimizationParams],
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
        config: Optional[OptimizerConfig] = None,
        as_of: Optional[date] = None,
        max_workers: Optional[int] = None,
) -> Dict[str, OptimizationResult]:
    """Run independent optimizations side by side. Results keep the input order."""
    as_of = as_of or date.today()
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            label: pool.submit(run_optimizer, portfolio, benchmark, params, bond_master,
                               fx_rates, config, as_of)
            for label, params in param_sets.items()
        }
        return {label: future.result() for label, future in futures.items()}


def params_from_preset(preset: Mapping, **overrides) -> OptimizationParams:
    """OptimizationParams from a PARAMETER_PRESETS entry, with keyword overrides."""
    names = {f.name for f in fields(OptimizationParams)}
    values = {k: v for k, v in preset.items() if k in names}
    values.update(overrides)
    if "excluded_bonds" in values:
        values["excluded_bonds"] = frozenset(values["excluded_bonds"])
    return OptimizationParams(**values)
