# fi_optimizer/reporting.py - Text and CSV reports for optimization results
import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Mapping

import pandas as pd

from fi_optimizer.models import (
    BUY,
    SELL,
    ImpactMetrics,
    OptimizationResult,
    ScenarioComparison,
    TradeSimulation,
)

logger = logging.getLogger(__name__)

TRADE_COLUMNS = [
    "pair_id", "action", "isin", "name", "credit_rating", "notional", "price",
    "market_value", "market_value_usd", "modified_duration", "yield_to_maturity", "spread_cost",
]


def _fmt_money(x: float) -> str:
    try:
        return f"${float(x):,.0f}"
    except (TypeError, ValueError):
        return "$0"


def _fmt_pct(x: float) -> str:
    """Yields are quoted in percent already (4.25 -> '4.25%')."""
    try:
        return f"{float(x):.2f}%"
    except (TypeError, ValueError):
        return "0.00%"


def trades_to_frame(result: OptimizationResult) -> pd.DataFrame:
    if not result.proposed_trades:
        return pd.DataFrame(columns=TRADE_COLUMNS)
    df = pd.DataFrame([asdict(t) for t in result.proposed_trades])[TRADE_COLUMNS]
    for col in ["notional", "market_value", "market_value_usd", "spread_cost"]:
        df[col] = df[col].round(2)
    return df


def _metrics_block(title: str, m: ImpactMetrics) -> str:
    return (f"{title}:\n"
            f"  Modified Duration: {m.modified_duration:.3f}y\n"
            f"  Duration Gap: {m.duration_gap:+.3f}y\n"
            f"  Tracking Error: {m.tracking_error:.2f} bps\n"
            f"  Average Yield: {_fmt_pct(m.average_yield)}\n"
            f"  Market Value: {_fmt_money(m.portfolio.total_market_value)}")


def generate_result_summary(result: OptimizationResult) -> str:
    """Generate a clean, focused summary of an optimization run"""
    sells = [t for t in result.proposed_trades if t.action == SELL]
    buys = [t for t in result.proposed_trades if t.action == BUY]

    summary = f"""=== PORTFOLIO OPTIMIZATION SUMMARY ===

{_metrics_block("BEFORE", result.before)}

{_metrics_block("AFTER", result.after)}

TRADES:
  Pairs: {len(result.pair_ids)}
  Sold: {_fmt_money(sum(t.market_value_usd for t in sells))}
  Bought: {_fmt_money(sum(t.market_value_usd for t in buys))}

COSTS:
  Fees: {_fmt_money(result.estimated_fee_cost)}
  Bid/Ask Spread: {_fmt_money(result.estimated_spread_cost)}
  Total: {_fmt_money(result.estimated_cost)} ({result.estimated_cost_bps_of_nav:.2f} bps of NAV)

HALT REASON:
  {result.halt_reason}"""

    if result.warnings:
        summary += "\n\nDATA QUALITY WARNINGS:"
        for w in result.warnings:
            summary += f"\n  ! {w.message}"

    return summary


def generate_scenario_summary(comparison: ScenarioComparison) -> str:
    shifts = ", ".join(f"{t} {s:+.0f}bp" for t, s in comparison.shifts.items())
    return (f"=== RATE SCENARIO ({comparison.kind.upper()}) ===\n"
            f"  Shifts: {shifts}\n"
            f"  Portfolio P&L: {_fmt_money(comparison.portfolio.pnl)} "
            f"({comparison.portfolio.pnl_percent:+.2f}%)\n"
            f"  Benchmark P&L: {_fmt_money(comparison.benchmark.pnl)} "
            f"({comparison.benchmark.pnl_percent:+.2f}%)\n"
            f"  Active P&L: {_fmt_money(comparison.active_pnl)}")


def generate_simulation_summary(sim: TradeSimulation) -> str:
    """Before/after view of hypothetical trades, plus the rate scenario when one was run."""
    lines = ["=== TRADE SIMULATION ===", ""]
    for t in sim.trades:
        lines.append(f"  {t.action:<4} {t.isin:<14} {t.notional:>14,.0f} ({_fmt_money(t.market_value_usd)})")
    lines += ["", _metrics_block("BEFORE", sim.before), "", _metrics_block("AFTER", sim.after)]
    if sim.scenario_before is not None and sim.scenario_after is not None:
        lines += [
            "",
            f"SCENARIO ({sim.scenario_before.kind.upper()}):",
            f"  Portfolio P&L before: {_fmt_money(sim.scenario_before.portfolio.pnl)}",
            f"  Portfolio P&L after: {_fmt_money(sim.scenario_after.portfolio.pnl)}",
            f"  Active P&L before: {_fmt_money(sim.scenario_before.active_pnl)}",
            f"  Active P&L after: {_fmt_money(sim.scenario_after.active_pnl)}",
        ]
    return "\n".join(lines)


def generate_report(result: OptimizationResult, output_dir: str, quiet: bool = False) -> None:
    """Write summary.txt, trades.csv, rationale.txt and filtered.csv into ``output_dir``."""
    os.makedirs(output_dir, exist_ok=True)

    with open(os.path.join(output_dir, "summary.txt"), "w") as f:
        f.write(generate_result_summary(result))

    trades_to_frame(result).to_csv(os.path.join(output_dir, "trades.csv"), index=False)

    with open(os.path.join(output_dir, "rationale.txt"), "w") as f:
        f.write(result.rationale)

    if result.filtered_universe is not None:
        result.filtered_universe.to_csv(os.path.join(output_dir, "filtered.csv"), index=False)

    logger.info("Report written to %s", output_dir)
    if not quiet:
        print(f"Report generated: {output_dir}")


def generate_comparison_summary(run_dir: str, results: Mapping[str, OptimizationResult]) -> str:
    """Generate overall run summary for several parameter sets"""
    summary_path = os.path.join(run_dir, "run_summary.txt")
    lines = [
        "PARAMETER SET COMPARISON",
        "=" * 50,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Parameter sets analyzed: {len(results)}",
        "",
        f"{'Set':<14} {'Pairs':>5} {'Gap After':>10} {'TE After':>10} {'Cost':>12}",
        f"{'-' * 14} {'-' * 5} {'-' * 10} {'-' * 10} {'-' * 12}",
    ]
    for label, result in results.items():
        lines.append(f"{label:<14} {len(result.pair_ids):>5} "
                     f"{result.after.duration_gap:>+9.3f}y "
                     f"{result.after.tracking_error:>7.2f}bps "
                     f"{_fmt_money(result.estimated_cost):>12}")
    text = "\n".join(lines) + "\n"

    os.makedirs(run_dir, exist_ok=True)
    with open(summary_path, "w") as f:
        f.write(text)
    logger.info("Run summary saved: %s", summary_path)
    return text
