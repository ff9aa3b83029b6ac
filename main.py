# main.py - Portfolio rebalancing CLI
import argparse
import logging
import os
import sys
from datetime import datetime

from fi_optimizer.config import PARAMETER_PRESETS, SHIFT_KINDS, OptimizerConfig
from fi_optimizer.data_handler import (
    benchmark_holdings_from_frame,
    bond_master_from_frame,
    fx_rates_from_pairs,
    holdings_from_frame,
    load_table,
    trades_from_specs,
)
from fi_optimizer.errors import OptimizerError
from fi_optimizer.metrics import build_benchmark, build_portfolio, compute_metrics
from fi_optimizer.models import BenchmarkAggregate
from fi_optimizer.optimizer import (
    compare_parameter_sets,
    params_from_preset,
    run_optimizer,
    validate_params,
)
from fi_optimizer.reporting import (
    generate_comparison_summary,
    generate_report,
    generate_result_summary,
    generate_scenario_summary,
    generate_simulation_summary,
)
from fi_optimizer.scenario import build_shift_curve, run_rate_scenario, simulate_trades


def _mkdir(path: str) -> str:
    os.makedirs(path, exist_ok=True)
    return path


def _show_presets():
    """Show the parameter presets without running anything"""
    print("\n" + "=" * 60)
    print("PARAMETER PRESETS")
    print("=" * 60)
    for name, preset in PARAMETER_PRESETS.items():
        print(f"\n{name.upper()}:")
        print(f"  {preset['description']}")
        print(f"  Band: -{preset['max_duration_shortfall']}y / +{preset['max_duration_surplus']}y")
        print(f"  Turnover: {preset['max_turnover']:.1f}% | Cost: {preset['transaction_cost']:.0f} bps/leg")
        print(f"  Horizon: {preset['investment_horizon_limit']:.0f}y | Min rating: {preset['minimum_purchase_rating']}")


def _params_from_args(args, preset_name: str):
    overrides = {}
    for name in ("max_duration_shortfall", "max_duration_surplus", "max_turnover",
                 "transaction_cost", "investment_horizon_limit", "minimum_purchase_rating"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    if args.target_gap is not None:
        overrides["is_targeting_mode"] = True
        overrides["target_duration_gap"] = args.target_gap
    overrides["excluded_bonds"] = args.exclude or []
    return params_from_preset(PARAMETER_PRESETS[preset_name], **overrides)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fixed Income Portfolio Optimizer")
    parser.add_argument("--master", help="Bond master file (parquet, xlsx or csv)")
    parser.add_argument("--holdings", help="Portfolio holdings file (ISIN, notional)")
    parser.add_argument("--benchmark-holdings", help="Benchmark constituents file (ISIN, weight)")
    parser.add_argument("--benchmark-name", default="Benchmark")
    parser.add_argument("--ticker", default="")
    parser.add_argument("--benchmark-duration", type=float, help="Benchmark modified duration (years)")
    parser.add_argument("--fx", nargs="*", metavar="CCY=RATE", help="USD per unit of currency, e.g. EUR=1.08")
    parser.add_argument("--as-of", help="Valuation date YYYY-MM-DD (default: today)")

    parser.add_argument("--preset", choices=list(PARAMETER_PRESETS.keys()), default="standard")
    parser.add_argument("--max-duration-shortfall", type=float)
    parser.add_argument("--max-duration-surplus", type=float)
    parser.add_argument("--max-turnover", type=float, help="% of NAV")
    parser.add_argument("--transaction-cost", type=float, help="bps per leg")
    parser.add_argument("--investment-horizon-limit", type=float, help="years")
    parser.add_argument("--minimum-purchase-rating")
    parser.add_argument("--target-gap", type=float, help="Centre the band on this duration gap")
    parser.add_argument("--exclude", nargs="*", metavar="ISIN", help="Bonds that must not be sold")

    parser.add_argument("--scenario", choices=list(SHIFT_KINDS), help="Run a rate scenario instead")
    parser.add_argument("--shift-bps", type=float, help="Parallel shift (bps)")
    parser.add_argument("--short-bps", type=float, help="1y shift for steepener/flattener (bps)")
    parser.add_argument("--long-bps", type=float, help="10y shift for steepener/flattener (bps)")
    parser.add_argument("--custom-shift", nargs="*", metavar="TENOR=BPS", help="Custom shifts, e.g. 2y=25 10y=-10")
    parser.add_argument("--trade", nargs="*", metavar="ACTION:ISIN:NOTIONAL",
                        help="Simulate trades, e.g. SELL:US123:1000000 BUY:US456:1000000")

    parser.add_argument("--compare", action="store_true", help="Run every parameter preset side by side")
    parser.add_argument("--show-presets", action="store_true", help="Show presets without running")
    parser.add_argument("--output-dir", default="runs")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def _custom_shifts(pairs) -> dict:
    custom = {}
    for pair in pairs or []:
        tenor, _, bps = pair.partition("=")
        if not bps:
            raise ValueError(f"Custom shift must look like TENOR=BPS, got '{pair}'")
        custom[tenor.strip()] = float(bps)
    return custom


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.show_presets:
        _show_presets()
        return 0

    if not (args.master and args.holdings and args.benchmark_holdings and args.benchmark_duration is not None):
        print("ERROR: --master, --holdings, --benchmark-holdings and --benchmark-duration are required")
        return 2

    try:
        # Load data
        fx_rates = fx_rates_from_pairs(args.fx)
        as_of = datetime.strptime(args.as_of, "%Y-%m-%d").date() if args.as_of else None
        bond_master = bond_master_from_frame(load_table(args.master))
        holdings = holdings_from_frame(load_table(args.holdings))
        bench_holdings = benchmark_holdings_from_frame(load_table(args.benchmark_holdings))

        portfolio = compute_metrics(build_portfolio(holdings, bond_master, fx_rates), log_level=logging.WARNING)
        benchmark = build_benchmark(
            BenchmarkAggregate(args.benchmark_name, args.ticker, args.benchmark_duration),
            bench_holdings, bond_master,
        )
        print(f"Portfolio: {len(portfolio.bonds)} bonds, MV ${portfolio.total_market_value:,.0f}, "
              f"duration {portfolio.modified_duration:.3f}y vs benchmark {benchmark.modified_duration:.3f}y")
        for w in portfolio.warnings:
            print(f"  ! {w.message}")

        shifts = None
        if args.scenario:
            shifts = build_shift_curve(args.scenario, args.shift_bps, args.short_bps, args.long_bps,
                                       _custom_shifts(args.custom_shift))

        if args.trade:
            trades = trades_from_specs(args.trade, bond_master, fx_rates)
            sim = simulate_trades(portfolio, benchmark, trades, bond_master, shifts,
                                  args.scenario or "custom", fx_rates)
            print(generate_simulation_summary(sim))
            return 0

        if shifts is not None:
            print(generate_scenario_summary(run_rate_scenario(portfolio, benchmark, shifts, args.scenario)))
            return 0

        config = OptimizerConfig(show_progress=args.progress)
        run_dir = _mkdir(os.path.join(args.output_dir, datetime.now().strftime("%Y%m%d_%H%M%S")))

        if args.compare:
            param_sets = {name: _params_from_args(args, name) for name in PARAMETER_PRESETS}
            for params in param_sets.values():
                validate_params(params)
            results = compare_parameter_sets(portfolio, benchmark, param_sets, bond_master,
                                             fx_rates, config, as_of)
            for name, result in results.items():
                generate_report(result, os.path.join(run_dir, name), quiet=True)
            print(generate_comparison_summary(run_dir, results))
        else:
            params = _params_from_args(args, args.preset)
            validate_params(params)
            result = run_optimizer(portfolio, benchmark, params, bond_master, fx_rates, config, as_of)
            print(generate_result_summary(result))
            generate_report(result, run_dir)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2
    except OptimizerError as e:
        print(f"ERROR: {getattr(e, 'user_message', e)}")
        return 1

    print(f"Results saved to: {run_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
