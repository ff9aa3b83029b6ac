import pytest

from fi_optimizer.data_handler import trades_from_specs
from fi_optimizer.models import BUY, KRD_TENORS, SELL, Benchmark, Portfolio
from fi_optimizer.scenario import build_shift_curve, run_rate_scenario, scenario_pnl, simulate_trades


def test_zero_shift_gives_zero_pnl(portfolio, benchmark):
    zero = {t: 0.0 for t in KRD_TENORS}
    for entity in (portfolio, benchmark):
        result = scenario_pnl(entity, zero, portfolio.total_market_value, "custom")
        assert result.pnl == 0.0
        assert result.pnl_percent == 0.0


def test_parallel_shift_uses_modified_duration(portfolio):
    result = scenario_pnl(portfolio, build_shift_curve("parallel", 100), 0.0, "parallel")
    assert result.pnl == pytest.approx(-300_000)
    assert result.pnl_percent == pytest.approx(-3.0)


def test_parallel_shift_needs_equal_tenor_moves(portfolio):
    shifts = build_shift_curve("steepener")
    with pytest.raises(ValueError):
        scenario_pnl(portfolio, shifts, 0.0, "parallel")


def test_krd_pnl_for_benchmark_uses_reference_value():
    bench = Benchmark(modified_duration=2.0, krd_5y=2.0)
    result = scenario_pnl(bench, {"5y": 100}, 1_000_000, "custom")
    assert result.pnl == pytest.approx(-20_000)
    assert result.pnl_percent == pytest.approx(-2.0)


def test_empty_portfolio_pnl_is_zero():
    result = scenario_pnl(Portfolio(), build_shift_curve("parallel", 50), 1_000_000, "parallel")
    assert (result.pnl, result.pnl_percent) == (0.0, 0.0)


def test_steepener_interpolates_between_short_and_long_end():
    curve = build_shift_curve("steepener", short_bps=-50, long_bps=50)
    assert curve["1y"] == pytest.approx(-50)
    assert curve["10y"] == pytest.approx(50)
    assert curve["5y"] == pytest.approx(-50 + 4 / 9 * 100)
    assert list(curve) == list(KRD_TENORS)


def test_flattener_preset_defaults():
    curve = build_shift_curve("flattener")
    assert curve["1y"] > curve["10y"]


def test_custom_curve_fills_missing_tenors():
    curve = build_shift_curve("custom", custom={"2y": 25, "10y": -10})
    assert curve == {"1y": 0.0, "2y": 25.0, "3y": 0.0, "5y": 0.0, "7y": 0.0, "10y": -10.0}


def test_unknown_tenor_or_kind_raises(portfolio):
    with pytest.raises(ValueError):
        build_shift_curve("custom", custom={"30y": 10})
    with pytest.raises(ValueError):
        build_shift_curve("twist")
    with pytest.raises(ValueError):
        scenario_pnl(portfolio, {"1y": 10}, 0.0, "twist")


def test_run_rate_scenario_reports_active_pnl(portfolio, benchmark):
    comparison = run_rate_scenario(portfolio, benchmark, build_shift_curve("parallel", 100), "parallel")
    assert comparison.portfolio.pnl == pytest.approx(-300_000)
    assert comparison.benchmark.pnl == pytest.approx(-350_000)
    assert comparison.active_pnl == pytest.approx(50_000)


def test_simulate_trades_before_and_after(portfolio, benchmark, bond_master):
    trades = trades_from_specs(["SELL:HELD_SHORT:2,500,000", "BUY:CAND_6Y:2,500,000"], bond_master)
    assert [(t.action, t.isin, t.pair_id) for t in trades] == [(SELL, "HELD_SHORT", 0), (BUY, "CAND_6Y", 1)]

    sim = simulate_trades(portfolio, benchmark, trades, bond_master)
    assert sim.before.modified_duration == pytest.approx(3.0)
    # a quarter of the book moves from 2y to 6y duration
    assert sim.after.modified_duration == pytest.approx(4.0)
    assert sim.after.duration_gap == pytest.approx(0.5)
    assert sim.after.portfolio.total_market_value == pytest.approx(10_000_000)
    assert sim.scenario_before is None and sim.scenario_after is None


def test_simulate_trades_runs_scenario_on_both_books(portfolio, benchmark, bond_master):
    trades = trades_from_specs(["SELL:HELD_SHORT:2500000", "BUY:CAND_6Y:2500000"], bond_master)
    sim = simulate_trades(portfolio, benchmark, trades, bond_master,
                          build_shift_curve("parallel", 100), "parallel")

    assert sim.scenario_before.portfolio.pnl == pytest.approx(-300_000)
    assert sim.scenario_after.portfolio.pnl == pytest.approx(-400_000)
    assert sim.scenario_before.benchmark.pnl == pytest.approx(sim.scenario_after.benchmark.pnl)
    assert sim.scenario_after.active_pnl == pytest.approx(-50_000)


def test_simulate_trades_without_trades_changes_nothing(portfolio, benchmark, bond_master):
    sim = simulate_trades(portfolio, benchmark, [], bond_master)
    assert sim.trades == ()
    assert sim.after.modified_duration == pytest.approx(sim.before.modified_duration)
    assert sim.after.tracking_error == pytest.approx(sim.before.tracking_error)
