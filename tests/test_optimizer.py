import math
from collections import defaultdict
from dataclasses import replace

import pytest

from conftest import AS_OF, make_bond
from fi_optimizer.config import PARAMETER_PRESETS, OptimizerConfig
from fi_optimizer.errors import OptimizationError, UnsupportedModeError
from fi_optimizer.metrics import build_portfolio, compute_metrics
from fi_optimizer.models import BUY, KRD_FIELDS, SELL, Benchmark, OptimizationParams, PortfolioHolding
from fi_optimizer.optimizer import (
    HALT_ACCEPTABLE,
    HALT_CANCELLED,
    HALT_MAX_ITERATIONS,
    HALT_NO_BUYS,
    breach_distance,
    compare_parameter_sets,
    evaluate_trade_selection,
    params_from_preset,
    run_optimizer,
    validate_params,
)


def _run(portfolio, benchmark, params, bond_master, **kwargs):
    return run_optimizer(portfolio, benchmark, params, bond_master, as_of=AS_OF, **kwargs)


def _pairs(result):
    pairs = defaultdict(dict)
    for t in result.proposed_trades:
        pairs[t.pair_id][t.action] = t
    return [pairs[i] for i in sorted(pairs)]


def test_breach_distance():
    assert breach_distance(-0.5, 0.1, 0.1) == pytest.approx(0.4)
    assert breach_distance(0.05, 0.1, 0.1) == 0.0
    assert breach_distance(0.3, 0.1, 0.2) == pytest.approx(0.1)


def test_acceptable_portfolio_proposes_nothing(portfolio, params, bond_master):
    mirror = Benchmark(modified_duration=portfolio.modified_duration,
                       **{k: getattr(portfolio, k) for k in KRD_FIELDS})
    result = _run(portfolio, mirror, params, bond_master)

    assert result.proposed_trades == ()
    assert result.halt_reason == HALT_ACCEPTABLE
    assert "already acceptable" in result.rationale
    assert result.after == result.before
    assert result.estimated_cost == 0.0


def test_empty_buy_universe_halts(portfolio, benchmark, params, bond_master):
    held_only = {k: v for k, v in bond_master.items() if k.startswith("HELD")}
    result = _run(portfolio, benchmark, params, held_only)

    assert result.proposed_trades == ()
    assert result.halt_reason == HALT_NO_BUYS
    assert "no eligible purchase candidates" in result.rationale.lower()


def test_short_duration_breach_is_corrected(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)

    first = _pairs(result)[0]
    assert first[BUY].modified_duration > first[SELL].modified_duration
    assert result.before.duration_gap == pytest.approx(-0.5)
    assert result.after.duration_gap > result.before.duration_gap
    before_breach = breach_distance(result.before.duration_gap, 0.1, 0.1)
    after_breach = breach_distance(result.after.duration_gap, 0.1, 0.1)
    assert after_breach < before_breach
    assert after_breach == pytest.approx(0.0, abs=1e-3)
    assert "duration gap" in result.rationale


def test_long_duration_breach_sells_duration(portfolio, params, bond_master):
    benchmark = Benchmark(modified_duration=2.0, krd_1y=0.5, krd_2y=1.5)
    result = _run(portfolio, benchmark, params, bond_master)

    first = _pairs(result)[0]
    assert first[BUY].modified_duration < first[SELL].modified_duration
    assert result.after.duration_gap < result.before.duration_gap


def test_trades_respect_holdings_sizes_and_universe(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)
    assert result.proposed_trades

    position = {b.isin: b.notional for b in portfolio.bonds}
    for t in result.proposed_trades:
        assert t.notional >= 2000
        assert t.notional % 1000 == 0
        if t.action == BUY:
            assert t.isin not in {"JUNK", "LONG"}
            position[t.isin] = position.get(t.isin, 0.0) + t.notional
        else:
            position[t.isin] = position.get(t.isin, 0.0) - t.notional
            assert position[t.isin] >= -1e-6


def test_turnover_bound(portfolio, benchmark, params, bond_master):
    tight = replace(params, max_turnover=5.0)
    result = _run(portfolio, benchmark, tight, bond_master)

    sold = sum(t.market_value_usd for t in result.proposed_trades if t.action == SELL)
    assert result.proposed_trades
    assert sold <= 0.05 * portfolio.total_market_value + 1e-6


def test_pairs_are_cash_neutral(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)
    for pair in _pairs(result):
        buy, sell = pair[BUY], pair[SELL]
        # the buy leg is floored to one trade increment
        assert abs(sell.market_value_usd - buy.market_value_usd) <= buy.price / 100 * 1000 + 1e-6


def test_excluded_bonds_are_never_sold(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, replace(params, excluded_bonds=frozenset({"HELD_SHORT"})), bond_master)
    assert result.proposed_trades
    assert all(not (t.action == SELL and t.isin == "HELD_SHORT") for t in result.proposed_trades)


def test_runs_are_deterministic(portfolio, benchmark, params, bond_master):
    a = _run(portfolio, benchmark, params, bond_master)
    b = _run(portfolio, benchmark, params, bond_master)
    assert a.proposed_trades == b.proposed_trades
    assert a.rationale == b.rationale


def test_targeting_mode_never_creates_a_breach(portfolio, benchmark, bond_master):
    targeted = replace(
        params_from_preset(PARAMETER_PRESETS["standard"], max_turnover=20.0),
        is_targeting_mode=True, target_duration_gap=-0.5,
    )
    result = _run(portfolio, benchmark, targeted, bond_master)
    assert -0.6 - 1e-9 <= result.after.duration_gap <= -0.4 + 1e-9
    assert result.after.tracking_error <= result.before.tracking_error


@pytest.mark.parametrize("mode", ["buy-only", "sell-only"])
def test_single_leg_modes_are_rejected(portfolio, benchmark, params, bond_master, mode):
    with pytest.raises(UnsupportedModeError) as exc:
        _run(portfolio, benchmark, replace(params, mode=mode), bond_master)
    assert exc.value.mode == mode


def test_zero_turnover_budget_halts_with_reason(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, replace(params, max_turnover=0.0), bond_master)
    assert result.proposed_trades == ()
    assert "turnover budget is zero" in result.halt_reason
    assert "cannot be corrected" in result.halt_reason


def test_cancellation(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master, should_cancel=lambda: True)
    assert result.proposed_trades == ()
    assert result.halt_reason == HALT_CANCELLED

    flags = iter([False])
    result = _run(portfolio, benchmark, params, bond_master, should_cancel=lambda: next(flags, True))
    assert len(result.pair_ids) == 1
    assert result.halt_reason == HALT_CANCELLED


def test_iteration_cap(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, replace(params, max_turnover=50.0), bond_master,
                  config=OptimizerConfig(max_iterations=1))
    assert result.iterations == 1
    assert result.halt_reason == HALT_MAX_ITERATIONS


def test_unexpected_failures_are_wrapped(portfolio, benchmark, params):
    class ExplodingMaster(dict):
        def items(self):
            raise RuntimeError("boom")

    with pytest.raises(OptimizationError) as exc:
        _run(portfolio, benchmark, params, ExplodingMaster())
    assert isinstance(exc.value.cause, RuntimeError)
    assert "boom" in str(exc.value)
    assert exc.value.hint in exc.value.user_message


def test_costs_are_reported(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)
    assert result.estimated_fee_cost > 0
    assert result.estimated_spread_cost > 0
    assert result.estimated_cost == pytest.approx(result.estimated_fee_cost + result.estimated_spread_cost)
    assert result.estimated_cost_bps_of_nav > 0


def test_evaluate_trade_selection(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)
    first_id = result.pair_ids[0]

    none = evaluate_trade_selection(result, benchmark, [], params, bond_master)
    assert none.active_trades == ()
    assert none.after == result.before
    assert none.costs.total_cost == 0.0

    one = evaluate_trade_selection(result, benchmark, [first_id], params, bond_master)
    assert {t.pair_id for t in one.active_trades} == {first_id}
    assert one.after.modified_duration > result.before.modified_duration
    assert one.costs.total_cost > 0

    every = evaluate_trade_selection(result, benchmark, result.pair_ids, params, bond_master)
    assert every.after.modified_duration == pytest.approx(result.after.modified_duration)
    assert every.costs.total_cost == pytest.approx(result.estimated_cost)


def test_compare_parameter_sets_keeps_order(portfolio, benchmark, params, bond_master):
    param_sets = {"zero": replace(params, max_turnover=0.0), "base": params}
    results = compare_parameter_sets(portfolio, benchmark, param_sets, bond_master, as_of=AS_OF, max_workers=2)

    assert list(results) == ["zero", "base"]
    assert results["zero"].proposed_trades == ()
    direct = _run(portfolio, benchmark, params, bond_master)
    assert results["base"].proposed_trades == direct.proposed_trades


@pytest.mark.parametrize("field, value", [
    ("max_turnover", -1.0),
    ("transaction_cost", "abc"),
    ("max_duration_shortfall", math.nan),
])
def test_validate_params_rejects_bad_inputs(params, field, value):
    with pytest.raises(ValueError):
        validate_params(replace(params, **{field: value}))


def test_validate_params_accepts_presets():
    for preset in PARAMETER_PRESETS.values():
        validate_params(params_from_preset(preset))
    with pytest.raises(ValueError):
        validate_params(params_from_preset(PARAMETER_PRESETS["standard"], is_targeting_mode=True))


def test_params_from_preset_overrides():
    params = params_from_preset(PARAMETER_PRESETS["conservative"], max_turnover=3.0, excluded_bonds=["A"])
    assert params.max_turnover == 3.0
    assert params.minimum_purchase_rating == "BBB-"
    assert params.excluded_bonds == frozenset({"A"})


def test_unreadable_spread_costs_zero_and_is_flagged(portfolio, benchmark, params, bond_master):
    master = dict(bond_master)
    for isin in ("CAND_6Y", "CAND_8Y"):
        master[isin] = replace(master[isin], bid_ask_spread="?")
    result = _run(portfolio, benchmark, params, master)

    assert {"CAND_6Y", "CAND_8Y"} & {t.isin for t in result.proposed_trades}
    assert all(math.isfinite(t.spread_cost) for t in result.proposed_trades)
    assert math.isfinite(result.estimated_spread_cost)
    assert math.isfinite(result.estimated_cost)
    flagged = [w for w in result.warnings if w.field == "bid_ask_spread"]
    assert len(flagged) == 1
    assert flagged[0].isins == ("CAND_6Y", "CAND_8Y")


def _single_holding(**static):
    """$10mm in one 5y bond yielding 5%."""
    master = {"HOLD": make_bond("HOLD", 5.0, maturity="2030-01-01", ytm=5.0, krd_5y=5.0)}
    master.update(static)
    return master, compute_metrics(build_portfolio([PortfolioHolding("HOLD", 10_000_000)], master))


def test_in_band_search_penalises_yield_given_up():
    # two candidates with identical risk; only the yield differs
    master, portfolio = _single_holding(
        A_LOW=make_bond("A_LOW", 7.0, maturity="2032-01-01", ytm=3.0, krd_7y=7.0),
        B_HIGH=make_bond("B_HIGH", 7.0, maturity="2032-01-01", ytm=6.0, krd_7y=7.0),
    )
    benchmark = Benchmark(modified_duration=5.0, krd_5y=4.0, krd_7y=1.0)
    params = OptimizationParams(max_duration_shortfall=0.1, max_duration_surplus=0.1,
                                max_turnover=10.0, transaction_cost=20.0)
    one_step = OptimizerConfig(max_iterations=1)

    result = _run(portfolio, benchmark, params, master, config=one_step)
    first = _pairs(result)[0]
    assert first[BUY].isin == "B_HIGH"
    # exploratory size: a tenth of the 10% budget
    assert first[SELL].notional == pytest.approx(100_000)

    # without the penalty the two tie and the first by ISIN is kept
    no_penalty = replace(one_step, yield_penalty_weight=0.0)
    result = _run(portfolio, benchmark, params, master, config=no_penalty)
    assert _pairs(result)[0][BUY].isin == "A_LOW"


def test_in_band_search_rejects_pairs_that_create_a_breach():
    master, portfolio = _single_holding(
        LONG_X=make_bond("LONG_X", 10.0, maturity="2034-01-01", ytm=5.0, krd_10y=10.0),
        SHORT_X=make_bond("SHORT_X", 4.0, maturity="2029-01-01", ytm=5.0, krd_3y=4.0),
    )
    # gap +0.05y, inside the band; LONG_X cuts tracking error most
    benchmark = Benchmark(modified_duration=4.95, krd_5y=4.0, krd_10y=0.95)
    params = OptimizationParams(max_duration_shortfall=0.1, max_duration_surplus=0.5,
                                max_turnover=20.0, transaction_cost=20.0)
    one_step = OptimizerConfig(max_iterations=1)

    wide = _run(portfolio, benchmark, params, master, config=one_step)
    assert _pairs(wide)[0][BUY].isin == "LONG_X"

    # a 200k switch into LONG_X lifts the gap to +0.15y, outside a 0.1y surplus
    tight = _run(portfolio, benchmark, replace(params, max_duration_surplus=0.1), master, config=one_step)
    first = _pairs(tight)[0]
    assert first[BUY].isin == "SHORT_X"
    assert breach_distance(tight.after.duration_gap, 0.1, 0.1) == 0.0


def test_filtered_universe_is_kept_on_the_result(portfolio, benchmark, params, bond_master):
    result = _run(portfolio, benchmark, params, bond_master)
    filtered = result.filtered_universe.set_index("isin")["Reason_Filtered"]

    assert "rating_below_BB-" in filtered["JUNK"]
    assert filtered["LONG"].startswith("maturity>")
    assert filtered["HELD_SHORT"] == "already_held"

    held_only = {k: v for k, v in bond_master.items() if k.startswith("HELD")}
    empty = _run(portfolio, benchmark, params, held_only)
    assert set(empty.filtered_universe["isin"]) == {"HELD_SHORT", "HELD_MID"}
