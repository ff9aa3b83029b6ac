# fi_optimizer/trades.py - Trade construction, application and costing
from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from fi_optimizer.config import (
    DEFAULT_TRADE_CONSTRAINTS,
    DUST_NOTIONAL,
    GENERIC_TRADE_CONSTRAINTS,
)
from fi_optimizer.models import (
    BUY,
    SELL,
    Bond,
    BondStaticData,
    CostBreakdown,
    ProposedTrade,
    fx_rate,
    to_float,
)

logger = logging.getLogger(__name__)


def trade_constraints(bond: BondStaticData) -> Tuple[float, float]:
    """(min_trade_size, trade_increment) with currency defaults for missing values."""
    defaults = DEFAULT_TRADE_CONSTRAINTS.get(bond.currency, GENERIC_TRADE_CONSTRAINTS)

    min_size = to_float(bond.min_trade_size) if bond.min_trade_size is not None else math.nan
    if not math.isfinite(min_size) or min_size < 0:
        min_size = float(defaults["min_trade_size"])

    increment = to_float(bond.trade_increment) if bond.trade_increment is not None else math.nan
    # zero, negative or text increments would break the rounding
    if not math.isfinite(increment) or increment <= 0:
        increment = float(defaults["trade_increment"])

    return min_size, increment


def spread_pct(bond: BondStaticData) -> float:
    """Quoted bid/ask spread in % of price; unreadable spreads count as zero."""
    spread = to_float(bond.bid_ask_spread)
    return spread if math.isfinite(spread) else 0.0


def round_to_increment(notional: float, increment: float) -> float:
    """Round a face amount down to a whole number of increments."""
    return math.floor(notional / increment) * increment


def create_trade(
        action: str,
        bond: BondStaticData,
        notional: float,
        pair_id: int,
        fx_rates: Optional[Mapping[str, float]] = None,
) -> ProposedTrade:
    price = to_float(bond.price)
    fx = fx_rate(bond.currency, fx_rates)
    market_value = notional * price / 100.0
    # half the bid/ask spread (quoted in % of price) is paid on each leg
    spread_cost = notional * (spread_pct(bond) / 100.0) / 2.0 * fx

    return ProposedTrade(
        action=action,
        isin=bond.isin,
        name=bond.name,
        notional=notional,
        market_value=market_value,
        market_value_usd=market_value * fx,
        price=price,
        modified_duration=to_float(bond.modified_duration),
        yield_to_maturity=to_float(bond.yield_to_maturity),
        pair_id=pair_id,
        spread_cost=spread_cost,
        credit_rating=bond.credit_rating,
    )


def apply_trades(
        bonds: Sequence[Bond],
        trades: Sequence[ProposedTrade],
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
        dust_notional: float = DUST_NOTIONAL,
) -> List[Bond]:
    """
    New unweighted positions after ``trades``. Run compute_metrics on the result.

    Bonds bought for the first time are instantiated from bond master data.
    Positions whose notional falls below ``dust_notional`` are dropped.
    """
    book: Dict[str, Tuple[BondStaticData, float]] = {
        b.isin: (b.static_data(), to_float(b.notional)) for b in bonds
    }

    for trade in trades:
        if trade.isin in book:
            static, notional = book[trade.isin]
        else:
            static = bond_master.get(trade.isin)
            if static is None:
                logger.warning("Trade on %s skipped: ISIN not found in bond master.", trade.isin)
                continue
            notional = 0.0

        if trade.action == BUY:
            notional += trade.notional
        elif trade.action == SELL:
            notional -= trade.notional
        else:
            raise ValueError(f"Unknown trade action '{trade.action}' for {trade.isin}")

        if notional < dust_notional:
            if notional < -dust_notional:
                logger.warning("Sell of %s exceeds the held notional; position closed.", trade.isin)
            book.pop(trade.isin, None)
        else:
            book[trade.isin] = (static, notional)

    return [Bond.from_static(static, notional, fx_rates) for static, notional in book.values()]


def estimate_costs(
        trades: Sequence[ProposedTrade],
        transaction_cost_bps: float,
        nav: float,
        paired: bool = True,
) -> CostBreakdown:
    """
    Fee, spread and total cost of ``trades`` in USD.

    For switch pairs the fee is charged on half the summed traded value so
    each pair counts once.
    """
    if not trades:
        return CostBreakdown()

    traded = sum(t.market_value_usd for t in trades)
    fee = (traded / 2.0 if paired else traded) * (transaction_cost_bps / 10000.0)
    spread = sum(t.spread_cost for t in trades)
    total = fee + spread

    return CostBreakdown(
        fee_cost=fee,
        spread_cost=spread,
        total_cost=total,
        cost_bps_of_nav=(total / nav * 10000.0) if nav > 0 else 0.0,
        aggregate_fee_bps=len(trades) * transaction_cost_bps,
    )
