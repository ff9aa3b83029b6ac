# Add project root to sys.path for module imports
import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fi_optimizer.metrics import build_portfolio, compute_metrics  # noqa: E402
from fi_optimizer.models import (  # noqa: E402
    Benchmark,
    BondStaticData,
    OptimizationParams,
    PortfolioHolding,
)

AS_OF = date(2025, 1, 1)


def make_bond(isin, duration, maturity="2030-01-01", rating="A", price=100.0, ytm=4.0,
              currency="USD", spread=0.2, **krds) -> BondStaticData:
    """Bond master entry; with no KRDs given, all duration sits at the nearest tenor."""
    if not krds:
        tenor = min(("1y", 1), ("2y", 2), ("3y", 3), ("5y", 5), ("7y", 7), ("10y", 10),
                    key=lambda t: abs(t[1] - duration))[0]
        krds = {f"krd_{tenor}": duration}
    return BondStaticData(
        isin=isin, name=f"Bond {isin}", currency=currency, maturity_date=maturity,
        coupon=4.0, price=price, yield_to_maturity=ytm, modified_duration=duration,
        credit_rating=rating, liquidity_score=5.0, bid_ask_spread=spread, **krds,
    )


@pytest.fixture
def bond_master():
    bonds = [
        make_bond("HELD_SHORT", 2.0, maturity="2027-01-01", rating="AA", ytm=4.0),
        make_bond("HELD_MID", 4.0, maturity="2029-01-01", rating="A", ytm=4.5),
        make_bond("CAND_6Y", 6.0, maturity="2031-06-01", rating="A", ytm=5.0),
        make_bond("CAND_8Y", 8.0, maturity="2034-06-01", rating="BBB", ytm=5.2),
        make_bond("CAND_1Y", 1.0, maturity="2026-06-01", rating="AA", ytm=3.8),
        make_bond("JUNK", 7.0, maturity="2032-01-01", rating="CCC", ytm=9.0),
        make_bond("LONG", 15.0, maturity="2050-01-01", rating="AA", ytm=5.5),
    ]
    return {b.isin: b for b in bonds}


@pytest.fixture
def holdings():
    return [PortfolioHolding("HELD_SHORT", 5_000_000), PortfolioHolding("HELD_MID", 5_000_000)]


@pytest.fixture
def portfolio(holdings, bond_master):
    """$10mm, duration 3.0."""
    return compute_metrics(build_portfolio(holdings, bond_master))


@pytest.fixture
def benchmark():
    """Duration 3.5: the portfolio is 0.5y short."""
    return Benchmark(name="Aggregate", ticker="AGG", modified_duration=3.5,
                     krd_2y=0.8, krd_5y=1.7, krd_7y=1.0)


@pytest.fixture
def params():
    return OptimizationParams(
        max_duration_shortfall=0.10,
        max_duration_surplus=0.10,
        max_turnover=20.0,
        transaction_cost=20.0,
    )
