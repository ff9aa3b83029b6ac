# fi_optimizer/universe.py - Maturity parsing, rating scale and trade eligibility
from __future__ import annotations

import logging
import math
import re
import warnings
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from fi_optimizer.config import (
    PERPETUAL_MARKERS,
    PERPETUAL_SENTINEL,
    RATING_SCALE,
    TWO_DIGIT_YEAR_PIVOT,
    UNRATED_RANK,
)
from fi_optimizer.errors import DataQualityWarning
from fi_optimizer.models import Bond, BondStaticData, OptimizationParams, fx_rate, to_float

logger = logging.getLogger(__name__)

DATED = "dated"
PERPETUAL = "perpetual"
UNPARSEABLE = "unparseable"

_DATE_PARTS = re.compile(r"^\s*(\d{1,4})\s*[/\-.]\s*(\d{1,2})\s*[/\-.]\s*(\d{1,4})\s*$")


@dataclass(frozen=True)
class MaturityParse:
    date: date
    status: str


def _full_year(year: int) -> int:
    if year < 100:
        year += 2000 if year < TWO_DIGIT_YEAR_PIVOT else 1900
    return year


def _try_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(_full_year(year), month, day)
    except ValueError:
        return None


def parse_maturity_date(value) -> MaturityParse:
    """
    Parse a free-text maturity date.

    Accepts Y-M-D, M/D/Y (D/M/Y when the month-first reading is invalid),
    two-digit years, and anything pandas can read. Perpetual markers and
    unreadable text both resolve to PERPETUAL_SENTINEL, distinguished by status.
    """
    if isinstance(value, datetime):
        return MaturityParse(value.date(), DATED)
    if isinstance(value, date):
        return MaturityParse(value, DATED)
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return MaturityParse(PERPETUAL_SENTINEL, UNPARSEABLE)

    text = str(value).strip()
    if text.upper() in PERPETUAL_MARKERS:
        return MaturityParse(PERPETUAL_SENTINEL, PERPETUAL)
    if not text:
        return MaturityParse(PERPETUAL_SENTINEL, UNPARSEABLE)

    m = _DATE_PARTS.match(text)
    if m:
        a, b, c = (int(g) for g in m.groups())
        if len(m.group(1)) == 4:
            parsed = _try_date(a, b, c)
        else:
            parsed = _try_date(c, a, b) or _try_date(c, b, a)
        if parsed is not None:
            return MaturityParse(parsed, DATED)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        ts = pd.to_datetime(text, errors="coerce")
    if pd.notna(ts):
        return MaturityParse(ts.date(), DATED)

    return MaturityParse(PERPETUAL_SENTINEL, UNPARSEABLE)


def years_to_maturity(maturity: date, as_of: date) -> float:
    return (maturity - as_of).days / 365.25


def rating_rank(rating) -> int:
    """Ordinal rank, 1 = AAA. Unknown or missing ratings rank as unrated."""
    if rating is None:
        return UNRATED_RANK
    return RATING_SCALE.get(str(rating).strip().upper(), UNRATED_RANK)


def is_tradeable(bond: BondStaticData, fx_rates: Optional[Mapping[str, float]] = None) -> bool:
    """Price, duration and FX rate are all usable numbers."""
    price = to_float(bond.price)
    fx = fx_rate(bond.currency, fx_rates)
    return (
        math.isfinite(price) and price > 0
        and math.isfinite(to_float(bond.modified_duration))
        and math.isfinite(fx) and fx > 0
    )


@dataclass(frozen=True)
class UniverseSelection:
    candidates: Tuple[BondStaticData, ...]
    filtered: pd.DataFrame
    warnings: Tuple[DataQualityWarning, ...]


def select_buy_universe(
        bond_master: Mapping[str, BondStaticData],
        held_isins: Iterable[str],
        params: OptimizationParams,
        as_of: date,
        fx_rates: Optional[Mapping[str, float]] = None,
) -> UniverseSelection:
    """
    Bond master entries eligible for purchase.

    Filters out held bonds, maturities beyond the investment horizon, ratings
    below the minimum purchase rating and bonds with unusable numeric data.
    Every excluded bond keeps the reasons it was filtered.
    """
    held = set(held_isins)
    entries = list(bond_master.items())
    if not entries:
        return UniverseSelection((), pd.DataFrame(columns=["isin", "Reason_Filtered"]), ())

    rows = []
    found_warnings: List[DataQualityWarning] = []
    unparseable: List[str] = []
    for isin, bond in entries:
        maturity = parse_maturity_date(bond.maturity_date)
        if maturity.status == UNPARSEABLE and isin not in held:
            unparseable.append(isin)
        rows.append({
            "isin": isin,
            "name": bond.name,
            "maturity_date": bond.maturity_date,
            "maturity_status": maturity.status,
            "years_to_maturity": years_to_maturity(maturity.date, as_of),
            "credit_rating": bond.credit_rating,
            "rating_rank": rating_rank(bond.credit_rating),
            "tradeable": is_tradeable(bond, fx_rates),
        })

    df = pd.DataFrame(rows)
    df["Reason_Filtered"] = ""

    def add_reason(mask: pd.Series, text: str):
        """Add filtering reason to bonds that match the mask"""
        m = mask.fillna(False).astype(bool)
        has_reason = df["Reason_Filtered"].str.len().gt(0)
        df.loc[m & ~has_reason, "Reason_Filtered"] = text
        df.loc[m & has_reason, "Reason_Filtered"] = df.loc[m & has_reason, "Reason_Filtered"] + "; " + text

    add_reason(df["isin"].isin(held), "already_held")

    horizon = to_float(params.investment_horizon_limit)
    add_reason(df["years_to_maturity"] > horizon, f"maturity>{horizon:g}y")

    min_rank = rating_rank(params.minimum_purchase_rating)
    add_reason(df["rating_rank"] > min_rank, f"rating_below_{params.minimum_purchase_rating}")

    add_reason(~df["tradeable"], "non_numeric_static_data")

    if unparseable:
        found_warnings.append(DataQualityWarning(
            field="maturity_date",
            message=(f"Maturity date could not be parsed for {len(unparseable)} bond(s) "
                     f"({', '.join(unparseable[:5])}); treated as long-dated."),
            isins=tuple(unparseable),
        ))
        logger.warning(found_warnings[-1].message)

    keep = df["Reason_Filtered"] == ""
    candidates = tuple(bond_master[isin] for isin in df.loc[keep, "isin"])
    filtered = df.loc[~keep].reset_index(drop=True)

    logger.info("Buy universe: %d eligible of %d master bonds (%d filtered)",
                len(candidates), len(entries), len(filtered))
    return UniverseSelection(candidates, filtered, tuple(found_warnings))


def sell_eligible(
        bonds: Sequence[Bond],
        excluded: Iterable[str],
        fx_rates: Optional[Mapping[str, float]] = None,
) -> List[Bond]:
    """Held bonds that may be sold: not excluded, positive notional, usable data."""
    excluded = set(excluded)
    return [
        b for b in bonds
        if b.isin not in excluded
        and math.isfinite(to_float(b.notional)) and to_float(b.notional) > 0
        and is_tradeable(b, fx_rates)
    ]
