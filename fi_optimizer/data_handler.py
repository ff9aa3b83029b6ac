# fi_optimizer/data_handler.py - DataFrame adapters for bond master, holdings and benchmark data
import logging
import re
import warnings
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from fi_optimizer.models import (
    BUY,
    KRD_FIELDS,
    SELL,
    BenchmarkHolding,
    BondStaticData,
    PortfolioHolding,
    ProposedTrade,
)
from fi_optimizer.trades import create_trade

# Suppress warnings for cleaner output
warnings.filterwarnings('ignore', category=FutureWarning)

logger = logging.getLogger(__name__)

# Price parser for 32nds format (e.g., "98-24" -> 98.75)
_32_PATTERN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*(\+)?\s*$")

# Column aliases -> BondStaticData field
MASTER_COLUMNS = {
    "isin": ["ISIN", "isin"],
    "name": ["Name", "Security Name", "Description", "name"],
    "currency": ["Currency", "CCY", "currency"],
    "maturity_date": ["Maturity Date", "Maturity", "maturity_date", "maturityDate"],
    "coupon": ["Coupon", "Coupon Rate", "coupon"],
    "price": ["Price", "Clean Price", "Market Price", "price"],
    "yield_to_maturity": ["YTM", "Yield", "Yield to Maturity", "yield_to_maturity", "yieldToMaturity"],
    "modified_duration": ["Modified Duration", "Mod Dur", "modified_duration", "modifiedDuration"],
    "credit_rating": ["Rating", "Credit Rating", "credit_rating", "creditRating"],
    "liquidity_score": ["Liquidity Score", "liquidity_score", "liquidityScore"],
    "bid_ask_spread": ["Bid Ask Spread", "Bid/Ask Spread", "bid_ask_spread", "bidAskSpread"],
    "min_trade_size": ["Min Trade Size", "min_trade_size", "minTradeSize"],
    "trade_increment": ["Trade Increment", "trade_increment", "tradeIncrement"],
    **{k: [f"KRD {k[4:]}", k, k.upper()] for k in KRD_FIELDS},
}
PRICE_FIELDS = {"price"}
REQUIRED = ["isin", "price", "modified_duration"]


def parse_price_to_decimal(val):
    """
    Convert price formats to decimal:
    - Plain decimals: 98.75, '101.125' → 98.75, 101.125
    - 32nds: '98-24' → 98.75 (98 + 24/32), '98-11+' → 98.359375 (98 + 11.5/32)
    Anything else is kept as-is so the metrics engine can flag it.
    """
    if val is None or (isinstance(val, float) and np.isnan(val)):
        return np.nan

    # Try decimal first
    try:
        return float(val)
    except (TypeError, ValueError):
        pass

    # Try 32nds format
    s = str(val).strip()
    m = _32_PATTERN.match(s) or _32_PATTERN.match(s.replace(" ", ""))
    if not m:
        return val

    whole = int(m.group(1))
    thirty_seconds = int(m.group(2))
    plus = m.group(3) is not None  # '+' means half-32nd
    frac = (thirty_seconds + (0.5 if plus else 0.0)) / 32.0
    return whole + frac


def _first_existing(df: pd.DataFrame, cols: List[str]) -> Optional[str]:
    """Find first existing column from a list of candidates"""
    for c in cols:
        if c in df.columns:
            return c
    return None


def _cell(value):
    """Blank cells become None; everything else is passed through untouched."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def load_table(file_path: str, sheet_name=0) -> pd.DataFrame:
    """Read a parquet, Excel or CSV table."""
    if file_path.endswith('.parquet'):
        df = pd.read_parquet(file_path)
    elif file_path.endswith(('.xlsx', '.xls')):
        df = pd.read_excel(file_path, sheet_name=sheet_name, engine="openpyxl")
    elif file_path.endswith('.csv'):
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    else:
        raise ValueError(f"Unsupported file format: {file_path}")
    logger.info("Loaded %d rows from %s", len(df), file_path)
    return df


def bond_master_from_frame(df: pd.DataFrame) -> Dict[str, BondStaticData]:
    """
    Build the ISIN-keyed bond master from a DataFrame.

    Numeric cells are not validated here: text in a numeric column is kept and
    surfaces later as a data-quality warning rather than a load failure.
    """
    columns = {field: _first_existing(df, aliases) for field, aliases in MASTER_COLUMNS.items()}
    missing = [f for f in REQUIRED if columns[f] is None]
    if missing:
        raise ValueError(f"Missing required bond master columns: {missing}. "
                         f"Available columns: {list(df.columns)}")

    master: Dict[str, BondStaticData] = {}
    for _, row in df.iterrows():
        isin = _cell(row[columns["isin"]])
        if isin is None:
            continue
        isin = str(isin).strip()
        values = {}
        for field, col in columns.items():
            if col is None or field == "isin":
                continue
            value = _cell(row[col])
            if value is None:
                continue
            if field in PRICE_FIELDS:
                value = parse_price_to_decimal(value)
            elif field in ("name", "currency", "maturity_date", "credit_rating"):
                value = str(value).strip()
            values[field] = value
        if isin in master:
            logger.warning("Duplicate ISIN %s in bond master; keeping the last row.", isin)
        master[isin] = BondStaticData(isin=isin, **values)

    logger.info("Bond master: %d bonds", len(master))
    return master


def holdings_from_frame(df: pd.DataFrame) -> List[PortfolioHolding]:
    isin_col = _first_existing(df, ["ISIN", "isin"])
    notional_col = _first_existing(df, ["Notional", "Current Face", "Par", "notional"])
    if isin_col is None or notional_col is None:
        raise ValueError(f"Holdings need ISIN and notional columns. Available columns: {list(df.columns)}")
    notional = pd.to_numeric(df[notional_col].astype(str).str.replace(",", ""), errors="coerce").fillna(0.0)
    return [PortfolioHolding(str(i).strip(), float(n))
            for i, n in zip(df[isin_col], notional) if _cell(i) is not None]


def benchmark_holdings_from_frame(df: pd.DataFrame) -> List[BenchmarkHolding]:
    isin_col = _first_existing(df, ["ISIN", "isin"])
    weight_col = _first_existing(df, ["Weight", "weight", "Weight (%)"])
    if isin_col is None or weight_col is None:
        raise ValueError(f"Benchmark holdings need ISIN and weight columns. Available columns: {list(df.columns)}")
    weight = pd.to_numeric(df[weight_col], errors="coerce").fillna(0.0)
    return [BenchmarkHolding(str(i).strip(), float(w))
            for i, w in zip(df[isin_col], weight) if _cell(i) is not None]


def fx_rates_from_pairs(pairs: Optional[List[str]]) -> Mapping[str, float]:
    """Parse CLI pairs like ['EUR=1.08', 'GBP=1.27'] into a rate map."""
    rates = {"USD": 1.0}
    for pair in pairs or []:
        ccy, _, rate = pair.partition("=")
        if not rate:
            raise ValueError(f"FX rate must look like CCY=RATE, got '{pair}'")
        rates[ccy.strip().upper()] = float(rate)
    return rates


def trades_from_specs(
        specs: Optional[List[str]],
        bond_master: Mapping[str, BondStaticData],
        fx_rates: Optional[Mapping[str, float]] = None,
) -> List[ProposedTrade]:
    """Parse CLI trades like ['SELL:US123:1,000,000', 'BUY:US456:500000'], one pair id each."""
    trades = []
    for pair_id, spec in enumerate(specs or []):
        parts = spec.split(":")
        if len(parts) != 3:
            raise ValueError(f"Trade must look like ACTION:ISIN:NOTIONAL, got '{spec}'")
        action, isin, notional = (p.strip() for p in parts)
        action = action.upper()
        if action not in (BUY, SELL):
            raise ValueError(f"Trade action must be {BUY} or {SELL}, got '{action}'")
        bond = bond_master.get(isin)
        if bond is None:
            raise ValueError(f"ISIN {isin} not found in bond master")
        size = float(notional.replace(",", ""))
        if not size > 0:
            raise ValueError(f"Trade notional must be positive, got '{notional}'")
        trades.append(create_trade(action, bond, size, pair_id, fx_rates))
    return trades
