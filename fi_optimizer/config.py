# fi_optimizer/config.py
# ---------------------- ENGINE CONFIGURATION ----------------------
from dataclasses import dataclass
from datetime import date
from typing import Optional


# ----- Currency -----
BASE_CURRENCY = "USD"

# Minimum trade size / trade increment (face amount) when the bond master is silent
DEFAULT_TRADE_CONSTRAINTS = {
    "USD": {"min_trade_size": 2_000, "trade_increment": 1_000},
    "EUR": {"min_trade_size": 100_000, "trade_increment": 1_000},
    "GBP": {"min_trade_size": 100_000, "trade_increment": 1_000},
}
GENERIC_TRADE_CONSTRAINTS = {"min_trade_size": 1_000, "trade_increment": 1_000}

# ----- Credit Ratings -----
# Ordinal scale: lower is better. Anything unknown ranks with unrated.
UNRATED_RANK = 99
RATING_SCALE = {
    "AAA": 1, "AA+": 2, "AA": 3, "AA-": 4,
    "A+": 5, "A": 6, "A-": 7,
    "BBB+": 8, "BBB": 9, "BBB-": 10,
    "BB+": 11, "BB": 12, "BB-": 13,
    "B+": 14, "B": 15, "B-": 16,
    "CCC+": 17, "CCC": 18, "CCC-": 19,
    "CC": 20, "C": 21, "D": 22,
    "NR": UNRATED_RANK, "N/A": UNRATED_RANK,
}

# ----- Maturity Parsing -----
PERPETUAL_SENTINEL = date(2200, 1, 1)
PERPETUAL_MARKERS = {"PERP", "PERPETUAL", "UNDATED"}
TWO_DIGIT_YEAR_PIVOT = 70  # 69 -> 2069, 70 -> 1970

# ----- Search Parameters -----
MAX_ITERATIONS = 50  # Safety break for the search loop
TOP_N_CANDIDATES = 20  # Shortlist size per side
TRACKING_ERROR_EPSILON_BPS = 1.0  # Below this the portfolio counts as tracking
DEGENERATE_DURATION_EPSILON = 1e-6  # Pairs closer than this cannot move duration
DUST_NOTIONAL = 0.01  # Positions below this face amount are dropped
EXPLORATORY_TURNOVER_FRACTION = 0.10  # Share of remaining budget tried per pair outside a breach

# Scoring weights outside a breach (uncalibrated, see DESIGN.md)
TRACKING_ERROR_WEIGHT = 10.0
YIELD_PENALTY_WEIGHT = 5.0

WALL_CLOCK_BUDGET_SECONDS = None  # None = iteration cap only
SHOW_PROGRESS = False

# ----- Rate Scenarios -----
SHIFT_KINDS = ("parallel", "steepener", "flattener", "custom")

SHIFT_PRESETS = {
    "parallel": {"description": "Parallel shift of every tenor", "shift_bps": 100},
    "steepener": {"description": "Short end down, long end up", "short_bps": -50, "long_bps": 50},
    "flattener": {"description": "Short end up, long end down", "short_bps": 50, "long_bps": -50},
}

# ----- Optimizer Input Presets -----
PARAMETER_PRESETS = {
    "standard": {
        "description": "Standard switch: 0.10y band, 10% turnover, BB- floor",
        "max_duration_shortfall": 0.10,
        "max_duration_surplus": 0.10,
        "max_turnover": 10.0,  # % of NAV
        "transaction_cost": 20.0,  # bps per leg
        "investment_horizon_limit": 10.0,  # years
        "minimum_purchase_rating": "BB-",
    },
    "conservative": {
        "description": "Conservative: investment grade only, 5% turnover",
        "max_duration_shortfall": 0.10,
        "max_duration_surplus": 0.10,
        "max_turnover": 5.0,
        "transaction_cost": 20.0,
        "investment_horizon_limit": 7.0,
        "minimum_purchase_rating": "BBB-",
    },
    "active": {
        "description": "Active: wider band, 25% turnover, long horizon",
        "max_duration_shortfall": 0.25,
        "max_duration_surplus": 0.25,
        "max_turnover": 25.0,
        "transaction_cost": 15.0,
        "investment_horizon_limit": 30.0,
        "minimum_purchase_rating": "B-",
    },
}


@dataclass(frozen=True)
class OptimizerConfig:
    """Search constants, overridable per run."""

    max_iterations: int = MAX_ITERATIONS
    top_n_candidates: int = TOP_N_CANDIDATES
    tracking_error_epsilon_bps: float = TRACKING_ERROR_EPSILON_BPS
    degenerate_duration_epsilon: float = DEGENERATE_DURATION_EPSILON
    dust_notional: float = DUST_NOTIONAL
    exploratory_turnover_fraction: float = EXPLORATORY_TURNOVER_FRACTION
    tracking_error_weight: float = TRACKING_ERROR_WEIGHT
    yield_penalty_weight: float = YIELD_PENALTY_WEIGHT
    wall_clock_budget_seconds: Optional[float] = WALL_CLOCK_BUDGET_SECONDS
    show_progress: bool = SHOW_PROGRESS


DEFAULT_CONFIG = OptimizerConfig()
