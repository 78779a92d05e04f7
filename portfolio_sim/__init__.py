"""Portfolio simulator: trade execution, automation rules, option pricing, tick engine and analytics."""

from .analytics import SimulationAnalytics, compute_analytics, format_rules_log, format_stats_table
from .config import ConfigError, SimulationConfig
from .engine import advance_tick, init_simulation, run_to_completion, submit_order
from .options import is_expiring, recompute_option_value, settle_expiry
from .portfolio import apply_trade, create_portfolio, get_position, recompute_values
from .pricing import black_scholes, find_strike_by_delta, historical_volatility, quote_premium
from .rules import evaluate_rules

__all__ = [
    "SimulationConfig",
    "ConfigError",
    "init_simulation",
    "submit_order",
    "advance_tick",
    "run_to_completion",
    "apply_trade",
    "recompute_values",
    "create_portfolio",
    "get_position",
    "evaluate_rules",
    "recompute_option_value",
    "is_expiring",
    "settle_expiry",
    "black_scholes",
    "historical_volatility",
    "find_strike_by_delta",
    "quote_premium",
    "compute_analytics",
    "SimulationAnalytics",
    "format_stats_table",
    "format_rules_log",
]
