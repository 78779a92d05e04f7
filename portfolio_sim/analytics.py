"""
Analytics and statistics for completed simulation runs.

Produces summary statistics from the snapshot history, plus display-ready
DataFrames for the history and the rule-fire log.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import date
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .models import PortfolioSnapshot, PriceMap, RuleFireEvent
from .prices import bar_on_or_before
from .pricing import TRADING_DAYS_PER_YEAR

logger = logging.getLogger(__name__)

VOLATILITY_EPSILON = 1e-9
ANNUALIZED_RETURN_CAP = 1e6   # decimal, reported when compounding overflows


@dataclass(frozen=True)
class SimulationAnalytics:
    """Returns are decimal fractions (0.25 == 25%); drawdown is <= 0."""

    final_value: float
    starting_value: float
    total_return: float
    annualized_return: float
    sharpe_ratio: float
    max_drawdown: float
    annualized_volatility: float
    beta: float
    best_day_return: float
    best_day_date: Optional[date]
    worst_day_return: float
    worst_day_date: Optional[date]
    total_manual_trades: int = 0
    total_rules_fired: int = 0
    hodl_return: float = 0.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d["best_day_date"] = self.best_day_date.isoformat() if self.best_day_date else ""
        d["worst_day_date"] = self.worst_day_date.isoformat() if self.worst_day_date else ""
        return d


# ─── Summary statistics ───────────────────────────────────────────────────────

def compute_analytics(
    history: Sequence[PortfolioSnapshot],
    benchmark: Optional[Sequence[float]] = None,
    risk_free_rate: float = 0.02,
    rules_fired: int = 0,
    manual_trades: int = 0,
    hodl_return: float = 0.0,
) -> SimulationAnalytics:
    """
    Compute summary statistics for a simulation run.

    Args:
        history:        One snapshot per tick, in order
        benchmark:      Benchmark value per snapshot (see ``benchmark_values``);
                        defaults to the portfolio's own values
        risk_free_rate: Annual rate subtracted in the Sharpe ratio
        rules_fired:    Length of the run's rules log
        manual_trades:  Count of user orders filled
        hodl_return:    Buy-and-hold comparison (see ``buy_and_hold_return``)

    Returns:
        SimulationAnalytics. Fewer than 2 snapshots give the empty result.
    """
    if len(history) < 2:
        value = history[0].total_value if history else 0.0
        return _empty_analytics(value, rules_fired, manual_trades, hodl_return)

    values = np.array([s.total_value for s in history], dtype=float)
    returns = daily_returns(values)

    bench = np.asarray(benchmark, dtype=float) if benchmark is not None and len(benchmark) >= 2 else values
    bench_returns = daily_returns(bench)

    first, last = values[0], values[-1]
    total_return = float((last - first) / first) if first > 0 else 0.0

    best = int(np.argmax(returns))
    worst = int(np.argmin(returns))

    return SimulationAnalytics(
        final_value=float(last),
        starting_value=float(first),
        total_return=total_return,
        annualized_return=_annualized_return(total_return, history[0].date, history[-1].date),
        sharpe_ratio=sharpe_ratio(returns, risk_free_rate),
        max_drawdown=max_drawdown(values),
        annualized_volatility=annualized_volatility(returns),
        beta=beta(returns, bench_returns),
        best_day_return=float(returns[best]),
        best_day_date=history[best + 1].date,
        worst_day_return=float(returns[worst]),
        worst_day_date=history[worst + 1].date,
        total_manual_trades=manual_trades,
        total_rules_fired=rules_fired,
        hodl_return=hodl_return,
    )


def _empty_analytics(value: float, rules_fired: int, manual_trades: int, hodl_return: float) -> SimulationAnalytics:
    return SimulationAnalytics(
        final_value=value,
        starting_value=value,
        total_return=0.0,
        annualized_return=0.0,
        sharpe_ratio=0.0,
        max_drawdown=0.0,
        annualized_volatility=0.0,
        beta=1.0,
        best_day_return=0.0,
        best_day_date=None,
        worst_day_return=0.0,
        worst_day_date=None,
        total_manual_trades=manual_trades,
        total_rules_fired=rules_fired,
        hodl_return=hodl_return,
    )


def daily_returns(values: Sequence[float]) -> np.ndarray:
    """Simple returns between consecutive values; a zero base gives 0."""
    v = np.asarray(values, dtype=float)
    if len(v) < 2:
        return np.array([], dtype=float)
    prev, curr = v[:-1], v[1:]
    out = np.zeros_like(curr)
    np.divide(curr - prev, prev, out=out, where=prev != 0)
    return out


def annualized_volatility(returns: Sequence[float]) -> float:
    r = np.asarray(returns, dtype=float)
    if len(r) < 2:
        return 0.0
    return float(np.std(r, ddof=1) * math.sqrt(TRADING_DAYS_PER_YEAR))


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.02) -> float:
    """(mean daily return × 252 − rf) / annualized volatility, 0 on a flat series."""
    vol = annualized_volatility(returns)
    if vol < VOLATILITY_EPSILON:
        return 0.0
    mean_annual = float(np.mean(returns)) * TRADING_DAYS_PER_YEAR
    return (mean_annual - risk_free_rate) / vol


def max_drawdown(values: Sequence[float]) -> float:
    """Largest peak-to-trough decline as a decimal (e.g. -0.5)."""
    v = np.asarray(values, dtype=float)
    if len(v) == 0:
        return 0.0
    running_max = np.maximum.accumulate(v)
    drawdown = np.zeros_like(v)
    np.divide(v - running_max, running_max, out=drawdown, where=running_max > 0)
    return float(min(drawdown.min(), 0.0))


def beta(returns: Sequence[float], benchmark_returns: Sequence[float]) -> float:
    """Covariance / benchmark variance over the common prefix; 1 when undefined."""
    n = min(len(returns), len(benchmark_returns))
    if n < 2:
        return 1.0
    p = np.asarray(returns[:n], dtype=float)
    b = np.asarray(benchmark_returns[:n], dtype=float)
    var_b = float(np.sum((b - b.mean()) ** 2))
    if var_b == 0:
        return 1.0
    cov = float(np.sum((p - p.mean()) * (b - b.mean())))
    return cov / var_b


def _annualized_return(total_return: float, start: date, end: date) -> float:
    years = max((end - start).days / 365.25, 1 / 365.25)
    growth = 1 + total_return
    if growth <= 0:
        return -1.0
    try:
        return min(math.exp(math.log(growth) / years) - 1, ANNUALIZED_RETURN_CAP)
    except OverflowError:
        return ANNUALIZED_RETURN_CAP


# ─── Comparisons ──────────────────────────────────────────────────────────────

def benchmark_values(history: Sequence[PortfolioSnapshot], price_map: PriceMap, ticker: str) -> list[float]:
    """
    Benchmark close on (or before) each snapshot date.

    Returns an empty list when the ticker has no data, which makes
    ``compute_analytics`` fall back to the portfolio itself.
    """
    series = price_map.get(ticker)
    if not series:
        logger.warning("No benchmark data for %s", ticker)
        return []
    out: list[float] = []
    for snap in history:
        bar = bar_on_or_before(series, snap.date)
        out.append(bar.close if bar is not None else (out[-1] if out else 0.0))
    return out


def buy_and_hold_return(allocations: Sequence, price_map: PriceMap) -> float:
    """
    Return of holding the initial allocations untouched, first to last close.

    ``allocations`` items need ``ticker`` and ``pct`` (0-100). Unallocated
    cash earns nothing; tickers without data are treated as cash.
    """
    total = 0.0
    for alloc in allocations:
        series = price_map.get(alloc.ticker)
        if not series or series[0].close <= 0:
            continue
        growth = series[-1].close / series[0].close - 1
        total += alloc.pct / 100.0 * growth
    return total


# ─── Display helpers ──────────────────────────────────────────────────────────

def history_to_frame(history: Sequence[PortfolioSnapshot]) -> pd.DataFrame:
    """Snapshot history as a DataFrame, one row per tick, one value column per position."""
    if not history:
        return pd.DataFrame()

    rows = []
    for snap in history:
        row = {
            "date": snap.date,
            "total_value": snap.total_value,
            "cash_balance": snap.cash_balance,
            "day_return": snap.day_return,
            "cumulative_return": snap.cumulative_return,
            "projected": snap.projected,
        }
        for pos in snap.positions:
            row[f"value:{pos.position_id}"] = pos.value
        rows.append(row)

    df = pd.DataFrame(rows)
    value_cols = [c for c in df.columns if c.startswith("value:")]
    if value_cols:
        df[value_cols] = df[value_cols].fillna(0.0)
    return df


def format_stats_table(analytics: SimulationAnalytics, scenario: str = "") -> pd.DataFrame:
    """Format summary stats as a two-column DataFrame for display."""
    rows = [
        ("Scenario", scenario or "-"),
        ("Starting Value", f"${analytics.starting_value:,.2f}"),
        ("Final Value", f"${analytics.final_value:,.2f}"),
        ("Total Return", f"{analytics.total_return * 100:.2f}%"),
        ("Annualized Return", f"{analytics.annualized_return * 100:.2f}%"),
        ("Buy & Hold Return", f"{analytics.hodl_return * 100:.2f}%"),
        ("Sharpe Ratio", f"{analytics.sharpe_ratio:.3f}"),
        ("Max Drawdown", f"{analytics.max_drawdown * 100:.2f}%"),
        ("Volatility", f"{analytics.annualized_volatility * 100:.2f}%"),
        ("Beta", f"{analytics.beta:.3f}"),
    ]
    if analytics.best_day_date is not None:
        rows.append(("Best Day", f"{analytics.best_day_return * 100:+.2f}% ({analytics.best_day_date})"))
    if analytics.worst_day_date is not None:
        rows.append(("Worst Day", f"{analytics.worst_day_return * 100:+.2f}% ({analytics.worst_day_date})"))
    rows.append(("Rules Fired", str(analytics.total_rules_fired)))
    rows.append(("Manual Trades", str(analytics.total_manual_trades)))

    return pd.DataFrame(rows, columns=["Metric", "Value"])


def format_rules_log(rules_log: Sequence[RuleFireEvent]) -> pd.DataFrame:
    if not rules_log:
        return pd.DataFrame()
    return pd.DataFrame(
        [
            {
                "Date": ev.date.isoformat(),
                "Rule": ev.rule_name,
                "When": ev.trigger_description,
                "Action": ev.action_description,
            }
            for ev in rules_log
        ]
    )
