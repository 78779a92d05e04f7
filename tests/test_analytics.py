"""Tests for performance analytics and display frames."""

from __future__ import annotations

import math
from datetime import date, timedelta

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portfolio_sim.analytics import (
    ANNUALIZED_RETURN_CAP,
    annualized_volatility,
    benchmark_values,
    beta,
    buy_and_hold_return,
    compute_analytics,
    daily_returns,
    format_rules_log,
    format_stats_table,
    history_to_frame,
    max_drawdown,
    sharpe_ratio,
)
from portfolio_sim.config import Allocation
from portfolio_sim.models import PortfolioSnapshot, PositionSnapshot, PriceBar, RuleFireEvent

D0 = date(2024, 1, 2)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

def make_history(values: list[float], start: date = D0) -> list[PortfolioSnapshot]:
    return [
        PortfolioSnapshot(
            date=start + timedelta(days=i),
            total_value=v,
            cash_balance=v,
            positions=(),
            day_return=0.0,
            cumulative_return=v / values[0] - 1,
        )
        for i, v in enumerate(values)
    ]


def make_series(closes: list[float], start: date = D0) -> list[PriceBar]:
    return [
        PriceBar(date=start + timedelta(days=i), open=c, high=c, low=c, close=c)
        for i, c in enumerate(closes)
    ]


# ─── Primitives ───────────────────────────────────────────────────────────────

class TestPrimitives:
    def test_daily_returns(self):
        assert list(daily_returns([100, 110, 99])) == pytest.approx([0.10, -0.10])
        assert list(daily_returns([0, 10])) == [0.0]
        assert len(daily_returns([100])) == 0

    def test_max_drawdown(self):
        assert max_drawdown([100, 150, 200, 150, 100]) == pytest.approx(-0.5)
        assert max_drawdown([100, 110, 120]) == 0.0
        assert max_drawdown([]) == 0.0

    def test_beta_of_self_is_one(self):
        r = daily_returns([100, 103, 101, 106, 104, 108])
        assert beta(r, r) == pytest.approx(1.0)

    def test_beta_scales(self):
        b = [0.01, -0.02, 0.015, 0.005]
        assert beta([2 * x for x in b], b) == pytest.approx(2.0)

    def test_beta_degenerate_is_one(self):
        assert beta([0.01], [0.02]) == 1.0
        assert beta([0.01, 0.02, 0.03], [0.01, 0.01, 0.01]) == 1.0

    def test_volatility_and_sharpe(self):
        r = [0.01, -0.01] * 10
        vol = annualized_volatility(r)
        assert vol == pytest.approx(0.0102598 * math.sqrt(252), rel=1e-4)
        assert sharpe_ratio(r, 0.02) == pytest.approx((0.0 - 0.02) / vol)

    def test_flat_series_sharpe_zero(self):
        assert sharpe_ratio([0.0] * 10) == 0.0
        assert sharpe_ratio([0.001] * 10) == 0.0


# ─── compute_analytics ────────────────────────────────────────────────────────

class TestComputeAnalytics:
    def test_empty_history(self):
        a = compute_analytics([])
        assert a.final_value == 0.0
        assert a.beta == 1.0
        assert a.sharpe_ratio == 0.0

    def test_single_snapshot(self):
        a = compute_analytics(make_history([10_000]), rules_fired=2)
        assert a.final_value == 10_000
        assert a.starting_value == 10_000
        assert a.total_return == 0.0
        assert a.total_rules_fired == 2
        assert a.best_day_date is None

    def test_full_stats(self):
        history = make_history([100, 150, 200, 150, 100])
        a = compute_analytics(history, risk_free_rate=0.0, rules_fired=1, manual_trades=3, hodl_return=0.05)
        assert a.total_return == pytest.approx(0.0)
        assert a.max_drawdown == pytest.approx(-0.5)
        assert a.best_day_return == pytest.approx(0.5)
        assert a.best_day_date == D0 + timedelta(days=1)
        assert a.worst_day_return == pytest.approx(-1 / 3)
        assert a.worst_day_date == D0 + timedelta(days=4)
        assert a.beta == pytest.approx(1.0)
        assert a.total_manual_trades == 3
        assert a.hodl_return == 0.05
        assert math.isfinite(a.sharpe_ratio)

    def test_one_day_jump_does_not_overflow(self):
        a = compute_analytics(make_history([10_000, 80_000]))
        assert a.total_return == pytest.approx(7.0)
        assert a.annualized_return == ANNUALIZED_RETURN_CAP
        assert math.isfinite(a.sharpe_ratio)

    def test_benchmark_beta(self):
        history = make_history([100, 102, 101, 104, 103])
        bench = [50, 51, 50.5, 52, 51.5]  # identical returns at half the price
        a = compute_analytics(history, bench)
        assert a.beta == pytest.approx(1.0)

    def test_to_dict(self):
        d = compute_analytics(make_history([100, 110, 105])).to_dict()
        assert d["final_value"] == 105
        assert d["best_day_date"] == (D0 + timedelta(days=1)).isoformat()
        assert compute_analytics([]).to_dict()["worst_day_date"] == ""


# ─── Comparisons ──────────────────────────────────────────────────────────────

class TestComparisons:
    def test_benchmark_values_aligned_to_history(self):
        history = make_history([100, 101, 102])
        series = make_series([10.0, 11.0])  # no bar on the third date
        assert benchmark_values(history, {"SPY": series}, "SPY") == [10.0, 11.0, 11.0]
        assert benchmark_values(history, {}, "SPY") == []

    def test_buy_and_hold(self):
        prices = {"AAA": make_series([100.0, 150.0]), "BBB": make_series([50.0, 25.0])}
        allocations = [Allocation("AAA", 60), Allocation("BBB", 20), Allocation("ZZZ", 10)]
        assert buy_and_hold_return(allocations, prices) == pytest.approx(0.6 * 0.5 + 0.2 * -0.5)


# ─── Display helpers ──────────────────────────────────────────────────────────

class TestDisplay:
    def test_history_frame(self):
        history = make_history([100, 110])
        history[1] = PortfolioSnapshot(
            date=history[1].date,
            total_value=110,
            cash_balance=60,
            positions=(PositionSnapshot("AAA", "AAA", 50, 1, 50, 0.0),),
            day_return=0.1,
            cumulative_return=0.1,
        )
        df = history_to_frame(history)
        assert list(df["total_value"]) == [100, 110]
        assert list(df["value:AAA"]) == [0.0, 50]

    def test_empty_frames(self):
        assert history_to_frame([]).empty
        assert format_rules_log([]).empty

    def test_stats_table(self):
        df = format_stats_table(compute_analytics(make_history([100, 150, 200, 150, 100])), "Crash")
        table = dict(zip(df["Metric"], df["Value"]))
        assert table["Scenario"] == "Crash"
        assert table["Max Drawdown"] == "-50.00%"
        assert "Best Day" in table

    def test_rules_log_frame(self):
        log = [RuleFireEvent("r1", "Dip", D0, "cash_balance > 100", "buy AAA $10.00")]
        df = format_rules_log(log)
        assert df.iloc[0]["Rule"] == "Dip"
        assert df.iloc[0]["Date"] == "2024-01-02"
