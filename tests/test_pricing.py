"""Tests for Black-Scholes pricing, volatility estimation and premium quotes."""

from __future__ import annotations

import math
from datetime import date, timedelta

import pytest

# Adjust path so tests can import the package
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portfolio_sim.models import PriceBar
from portfolio_sim.pricing import (
    DEFAULT_VOLATILITY,
    black_scholes,
    find_strike_by_delta,
    historical_volatility,
    quote_premium,
    years_to_expiry,
)


def make_series(closes: list[float], start: date = date(2024, 1, 2)) -> list[PriceBar]:
    return [
        PriceBar(date=start + timedelta(days=i), open=c, high=c, low=c, close=c)
        for i, c in enumerate(closes)
    ]


# ─── Black-Scholes correctness ────────────────────────────────────────────────

class TestBlackScholes:
    def test_atm_put_and_call_positive(self):
        put = black_scholes(S=100, K=100, T=0.25, r=0.045, sigma=0.20, option_type="put")
        call = black_scholes(S=100, K=100, T=0.25, r=0.045, sigma=0.20, option_type="call")
        assert put.price > 0
        assert call.price > put.price  # positive carry favours the call

    def test_known_value(self):
        """Textbook case: S=K=100, T=1, r=5%, sigma=20% call ≈ 10.45."""
        call = black_scholes(S=100, K=100, T=1.0, r=0.05, sigma=0.20, option_type="call")
        assert call.price == pytest.approx(10.4506, abs=1e-3)

    @pytest.mark.parametrize("S,K,T,r,sigma", [
        (100, 100, 0.25, 0.045, 0.20),
        (90, 110, 0.5, 0.01, 0.35),
        (250, 200, 0.08, 0.05, 0.60),
    ])
    def test_put_call_parity(self, S, K, T, r, sigma):
        call = black_scholes(S, K, T, r, sigma, "call")
        put = black_scholes(S, K, T, r, sigma, "put")
        assert call.price - put.price == pytest.approx(S - K * math.exp(-r * T), abs=1e-8)

    def test_delta_ranges(self):
        put = black_scholes(S=100, K=95, T=0.25, r=0.045, sigma=0.25, option_type="put")
        call = black_scholes(S=100, K=95, T=0.25, r=0.045, sigma=0.25, option_type="call")
        assert -1.0 < put.delta < 0.0
        assert 0.0 < call.delta < 1.0
        assert call.delta - put.delta == pytest.approx(1.0)

    def test_greeks_signs(self):
        q = black_scholes(S=100, K=100, T=0.25, r=0.045, sigma=0.20, option_type="put")
        assert q.gamma > 0
        assert q.vega > 0
        assert q.theta < 0
        assert q.rho < 0

    def test_theta_is_per_day(self):
        q = black_scholes(S=100, K=100, T=0.25, r=0.0, sigma=0.20, option_type="call")
        # Annual theta at r=0 is -S σ φ(d1) / (2√T), d1 = σ√T / 2
        annual = -100 * 0.20 * 0.398444 / (2 * 0.5)
        assert q.theta == pytest.approx(annual / 365.0, rel=1e-3)


class TestBlackScholesEdges:
    def test_expired_put_intrinsic(self):
        q = black_scholes(S=90, K=100, T=0.0, r=0.045, sigma=0.20, option_type="put")
        assert q.price == pytest.approx(10.0)
        assert q.delta == -1.0
        assert (q.gamma, q.theta, q.vega, q.rho) == (0.0, 0.0, 0.0, 0.0)

    def test_expired_otm_call_zero(self):
        q = black_scholes(S=90, K=100, T=-0.1, r=0.045, sigma=0.20, option_type="call")
        assert q.price == 0.0
        assert q.delta == 0.0

    def test_zero_vol_is_discounted_forward_intrinsic(self):
        q = black_scholes(S=100, K=110, T=1.0, r=0.05, sigma=0.0, option_type="put")
        assert q.price == pytest.approx(110 * math.exp(-0.05) - 100)
        assert q.delta == -1.0
        assert math.isfinite(q.price)

    def test_zero_vol_otm_is_worthless(self):
        q = black_scholes(S=100, K=90, T=0.5, r=0.05, sigma=0.0, option_type="put")
        assert q.price == 0.0
        assert q.delta == 0.0


# ─── Volatility ───────────────────────────────────────────────────────────────

class TestHistoricalVolatility:
    def test_default_when_too_short(self):
        assert historical_volatility([]) == DEFAULT_VOLATILITY
        assert historical_volatility([100.0]) == DEFAULT_VOLATILITY
        assert historical_volatility([100.0, 101.0]) == DEFAULT_VOLATILITY

    def test_flat_series_zero(self):
        assert historical_volatility([100.0] * 10) == pytest.approx(0.0)

    def test_alternating_series(self):
        closes = [100.0, 101.0] * 20
        vol = historical_volatility(closes)
        assert 0.1 < vol < 0.3

    def test_window_uses_trailing_observations(self):
        choppy = [100.0, 110.0] * 20
        calm = [100.0 + 0.01 * i for i in range(31)]
        assert historical_volatility(choppy + calm, window=30) < 0.01


# ─── Strike selection and quotes ──────────────────────────────────────────────

class TestFindStrikeByDelta:
    def test_put_strike_below_spot(self):
        strike = find_strike_by_delta(S=100, T=45 / 365, sigma=0.25, target_delta=0.30, option_type="put")
        assert strike < 100

    def test_call_strike_above_spot(self):
        strike = find_strike_by_delta(S=100, T=45 / 365, sigma=0.25, target_delta=0.30, option_type="call")
        assert strike > 100

    def test_roundtrip_delta(self):
        T, sigma, r = 45 / 365, 0.25, 0.045
        strike = find_strike_by_delta(S=100, T=T, sigma=sigma, target_delta=0.30, option_type="put", r=r)
        q = black_scholes(S=100, K=strike, T=T, r=r, sigma=sigma, option_type="put")
        assert q.delta == pytest.approx(-0.30, abs=1e-6)

    def test_degenerate_returns_spot(self):
        assert find_strike_by_delta(S=100, T=0, sigma=0.2, target_delta=0.3) == 100


class TestQuotePremium:
    def test_premium_scales_with_contracts(self):
        series = make_series([100.0 + (i % 3) for i in range(40)])
        expiry = series[-1].date + timedelta(days=30)
        one = quote_premium(series, 39, 95.0, expiry, "put", 0.045, contracts=1)
        three = quote_premium(series, 39, 95.0, expiry, "put", 0.045, contracts=3)
        assert one > 0
        assert three == pytest.approx(3 * one)

    def test_expired_or_missing_bar_is_zero(self):
        series = make_series([100.0] * 5)
        assert quote_premium(series, 4, 95.0, series[4].date, "put", 0.045) == 0.0
        assert quote_premium(series, 10, 95.0, date(2030, 1, 1), "put", 0.045) == 0.0

    def test_years_to_expiry_floor(self):
        assert years_to_expiry(date(2024, 1, 1), date(2024, 2, 1)) == 0.0
        assert years_to_expiry(date(2025, 1, 1), date(2024, 1, 1)) == pytest.approx(366 / 365)
