"""
Closed-form option pricing for the simulator.

Black-Scholes values the written options each tick. Historical price series
carry no options chains, so implied volatility is proxied by trailing realised
volatility of the underlying.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Sequence

import numpy as np
from scipy.stats import norm

from .models import CONTRACT_MULTIPLIER, OptionType, PriceSeries

DEFAULT_VOLATILITY = 0.20
TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class OptionQuote:
    """Per-share option price and Greeks."""

    price: float
    delta: float
    gamma: float
    theta: float  # per calendar day
    vega: float   # per 1 point of volatility
    rho: float    # per 1 point of interest rate


def black_scholes(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    option_type: str = "put",
) -> OptionQuote:
    """
    Black-Scholes European option price and Greeks.

    Args:
        S:           Underlying spot price
        K:           Strike price
        T:           Time to expiration in years
        r:           Annual risk-free interest rate (decimal)
        sigma:       Annual volatility (decimal)
        option_type: "put" or "call"

    At or past expiry the intrinsic value is returned with a degenerate
    delta. With zero volatility the option is worth its discounted
    intrinsic value against the forward.
    """
    is_call = option_type == OptionType.CALL

    if T <= 0:
        intrinsic = max(0.0, S - K) if is_call else max(0.0, K - S)
        delta = (1.0 if is_call else -1.0) if intrinsic > 0 else 0.0
        return OptionQuote(price=intrinsic, delta=delta, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)

    discount = math.exp(-r * T)

    if sigma <= 0 or S <= 0 or K <= 0:
        forward_intrinsic = S - K * discount if is_call else K * discount - S
        price = max(0.0, forward_intrinsic)
        if price > 0:
            delta = 1.0 if is_call else -1.0
        else:
            delta = 0.0
        return OptionQuote(price=price, delta=delta, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)

    sqrt_t = math.sqrt(T)
    d1 = (math.log(S / K) + (r + 0.5 * sigma ** 2) * T) / (sigma * sqrt_t)
    d2 = d1 - sigma * sqrt_t
    pdf_d1 = norm.pdf(d1)

    if is_call:
        price = S * norm.cdf(d1) - K * discount * norm.cdf(d2)
        delta = norm.cdf(d1)
        theta = -(S * pdf_d1 * sigma) / (2 * sqrt_t) - r * K * discount * norm.cdf(d2)
        rho = K * T * discount * norm.cdf(d2)
    else:
        price = K * discount * norm.cdf(-d2) - S * norm.cdf(-d1)
        delta = norm.cdf(d1) - 1.0
        theta = -(S * pdf_d1 * sigma) / (2 * sqrt_t) + r * K * discount * norm.cdf(-d2)
        rho = -K * T * discount * norm.cdf(-d2)

    return OptionQuote(
        price=max(0.0, float(price)),
        delta=float(delta),
        gamma=float(pdf_d1 / (S * sigma * sqrt_t)),
        theta=float(theta) / 365.0,
        vega=float(S * pdf_d1 * sqrt_t) / 100.0,
        rho=float(rho) / 100.0,
    )


def historical_volatility(closes: Sequence[float], window: int = 30) -> float:
    """
    Annualised volatility of the trailing ``window`` daily log returns.

    Fewer than two usable returns gives the 20% default.
    """
    prices = np.asarray(closes, dtype=float)
    prices = prices[prices > 0]
    if prices.size < 2:
        return DEFAULT_VOLATILITY
    log_ret = np.diff(np.log(prices))[-window:]
    if log_ret.size < 2:
        return DEFAULT_VOLATILITY
    return float(np.std(log_ret, ddof=1) * math.sqrt(TRADING_DAYS_PER_YEAR))


def years_to_expiry(expiry_date: date, pricing_date: date) -> float:
    return max(0.0, (expiry_date - pricing_date).days / 365.0)


def find_strike_by_delta(
    S: float,
    T: float,
    sigma: float,
    target_delta: float,
    option_type: str = "put",
    r: float = 0.045,
) -> float:
    """
    Find theoretical strike for a target delta using BS inversion.

    ``target_delta`` is the absolute delta magnitude (e.g. 0.30 means 30-delta).
    For puts the actual delta is negative; for calls it is positive.
    """
    if T <= 0 or sigma <= 0:
        return S
    if option_type == OptionType.PUT:
        # Put delta = N(d1) - 1; for |delta|=0.30 → N(d1)=0.70
        d1 = norm.ppf(1.0 - target_delta)
    else:
        d1 = norm.ppf(target_delta)

    exponent = -(d1 * sigma * math.sqrt(T)) + (r + 0.5 * sigma ** 2) * T
    return float(S * math.exp(exponent))


def quote_premium(
    series: PriceSeries,
    date_index: int,
    strike: float,
    expiry_date: date,
    option_type: str,
    risk_free_rate: float,
    contracts: int = 1,
) -> float:
    """
    Total premium in dollars for writing ``contracts`` options at the close
    of ``series[date_index]``.

    Returns 0.0 when the bar is missing or the option has already expired,
    which ``apply_trade`` treats as a no-op order.
    """
    if not 0 <= date_index < len(series) or contracts <= 0:
        return 0.0
    bar = series[date_index]
    T = years_to_expiry(expiry_date, bar.date)
    if bar.close <= 0 or T <= 0:
        return 0.0
    sigma = historical_volatility([b.close for b in series[: date_index + 1]])
    quote = black_scholes(S=bar.close, K=strike, T=T, r=risk_free_rate, sigma=sigma, option_type=option_type)
    return quote.price * CONTRACT_MULTIPLIER * contracts
