"""
Monte Carlo price projection.

Extends historical series past their last bar with a geometric random walk
parameterised by trailing volatility. Projected bars carry ``projected=True``
so snapshots built from them are flagged too. Runs once as a data-preparation
step before the simulation starts; the engine never draws random numbers.
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Optional

import numpy as np
import pandas as pd

from portfolio_sim.models import PriceBar, PriceMap, PriceSeries
from portfolio_sim.pricing import TRADING_DAYS_PER_YEAR, historical_volatility

logger = logging.getLogger(__name__)

MIN_PRICE = 0.01
VOLATILITY_WINDOW = 60


def generate_projection(
    last_bar: PriceBar,
    num_days: int,
    annual_volatility: float,
    annual_drift: float = 0.0,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> PriceSeries:
    """
    Random-walk ``num_days`` business days forward from ``last_bar``.

    Pass either ``seed`` or a shared ``rng``; the same seed always yields
    the same bars.
    """
    if num_days <= 0:
        return []
    if rng is None:
        rng = np.random.default_rng(seed)

    daily_vol = max(annual_volatility, 0.0) / math.sqrt(TRADING_DAYS_PER_YEAR)
    daily_drift = annual_drift / TRADING_DAYS_PER_YEAR
    dates = pd.bdate_range(start=last_bar.date + timedelta(days=1), periods=num_days)

    # Four normal draws per day: close, open, high wick, low wick
    shocks = rng.standard_normal((num_days, 4))
    volumes = rng.normal(1_000_000, 500_000, num_days)

    bars: PriceSeries = []
    prev_close = last_bar.close
    for i, day in enumerate(dates):
        z_close, z_open, z_high, z_low = shocks[i]
        close = prev_close * math.exp(daily_drift + daily_vol * z_close)
        open_ = prev_close * (1 + z_open * daily_vol * 0.3)
        high = max(open_, close) * (1 + abs(z_high) * daily_vol * 0.2)
        low = min(open_, close) * (1 - abs(z_low) * daily_vol * 0.2)
        bars.append(
            PriceBar(
                date=day.date(),
                open=max(open_, MIN_PRICE),
                high=max(high, MIN_PRICE),
                low=max(low, MIN_PRICE),
                close=max(close, MIN_PRICE),
                volume=max(int(volumes[i]), 0),
                projected=True,
            )
        )
        prev_close = close
    return bars


def extend_with_projections(
    price_map: PriceMap,
    num_days: int,
    seed: Optional[int] = None,
    annual_drift: float = 0.0,
) -> PriceMap:
    """
    Return a new price map with every non-empty series extended by
    ``num_days`` projected bars. Volatility comes from each series' own
    trailing closes.
    """
    if num_days <= 0:
        return dict(price_map)

    rng = np.random.default_rng(seed)
    extended: PriceMap = {}
    for ticker, series in price_map.items():
        if not series:
            extended[ticker] = list(series)
            continue
        closes = [b.close for b in series]
        vol = historical_volatility(closes, window=min(VOLATILITY_WINDOW, max(len(series) - 1, 1)))
        projected = generate_projection(series[-1], num_days, vol, annual_drift, rng=rng)
        logger.debug("Projected %s %d days at %.1f%% vol", ticker, num_days, vol * 100)
        extended[ticker] = list(series) + projected
    return extended
