"""Lookups over the ticker → daily bar map."""

from __future__ import annotations

import bisect
from datetime import date
from typing import Optional

from .models import PriceBar, PriceMap, PriceSeries


def primary_series(price_map: PriceMap) -> PriceSeries:
    """The longest series drives the simulation calendar (first wins ties)."""
    longest: PriceSeries = []
    for series in price_map.values():
        if len(series) > len(longest):
            longest = series
    return longest


def date_at(price_map: PriceMap, index: int) -> Optional[date]:
    series = primary_series(price_map)
    if 0 <= index < len(series):
        return series[index].date
    return None


def index_of_date(series: PriceSeries, on_date: date) -> Optional[int]:
    idx = bisect.bisect_left(series, on_date, key=lambda bar: bar.date)
    if idx < len(series) and series[idx].date == on_date:
        return idx
    return None


def bar_on_or_before(series: Optional[PriceSeries], on_date: date) -> Optional[PriceBar]:
    """The bar dated ``on_date``, else the nearest earlier one."""
    if not series:
        return None
    idx = bisect.bisect_right(series, on_date, key=lambda bar: bar.date)
    if idx == 0:
        return None
    return series[idx - 1]


def open_price(price_map: PriceMap, ticker: str, on_date: date) -> float:
    """Execution price for an order on ``on_date``; 0.0 when unavailable."""
    bar = bar_on_or_before(price_map.get(ticker), on_date)
    if bar is None:
        return 0.0
    return float(bar.open)


def close_at(price_map: PriceMap, ticker: str, index: int) -> float:
    series = price_map.get(ticker) or []
    if 0 <= index < len(series):
        return float(series[index].close)
    return 0.0
