"""Base interface for daily price sources, plus DataFrame conversion helpers."""

from __future__ import annotations

import abc
from datetime import date
from typing import Iterable, Optional

import pandas as pd

from portfolio_sim.models import PriceBar, PriceMap, PriceSeries

OHLC_COLUMNS = ("open", "high", "low", "close")


class PriceDataError(Exception):
    """Raised when price data is missing, unreadable or lacks OHLC columns."""


def _normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.columns = [str(c).strip().lower().replace(" ", "_") for c in out.columns]
    if "date" not in out.columns:
        out = out.reset_index()
        out.columns = ["date" if i == 0 else c for i, c in enumerate(out.columns)]
    return out


def frame_to_series(df: pd.DataFrame, ticker: str = "") -> PriceSeries:
    """
    Convert an OHLCV DataFrame into a date-ascending ``PriceSeries``.

    Accepts either a ``date`` column or a date-like index, with column names
    in any case (``Close`` / ``close``). Rows with a missing or non-positive
    close are dropped; a missing open, high or low falls back to the close.
    """
    if df is None or df.empty:
        return []

    frame = _normalise_columns(df)
    if "close" not in frame.columns:
        raise PriceDataError(f"{ticker or 'price data'}: no close column (have {list(frame.columns)})")

    frame["date"] = pd.to_datetime(frame["date"]).dt.date
    for col in OHLC_COLUMNS:
        if col not in frame.columns:
            frame[col] = frame["close"]
        frame[col] = pd.to_numeric(frame[col], errors="coerce")
    frame["open"] = frame["open"].fillna(frame["close"])
    frame["high"] = frame["high"].fillna(frame["close"])
    frame["low"] = frame["low"].fillna(frame["close"])

    if "volume" not in frame.columns:
        frame["volume"] = 0
    frame["volume"] = pd.to_numeric(frame["volume"], errors="coerce").fillna(0)
    if "projected" not in frame.columns:
        frame["projected"] = False
    frame["projected"] = frame["projected"].fillna(False).astype(bool)

    frame = frame[frame["close"] > 0].sort_values("date").drop_duplicates("date", keep="last")

    return [
        PriceBar(
            date=row.date,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
            projected=bool(row.projected),
        )
        for row in frame.itertuples(index=False)
    ]


def series_to_frame(series: PriceSeries) -> pd.DataFrame:
    """Inverse of ``frame_to_series``: one row per bar, lower-case columns."""
    return pd.DataFrame(
        [
            {
                "date": bar.date,
                "open": bar.open,
                "high": bar.high,
                "low": bar.low,
                "close": bar.close,
                "volume": bar.volume,
                "projected": bar.projected,
            }
            for bar in series
        ],
        columns=["date", *OHLC_COLUMNS, "volume", "projected"],
    )


def clip_series(series: PriceSeries, start: Optional[date] = None, end: Optional[date] = None) -> PriceSeries:
    return [b for b in series if (start is None or b.date >= start) and (end is None or b.date <= end)]


class PriceSource(abc.ABC):
    """Abstract base class for all daily price providers."""

    @abc.abstractmethod
    def get_history(
        self,
        ticker: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PriceSeries:
        """
        Fetch daily bars for ``ticker`` between ``start`` and ``end`` inclusive.

        Raises PriceDataError when the ticker is unknown or unreadable.
        """
        ...

    def load(
        self,
        tickers: Iterable[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PriceMap:
        """Build a price map; insertion order follows ``tickers``."""
        price_map: PriceMap = {}
        for ticker in tickers:
            if ticker in price_map:
                continue
            price_map[ticker] = self.get_history(ticker, start, end)
        return price_map

    def get_name(self) -> str:
        """Return the provider name."""
        return self.__class__.__name__
