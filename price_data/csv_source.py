"""Local CSV price source: one ``{TICKER}.csv`` file per instrument."""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from portfolio_sim.models import PriceSeries

from .base import PriceDataError, PriceSource, clip_series, frame_to_series, series_to_frame

logger = logging.getLogger(__name__)


class CsvPriceSource(PriceSource):
    """Daily OHLCV bars read from a directory of CSV files."""

    def __init__(self, prices_dir: str | Path):
        self.prices_dir = Path(prices_dir)

    def path_for(self, ticker: str) -> Path:
        return self.prices_dir / f"{ticker.upper()}.csv"

    def available_tickers(self) -> list[str]:
        if not self.prices_dir.is_dir():
            return []
        return sorted(p.stem.upper() for p in self.prices_dir.glob("*.csv"))

    def get_history(
        self,
        ticker: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PriceSeries:
        path = self.path_for(ticker)
        if not path.exists():
            raise PriceDataError(f"No price file for {ticker} at {path}")
        try:
            df = pd.read_csv(path)
        except (OSError, ValueError) as exc:
            raise PriceDataError(f"Could not read {path}: {exc}") from exc

        series = clip_series(frame_to_series(df, ticker), start, end)
        if not series:
            logger.warning("No bars for %s in %s..%s", ticker, start, end)
        else:
            logger.debug("Loaded %d bars for %s from %s", len(series), ticker, path)
        return series

    def save(self, ticker: str, series: PriceSeries) -> Path:
        """Write ``series`` to ``{TICKER}.csv``, creating the directory if needed."""
        self.prices_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(ticker)
        series_to_frame(series).to_csv(path, index=False)
        return path
