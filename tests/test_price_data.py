"""Tests for CSV price loading and Monte Carlo projection."""

from __future__ import annotations

from datetime import date, timedelta

import pandas as pd
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portfolio_sim.models import PriceBar
from price_data import CsvPriceSource, PriceDataError, get_source
from price_data.base import frame_to_series, series_to_frame
from price_data.projection import extend_with_projections, generate_projection

D0 = date(2024, 1, 2)


def make_series(closes: list[float], start: date = D0) -> list[PriceBar]:
    return [
        PriceBar(date=start + timedelta(days=i), open=c, high=c * 1.01, low=c * 0.99, close=c, volume=1_000)
        for i, c in enumerate(closes)
    ]


# ─── Frame conversion ─────────────────────────────────────────────────────────

class TestFrameConversion:
    def test_round_trip(self):
        series = make_series([100.0, 101.5, 99.25])
        assert frame_to_series(series_to_frame(series)) == series

    def test_capitalised_columns_and_date_index(self):
        df = pd.DataFrame(
            {"Open": [10.0, 11.0], "High": [10.5, 11.5], "Low": [9.5, 10.5], "Close": [10.2, 11.2], "Volume": [5, 6]},
            index=pd.to_datetime(["2024-01-03", "2024-01-02"]),
        )
        series = frame_to_series(df)
        assert [b.date for b in series] == [date(2024, 1, 2), date(2024, 1, 3)]
        assert series[0].close == 11.2

    def test_close_only_and_bad_rows(self):
        df = pd.DataFrame({"date": ["2024-01-02", "2024-01-03", "2024-01-04"], "close": [10.0, None, 0.0]})
        (bar,) = frame_to_series(df)
        assert bar.open == bar.high == bar.low == bar.close == 10.0
        assert bar.volume == 0

    def test_missing_close_raises(self):
        with pytest.raises(PriceDataError):
            frame_to_series(pd.DataFrame({"date": ["2024-01-02"], "open": [1.0]}), "XYZ")

    def test_empty_frame(self):
        assert frame_to_series(pd.DataFrame()) == []


# ─── CSV source ───────────────────────────────────────────────────────────────

class TestCsvPriceSource:
    def test_save_and_load(self, tmp_path):
        source = CsvPriceSource(tmp_path)
        series = make_series([100.0, 102.0, 104.0, 103.0])
        source.save("abc", series)
        assert source.available_tickers() == ["ABC"]
        loaded = source.get_history("ABC")
        assert [b.date for b in loaded] == [b.date for b in series]
        assert [b.high for b in loaded] == pytest.approx([b.high for b in series])
        clipped = source.get_history("abc", start=D0 + timedelta(days=1), end=D0 + timedelta(days=2))
        assert [b.close for b in clipped] == [102.0, 104.0]

    def test_load_keeps_ticker_order(self, tmp_path):
        source = CsvPriceSource(tmp_path)
        source.save("BBB", make_series([1.0]))
        source.save("AAA", make_series([2.0]))
        assert list(source.load(["BBB", "AAA", "BBB"])) == ["BBB", "AAA"]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(PriceDataError):
            CsvPriceSource(tmp_path).get_history("NOPE")

    def test_factory(self, tmp_path):
        source = get_source({"data": {"prices_dir": str(tmp_path)}})
        assert isinstance(source, CsvPriceSource)
        assert source.get_name() == "CsvPriceSource"


# ─── Projection ───────────────────────────────────────────────────────────────

class TestProjection:
    def test_deterministic_for_seed(self):
        last = make_series([100.0])[0]
        a = generate_projection(last, 20, 0.3, seed=42)
        b = generate_projection(last, 20, 0.3, seed=42)
        c = generate_projection(last, 20, 0.3, seed=43)
        assert a == b
        assert a != c

    def test_business_days_and_flags(self):
        friday = PriceBar(date=date(2024, 1, 5), open=100, high=100, low=100, close=100)
        bars = generate_projection(friday, 5, 0.2, seed=1)
        assert bars[0].date == date(2024, 1, 8)
        assert all(b.date.weekday() < 5 for b in bars)
        assert all(b.projected for b in bars)
        assert all(b.low <= min(b.open, b.close) and b.high >= max(b.open, b.close) for b in bars)
        assert all(b.close >= 0.01 for b in bars)

    def test_zero_volatility_is_flat(self):
        last = make_series([100.0])[0]
        bars = generate_projection(last, 3, 0.0, seed=1)
        assert [b.close for b in bars] == pytest.approx([100.0] * 3)

    def test_no_days(self):
        assert generate_projection(make_series([100.0])[0], 0, 0.2, seed=1) == []

    def test_extend_with_projections(self):
        prices = {"AAA": make_series([100.0, 101.0, 99.0, 102.0]), "EMPTY": []}
        extended = extend_with_projections(prices, 10, seed=7)
        assert len(extended["AAA"]) == 14
        assert extended["AAA"][:4] == prices["AAA"]
        assert all(b.projected for b in extended["AAA"][4:])
        assert extended["EMPTY"] == []
        assert len(prices["AAA"]) == 4
        assert extend_with_projections(prices, 10, seed=7) == extended
