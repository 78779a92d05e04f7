"""Price data package: provider-agnostic daily bar loading and projection."""

from .base import PriceDataError, PriceSource, frame_to_series, series_to_frame
from .csv_source import CsvPriceSource
from .projection import extend_with_projections, generate_projection

__all__ = [
    "PriceSource",
    "PriceDataError",
    "CsvPriceSource",
    "frame_to_series",
    "series_to_frame",
    "generate_projection",
    "extend_with_projections",
]


def get_source(config: dict) -> PriceSource:
    """Factory: return the configured price source."""
    data_cfg = config.get("data", {})
    return CsvPriceSource(data_cfg.get("prices_dir", "prices"))
