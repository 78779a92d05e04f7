"""
Lifecycle of written options: daily revaluation and cash-settled expiry.

Two strategies are supported, both short:
1. Short put: cash-secured, premium collected at write time
2. Covered call: written against held shares, upside capped at strike

Assignment is cash-settled. No shares change hands; the writer pays the
intrinsic value, with cash floored at zero.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Optional

from .models import CONTRACT_MULTIPLIER, OptionStrategy, OptionType, Portfolio, Position, PriceSeries
from .pricing import black_scholes, historical_volatility, years_to_expiry

logger = logging.getLogger(__name__)

SHORT_STRATEGIES = (OptionStrategy.SHORT_PUT, OptionStrategy.COVERED_CALL)


def recompute_option_value(
    position: Position,
    underlying_series: Optional[PriceSeries],
    date_index: int,
    risk_free_rate: float,
) -> float:
    """
    Fair value of an option position at the close of ``date_index``.

    Short positions report the negative of the long-side value scaled by
    100 × contracts. Missing price data leaves the last value in place.
    """
    config = position.option_config
    if config is None or not underlying_series or not 0 <= date_index < len(underlying_series):
        return position.current_value

    bar = underlying_series[date_index]
    if bar.close <= 0:
        return position.current_value

    sigma = historical_volatility([b.close for b in underlying_series[: date_index + 1]])
    quote = black_scholes(
        S=bar.close,
        K=config.strike,
        T=years_to_expiry(config.expiry_date, bar.date),
        r=risk_free_rate,
        sigma=sigma,
        option_type=config.option_type,
    )
    sign = -1.0 if config.strategy in SHORT_STRATEGIES else 1.0
    return sign * quote.price * CONTRACT_MULTIPLIER * config.contracts


def revalue_option(
    position: Position,
    underlying_series: Optional[PriceSeries],
    date_index: int,
    risk_free_rate: float,
) -> Position:
    """Return ``position`` with its per-share mark and value refreshed."""
    config = position.option_config
    if config is None:
        return position
    value = recompute_option_value(position, underlying_series, date_index, risk_free_rate)
    per_share = abs(value) / (CONTRACT_MULTIPLIER * config.contracts) if config.contracts else 0.0
    return replace(position, current_price=per_share, current_value=value)


def is_expiring(position: Position, current_date: date) -> bool:
    """True on or after the expiry date, so weekend expiries settle next session."""
    config = position.option_config
    return config is not None and config.expiry_date <= current_date


def intrinsic_value(position: Position, underlying_price: float) -> float:
    """Dollar intrinsic value of the whole position (always >= 0)."""
    config = position.option_config
    if config is None:
        return 0.0
    if config.option_type == OptionType.CALL:
        per_share = max(underlying_price - config.strike, 0.0)
    else:
        per_share = max(config.strike - underlying_price, 0.0)
    return per_share * CONTRACT_MULTIPLIER * config.contracts


def _settle(portfolio: Portfolio, position: Position, loss: float) -> Portfolio:
    positions = tuple(p for p in portfolio.positions if p.id != position.id)
    cash = max(portfolio.cash_balance - loss, 0.0)
    total = cash + sum(p.current_value for p in positions)
    return replace(portfolio, positions=positions, cash_balance=cash, total_value=total)


def settle_short_put_expiry(portfolio: Portfolio, position: Position, underlying_price: float) -> tuple[Portfolio, bool]:
    """
    Expire a short put.

    OTM (price >= strike): removed, cash unchanged.
    ITM (price < strike):  cash -= (strike − price) × 100 × contracts.

    Returns (portfolio, was_assigned).
    """
    config = position.option_config
    if config is None:
        return portfolio, False
    if underlying_price >= config.strike:
        return _settle(portfolio, position, 0.0), False
    loss = intrinsic_value(position, underlying_price)
    logger.debug("%s assigned at %.2f: paying %.2f", position.id, underlying_price, loss)
    return _settle(portfolio, position, loss), True


def settle_covered_call_expiry(portfolio: Portfolio, position: Position, underlying_price: float) -> tuple[Portfolio, bool]:
    """
    Expire a covered call.

    OTM (price <= strike): removed, no cash effect.
    ITM (price > strike):  cash -= (price − strike) × 100 × contracts.
    """
    config = position.option_config
    if config is None:
        return portfolio, False
    if underlying_price <= config.strike:
        return _settle(portfolio, position, 0.0), False
    loss = intrinsic_value(position, underlying_price)
    logger.debug("%s called away at %.2f: paying %.2f", position.id, underlying_price, loss)
    return _settle(portfolio, position, loss), True


def settle_expiry(portfolio: Portfolio, position: Position, underlying_price: float) -> tuple[Portfolio, bool]:
    """Dispatch to the settlement rule for the position's strategy."""
    config = position.option_config
    if config is None:
        return portfolio, False
    if config.strategy == OptionStrategy.COVERED_CALL:
        return settle_covered_call_expiry(portfolio, position, underlying_price)
    return settle_short_put_expiry(portfolio, position, underlying_price)
