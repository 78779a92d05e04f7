"""
Portfolio mutation: apply one trade order, or mark positions to the close.

Every function here is total. Missing prices, absent positions and degenerate
amounts return the input portfolio unchanged instead of raising, and every
returned portfolio satisfies ``total_value == cash + Σ position values``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Optional

from .models import (
    CONTRACT_MULTIPLIER,
    BuyOrder,
    CloseOptionOrder,
    InstrumentKind,
    MoveToCashOrder,
    OptionConfig,
    OptionStrategy,
    OptionType,
    Portfolio,
    Position,
    PriceMap,
    RebalanceOrder,
    SellAllOrder,
    SellCallOrder,
    SellPctOrder,
    SellPutOrder,
    TradeOrder,
)
from .prices import open_price

logger = logging.getLogger(__name__)

FULL_SELL_EPSILON = 1e-9   # sells within this of 100% remove the position
REBALANCE_MIN_DOLLARS = 1.0


# ─── Construction and lookup ──────────────────────────────────────────────────

def create_portfolio(starting_capital: float) -> Portfolio:
    """Create an all-cash portfolio."""
    capital = max(0.0, float(starting_capital))
    return Portfolio(positions=(), cash_balance=capital, total_value=capital, starting_value=capital)


def get_position(portfolio: Portfolio, ticker: str) -> Optional[Position]:
    """Return the simple (non-option) position in ``ticker``, if held."""
    for pos in portfolio.positions:
        if pos.id == ticker and not pos.is_option:
            return pos
    return None


def find_position(portfolio: Portfolio, position_id: str) -> Optional[Position]:
    for pos in portfolio.positions:
        if pos.id == position_id:
            return pos
    return None


def _with_holdings(portfolio: Portfolio, positions: tuple[Position, ...], cash: float) -> Portfolio:
    total = cash + sum(p.current_value for p in positions)
    return replace(portfolio, positions=positions, cash_balance=cash, total_value=total)


def _swap(positions: tuple[Position, ...], updated: Position) -> tuple[Position, ...]:
    return tuple(updated if p.id == updated.id else p for p in positions)


def _without(positions: tuple[Position, ...], position_id: str) -> tuple[Position, ...]:
    return tuple(p for p in positions if p.id != position_id)


# ─── Order handlers ───────────────────────────────────────────────────────────

def _buy(portfolio: Portfolio, order: BuyOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    price = open_price(price_map, order.ticker, on_date)
    cost = min(float(order.amount), portfolio.cash_balance)
    if price <= 0 or cost <= 0:
        logger.debug("buy %s skipped on %s: price=%.4f cost=%.2f", order.ticker, on_date, price, cost)
        return portfolio

    qty = cost / price
    existing = get_position(portfolio, order.ticker)
    if existing is not None:
        # Held shares keep their last mark until the close.
        new_qty = existing.quantity + qty
        entry = (existing.quantity * existing.entry_price + cost) / new_qty
        value = existing.current_value + cost
        updated = replace(
            existing,
            quantity=new_qty,
            entry_price=entry,
            current_price=value / new_qty,
            current_value=value,
        )
        positions = _swap(portfolio.positions, updated)
    else:
        opened = Position(
            id=order.ticker,
            ticker=order.ticker,
            kind=InstrumentKind.STOCK,
            quantity=qty,
            entry_price=price,
            entry_date=on_date,
            current_price=price,
            current_value=qty * price,
        )
        positions = portfolio.positions + (opened,)

    return _with_holdings(portfolio, positions, portfolio.cash_balance - cost)


def _sell_all(portfolio: Portfolio, order: SellAllOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    existing = get_position(portfolio, order.ticker)
    if existing is None:
        logger.debug("sell_all %s skipped on %s: not held", order.ticker, on_date)
        return portfolio
    price = open_price(price_map, order.ticker, on_date) or existing.current_price
    proceeds = existing.quantity * max(0.0, price)
    positions = _without(portfolio.positions, existing.id)
    return _with_holdings(portfolio, positions, portfolio.cash_balance + proceeds)


def _sell_pct(portfolio: Portfolio, order: SellPctOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    pct = min(max(float(order.pct), 0.0), 100.0)
    existing = get_position(portfolio, order.ticker)
    if existing is None or pct <= 0:
        logger.debug("sell_pct %s skipped on %s: held=%s pct=%.2f", order.ticker, on_date, existing is not None, pct)
        return portfolio
    if pct >= 100.0 - FULL_SELL_EPSILON:
        return _sell_all(portfolio, SellAllOrder(ticker=order.ticker, source=order.source, rule_id=order.rule_id), price_map, on_date)

    price = open_price(price_map, order.ticker, on_date)
    if price <= 0:
        logger.debug("sell_pct %s skipped on %s: no price", order.ticker, on_date)
        return portfolio

    sell_qty = existing.quantity * pct / 100.0
    remaining = existing.quantity - sell_qty
    updated = replace(existing, quantity=remaining, current_value=existing.current_value * (1 - pct / 100.0))
    positions = _swap(portfolio.positions, updated)
    return _with_holdings(portfolio, positions, portfolio.cash_balance + sell_qty * price)


def _rebalance(portfolio: Portfolio, order: RebalanceOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    weight = min(max(float(order.target_weight), 0.0), 1.0)
    target = weight * portfolio.total_value
    existing = get_position(portfolio, order.ticker)
    current = existing.current_value if existing is not None else 0.0
    diff = target - current
    if abs(diff) < REBALANCE_MIN_DOLLARS:
        return portfolio

    if diff > 0:
        buy = BuyOrder(ticker=order.ticker, amount=diff, source=order.source, rule_id=order.rule_id)
        return _buy(portfolio, buy, price_map, on_date)

    sell = SellPctOrder(ticker=order.ticker, pct=-diff / current * 100.0, source=order.source, rule_id=order.rule_id)
    return _sell_pct(portfolio, sell, price_map, on_date)


def _move_to_cash(portfolio: Portfolio, order: MoveToCashOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    # Options stay open; closing one is a separate CloseOptionOrder.
    result = portfolio
    for pos in portfolio.positions:
        if pos.is_option:
            continue
        result = _sell_all(result, SellAllOrder(ticker=pos.ticker, source=order.source, rule_id=order.rule_id), price_map, on_date)
    return result


def _option_position_id(portfolio: Portfolio, config: OptionConfig, on_date: date) -> str:
    base = f"{config.underlying}-{config.option_type.value}-{config.strike:g}-{config.expiry_date.isoformat()}-{on_date.isoformat()}"
    candidate = base
    n = 2
    while find_position(portfolio, candidate) is not None:
        candidate = f"{base}#{n}"
        n += 1
    return candidate


def _write_option(
    portfolio: Portfolio,
    order: SellPutOrder | SellCallOrder,
    strategy: OptionStrategy,
    option_type: OptionType,
    on_date: date,
) -> Portfolio:
    """
    Credit the premium and open the matching liability.

    The new position's value is exactly ``-premium`` so total value does not
    move at the moment of writing.
    """
    premium = float(order.premium)
    if premium <= 0 or order.contracts <= 0 or order.strike <= 0:
        logger.debug("%s %s skipped on %s: premium=%.2f contracts=%d", strategy.value, order.ticker, on_date, premium, order.contracts)
        return portfolio

    config = OptionConfig(
        underlying=order.ticker,
        strategy=strategy,
        option_type=option_type,
        strike=float(order.strike),
        expiry_date=order.expiry_date,
        contracts=int(order.contracts),
    )
    per_share = premium / (CONTRACT_MULTIPLIER * config.contracts)
    written = Position(
        id=_option_position_id(portfolio, config, on_date),
        ticker=order.ticker,
        kind=InstrumentKind.OPTION,
        quantity=config.contracts,
        entry_price=per_share,
        entry_date=on_date,
        current_price=per_share,
        current_value=-premium,
        option_config=config,
    )
    return _with_holdings(portfolio, portfolio.positions + (written,), portfolio.cash_balance + premium)


def _sell_put(portfolio: Portfolio, order: SellPutOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    return _write_option(portfolio, order, OptionStrategy.SHORT_PUT, OptionType.PUT, on_date)


def _sell_call(portfolio: Portfolio, order: SellCallOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    held = get_position(portfolio, order.ticker)
    already_covered = sum(
        p.option_config.contracts
        for p in portfolio.positions
        if p.option_config is not None
        and p.option_config.strategy == OptionStrategy.COVERED_CALL
        and p.option_config.underlying == order.ticker
    )
    needed = CONTRACT_MULTIPLIER * (already_covered + max(order.contracts, 0))
    if held is None or held.quantity < needed:
        logger.debug("sell_call %s skipped on %s: %s shares held, %d needed", order.ticker, on_date, held.quantity if held else 0, needed)
        return portfolio
    return _write_option(portfolio, order, OptionStrategy.COVERED_CALL, OptionType.CALL, on_date)


def _close_option(portfolio: Portfolio, order: CloseOptionOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    existing = find_position(portfolio, order.position_id)
    if existing is None or not existing.is_option:
        logger.debug("close_option %s skipped on %s: not open", order.position_id, on_date)
        return portfolio
    cost = abs(existing.current_value)
    positions = _without(portfolio.positions, existing.id)
    return _with_holdings(portfolio, positions, max(portfolio.cash_balance - cost, 0.0))


_HANDLERS: dict[type, Callable[[Portfolio, TradeOrder, PriceMap, date], Portfolio]] = {
    BuyOrder: _buy,
    SellPctOrder: _sell_pct,
    SellAllOrder: _sell_all,
    RebalanceOrder: _rebalance,
    MoveToCashOrder: _move_to_cash,
    SellPutOrder: _sell_put,
    SellCallOrder: _sell_call,
    CloseOptionOrder: _close_option,
}


# ─── Public interface ─────────────────────────────────────────────────────────

def apply_trade(portfolio: Portfolio, order: TradeOrder, price_map: PriceMap, on_date: date) -> Portfolio:
    """
    Apply a single order at the open of ``on_date`` and return the new
    portfolio. Unknown order types are ignored.
    """
    handler = _HANDLERS.get(type(order))
    if handler is None:
        logger.warning("Ignoring unsupported order type %s", type(order).__name__)
        return portfolio
    return handler(portfolio, order, price_map, on_date)


def recompute_values(portfolio: Portfolio, price_map: PriceMap, date_index: int) -> Portfolio:
    """
    Mark every non-option position to the close at ``date_index``.

    Options are valued separately (see ``options.recompute_option_value``).
    A position whose series has no usable close keeps its last price.
    """
    marked: list[Position] = []
    for pos in portfolio.positions:
        if pos.is_option:
            marked.append(pos)
            continue
        series = price_map.get(pos.ticker) or []
        price = pos.current_price
        if 0 <= date_index < len(series) and series[date_index].close > 0:
            price = float(series[date_index].close)
        marked.append(replace(pos, current_price=price, current_value=pos.quantity * price))
    return _with_holdings(portfolio, tuple(marked), portfolio.cash_balance)


def replace_position(portfolio: Portfolio, position: Position) -> Portfolio:
    """Swap in an updated copy of a held position and re-total."""
    return _with_holdings(portfolio, _swap(portfolio.positions, position), portfolio.cash_balance)
