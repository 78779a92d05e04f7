"""
Tick scheduler: advances a simulation one trading day at a time.

``advance_tick`` is a pure ``state -> state`` transform. The caller owns the
``SimulationState`` and threads each result into the next call; playback
speed, pausing and scrubbing are all decided outside the engine.

Per tick, in order:
1. Resolve today's date from the primary (longest) series
2. Fill queued manual orders at today's open
3. Evaluate rules against the post-trade state
4. Fill rule orders at today's open
5. Settle expiring options, revalue the rest at today's close
6. Mark remaining positions to today's close
7. Append an immutable snapshot
8. Emit structured domain events
9. Log fired rules, advance the cursor, flag completion
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from .config import ScheduledOrder, SimulationConfig
from .models import (
    BuyOrder,
    DomainEvent,
    EventContext,
    EventTrigger,
    MoveToCashOrder,
    OptionType,
    OrderSource,
    Portfolio,
    PortfolioSnapshot,
    PositionSnapshot,
    PriceBar,
    PriceMap,
    RebalanceOrder,
    RuleFireEvent,
    SellAllOrder,
    SellCallOrder,
    SellPctOrder,
    SellPutOrder,
    SimulationState,
    TradeOrder,
)
from .options import is_expiring, revalue_option, settle_expiry
from .portfolio import apply_trade, create_portfolio, recompute_values, replace_position
from .pricing import find_strike_by_delta, historical_volatility, quote_premium, years_to_expiry
from .prices import bar_on_or_before, close_at, date_at, primary_series
from .rules import describe_action, describe_conditions, evaluate_rules

logger = logging.getLogger(__name__)


# ─── Public interface ─────────────────────────────────────────────────────────

def init_simulation(config: SimulationConfig) -> SimulationState:
    """
    Build the starting state: an all-cash portfolio with one buy per
    configured allocation queued for the first tick.
    """
    portfolio = create_portfolio(config.starting_capital)
    orders = tuple(
        BuyOrder(ticker=a.ticker, amount=portfolio.cash_balance * a.pct / 100.0)
        for a in config.allocations
        if a.pct > 0
    )
    return SimulationState(
        config=config,
        current_date_index=0,
        portfolio=portfolio,
        rules=tuple(config.rules),
        pending_orders=orders,
    )


def submit_order(state: SimulationState, order: TradeOrder) -> SimulationState:
    """Queue an order for the next tick."""
    if state.is_complete:
        return state
    return replace(state, pending_orders=state.pending_orders + (order,))


def get_current_date(state: SimulationState, price_map: PriceMap) -> Optional[date]:
    return date_at(price_map, state.current_date_index)


def drain_events(state: SimulationState) -> tuple[SimulationState, tuple[DomainEvent, ...]]:
    """Hand queued events to a presenter and return the state with an empty queue."""
    return replace(state, events=()), state.events


def advance_tick(
    state: SimulationState,
    price_map: PriceMap,
    pending_orders: Iterable[TradeOrder] = (),
) -> SimulationState:
    """
    Advance the simulation by one trading day.

    Orders queued on the state and those passed in are both consumed. A
    complete state is returned unchanged.
    """
    if state.is_complete:
        return state

    primary = primary_series(price_map)
    idx = state.current_date_index
    if not 0 <= idx < len(primary):
        return replace(state, is_complete=True, pending_orders=())

    tick_date = primary[idx].date
    risk_free_rate = state.config.scenario.risk_free_rate

    manual = state.pending_orders + tuple(pending_orders)
    portfolio = state.portfolio
    manual_count = 0
    for order in manual:
        traded = apply_trade(portfolio, order, price_map, tick_date)
        if traded is not portfolio and order.source == OrderSource.MANUAL:
            manual_count += 1
        portfolio = traded

    evaluation = evaluate_rules(
        replace(state, portfolio=portfolio),
        price_map,
        state.rules,
        benchmark=state.config.benchmark,
    )
    for order in evaluation.trade_orders:
        portfolio = apply_trade(portfolio, order, price_map, tick_date)

    portfolio, option_events = _process_options(portfolio, price_map, idx, tick_date, risk_free_rate)
    portfolio = recompute_values(portfolio, price_map, idx)

    prev = state.history[-1] if state.history else None
    snapshot = build_snapshot(portfolio, prev, price_map, idx, tick_date)

    next_index = idx + 1
    is_complete = next_index >= len(primary)

    events: list[DomainEvent] = []
    events.extend(_scenario_events(state.config, tick_date))
    events.extend(_portfolio_events(state, portfolio, snapshot))
    events.extend(_position_move_events(portfolio, prev, tick_date))
    events.extend(option_events)
    fire_log: list[RuleFireEvent] = []
    for rule in evaluation.fired_rules:
        events.append(
            DomainEvent(
                trigger=EventTrigger.RULE_FIRED,
                date=tick_date,
                context=EventContext(rule_id=rule.id, rule_name=rule.label, portfolio_value=portfolio.total_value),
            )
        )
        fire_log.append(
            RuleFireEvent(
                rule_id=rule.id,
                rule_name=rule.label,
                date=tick_date,
                trigger_description=describe_conditions(rule.conditions),
                action_description=describe_action(rule.action),
            )
        )
    if is_complete:
        events.append(
            DomainEvent(
                trigger=EventTrigger.SIMULATION_COMPLETE,
                date=tick_date,
                context=EventContext(portfolio_value=portfolio.total_value),
            )
        )

    return replace(
        state,
        current_date_index=next_index,
        portfolio=portfolio,
        rules=evaluation.updated_rules,
        history=state.history + (snapshot,),
        rules_log=state.rules_log + tuple(fire_log),
        events=state.events + tuple(events),
        pending_orders=(),
        manual_trade_count=state.manual_trade_count + manual_count,
        is_complete=is_complete,
    )


def run_to_completion(
    state: SimulationState,
    price_map: PriceMap,
    schedule: Sequence[ScheduledOrder] = (),
) -> SimulationState:
    """
    Tick until complete, submitting each scheduled order on the first tick
    dated on or after its date. Convenience for batch runs and tests.
    """
    pending = sorted(schedule, key=lambda o: o.date)
    cursor = 0
    while not state.is_complete:
        tick_date = get_current_date(state, price_map)
        orders: list[TradeOrder] = []
        while tick_date is not None and cursor < len(pending) and pending[cursor].date <= tick_date:
            order = resolve_scheduled_order(pending[cursor], price_map, state.current_date_index, state.config.scenario.risk_free_rate)
            if order is not None:
                orders.append(order)
            cursor += 1
        state = advance_tick(state, price_map, orders)
    return state


def resolve_scheduled_order(
    spec: ScheduledOrder,
    price_map: PriceMap,
    date_index: int,
    risk_free_rate: float,
) -> Optional[TradeOrder]:
    """
    Turn a scheduled order into a concrete ``TradeOrder`` for the tick at
    ``date_index``.

    Option writes are struck and priced off the previous close, since the
    fill happens at the open. Returns None when the order cannot be priced.
    """
    if spec.kind == "buy":
        return BuyOrder(ticker=spec.ticker, amount=spec.amount)
    if spec.kind == "sell_pct":
        return SellPctOrder(ticker=spec.ticker, pct=spec.pct)
    if spec.kind == "sell_all":
        return SellAllOrder(ticker=spec.ticker)
    if spec.kind == "rebalance":
        return RebalanceOrder(ticker=spec.ticker, target_weight=spec.pct / 100.0)
    if spec.kind == "move_to_cash":
        return MoveToCashOrder()

    series = price_map.get(spec.ticker)
    tick_date = date_at(price_map, date_index)
    if not series or tick_date is None:
        logger.warning("Cannot write %s on %s: no price data", spec.ticker, spec.date)
        return None

    quote_index = min(max(date_index - 1, 0), len(series) - 1)
    option_type = OptionType.CALL if spec.kind == "sell_call" else OptionType.PUT
    expiry = tick_date + timedelta(days=spec.expiry_days)

    strike = spec.strike
    if strike is None:
        bar = series[quote_index]
        sigma = historical_volatility([b.close for b in series[: quote_index + 1]])
        T = years_to_expiry(expiry, bar.date)
        strike = round(find_strike_by_delta(bar.close, T, sigma, spec.delta, option_type, risk_free_rate), 2)

    premium = quote_premium(series, quote_index, strike, expiry, option_type, risk_free_rate, spec.contracts)
    if premium <= 0:
        logger.warning("Cannot write %s %s %.2f on %s: zero premium", spec.ticker, option_type.value, strike, tick_date)
        return None

    order_cls = SellCallOrder if option_type == OptionType.CALL else SellPutOrder
    return order_cls(ticker=spec.ticker, strike=strike, expiry_date=expiry, contracts=spec.contracts, premium=premium)


def build_snapshot(
    portfolio: Portfolio,
    prev: Optional[PortfolioSnapshot],
    price_map: PriceMap,
    date_index: int,
    tick_date: date,
) -> PortfolioSnapshot:
    """End-of-day record; returns are measured against ``prev`` or the starting value."""
    base = prev.total_value if prev is not None else portfolio.starting_value
    day_return = (portfolio.total_value - base) / base if base else 0.0
    start = portfolio.starting_value
    cumulative = (portfolio.total_value - start) / start if start else 0.0

    positions: list[PositionSnapshot] = []
    for pos in portfolio.positions:
        prev_pos = prev.position(pos.id) if prev is not None else None
        pos_return = 0.0
        if prev_pos is not None and prev_pos.value != 0:
            pos_return = (pos.current_value - prev_pos.value) / abs(prev_pos.value)
        bar = _bar_at(price_map, pos.ticker, date_index)
        positions.append(
            PositionSnapshot(
                position_id=pos.id,
                ticker=pos.ticker,
                value=pos.current_value,
                quantity=pos.quantity,
                close_price=pos.current_price,
                day_return=pos_return,
                projected=bool(bar is not None and bar.projected),
            )
        )

    primary_bar = _bar_at(price_map, None, date_index)
    return PortfolioSnapshot(
        date=tick_date,
        total_value=portfolio.total_value,
        cash_balance=portfolio.cash_balance,
        positions=tuple(positions),
        day_return=day_return,
        cumulative_return=cumulative,
        projected=bool(primary_bar is not None and primary_bar.projected),
    )


# ─── Internal helpers ─────────────────────────────────────────────────────────

def _bar_at(price_map: PriceMap, ticker: Optional[str], index: int) -> Optional[PriceBar]:
    series = price_map.get(ticker) if ticker is not None else primary_series(price_map)
    if series and 0 <= index < len(series):
        return series[index]
    return None


def _process_options(
    portfolio: Portfolio,
    price_map: PriceMap,
    date_index: int,
    tick_date: date,
    risk_free_rate: float,
) -> tuple[Portfolio, list[DomainEvent]]:
    """Settle options expiring today; revalue the others at the close."""
    events: list[DomainEvent] = []
    for pos in portfolio.positions:
        config = pos.option_config
        if config is None:
            continue
        series = price_map.get(config.underlying)

        if not is_expiring(pos, tick_date):
            portfolio = replace_position(portfolio, revalue_option(pos, series, date_index, risk_free_rate))
            continue

        underlying = close_at(price_map, config.underlying, date_index)
        if underlying <= 0:
            bar = bar_on_or_before(series, tick_date)
            underlying = bar.close if bar is not None else 0.0
        if underlying <= 0:
            logger.warning("Cannot settle %s on %s: no price for %s", pos.id, tick_date, config.underlying)
            continue

        portfolio, assigned = settle_expiry(portfolio, pos, underlying)
        events.append(
            DomainEvent(
                trigger=EventTrigger.OPTION_EXERCISED if assigned else EventTrigger.OPTION_EXPIRED_WORTHLESS,
                date=tick_date,
                context=EventContext(ticker=config.underlying, portfolio_value=portfolio.total_value),
            )
        )
    return portfolio, events


def _scenario_events(config: SimulationConfig, tick_date: date) -> list[DomainEvent]:
    return [
        DomainEvent(
            trigger=EventTrigger.SCENARIO_EVENT,
            date=tick_date,
            context=EventContext(event_label=ev.label),
        )
        for ev in config.scenario.events
        if ev.date == tick_date
    ]


def _portfolio_events(state: SimulationState, portfolio: Portfolio, snapshot: PortfolioSnapshot) -> list[DomainEvent]:
    peak = max((s.total_value for s in state.history), default=state.portfolio.starting_value)
    if snapshot.total_value <= peak:
        return []
    return [
        DomainEvent(
            trigger=EventTrigger.PORTFOLIO_NEW_HIGH,
            date=snapshot.date,
            context=EventContext(
                portfolio_value=snapshot.total_value,
                change_pct=snapshot.cumulative_return,
            ),
        )
    ]


def _move_band(ret: float) -> int:
    """+2 / +1 / 0 / -1 / -2 for >=25%, >=10%, inside, <=-10%, <=-25%."""
    if ret >= 0.25:
        return 2
    if ret >= 0.10:
        return 1
    if ret <= -0.25:
        return -2
    if ret <= -0.10:
        return -1
    return 0


_BAND_TRIGGERS = {
    2: EventTrigger.POSITION_UP_25,
    1: EventTrigger.POSITION_UP_10,
    -1: EventTrigger.POSITION_DOWN_10,
    -2: EventTrigger.POSITION_DOWN_25,
}


def _position_move_events(portfolio: Portfolio, prev: Optional[PortfolioSnapshot], tick_date: date) -> list[DomainEvent]:
    """One event per position whose return since entry moved out into a wider band today."""
    events: list[DomainEvent] = []
    for pos in portfolio.positions:
        if pos.is_option:
            continue
        ret = pos.return_since_entry
        band = _move_band(ret)
        if band == 0:
            continue

        prev_band = 0
        prev_pos = prev.position(pos.id) if prev is not None else None
        if prev_pos is not None and pos.entry_price > 0:
            prev_band = _move_band((prev_pos.close_price - pos.entry_price) / pos.entry_price)

        if band * prev_band <= 0 or abs(band) > abs(prev_band):
            events.append(
                DomainEvent(
                    trigger=_BAND_TRIGGERS[band],
                    date=tick_date,
                    context=EventContext(ticker=pos.ticker, change_pct=ret),
                )
            )
    return events
