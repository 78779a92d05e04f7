"""
Rule engine: fire automation rules against the current simulation state.

A rule fires when it is enabled, off cooldown, and every one of its
conditions holds. Firing never mutates the rule in place; the bumped
``fired_count`` / ``last_fired_date`` come back in ``updated_rules`` and the
caller threads them into the next tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from .models import (
    BuyAction,
    BuyOrder,
    MoveToCashAction,
    MoveToCashOrder,
    OrderSource,
    PriceMap,
    PriceSeries,
    RebalanceAction,
    RebalanceOrder,
    Rule,
    RuleAction,
    RuleCondition,
    RuleSubject,
    SellAllAction,
    SellAllOrder,
    SellPctAction,
    SellPctOrder,
    SimulationState,
    TradeOrder,
)
from .portfolio import get_position
from .prices import index_of_date, primary_series

logger = logging.getLogger(__name__)

BENCHMARK_TICKER = "SPY"


@dataclass(frozen=True)
class RuleEvaluation:
    fired_rules: tuple[Rule, ...]
    trade_orders: tuple[TradeOrder, ...]
    updated_rules: tuple[Rule, ...]


def evaluate_rules(
    state: SimulationState,
    price_map: PriceMap,
    rules: Optional[Sequence[Rule]] = None,
    benchmark: str = BENCHMARK_TICKER,
) -> RuleEvaluation:
    """
    Evaluate ``rules`` (default: ``state.rules``) at ``state.current_date_index``.

    Returns the rules that fired, the orders their actions translate to, and
    the full rule list with bookkeeping updated for the ones that fired.
    """
    if rules is None:
        rules = state.rules

    primary = primary_series(price_map)
    idx = state.current_date_index
    tick_date = primary[idx].date if 0 <= idx < len(primary) else None

    fired: list[Rule] = []
    orders: list[TradeOrder] = []
    updated: list[Rule] = []

    for rule in rules:
        if not rule.enabled or is_on_cooldown(rule, idx, primary) or not all_conditions_met(rule.conditions, state, price_map, benchmark):
            updated.append(rule)
            continue

        bumped = replace(rule, fired_count=rule.fired_count + 1, last_fired_date=tick_date)
        fired.append(bumped)
        updated.append(bumped)
        logger.debug("Rule %s (%s) fired on %s", rule.id, rule.label, tick_date)

        order = action_to_order(rule.action, rule.id)
        if order is not None:
            orders.append(order)

    return RuleEvaluation(fired_rules=tuple(fired), trade_orders=tuple(orders), updated_rules=tuple(updated))


def is_on_cooldown(rule: Rule, current_index: int, primary: PriceSeries) -> bool:
    """Blocked while fewer than ``cooldown_ticks`` ticks have passed since the last firing."""
    if rule.last_fired_date is None or rule.cooldown_ticks <= 0:
        return False
    last_index = index_of_date(primary, rule.last_fired_date)
    if last_index is None:
        return False
    return current_index - last_index < rule.cooldown_ticks


def all_conditions_met(
    conditions: Sequence[RuleCondition],
    state: SimulationState,
    price_map: PriceMap,
    benchmark: str = BENCHMARK_TICKER,
) -> bool:
    """AND over ``conditions``. An empty list never fires."""
    if not conditions:
        return False
    for condition in conditions:
        value = condition_value(condition, state, price_map, benchmark)
        if value is None or not condition.operator.compare(value, condition.value):
            return False
    return True


def condition_value(
    condition: RuleCondition,
    state: SimulationState,
    price_map: PriceMap,
    benchmark: str = BENCHMARK_TICKER,
) -> Optional[float]:
    """
    Current value of a condition's subject, or None when it cannot be
    computed (absent position, no prior snapshot, zero denominator).
    Percent subjects are in percentage points.
    """
    portfolio = state.portfolio
    subject = condition.subject

    if subject == RuleSubject.PORTFOLIO_VALUE:
        return portfolio.total_value
    if subject == RuleSubject.CASH_BALANCE:
        return portfolio.cash_balance
    if subject == RuleSubject.DAYS_ELAPSED:
        return float(state.current_date_index)

    if subject == RuleSubject.PORTFOLIO_CHANGE_PCT:
        if not state.history:
            return None
        prev = state.history[-1].total_value
        if prev == 0:
            return None
        return (portfolio.total_value - prev) / prev * 100.0

    if subject == RuleSubject.MARKET_CHANGE_PCT:
        return _market_change_pct(price_map, state.current_date_index, benchmark)

    # Per-position subjects
    if not condition.ticker:
        return None
    position = get_position(portfolio, condition.ticker)
    if position is None:
        return None

    if subject == RuleSubject.POSITION_WEIGHT_PCT:
        if portfolio.total_value <= 0:
            return None
        return position.current_value / portfolio.total_value * 100.0

    if subject == RuleSubject.POSITION_CHANGE_PCT:
        if not state.history:
            return None
        prev_snap = state.history[-1].position(position.id)
        if prev_snap is None or prev_snap.value == 0:
            return None
        return (position.current_value - prev_snap.value) / abs(prev_snap.value) * 100.0

    return None


def _market_change_pct(price_map: PriceMap, index: int, benchmark: str) -> Optional[float]:
    series = price_map.get(benchmark)
    if not series:
        series = next((s for s in price_map.values() if s), None)
    if not series or not 1 <= index < len(series):
        return None
    prev = series[index - 1].close
    if prev <= 0:
        return None
    return (series[index].close - prev) / prev * 100.0


def action_to_order(action: RuleAction, rule_id: str) -> Optional[TradeOrder]:
    """Translate a rule action into a rule-tagged order; None when it lacks a ticker."""
    tag = {"source": OrderSource.RULE, "rule_id": rule_id}

    if isinstance(action, MoveToCashAction):
        return MoveToCashOrder(**tag)
    if not action.ticker:
        logger.debug("Rule %s action %s has no ticker; no order", rule_id, type(action).__name__)
        return None
    if isinstance(action, BuyAction):
        return BuyOrder(ticker=action.ticker, amount=action.amount, **tag)
    if isinstance(action, SellPctAction):
        return SellPctOrder(ticker=action.ticker, pct=action.pct, **tag)
    if isinstance(action, SellAllAction):
        return SellAllOrder(ticker=action.ticker, **tag)
    if isinstance(action, RebalanceAction):
        return RebalanceOrder(ticker=action.ticker, target_weight=action.pct / 100.0, **tag)
    return None


# ─── Log descriptions ─────────────────────────────────────────────────────────

def describe_conditions(conditions: Sequence[RuleCondition]) -> str:
    parts = []
    for c in conditions:
        subject = f"{c.subject.value}[{c.ticker}]" if c.ticker else c.subject.value
        parts.append(f"{subject} {c.operator.symbol} {c.value:g}")
    return " AND ".join(parts)


def describe_action(action: RuleAction) -> str:
    if isinstance(action, MoveToCashAction):
        return "move_to_cash"
    if isinstance(action, BuyAction):
        return f"buy {action.ticker} ${action.amount:,.2f}"
    if isinstance(action, SellPctAction):
        return f"sell_pct {action.ticker} {action.pct:g}%"
    if isinstance(action, SellAllAction):
        return f"sell_all {action.ticker}"
    if isinstance(action, RebalanceAction):
        return f"rebalance {action.ticker} to {action.pct:g}%"
    return type(action).__name__
