"""
Typed views over the YAML configuration.

The CLI loads ``config.yaml`` as a plain dict; ``SimulationConfig.from_config``
turns it into frozen dataclasses the engine can hold in its state. Malformed
input raises ``ConfigError``. The engine itself never validates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from .models import (
    BuyAction,
    MoveToCashAction,
    RebalanceAction,
    Rule,
    RuleAction,
    RuleCondition,
    RuleOperator,
    RuleSubject,
    SellAllAction,
    SellPctAction,
)

logger = logging.getLogger(__name__)

MAX_RULES = 10
MAX_CONDITIONS = 3
DEFAULT_COOLDOWN_TICKS = 5

_OPERATOR_ALIASES = {
    ">": RuleOperator.GT,
    "<": RuleOperator.LT,
    ">=": RuleOperator.GTE,
    "<=": RuleOperator.LTE,
}


class ConfigError(ValueError):
    """Raised for configuration that cannot be turned into a simulation."""


@dataclass(frozen=True)
class ScenarioEvent:
    """A dated narrative marker. Display only; it never moves prices."""

    date: date
    label: str
    description: str = ""


@dataclass(frozen=True)
class Scenario:
    slug: str = "custom"
    name: str = "Custom"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    risk_free_rate: float = 0.02
    events: tuple[ScenarioEvent, ...] = ()

    @classmethod
    def from_config(cls, config: dict) -> "Scenario":
        sc = config.get("scenario", {}) or {}
        events = tuple(
            ScenarioEvent(
                date=parse_date(ev.get("date")),
                label=str(ev.get("label", "")),
                description=str(ev.get("description", "")),
            )
            for ev in sc.get("events", []) or []
        )
        start = sc.get("start_date")
        end = sc.get("end_date")
        return cls(
            slug=str(sc.get("slug", "custom")),
            name=str(sc.get("name", sc.get("slug", "Custom"))),
            start_date=parse_date(start) if start else None,
            end_date=parse_date(end) if end else None,
            risk_free_rate=float(sc.get("risk_free_rate", 0.02)),
            events=events,
        )


@dataclass(frozen=True)
class Allocation:
    ticker: str
    pct: float  # 0-100


@dataclass(frozen=True)
class SimulationConfig:
    """Everything needed to start a run, echoed back in ``SimulationState``."""

    starting_capital: float = 10_000.0
    scenario: Scenario = Scenario()
    allocations: tuple[Allocation, ...] = ()
    rules: tuple[Rule, ...] = ()
    benchmark: str = "SPY"
    seed: Optional[int] = None
    projection_days: int = 0

    @classmethod
    def from_config(cls, config: dict) -> "SimulationConfig":
        sim = config.get("simulation", {}) or {}

        capital = float(sim.get("starting_capital", 10_000))
        if capital <= 0:
            raise ConfigError(f"starting_capital must be positive, got {capital}")

        allocations = tuple(
            Allocation(ticker=str(a["ticker"]).upper(), pct=float(a.get("pct", 0)))
            for a in config.get("allocations", []) or []
        )
        total_pct = sum(a.pct for a in allocations)
        if any(a.pct < 0 for a in allocations) or total_pct > 100.0 + 1e-6:
            raise ConfigError(f"allocations must be non-negative and sum to at most 100%, got {total_pct:.2f}%")

        raw_rules = config.get("rules", []) or []
        if len(raw_rules) > MAX_RULES:
            raise ConfigError(f"at most {MAX_RULES} rules are supported, got {len(raw_rules)}")
        rules = tuple(parse_rule(r, i) for i, r in enumerate(raw_rules))

        seed = sim.get("seed")
        return cls(
            starting_capital=capital,
            scenario=Scenario.from_config(config),
            allocations=allocations,
            rules=rules,
            benchmark=str(sim.get("benchmark", "SPY")).upper(),
            seed=int(seed) if seed is not None else None,
            projection_days=int(sim.get("projection_days", 0)),
        )


# ─── Parsing helpers ──────────────────────────────────────────────────────────

def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ConfigError(f"expected a YYYY-MM-DD date, got {value!r}") from exc


def parse_condition(raw: dict) -> RuleCondition:
    try:
        subject = RuleSubject(raw["subject"])
    except (KeyError, ValueError) as exc:
        raise ConfigError(f"unknown rule subject in {raw!r}") from exc

    op_raw = str(raw.get("operator", ""))
    operator = _OPERATOR_ALIASES.get(op_raw)
    if operator is None:
        try:
            operator = RuleOperator(op_raw)
        except ValueError as exc:
            raise ConfigError(f"unknown rule operator {op_raw!r}") from exc

    ticker = raw.get("ticker")
    if subject.needs_ticker and not ticker:
        logger.warning("Condition on %s has no ticker and will never be satisfied", subject.value)
    return RuleCondition(
        subject=subject,
        operator=operator,
        value=float(raw.get("value", 0)),
        ticker=str(ticker).upper() if ticker else None,
    )


def parse_action(raw: dict) -> RuleAction:
    kind = raw.get("type")
    ticker = str(raw.get("ticker") or "").upper()
    if kind == "buy":
        return BuyAction(ticker=ticker, amount=float(raw.get("amount", 0)))
    if kind == "sell_pct":
        return SellPctAction(ticker=ticker, pct=float(raw.get("pct", 0)))
    if kind == "sell_all":
        return SellAllAction(ticker=ticker)
    if kind == "rebalance":
        return RebalanceAction(ticker=ticker, pct=float(raw.get("pct", 0)))
    if kind == "move_to_cash":
        return MoveToCashAction()
    raise ConfigError(f"unknown rule action type {kind!r}")


def parse_rule(raw: dict, position: int = 0) -> Rule:
    rule_id = str(raw.get("id", f"rule-{position + 1}"))
    conditions = tuple(parse_condition(c) for c in raw.get("conditions", []) or [])
    if len(conditions) > MAX_CONDITIONS:
        raise ConfigError(f"rule {rule_id} has {len(conditions)} conditions; at most {MAX_CONDITIONS} allowed")
    if "action" not in raw:
        raise ConfigError(f"rule {rule_id} has no action")
    return Rule(
        id=rule_id,
        label=str(raw.get("label", rule_id)),
        conditions=conditions,
        action=parse_action(raw["action"]),
        enabled=bool(raw.get("enabled", True)),
        cooldown_ticks=int(raw.get("cooldown_ticks", DEFAULT_COOLDOWN_TICKS)),
    )


# ─── Scheduled manual orders ──────────────────────────────────────────────────

ORDER_TYPES = ("buy", "sell_pct", "sell_all", "rebalance", "move_to_cash", "sell_put", "sell_call")


@dataclass(frozen=True)
class ScheduledOrder:
    """
    A manual order to submit before the first tick on or after ``date``.

    Option writes name either an explicit ``strike`` or a target absolute
    ``delta``; the premium is quoted when the order is submitted.
    """

    date: date
    kind: str
    ticker: str = ""
    amount: float = 0.0
    pct: float = 0.0
    strike: Optional[float] = None
    delta: Optional[float] = None
    expiry_days: int = 30
    contracts: int = 1


def parse_scheduled_orders(config: dict) -> tuple[ScheduledOrder, ...]:
    orders = []
    for raw in config.get("orders", []) or []:
        kind = raw.get("type")
        if kind not in ORDER_TYPES:
            raise ConfigError(f"unknown order type {kind!r}; expected one of {', '.join(ORDER_TYPES)}")
        strike = raw.get("strike")
        delta = raw.get("delta")
        if kind in ("sell_put", "sell_call") and strike is None and delta is None:
            raise ConfigError(f"{kind} order on {raw.get('date')} needs a strike or a delta")
        orders.append(
            ScheduledOrder(
                date=parse_date(raw.get("date")),
                kind=kind,
                ticker=str(raw.get("ticker") or "").upper(),
                amount=float(raw.get("amount", 0)),
                pct=float(raw.get("pct", 0)),
                strike=float(strike) if strike is not None else None,
                delta=float(delta) if delta is not None else None,
                expiry_days=int(raw.get("expiry_days", 30)),
                contracts=int(raw.get("contracts", 1)),
            )
        )
    return tuple(sorted(orders, key=lambda o: o.date))
