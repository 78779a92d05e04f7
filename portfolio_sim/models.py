"""
Value types shared by the simulation engine.

Every type here is frozen. Mutators build new instances with
``dataclasses.replace`` so a reader holding an old ``SimulationState`` or
``PortfolioSnapshot`` never sees it change underneath them.

Trade orders and rule actions are closed sets of variant dataclasses; handlers
dispatch on the concrete type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .config import SimulationConfig


CONTRACT_MULTIPLIER = 100  # shares per option contract


class InstrumentKind(str, Enum):
    STOCK = "stock"
    ETF = "etf"
    CRYPTO = "crypto"
    BOND = "bond"
    OPTION = "option"


class OptionStrategy(str, Enum):
    SHORT_PUT = "short_put"
    COVERED_CALL = "covered_call"


class OptionType(str, Enum):
    PUT = "put"
    CALL = "call"


class OrderSource(str, Enum):
    MANUAL = "manual"
    RULE = "rule"


# ─── Price input ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PriceBar:
    """One daily OHLCV bar. ``projected`` marks synthetic future data."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    projected: bool = False


PriceSeries = list[PriceBar]
PriceMap = dict[str, PriceSeries]


# ─── Portfolio ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OptionConfig:
    """Contract terms for a written option."""

    underlying: str
    strategy: OptionStrategy
    option_type: OptionType
    strike: float
    expiry_date: date
    contracts: int = 1


@dataclass(frozen=True)
class Position:
    """
    A held instrument.

    ``id`` equals ``ticker`` for simple instruments. Option positions get a
    composite id so several contracts on one underlying can be open at once.
    Short options carry a negative ``current_value`` (a liability).
    """

    id: str
    ticker: str
    kind: InstrumentKind
    quantity: float
    entry_price: float
    entry_date: date
    current_price: float
    current_value: float
    option_config: Optional[OptionConfig] = None

    @property
    def is_option(self) -> bool:
        return self.option_config is not None

    @property
    def return_since_entry(self) -> float:
        """Price return vs. entry price (decimal). Zero for options."""
        if self.is_option or self.entry_price <= 0:
            return 0.0
        return (self.current_price - self.entry_price) / self.entry_price


@dataclass(frozen=True)
class Portfolio:
    positions: tuple[Position, ...] = ()
    cash_balance: float = 0.0
    total_value: float = 0.0
    starting_value: float = 0.0


# ─── Trade orders ─────────────────────────────────────────────────────────────

@dataclass(frozen=True, kw_only=True)
class _OrderBase:
    source: OrderSource = OrderSource.MANUAL
    rule_id: Optional[str] = None


@dataclass(frozen=True)
class BuyOrder(_OrderBase):
    ticker: str
    amount: float  # dollars


@dataclass(frozen=True)
class SellPctOrder(_OrderBase):
    ticker: str
    pct: float  # 0-100


@dataclass(frozen=True)
class SellAllOrder(_OrderBase):
    ticker: str


@dataclass(frozen=True)
class RebalanceOrder(_OrderBase):
    ticker: str
    target_weight: float  # 0-1


@dataclass(frozen=True)
class MoveToCashOrder(_OrderBase):
    pass


@dataclass(frozen=True)
class SellPutOrder(_OrderBase):
    """Write a cash-secured put. ``premium`` is the total dollars received."""

    ticker: str
    strike: float
    expiry_date: date
    contracts: int
    premium: float


@dataclass(frozen=True)
class SellCallOrder(_OrderBase):
    """Write a covered call against shares already held."""

    ticker: str
    strike: float
    expiry_date: date
    contracts: int
    premium: float


@dataclass(frozen=True)
class CloseOptionOrder(_OrderBase):
    position_id: str


TradeOrder = Union[
    BuyOrder,
    SellPctOrder,
    SellAllOrder,
    RebalanceOrder,
    MoveToCashOrder,
    SellPutOrder,
    SellCallOrder,
    CloseOptionOrder,
]


# ─── Rules ────────────────────────────────────────────────────────────────────

class RuleSubject(str, Enum):
    PORTFOLIO_VALUE = "portfolio_value"
    CASH_BALANCE = "cash_balance"
    DAYS_ELAPSED = "days_elapsed"
    PORTFOLIO_CHANGE_PCT = "portfolio_change_pct"
    POSITION_CHANGE_PCT = "position_change_pct"
    POSITION_WEIGHT_PCT = "position_weight_pct"
    MARKET_CHANGE_PCT = "market_change_pct"

    @property
    def needs_ticker(self) -> bool:
        return self in (RuleSubject.POSITION_CHANGE_PCT, RuleSubject.POSITION_WEIGHT_PCT)


class RuleOperator(str, Enum):
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"

    @property
    def symbol(self) -> str:
        return _OPERATOR_SYMBOLS[self]

    def compare(self, lhs: float, rhs: float) -> bool:
        if self is RuleOperator.GT:
            return lhs > rhs
        if self is RuleOperator.LT:
            return lhs < rhs
        if self is RuleOperator.GTE:
            return lhs >= rhs
        return lhs <= rhs


_OPERATOR_SYMBOLS = {
    RuleOperator.GT: ">",
    RuleOperator.LT: "<",
    RuleOperator.GTE: ">=",
    RuleOperator.LTE: "<=",
}


@dataclass(frozen=True)
class RuleCondition:
    subject: RuleSubject
    operator: RuleOperator
    value: float
    ticker: Optional[str] = None  # required for per-position subjects


@dataclass(frozen=True)
class BuyAction:
    ticker: str
    amount: float


@dataclass(frozen=True)
class SellPctAction:
    ticker: str
    pct: float  # 0-100


@dataclass(frozen=True)
class SellAllAction:
    ticker: str


@dataclass(frozen=True)
class RebalanceAction:
    ticker: str
    pct: float  # target weight, 0-100


@dataclass(frozen=True)
class MoveToCashAction:
    pass


RuleAction = Union[BuyAction, SellPctAction, SellAllAction, RebalanceAction, MoveToCashAction]


@dataclass(frozen=True)
class Rule:
    """An automation rule. All conditions must hold (AND) for it to fire."""

    id: str
    label: str
    conditions: tuple[RuleCondition, ...]
    action: RuleAction
    enabled: bool = True
    cooldown_ticks: int = 5
    fired_count: int = 0
    last_fired_date: Optional[date] = None


# ─── Snapshots and events ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class PositionSnapshot:
    position_id: str
    ticker: str
    value: float
    quantity: float
    close_price: float
    day_return: float  # decimal, vs. previous tick
    projected: bool = False


@dataclass(frozen=True)
class PortfolioSnapshot:
    """End-of-day record. Returns are decimal fractions."""

    date: date
    total_value: float
    cash_balance: float
    positions: tuple[PositionSnapshot, ...]
    day_return: float
    cumulative_return: float
    projected: bool = False

    def position(self, position_id: str) -> Optional[PositionSnapshot]:
        for snap in self.positions:
            if snap.position_id == position_id:
                return snap
        return None


class EventTrigger(str, Enum):
    PORTFOLIO_NEW_HIGH = "portfolio_new_high"
    POSITION_UP_10 = "position_up_10"
    POSITION_DOWN_10 = "position_down_10"
    POSITION_UP_25 = "position_up_25"
    POSITION_DOWN_25 = "position_down_25"
    RULE_FIRED = "rule_fired"
    OPTION_EXPIRED_WORTHLESS = "option_expired_worthless"
    OPTION_EXERCISED = "option_exercised"
    SCENARIO_EVENT = "scenario_event"
    SIMULATION_COMPLETE = "simulation_complete"


@dataclass(frozen=True)
class EventContext:
    ticker: Optional[str] = None
    change_pct: Optional[float] = None
    portfolio_value: Optional[float] = None
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    event_label: Optional[str] = None


@dataclass(frozen=True)
class DomainEvent:
    """A structured ``(trigger, context)`` pair. Rendering text is not our job."""

    trigger: EventTrigger
    date: date
    context: EventContext = field(default_factory=EventContext)


@dataclass(frozen=True)
class RuleFireEvent:
    rule_id: str
    rule_name: str
    date: date
    trigger_description: str
    action_description: str


# ─── Simulation state ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SimulationState:
    config: SimulationConfig
    current_date_index: int
    portfolio: Portfolio
    rules: tuple[Rule, ...] = ()
    history: tuple[PortfolioSnapshot, ...] = ()
    rules_log: tuple[RuleFireEvent, ...] = ()
    events: tuple[DomainEvent, ...] = ()
    pending_orders: tuple[TradeOrder, ...] = ()
    manual_trade_count: int = 0
    is_complete: bool = False
