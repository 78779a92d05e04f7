"""Tests for YAML configuration parsing."""

from __future__ import annotations

from datetime import date

import pytest
import yaml

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portfolio_sim.config import (
    MAX_RULES,
    ConfigError,
    Scenario,
    SimulationConfig,
    parse_condition,
    parse_rule,
    parse_scheduled_orders,
)
from portfolio_sim.models import (
    MoveToCashAction,
    RebalanceAction,
    RuleOperator,
    RuleSubject,
)

SAMPLE = """
simulation:
  starting_capital: 25000
  benchmark: qqq
  seed: 3
scenario:
  slug: crash
  name: Crash
  start_date: 2020-02-01
  end_date: 2020-06-30
  risk_free_rate: 0.01
  events:
    - {date: 2020-03-16, label: Circuit breaker}
allocations:
  - {ticker: spy, pct: 70}
  - {ticker: TLT, pct: 30}
rules:
  - id: hedge
    label: Go to cash
    conditions:
      - {subject: market_change_pct, operator: "<", value: -5}
    action: {type: move_to_cash}
orders:
  - {date: 2020-04-01, type: sell_put, ticker: spy, delta: 0.3}
  - {date: 2020-03-01, type: buy, ticker: tlt, amount: 500}
"""


def make_raw() -> dict:
    return yaml.safe_load(SAMPLE)


# ─── SimulationConfig ─────────────────────────────────────────────────────────

class TestSimulationConfig:
    def test_defaults(self):
        cfg = SimulationConfig.from_config({})
        assert cfg.starting_capital == 10_000
        assert cfg.benchmark == "SPY"
        assert cfg.rules == ()
        assert cfg.scenario == Scenario()

    def test_full_sample(self):
        cfg = SimulationConfig.from_config(make_raw())
        assert cfg.starting_capital == 25_000
        assert cfg.benchmark == "QQQ"
        assert cfg.seed == 3
        assert [a.ticker for a in cfg.allocations] == ["SPY", "TLT"]
        assert cfg.scenario.start_date == date(2020, 2, 1)
        assert cfg.scenario.risk_free_rate == 0.01
        assert cfg.scenario.events[0].label == "Circuit breaker"
        (rule,) = cfg.rules
        assert rule.conditions[0].operator == RuleOperator.LT
        assert isinstance(rule.action, MoveToCashAction)
        assert rule.cooldown_ticks == 5

    def test_rejects_bad_capital(self):
        with pytest.raises(ConfigError):
            SimulationConfig.from_config({"simulation": {"starting_capital": 0}})

    def test_rejects_over_allocation(self):
        raw = {"allocations": [{"ticker": "A", "pct": 70}, {"ticker": "B", "pct": 40}]}
        with pytest.raises(ConfigError, match="100%"):
            SimulationConfig.from_config(raw)

    def test_rejects_too_many_rules(self):
        rule = {"conditions": [{"subject": "cash_balance", "operator": "gt", "value": 1}], "action": {"type": "move_to_cash"}}
        with pytest.raises(ConfigError):
            SimulationConfig.from_config({"rules": [rule] * (MAX_RULES + 1)})


# ─── Rules ────────────────────────────────────────────────────────────────────

class TestParseRule:
    def test_condition_aliases(self):
        c = parse_condition({"subject": "position_weight_pct", "operator": ">=", "value": 40, "ticker": "aapl"})
        assert c.subject == RuleSubject.POSITION_WEIGHT_PCT
        assert c.operator == RuleOperator.GTE
        assert c.ticker == "AAPL"

    def test_unknown_subject_or_operator(self):
        with pytest.raises(ConfigError):
            parse_condition({"subject": "moon_phase", "operator": "gt", "value": 1})
        with pytest.raises(ConfigError):
            parse_condition({"subject": "cash_balance", "operator": "!=", "value": 1})

    def test_too_many_conditions(self):
        c = {"subject": "cash_balance", "operator": "gt", "value": 1}
        with pytest.raises(ConfigError):
            parse_rule({"conditions": [c] * 4, "action": {"type": "move_to_cash"}})

    def test_defaults_and_action(self):
        rule = parse_rule({"conditions": [], "action": {"type": "rebalance", "ticker": "spy", "pct": 25}}, position=2)
        assert rule.id == "rule-3"
        assert rule.enabled
        assert rule.action == RebalanceAction(ticker="SPY", pct=25.0)

    def test_missing_or_unknown_action(self):
        with pytest.raises(ConfigError):
            parse_rule({"conditions": []})
        with pytest.raises(ConfigError):
            parse_rule({"conditions": [], "action": {"type": "short_squeeze"}})


# ─── Scheduled orders ─────────────────────────────────────────────────────────

class TestScheduledOrders:
    def test_sorted_and_normalised(self):
        orders = parse_scheduled_orders(make_raw())
        assert [o.kind for o in orders] == ["buy", "sell_put"]
        assert orders[0].ticker == "TLT"
        assert orders[1].delta == 0.3
        assert orders[1].expiry_days == 30

    def test_option_needs_strike_or_delta(self):
        with pytest.raises(ConfigError):
            parse_scheduled_orders({"orders": [{"date": "2020-01-02", "type": "sell_call", "ticker": "SPY"}]})

    def test_bad_date(self):
        with pytest.raises(ConfigError):
            parse_scheduled_orders({"orders": [{"date": "soon", "type": "buy", "ticker": "SPY"}]})
