"""
Portfolio Simulator CLI entry point.

Commands:
    simulate    Replay the configured scenario against the portfolio and rules
    quote       Price a short put or covered call on a ticker with Black-Scholes
    project     Extend a ticker's history with a Monte Carlo projection
"""

from __future__ import annotations

import logging
import sys
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import click
import pandas as pd
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from portfolio_sim.config import ConfigError, ScheduledOrder, SimulationConfig, parse_scheduled_orders
from price_data import PriceDataError, get_source

# Use a wide fixed width when stdout is not a real TTY (e.g. CI logs, pipes).
_IS_TTY = sys.stdout.isatty()
console = Console(width=None if _IS_TTY else 220)

logger = logging.getLogger(__name__)


# ─── Config loader ────────────────────────────────────────────────────────────

def load_config(config_path: str = "config.yaml") -> dict:
    """Load and return config.yaml as a dict."""
    p = Path(config_path)
    if not p.exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        sys.exit(1)
    with open(p) as f:
        return yaml.safe_load(f) or {}


# ─── Logging setup ────────────────────────────────────────────────────────────

def setup_logging(config: dict) -> None:
    output_cfg = config.get("output", {})
    level_name = output_cfg.get("log_level", "INFO")
    log_file = output_cfg.get("log_file", "portfolio_sim.log")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


# ─── Rich table helpers ───────────────────────────────────────────────────────

def dataframe_to_rich_table(df: pd.DataFrame, title: str = "", max_rows: int = 50) -> Table:
    """Convert a pandas DataFrame to a Rich table."""
    table = Table(title=title, box=box.SIMPLE_HEAD, show_header=True, header_style="bold cyan")
    if df.empty:
        return table

    for col in df.columns:
        table.add_column(str(col), justify="right")
    for i, (_, row) in enumerate(df.iterrows()):
        if i >= max_rows:
            table.add_row(*["..." for _ in df.columns])
            break
        table.add_row(*["" if pd.isna(v) else str(v) for v in row])
    return table


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _required_tickers(sim_cfg: SimulationConfig, schedule: tuple[ScheduledOrder, ...]) -> list[str]:
    """Every ticker the run can touch, allocations first so they lead the price map."""
    tickers: list[str] = [a.ticker for a in sim_cfg.allocations]
    for rule in sim_cfg.rules:
        tickers.extend(c.ticker for c in rule.conditions if c.ticker)
        ticker = getattr(rule.action, "ticker", "")
        if ticker:
            tickers.append(ticker)
    tickers.extend(o.ticker for o in schedule if o.ticker)
    return list(dict.fromkeys(tickers))


# ─── CLI ─────────────────────────────────────────────────────────────────────

@click.group()
@click.option(
    "--config",
    "-c",
    default="config.yaml",
    show_default=True,
    help="Path to config.yaml",
)
@click.pass_context
def cli(ctx: click.Context, config: str) -> None:
    """Portfolio Simulator: replay a market scenario against a portfolio and its rules."""
    ctx.ensure_object(dict)
    cfg = load_config(config)
    ctx.obj["config"] = cfg
    setup_logging(cfg)

    Path(cfg.get("output", {}).get("csv_dir", "exports")).mkdir(parents=True, exist_ok=True)


# ── simulate ──────────────────────────────────────────────────────────────────

@cli.command()
@click.option("--capital", type=float, default=None, help="Override starting capital")
@click.option("--projection-days", "-p", type=int, default=None, help="Extend prices with N projected days")
@click.option("--seed", type=int, default=None, help="Seed for the projection")
@click.option("--events/--no-events", default=False, help="Print every domain event")
@click.option("--export/--no-export", default=None, help="Export snapshot history to CSV")
@click.pass_context
def simulate(
    ctx: click.Context,
    capital: Optional[float],
    projection_days: Optional[int],
    seed: Optional[int],
    events: bool,
    export: Optional[bool],
) -> None:
    """Run the configured scenario tick by tick and report performance."""
    from portfolio_sim.analytics import (
        benchmark_values,
        buy_and_hold_return,
        compute_analytics,
        format_rules_log,
        format_stats_table,
        history_to_frame,
    )
    from portfolio_sim.engine import init_simulation, run_to_completion
    from price_data.projection import extend_with_projections

    cfg = ctx.obj["config"]
    try:
        sim_cfg = SimulationConfig.from_config(cfg)
        schedule = parse_scheduled_orders(cfg)
    except ConfigError as exc:
        _fail(f"Invalid configuration: {exc}")

    if capital is not None:
        if capital <= 0:
            _fail(f"--capital must be positive, got {capital}")
        sim_cfg = replace(sim_cfg, starting_capital=capital)
    if projection_days is not None:
        sim_cfg = replace(sim_cfg, projection_days=projection_days)
    if seed is not None:
        sim_cfg = replace(sim_cfg, seed=seed)

    scenario = sim_cfg.scenario
    tickers = _required_tickers(sim_cfg, schedule)
    if not tickers:
        _fail("Nothing to simulate: add allocations, rules or orders to the config.")

    source = get_source(cfg)
    console.print(
        f"\n[bold green]Simulation[/bold green] [cyan]{scenario.name}[/cyan] "
        f"{scenario.start_date or 'start'} → {scenario.end_date or 'end'} "
        f"(${sim_cfg.starting_capital:,.0f}, {len(sim_cfg.rules)} rules)\n"
    )

    try:
        price_map = source.load(tickers, scenario.start_date, scenario.end_date)
    except PriceDataError as exc:
        _fail(str(exc))

    if sim_cfg.benchmark not in price_map:
        try:
            price_map[sim_cfg.benchmark] = source.get_history(sim_cfg.benchmark, scenario.start_date, scenario.end_date)
        except PriceDataError as exc:
            logger.warning("Benchmark unavailable, beta falls back to the portfolio itself: %s", exc)

    if not any(price_map.values()):
        console.print("[yellow]No price data in the scenario window. Check data.prices_dir and the dates.[/yellow]")
        return

    if sim_cfg.projection_days > 0:
        price_map = extend_with_projections(price_map, sim_cfg.projection_days, seed=sim_cfg.seed)
        logger.info("Extended %d series by %d projected days", len(price_map), sim_cfg.projection_days)

    state = init_simulation(sim_cfg)
    with console.status("[bold]Replaying ticks...[/bold]"):
        state = run_to_completion(state, price_map, schedule)
    logger.info("Simulation complete after %d ticks", len(state.history))

    bench = benchmark_values(state.history, price_map, sim_cfg.benchmark) if sim_cfg.benchmark in price_map else None
    analytics = compute_analytics(
        state.history,
        bench,
        risk_free_rate=scenario.risk_free_rate,
        rules_fired=len(state.rules_log),
        manual_trades=state.manual_trade_count,
        hodl_return=buy_and_hold_return(sim_cfg.allocations, price_map),
    )

    console.print(dataframe_to_rich_table(format_stats_table(analytics, scenario.name), title="Simulation Summary"))

    log_df = format_rules_log(state.rules_log)
    if not log_df.empty:
        console.print(dataframe_to_rich_table(log_df, title="Rules Log", max_rows=30))

    if events:
        rows = [
            {"Date": ev.date.isoformat(), "Event": ev.trigger.value, "Detail": _event_detail(ev.context)}
            for ev in state.events
        ]
        console.print(dataframe_to_rich_table(pd.DataFrame(rows), title="Events", max_rows=200))
    else:
        counts = Counter(ev.trigger.value for ev in state.events)
        summary = ", ".join(f"{name}={n}" for name, n in sorted(counts.items()))
        console.print(f"[dim]Events: {summary or 'none'}[/dim]")

    do_export = export if export is not None else cfg.get("output", {}).get("export_csv", True)
    if do_export:
        csv_dir = cfg.get("output", {}).get("csv_dir", "exports")
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        csv_path = f"{csv_dir}/history_{scenario.slug}_{ts}.csv"
        history_to_frame(state.history).to_csv(csv_path, index=False)
        console.print(f"[dim]History exported to {csv_path}[/dim]")


def _event_detail(ctx) -> str:
    parts = []
    if ctx.ticker:
        parts.append(ctx.ticker)
    if ctx.change_pct is not None:
        parts.append(f"{ctx.change_pct * 100:+.1f}%")
    if ctx.rule_name:
        parts.append(ctx.rule_name)
    if ctx.event_label:
        parts.append(ctx.event_label)
    if ctx.portfolio_value is not None:
        parts.append(f"${ctx.portfolio_value:,.2f}")
    return " ".join(parts)


# ── quote ─────────────────────────────────────────────────────────────────────

@cli.command()
@click.option("--ticker", "-t", required=True, help="Underlying symbol")
@click.option(
    "--type",
    "option_type",
    default="put",
    type=click.Choice(["put", "call"]),
    show_default=True,
    help="Option type (put = short put, call = covered call)",
)
@click.option("--strike", "-k", type=float, default=None, help="Strike price")
@click.option("--delta", "-d", type=float, default=None, help="Target absolute delta, e.g. 0.30")
@click.option("--expiry-days", default=30, show_default=True, help="Calendar days to expiry")
@click.option("--date", "on_date", default=None, help="Pricing date (YYYY-MM-DD); defaults to the last bar")
@click.option("--contracts", "-n", default=1, show_default=True, help="Number of contracts")
@click.pass_context
def quote(
    ctx: click.Context,
    ticker: str,
    option_type: str,
    strike: Optional[float],
    delta: Optional[float],
    expiry_days: int,
    on_date: Optional[str],
    contracts: int,
) -> None:
    """Quote the premium and Greeks for writing an option on a ticker."""
    from portfolio_sim.models import CONTRACT_MULTIPLIER, OptionType
    from portfolio_sim.prices import bar_on_or_before, index_of_date
    from portfolio_sim.pricing import black_scholes, find_strike_by_delta, historical_volatility, years_to_expiry

    cfg = ctx.obj["config"]
    ticker = ticker.upper()
    if (strike is None) == (delta is None):
        _fail("Give exactly one of --strike or --delta.")

    try:
        series = get_source(cfg).get_history(ticker)
    except PriceDataError as exc:
        _fail(str(exc))
    if not series:
        _fail(f"No price data for {ticker}.")

    bar = series[-1]
    if on_date:
        try:
            quote_date = datetime.strptime(on_date, "%Y-%m-%d").date()
        except ValueError:
            _fail(f"Invalid --date {on_date!r}, expected YYYY-MM-DD.")
        bar = bar_on_or_before(series, quote_date)
        if bar is None:
            _fail(f"No {ticker} bar on or before {on_date}.")
    idx = index_of_date(series, bar.date)

    r = float(cfg.get("scenario", {}).get("risk_free_rate", 0.02))
    kind = OptionType(option_type)
    sigma = historical_volatility([b.close for b in series[: idx + 1]])
    expiry = bar.date + timedelta(days=expiry_days)
    T = years_to_expiry(expiry, bar.date)
    if strike is None:
        strike = round(find_strike_by_delta(bar.close, T, sigma, delta, kind, r), 2)

    q = black_scholes(bar.close, strike, T, r, sigma, kind)
    rows = [
        ("Underlying", f"{ticker} ${bar.close:,.2f} on {bar.date}"),
        ("Option", f"{kind.value} {strike:g} exp {expiry}"),
        ("Volatility (30d)", f"{sigma * 100:.1f}%"),
        ("Price / share", f"${q.price:.4f}"),
        ("Premium", f"${q.price * CONTRACT_MULTIPLIER * contracts:,.2f} ({contracts} contract(s))"),
        ("Delta", f"{q.delta:.4f}"),
        ("Gamma", f"{q.gamma:.4f}"),
        ("Theta / day", f"{q.theta:.4f}"),
        ("Vega / vol pt", f"{q.vega:.4f}"),
        ("Rho / rate pt", f"{q.rho:.4f}"),
    ]
    console.print(dataframe_to_rich_table(pd.DataFrame(rows, columns=["Metric", "Value"]), title="Option Quote"))


# ── project ───────────────────────────────────────────────────────────────────

@cli.command()
@click.option("--ticker", "-t", required=True, help="Symbol to project")
@click.option("--days", "-n", default=60, show_default=True, help="Business days to project")
@click.option("--seed", type=int, default=None, help="Random seed (defaults to simulation.seed)")
@click.option("--drift", type=float, default=0.0, show_default=True, help="Annual drift (decimal)")
@click.option("--output", "-o", default=None, help="Write history plus projection to this CSV")
@click.pass_context
def project(
    ctx: click.Context,
    ticker: str,
    days: int,
    seed: Optional[int],
    drift: float,
    output: Optional[str],
) -> None:
    """Extend a ticker's price history with a seeded random-walk projection."""
    from price_data.base import series_to_frame
    from price_data.projection import extend_with_projections

    cfg = ctx.obj["config"]
    ticker = ticker.upper()
    if seed is None:
        seed = cfg.get("simulation", {}).get("seed")

    try:
        series = get_source(cfg).get_history(ticker)
    except PriceDataError as exc:
        _fail(str(exc))
    if not series:
        _fail(f"No price data for {ticker}.")

    extended = extend_with_projections({ticker: series}, days, seed=seed, annual_drift=drift)[ticker]
    projected = [b for b in extended if b.projected]
    if not projected:
        console.print("[yellow]Nothing projected; --days must be positive.[/yellow]")
        return

    df = series_to_frame(projected).drop(columns=["projected"]).round(2)
    console.print(dataframe_to_rich_table(df, title=f"{ticker} Projection ({len(projected)} days)", max_rows=30))
    console.print(
        f"Last close ${series[-1].close:,.2f} → projected ${projected[-1].close:,.2f} "
        f"({(projected[-1].close / series[-1].close - 1) * 100:+.1f}%)"
    )

    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        series_to_frame(extended).to_csv(output, index=False)
        console.print(f"[dim]Exported to {output}[/dim]")


# ─── Entry point ──────────────────────────────────────────────────────────────

if __name__ == "__main__":
    cli()
