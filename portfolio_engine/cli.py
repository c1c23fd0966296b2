from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from portfolio_engine.config import EngineConfig, load_engine_config
from portfolio_engine.exceptions import PortfolioEngineError
from portfolio_engine.service import PortfolioAnalyticsService
from portfolio_engine.summary import render_summary
from portfolio_engine.transactions import load_transactions
from portfolio_engine.unrealized import load_holdings, load_prices
from portfolio_engine.util import parse_number, parse_timestamp_millis, sniff_delimiter

logger = logging.getLogger(__name__)

app = typer.Typer(help="Portfolio cost-basis, PnL and risk analytics.", add_completion=False, no_args_is_help=True)

_state: dict[str, Optional[Path]] = {"config": None}


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML (overrides the search path)."),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state["config"] = config


def _require(path: Optional[Path], label: str) -> None:
    if path is not None and not path.exists():
        raise typer.BadParameter(f"{label} file not found: {path}")


def _load_config() -> EngineConfig:
    try:
        cfg, src = load_engine_config(_state["config"])
    except PortfolioEngineError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    if src:
        logger.info("Loaded config from %s", src)
    return cfg


def _as_of(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    ms = parse_timestamp_millis(value)
    if ms is None:
        raise typer.BadParameter(f"Invalid --as-of date: {value}")
    return ms


def _load_benchmark(path: Path) -> list[float]:
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    if path.suffix.lower() == ".json" or text.lstrip().startswith("["):
        values = json.loads(text or "[]")
    else:
        rows = list(csv.reader(text.splitlines(), delimiter=sniff_delimiter(text)))
        values = [r[-1] for r in rows if r]
    out: list[float] = []
    for v in values:
        x = parse_number(v)
        if x is not None:
            out.append(x)
    return out


def _load_txs(path: Path):
    _require(path, "Transactions")
    txs, warnings = load_transactions(path)
    for w in warnings:
        logger.warning("%s", w)
    return txs


@app.command("analyze")
def analyze(
    transactions: Path = typer.Option(..., "--transactions", help="Transactions CSV or JSON."),
    holdings: Optional[Path] = typer.Option(None, "--holdings", help="Optional holdings snapshot CSV/JSON."),
    prices: Optional[Path] = typer.Option(None, "--prices", help="Current prices: JSON {asset: price} or CSV."),
    benchmark: Optional[Path] = typer.Option(None, "--benchmark", help="Benchmark returns, CSV or JSON list."),
    method: Optional[str] = typer.Option(None, "--method", help="FIFO, LIFO, HIFO or WAC (default from config)."),
    as_of: Optional[str] = typer.Option(None, "--as-of", help="Analysis date (YYYY-MM-DD or ISO datetime)."),
    fmt: str = typer.Option("json", "--format", help="Output format: json or text."),
):
    """
    Realized/unrealized PnL, performance and risk for a transaction history.
    """
    load_dotenv()
    _require(holdings, "Holdings")
    _require(prices, "Prices")
    _require(benchmark, "Benchmark")
    if fmt not in {"json", "text"}:
        raise typer.BadParameter(f"Invalid --format: {fmt}")
    cfg = _load_config()
    txs = _load_txs(transactions)
    held = None
    if holdings is not None:
        held, h_warn = load_holdings(holdings)
        for w in h_warn:
            logger.warning("%s", w)
    price_map = load_prices(prices) if prices is not None else {}
    bench = _load_benchmark(benchmark) if benchmark is not None else None
    try:
        report = PortfolioAnalyticsService(cfg).analyze_portfolio(
            held, txs, price_map, bench, _as_of(as_of), method=method
        )
    except PortfolioEngineError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    if fmt == "text":
        typer.echo(render_summary(report))
    else:
        typer.echo(report.model_dump_json(indent=2))


@app.command("optimize-tax")
def optimize_tax(
    transactions: Path = typer.Option(..., "--transactions", help="Transactions CSV or JSON."),
    asset: str = typer.Option(..., "--asset", help="Asset to sell."),
    quantity: float = typer.Option(..., "--quantity", help="Units to sell."),
    price: float = typer.Option(..., "--price", help="Expected sale price per unit."),
    as_of: Optional[str] = typer.Option(None, "--as-of", help="Only lots acquired on or before this date."),
):
    """
    Compare FIFO, LIFO and HIFO for a planned sale and recommend the lowest tax impact.
    """
    load_dotenv()
    cfg = _load_config()
    txs = _load_txs(transactions)
    try:
        res = PortfolioAnalyticsService(cfg).optimize_tax(txs, asset, quantity, price, _as_of(as_of))
    except PortfolioEngineError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(asdict(res), indent=2, default=str))


@app.command("tax-report")
def tax_report(
    transactions: Path = typer.Option(..., "--transactions", help="Transactions CSV or JSON."),
    year: int = typer.Option(..., "--year", help="Tax year."),
    method: Optional[str] = typer.Option(None, "--method", help="FIFO, LIFO, HIFO or WAC (default from config)."),
):
    """
    Estimated short/long-term gains and tax for sales in one year.
    """
    load_dotenv()
    cfg = _load_config()
    txs = _load_txs(transactions)
    try:
        rep = PortfolioAnalyticsService(cfg).tax_report(txs, year, method=method)
    except PortfolioEngineError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    typer.echo(rep.model_dump_json(indent=2))


if __name__ == "__main__":
    app()
