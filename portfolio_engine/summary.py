from __future__ import annotations

import math
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from portfolio_engine.types import PortfolioReport
from portfolio_engine.util import format_money, from_millis

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _ratio(value: float) -> str:
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:.2f}"


def _env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.globals.update(money=format_money, ratio=_ratio)
    return env


def render_summary(report: PortfolioReport) -> str:
    tpl = _env().get_template("summary.txt.j2")
    sections = [
        s
        for s in (report.price_analysis, report.on_chain_metrics, report.whale_activity, report.correlation)
        if s is not None
    ]
    return tpl.render(
        r=report,
        m=report.metrics,
        p=report.metrics.performance,
        k=report.metrics.risk,
        sections=sections,
        as_of=from_millis(report.as_of).strftime("%Y-%m-%d %H:%M UTC"),
    )
