from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from portfolio_engine.transactions import Transaction, TxType, sorted_by_time
from portfolio_engine.types import RiskMetrics, SeriesKind
from portfolio_engine.util import safe_div

logger = logging.getLogger(__name__)

PERIODS_PER_YEAR = 365
VAR_LEVEL = 0.05


@dataclass(frozen=True)
class ValuePoint:
    timestamp_millis: int
    value: float
    cash_flow: float = 0.0  # external flow at this point: buys positive, sells negative


@dataclass(frozen=True)
class Drawdown:
    max_drawdown: float
    max_drawdown_at: int | None
    current_drawdown: float


def portfolio_value_series(transactions: Iterable[Transaction]) -> list[ValuePoint]:
    """
    Invested value after each transaction: buys add `total_value`, sells subtract it.

    Other types repeat the previous value, so there is exactly one point per transaction.
    """
    value = 0.0
    out: list[ValuePoint] = []
    for tx in sorted_by_time(transactions):
        flow = 0.0
        if tx.type == TxType.BUY:
            flow = tx.total_value
        elif tx.type == TxType.SELL:
            flow = -tx.total_value
        value += flow
        out.append(ValuePoint(tx.timestamp_millis, value, flow))
    return out


def calendar_daily_values(points: Sequence[ValuePoint]) -> list[ValuePoint]:
    """Last value of each UTC calendar day, forward-filled across days without activity."""
    if not points:
        return []
    try:
        import pandas as pd  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("pandas is required for calendar-day return series.") from e

    df = pd.DataFrame(
        {"value": [p.value for p in points], "cash_flow": [p.cash_flow for p in points]},
        index=pd.to_datetime([p.timestamp_millis for p in points], unit="ms", utc=True),
    )
    daily = df.resample("1D").agg({"value": "last", "cash_flow": "sum"})
    daily["value"] = daily["value"].ffill()
    return [
        ValuePoint(int(ts.value // 1_000_000), float(row["value"]), float(row["cash_flow"]))
        for ts, row in daily.iterrows()
    ]


def return_series(points: Sequence[ValuePoint]) -> list[float]:
    out: list[float] = []
    for prev, cur in zip(points, points[1:]):
        if prev.value > 0:
            out.append((cur.value - prev.value) / prev.value)
    return out


def max_drawdown(values: Sequence[float], timestamps: Sequence[int] | None = None) -> Drawdown:
    """
    Largest peak-to-trough decline as a fraction of the running peak.

    Points while the running peak is not positive contribute no drawdown.
    """
    peak = float("-inf")
    mdd = 0.0
    mdd_at: int | None = None
    current = 0.0
    for i, v in enumerate(values):
        peak = max(peak, float(v))
        dd = (peak - float(v)) / peak if peak > 0 else 0.0
        current = dd
        if dd > mdd:
            mdd = dd
            mdd_at = timestamps[i] if timestamps is not None else i
    return Drawdown(max_drawdown=mdd, max_drawdown_at=mdd_at, current_drawdown=current)


def time_weighted_return(points: Sequence[ValuePoint]) -> float:
    """
    Chain-linked return over the value series, in percent.

    Each sub-period removes the cash flow booked at its end point, so deposits and
    withdrawals do not count as performance. Steps from a non-positive value are skipped.
    """
    prod = 1.0
    for prev, cur in zip(points, points[1:]):
        if prev.value <= 0:
            continue
        prod *= (cur.value - cur.cash_flow) / prev.value
    return (prod - 1.0) * 100.0


def _mean(xs: Sequence[float]) -> float:
    return sum(xs) / len(xs) if xs else 0.0


def _sample_std(xs: Sequence[float]) -> float:
    if len(xs) < 2:
        return 0.0
    m = _mean(xs)
    return math.sqrt(sum((x - m) ** 2 for x in xs) / (len(xs) - 1))


class RiskMetricsEngine:
    def __init__(self, risk_free_rate: float = 0.02, periods_per_year: int = PERIODS_PER_YEAR):
        self.risk_free_rate = float(risk_free_rate)
        self.periods_per_year = int(periods_per_year)

    def compute(
        self,
        points: Sequence[ValuePoint],
        benchmark_returns: Sequence[float] | None = None,
        *,
        series_kind: SeriesKind = "transaction",
    ) -> RiskMetrics:
        returns = return_series(points)
        n = len(returns)
        ann = math.sqrt(self.periods_per_year)
        rf = self.risk_free_rate

        mean_r = _mean(returns)
        annualized = mean_r * self.periods_per_year
        vol = _sample_std(returns) * ann
        sharpe = safe_div(annualized - rf, vol)

        negatives = [r for r in returns if r < 0]
        if negatives:
            downside = math.sqrt(sum(r * r for r in negatives) / len(negatives)) * ann
            sortino = safe_div(annualized - rf, downside)
        else:
            sortino = float("inf") if n and annualized - rf > 0 else 0.0

        dd = max_drawdown([p.value for p in points], [p.timestamp_millis for p in points])

        beta, alpha = 1.0, 0.0
        if benchmark_returns is not None and len(benchmark_returns) == n and n >= 2:
            b = [float(x) for x in benchmark_returns]
            mb = _mean(b)
            var_b = sum((x - mb) ** 2 for x in b) / (n - 1)
            if var_b > 0:
                cov = sum((x - mb) * (y - mean_r) for x, y in zip(b, returns)) / (n - 1)
                beta = cov / var_b
            alpha = annualized - (rf + beta * (mb * self.periods_per_year - rf))
        elif benchmark_returns is not None:
            logger.info("Benchmark series ignored: %s returns vs %s portfolio returns", len(benchmark_returns), n)

        var_95 = cvar_95 = 0.0
        if n:
            ordered = sorted(returns)
            idx = int(math.floor(n * VAR_LEVEL))
            var_95 = ordered[idx]
            cvar_95 = _mean(ordered[: idx + 1])

        return RiskMetrics(
            volatility=vol,
            sharpe_ratio=sharpe,
            sortino_ratio=sortino,
            max_drawdown=dd.max_drawdown,
            max_drawdown_at=dd.max_drawdown_at,
            current_drawdown=dd.current_drawdown,
            beta=beta,
            alpha=alpha,
            var_95=var_95,
            cvar_95=cvar_95,
            annualized_return=annualized,
            calmar_ratio=safe_div(annualized, dd.max_drawdown),
            observations=n,
            series_kind=series_kind,
        )

