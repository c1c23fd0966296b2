from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from portfolio_engine.advisory import AdvisoryInsight


StreakType = Literal["win", "loss", "none"]
SeriesKind = Literal["transaction", "calendar"]


class _Report(BaseModel):
    # +inf (profit factor, Sortino) is emitted as "Infinity" in JSON.
    model_config = ConfigDict(ser_json_inf_nan="strings")


class RiskMetrics(_Report):
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_at: Optional[int] = None
    current_drawdown: float = 0.0
    beta: float = 1.0
    alpha: float = 0.0
    var_95: float = 0.0
    cvar_95: float = 0.0
    annualized_return: float = 0.0
    calmar_ratio: float = 0.0
    observations: int = 0
    series_kind: SeriesKind = "transaction"


class PerformanceMetrics(_Report):
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    total_realized: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    longest_win_streak: int = 0
    longest_loss_streak: int = 0
    current_streak: int = 0
    current_streak_type: StreakType = "none"
    avg_holding_period_days: float = 0.0
    best_trade: Optional[str] = None
    worst_trade: Optional[str] = None


class PeriodReturn(_Report):
    amount: float = 0.0
    percent: float = 0.0


class AssetBreakdown(_Report):
    asset: str
    amount: float
    cost: float
    price: float
    value: float
    weight: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    realized_pnl: float = 0.0
    price_stale: bool = False


class PortfolioMetrics(_Report):
    total_value: float = 0.0
    total_cost: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    realized_pnl: float = 0.0
    realized_pnl_percent: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0

    day_return: PeriodReturn = Field(default_factory=PeriodReturn)
    week_return: PeriodReturn = Field(default_factory=PeriodReturn)
    month_return: PeriodReturn = Field(default_factory=PeriodReturn)
    year_return: PeriodReturn = Field(default_factory=PeriodReturn)
    all_time_return: PeriodReturn = Field(default_factory=PeriodReturn)

    risk: RiskMetrics = Field(default_factory=RiskMetrics)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)

    total_transactions: int = 0
    total_buys: int = 0
    total_sells: int = 0
    total_fees: float = 0.0
    time_weighted_return: float = 0.0
    assets: list[AssetBreakdown] = Field(default_factory=list)


class TradeFailureRow(_Report):
    transaction_id: str
    asset: str
    sold_at: int
    quantity: float
    available: float
    reason: str


class PortfolioReport(_Report):
    method: str
    as_of: int
    metrics: PortfolioMetrics
    price_analysis: Optional[AdvisoryInsight] = None
    on_chain_metrics: Optional[AdvisoryInsight] = None
    whale_activity: Optional[AdvisoryInsight] = None
    correlation: Optional[AdvisoryInsight] = None
    recommendations: list[str] = Field(default_factory=list)
    trade_failures: list[TradeFailureRow] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    degraded: list[str] = Field(default_factory=list)
    missing_prices: list[str] = Field(default_factory=list)
