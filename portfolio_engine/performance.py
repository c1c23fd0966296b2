from __future__ import annotations

from typing import Sequence

from portfolio_engine.realized import TradeAnalysis
from portfolio_engine.types import PerformanceMetrics
from portfolio_engine.util import safe_div


class PerformanceMetricsEngine:
    """Trade-level statistics over realized sells, in sell order."""

    def compute(self, trades: Sequence[TradeAnalysis]) -> PerformanceMetrics:
        if not trades:
            return PerformanceMetrics()

        wins = [t for t in trades if t.realized_pnl > 0]
        losses = [t for t in trades if t.realized_pnl <= 0]
        gross_win = sum(t.realized_pnl for t in wins)
        gross_loss = abs(sum(t.realized_pnl for t in losses))

        if gross_loss == 0:
            profit_factor = float("inf") if gross_win > 0 else 0.0
        else:
            profit_factor = gross_win / gross_loss

        longest_win = longest_loss = 0
        streak = 0
        streak_type = "none"
        for t in trades:
            kind = "win" if t.realized_pnl > 0 else "loss"
            streak = streak + 1 if kind == streak_type else 1
            streak_type = kind
            if kind == "win":
                longest_win = max(longest_win, streak)
            else:
                longest_loss = max(longest_loss, streak)

        best = max(trades, key=lambda t: t.realized_pnl)
        worst = min(trades, key=lambda t: t.realized_pnl)

        return PerformanceMetrics(
            total_trades=len(trades),
            wins=len(wins),
            losses=len(losses),
            win_rate=len(wins) / len(trades),
            profit_factor=profit_factor,
            total_realized=sum(t.realized_pnl for t in trades),
            avg_win=safe_div(gross_win, len(wins)),
            avg_loss=safe_div(gross_loss, len(losses)),
            largest_win=max((t.realized_pnl for t in wins), default=0.0),
            largest_loss=min((t.realized_pnl for t in losses), default=0.0),
            longest_win_streak=longest_win,
            longest_loss_streak=longest_loss,
            current_streak=streak,
            current_streak_type=streak_type,
            avg_holding_period_days=sum(t.holding_period_days for t in trades) / len(trades),
            best_trade=best.transaction_id,
            worst_trade=worst.transaction_id,
        )
