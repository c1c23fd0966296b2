from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Mapping, Sequence

from portfolio_engine.advisory import AdvisoryAnalyzer, AdvisoryRequest, AdvisoryResults, run_advisors
from portfolio_engine.config import EngineConfig
from portfolio_engine.ledger import CostBasisLedger, CostBasisMethod, parse_cost_basis_method
from portfolio_engine.performance import PerformanceMetricsEngine
from portfolio_engine.realized import RealizedPnLCalculator, RealizedPnLResult
from portfolio_engine.risk import (
    RiskMetricsEngine,
    calendar_daily_values,
    portfolio_value_series,
    time_weighted_return,
)
from portfolio_engine.tax import TaxLossOptimizer, TaxOptimizationResult, TaxReport, build_tax_report
from portfolio_engine.transactions import Transaction, TxType, sorted_by_time
from portfolio_engine.types import (
    AssetBreakdown,
    PeriodReturn,
    PortfolioMetrics,
    PortfolioReport,
    TradeFailureRow,
)
from portfolio_engine.unrealized import AssetHolding, UnrealizedPnLCalculator, UnrealizedPnLResult, holdings_from_ledger
from portfolio_engine.util import MILLIS_PER_DAY, format_money, pct, safe_div, to_millis, uniq_sorted

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"day_return": 1, "week_return": 7, "month_return": 30, "year_return": 365}


def _now_millis() -> int:
    return to_millis(dt.datetime.now(dt.timezone.utc))


def _last_trade_prices(txs: Iterable[Transaction]) -> dict[str, float]:
    out: dict[str, float] = {}
    for tx in sorted_by_time(txs):
        if tx.type in {TxType.BUY, TxType.SELL} and tx.price > 0:
            out[tx.asset] = tx.price
    return out


def period_return(txs: Sequence[Transaction], realized: RealizedPnLResult, as_of: int, days: int) -> PeriodReturn:
    """Realized PnL of sells inside (as_of - days, as_of], as a percent of buy value in that window."""
    start = as_of - days * MILLIS_PER_DAY
    amount = sum(t.realized_pnl for t in realized.trades if start < t.sold_at <= as_of)
    invested = sum(tx.total_value for tx in txs if tx.type == TxType.BUY and start < tx.timestamp_millis <= as_of)
    return PeriodReturn(amount=amount, percent=pct(amount, invested))


class PortfolioAnalyticsService:
    """
    Builds a `PortfolioReport` from transactions, holdings and prices.

    Every call builds its own ledger, so one instance can serve concurrent callers.
    """

    def __init__(self, config: EngineConfig | None = None, analyzers: Sequence[AdvisoryAnalyzer] = ()):
        self.config = config or EngineConfig()
        self.analyzers = tuple(analyzers)

    def _method(self, method: CostBasisMethod | str | None) -> CostBasisMethod:
        return parse_cost_basis_method(method if method is not None else self.config.cost_basis_method)

    def _replay(
        self, transactions: Iterable[Transaction], method: CostBasisMethod
    ) -> tuple[list[Transaction], CostBasisLedger, RealizedPnLResult]:
        txs = sorted_by_time(transactions)
        ledger = CostBasisLedger.build_lots(txs, method)
        realized = RealizedPnLCalculator(method, long_term_days=self.config.tax.long_term_days).calculate(txs, ledger)
        return txs, ledger, realized

    def analyze_portfolio(
        self,
        holdings: Sequence[AssetHolding] | None,
        transactions: Iterable[Transaction],
        current_prices: Mapping[str, float],
        benchmark_returns: Sequence[float] | None = None,
        as_of: int | None = None,
        *,
        method: CostBasisMethod | str | None = None,
    ) -> PortfolioReport:
        m = self._method(method)
        as_of_ms = int(as_of) if as_of is not None else _now_millis()
        txs = [t for t in transactions if as_of is None or t.timestamp_millis <= as_of_ms]
        warnings: list[str] = []

        txs, ledger, realized = self._replay(txs, m)
        prices = {str(k).strip().upper(): v for k, v in (current_prices or {}).items()}
        ledger_holdings = holdings_from_ledger(ledger, prices, _last_trade_prices(txs))
        if holdings is None:
            held = ledger_holdings
        else:
            held = list(holdings)
            amounts: dict[str, float] = {}
            for h in held:
                asset = str(h.asset).strip().upper()
                amounts[asset] = amounts.get(asset, 0.0) + h.total_amount
            for problem in ledger.check_conservation(amounts):
                logger.warning("Holdings reconciliation: %s", problem)
                warnings.append(f"Holdings do not match transaction history: {problem}")

        unrealized = UnrealizedPnLCalculator().calculate(held, prices)
        if unrealized.missing_prices:
            warnings.append(f"Stale prices used for: {', '.join(unrealized.missing_prices)}.")
        for f in realized.failures:
            warnings.append(f"Sell {f.transaction_id} not processed: {f.reason}")

        performance = PerformanceMetricsEngine().compute(realized.trades)

        points = portfolio_value_series(txs)
        series_kind = self.config.return_series
        if series_kind == "calendar":
            points = calendar_daily_values(points)
        risk = RiskMetricsEngine(self.config.risk_free_rate).compute(
            points, benchmark_returns, series_kind=series_kind
        )

        metrics = self._metrics(txs, realized, unrealized, as_of_ms)
        metrics.performance = performance
        metrics.risk = risk
        metrics.time_weighted_return = time_weighted_return(points)

        advisory = self._advisory(txs, held, prices)
        report = PortfolioReport(
            method=m.value,
            as_of=as_of_ms,
            metrics=metrics,
            trade_failures=[
                TradeFailureRow(
                    transaction_id=f.transaction_id,
                    asset=f.asset,
                    sold_at=f.sold_at,
                    quantity=f.quantity,
                    available=f.available,
                    reason=f.reason,
                )
                for f in realized.failures
            ],
            warnings=warnings,
            degraded=advisory.degraded,
            missing_prices=list(unrealized.missing_prices),
            **advisory.sections(),
        )
        report.recommendations = self.recommendations(report, realized)
        return report

    def _metrics(
        self,
        txs: Sequence[Transaction],
        realized: RealizedPnLResult,
        unrealized: UnrealizedPnLResult,
        as_of: int,
    ) -> PortfolioMetrics:
        total_pnl = realized.total + unrealized.total
        cost_all = realized.cost_basis_total + unrealized.cost_total
        realized_by_asset: dict[str, float] = {}
        for t in realized.trades:
            realized_by_asset[t.asset] = realized_by_asset.get(t.asset, 0.0) + t.realized_pnl

        assets = [
            AssetBreakdown(
                asset=p.asset,
                amount=p.amount,
                cost=p.cost,
                price=p.price,
                value=p.value,
                weight=safe_div(p.value, unrealized.market_value),
                unrealized_pnl=p.pnl,
                unrealized_pnl_percent=p.pnl_percent,
                realized_pnl=realized_by_asset.get(p.asset, 0.0),
                price_stale=p.price_stale,
            )
            for p in unrealized.positions
        ]
        periods = {name: period_return(txs, realized, as_of, days) for name, days in PERIOD_DAYS.items()}
        return PortfolioMetrics(
            total_value=unrealized.market_value,
            total_cost=unrealized.cost_total,
            total_pnl=total_pnl,
            total_pnl_percent=pct(total_pnl, cost_all),
            realized_pnl=realized.total,
            realized_pnl_percent=realized.percentage,
            unrealized_pnl=unrealized.total,
            unrealized_pnl_percent=unrealized.percentage,
            all_time_return=PeriodReturn(amount=total_pnl, percent=pct(total_pnl, cost_all)),
            total_transactions=len(txs),
            total_buys=sum(1 for t in txs if t.type == TxType.BUY),
            total_sells=sum(1 for t in txs if t.type == TxType.SELL),
            total_fees=sum(t.fee_base for t in txs),
            assets=assets,
            **periods,
        )

    def _advisory(
        self, txs: Sequence[Transaction], held: Sequence[AssetHolding], prices: Mapping[str, float]
    ) -> AdvisoryResults:
        if not self.analyzers:
            return AdvisoryResults()
        request = AdvisoryRequest(
            assets=tuple(uniq_sorted(str(h.asset).strip().upper() for h in held)),
            current_prices=dict(prices),
            transactions=tuple(txs),
        )
        return run_advisors(
            self.analyzers,
            request,
            timeout=self.config.advisory.timeout_seconds,
            max_workers=self.config.advisory.max_workers,
        )

    def recommendations(self, report: PortfolioReport, realized: RealizedPnLResult) -> list[str]:
        th = self.config.thresholds
        m = report.metrics
        risk = m.risk
        perf = m.performance
        out: list[str] = []

        if risk.observations > 0 and risk.sharpe_ratio < th.min_sharpe:
            out.append(
                f"Sharpe ratio {risk.sharpe_ratio:.2f} is below {th.min_sharpe:g}; consider rebalancing toward "
                "better risk-adjusted positions."
            )
        if risk.volatility > th.max_volatility:
            out.append(f"Annualized volatility {risk.volatility:.0%} is high; consider reducing exposure.")
        if risk.max_drawdown > th.max_drawdown:
            out.append(f"Max drawdown reached {risk.max_drawdown:.0%}; consider stop-losses or position limits.")
        if perf.total_trades >= th.min_trades_for_win_rate and perf.win_rate < th.min_win_rate:
            out.append(f"Win rate {perf.win_rate:.0%} over {perf.total_trades} trades; review exit timing.")
        for a in m.assets:
            if a.weight > th.max_asset_weight:
                out.append(f"{a.asset} is {a.weight:.0%} of portfolio value; consider diversifying.")
        losers = [a for a in m.assets if a.unrealized_pnl < 0]
        if losers:
            names = ", ".join(f"{a.asset} ({format_money(a.unrealized_pnl)})" for a in losers)
            out.append(f"Tax-loss harvesting candidates: {names}.")
        if realized.short_term_total > 0:
            out.append(
                f"Short-term realized gains of {format_money(realized.short_term_total)}; holding longer than "
                f"{self.config.tax.long_term_days} days qualifies for long-term rates."
            )
        if report.trade_failures:
            out.append(
                f"{len(report.trade_failures)} sell(s) exceed recorded buys; review transaction history for "
                "missing acquisitions."
            )
        if report.missing_prices:
            out.append(f"Prices are stale for {', '.join(report.missing_prices)}; refresh market data.")
        for section in (report.price_analysis, report.on_chain_metrics, report.whale_activity, report.correlation):
            if section is not None and section.trend == "bearish" and section.confidence >= th.advisory_min_confidence:
                out.append(
                    f"{section.kind.value.replace('_', ' ').capitalize()} signals are bearish "
                    f"({section.confidence:.0%} confidence); proceed with caution."
                )
        if report.degraded:
            out.append(f"Some advisory data was unavailable ({', '.join(report.degraded)}).")
        return out

    def optimize_tax(
        self,
        transactions: Iterable[Transaction],
        asset: str,
        sell_quantity: float,
        current_price: float,
        as_of: int | None = None,
    ) -> TaxOptimizationResult:
        """Best lot-selection method for a planned sale, against the ledger after all recorded sells."""
        _txs, ledger, _realized = self._replay(transactions, self._method(None))
        return TaxLossOptimizer(ledger, self.config.tax).optimize(asset, sell_quantity, current_price, as_of)

    def tax_report(
        self,
        transactions: Iterable[Transaction],
        year: int,
        *,
        method: CostBasisMethod | str | None = None,
    ) -> TaxReport:
        _txs, _ledger, realized = self._replay(transactions, self._method(method))
        return build_tax_report(realized.trades, year, self.config.tax)
