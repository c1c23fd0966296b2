from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from portfolio_engine.exceptions import InsufficientCostBasisError
from portfolio_engine.ledger import CostBasisLedger, CostBasisMethod, LotConsumption, parse_cost_basis_method
from portfolio_engine.tax import DEFAULT_LONG_TERM_DAYS, split_by_term
from portfolio_engine.transactions import Transaction, TxType, sorted_by_time
from portfolio_engine.util import days_between, pct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeAnalysis:
    transaction_id: str
    asset: str
    sold_at: int
    quantity_sold: float
    sale_proceeds: float
    fee: float
    cost_basis_consumed: float
    realized_pnl: float
    holding_period_days: float
    is_win: bool
    short_term_gain: float = 0.0
    long_term_gain: float = 0.0
    lots: tuple[LotConsumption, ...] = ()


@dataclass(frozen=True)
class TradeFailure:
    transaction_id: str
    asset: str
    sold_at: int
    quantity: float
    available: float
    reason: str


@dataclass
class RealizedPnLResult:
    total: float = 0.0
    percentage: float = 0.0
    cost_basis_total: float = 0.0
    proceeds_total: float = 0.0
    trades: list[TradeAnalysis] = field(default_factory=list)
    failures: list[TradeFailure] = field(default_factory=list)

    @property
    def short_term_total(self) -> float:
        return sum(t.short_term_gain for t in self.trades)

    @property
    def long_term_total(self) -> float:
        return sum(t.long_term_gain for t in self.trades)


def analyze_sale(
    tx: Transaction,
    consumed: Iterable[LotConsumption],
    cost_basis: float,
    *,
    long_term_days: int = DEFAULT_LONG_TERM_DAYS,
) -> TradeAnalysis:
    """
    Turn one sell and the lots it consumed into a `TradeAnalysis`.

    Holding period is the quantity-weighted age of the consumed lots. The sale fee is spread
    over the lots by quantity when splitting the gain into short- and long-term parts.
    """
    lots = tuple(consumed)
    qty_total = sum(c.quantity for c in lots)
    proceeds = tx.total_value
    pnl = proceeds - tx.fee_base - cost_basis

    holding_days = 0.0
    if qty_total > 0:
        holding_days = sum(days_between(c.acquired_at, tx.timestamp_millis) * c.quantity for c in lots) / qty_total
    st, lt = split_by_term(
        lots, proceeds=proceeds - tx.fee_base, sold_at=tx.timestamp_millis, long_term_days=long_term_days
    )

    return TradeAnalysis(
        transaction_id=tx.id,
        asset=tx.asset,
        sold_at=tx.timestamp_millis,
        quantity_sold=tx.amount,
        sale_proceeds=proceeds,
        fee=tx.fee_base,
        cost_basis_consumed=cost_basis,
        realized_pnl=pnl,
        holding_period_days=holding_days,
        is_win=pnl > 0,
        short_term_gain=st,
        long_term_gain=lt,
        lots=lots,
    )


class RealizedPnLCalculator:
    def __init__(
        self,
        method: CostBasisMethod | str = CostBasisMethod.FIFO,
        *,
        long_term_days: int = DEFAULT_LONG_TERM_DAYS,
    ):
        self.method = parse_cost_basis_method(method)
        self.long_term_days = int(long_term_days)

    def calculate(self, transactions: Iterable[Transaction], ledger: CostBasisLedger) -> RealizedPnLResult:
        """
        Replay sells in time order against `ledger`, committing each consumption.

        A sell that oversells its asset is recorded in `failures`, leaves the ledger untouched,
        and does not stop the remaining sells from being processed.
        """
        result = RealizedPnLResult()
        for tx in sorted_by_time(t for t in transactions if t.type == TxType.SELL):
            if tx.amount <= 0:
                continue
            try:
                consumed = ledger.consume(tx.asset, tx.amount, as_of=tx.timestamp_millis, method=self.method)
            except InsufficientCostBasisError as e:
                logger.warning("Sell %s skipped: %s", tx.id, e)
                result.failures.append(
                    TradeFailure(
                        transaction_id=tx.id,
                        asset=tx.asset,
                        sold_at=tx.timestamp_millis,
                        quantity=e.requested,
                        available=e.available,
                        reason=str(e),
                    )
                )
                continue
            ledger.commit(tx.asset, consumed.updated_lots)
            trade = analyze_sale(
                tx, consumed.consumed, consumed.cost_basis_consumed, long_term_days=self.long_term_days
            )
            result.trades.append(trade)
            result.total += trade.realized_pnl
            result.cost_basis_total += trade.cost_basis_consumed
            result.proceeds_total += trade.sale_proceeds

        result.percentage = pct(result.total, result.cost_basis_total)
        return result
