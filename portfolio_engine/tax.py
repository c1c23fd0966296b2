from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Literal

from pydantic import BaseModel, Field

from portfolio_engine.ledger import CostBasisLedger, CostBasisMethod, LotConsumption
from portfolio_engine.util import MILLIS_PER_DAY, from_millis

if TYPE_CHECKING:
    from portfolio_engine.realized import TradeAnalysis

logger = logging.getLogger(__name__)

DEFAULT_LONG_TERM_DAYS = 365

Term = Literal["ST", "LT"]


class TaxAssumptions(BaseModel):
    short_term_rate: float = 0.37
    long_term_rate: float = 0.20
    state_rate: float = 0.05
    long_term_days: int = DEFAULT_LONG_TERM_DAYS

    def as_json(self) -> dict[str, Any]:
        return self.model_dump()


def holding_term(acquired_at: int, sold_at: int, long_term_days: int = DEFAULT_LONG_TERM_DAYS) -> Term:
    """Long-term only when held strictly longer than `long_term_days` whole days."""
    held_days = (int(sold_at) - int(acquired_at)) // MILLIS_PER_DAY
    return "LT" if held_days > long_term_days else "ST"


@dataclass(frozen=True)
class TaxEstimate:
    federal: float
    state: float

    @property
    def total(self) -> float:
        return self.federal + self.state


def estimate_tax(short_term: float, long_term: float, assumptions: TaxAssumptions) -> TaxEstimate:
    # Net losses are not refunded: they only offset gains within the estimate.
    federal = assumptions.short_term_rate * short_term + assumptions.long_term_rate * long_term
    state = assumptions.state_rate * (short_term + long_term)
    return TaxEstimate(federal=max(0.0, federal), state=max(0.0, state))


def split_by_term(
    lots: Iterable[LotConsumption],
    *,
    proceeds: float,
    sold_at: int,
    long_term_days: int,
) -> tuple[float, float]:
    picks = list(lots)
    qty_total = sum(c.quantity for c in picks)
    st = lt = 0.0
    if qty_total <= 0:
        return st, lt
    for c in picks:
        gain = proceeds * (c.quantity / qty_total) - c.cost
        if holding_term(c.acquired_at, sold_at, long_term_days) == "LT":
            lt += gain
        else:
            st += gain
    return st, lt


@dataclass(frozen=True)
class TaxStrategy:
    method: CostBasisMethod
    cost_basis: float
    proceeds: float
    tax_impact: float
    short_term_gain: float
    long_term_gain: float
    estimated_tax: float
    lots: tuple[LotConsumption, ...]

    @property
    def is_loss(self) -> bool:
        return self.tax_impact < 0


@dataclass(frozen=True)
class TaxOptimizationResult:
    asset: str
    sell_quantity: float
    current_price: float
    recommended_method: CostBasisMethod
    tax_impact: float
    recommended: TaxStrategy
    alternatives: tuple[TaxStrategy, ...]


OPTIMIZER_METHODS = (CostBasisMethod.FIFO, CostBasisMethod.LIFO, CostBasisMethod.HIFO)


class TaxLossOptimizer:
    """
    Compare FIFO, LIFO and HIFO for a hypothetical sale.

    Works on speculative `consume` results only, so the ledger it is given is never changed.
    """

    def __init__(self, ledger: CostBasisLedger, assumptions: TaxAssumptions | None = None):
        self.ledger = ledger
        self.assumptions = assumptions or TaxAssumptions()

    def _strategy(
        self, method: CostBasisMethod, asset: str, qty: float, price: float, as_of: int | None, sold_at: int
    ) -> TaxStrategy:
        res = self.ledger.consume(asset, qty, as_of=as_of, method=method)
        proceeds = qty * price
        st, lt = split_by_term(
            res.consumed, proceeds=proceeds, sold_at=sold_at, long_term_days=self.assumptions.long_term_days
        )
        return TaxStrategy(
            method=method,
            cost_basis=res.cost_basis_consumed,
            proceeds=proceeds,
            tax_impact=proceeds - res.cost_basis_consumed,
            short_term_gain=st,
            long_term_gain=lt,
            estimated_tax=estimate_tax(st, lt, self.assumptions).total,
            lots=res.consumed,
        )

    def optimize(
        self,
        asset: str,
        sell_quantity: float,
        current_price: float,
        as_of: int | None = None,
        *,
        sale_time: int | None = None,
    ) -> TaxOptimizationResult:
        """
        Recommend the lot-selection method with the lowest taxable gain (a loss beats any gain).

        `as_of` limits eligible lots by acquisition time; `sale_time` (defaults to `as_of`, then
        to now) decides short- vs long-term treatment.
        """
        asset = asset.strip().upper()
        qty = float(sell_quantity)
        price = float(current_price)
        sold_at = sale_time if sale_time is not None else as_of
        if sold_at is None:
            sold_at = int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)

        strategies = [self._strategy(m, asset, qty, price, as_of, sold_at) for m in OPTIMIZER_METHODS]
        best = strategies[0]
        for s in strategies[1:]:
            if s.tax_impact < best.tax_impact:
                best = s
        logger.debug(
            "Tax optimization for %s x%s @ %s: %s",
            asset,
            qty,
            price,
            ", ".join(f"{s.method.value}={s.tax_impact:.2f}" for s in strategies),
        )
        return TaxOptimizationResult(
            asset=asset,
            sell_quantity=qty,
            current_price=price,
            recommended_method=best.method,
            tax_impact=best.tax_impact,
            recommended=best,
            alternatives=tuple(s for s in strategies if s is not best),
        )


class TaxableEvent(BaseModel):
    date: dt.date
    asset: str
    transaction_id: str
    term: Term
    quantity: float
    proceeds: float
    cost_basis: float
    gain: float
    holding_period_days: int


class TaxReport(BaseModel):
    tax_year: int
    short_term_gains: float
    long_term_gains: float
    total_gains: float
    federal_tax: float
    state_tax: float
    total_tax: float
    taxable_events: list[TaxableEvent] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    assumptions: dict[str, Any] = Field(default_factory=dict)


def tax_suggestions(short_term: float, long_term: float) -> list[str]:
    out: list[str] = []
    if short_term > long_term * 2:
        out.append("Consider holding assets longer to qualify for long-term capital gains treatment.")
    if short_term > 0:
        out.append("Consider tax-loss harvesting to offset short-term gains.")
    out.append("Consult a tax professional for personalized advice.")
    return out


def build_tax_report(
    trades: Iterable["TradeAnalysis"],
    year: int,
    assumptions: TaxAssumptions | None = None,
) -> TaxReport:
    """
    Estimated tax report for sales dated in `year` (UTC).

    Each consumed lot becomes one taxable event; the sale fee is allocated by quantity.
    """
    assumptions = assumptions or TaxAssumptions()
    events: list[TaxableEvent] = []
    st = lt = 0.0
    for t in trades:
        sold = from_millis(t.sold_at)
        if sold.year != int(year):
            continue
        qty_total = sum(c.quantity for c in t.lots)
        if qty_total <= 0:
            continue
        net_proceeds = t.sale_proceeds - t.fee
        for c in t.lots:
            share = c.quantity / qty_total
            proceeds = net_proceeds * share
            gain = proceeds - c.cost
            term = holding_term(c.acquired_at, t.sold_at, assumptions.long_term_days)
            if term == "LT":
                lt += gain
            else:
                st += gain
            events.append(
                TaxableEvent(
                    date=sold.date(),
                    asset=t.asset,
                    transaction_id=t.transaction_id,
                    term=term,
                    quantity=c.quantity,
                    proceeds=proceeds,
                    cost_basis=c.cost,
                    gain=gain,
                    holding_period_days=(t.sold_at - c.acquired_at) // MILLIS_PER_DAY,
                )
            )
    est = estimate_tax(st, lt, assumptions)
    return TaxReport(
        tax_year=int(year),
        short_term_gains=st,
        long_term_gains=lt,
        total_gains=st + lt,
        federal_tax=est.federal,
        state_tax=est.state,
        total_tax=est.total,
        taxable_events=events,
        suggestions=tax_suggestions(st, lt),
        assumptions=assumptions.as_json(),
    )
