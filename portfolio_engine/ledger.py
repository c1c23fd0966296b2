from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Mapping

from portfolio_engine.exceptions import InsufficientCostBasisError, InvalidCostBasisMethodError
from portfolio_engine.transactions import Transaction, TxType, sorted_by_time

logger = logging.getLogger(__name__)

QTY_EPSILON = 1e-9


class CostBasisMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    HIFO = "HIFO"
    WAC = "WAC"


def parse_cost_basis_method(value: CostBasisMethod | str | None) -> CostBasisMethod:
    if isinstance(value, CostBasisMethod):
        return value
    if isinstance(value, str):
        try:
            return CostBasisMethod(value.strip().upper())
        except ValueError:
            pass
    raise InvalidCostBasisMethodError(value)


class LotStatus(str, Enum):
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class CostBasisLot:
    id: str
    transaction_id: str
    asset: str
    quantity_original: float
    unit_cost: float
    total_cost: float  # quantity_original * unit_cost + allocated fee
    acquired_at: int
    quantity_remaining: float

    @property
    def status(self) -> LotStatus:
        if self.quantity_remaining <= QTY_EPSILON:
            return LotStatus.CLOSED
        if self.quantity_remaining >= self.quantity_original - QTY_EPSILON:
            return LotStatus.OPEN
        return LotStatus.PARTIAL

    @property
    def cost_per_unit(self) -> float:
        """Fee-inclusive cost of one unit of this lot."""
        if self.quantity_original <= 0:
            return 0.0
        return self.total_cost / self.quantity_original

    @property
    def remaining_cost(self) -> float:
        return self.quantity_remaining * self.cost_per_unit


@dataclass(frozen=True)
class LotConsumption:
    lot_id: str
    asset: str
    quantity: float
    cost: float
    acquired_at: int
    unit_cost: float


@dataclass(frozen=True)
class ConsumeResult:
    asset: str
    method: CostBasisMethod
    quantity: float
    cost_basis_consumed: float
    updated_lots: tuple[CostBasisLot, ...]
    consumed: tuple[LotConsumption, ...]


def lot_from_transaction(tx: Transaction) -> CostBasisLot:
    return CostBasisLot(
        id=f"{tx.id}-lot",
        transaction_id=tx.id,
        asset=tx.asset,
        quantity_original=tx.amount,
        unit_cost=tx.price,
        total_cost=tx.total_value + tx.fee_base,
        acquired_at=tx.timestamp_millis,
        quantity_remaining=tx.amount,
    )


def _ordered_for_method(
    lots: list[tuple[int, CostBasisLot]], method: CostBasisMethod
) -> list[tuple[int, CostBasisLot]]:
    if method == CostBasisMethod.FIFO:
        return sorted(lots, key=lambda x: x[1].acquired_at)
    if method == CostBasisMethod.LIFO:
        return sorted(lots, key=lambda x: -x[1].acquired_at)
    if method == CostBasisMethod.HIFO:
        return sorted(lots, key=lambda x: (-x[1].unit_cost, x[1].acquired_at))
    return list(lots)


class CostBasisLedger:
    """
    Per-asset lot queues for one analysis call.

    `consume` is speculative and side-effect free; only `commit` changes the ledger.
    Closed lots stay in the ledger for audit.
    """

    def __init__(self, lots_by_asset: Mapping[str, Iterable[CostBasisLot]] | None = None):
        self._lots: dict[str, tuple[CostBasisLot, ...]] = {
            asset: tuple(lots) for asset, lots in (lots_by_asset or {}).items()
        }

    @classmethod
    def build_lots(
        cls,
        transactions: Iterable[Transaction],
        method: CostBasisMethod | str = CostBasisMethod.FIFO,
    ) -> "CostBasisLedger":
        # Validate before touching any transaction.
        parse_cost_basis_method(method)
        lots: dict[str, list[CostBasisLot]] = {}
        for tx in sorted_by_time(t for t in transactions if t.type == TxType.BUY):
            if tx.amount <= QTY_EPSILON:
                logger.debug("Skipping zero-quantity buy %s for %s", tx.id, tx.asset)
                continue
            lots.setdefault(tx.asset, []).append(lot_from_transaction(tx))
        return cls(lots)

    def assets(self) -> list[str]:
        return sorted(self._lots)

    def lots(self, asset: str) -> tuple[CostBasisLot, ...]:
        return self._lots.get(asset, ())

    def remaining_quantity(self, asset: str) -> float:
        return sum(lot.quantity_remaining for lot in self.lots(asset))

    def remaining_cost(self, asset: str) -> float:
        return sum(lot.remaining_cost for lot in self.lots(asset))

    def consume(
        self,
        asset: str,
        quantity_to_sell: float,
        as_of: int | None = None,
        method: CostBasisMethod | str = CostBasisMethod.FIFO,
    ) -> ConsumeResult:
        """
        Select lots for a sale of `quantity_to_sell` units and price the consumed cost basis.

        Only lots with units remaining and `acquired_at <= as_of` are eligible (all lots when
        `as_of` is None). Returns the new lot tuple for `asset` without modifying this ledger.
        Raises `InsufficientCostBasisError` when eligible lots cannot cover the sale.
        """
        m = parse_cost_basis_method(method)
        qty = float(quantity_to_sell)
        if qty < 0:
            raise ValueError(f"quantity_to_sell must be non-negative, got {qty}")
        current = self.lots(asset)
        eligible = [
            (i, lot)
            for i, lot in enumerate(current)
            if lot.quantity_remaining > QTY_EPSILON and (as_of is None or lot.acquired_at <= as_of)
        ]
        available = sum(lot.quantity_remaining for _i, lot in eligible)
        if qty - available > QTY_EPSILON:
            raise InsufficientCostBasisError(asset, qty, available)

        if m == CostBasisMethod.WAC:
            taken = self._take_weighted_average(eligible, qty, available)
        else:
            taken = self._take_in_order(_ordered_for_method(eligible, m), qty)

        # Positions, not lot ids, identify lots here: ids come from upstream data.
        taken_by_pos = {i: q for i, q in taken}
        updated = tuple(
            replace(lot, quantity_remaining=max(0.0, lot.quantity_remaining - taken_by_pos[i]))
            if i in taken_by_pos
            else lot
            for i, lot in enumerate(current)
        )
        consumed = tuple(
            LotConsumption(
                lot_id=current[i].id,
                asset=asset,
                quantity=q,
                cost=q * current[i].cost_per_unit,
                acquired_at=current[i].acquired_at,
                unit_cost=current[i].unit_cost,
            )
            for i, q in taken
        )
        return ConsumeResult(
            asset=asset,
            method=m,
            quantity=qty,
            cost_basis_consumed=sum(c.cost for c in consumed),
            updated_lots=updated,
            consumed=consumed,
        )

    @staticmethod
    def _take_in_order(ordered: list[tuple[int, CostBasisLot]], qty: float) -> list[tuple[int, float]]:
        remaining = qty
        out: list[tuple[int, float]] = []
        for i, lot in ordered:
            if remaining <= QTY_EPSILON:
                break
            take = min(remaining, lot.quantity_remaining)
            out.append((i, take))
            remaining -= take
        return out

    @staticmethod
    def _take_weighted_average(
        eligible: list[tuple[int, CostBasisLot]], qty: float, available: float
    ) -> list[tuple[int, float]]:
        # One pool at the weighted average cost; every lot shrinks by the same fraction.
        if qty <= QTY_EPSILON or available <= 0:
            return []
        if qty >= available - QTY_EPSILON:
            return [(i, lot.quantity_remaining) for i, lot in eligible]
        fraction = qty / available
        return [(i, lot.quantity_remaining * fraction) for i, lot in eligible]

    def weighted_average_cost(self, asset: str, as_of: int | None = None) -> float:
        eligible = [
            lot
            for lot in self.lots(asset)
            if lot.quantity_remaining > QTY_EPSILON and (as_of is None or lot.acquired_at <= as_of)
        ]
        qty = sum(lot.quantity_remaining for lot in eligible)
        if qty <= 0:
            return 0.0
        return sum(lot.remaining_cost for lot in eligible) / qty

    def commit(self, asset: str, updated_lots: Iterable[CostBasisLot]) -> None:
        """Replace the lots for `asset` with the result of a consume (the canonical sell path)."""
        new_lots = tuple(updated_lots)
        old = self.lots(asset)
        if len(new_lots) != len(old):
            raise ValueError(f"{asset}: lots cannot be added or removed by a commit.")
        for prev, lot in zip(old, new_lots):
            if lot.id != prev.id:
                raise ValueError(f"{asset}: lot order changed ({prev.id} -> {lot.id}).")
            if lot.quantity_remaining > prev.quantity_remaining + QTY_EPSILON:
                raise ValueError(f"Lot {lot.id} remaining quantity cannot increase.")
            if lot.quantity_remaining < -QTY_EPSILON:
                raise ValueError(f"Lot {lot.id} remaining quantity out of range.")
        self._lots[asset] = new_lots

    def check_conservation(self, holdings: Mapping[str, float]) -> list[str]:
        """
        Compare holding amounts (asset -> total amount) against open lot quantities.

        Returns human-readable mismatch descriptions; empty when the books agree.
        """
        problems: list[str] = []
        for asset in sorted(set(holdings) | set(self._lots)):
            expected = self.remaining_quantity(asset)
            actual = float(holdings.get(asset, 0.0))
            tol = QTY_EPSILON * max(1.0, abs(expected), abs(actual))
            if abs(expected - actual) > tol:
                problems.append(
                    f"{asset}: holding amount {actual:.10g} differs from open lot quantity {expected:.10g}."
                )
        return problems
