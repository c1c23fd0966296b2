from __future__ import annotations

import csv
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from portfolio_engine.exceptions import MissingPriceDataError
from portfolio_engine.ledger import CostBasisLedger
from portfolio_engine.util import parse_number, pct, pick, sniff_delimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetHolding:
    asset: str
    total_amount: float
    total_cost: float
    current_price: float
    current_value: float


@dataclass(frozen=True)
class PositionPnL:
    asset: str
    amount: float
    cost: float
    price: float
    value: float
    pnl: float
    pnl_percent: float
    price_stale: bool = False


@dataclass
class UnrealizedPnLResult:
    total: float = 0.0
    percentage: float = 0.0
    market_value: float = 0.0
    cost_total: float = 0.0
    positions: list[PositionPnL] = field(default_factory=list)
    missing_prices: list[str] = field(default_factory=list)


def _usable_price(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


class UnrealizedPnLCalculator:
    def calculate(
        self, holdings: Iterable[AssetHolding], current_prices: Mapping[str, float] | None = None
    ) -> UnrealizedPnLResult:
        """
        Mark every holding to the given prices.

        An asset without a usable price is valued at the holding's last known `current_price`
        and reported in `missing_prices`; this never raises.
        """
        prices = {str(k).strip().upper(): v for k, v in (current_prices or {}).items()}
        result = UnrealizedPnLResult()
        for asset, h in sorted(((str(h.asset).strip().upper(), h) for h in holdings), key=lambda x: x[0]):
            price = _usable_price(prices.get(asset))
            stale = price is None
            if stale:
                logger.warning("%s; using last known price %s", MissingPriceDataError(asset), h.current_price)
                result.missing_prices.append(asset)
                price = _usable_price(h.current_price) or 0.0
            value = h.total_amount * price
            pnl = value - h.total_cost
            result.positions.append(
                PositionPnL(
                    asset=asset,
                    amount=h.total_amount,
                    cost=h.total_cost,
                    price=price,
                    value=value,
                    pnl=pnl,
                    pnl_percent=pct(pnl, h.total_cost),
                    price_stale=stale,
                )
            )
            result.total += pnl
            result.market_value += value
            result.cost_total += h.total_cost
        result.percentage = pct(result.total, result.cost_total)
        return result


def holdings_from_ledger(
    ledger: CostBasisLedger,
    prices: Mapping[str, float] | None = None,
    last_prices: Mapping[str, float] | None = None,
) -> list[AssetHolding]:
    """
    Derive holdings from open lot quantities, so `total_amount` equals the remaining lot quantity.

    `last_prices` (e.g. the last traded price per asset) seeds `current_price` when `prices`
    has no entry.
    """
    prices = prices or {}
    last_prices = last_prices or {}
    out: list[AssetHolding] = []
    for asset in ledger.assets():
        qty = ledger.remaining_quantity(asset)
        if qty <= 0:
            continue
        px = _usable_price(prices.get(asset))
        if px is None:
            px = _usable_price(last_prices.get(asset)) or 0.0
        out.append(
            AssetHolding(
                asset=asset,
                total_amount=qty,
                total_cost=ledger.remaining_cost(asset),
                current_price=px,
                current_value=qty * px,
            )
        )
    return out


def load_holdings(path: Path) -> tuple[list[AssetHolding], list[str]]:
    """Read a holdings snapshot (CSV with asset/amount/cost/price columns, or a JSON list)."""
    warnings: list[str] = []
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    if path.suffix.lower() == ".json" or text.lstrip().startswith("["):
        rows = [r for r in json.loads(text or "[]") if isinstance(r, dict)]
    else:
        rows = list(csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text)))
    out: list[AssetHolding] = []
    for row in rows:
        if not row:
            continue
        sym = pick(row, ["asset", "symbol", "ticker", "token"])
        if sym is None or not str(sym).strip():
            continue
        amount = parse_number(pick(row, ["total_amount", "totalamount", "amount", "quantity", "qty"]))
        if amount is None:
            warnings.append(f"Holding {sym}: missing amount; skipped.")
            continue
        cost = parse_number(pick(row, ["total_cost", "totalcost", "cost_basis", "cost"])) or 0.0
        price = parse_number(pick(row, ["current_price", "currentprice", "price"])) or 0.0
        value = parse_number(pick(row, ["current_value", "currentvalue", "market_value", "value"]))
        out.append(
            AssetHolding(
                asset=str(sym).strip().upper(),
                total_amount=float(amount),
                total_cost=float(cost),
                current_price=float(price),
                current_value=float(value) if value is not None else float(amount) * float(price),
            )
        )
    out.sort(key=lambda h: h.asset)
    if not out:
        warnings.append("No holdings parsed (check headers).")
    if len({h.asset for h in out}) != len(out):
        warnings.append("Duplicate assets in holdings; amounts may be aggregated incorrectly.")
    return out, warnings


def load_prices(path: Path) -> dict[str, float]:
    """Price map from a JSON object `{asset: price}` or a CSV with asset/price columns."""
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    out: dict[str, float] = {}
    if path.suffix.lower() == ".json" or text.lstrip().startswith("{"):
        data = json.loads(text or "{}")
        for k, v in (data or {}).items():
            px = parse_number(v)
            if px is not None:
                out[str(k).strip().upper()] = px
        return out
    for row in csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text)):
        sym = pick(row, ["asset", "symbol", "ticker", "token"])
        px = parse_number(pick(row, ["price", "current_price", "close"]))
        if sym is None or px is None:
            continue
        out[str(sym).strip().upper()] = px
    return out
