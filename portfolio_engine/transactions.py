from __future__ import annotations

import csv
import datetime as dt
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from portfolio_engine.util import (
    from_millis,
    parse_number,
    parse_timestamp_millis,
    pick,
    sniff_delimiter,
)


class TxType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    MINT = "mint"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    FEE = "fee"


@dataclass(frozen=True)
class Transaction:
    id: str
    type: TxType
    asset: str
    amount: float
    price: float
    total_value: float
    fee_base: float
    timestamp_millis: int

    @classmethod
    def create(
        cls,
        *,
        id: str,
        type: TxType | str,
        asset: str,
        amount: float,
        price: float,
        timestamp_millis: int,
        fee_base: float = 0.0,
        total_value: float | None = None,
    ) -> "Transaction":
        """Build a transaction, deriving `total_value` from price × amount when not given."""
        tx_type = type if isinstance(type, TxType) else classify_type(type)
        if tx_type is None:
            raise ValueError(f"Unknown transaction type: {type!r}")
        qty = abs(float(amount))
        px = float(price)
        tv = float(total_value) if total_value is not None else px * qty
        return cls(
            id=str(id),
            type=tx_type,
            asset=str(asset).strip().upper(),
            amount=qty,
            price=px,
            total_value=abs(tv),
            fee_base=abs(float(fee_base or 0.0)),
            timestamp_millis=int(timestamp_millis),
        )

    @property
    def timestamp(self) -> dt.datetime:
        return from_millis(self.timestamp_millis)


_TYPE_SYNONYMS: dict[str, TxType] = {
    "BUY": TxType.BUY,
    "B": TxType.BUY,
    "PURCHASE": TxType.BUY,
    "SELL": TxType.SELL,
    "S": TxType.SELL,
    "SALE": TxType.SELL,
    "MINT": TxType.MINT,
    "INSCRIBE": TxType.MINT,
    "INSCRIPTION": TxType.MINT,
    "TRANSFER_IN": TxType.TRANSFER_IN,
    "RECEIVE": TxType.TRANSFER_IN,
    "DEPOSIT": TxType.TRANSFER_IN,
    "TRANSFER_OUT": TxType.TRANSFER_OUT,
    "SEND": TxType.TRANSFER_OUT,
    "WITHDRAWAL": TxType.TRANSFER_OUT,
    "FEE": TxType.FEE,
    "COMMISSION": TxType.FEE,
}


def classify_type(raw: str | None) -> TxType | None:
    t = (raw or "").strip().upper().replace(" ", "_").replace("-", "_")
    return _TYPE_SYNONYMS.get(t)


def _row_to_transaction(row: dict[str, Any], index: int) -> tuple[Transaction | None, str | None]:
    raw_type = pick(row, ["type", "tx_type", "action", "transaction_type", "side"])
    tx_type = classify_type(str(raw_type) if raw_type is not None else None)
    if tx_type is None:
        return None, f"Row {index}: unknown transaction type {raw_type!r}; skipped."
    asset_raw = pick(row, ["asset", "symbol", "ticker", "token"])
    if asset_raw is None or not str(asset_raw).strip():
        return None, f"Row {index}: missing asset; skipped."
    ts = parse_timestamp_millis(pick(row, ["timestamp_millis", "timestampmillis", "timestamp", "time", "date"]))
    if ts is None:
        return None, f"Row {index}: missing or unparseable timestamp; skipped."
    amount = parse_number(pick(row, ["amount", "quantity", "qty"]))
    price = parse_number(pick(row, ["price", "unit_price"]))
    total_value = parse_number(pick(row, ["total_value", "totalvalue", "value"]))
    fee = parse_number(pick(row, ["fee_base", "feebase", "fee_usd", "feeusd", "fee", "fees"]))
    if amount is None:
        amount = 0.0
    if price is None:
        # Infer unit price from the gross value when only that is present.
        price = abs(total_value) / abs(amount) if total_value is not None and amount else 0.0
    tx_id = pick(row, ["id", "transaction_id", "txid", "tx_hash", "txhash"])
    return (
        Transaction.create(
            id=str(tx_id) if tx_id is not None and str(tx_id).strip() else f"row-{index}",
            type=tx_type,
            asset=str(asset_raw),
            amount=amount,
            price=price,
            total_value=total_value,
            fee_base=fee or 0.0,
            timestamp_millis=ts,
        ),
        None,
    )


def parse_transactions(rows: Iterable[dict[str, Any]]) -> tuple[list[Transaction], list[str]]:
    warnings: list[str] = []
    out: list[Transaction] = []
    for i, row in enumerate(rows, start=1):
        if not row:
            continue
        tx, warn = _row_to_transaction(row, i)
        if warn:
            warnings.append(warn)
        if tx is not None:
            out.append(tx)
    out.sort(key=lambda t: t.timestamp_millis)
    return out, warnings


def load_transactions(path: Path) -> tuple[list[Transaction], list[str]]:
    """
    Load a transaction export (CSV or JSON list of objects) into `Transaction` records.

    Header/key aliases are matched case-insensitively (`timestampMillis`, `feeUSD`, `symbol`, ...).
    Rows that cannot be interpreted are skipped and reported in the returned warnings.
    """
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    if path.suffix.lower() == ".json" or text.lstrip().startswith(("[", "{")):
        data = json.loads(text or "[]")
        if isinstance(data, dict):
            data = data.get("transactions") or []
        rows = [r for r in data if isinstance(r, dict)]
    else:
        delim = sniff_delimiter(text)
        rows = list(csv.DictReader(text.splitlines(), delimiter=delim))
    txs, warnings = parse_transactions(rows)
    if not txs:
        warnings.append("No transactions parsed (check delimiter/headers).")
    return txs, warnings


def transactions_by_asset(txs: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    out: dict[str, list[Transaction]] = {}
    for t in txs:
        out.setdefault(t.asset, []).append(t)
    for asset in out:
        out[asset].sort(key=lambda t: t.timestamp_millis)
    return out


def sorted_by_time(txs: Iterable[Transaction]) -> list[Transaction]:
    # sorted() is stable, so same-millisecond events keep their input order.
    return sorted(txs, key=lambda t: t.timestamp_millis)
