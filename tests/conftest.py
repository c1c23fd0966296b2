from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_engine.transactions import Transaction
from portfolio_engine.util import to_millis


def ms(y: int, m: int, d: int) -> int:
    return to_millis(dt.date(y, m, d))


def tx(id: str, type: str, asset: str, amount: float, price: float, when: int, fee: float = 0.0) -> Transaction:
    return Transaction.create(
        id=id, type=type, asset=asset, amount=amount, price=price, timestamp_millis=when, fee_base=fee
    )


@pytest.fixture()
def two_buys() -> list[Transaction]:
    return [
        tx("b1", "buy", "BTC", 1.0, 10000.0, ms(2024, 1, 1)),
        tx("b2", "buy", "BTC", 1.0, 12000.0, ms(2024, 2, 1)),
    ]


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    # Keep a developer's local config files out of the tests.
    monkeypatch.delenv("PORTFOLIO_ENGINE_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
