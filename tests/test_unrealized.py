from __future__ import annotations

import logging

from conftest import ms, tx
from portfolio_engine.ledger import CostBasisLedger
from portfolio_engine.unrealized import (
    AssetHolding,
    UnrealizedPnLCalculator,
    holdings_from_ledger,
    load_holdings,
    load_prices,
)


def test_marks_positions_to_current_prices():
    holdings = [AssetHolding("BTC", 2.0, 20000.0, 9000.0, 18000.0)]
    res = UnrealizedPnLCalculator().calculate(holdings, {"BTC": 12000.0})
    assert abs(res.total - 4000.0) < 1e-9
    assert abs(res.percentage - 20.0) < 1e-9
    assert res.missing_prices == []
    assert res.positions[0].price_stale is False


def test_missing_price_falls_back_and_warns(caplog):
    holdings = [
        AssetHolding("BTC", 1.0, 100.0, 150.0, 150.0),
        AssetHolding("ORDI", 10.0, 50.0, 4.0, 40.0),
    ]
    with caplog.at_level(logging.WARNING):
        res = UnrealizedPnLCalculator().calculate(holdings, {"BTC": 120.0, "ORDI": float("nan")})
    assert res.missing_prices == ["ORDI"]
    ordi = [p for p in res.positions if p.asset == "ORDI"][0]
    assert ordi.price_stale
    assert abs(ordi.pnl - (-10.0)) < 1e-9
    assert abs(res.total - 10.0) < 1e-9
    assert "ORDI" in caplog.text


def test_ledger_holdings_match_open_lots(two_buys):
    ledger = CostBasisLedger.build_lots(two_buys)
    ledger.commit("BTC", ledger.consume("BTC", 0.5).updated_lots)
    (h,) = holdings_from_ledger(ledger, {}, {"BTC": 11000.0})
    assert abs(h.total_amount - ledger.remaining_quantity("BTC")) < 1e-9
    assert abs(h.total_cost - 17000.0) < 1e-9
    assert h.current_price == 11000.0


def test_load_holdings_and_prices(tmp_path):
    h = tmp_path / "holdings.csv"
    h.write_text("Symbol,Quantity,Cost Basis,Price\nbtc,1.5,30000,21000\n,1,1,1\n")
    holdings, warnings = load_holdings(h)
    assert warnings == []
    assert holdings == [AssetHolding("BTC", 1.5, 30000.0, 21000.0, 31500.0)]

    p = tmp_path / "prices.json"
    p.write_text('{"btc": 25000, "eth": "1,800.50"}')
    assert load_prices(p) == {"BTC": 25000.0, "ETH": 1800.5}


def test_lowercase_holding_matches_uppercase_price():
    holdings = [AssetHolding("btc ", 1.0, 100.0, 90.0, 90.0)]
    res = UnrealizedPnLCalculator().calculate(holdings, {"btc": 200.0})
    assert res.missing_prices == []
    (p,) = res.positions
    assert p.asset == "BTC"
    assert p.price == 200.0
    assert not p.price_stale
    assert abs(res.total - 100.0) < 1e-9
