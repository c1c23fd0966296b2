from __future__ import annotations

from conftest import ms
from portfolio_engine.transactions import TxType, load_transactions, transactions_by_asset


def test_csv_aliases_and_skips(tmp_path):
    p = tmp_path / "tx.csv"
    p.write_text(
        "TxHash;Action;Symbol;Quantity;Price;Fee USD;Date\n"
        "h1;Buy;btc;-0.5;20000;5;2024-01-02\n"
        "h2;Airdrop;btc;1;0;0;2024-01-03\n"
        "h3;Sell;btc;0.25;25000;2;2024-01-01\n"
        "h4;Buy;;1;1;0;2024-01-01\n"
    )
    txs, warnings = load_transactions(p)
    assert [t.id for t in txs] == ["h3", "h1"]
    buy = txs[1]
    assert buy.type == TxType.BUY
    assert buy.asset == "BTC"
    assert buy.amount == 0.5
    assert abs(buy.total_value - 10000.0) < 1e-9
    assert buy.fee_base == 5.0
    assert buy.timestamp_millis == ms(2024, 1, 2)
    assert len(warnings) == 2


def test_json_camel_case(tmp_path):
    p = tmp_path / "tx.json"
    p.write_text(
        '[{"id": "a", "type": "mint", "asset": "ORDI", "amount": 3, "price": 2,'
        ' "totalValue": 7, "feeUSD": 1, "timestampMillis": 1704067200000},'
        ' {"id": "b", "type": "transfer_out", "asset": "ORDI", "amount": 1, "price": 0,'
        ' "timestampMillis": 1704153600}]'
    )
    txs, warnings = load_transactions(p)
    assert warnings == []
    assert txs[0].type == TxType.MINT and txs[0].total_value == 7.0 and txs[0].fee_base == 1.0
    assert txs[1].timestamp_millis == 1704153600000
    assert list(transactions_by_asset(txs)) == ["ORDI"]
