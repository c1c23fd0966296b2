from __future__ import annotations

import json

from typer.testing import CliRunner

from portfolio_engine.cli import app

runner = CliRunner()


def _write_inputs(tmp_path):
    txs = tmp_path / "tx.csv"
    txs.write_text(
        "id,type,asset,amount,price,fee,timestamp\n"
        "b1,buy,BTC,1,10000,0,2024-01-01\n"
        "b2,buy,BTC,1,12000,0,2024-02-01\n"
        "s1,sell,BTC,0.5,15000,0,2024-03-01\n"
    )
    prices = tmp_path / "prices.json"
    prices.write_text('{"BTC": 14000}')
    return txs, prices


def _json(output: str):
    return json.loads(output[output.index("{"):])


def test_analyze_json(tmp_path):
    txs, prices = _write_inputs(tmp_path)
    res = runner.invoke(
        app, ["analyze", "--transactions", str(txs), "--prices", str(prices), "--as-of", "2024-03-02"]
    )
    assert res.exit_code == 0, res.output
    data = _json(res.stdout)
    assert data["method"] == "FIFO"
    assert abs(data["metrics"]["realized_pnl"] - 2500.0) < 1e-9
    # One winning trade and no losses.
    assert data["metrics"]["performance"]["profit_factor"] == "Infinity"


def test_analyze_text_with_method(tmp_path):
    txs, prices = _write_inputs(tmp_path)
    res = runner.invoke(
        app,
        ["analyze", "--transactions", str(txs), "--prices", str(prices), "--method", "lifo", "--format", "text"],
    )
    assert res.exit_code == 0, res.output
    assert "cost basis: LIFO" in res.stdout


def test_bad_method_exits_with_code_2(tmp_path):
    txs, prices = _write_inputs(tmp_path)
    res = runner.invoke(app, ["analyze", "--transactions", str(txs), "--method", "oldest"])
    assert res.exit_code == 2


def test_missing_file_is_bad_parameter(tmp_path):
    res = runner.invoke(app, ["analyze", "--transactions", str(tmp_path / "nope.csv")])
    assert res.exit_code != 0


def test_optimize_tax_and_tax_report(tmp_path):
    txs, _prices = _write_inputs(tmp_path)
    res = runner.invoke(
        app, ["optimize-tax", "--transactions", str(txs), "--asset", "BTC", "--quantity", "1", "--price", "11000"]
    )
    assert res.exit_code == 0, res.output
    data = _json(res.stdout)
    assert data["recommended_method"] == "LIFO"
    assert abs(data["tax_impact"] - (11000.0 - 12000.0)) < 1e-9

    res = runner.invoke(app, ["tax-report", "--transactions", str(txs), "--year", "2024"])
    assert res.exit_code == 0, res.output
    data = _json(res.stdout)
    assert abs(data["short_term_gains"] - 2500.0) < 1e-9
