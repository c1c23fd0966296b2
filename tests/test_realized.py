from __future__ import annotations

from conftest import ms, tx
from portfolio_engine.ledger import CostBasisLedger
from portfolio_engine.performance import PerformanceMetricsEngine
from portfolio_engine.realized import RealizedPnLCalculator


def _run(txs, method="FIFO"):
    ledger = CostBasisLedger.build_lots(txs, method)
    return ledger, RealizedPnLCalculator(method).calculate(txs, ledger)


def test_round_trip_includes_both_fees():
    txs = [
        tx("b", "buy", "BTC", 1.0, 20000.0, ms(2024, 1, 1), fee=10.0),
        tx("s", "sell", "BTC", 1.0, 25000.0, ms(2024, 3, 1), fee=12.0),
    ]
    ledger, res = _run(txs)
    assert abs(res.total - 4978.0) < 1e-9
    (trade,) = res.trades
    assert trade.is_win
    assert abs(trade.cost_basis_consumed - 20010.0) < 1e-9
    assert abs(trade.holding_period_days - 60.0) < 1e-9
    assert abs(trade.short_term_gain - 4978.0) < 1e-9
    assert trade.long_term_gain == 0.0
    assert ledger.remaining_quantity("BTC") == 0.0
    assert abs(res.percentage - 4978.0 / 20010.0 * 100.0) < 1e-9


def test_long_term_requires_more_than_a_year():
    txs = [
        tx("b1", "buy", "ETH", 1.0, 1000.0, ms(2022, 1, 1)),
        tx("b2", "buy", "ETH", 1.0, 1000.0, ms(2023, 1, 1)),
        tx("s", "sell", "ETH", 2.0, 1500.0, ms(2024, 1, 1)),
    ]
    _ledger, res = _run(txs)
    (trade,) = res.trades
    # 2023-01-01 -> 2024-01-01 is exactly 365 days: still short-term.
    assert abs(trade.long_term_gain - 500.0) < 1e-9
    assert abs(trade.short_term_gain - 500.0) < 1e-9


def test_oversell_is_reported_and_processing_continues():
    txs = [
        tx("b", "buy", "BTC", 1.0, 100.0, ms(2024, 1, 1)),
        tx("s1", "sell", "BTC", 2.0, 150.0, ms(2024, 1, 2)),
        tx("s2", "sell", "BTC", 0.5, 200.0, ms(2024, 1, 3)),
    ]
    ledger, res = _run(txs)
    assert [f.transaction_id for f in res.failures] == ["s1"]
    assert abs(res.failures[0].available - 1.0) < 1e-9
    assert [t.transaction_id for t in res.trades] == ["s2"]
    assert abs(res.total - (100.0 - 50.0)) < 1e-9
    assert abs(ledger.remaining_quantity("BTC") - 0.5) < 1e-9


def test_sell_before_buy_is_a_failure():
    txs = [
        tx("s", "sell", "SOL", 1.0, 10.0, ms(2024, 1, 1)),
        tx("b", "buy", "SOL", 1.0, 5.0, ms(2024, 1, 2)),
    ]
    ledger, res = _run(txs)
    assert len(res.failures) == 1
    assert res.trades == []
    assert abs(ledger.remaining_quantity("SOL") - 1.0) < 1e-9


def test_performance_streaks_and_profit_factor():
    txs = [tx("b", "buy", "BTC", 10.0, 100.0, ms(2024, 1, 1))]
    for i, px in enumerate([120.0, 130.0, 90.0, 80.0, 70.0, 110.0], start=1):
        txs.append(tx(f"s{i}", "sell", "BTC", 1.0, px, ms(2024, 2, i)))
    _ledger, res = _run(txs)
    perf = PerformanceMetricsEngine().compute(res.trades)
    assert perf.total_trades == 6
    assert perf.wins == 3
    assert abs(perf.win_rate - 0.5) < 1e-9
    assert abs(perf.profit_factor - 60.0 / 60.0) < 1e-9
    assert perf.longest_win_streak == 2
    assert perf.longest_loss_streak == 3
    assert perf.current_streak == 1
    assert perf.current_streak_type == "win"
    assert abs(perf.largest_win - 30.0) < 1e-9
    assert abs(perf.largest_loss - (-30.0)) < 1e-9
    assert perf.best_trade == "s2"
    assert perf.worst_trade == "s5"


def test_performance_without_losses_has_infinite_profit_factor():
    txs = [
        tx("b", "buy", "BTC", 1.0, 100.0, ms(2024, 1, 1)),
        tx("s", "sell", "BTC", 1.0, 150.0, ms(2024, 1, 2)),
    ]
    _ledger, res = _run(txs)
    perf = PerformanceMetricsEngine().compute(res.trades)
    assert perf.profit_factor == float("inf")


def test_performance_with_no_trades_is_all_zero():
    perf = PerformanceMetricsEngine().compute([])
    assert perf.total_trades == 0
    assert perf.win_rate == 0.0
    assert perf.profit_factor == 0.0
    assert perf.current_streak_type == "none"
    assert perf.avg_holding_period_days == 0.0
