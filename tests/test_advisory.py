from __future__ import annotations

import threading

from portfolio_engine.advisory import (
    AdvisoryInsight,
    AdvisoryKind,
    AdvisoryRequest,
    run_advisors,
)
from portfolio_engine.exceptions import ExternalAdvisoryError


class StaticAnalyzer:
    def __init__(self, kind: AdvisoryKind, trend: str = "neutral", confidence: float = 0.5):
        self.kind = kind
        self.trend = trend
        self.confidence = confidence

    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight:
        return AdvisoryInsight(
            kind=self.kind, trend=self.trend, confidence=self.confidence, insights=[f"{len(request.assets)} assets"]
        )


class FailingAnalyzer:
    kind = AdvisoryKind.ON_CHAIN

    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight:
        raise ExternalAdvisoryError("on_chain", "indexer unavailable")


class BlockingAnalyzer:
    kind = AdvisoryKind.WHALE_TRACKING

    def __init__(self):
        self.release = threading.Event()

    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight:
        self.release.wait(5.0)
        return AdvisoryInsight(kind=self.kind)


def _request() -> AdvisoryRequest:
    return AdvisoryRequest(assets=("BTC", "ETH"), current_prices={"BTC": 1.0, "ETH": 1.0})


def test_all_sections_available():
    analyzers = [StaticAnalyzer(k) for k in AdvisoryKind]
    res = run_advisors(analyzers, _request(), timeout=2.0)
    assert res.degraded == []
    sections = res.sections()
    assert set(sections) == {"price_analysis", "on_chain_metrics", "whale_activity", "correlation"}
    assert sections["price_analysis"].insights == ["2 assets"]


def test_failure_and_timeout_degrade_only_their_sections():
    blocking = BlockingAnalyzer()
    analyzers = [
        StaticAnalyzer(AdvisoryKind.PRICE_PREDICTION, "bearish", 0.9),
        FailingAnalyzer(),
        blocking,
        StaticAnalyzer(AdvisoryKind.CORRELATION),
    ]
    try:
        res = run_advisors(analyzers, _request(), timeout=0.2)
    finally:
        blocking.release.set()
    assert sorted(res.degraded) == ["on_chain", "whale_tracking"]
    sections = res.sections()
    assert sections["on_chain_metrics"] is None
    assert sections["whale_activity"] is None
    assert sections["price_analysis"].trend == "bearish"
    assert sections["correlation"] is not None
    reasons = {o.kind: o.reason for o in res.outcomes if not o.available}
    assert reasons[AdvisoryKind.ON_CHAIN] == "indexer unavailable"
    assert "timed out" in reasons[AdvisoryKind.WHALE_TRACKING]


def test_no_analyzers_means_no_sections():
    res = run_advisors([], _request())
    assert res.outcomes == []
    assert all(v is None for v in res.sections().values())


class UnknownKindAnalyzer:
    kind = "sentiment"

    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight:
        return AdvisoryInsight(kind=AdvisoryKind.CORRELATION)


class KindlessAnalyzer:
    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight:
        return AdvisoryInsight(kind=AdvisoryKind.CORRELATION)


def test_analyzers_without_a_known_kind_are_skipped(caplog):
    analyzers = [UnknownKindAnalyzer(), KindlessAnalyzer(), StaticAnalyzer(AdvisoryKind.PRICE_PREDICTION)]
    with caplog.at_level("WARNING"):
        res = run_advisors(analyzers, _request(), timeout=2.0)
    assert [o.kind for o in res.outcomes] == [AdvisoryKind.PRICE_PREDICTION]
    assert res.degraded == []
    assert res.sections()["price_analysis"] is not None
    assert res.sections()["correlation"] is None
    assert "UnknownKindAnalyzer" in caplog.text
    assert "KindlessAnalyzer" in caplog.text


def test_only_unusable_analyzers_means_no_sections():
    res = run_advisors([KindlessAnalyzer()], _request())
    assert res.outcomes == []
