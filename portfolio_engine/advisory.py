from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Literal, Mapping, Protocol, Sequence

from pydantic import BaseModel, Field

from portfolio_engine.exceptions import ExternalAdvisoryError

logger = logging.getLogger(__name__)


class AdvisoryKind(str, Enum):
    PRICE_PREDICTION = "price_prediction"
    ON_CHAIN = "on_chain"
    WHALE_TRACKING = "whale_tracking"
    CORRELATION = "correlation"


# Report attribute that carries each kind's result.
SECTION_FOR_KIND: dict[AdvisoryKind, str] = {
    AdvisoryKind.PRICE_PREDICTION: "price_analysis",
    AdvisoryKind.ON_CHAIN: "on_chain_metrics",
    AdvisoryKind.WHALE_TRACKING: "whale_activity",
    AdvisoryKind.CORRELATION: "correlation",
}

Trend = Literal["bullish", "bearish", "neutral"]


class AdvisoryInsight(BaseModel):
    kind: AdvisoryKind
    trend: Trend = "neutral"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    insights: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class AdvisoryRequest:
    assets: tuple[str, ...]
    current_prices: Mapping[str, float]
    transactions: Sequence[Any] = ()


class AdvisoryAnalyzer(Protocol):
    kind: AdvisoryKind

    def analyze(self, request: AdvisoryRequest) -> AdvisoryInsight: ...


@dataclass(frozen=True)
class AdvisoryOutcome:
    kind: AdvisoryKind
    insight: AdvisoryInsight | None = None
    reason: str | None = None

    @property
    def available(self) -> bool:
        return self.insight is not None


@dataclass
class AdvisoryResults:
    outcomes: list[AdvisoryOutcome] = field(default_factory=list)

    @property
    def degraded(self) -> list[str]:
        return [o.kind.value for o in self.outcomes if not o.available]

    def section(self, kind: AdvisoryKind) -> AdvisoryInsight | None:
        for o in self.outcomes:
            if o.kind == kind and o.insight is not None:
                return o.insight
        return None

    def sections(self) -> dict[str, AdvisoryInsight | None]:
        return {name: self.section(kind) for kind, name in SECTION_FOR_KIND.items()}


def _call(analyzer: AdvisoryAnalyzer, request: AdvisoryRequest) -> AdvisoryInsight:
    out = analyzer.analyze(request)
    if not isinstance(out, AdvisoryInsight):
        raise ExternalAdvisoryError(str(getattr(analyzer, "kind", "?")), f"unexpected result type {type(out).__name__}")
    return out


def run_advisors(
    analyzers: Iterable[AdvisoryAnalyzer],
    request: AdvisoryRequest,
    *,
    timeout: float = 5.0,
    max_workers: int = 4,
) -> AdvisoryResults:
    """
    Run every analyzer concurrently and join each one against its own deadline.

    A branch that raises or misses its deadline becomes an unavailable outcome with a reason;
    siblings keep running. The pool is shut down without waiting for stragglers.
    """
    items: list[tuple[AdvisoryKind, AdvisoryAnalyzer]] = []
    for analyzer in analyzers:
        try:
            items.append((AdvisoryKind(getattr(analyzer, "kind")), analyzer))
        except (AttributeError, ValueError) as e:
            logger.warning("Skipping advisory analyzer %s with no usable kind: %s", type(analyzer).__name__, e)
    results = AdvisoryResults()
    if not items:
        return results
    executor = ThreadPoolExecutor(max_workers=max(1, min(int(max_workers), len(items))))
    try:
        started = time.monotonic()
        futures = [(kind, executor.submit(_call, a, request)) for kind, a in items]
        for kind, fut in futures:
            remaining = max(0.0, timeout - (time.monotonic() - started))
            try:
                insight = fut.result(timeout=remaining)
            except FutureTimeoutError:
                fut.cancel()
                logger.warning("Advisory %s timed out after %.2fs", kind.value, timeout)
                results.outcomes.append(AdvisoryOutcome(kind=kind, reason=f"timed out after {timeout:g}s"))
                continue
            except Exception as e:
                # Analyzers are external collaborators; any failure degrades only their section.
                logger.warning("Advisory %s failed: %s", kind.value, e)
                reason = e.reason if isinstance(e, ExternalAdvisoryError) else f"{type(e).__name__}: {e}"
                results.outcomes.append(AdvisoryOutcome(kind=kind, reason=reason))
                continue
            if insight.kind != kind:
                insight = insight.model_copy(update={"kind": kind})
            results.outcomes.append(AdvisoryOutcome(kind=kind, insight=insight))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return results
