from __future__ import annotations

__all__ = [
    "CostBasisLedger",
    "CostBasisMethod",
    "Transaction",
    "TxType",
    "RealizedPnLCalculator",
    "UnrealizedPnLCalculator",
    "PerformanceMetricsEngine",
    "RiskMetricsEngine",
    "TaxLossOptimizer",
    "PortfolioAnalyticsService",
    "EngineConfig",
    "load_engine_config",
    "PortfolioEngineError",
    "InsufficientCostBasisError",
    "InvalidCostBasisMethodError",
    "MissingPriceDataError",
    "ExternalAdvisoryError",
]

from portfolio_engine.config import EngineConfig, load_engine_config
from portfolio_engine.exceptions import (
    ExternalAdvisoryError,
    InsufficientCostBasisError,
    InvalidCostBasisMethodError,
    MissingPriceDataError,
    PortfolioEngineError,
)
from portfolio_engine.ledger import CostBasisLedger, CostBasisMethod
from portfolio_engine.performance import PerformanceMetricsEngine
from portfolio_engine.realized import RealizedPnLCalculator
from portfolio_engine.risk import RiskMetricsEngine
from portfolio_engine.service import PortfolioAnalyticsService
from portfolio_engine.tax import TaxLossOptimizer
from portfolio_engine.transactions import Transaction, TxType
from portfolio_engine.unrealized import UnrealizedPnLCalculator
