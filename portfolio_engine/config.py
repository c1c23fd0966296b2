from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from portfolio_engine.exceptions import ConfigError, InvalidCostBasisMethodError
from portfolio_engine.ledger import CostBasisMethod, parse_cost_basis_method
from portfolio_engine.tax import TaxAssumptions

CONFIG_ENV_VAR = "PORTFOLIO_ENGINE_CONFIG"


class RecommendationThresholds(BaseModel):
    min_sharpe: float = 1.0
    max_volatility: float = 0.8
    max_drawdown: float = 0.2
    min_win_rate: float = 0.5
    min_trades_for_win_rate: int = 3
    max_asset_weight: float = Field(default=0.4, description="Largest single-asset share of portfolio value")
    advisory_min_confidence: float = 0.7


class AdvisoryConfig(BaseModel):
    timeout_seconds: float = 5.0
    max_workers: int = 4


class EngineConfig(BaseModel):
    cost_basis_method: CostBasisMethod = CostBasisMethod.FIFO
    risk_free_rate: float = 0.02
    # "transaction": one return per transaction step; "calendar": daily, forward-filled.
    return_series: Literal["transaction", "calendar"] = "transaction"
    thresholds: RecommendationThresholds = Field(default_factory=RecommendationThresholds)
    tax: TaxAssumptions = Field(default_factory=TaxAssumptions)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)

    @field_validator("cost_basis_method", mode="before")
    @classmethod
    def _method(cls, v: object) -> CostBasisMethod:
        return parse_cost_basis_method(v)  # type: ignore[arg-type]


def _candidate_paths() -> list[Path]:
    paths: list[Path] = []
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        paths.append(Path(env))
    paths.append(Path("portfolio_engine.yaml"))
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".portfolio_engine" / "config.yaml")
    return paths


def load_engine_config(path: Path | None = None) -> tuple[EngineConfig, Optional[str]]:
    """
    Load engine config from YAML (if present).

    Search paths (first match wins):
      - `path` when given
      - $PORTFOLIO_ENGINE_CONFIG
      - ./portfolio_engine.yaml
      - ~/.portfolio_engine/config.yaml
    """
    candidates = [path] if path is not None else _candidate_paths()
    for p in candidates:
        if p.exists():
            try:
                data = yaml.safe_load(p.read_text()) or {}
                return EngineConfig.model_validate(data), str(p)
            except (yaml.YAMLError, ValidationError, InvalidCostBasisMethodError) as e:
                raise ConfigError(f"Invalid config {p}: {e}") from e
    if path is not None:
        raise ConfigError(f"Config file not found: {path}")
    return EngineConfig(), None
