from __future__ import annotations

import pytest

from portfolio_engine.config import EngineConfig, load_engine_config
from portfolio_engine.exceptions import ConfigError, InvalidCostBasisMethodError
from portfolio_engine.ledger import CostBasisMethod


def test_defaults_when_no_file():
    cfg, src = load_engine_config()
    assert src is None
    assert cfg.cost_basis_method == CostBasisMethod.FIFO
    assert cfg.return_series == "transaction"
    assert cfg.thresholds.max_asset_weight == 0.4
    assert cfg.tax.short_term_rate == 0.37


def test_loads_local_yaml(tmp_path):
    (tmp_path / "portfolio_engine.yaml").write_text(
        "cost_basis_method: hifo\n"
        "risk_free_rate: 0.04\n"
        "return_series: calendar\n"
        "thresholds:\n  min_sharpe: 0.5\n"
        "tax:\n  long_term_days: 400\n"
    )
    cfg, src = load_engine_config()
    assert src == "portfolio_engine.yaml"
    assert cfg.cost_basis_method == CostBasisMethod.HIFO
    assert cfg.risk_free_rate == 0.04
    assert cfg.return_series == "calendar"
    assert cfg.thresholds.min_sharpe == 0.5
    assert cfg.thresholds.max_volatility == 0.8
    assert cfg.tax.long_term_days == 400


def test_env_var_wins(tmp_path, monkeypatch):
    (tmp_path / "portfolio_engine.yaml").write_text("cost_basis_method: LIFO\n")
    other = tmp_path / "other.yaml"
    other.write_text("cost_basis_method: WAC\n")
    monkeypatch.setenv("PORTFOLIO_ENGINE_CONFIG", str(other))
    cfg, src = load_engine_config()
    assert src == str(other)
    assert cfg.cost_basis_method == CostBasisMethod.WAC


def test_bad_config_raises_config_error(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("cost_basis_method: AVERAGE\n")
    with pytest.raises(ConfigError):
        load_engine_config(bad)
    with pytest.raises(ConfigError):
        load_engine_config(tmp_path / "missing.yaml")


def test_invalid_method_in_code_fails_fast():
    with pytest.raises(InvalidCostBasisMethodError):
        EngineConfig(cost_basis_method="AVERAGE")
