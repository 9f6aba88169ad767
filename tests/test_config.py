"""Unit tests for configuration loading and overrides."""

import dataclasses

import pytest

from paper_trader.core.config import PRESETS, Config, load_config


def test_defaults():
    cfg = Config()
    assert cfg.timeframe == "15m"
    assert cfg.risk_fraction == pytest.approx(0.01)
    assert cfg.fee_pct == pytest.approx(0.10)
    assert cfg.max_dd is None


def test_fee_modes():
    assert Config(fee_mode="bnb").fee_pct == pytest.approx(0.075)
    assert Config(fee_mode="CUSTOM", fee_pct_custom=0.02).fee_pct == pytest.approx(0.02)
    assert Config(fee_mode="unknown").fee_pct == pytest.approx(0.10)


def test_clamps():
    cfg = Config(risk_pct=50.0, max_open=0, fetch_concurrency=99, partial_pct=0.99, initial_cash=1.0)
    assert cfg.risk_pct == 5.0
    assert cfg.max_open == 1
    assert cfg.fetch_concurrency == 20
    assert cfg.partial_pct == pytest.approx(0.90)
    assert cfg.initial_cash == 10.0
    assert isinstance(cfg.max_open, int)


def test_with_overrides_returns_new_config():
    base = Config()
    cfg = base.with_overrides({"r_target": "3", "trend_only": "yes"}, max_dd="0.1")
    assert cfg.r_target == 3.0
    assert cfg.trend_only is True
    assert cfg.max_dd == pytest.approx(0.1)
    assert base.r_target == 2.5 and base.trend_only is False
    with pytest.raises(dataclasses.FrozenInstanceError):
        base.r_target = 1.0


def test_unknown_override_ignored():
    assert Config().with_overrides(not_a_field=1) == Config()


def test_symbols_from_string():
    cfg = Config().with_overrides(symbols="btcusdt, ethusdt")
    assert cfg.symbols == ("BTCUSDT", "ETHUSDT")


def test_presets():
    cfg = Config().with_preset("growth_100")
    assert cfg.preset == "GROWTH_100"
    for key, value in PRESETS["GROWTH_100"].items():
        assert getattr(cfg, key) == value
    assert Config().with_preset("missing").preset == "NONE"


def test_to_dict_hides_token():
    data = Config(audit_token="secret").to_dict()
    assert "audit_token" not in data
    assert "secret" not in repr(Config(audit_token="secret"))


def test_load_config_yaml_and_env(tmp_path, monkeypatch):
    for name in ("PRESET", "RISK_PCT", "SYMBOLS", "MAX_OPEN", "TIMEFRAME", "AUDIT_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "run:\n"
        "  timeframe: 1h\n"
        "  symbols: [btcusdt, solusdt]\n"
        "risk:\n"
        "  risk_pct: 0.5\n"
        "  max_dd: null\n"
        "max_open: 2\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RISK_PCT", "2.0")
    cfg = load_config(path, tmp_path)
    assert cfg.timeframe == "1h"
    assert cfg.symbols == ("BTCUSDT", "SOLUSDT")
    assert cfg.max_open == 2
    assert cfg.risk_pct == pytest.approx(2.0)
    assert cfg.max_dd is None


def test_load_config_preset_then_yaml(tmp_path, monkeypatch):
    for name in ("PRESET", "RISK_PCT", "MAX_TRADES_PER_WEEK"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("preset: SCALE_300\nrisk_pct: 1.0\n", encoding="utf-8")
    cfg = load_config(path, tmp_path)
    assert cfg.preset == "SCALE_300"
    assert cfg.risk_pct == pytest.approx(1.0)
    assert cfg.max_trades_per_week == 5


def test_env_wins_over_dotenv(tmp_path, monkeypatch):
    for name in ("PRESET", "RISK_PCT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AUDIT_TOKEN", "from-env")
    (tmp_path / ".env").write_text("AUDIT_TOKEN=from-file\n", encoding="utf-8")
    cfg = load_config(tmp_path / "missing.yaml", tmp_path)
    assert cfg.audit_token == "from-env"
    assert cfg.risk_pct == Config().risk_pct
