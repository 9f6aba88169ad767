"""
Load configuration from config.yaml and .env. Secrets (audit token) only from env.
Every field can be overridden by an env var named after it in upper case.
"""

from __future__ import annotations
import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger("paper_trader.config")

FEE_PCT_BY_MODE = {"STANDARD": 0.10, "BNB": 0.075}

# Pairs eligible for the TOPN universe.
USDT_MAJORS = (
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT", "ADAUSDT", "DOGEUSDT", "TRXUSDT", "AVAXUSDT", "LINKUSDT",
    "DOTUSDT", "MATICUSDT", "TONUSDT", "SHIBUSDT", "BCHUSDT", "LTCUSDT", "UNIUSDT", "ATOMUSDT", "ETCUSDT", "FILUSDT",
    "APTUSDT", "ARBUSDT", "OPUSDT", "NEARUSDT", "INJUSDT", "ICPUSDT", "XLMUSDT", "HBARUSDT", "IMXUSDT", "AAVEUSDT",
    "EGLDUSDT", "SUIUSDT", "FTMUSDT", "GALAUSDT", "PEPEUSDT", "RNDRUSDT", "RUNEUSDT", "STXUSDT", "MKRUSDT", "LDOUSDT",
    "KASUSDT", "TIAUSDT", "SEIUSDT", "JUPUSDT", "WIFUSDT", "BONKUSDT", "FLOKIUSDT", "PYTHUSDT", "ARUSDT", "THETAUSDT",
)

# Growth presets. Risk is a percent of cash here (3.0 = 3%).
PRESETS: dict[str, dict[str, Any]] = {
    "GROWTH_100": {
        "risk_pct": 3.0,
        "max_trades_per_week": 6,
        "max_dd": 0.12,
        "min_net_r_target": 2.5,
        "trend_only": True,
        "regime_chop_block": True,
        "slippage_rate": 0.0006,
        "trend_slope_min": 0.0,
        "atr_expansion_min_ratio": 1.0,
        "min_trend_strength_gate": 0.0007,
        "min_ma_separation_pct": 0.0014,
        "min_atr_pct_gate": 0.003,
        "cooldown_candles": 2,
    },
    "SCALE_300": {
        "risk_pct": 2.0,
        "max_trades_per_week": 5,
        "max_dd": 0.10,
        "trend_only": True,
        "regime_chop_block": True,
        "edge_gating": True,
        "edge_window_trades": 50,
        "min_rolling_expectancy_usd": 0.0,
        "slippage_rate": 0.0007,
        "trend_slope_min": 0.0003,
        "atr_expansion_min_ratio": 1.03,
        "min_trend_strength_gate": 0.0009,
        "min_ma_separation_pct": 0.0018,
        "min_atr_pct_gate": 0.0032,
        "cooldown_candles": 3,
        "loss_streak_risk_cut_on": True,
        "loss_streak_cut_after": 3,
        "loss_streak_cut_factor": 0.5,
        "loss_streak_cut_trades": 5,
    },
    "CONSOLID_700": {
        "risk_pct": 1.5,
        "max_trades_per_week": 4,
        "max_dd": 0.08,
        "trend_only": True,
        "regime_chop_block": True,
        "edge_gating": True,
        "edge_window_trades": 80,
        "min_rolling_expectancy_usd": 0.0,
        "min_rolling_win_rate": 0.48,
        "require_pullback_entry": True,
        "slippage_rate": 0.0008,
        "trend_slope_min": 0.0005,
        "atr_expansion_min_ratio": 1.06,
        "min_trend_strength_gate": 0.0011,
        "min_ma_separation_pct": 0.0022,
        "min_atr_pct_gate": 0.0035,
        "cooldown_candles": 4,
        "loss_streak_risk_cut_on": True,
        "loss_streak_cut_after": 3,
        "loss_streak_cut_factor": 0.5,
        "loss_streak_cut_trades": 5,
        "max_slippage_pct": 0.001,
        "kill_switch_candles": 8,
    },
}

# field -> (low, high); None means unbounded on that side
_CLAMPS: dict[str, tuple[Optional[float], Optional[float]]] = {
    "initial_cash": (10.0, None),
    "bars_limit": (60, 1500),
    "loop_sec": (2, None),
    "fetch_concurrency": (1, 20),
    "top_n": (1, 20),
    "risk_pct": (0.01, 5.0),
    "max_open": (1, 20),
    "max_daily_dd": (0.3, 99.0),
    "max_position_pct_capital": (1.0, 100.0),
    "loss_streak_cut_after": (1, None),
    "loss_streak_cut_factor": (0.1, 1.0),
    "loss_streak_cut_trades": (1, None),
    "cooldown_candles": (0, 200),
    "atr_period": (7, 50),
    "stop_atr_mult": (0.2, 12.0),
    "stop_min_pct": (0.0, 0.2),
    "r_target": (0.5, 20.0),
    "partial_at_r": (0.1, 10.0),
    "partial_pct": (0.01, 0.90),
    "break_even_r": (0.0, 10.0),
    "atr_trail": (0.0, 20.0),
    "time_stop_candles": (1, 200),
    "auto_profit_pct": (0.01, 20.0),
    "fee_pct_custom": (0.0, 1.0),
    "exec_spread_bps": (0.0, 100.0),
    "exec_slippage_bps": (0.0, 200.0),
    "exec_latency_ms": (0.0, 10_000.0),
    "exec_latency_bps_per_sec": (0.0, 50.0),
    "tax_pct": (0.0, 50.0),
    "slope_lookback": (10, None),
    "breakout_lookback": (2, 200),
    "edge_min_trades": (1, None),
    "edge_window": (5, None),
    "prob_look_ahead": (1, 500),
    "prob_min_occ": (1, None),
    "prob_min": (0.0, 1.0),
    "corr_lookback": (20, 200),
    "corr_min": (0.0, 0.99),
    "corr_max_open_same_side": (1, 20),
    "min_rr": (1.0, None),
    "edge_min_pct": (0.0, 5.0),
    "kill_switch_candles": (1, None),
    "backtest_warmup": (20, None),
    "audit_flush_sec": (2, 120),
}


@dataclass(frozen=True)
class Config:
    """Unified configuration. Immutable; derive variants with with_overrides()."""

    # Run
    symbol: str = "BTCUSDT"
    timeframe: str = "15m"
    symbols: tuple = ("BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT", "ADAUSDT")
    universe_mode: str = "FIXED"  # FIXED | TOPN
    universe_candidates: tuple = USDT_MAJORS  # empty = every quote-asset pair
    top_n: int = 6
    best_refresh_min: float = 10.0
    bars_limit: int = 1000
    loop_sec: float = 10.0
    fetch_concurrency: int = 5
    model_type: str = "momentum"
    preset: str = "NONE"
    initial_cash: float = 100.0
    allow_short: bool = False
    no_repeat: bool = True
    # Risk / account
    risk_pct: float = 1.0
    max_open: int = 4
    max_daily_dd: float = 3.0
    max_dd: Optional[float] = None
    max_position_pct_capital: float = 100.0
    max_consecutive_losses: int = 0  # 0 = off
    max_trades_per_week: int = 0  # 0 = off
    loss_streak_risk_cut_on: bool = False
    loss_streak_cut_after: int = 3
    loss_streak_cut_factor: float = 0.5
    loss_streak_cut_trades: int = 5
    cooldown_candles: int = 0
    # Entry geometry
    atr_period: int = 14
    stop_atr_mult: float = 1.8
    stop_min_pct: float = 0.001
    r_target: float = 2.5
    # Lifecycle steps
    partial_on: bool = False
    partial_at_r: float = 1.2
    partial_pct: float = 0.35
    be_after_partial_on: bool = True
    break_even_r: float = 0.0  # 0 = off
    atr_trail: float = 0.0  # 0 = off
    time_stop_on: bool = False
    time_stop_candles: int = 18
    auto_profit_on: bool = False
    auto_profit_pct: float = 0.45
    # Costs
    fee_mode: str = "STANDARD"  # STANDARD | BNB | CUSTOM
    fee_pct_custom: float = 0.10
    exec_spread_bps: float = 4.0
    exec_slippage_bps: float = 2.0
    exec_latency_ms: float = 200.0
    exec_latency_bps_per_sec: float = 1.0
    tax_on: bool = False
    tax_pct: float = 15.0
    tax_apply_cash: bool = True
    # Baseline scorer
    score_min: float = 7.0
    min_trend_strength: float = 0.0006
    min_atr_pct: float = 0.003
    # Momentum / regime model
    slope_lookback: int = 80
    chop_slope_norm: float = 0.05
    bull_slope_norm: float = 0.10
    breakout_lookback: int = 12
    min_momentum: float = 0.001
    edge_min_trades: int = 30
    edge_window: int = 50
    momentum_require_probability: bool = False
    # Probability model
    prob_look_ahead: int = 50
    prob_min_occ: int = 30
    prob_rr: float = 2.0
    prob_min: float = 0.55
    prob_breakout_lookback: int = 20
    prob_warmup: int = 220
    # Gates
    trend_only: bool = False
    trend_slope_min: float = 0.0
    atr_expansion_min_ratio: float = 1.0
    regime_chop_block: bool = False
    min_trend_strength_gate: float = 0.0007
    min_ma_separation_pct: float = 0.0014
    min_atr_pct_gate: float = 0.003
    mtf_confirm_on: bool = False
    mtf_confirm_interval: str = "1h"
    mtf_min_trend_strength: float = 0.0008
    corr_filter_on: bool = True
    corr_lookback: int = 40
    corr_min: float = 0.72
    corr_max_open_same_side: int = 3
    require_pullback_entry: bool = False
    min_rr: float = 1.15
    edge_min_pct: float = 0.10
    min_net_r_target: float = 0.0
    ev_min_trades: int = 30
    ev_default_win_rate: float = 0.52
    edge_gating: bool = False
    edge_window_trades: int = 50
    edge_gate_min_trades: int = 10
    min_rolling_expectancy_usd: float = 0.0
    min_rolling_win_rate: Optional[float] = None
    slippage_rate: float = 0.0006
    max_slippage_pct: Optional[float] = None
    max_slippage_usd: Optional[float] = None
    kill_switch_candles: int = 6
    # Backtest / grid
    backtest_warmup: int = 220
    backtest_min_bars: int = 260
    grid_min_trades: int = 6
    grid_max_dd: float = 0.12
    grid_top_k: int = 10
    # Audit
    audit_on: bool = False
    audit_endpoint: str = ""
    audit_token: str = field(default="", repr=False)
    audit_flush_sec: float = 8.0
    run_id: str = ""
    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "paper_trader.log"

    def __post_init__(self) -> None:
        for name, (lo, hi) in _CLAMPS.items():
            value = getattr(self, name)
            if value is None:
                continue
            clamped = value
            if lo is not None and clamped < lo:
                clamped = lo
            if hi is not None and clamped > hi:
                clamped = hi
            if clamped != value:
                logger.debug("Config %s=%s clamped to %s", name, value, clamped)
                object.__setattr__(self, name, type(value)(clamped))
        object.__setattr__(self, "symbol", str(self.symbol).upper())
        object.__setattr__(self, "fee_mode", str(self.fee_mode).upper())
        object.__setattr__(self, "symbols", tuple(str(s).upper() for s in self.symbols if s))
        object.__setattr__(self, "universe_candidates", tuple(str(s).upper() for s in self.universe_candidates if s))

    @property
    def risk_fraction(self) -> float:
        return self.risk_pct / 100.0

    @property
    def fee_pct(self) -> float:
        """Trade fee as a percent of notional (0.10 = 0.1%)."""
        if self.fee_mode == "CUSTOM":
            return self.fee_pct_custom
        return FEE_PCT_BY_MODE.get(self.fee_mode, FEE_PCT_BY_MODE["STANDARD"])

    def with_overrides(self, overrides: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "Config":
        """Return a new Config with overrides applied. Unknown keys are ignored."""
        merged = dict(overrides or {})
        merged.update(kwargs)
        known = {f.name: f for f in dataclasses.fields(self)}
        changes = {}
        for key, value in merged.items():
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            changes[key] = _coerce(getattr(self, key), known[key].default, value)
        return dataclasses.replace(self, **changes)

    def with_preset(self, preset_id: Optional[str]) -> "Config":
        preset = PRESETS.get(str(preset_id or "NONE").upper())
        if not preset:
            return self.with_overrides(preset="NONE")
        return self.with_overrides(preset, preset=str(preset_id).upper())

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data.pop("audit_token", None)
        return data


def _coerce(current: Any, default: Any, value: Any) -> Any:
    """Coerce a raw (yaml/env/grid) value to the type of the field."""
    sample = current if current is not None else default
    if value is None:
        return None
    if isinstance(sample, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
    if isinstance(sample, int):
        return int(float(value))
    if isinstance(sample, float) or sample is None:
        if isinstance(value, str) and value.strip().lower() in ("", "none", "null"):
            return None
        return float(value)
    if isinstance(sample, tuple):
        if isinstance(value, str):
            return tuple(s.strip() for s in value.split(",") if s.strip())
        return tuple(value)
    return str(value)


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> Config:
    """Load config.yaml, apply preset, then overlay env. Returns Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Sections are only for readability; keys are Config field names
    flat: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value

    base = Config()
    preset_id = os.getenv("PRESET", str(flat.pop("preset", "NONE"))).strip()
    config = base.with_preset(preset_id).with_overrides(flat)

    env_overrides = {}
    for f in dataclasses.fields(Config):
        raw = os.getenv(f.name.upper())
        if raw is not None and raw.strip() != "":
            env_overrides[f.name] = raw.strip()
    if env_overrides:
        config = config.with_overrides(env_overrides)
    return config
