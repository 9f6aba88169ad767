"""
Momentum/regime model.
Regime from the ATR-normalized slope of SMA200; breakout (high >= max high over the lookback)
confirmed by ATR or volume expansion; 30/14/7-bar momentum blend; rolling-expectancy edge check.
Also the scanner helpers (near-breakout WATCH classification and ranking).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from paper_trader.core.config import Config
from paper_trader.core.types import Decision, ModelType, Regime, Signal
from paper_trader.indicators import atr, pct_change_between, rolling_mean_last, sma
from paper_trader.strategies.base import BaseModel, clamp, value_at
from paper_trader.strategies.probability import ProbabilityModel


def classify_regime(
    price: float,
    ma_now: Optional[float],
    ma_prev: Optional[float],
    atr_now: Optional[float],
    config: Config,
) -> Tuple[Regime, float]:
    """CHOP when |slope_norm| is below the chop floor; BULL when price > MA and slope_norm > bull floor."""
    if ma_now is None or ma_prev is None:
        return Regime.CHOP, 0.0
    slope_norm = (ma_now - ma_prev) / max(1e-9, atr_now or 0.0)
    if abs(slope_norm) < config.chop_slope_norm:
        return Regime.CHOP, slope_norm
    if price > ma_now and slope_norm > config.bull_slope_norm:
        return Regime.BULL, slope_norm
    return Regime.NON_BULL, slope_norm


def detect_regime(bars: pd.DataFrame, config: Config) -> Tuple[Regime, float]:
    """Regime of the last bar of a raw OHLCV frame."""
    n = len(bars) - 1
    if n < max(200 + config.slope_lookback, 220):
        return Regime.CHOP, 0.0
    ma = sma(bars["close"], 200)
    a = atr(bars["high"], bars["low"], bars["close"], config.atr_period)
    ma_now = ma.iloc[n]
    ma_prev = ma.iloc[n - config.slope_lookback]
    return classify_regime(
        float(bars["close"].iloc[n]),
        None if pd.isna(ma_now) else float(ma_now),
        None if pd.isna(ma_prev) else float(ma_prev),
        None if pd.isna(a.iloc[n]) else float(a.iloc[n]),
        config,
    )


def momentum_score(closes: Sequence[float]) -> Optional[float]:
    """0.5 * ret30 + 0.3 * ret14 + 0.2 * ret7 of the last close; None with fewer than 61 closes."""
    c = np.asarray(closes, dtype=float)
    n = len(c) - 1
    if n < 60:
        return None
    price = c[n]
    return (
        0.5 * pct_change_between(c[n - 30], price)
        + 0.3 * pct_change_between(c[n - 14], price)
        + 0.2 * pct_change_between(c[n - 7], price)
    )


class MomentumModel(BaseModel):

    name = ModelType.MOMENTUM.value
    min_bars = 320

    def __init__(self, config: Config):
        super().__init__(config)
        self._prob: Optional[ProbabilityModel] = (
            ProbabilityModel(config) if config.momentum_require_probability else None
        )

    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        df = super().compute_indicators(df)
        cfg = self.config
        df["ma200_prev"] = df["ma200"].shift(cfg.slope_lookback)
        df["atr_mean20"] = rolling_mean_last(df["atr"], 20)
        df["vol_mean20"] = rolling_mean_last(df["volume"].astype(float), 20)
        df["breakout_high"] = df["high"].rolling(cfg.breakout_lookback, min_periods=1).max()
        if self._prob is not None:
            df = self._prob.add_trials(df)
        return df

    def _decide(self, df: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        cfg = self.config
        row = df.iloc[-1]
        f = self.common_fields(row)
        last = f["last"]

        regime, slope_norm = classify_regime(
            last, value_at(row, "ma200"), value_at(row, "ma200_prev"), f["atr"], cfg
        )

        atr_now = f["atr"] or 0.0
        atr_exp = atr_now > (value_at(row, "atr_mean20") or 0.0)
        vol_exp = float(row["volume"]) > (value_at(row, "vol_mean20") or 0.0)
        breakout = float(row["high"]) >= (value_at(row, "breakout_high") or 0.0)
        breakout_pass = breakout and (atr_exp or vol_exp)

        mom = momentum_score(df["close"].to_numpy())

        trades = edge.trades_count if edge is not None else 0
        expectancy = edge.rolling_expectancy() if edge is not None else 0.0
        edge_ok = trades < cfg.edge_min_trades or expectancy >= 0

        score = 0.0
        if regime is Regime.BULL:
            score += 35
        if breakout:
            score += 20
        if atr_exp:
            score += 10
        if vol_exp:
            score += 10
        if mom is not None:
            score += clamp(mom * 350, 0, 25)
        if edge_ok:
            score += 5

        prob_decision = kwargs.get("probability")
        if prob_decision is None and self._prob is not None:
            prob_decision = self._prob.decide(df)

        if regime is Regime.CHOP:
            reason = "REGIME_CHOP"
        elif regime is not Regime.BULL:
            reason = "REGIME_NON_BULL"
        elif not breakout_pass:
            reason = "BREAKOUT_2OF3_FAIL"
        elif not edge_ok:
            reason = "EDGE_NEGATIVE"
        elif mom is None:
            reason = "MOMENTUM_NA"
        elif mom <= cfg.min_momentum:
            reason = "MOMENTUM_WEAK"
        elif cfg.momentum_require_probability and (prob_decision is None or prob_decision.signal is not Signal.BUY):
            reason = "NEEDS_PROB_CONFIRMATION"
        else:
            reason = "MOMENTUM_SETUP"
        signal = Signal.BUY if reason == "MOMENTUM_SETUP" else Signal.HOLD

        return Decision(
            model=self.name,
            signal=signal,
            reason=reason,
            score=score,
            confidence=clamp(score / 100.0, 0.0, 1.0),
            probability=prob_decision.probability if prob_decision is not None else None,
            regime=regime,
            slope_norm=slope_norm,
            breakout=breakout,
            breakout_flag=breakout_pass,
            atr_expansion=atr_exp,
            volume_expansion=vol_exp,
            momentum_score=mom,
            rolling_expectancy=expectancy,
            edge_trades=trades,
            edge_ok=edge_ok,
            reasons=(f"REGIME={regime.value}", f"SLOPE_NORM={slope_norm:.3f}"),
            **f,
        )


def near_breakout(bars: pd.DataFrame, lookback: int = 12, near_pct: float = 0.002) -> dict:
    """
    Distance of the last close below the max high of the previous `lookback` bars.
    near_breakout is True when 0 <= distance <= near_pct.
    """
    if bars is None or len(bars) < lookback + 1:
        return {"near_breakout": False, "dist_to_breakout_pct": None, "breakout_level": None}
    level = float(bars["high"].iloc[-lookback - 1 : -1].max())
    close = float(bars["close"].iloc[-1])
    dist = (level - close) / max(1e-9, level)
    return {
        "near_breakout": 0 <= dist <= max(0.0001, near_pct),
        "dist_to_breakout_pct": dist,
        "breakout_level": level,
    }


@dataclass
class ScanRow:
    """One scanner line: momentum decision plus BUY/WATCH/HOLD classification."""
    symbol: str
    scan_signal: str
    reason: str
    decision: Decision
    near_breakout: bool = False
    dist_to_breakout_pct: Optional[float] = None

    @property
    def momentum_score(self) -> float:
        m = self.decision.momentum_score
        return float("-inf") if m is None else m


def scan_symbol(symbol: str, bars: pd.DataFrame, config: Config, edge=None, near_pct: float = 0.002) -> ScanRow:
    decision = MomentumModel(config).evaluate(bars, edge)
    nb = near_breakout(bars, config.breakout_lookback, near_pct)
    if decision.signal is Signal.BUY:
        scan_signal, reason = "BUY", decision.reason
    elif nb["near_breakout"] and not decision.breakout_flag:
        scan_signal, reason = "WATCH", "WATCH_NEAR_BREAKOUT"
    else:
        scan_signal, reason = "HOLD", decision.reason
    return ScanRow(
        symbol=symbol,
        scan_signal=scan_signal,
        reason=reason,
        decision=decision,
        near_breakout=nb["near_breakout"],
        dist_to_breakout_pct=nb["dist_to_breakout_pct"],
    )


_SCAN_ORDER = {"BUY": 0, "WATCH": 1, "HOLD": 2}


def scan_rank(rows: Iterable[ScanRow]) -> List[ScanRow]:
    """BUY first, then WATCH, then HOLD; momentum score descending within each group."""
    return sorted(rows, key=lambda r: (_SCAN_ORDER.get(r.scan_signal, 3), -r.momentum_score))
