"""
Baseline scorer: regime, trend strength, volatility band, RSI band, distance from MA200 and
5-bar momentum add up to a score in [0, 10]. BUY/SELL only when score, trend strength and ATR%
clear their floors; direction follows price vs MA200.
"""

from __future__ import annotations
from typing import Any

import pandas as pd

from paper_trader.core.types import Decision, ModelType, Signal
from paper_trader.strategies.base import BaseModel, clamp


class ScoreModel(BaseModel):

    name = ModelType.SCORE.value
    min_bars = 200

    def _decide(self, df: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        cfg = self.config
        row = df.iloc[-1]
        f = self.common_fields(row)
        last = f["last"]
        reasons = []
        score = 0.0

        has_ma = f["ma200"] is not None
        if has_ma:
            reasons.append("REGIME=BULL" if f["bull_regime"] else "REGIME=BEAR")
        else:
            reasons.append("MA200:insuf")

        has_ema = f["ema_fast"] is not None and f["ema_slow"] is not None
        ts = f["trend_strength"]
        if has_ema:
            reasons.append("EMA9>EMA21" if f["ema_fast"] > f["ema_slow"] else "EMA9<EMA21")
            score += min(4.0, 2.2 + (ts / 0.002) * 1.8)
        else:
            reasons.append("EMA:insuf")
            score += 1.0

        atr_pct = f["atr_pct"]
        if f["atr"] is not None:
            score += clamp((atr_pct - 0.003) / (0.012 - 0.003), 0.0, 1.0) * 2.0
        else:
            reasons.append("ATR:insuf")
            score += 0.4

        r = f["rsi"]
        if r is not None:
            score += 1.8 if 40 <= r <= 75 else 0.8
        else:
            reasons.append("RSI:insuf")
            score += 0.8

        if has_ma:
            dist = abs(last - f["ma200"]) / max(1e-9, last)
            score += min(2.0, 0.8 + dist * 8)

        if len(df) >= 6:
            prev5 = float(df["close"].iloc[-6])
            r5 = (last - prev5) / max(1e-9, prev5)
            score += min(1.0, abs(r5) * 25)

        score = clamp(score, 0.0, 10.0)
        ok_trend = ts >= cfg.min_trend_strength
        ok_vol = atr_pct >= cfg.min_atr_pct
        if not ok_trend:
            reasons.append("FILTER:TrendWeak")
        if not ok_vol:
            reasons.append("FILTER:LowVol")

        signal = Signal.HOLD
        if score >= cfg.score_min and ok_trend and ok_vol and has_ma and has_ema and r is not None and f["atr"] is not None:
            if f["bull_regime"]:
                signal = Signal.BUY
            elif f["bear_regime"]:
                signal = Signal.SELL

        if signal is not Signal.HOLD:
            reason = "SCORE_SETUP"
        elif score < cfg.score_min:
            reason = "SCORE_LOW"
        elif not ok_trend:
            reason = "TREND_WEAK"
        elif not ok_vol:
            reason = "LOW_VOL"
        else:
            reason = "NO_REGIME"

        return Decision(
            model=self.name,
            signal=signal,
            reason=reason,
            score=score,
            confidence=score / 10.0 if signal is Signal.BUY else 0.0,
            reasons=tuple(reasons),
            **f,
        )
