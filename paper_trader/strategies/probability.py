"""
Historical-probability model.
Trigger: bull regime (close > SMA200 and SMA200 rising over 5 bars), close above the prior
20-bar high, ATR above its 20-bar average. Every past trigger from the warm-up index is replayed
forward: win if the prob_rr target is touched before the stop within the look-ahead window,
loss otherwise (stop checked first in each bar). A trial only counts once it has resolved, so
the estimate at bar n never uses bars after n.
"""

from __future__ import annotations
from typing import Any

import numpy as np
import pandas as pd

from paper_trader.core.types import Decision, ModelType, Signal
from paper_trader.indicators import rolling_mean_last
from paper_trader.strategies.base import BaseModel


class ProbabilityModel(BaseModel):

    name = ModelType.PROBABILITY.value
    min_bars = 221

    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        return self.add_trials(super().compute_indicators(df))

    def add_trials(self, df: pd.DataFrame) -> pd.DataFrame:
        """Trigger flags and per-bar trial outcome/resolution index. Expects ma200 and atr columns."""
        cfg = self.config
        df = df.copy()
        close = df["close"].astype(float)
        ma = df["ma200"]
        df["prob_regime_bull"] = (close > ma) & (ma > ma.shift(5))
        prev_high = df["high"].shift(1).rolling(cfg.prob_breakout_lookback, min_periods=1).max()
        df["prob_breakout"] = close > prev_high
        atr_avg = rolling_mean_last(df["atr"], 20, positive_only=True)
        df["prob_atr_exp"] = df["atr"] > atr_avg.fillna(df["atr"])
        trigger = (df["prob_regime_bull"] & df["prob_breakout"] & df["prob_atr_exp"]).to_numpy()
        df["prob_trigger"] = trigger

        n = len(df)
        c = close.to_numpy()
        h = df["high"].to_numpy(dtype=float)
        l = df["low"].to_numpy(dtype=float)
        a = df["atr"].to_numpy(dtype=float)
        outcome = np.full(n, np.nan)
        resolved_at = np.full(n, np.nan)
        for j in range(max(0, cfg.prob_warmup), n):
            if not trigger[j] or np.isnan(a[j]):
                continue
            stop_dist = max(a[j] * cfg.stop_atr_mult, c[j] * cfg.stop_min_pct)
            stop = c[j] - stop_dist
            target = c[j] + cfg.prob_rr * stop_dist
            end = j + cfg.prob_look_ahead
            for k in range(j + 1, min(end, n - 1) + 1):
                if l[k] <= stop:
                    outcome[j], resolved_at[j] = 0.0, k
                    break
                if h[k] >= target:
                    outcome[j], resolved_at[j] = 1.0, k
                    break
            else:
                if end <= n - 1:
                    outcome[j], resolved_at[j] = 0.0, end
        df["prob_outcome"] = outcome
        df["prob_resolved_at"] = resolved_at
        return df

    def _decide(self, df: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        cfg = self.config
        if "prob_trigger" not in df.columns:
            df = self.add_trials(df)
        n = len(df) - 1
        row = df.iloc[-1]
        f = self.common_fields(row)

        resolved = df["prob_resolved_at"].to_numpy()
        mask = df["prob_trigger"].to_numpy(dtype=bool) & (resolved <= n)
        occurrences = int(mask.sum())
        successes = int(np.nansum(df["prob_outcome"].to_numpy()[mask]))
        p = successes / occurrences if occurrences else 0.0

        regime_bull = bool(row["prob_regime_bull"])
        breakout_flag = bool(row["prob_breakout"])
        atr_exp = bool(row["prob_atr_exp"])
        triggered = regime_bull and breakout_flag and atr_exp

        if occurrences < cfg.prob_min_occ:
            reason = "INSUFFICIENT_OCCURRENCES"
        elif not triggered:
            reason = "NO_TRIGGER"
        elif p < cfg.prob_min:
            reason = "PROBABILITY_LOW"
        else:
            reason = "PROBABILITY_EDGE"
        signal = Signal.BUY if reason == "PROBABILITY_EDGE" else Signal.HOLD

        f["bull_regime"] = regime_bull
        return Decision(
            model=self.name,
            signal=signal,
            reason=reason,
            score=p * 10.0,
            confidence=p if signal is Signal.BUY else 0.0,
            probability=p,
            breakout=breakout_flag,
            breakout_flag=breakout_flag,
            atr_expansion=atr_exp,
            occurrences=occurrences,
            successes=successes,
            reasons=(f"OCC={occurrences}", f"SUCC={successes}", f"P={p:.3f}"),
            **f,
        )
