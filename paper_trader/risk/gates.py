"""
Admission gates. Each gate is independent and returns a GateResult; the pipeline runs
them in order and stops at the first veto. Disabled gates pass.
"""

from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Optional

import pandas as pd

from paper_trader.core.config import Config
from paper_trader.core.types import Decision, GateResult, Signal, TradeIdea
from paper_trader.execution.base import MarketDataError
from paper_trader.indicators import atr as atr_series
from paper_trader.indicators import rolling_mean_last, sma
from paper_trader.portfolio.costs import exec_cost_pct_one_way
from paper_trader.portfolio.ledger import AccountLedger
from paper_trader.risk.correlation import ReturnsCache, pearson, returns_vector
from paper_trader.utils.timeframes import timeframe_delta

logger = logging.getLogger("paper_trader.risk")


def _at(series: pd.Series, i: int) -> Optional[float]:
    v = series.iloc[i]
    return None if pd.isna(v) else float(v)


def account_checks(
    decision: Decision,
    ledger: AccountLedger,
    config: Config,
    symbol: str,
    now: Optional[datetime],
) -> GateResult:
    """Account state before any signal gate: locks, kill switch, drawdowns, caps, cooldown, direction."""
    gate = "account"
    if ledger.locked:
        return GateResult.veto(gate, "LOCKED", lock_reason=ledger.lock_reason)
    if ledger.kill_switch_active(now):
        return GateResult.veto(gate, "KILL_SWITCH_ACTIVE", until=ledger.kill_switch_until)
    dd = ledger.daily_drawdown_pct()
    if dd >= config.max_daily_dd:
        ledger.lock(f"DAILY_DD {dd:.2f}% >= {config.max_daily_dd}%")
        return GateResult.veto(gate, "DAILY_DD", dd_pct=dd)
    if config.max_dd is not None:
        ledger.mark_high_water()
        dd_high = ledger.drawdown_from_high()
        if dd_high >= config.max_dd:
            ledger.lock(f"DD {dd_high * 100:.2f}% >= {config.max_dd * 100:.2f}%")
            return GateResult.veto(gate, "DD_BREAKER", dd=dd_high)
    if len(ledger.positions) >= config.max_open:
        return GateResult.veto(gate, "MAX_OPEN", open=len(ledger.positions))
    if config.max_trades_per_week > 0 and ledger.trades_this_week >= config.max_trades_per_week:
        return GateResult.veto(gate, "WEEKLY_LIMIT", used=ledger.trades_this_week)
    if config.cooldown_candles > 0 and ledger.in_cooldown(symbol, now):
        return GateResult.veto(gate, "COOLDOWN", until=ledger.cooldown_until.get(symbol))
    if not decision.is_entry:
        return GateResult.veto(gate, "NO_SIGNAL", decision_reason=decision.reason)
    if decision.signal is Signal.SELL and not config.allow_short:
        return GateResult.veto(gate, "SHORT_DISABLED")
    if decision.signal is Signal.SELL and config.trend_only:
        return GateResult.veto(gate, "TREND_ONLY_LONG")
    if not decision.atr or decision.atr <= 0 or not decision.last:
        return GateResult.veto(gate, "NO_ATR")
    return GateResult.passed(gate)


def trend_gate(decision: Decision, bars: pd.DataFrame, config: Config) -> GateResult:
    """Price above SMA200, SMA200 5-bar relative slope above floor, ATR above its 20-bar average by a ratio."""
    gate = "trend"
    if not config.trend_only:
        return GateResult.passed(gate)
    n = len(bars) - 1
    if n < 220 or decision.ma200 is None or decision.atr is None:
        return GateResult.veto(gate, "TREND_GATE_INSUF")
    ma = sma(bars["close"], 200)
    m_now, m_prev = _at(ma, n), _at(ma, max(0, n - 5))
    slope = (m_now - m_prev) / max(1e-9, abs(m_prev)) if m_now is not None and m_prev is not None else -1.0
    a = atr_series(bars["high"], bars["low"], bars["close"], config.atr_period)
    a_now = _at(a, n)
    if a_now is None:
        return GateResult.veto(gate, "TREND_GATE_ATR_INSUF")
    a_avg = _at(rolling_mean_last(a, 20), n) or a_now
    atr_ratio = a_now / max(1e-9, a_avg)
    if not decision.last > decision.ma200:
        return GateResult.veto(gate, "TREND_GATE_MA200")
    if not slope > config.trend_slope_min:
        return GateResult.veto(gate, "TREND_GATE_SLOPE", slope=slope, slope_min=config.trend_slope_min)
    if not atr_ratio > config.atr_expansion_min_ratio:
        return GateResult.veto(gate, "TREND_GATE_ATR_EXP", atr_ratio=atr_ratio, min_ratio=config.atr_expansion_min_ratio)
    return GateResult.passed(gate, slope=slope, atr_ratio=atr_ratio)


def chop_gate(decision: Decision, bars: pd.DataFrame, config: Config) -> GateResult:
    """Trend strength, SMA20/SMA50 separation and ATR% must all clear their floors."""
    gate = "chop"
    if not config.regime_chop_block:
        return GateResult.passed(gate)
    n = len(bars) - 1
    if n < 60:
        return GateResult.veto(gate, "CHOP_BLOCK_INSUF")
    m20, m50 = _at(sma(bars["close"], 20), n), _at(sma(bars["close"], 50), n)
    price = decision.last or 0.0
    ma_sep = abs(m20 - m50) / max(1e-9, price) if m20 is not None and m50 is not None else 0.0
    if decision.trend_strength < config.min_trend_strength_gate:
        return GateResult.veto(gate, "CHOP_BLOCK_TREND", trend_strength=decision.trend_strength)
    if ma_sep < config.min_ma_separation_pct:
        return GateResult.veto(gate, "CHOP_BLOCK_MA_SEP", ma_sep=ma_sep)
    if decision.atr_pct < config.min_atr_pct_gate:
        return GateResult.veto(gate, "CHOP_BLOCK_ATR", atr_pct=decision.atr_pct)
    return GateResult.passed(gate, trend_strength=decision.trend_strength, ma_sep=ma_sep, atr_pct=decision.atr_pct)


def mtf_gate(decision: Decision, config: Config, symbol: str, htf_provider) -> GateResult:
    """
    Higher-timeframe trend must agree with the signal. Fails closed: no provider, a fetch
    error or a missing snapshot all veto.
    """
    gate = "mtf"
    if not config.mtf_confirm_on:
        return GateResult.passed(gate)
    if htf_provider is None:
        return GateResult.veto(gate, "MTF_UNAVAILABLE")
    interval = config.mtf_confirm_interval
    try:
        snap = htf_provider.get_snapshot(symbol, interval)
    except MarketDataError as e:
        logger.warning("MTF fetch failed for %s %s: %s", symbol, interval, e)
        return GateResult.veto(gate, "MTF_FETCH_ERROR", error=str(e))
    if snap is None:
        return GateResult.veto(gate, "MTF_UNAVAILABLE")
    if snap.ema_fast is None or snap.ema_slow is None:
        return GateResult.veto(gate, "MTF_NOT_CONFIRMED", interval=interval)
    if decision.signal is Signal.BUY:
        confirmed = snap.ok and snap.bull_regime and snap.ema_fast > snap.ema_slow
    else:
        confirmed = snap.ok and snap.bear_regime and snap.ema_fast < snap.ema_slow
    if not confirmed:
        return GateResult.veto(
            gate, "MTF_NOT_CONFIRMED", interval=interval, trend=snap.trend_strength, bull=snap.bull_regime,
        )
    return GateResult.passed(gate, interval=interval, trend=snap.trend_strength)


def correlation_gate(
    decision: Decision,
    bars: pd.DataFrame,
    config: Config,
    ledger: AccountLedger,
    symbol: str,
    interval: str,
    returns_cache: Optional[ReturnsCache],
) -> GateResult:
    """With same-side exposure at the cap, veto when returns correlate with any same-side open symbol."""
    gate = "correlation"
    if not config.corr_filter_on:
        return GateResult.passed(gate)
    side_symbols = sorted({
        p.symbol for p in ledger.positions.values() if p.side.value == decision.signal.value and p.symbol != symbol
    })
    if len(side_symbols) < config.corr_max_open_same_side:
        return GateResult.passed(gate, same_side_open=len(side_symbols))
    cur = returns_vector(bars["close"].to_numpy(), config.corr_lookback)
    if len(cur) < 10 or returns_cache is None:
        return GateResult.passed(gate, same_side_open=len(side_symbols))
    high, max_corr = 0, None
    for other in side_symbols:
        vec = returns_cache.get(other, interval)
        if vec is None or len(vec) < 10:
            continue
        c = pearson(cur, vec)
        if c is None:
            continue
        max_corr = c if max_corr is None else max(max_corr, c)
        if c >= config.corr_min:
            high += 1
    if high > 0:
        return GateResult.veto(gate, "CORRELATION_HIGH", same_side_open=len(side_symbols), high_corr=high, corr_max=max_corr)
    return GateResult.passed(gate, same_side_open=len(side_symbols), corr_max=max_corr)


def pullback_gate(decision: Decision, bars: pd.DataFrame, config: Config) -> GateResult:
    """Bar touched the pullback zone and closed with a confirming body beyond the previous close."""
    gate = "pullback"
    if not config.require_pullback_entry:
        return GateResult.passed(gate)
    n = len(bars) - 1
    if n < 55 or decision.atr is None:
        return GateResult.veto(gate, "PULLBACK_INSUF")
    a = decision.atr
    m20, m50 = _at(sma(bars["close"], 20), n), _at(sma(bars["close"], 50), n)
    o, c, c_prev = float(bars["open"].iloc[n]), float(bars["close"].iloc[n]), float(bars["close"].iloc[n - 1])
    window = slice(max(0, n - 10), n + 1)
    if decision.signal is Signal.BUY:
        by_extreme = float(bars["high"].iloc[window].max()) - 0.5 * a
        by_ma = max(m20, m50) if m20 is not None and m50 is not None else m20
        zone = max(by_ma, by_extreme) if by_ma is not None else by_extreme
        touched = float(bars["low"].iloc[n]) <= zone
        confirmed = c > o and (c - o) > 0.2 * a and c > c_prev
    else:
        by_extreme = float(bars["low"].iloc[window].min()) + 0.5 * a
        by_ma = min(m20, m50) if m20 is not None and m50 is not None else m20
        zone = min(by_ma, by_extreme) if by_ma is not None else by_extreme
        touched = float(bars["high"].iloc[n]) >= zone
        confirmed = c < o and (o - c) > 0.2 * a and c < c_prev
    if not touched:
        return GateResult.veto(gate, "PULLBACK_NOT_TOUCHED", zone=zone)
    if not confirmed:
        return GateResult.veto(gate, "PULLBACK_NO_CONFIRM", zone=zone)
    return GateResult.passed(gate, zone=zone)


def rr_gate(idea: TradeIdea, config: Config) -> GateResult:
    rr = idea.reward_risk
    if rr < config.min_rr:
        return GateResult.veto("rr", "RR_LOW", rr=rr, min_rr=config.min_rr)
    return GateResult.passed("rr", rr=rr)


def cost_edge_gate(idea: TradeIdea, config: Config) -> GateResult:
    """Target move must cover round-trip fees, round-trip execution cost and the edge margin (all %)."""
    gate = "cost_edge"
    fee_rt = max(0.0, config.fee_pct) * 2
    exec_rt = exec_cost_pct_one_way(config) * 2
    move_pct = abs(idea.target - idea.entry) / max(1e-9, idea.entry) * 100.0
    stop_pct = abs(idea.entry - idea.stop) / max(1e-9, idea.entry) * 100.0
    min_move = fee_rt + exec_rt + config.edge_min_pct
    diag = dict(move_pct=move_pct, min_move_pct=min_move, fee_rt_pct=fee_rt, exec_rt_pct=exec_rt)
    if move_pct < min_move:
        return GateResult.veto(gate, "EDGE_COST", **diag)
    if config.min_net_r_target > 0:
        net_r = (move_pct - fee_rt - exec_rt) / max(1e-9, stop_pct)
        if net_r < config.min_net_r_target:
            return GateResult.veto(gate, "NET_R_LOW", net_r=net_r, **diag)
    return GateResult.passed(gate, **diag)


def ev_gate(idea: TradeIdea, ledger: AccountLedger, config: Config, qty_est: float) -> GateResult:
    """Expected value net of round-trip costs and estimated tax must be positive."""
    gate = "ev"
    win_usd = abs(idea.target - idea.entry) * qty_est
    loss_usd = abs(idea.entry - idea.stop) * qty_est
    total = ledger.wins + ledger.losses
    p_win = ledger.wins / max(1, total) if total >= config.ev_min_trades else config.ev_default_win_rate
    avg_win = ledger.gross_win / ledger.wins if ledger.wins > 0 else win_usd
    avg_loss = ledger.gross_loss / ledger.losses if ledger.losses > 0 else loss_usd
    cost_pct = max(0.0, config.fee_pct) * 2 + exec_cost_pct_one_way(config) * 2
    costs_usd = abs(idea.entry * qty_est) * cost_pct / 100.0
    gross_ev = p_win * avg_win - (1 - p_win) * avg_loss
    tax_est = max(0.0, gross_ev) * config.tax_pct / 100.0 if config.tax_on else 0.0
    ev = gross_ev - costs_usd - tax_est
    diag = dict(ev_net_usd=ev, pwin=p_win, avg_win=avg_win, avg_loss=avg_loss, fees_exec_usd=costs_usd, tax_est_usd=tax_est)
    if ev <= 0:
        return GateResult.veto(gate, "EV_NEGATIVE", **diag)
    return GateResult.passed(gate, **diag)


def rolling_edge_gate(ledger: AccountLedger, config: Config) -> GateResult:
    """
    Trailing expectancy (and optional win rate) over edge_window_trades closed trades.
    Passes until edge_gate_min_trades trades exist so the gate cannot starve itself.
    """
    gate = "rolling_edge"
    if not config.edge_gating:
        return GateResult.passed(gate)
    roll = ledger.rolling_edge(config.edge_window_trades)
    if roll.count < config.edge_gate_min_trades or roll.expectancy_usd is None:
        return GateResult.passed(gate, count=roll.count, warming_up=True)
    if roll.expectancy_usd <= config.min_rolling_expectancy_usd:
        return GateResult.veto(gate, "EDGE_EXPECTANCY", count=roll.count, expectancy=roll.expectancy_usd)
    if config.min_rolling_win_rate is not None and (roll.win_rate or 0.0) < config.min_rolling_win_rate:
        return GateResult.veto(gate, "EDGE_WINRATE", count=roll.count, win_rate=roll.win_rate)
    return GateResult.passed(gate, count=roll.count, expectancy=roll.expectancy_usd, win_rate=roll.win_rate)


def slippage_gate(
    idea: TradeIdea,
    ledger: AccountLedger,
    config: Config,
    qty_est: float,
    now: Optional[datetime],
) -> GateResult:
    """Estimated entry slippage above a ceiling vetoes and suspends entries for kill_switch_candles bars."""
    gate = "slippage"
    if not config.max_slippage_pct and not config.max_slippage_usd:
        return GateResult.passed(gate)
    notional = abs(idea.entry * qty_est)
    slip_usd = notional * max(0.0, config.slippage_rate)
    slip_pct = slip_usd / max(1e-9, notional)
    max_pct = config.max_slippage_pct or math.inf
    max_usd = config.max_slippage_usd or math.inf
    if slip_pct > max_pct or slip_usd > max_usd:
        reason = f"KILL_SWITCH_SLIPPAGE pct={slip_pct * 100:.3f} usd={slip_usd:.2f}"
        if now is not None:
            bar = timeframe_delta(idea.interval or config.timeframe)
            ledger.arm_kill_switch(now + bar * config.kill_switch_candles, reason)
        return GateResult.veto(gate, "KILL_SWITCH_SLIPPAGE", slip_pct=slip_pct, slip_usd=slip_usd)
    return GateResult.passed(gate, slip_pct=slip_pct, slip_usd=slip_usd)
