"""
Ordered admission pipeline between a Decision and an open position.
The first veto short-circuits: later gates (and their market-data fetches) never run.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import pandas as pd

from paper_trader.core.audit import EventKind
from paper_trader.core.config import Config
from paper_trader.core.types import Decision, GateResult, SignalSide, TradeIdea
from paper_trader.portfolio.ledger import AccountLedger
from paper_trader.risk import gates
from paper_trader.risk.correlation import ReturnsCache

logger = logging.getLogger("paper_trader.risk")


@dataclass
class GateContext:
    """Per-evaluation collaborators. htf is anything with get_snapshot(symbol, interval)."""
    symbol: str = ""
    interval: str = ""
    now: Optional[datetime] = None
    bar_index: Optional[int] = None
    htf: Any = None
    returns_cache: Optional[ReturnsCache] = None


def _bar_time(bars: pd.DataFrame) -> Optional[datetime]:
    if "time" not in bars.columns or bars.empty:
        return None
    return pd.Timestamp(bars["time"].iloc[-1]).to_pydatetime()


def build_trade_idea(
    decision: Decision,
    config: Config,
    ledger: AccountLedger,
    symbol: str,
    interval: str = "",
    now: Optional[datetime] = None,
    bar_index: Optional[int] = None,
) -> TradeIdea:
    """
    Stop at max(atr * stop_atr_mult, entry * stop_min_pct) from the last price, target at
    r_target times that distance. Counter-trend ideas (EMA order against the regime) and
    days that gave back profit are sized at half risk.
    """
    side = SignalSide(decision.signal.value)
    entry = float(decision.last)
    stop_dist = max(float(decision.atr) * config.stop_atr_mult, entry * config.stop_min_pct)
    stop = entry - side.direction * stop_dist
    target = entry + side.direction * stop_dist * config.r_target

    risk_mult = 1.0
    if decision.ema_fast is not None and decision.ema_slow is not None:
        counter_bull = decision.bull_regime and decision.ema_fast < decision.ema_slow
        counter_bear = decision.bear_regime and decision.ema_fast > decision.ema_slow
        if counter_bull or counter_bear:
            risk_mult *= 0.5
    risk_mult *= ledger.profit_protection_factor()

    return TradeIdea(
        symbol=symbol,
        side=side,
        entry=entry,
        stop=stop,
        target=target,
        atr=float(decision.atr),
        score=decision.score,
        risk_mult=risk_mult,
        interval=interval or config.timeframe,
        opened_at=now,
        bar_index=bar_index,
        regime_bull=decision.bull_regime,
        breakout_flag=decision.breakout_flag,
        atr_expansion=decision.atr_expansion,
        reasons=decision.reasons,
    )


def estimate_quantity(idea: TradeIdea, ledger: AccountLedger, config: Config) -> float:
    """Quantity open_position would size at the nominal entry."""
    risk_usd = max(0.0, ledger.cash) * config.risk_fraction * idea.risk_mult * ledger.risk_multiplier(config)
    return risk_usd / max(1e-9, idea.stop_distance)


def run_gate_pipeline(
    decision: Decision,
    bars: pd.DataFrame,
    config: Config,
    ledger: AccountLedger,
    context: Optional[GateContext] = None,
) -> GateResult:
    """
    Account checks, then gates 1-10: trend, chop, higher timeframe, correlation, pullback,
    reward/risk, cost edge, expected value, rolling edge, slippage kill switch.
    Returns the first veto, or ok with the TradeIdea attached.
    """
    ctx = context or GateContext()
    symbol = ctx.symbol or config.symbol
    interval = ctx.interval or config.timeframe
    now = ctx.now if ctx.now is not None else _bar_time(bars)

    result = gates.account_checks(decision, ledger, config, symbol, now)
    if not result.ok:
        return _vetoed(ledger, result, symbol, decision)

    idea = build_trade_idea(decision, config, ledger, symbol, interval, now, ctx.bar_index)
    qty_est = estimate_quantity(idea, ledger, config)

    checks = (
        lambda: gates.trend_gate(decision, bars, config),
        lambda: gates.chop_gate(decision, bars, config),
        lambda: gates.mtf_gate(decision, config, symbol, ctx.htf),
        lambda: gates.correlation_gate(decision, bars, config, ledger, symbol, interval, ctx.returns_cache),
        lambda: gates.pullback_gate(decision, bars, config),
        lambda: gates.rr_gate(idea, config),
        lambda: gates.cost_edge_gate(idea, config),
        lambda: gates.ev_gate(idea, ledger, config, qty_est),
        lambda: gates.rolling_edge_gate(ledger, config),
        lambda: gates.slippage_gate(idea, ledger, config, qty_est, now),
    )
    diagnostics: dict = {}
    for check in checks:
        result = check()
        if not result.ok:
            return _vetoed(ledger, result, symbol, decision)
        diagnostics.update(result.diagnostics)

    payload = {k: v for k, v in diagnostics.items() if isinstance(v, (int, float, bool, str)) or v is None}
    payload.update(
        symbol=symbol, interval=interval, side=idea.side, entry=idea.entry, stop=idea.stop,
        target=idea.target, riskx=idea.risk_mult, qty_est=qty_est, score=decision.score,
    )
    ledger.emit(EventKind.ENTRY_CTX, **payload)
    return GateResult(ok=True, reason="OK", gate="all", diagnostics=diagnostics, idea=idea)


def _vetoed(ledger: AccountLedger, result: GateResult, symbol: str, decision: Decision) -> GateResult:
    if decision.is_entry:
        logger.debug("Veto %s/%s for %s", result.gate, result.reason, symbol)
    ledger.emit(EventKind.GATE_VETO, gate=result.gate, reason=result.reason, symbol=symbol)
    return result
