"""
Backtest engine: bar-by-bar replay through the same decision model, gate pipeline and
position lifecycle used live. No lookahead: indicators are causal and the model and gates
only see the prefix ending at the current bar.
"""

from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

import pandas as pd

from paper_trader.analytics.metrics import PerformanceMetrics, max_drawdown, metrics_from_trades
from paper_trader.backtesting.htf import ResampledHtfProvider
from paper_trader.core.audit import AuditLog, EventKind
from paper_trader.core.config import Config
from paper_trader.core.types import ClosedTrade, ModelType, Position, PriceObservation, Signal
from paper_trader.portfolio.ledger import AccountLedger
from paper_trader.portfolio.lifecycle import advance_position, close_position, open_position
from paper_trader.risk.pipeline import GateContext, run_gate_pipeline
from paper_trader.strategies.edge import EdgeTracker
from paper_trader.strategies.factory import build_model

logger = logging.getLogger("paper_trader.backtest")


@dataclass
class BacktestResult:
    """Backtest output: trades, equity curve, block-reason tallies and metrics."""
    symbol: str
    model_type: str
    trades: List[ClosedTrade] = field(default_factory=list)
    net_profit: float = 0.0
    win_rate: float = 0.0
    expectancy: float = 0.0
    max_drawdown: float = 0.0
    equity_curve: List[float] = field(default_factory=list)
    block_reasons: Dict[str, int] = field(default_factory=dict)
    dominant_block_reason: Optional[str] = None
    metrics: Optional[PerformanceMetrics] = None
    error: Optional[str] = None

    @property
    def num_trades(self) -> int:
        return len(self.trades)


def _bar_time(row: pd.Series) -> Optional[datetime]:
    t = row.get("time")
    if t is None or pd.isna(t):
        return None
    return pd.Timestamp(t).to_pydatetime()


def _observation(row: pd.Series, i: int) -> PriceObservation:
    return PriceObservation(
        price=float(row["close"]),
        high=float(row["high"]),
        low=float(row["low"]),
        time=_bar_time(row),
        bar_index=i,
    )


def run_backtest(
    symbol: str,
    model_type: Union[str, ModelType],
    bars: pd.DataFrame,
    config: Optional[Config] = None,
    edge: Optional[EdgeTracker] = None,
    audit: Optional[AuditLog] = None,
) -> BacktestResult:
    """
    Replay `bars` (columns: time, open, high, low, close, volume) from the warm-up index.
    While flat: decision on bars[:i + 1], then the gate pipeline, then open at the bar close.
    While in a position: one lifecycle step per bar with the bar's high/low range.
    A position still open after the last bar is closed at the last close (FORCED_EOD).
    Too few bars returns a result with error set and no trades.
    """
    config = config or Config()
    model = build_model(model_type, config)
    n = 0 if bars is None else len(bars)
    min_len = max(config.backtest_min_bars, model.min_bars)
    if n < min_len:
        logger.warning("Backtest %s %s: %d bars, need %d", symbol, model.name, n, min_len)
        return BacktestResult(
            symbol=symbol,
            model_type=model.name,
            equity_curve=[config.initial_cash],
            block_reasons={"INSUFFICIENT_DATA": 1},
            dominant_block_reason="INSUFFICIENT_DATA",
            error=f"INSUFFICIENT_DATA: {n} bars, need {min_len}",
        )

    edge = edge if edge is not None else EdgeTracker(config.edge_window)
    ledger = AccountLedger(config.initial_cash, audit=audit)
    bars = bars.reset_index(drop=True)
    df = model.compute_indicators(bars)
    htf = ResampledHtfProvider(bars, config) if config.mtf_confirm_on else None

    warmup = max(config.backtest_warmup, model.min_bars - 1)
    equity_curve: List[float] = [ledger.cash]
    trades: List[ClosedTrade] = []
    blocks: Counter = Counter()
    position: Optional[Position] = None

    for i in range(warmup, n):
        row = df.iloc[i]
        now = _bar_time(row)
        if now is not None:
            ledger.roll_day(now.date())

        if position is not None:
            out = advance_position(ledger, position, _observation(row, i), config)
            if isinstance(out, ClosedTrade):
                trades.append(out)
                edge.add_trade(out.net_pnl)
                position = None
        else:
            view = df.iloc[: i + 1]
            decision = model.decide(view, edge)
            if decision.signal is Signal.HOLD:
                blocks[decision.reason] += 1
            else:
                if htf is not None:
                    htf.set_cursor(i)
                ctx = GateContext(symbol=symbol, interval=config.timeframe, now=now, bar_index=i, htf=htf)
                gate = run_gate_pipeline(decision, view, config, ledger, ctx)
                if not gate.ok:
                    blocks[gate.reason] += 1
                else:
                    position = open_position(ledger, gate.idea, config)
                    if position is None:
                        blocks["ZERO_SIZE"] += 1

        equity_curve.append(ledger.equity())

    if position is not None:
        last = df.iloc[n - 1]
        trade = close_position(ledger, position, float(last["close"]), "FORCED_EOD", config, _observation(last, n - 1))
        trades.append(trade)
        edge.add_trade(trade.net_pnl)
        equity_curve.append(ledger.cash)

    metrics = metrics_from_trades(trades, equity_curve, config.initial_cash)
    dominant = blocks.most_common(1)[0][0] if blocks else None
    result = BacktestResult(
        symbol=symbol,
        model_type=model.name,
        trades=trades,
        net_profit=ledger.cash - config.initial_cash,
        win_rate=metrics.win_rate,
        expectancy=metrics.expectancy,
        max_drawdown=max_drawdown(equity_curve),
        equity_curve=equity_curve,
        block_reasons=dict(blocks),
        dominant_block_reason=dominant,
        metrics=metrics,
    )
    logger.info(
        "Backtest %s %s: trades=%d net=%.2f win=%.1f%% exp=%.4f mdd=%.2f%% top_block=%s",
        symbol, model.name, len(trades), result.net_profit, result.win_rate * 100, result.expectancy,
        result.max_drawdown * 100, dominant,
    )
    if audit is not None:
        audit.emit(
            EventKind.BACKTEST, symbol=symbol, model=model.name, trades=len(trades), net=result.net_profit,
            win_rate=result.win_rate, expectancy=result.expectancy, max_dd=result.max_drawdown, top_block=dominant,
        )
    return result
