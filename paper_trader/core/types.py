"""
Core data types: signals, decisions, trade ideas, positions, closed trades, gate results.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class SignalSide(str, Enum):
    LONG = "BUY"
    SHORT = "SELL"

    @property
    def direction(self) -> int:
        return 1 if self is SignalSide.LONG else -1

    @property
    def closing_action(self) -> "SignalSide":
        return SignalSide.SHORT if self is SignalSide.LONG else SignalSide.LONG


class Regime(str, Enum):
    BULL = "BULL"
    CHOP = "CHOP"
    NON_BULL = "NON_BULL"


class ModelType(str, Enum):
    SCORE = "score"
    MOMENTUM = "momentum"
    PROBABILITY = "prob"


@dataclass(frozen=True)
class Decision:
    """
    One evaluation of a decision model on the last bar of a series.
    Superset record shared by all models; fields a model does not produce stay None/False.
    """
    model: str
    signal: Signal
    reason: str
    score: float = 0.0
    confidence: float = 0.0
    probability: Optional[float] = None
    last: Optional[float] = None
    atr: Optional[float] = None
    atr_pct: float = 0.0
    regime: Optional[Regime] = None
    bull_regime: bool = False
    bear_regime: bool = False
    slope_norm: float = 0.0
    breakout: bool = False
    breakout_flag: bool = False
    atr_expansion: bool = False
    volume_expansion: bool = False
    momentum_score: Optional[float] = None
    trend_strength: float = 0.0
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    ma200: Optional[float] = None
    rsi: Optional[float] = None
    rolling_expectancy: Optional[float] = None
    edge_trades: int = 0
    edge_ok: bool = True
    occurrences: Optional[int] = None
    successes: Optional[int] = None
    timestamp: Optional[datetime] = None
    reasons: tuple = ()

    @property
    def is_entry(self) -> bool:
        return self.signal in (Signal.BUY, Signal.SELL)


@dataclass(frozen=True)
class TradeIdea:
    """Entry candidate built from a Decision: nominal entry, stop, target and sizing factor."""
    symbol: str
    side: SignalSide
    entry: float
    stop: float
    target: float
    atr: float
    score: float = 0.0
    risk_mult: float = 1.0
    interval: str = ""
    opened_at: Optional[datetime] = None
    bar_index: Optional[int] = None
    regime_bull: bool = False
    breakout_flag: bool = False
    atr_expansion: bool = False
    reasons: tuple = ()

    @property
    def stop_distance(self) -> float:
        return abs(self.entry - self.stop)

    @property
    def reward_risk(self) -> float:
        return abs(self.target - self.entry) / max(1e-9, self.stop_distance)


@dataclass(frozen=True)
class PriceObservation:
    """
    One price update for an open position. Live ticks carry a single price (high = low = price);
    backtest bars carry the bar range so stop/target touches inside the bar are seen.
    """
    price: float
    high: Optional[float] = None
    low: Optional[float] = None
    time: Optional[datetime] = None
    bar_index: Optional[int] = None

    @property
    def bar_high(self) -> float:
        return self.price if self.high is None else self.high

    @property
    def bar_low(self) -> float:
        return self.price if self.low is None else self.low


@dataclass
class Position:
    """Open position state. Owned and mutated by portfolio.lifecycle only."""
    id: str
    symbol: str
    side: SignalSide
    entry_price: float
    stop_price: float
    target_price: float
    quantity: float
    initial_quantity: float
    risk_usd: float
    initial_risk_usd: float
    initial_stop_distance: float
    fee_pct: float
    atr: float
    opened_at: Optional[datetime] = None
    opened_bar: Optional[int] = None
    interval: str = ""
    risk_mult: float = 1.0
    fee_entry_total: float = 0.0
    fee_entry_remaining: float = 0.0
    fee_exit_total: float = 0.0
    tax_total: float = 0.0
    realized_gross: float = 0.0
    realized_net: float = 0.0
    peak: float = 0.0
    last_price: float = 0.0
    moved_break_even: bool = False
    partial_done: bool = False
    trailing_active: bool = False
    max_favorable_r: float = 0.0
    max_adverse_r: float = 0.0
    tax_on: bool = False
    tax_pct: float = 0.0
    tax_apply_cash: bool = True
    regime_bull: bool = False
    breakout_flag: bool = False
    atr_expansion: bool = False
    reasons: tuple = ()

    @property
    def fee_total(self) -> float:
        return self.fee_entry_total + self.fee_exit_total

    def unrealized_pnl(self, price: float) -> float:
        return self.side.direction * (price - self.entry_price) * self.quantity

    def r_multiple(self, price: float) -> float:
        """Signed R of price relative to the initial risked distance."""
        return self.side.direction * (price - self.entry_price) / max(1e-9, self.initial_stop_distance)


@dataclass
class ClosedTrade:
    """Fully closed position for analytics (all legs aggregated)."""
    id: str
    symbol: str
    side: SignalSide
    quantity: float
    entry_price: float
    exit_price: float
    gross_pnl: float
    fees: float
    tax: float
    net_pnl: float
    net_r: float
    exit_reason: str
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    bars_held: Optional[int] = None
    max_favorable_r: float = 0.0
    max_adverse_r: float = 0.0
    partial_done: bool = False
    regime_bull: bool = False
    breakout_flag: bool = False
    atr_expansion: bool = False

    @property
    def is_win(self) -> bool:
        return self.net_pnl > 0


@dataclass
class GateResult:
    """Outcome of one gate or of the whole pipeline."""
    ok: bool
    reason: str = ""
    gate: str = ""
    diagnostics: dict = field(default_factory=dict)
    idea: Optional[TradeIdea] = None

    @classmethod
    def passed(cls, gate: str = "", **diagnostics) -> "GateResult":
        return cls(ok=True, reason="OK", gate=gate, diagnostics=diagnostics)

    @classmethod
    def veto(cls, gate: str, reason: str, **diagnostics) -> "GateResult":
        return cls(ok=False, reason=reason, gate=gate, diagnostics=diagnostics)
