"""
Account ledger: cash, realized PnL, fees, tax, win/loss counters, streaks, high-water mark,
lock state, risk-cut mode and the bounded closed-trade history.
One instance per run; lifecycle functions and the gate pipeline receive it explicitly.
Invariant: cash == initial_cash + realized - fee_paid - tax_paid.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from typing import Deque, Dict, List, Optional

from paper_trader.core.audit import AuditLog, EventKind
from paper_trader.core.config import Config
from paper_trader.core.types import ClosedTrade, Position, SignalSide
from paper_trader.portfolio.costs import tax_on_profit

logger = logging.getLogger("paper_trader.ledger")

EPS = 1e-9


@dataclass
class RollingEdge:
    """Net expectancy and win rate over the last N closed trades."""
    count: int
    expectancy_usd: Optional[float]
    win_rate: Optional[float]


class AccountLedger:
    """
    Explicit account state. Entries are blocked while `locked`; open positions are still
    managed. A lock only lifts through unlock().
    """

    def __init__(self, initial_cash: float = 100.0, history_size: int = 1200, audit: Optional[AuditLog] = None):
        self.initial_cash = float(initial_cash)
        self.cash = float(initial_cash)
        self.realized = 0.0
        self.gross_win = 0.0
        self.gross_loss = 0.0
        self.fee_paid = 0.0
        self.tax_reserved = 0.0
        self.tax_paid = 0.0
        self.wins = 0
        self.losses = 0
        self.loss_streak = 0
        self.net_loss_streak = 0
        self.high_water_mark = float(initial_cash)
        self.locked = False
        self.lock_reason = ""
        self.positions: Dict[str, Position] = {}
        self.history: Deque[ClosedTrade] = deque(maxlen=history_size)
        self.cooldown_until: Dict[str, datetime] = {}
        self.kill_switch_until: Optional[datetime] = None
        self.kill_switch_reason = ""
        self.day: Optional[date] = None
        self.day_anchor_cash = float(initial_cash)
        self.day_peak_cash = float(initial_cash)
        self.week: Optional[tuple] = None
        self.trades_this_week = 0
        self.risk_cut_active = False
        self.risk_cut_remaining = 0
        self.risk_cut_anchor: Optional[float] = None
        self.audit = audit
        self._seq = 0

    # --- bookkeeping -------------------------------------------------------

    def next_position_id(self, symbol: str) -> str:
        self._seq += 1
        return f"{symbol}-{self._seq}"

    def emit(self, kind: EventKind, **payload) -> None:
        if self.audit is not None:
            self.audit.emit(kind, **payload)

    def register_fee(self, fee: float) -> None:
        """Fees leave cash at execution time."""
        if fee <= 0:
            return
        self.fee_paid += fee
        self.cash -= fee

    def apply_tax(self, taxable: float, tax_on: bool, tax_pct: float, apply_cash: bool) -> float:
        """Tax on positive taxable profit: paid from cash or only reserved."""
        if not tax_on:
            return 0.0
        tax = tax_on_profit(taxable, tax_pct)
        if tax <= 0:
            return 0.0
        if apply_cash:
            self.tax_paid += tax
            self.cash -= tax
        else:
            self.tax_reserved += tax
        return tax

    def book_realized(self, pnl: float) -> None:
        """Gross PnL of one closing leg (partial or final)."""
        self.cash += pnl
        self.realized += pnl

    def record_close(self, trade: ClosedTrade, config: Config) -> None:
        """Per-trade counters, streaks, high-water mark and risk-cut transitions."""
        gross = trade.gross_pnl
        if gross > EPS:
            self.wins += 1
            self.gross_win += gross
            self.loss_streak = 0
        elif gross < -EPS:
            self.losses += 1
            self.gross_loss += abs(gross)
            self.loss_streak += 1
            if config.max_consecutive_losses > 0 and self.loss_streak >= config.max_consecutive_losses:
                self.lock(f"LOSS_STREAK {self.loss_streak} >= {config.max_consecutive_losses}")
        else:
            self.loss_streak = 0

        self.history.append(trade)

        if trade.net_pnl < -EPS:
            self.net_loss_streak += 1
        elif trade.net_pnl > EPS:
            self.net_loss_streak = 0

        self.mark_high_water()

        if (
            config.loss_streak_risk_cut_on
            and self.net_loss_streak >= config.loss_streak_cut_after
            and not self.risk_cut_active
        ):
            self.risk_cut_active = True
            self.risk_cut_remaining = config.loss_streak_cut_trades
            self.risk_cut_anchor = self.high_water_mark
            logger.info(
                "Risk cut on after %d net losses: factor=%.2f trades=%d hwm=%.2f",
                self.net_loss_streak, config.loss_streak_cut_factor, self.risk_cut_remaining, self.high_water_mark,
            )
            self.emit(
                EventKind.RISK_CUT, state="ON", factor=config.loss_streak_cut_factor,
                trades=self.risk_cut_remaining, hwm=self.high_water_mark,
            )

        if self.risk_cut_active:
            recovered = self.risk_cut_anchor is not None and self.risk_cut_anchor > 0 and self.cash >= self.risk_cut_anchor
            exhausted = self.risk_cut_remaining <= 0
            if recovered or exhausted:
                self.clear_risk_cut("HWM_RECOVERED" if recovered else "WINDOW_DONE")

    def clear_risk_cut(self, why: str) -> None:
        self.risk_cut_active = False
        self.risk_cut_remaining = 0
        self.risk_cut_anchor = None
        self.net_loss_streak = 0
        logger.info("Risk cut off (%s)", why)
        self.emit(EventKind.RISK_CUT, state="OFF", why=why)

    def on_open(self, position: Position, config: Config, cooldown_until: Optional[datetime] = None) -> None:
        self.positions[position.id] = position
        if self.risk_cut_active and self.risk_cut_remaining > 0:
            self.risk_cut_remaining -= 1
        self.trades_this_week += 1
        if cooldown_until is not None:
            self.cooldown_until[position.symbol] = cooldown_until

    def remove(self, position: Position) -> None:
        self.positions.pop(position.id, None)

    # --- derived state -----------------------------------------------------

    def risk_multiplier(self, config: Config) -> float:
        """Loss-streak size factor, clamped to [0.1, 1] while risk cut is active."""
        if not self.risk_cut_active or not config.loss_streak_risk_cut_on:
            return 1.0
        return max(0.1, min(1.0, config.loss_streak_cut_factor))

    def mark_high_water(self) -> None:
        self.high_water_mark = max(self.high_water_mark, self.cash)

    def drawdown_from_high(self) -> float:
        """Cash drawdown from the high-water mark as a fraction."""
        high = max(EPS, self.high_water_mark)
        return max(0.0, (high - self.cash) / high)

    def daily_drawdown_pct(self) -> float:
        """Cash drawdown from the day anchor in percent."""
        return max(0.0, (self.day_anchor_cash - self.cash) / max(EPS, self.day_anchor_cash) * 100.0)

    def profit_protection_factor(self) -> float:
        """0.5 once 35% or more of the day's profit has been given back."""
        day_profit = max(0.0, self.cash - self.day_anchor_cash)
        if day_profit <= 0:
            return 1.0
        giveback = max(0.0, self.day_peak_cash - self.cash)
        return 0.5 if giveback / max(EPS, day_profit) >= 0.35 else 1.0

    def equity(self) -> float:
        """Cash plus unrealized PnL of open positions at their last seen price."""
        return self.cash + sum(p.unrealized_pnl(p.last_price) for p in self.positions.values() if p.last_price)

    def open_positions(self, symbol: Optional[str] = None, side: Optional[SignalSide] = None) -> List[Position]:
        return [
            p for p in self.positions.values()
            if (symbol is None or p.symbol == symbol) and (side is None or p.side is side)
        ]

    def rolling_edge(self, window: int) -> RollingEdge:
        if not self.history:
            return RollingEdge(count=0, expectancy_usd=None, win_rate=None)
        recent = list(self.history)[-max(1, int(window)):]
        count = len(recent)
        total = sum(t.net_pnl for t in recent)
        wins = sum(1 for t in recent if t.net_pnl > 0)
        return RollingEdge(count=count, expectancy_usd=total / count, win_rate=wins / count)

    # --- calendar ----------------------------------------------------------

    def roll_day(self, day: date) -> None:
        """New calendar day re-anchors daily drawdown; ISO week change resets the weekly count."""
        if self.day != day:
            self.day = day
            self.day_anchor_cash = self.cash
            self.day_peak_cash = self.cash
            logger.debug("New day %s: anchor cash %.2f", day, self.cash)
        self.day_peak_cash = max(self.day_peak_cash, self.cash)
        week = tuple(day.isocalendar())[:2]
        if self.week != week:
            self.week = week
            self.trades_this_week = 0

    # --- locks -------------------------------------------------------------

    def lock(self, reason: str) -> None:
        if self.locked:
            return
        self.locked = True
        self.lock_reason = reason
        logger.warning("Entries locked: %s", reason)
        self.emit(EventKind.LOCK, reason=reason)

    def unlock(self) -> None:
        """Manual reset: lock, loss streaks, risk cut, kill switch; re-anchors the day at current cash."""
        self.locked = False
        self.lock_reason = ""
        self.loss_streak = 0
        self.net_loss_streak = 0
        self.risk_cut_active = False
        self.risk_cut_remaining = 0
        self.risk_cut_anchor = None
        self.kill_switch_until = None
        self.kill_switch_reason = ""
        self.day_anchor_cash = self.cash
        self.day_peak_cash = self.cash
        logger.info("Entries unlocked")
        self.emit(EventKind.UNLOCK)

    def kill_switch_active(self, now: Optional[datetime]) -> bool:
        if self.kill_switch_until is None or now is None:
            return False
        return now < self.kill_switch_until

    def arm_kill_switch(self, until: datetime, reason: str) -> None:
        self.kill_switch_until = until
        self.kill_switch_reason = reason
        logger.warning("Kill switch armed until %s: %s", until, reason)
        self.emit(EventKind.KILL_SWITCH, until=until, reason=reason)

    def in_cooldown(self, symbol: str, now: Optional[datetime]) -> bool:
        until = self.cooldown_until.get(symbol)
        return until is not None and now is not None and now < until

    # --- reporting ---------------------------------------------------------

    def rollup(self) -> dict:
        n = self.wins + self.losses
        return {
            "trades": n,
            "win_rate_pct": self.wins / n * 100.0 if n else 0.0,
            "avg_win_usd": self.gross_win / self.wins if self.wins else 0.0,
            "avg_loss_usd": self.gross_loss / self.losses if self.losses else 0.0,
            "pf": self.gross_win / self.gross_loss if self.gross_loss > 0 else 0.0,
            "realized_usd": self.realized,
            "fees_usd": self.fee_paid,
            "tax_reserved_usd": self.tax_reserved,
            "tax_paid_usd": self.tax_paid,
        }
