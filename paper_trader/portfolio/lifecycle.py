"""
Position lifecycle: open, advance on each price observation, partial and full close.

advance_position() applies, in order:
  1. peak and favorable/adverse excursion (R against the initial stop distance)
  2. partial exit (optional stop to break-even)
  3. break-even
  4. ATR trailing stop (never loosens)
  5. time stop
  6. auto profit
  7. stop / target (stop checked first; fills at the crossed level)
Every fill goes through the execution-cost model; fees leave cash on entry and on each exit.
"""

from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Optional, Union

import pandas as pd

from paper_trader.core.audit import EventKind
from paper_trader.core.config import Config
from paper_trader.core.types import ClosedTrade, Position, PriceObservation, SignalSide, TradeIdea
from paper_trader.portfolio.costs import apply_execution, fee_usd
from paper_trader.portfolio.ledger import AccountLedger
from paper_trader.utils.timeframes import timeframe_delta

logger = logging.getLogger("paper_trader.lifecycle")

QTY_EPS = 1e-10


def open_position(ledger: AccountLedger, idea: TradeIdea, config: Config) -> Optional[Position]:
    """
    Open a position sized by fixed-fractional risk:
    risk_usd = cash * risk_fraction * idea.risk_mult * ledger.risk_multiplier(config)
    quantity = risk_usd / |entry_exec - stop|, notional capped at cash * max_position_pct_capital %.
    Returns None for degenerate prices or zero size.
    """
    entry_exec = apply_execution(idea.side, idea.entry, config)
    if entry_exec <= 0 or not math.isfinite(idea.stop):
        logger.warning("Open skipped for %s: invalid entry %.8f", idea.symbol, idea.entry)
        return None

    risk_mult = idea.risk_mult * ledger.risk_multiplier(config)
    risk_usd = max(0.0, ledger.cash) * config.risk_fraction * risk_mult
    stop_dist = max(1e-9, abs(entry_exec - idea.stop))
    qty = risk_usd / stop_dist
    max_notional = max(0.0, ledger.cash) * config.max_position_pct_capital / 100.0
    if qty * entry_exec > max_notional:
        qty = max_notional / entry_exec
    if qty <= QTY_EPS:
        logger.warning("Open skipped for %s: zero quantity (cash %.2f)", idea.symbol, ledger.cash)
        return None

    fee_pct = config.fee_pct
    fee_entry = fee_usd(qty * entry_exec, fee_pct)
    ledger.register_fee(fee_entry)

    position = Position(
        id=ledger.next_position_id(idea.symbol),
        symbol=idea.symbol,
        side=idea.side,
        entry_price=entry_exec,
        stop_price=idea.stop,
        target_price=idea.target,
        quantity=qty,
        initial_quantity=qty,
        risk_usd=risk_usd,
        initial_risk_usd=risk_usd,
        initial_stop_distance=stop_dist,
        fee_pct=fee_pct,
        atr=idea.atr,
        opened_at=idea.opened_at,
        opened_bar=idea.bar_index,
        interval=idea.interval or config.timeframe,
        risk_mult=risk_mult,
        fee_entry_total=fee_entry,
        fee_entry_remaining=fee_entry,
        peak=entry_exec,
        last_price=entry_exec,
        tax_on=config.tax_on,
        tax_pct=config.tax_pct,
        tax_apply_cash=config.tax_apply_cash,
        regime_bull=idea.regime_bull,
        breakout_flag=idea.breakout_flag,
        atr_expansion=idea.atr_expansion,
        reasons=idea.reasons,
    )

    cooldown_until = None
    if config.cooldown_candles > 0 and idea.opened_at is not None:
        cooldown_until = idea.opened_at + timeframe_delta(position.interval) * config.cooldown_candles
    ledger.on_open(position, config, cooldown_until)

    logger.info(
        "OPEN %s %s %s qty=%.6f entry=%.6f stop=%.6f target=%.6f risk=%.2f riskx=%.2f",
        position.id, position.side.value, position.symbol, qty, entry_exec, idea.stop, idea.target,
        risk_usd, risk_mult,
    )
    ledger.emit(
        EventKind.OPEN, trade=position.id, side=position.side, symbol=position.symbol,
        interval=position.interval, score=idea.score, riskx=risk_mult, fee_entry_usd=fee_entry,
        fee_pct=fee_pct, tax_on=position.tax_on, entry_mark=idea.entry, entry_exec=entry_exec,
        stop=idea.stop, target=idea.target, qty=qty,
    )
    return position


def advance_position(
    ledger: AccountLedger,
    position: Position,
    observation: PriceObservation,
    config: Config,
) -> Union[Position, ClosedTrade]:
    """One lifecycle transition. Returns the still-open Position or the ClosedTrade."""
    price = observation.price
    high, low = observation.bar_high, observation.bar_low
    long_side = position.side is SignalSide.LONG
    position.last_price = price

    # 1. peak and excursion
    position.peak = max(position.peak, price) if long_side else min(position.peak, price)
    r = position.r_multiple(price)
    position.max_favorable_r = max(position.max_favorable_r, max(0.0, r))
    position.max_adverse_r = max(position.max_adverse_r, max(0.0, -r))

    # 2. partial
    if config.partial_on and not position.partial_done and r >= config.partial_at_r:
        closed = close_partial(
            ledger, position, price, config.partial_pct, f"R>={config.partial_at_r:.1f}", config, observation
        )
        position.partial_done = True
        if closed is not None:
            return closed
        if config.be_after_partial_on:
            _move_stop(ledger, position, position.entry_price, "BE_AFTER_PARTIAL")
            position.moved_break_even = True

    # 3. break-even
    if not position.moved_break_even and config.break_even_r > 0 and r >= config.break_even_r:
        _move_stop(ledger, position, position.entry_price, "BREAK_EVEN")
        position.moved_break_even = True

    # 4. trailing
    if config.atr_trail > 0 and position.atr:
        trail = position.atr * config.atr_trail
        new_stop = position.peak - trail if long_side else position.peak + trail
        if (long_side and new_stop > position.stop_price) or (not long_side and new_stop < position.stop_price):
            position.stop_price = new_stop
            position.trailing_active = True

    # 5. time stop
    if config.time_stop_on:
        held = bars_elapsed(position, observation)
        if held is not None and held >= config.time_stop_candles:
            return close_position(ledger, position, price, "TIME_STOP", config, observation)

    # 6. auto profit
    if config.auto_profit_on:
        notional = max(1e-9, abs(position.entry_price * position.quantity))
        pct = position.unrealized_pnl(price) / notional * 100.0
        if pct >= config.auto_profit_pct:
            return close_position(ledger, position, price, "AUTO_PROFIT", config, observation)

    # 7. stop / target
    stop_hit = low <= position.stop_price if long_side else high >= position.stop_price
    if stop_hit:
        return close_position(ledger, position, position.stop_price, _stop_reason(position), config, observation)
    target_hit = high >= position.target_price if long_side else low <= position.target_price
    if target_hit:
        return close_position(ledger, position, position.target_price, "TARGET", config, observation)
    return position


def bars_elapsed(position: Position, observation: PriceObservation) -> Optional[int]:
    """Whole bars since entry, by bar index when both sides have one, else by timestamps."""
    if observation.bar_index is not None and position.opened_bar is not None:
        return observation.bar_index - position.opened_bar
    if observation.time is not None and position.opened_at is not None:
        elapsed = pd.Timestamp(observation.time) - pd.Timestamp(position.opened_at)
        return int(elapsed // timeframe_delta(position.interval))
    return None


def close_partial(
    ledger: AccountLedger,
    position: Position,
    exit_price: float,
    pct: float,
    reason: str,
    config: Config,
    observation: Optional[PriceObservation] = None,
) -> Optional[ClosedTrade]:
    """
    Close a fraction (clamped to [0.01, 0.90]) of the position. Entry fee is allocated pro rata.
    Returns a ClosedTrade only if the remainder became negligible.
    """
    pct = max(0.01, min(0.90, pct))
    pre_qty = position.quantity
    qty_close = pre_qty * pct
    if qty_close <= 1e-12:
        return None

    px = apply_execution(position.side.closing_action, exit_price, config)
    fee_exit = fee_usd(px * qty_close, position.fee_pct)
    ledger.register_fee(fee_exit)
    position.fee_exit_total += fee_exit

    fee_entry_part = position.fee_entry_remaining * (qty_close / max(1e-12, pre_qty))
    position.fee_entry_remaining = max(0.0, position.fee_entry_remaining - fee_entry_part)

    gross = position.side.direction * (px - position.entry_price) * qty_close
    ledger.book_realized(gross)
    taxable = gross - fee_entry_part - fee_exit
    tax = ledger.apply_tax(taxable, position.tax_on, position.tax_pct, position.tax_apply_cash)

    position.quantity = pre_qty - qty_close
    position.risk_usd *= 1 - pct
    position.realized_gross += gross
    position.realized_net += gross - fee_entry_part - fee_exit - tax
    position.tax_total += tax

    logger.info(
        "PARTIAL %s %s %d%% pnl=%.2f fee_exit=%.4f tax=%.4f qty_left=%.6f",
        position.id, position.symbol, round(pct * 100), gross, fee_exit, tax, position.quantity,
    )
    ledger.emit(
        EventKind.PARTIAL, trade=position.id, side=position.side, symbol=position.symbol,
        close_pct=round(pct * 100), reason=reason, pnl_usd=gross, taxable_usd=taxable,
        fee_exit_usd=fee_exit, fee_entry_alloc_usd=fee_entry_part, tax_usd=tax,
        exit_mark=exit_price, exit_exec=px, qty_left=position.quantity,
    )
    if position.quantity <= QTY_EPS:
        position.quantity = 0.0
        return _finalize(ledger, position, px, "TINY_REMAINDER", config, observation)
    return None


def close_position(
    ledger: AccountLedger,
    position: Position,
    exit_price: float,
    reason: str,
    config: Config,
    observation: Optional[PriceObservation] = None,
) -> ClosedTrade:
    """Close the remaining quantity at exit_price (through the execution model). reason MANUAL for user closes."""
    qty = position.quantity
    px = apply_execution(position.side.closing_action, exit_price, config)
    fee_exit = fee_usd(px * qty, position.fee_pct)
    ledger.register_fee(fee_exit)
    position.fee_exit_total += fee_exit

    gross = position.side.direction * (px - position.entry_price) * qty
    ledger.book_realized(gross)
    fee_entry_part = position.fee_entry_remaining
    position.fee_entry_remaining = 0.0
    taxable = gross - fee_entry_part - fee_exit
    tax = ledger.apply_tax(taxable, position.tax_on, position.tax_pct, position.tax_apply_cash)

    position.realized_gross += gross
    position.realized_net += gross - fee_entry_part - fee_exit - tax
    position.tax_total += tax
    position.quantity = 0.0

    ledger.emit(
        EventKind.CLOSE, trade=position.id, side=position.side, symbol=position.symbol, reason=reason,
        pnl_usd=gross, taxable_usd=taxable, fee_exit_usd=fee_exit, fee_trade_total_usd=position.fee_total,
        tax_usd=tax, exit_mark=exit_price, exit_exec=px,
    )
    return _finalize(ledger, position, px, reason, config, observation)


def _finalize(
    ledger: AccountLedger,
    position: Position,
    exit_exec: float,
    reason: str,
    config: Config,
    observation: Optional[PriceObservation],
) -> ClosedTrade:
    ledger.remove(position)
    exit_time: Optional[datetime] = observation.time if observation is not None else None
    held = bars_elapsed(position, observation) if observation is not None else None
    trade = ClosedTrade(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        quantity=position.initial_quantity,
        entry_price=position.entry_price,
        exit_price=exit_exec,
        gross_pnl=position.realized_gross,
        fees=position.fee_total,
        tax=position.tax_total,
        net_pnl=position.realized_net,
        net_r=position.realized_net / max(1e-9, position.initial_risk_usd),
        exit_reason=reason,
        entry_time=position.opened_at,
        exit_time=exit_time,
        bars_held=held,
        max_favorable_r=position.max_favorable_r,
        max_adverse_r=position.max_adverse_r,
        partial_done=position.partial_done,
        regime_bull=position.regime_bull,
        breakout_flag=position.breakout_flag,
        atr_expansion=position.atr_expansion,
    )
    ledger.record_close(trade, config)
    logger.info(
        "CLOSE %s %s %s reason=%s gross=%.2f fees=%.4f tax=%.4f net=%.2f R=%.2f",
        trade.id, trade.side.value, trade.symbol, reason, trade.gross_pnl, trade.fees, trade.tax,
        trade.net_pnl, trade.net_r,
    )
    ledger.emit(EventKind.ROLLUP, **ledger.rollup())
    return trade


def _move_stop(ledger: AccountLedger, position: Position, new_stop: float, why: str) -> None:
    """Move the stop toward profit only."""
    if position.side is SignalSide.LONG:
        new_stop = max(position.stop_price, new_stop)
    else:
        new_stop = min(position.stop_price, new_stop)
    if new_stop == position.stop_price:
        return
    old = position.stop_price
    position.stop_price = new_stop
    ledger.emit(EventKind.STOP_MOVED, trade=position.id, symbol=position.symbol, why=why, old=old, new=new_stop)


def _stop_reason(position: Position) -> str:
    if position.trailing_active:
        return "TRAIL_STOP"
    if position.moved_break_even:
        return "BREAK_EVEN"
    return "STOP"
