"""Unit tests for position lifecycle and execution costs."""

import pytest

from paper_trader.core.audit import AuditLog, EventKind, MemoryAuditSink
from paper_trader.core.config import Config
from paper_trader.core.types import ClosedTrade, Position, PriceObservation, SignalSide, TradeIdea
from paper_trader.portfolio import (
    AccountLedger,
    advance_position,
    apply_execution,
    close_position,
    fee_usd,
    open_position,
    tax_on_profit,
)


def idea(side=SignalSide.LONG, entry=100.0, stop=98.0, target=105.0, **kw):
    fields = dict(symbol="BTCUSDT", side=side, entry=entry, stop=stop, target=target, atr=1.0,
                  interval="15m", bar_index=0)
    fields.update(kw)
    return TradeIdea(**fields)


def bar(price, high=None, low=None, i=None):
    return PriceObservation(price=price, high=high, low=low, bar_index=i)


def assert_cash_invariant(ledger):
    assert ledger.cash == pytest.approx(ledger.initial_cash + ledger.realized - ledger.fee_paid - ledger.tax_paid)


def test_costs():
    assert fee_usd(500.0, 0.1) == pytest.approx(0.5)
    assert fee_usd(-500.0, 0.1) == pytest.approx(0.5)
    assert fee_usd(500.0, -1.0) == 0.0
    assert tax_on_profit(100.0, 15.0) == pytest.approx(15.0)
    assert tax_on_profit(-5.0, 15.0) == 0.0
    cfg = Config()  # 2 bps half spread + 2 bps slippage + 0.2 bps latency
    assert apply_execution(SignalSide.LONG, 100.0, cfg) == pytest.approx(100.042)
    assert apply_execution(SignalSide.SHORT, 100.0, cfg) == pytest.approx(99.958)
    assert apply_execution(SignalSide.LONG, 0.0, cfg) == 0.0


def test_open_sizes_by_risk(frictionless):
    ledger = AccountLedger(1000.0)
    pos = open_position(ledger, idea(), frictionless)
    assert isinstance(pos, Position)
    assert pos.quantity == pytest.approx(5.0)
    assert pos.risk_usd == pytest.approx(10.0)
    assert pos.fee_entry_total == pytest.approx(0.5)
    assert ledger.cash == pytest.approx(999.5)
    assert pos.id in ledger.positions
    assert_cash_invariant(ledger)


def test_open_caps_notional(frictionless):
    ledger = AccountLedger(1000.0)
    pos = open_position(ledger, idea(), frictionless.with_overrides(max_position_pct_capital=10.0))
    assert pos.quantity == pytest.approx(1.0)


def test_open_scales_by_risk_multipliers(frictionless):
    ledger = AccountLedger(1000.0)
    ledger.risk_cut_active = True
    cfg = frictionless.with_overrides(loss_streak_risk_cut_on=True, loss_streak_cut_factor=0.5)
    pos = open_position(ledger, idea(risk_mult=0.5), cfg)
    assert pos.risk_mult == pytest.approx(0.25)
    assert pos.quantity == pytest.approx(1.25)


def test_open_zero_size_returns_none(frictionless):
    ledger = AccountLedger(1000.0)
    ledger.cash = 0.0
    assert open_position(ledger, idea(), frictionless) is None
    assert not ledger.positions


def test_target_exit(frictionless):
    sink = MemoryAuditSink()
    ledger = AccountLedger(1000.0, audit=AuditLog([sink]))
    pos = open_position(ledger, idea(), frictionless)
    assert advance_position(ledger, pos, bar(104.0, 104.5, 103.0), frictionless) is pos
    out = advance_position(ledger, pos, bar(104.0, 105.5, 103.0), frictionless)
    assert isinstance(out, ClosedTrade)
    assert out.exit_reason == "TARGET"
    assert out.exit_price == pytest.approx(105.0)
    assert out.gross_pnl == pytest.approx(25.0)
    assert out.fees == pytest.approx(1.025)
    assert out.net_pnl == pytest.approx(23.975)
    assert out.net_r == pytest.approx(2.3975)
    assert ledger.cash == pytest.approx(1023.975)
    assert not ledger.positions
    assert ledger.wins == 1
    assert_cash_invariant(ledger)
    kinds = [e.kind for e in sink.events]
    assert kinds[0] is EventKind.OPEN
    assert EventKind.CLOSE in kinds and EventKind.ROLLUP in kinds


def test_stop_checked_before_target(frictionless):
    ledger = AccountLedger(1000.0)
    pos = open_position(ledger, idea(), frictionless)
    out = advance_position(ledger, pos, bar(100.0, 106.0, 97.0), frictionless)
    assert out.exit_reason == "STOP"
    assert out.gross_pnl == pytest.approx(-10.0)
    assert ledger.losses == 1
    assert_cash_invariant(ledger)


def test_short_target(frictionless):
    ledger = AccountLedger(1000.0)
    pos = open_position(ledger, idea(SignalSide.SHORT, 100.0, 102.0, 95.0), frictionless)
    out = advance_position(ledger, pos, bar(96.0, 96.5, 94.5), frictionless)
    assert out.exit_reason == "TARGET"
    assert out.gross_pnl == pytest.approx(25.0)


def test_partial_then_break_even(frictionless):
    sink = MemoryAuditSink()
    ledger = AccountLedger(1000.0, audit=AuditLog([sink]))
    cfg = frictionless.with_overrides(partial_on=True, partial_at_r=1.0, partial_pct=0.5, be_after_partial_on=True)
    pos = open_position(ledger, idea(), cfg)
    quantities = [pos.quantity]

    out = advance_position(ledger, pos, bar(102.0, 102.5, 101.5), cfg)
    assert out is pos
    quantities.append(pos.quantity)
    assert pos.partial_done
    assert pos.stop_price == pytest.approx(100.0)
    moved = sink.of_kind(EventKind.STOP_MOVED)
    assert len(moved) == 1 and moved[0].payload["why"] == "BE_AFTER_PARTIAL"
    assert len(sink.of_kind(EventKind.PARTIAL)) == 1

    out = advance_position(ledger, pos, bar(100.0, 100.4, 99.5), cfg)
    assert isinstance(out, ClosedTrade)
    quantities.append(pos.quantity)
    assert quantities == sorted(quantities, reverse=True)
    assert quantities[-1] == 0.0
    assert out.exit_reason == "BREAK_EVEN"
    assert out.partial_done
    assert out.gross_pnl == pytest.approx(5.0)
    assert out.fees == pytest.approx(0.5 + 0.255 + 0.25)
    assert out.net_pnl == pytest.approx(out.gross_pnl - out.fees)
    assert_cash_invariant(ledger)


def test_break_even_step(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(break_even_r=1.0)
    pos = open_position(ledger, idea(), cfg)
    advance_position(ledger, pos, bar(102.0, 102.2, 101.8), cfg)
    assert pos.moved_break_even
    assert pos.stop_price == pytest.approx(100.0)
    out = advance_position(ledger, pos, bar(100.1, 100.3, 99.9), cfg)
    assert out.exit_reason == "BREAK_EVEN"


def test_trailing_stop_never_loosens(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(atr_trail=2.0)
    pos = open_position(ledger, idea(), cfg)
    advance_position(ledger, pos, bar(103.0, 103.2, 102.5), cfg)
    assert pos.stop_price == pytest.approx(101.0)
    advance_position(ledger, pos, bar(102.0, 102.3, 101.5), cfg)
    assert pos.stop_price == pytest.approx(101.0)
    out = advance_position(ledger, pos, bar(100.5, 101.2, 100.5), cfg)
    assert out.exit_reason == "TRAIL_STOP"
    assert out.exit_price == pytest.approx(101.0)


def test_time_stop_by_bar_index(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(time_stop_on=True, time_stop_candles=3)
    pos = open_position(ledger, idea(), cfg)
    assert advance_position(ledger, pos, bar(100.5, 100.6, 100.4, i=2), cfg) is pos
    out = advance_position(ledger, pos, bar(100.5, 100.6, 100.4, i=3), cfg)
    assert out.exit_reason == "TIME_STOP"
    assert out.bars_held == 3


def test_auto_profit(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(auto_profit_on=True, auto_profit_pct=1.0)
    pos = open_position(ledger, idea(), cfg)
    assert advance_position(ledger, pos, bar(100.8), cfg) is pos
    out = advance_position(ledger, pos, bar(101.5), cfg)
    assert out.exit_reason == "AUTO_PROFIT"
    assert out.gross_pnl == pytest.approx(7.5)


def test_tax_paid_from_cash(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(tax_on=True, tax_pct=15.0)
    pos = open_position(ledger, idea(), cfg)
    out = advance_position(ledger, pos, bar(104.0, 105.5, 103.0), cfg)
    assert out.tax == pytest.approx(23.975 * 0.15)
    assert ledger.cash == pytest.approx(1023.975 - 23.975 * 0.15)
    assert_cash_invariant(ledger)


def test_tax_reserved_only(frictionless):
    ledger = AccountLedger(1000.0)
    cfg = frictionless.with_overrides(tax_on=True, tax_pct=15.0, tax_apply_cash=False)
    pos = open_position(ledger, idea(), cfg)
    advance_position(ledger, pos, bar(104.0, 105.5, 103.0), cfg)
    assert ledger.cash == pytest.approx(1023.975)
    assert ledger.tax_reserved == pytest.approx(23.975 * 0.15)


def test_manual_close(frictionless):
    ledger = AccountLedger(1000.0)
    pos = open_position(ledger, idea(), frictionless)
    out = close_position(ledger, pos, 101.0, "MANUAL", frictionless)
    assert out.exit_reason == "MANUAL"
    assert out.gross_pnl == pytest.approx(5.0)
    assert not ledger.positions
