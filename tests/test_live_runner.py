"""Unit tests for the live paper-trading loop, universe ranking and HTF caching."""

import threading

import pytest

from paper_trader.core.audit import AuditLog, EventKind, MemoryAuditSink
from paper_trader.core.config import Config
from paper_trader.execution import HigherTimeframeProvider, MarketDataClient, MarketDataError, TTLCache
from paper_trader.live import runner
from paper_trader.live.runner import TRADE_GUARD_MAX, TRADE_GUARD_TRIM, PaperTradingLoop, rank_universe

from conftest import make_bars, rising_series


class FakeClient(MarketDataClient):
    def __init__(self, bars=None, changes=None, failing=()):
        self.bars = bars or {}
        self.changes = changes or {}
        self.failing = set(failing)
        self.kline_calls = []

    def get_klines(self, symbol, interval, limit=300):
        self.kline_calls.append((symbol, interval))
        if symbol in self.failing:
            raise MarketDataError(f"{symbol} unavailable")
        if symbol not in self.bars:
            raise RuntimeError("unexpected symbol")
        return self.bars[symbol]

    def fetch_24h_change_percent(self):
        if "TICKER" in self.failing:
            raise MarketDataError("ticker down")
        return dict(self.changes)


class FakeClock:
    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def flat(n=321):
    return make_bars([100.0] * n, body=0.0)


def test_rank_universe():
    changes = {"AAA": 1.0, "BBB": -5.0, "CCC": 3.0, "DDD": 0.1}
    assert rank_universe(changes, 2) == ["BBB", "CCC"]
    assert rank_universe(changes, 0) == ["BBB"]


def test_rank_universe_limited_to_candidates():
    changes = {"BTCUSDT": 2.0, "USDCUSDT": 0.01, "BTCUPUSDT": -40.0, "SOLUSDT": -6.0, "DOGEUSDT": 1.0}
    assert rank_universe(changes, 2, ("BTCUSDT", "SOLUSDT", "DOGEUSDT")) == ["SOLUSDT", "BTCUSDT"]
    assert rank_universe(changes, 1) == ["BTCUPUSDT"]


def test_default_topn_pool_skips_leveraged_tokens():
    client = FakeClient(changes={"BTCUPUSDT": 35.0, "ETHUSDT": -4.0, "BTCUSDT": 1.5})
    loop = PaperTradingLoop(client, Config(universe_mode="TOPN", top_n=3))
    assert loop.refresh_universe() == ["ETHUSDT", "BTCUSDT"]


def test_fixed_universe():
    loop = PaperTradingLoop(FakeClient(), Config(symbols=("aaa", "bbb")))
    assert loop.refresh_universe() == ["AAA", "BBB"]


def test_topn_refresh_and_stale_on_failure():
    client = FakeClient(changes={"AAA": 1.0, "BBB": -5.0, "CCC": 3.0})
    clock = FakeClock()
    loop = PaperTradingLoop(client, Config(universe_mode="TOPN", top_n=2, best_refresh_min=10, universe_candidates=("AAA", "BBB", "CCC")), clock=clock)
    assert loop.refresh_universe() == ["BBB", "CCC"]
    client.changes = {"AAA": 9.0}
    assert loop.refresh_universe() == ["BBB", "CCC"]
    clock.now += 600
    client.failing.add("TICKER")
    assert loop.refresh_universe() == ["BBB", "CCC"]
    client.failing.clear()
    assert loop.refresh_universe() == ["AAA"]


def test_tick_skipped_while_busy():
    loop = PaperTradingLoop(FakeClient(), Config(symbols=()))
    loop._tick_lock.acquire()
    try:
        assert loop.tick() is False
    finally:
        loop._tick_lock.release()
    assert loop.ticks_skipped == 1
    assert loop.tick() is True
    assert loop.ticks_run == 1


def test_symbol_failures_are_isolated(monkeypatch):
    client = FakeClient(bars={"AAA": flat(), "CCC": flat()}, failing={"BBB"})
    loop = PaperTradingLoop(client, Config(symbols=("AAA", "BBB", "CCC")))
    seen = []

    def process(symbol, bars):
        seen.append((symbol, bars is None))
        if symbol == "AAA":
            raise ValueError("bad bars")

    monkeypatch.setattr(loop, "process_symbol", process)
    assert loop.tick() is True
    assert sorted(seen) == [("AAA", False), ("BBB", True), ("CCC", False)]
    assert loop.ticks_run == 1


def test_slow_tick_emits_event():
    sink = MemoryAuditSink()
    loop = PaperTradingLoop(FakeClient(), Config(symbols=(), loop_sec=2), audit=AuditLog([sink]), clock=FakeClock(5.0))
    loop.tick()
    events = sink.of_kind(EventKind.TICK_SLOW)
    assert len(events) == 1
    assert events[0].payload["elapsed_ms"] == 5000


def test_trade_guard_trims_oldest():
    loop = PaperTradingLoop(FakeClient(), Config())
    keys = [loop.guard_key("BUY", "AAA", "15m", k) for k in range(TRADE_GUARD_MAX + 1)]
    for key in keys:
        assert loop.can_pass_guard(key)
        loop.mark_guard(key)
    assert len(loop._trade_guard) == TRADE_GUARD_MAX + 1 - TRADE_GUARD_TRIM
    assert loop.can_pass_guard(keys[0])
    assert not loop.can_pass_guard(keys[-1])


def test_entry_on_closed_bars_with_guard():
    bars = rising_series(401)
    client = FakeClient(bars={"AAA": bars})
    loop = PaperTradingLoop(client, Config(symbols=("AAA",), no_repeat=False, initial_cash=1000))
    loop.process_symbol("AAA", bars)
    assert len(loop.ledger.positions) == 1
    position = next(iter(loop.ledger.positions.values()))
    assert position.symbol == "AAA"
    assert position.entry_price > float(bars["close"].iloc[-2])
    loop.process_symbol("AAA", bars)
    assert len(loop.ledger.positions) == 1


def test_short_bars_ignored():
    loop = PaperTradingLoop(FakeClient(), Config())
    loop.process_symbol("AAA", None)
    loop.process_symbol("AAA", flat(1))
    assert not loop.ledger.positions


def test_run_forever_counts_ticks(monkeypatch):
    monkeypatch.setattr(runner.time, "sleep", lambda s: None)
    gate = threading.Event()
    loop = PaperTradingLoop(FakeClient(), Config(symbols=()))
    original = loop.tick

    def slow_tick():
        gate.wait(1.0)
        return original()

    loop.tick = slow_tick
    loop.run_forever(max_ticks=3)
    gate.set()
    assert loop.ticks_run == 1
    assert loop.ticks_skipped == 2


def test_ttl_cache_expiry():
    clock = FakeClock()
    cache = TTLCache(clock)
    cache.put("k", 1, 10.0)
    assert cache.get("k") == 1
    assert cache.expires_at("k") == 10.0
    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_htf_provider_caches_snapshots():
    client = FakeClient(bars={"AAA": rising_series(260)})
    clock = FakeClock()
    htf = HigherTimeframeProvider(client, Config(), clock=clock)
    snap = htf.get_snapshot("AAA", "1h")
    assert snap.bull_regime and snap.ok
    assert snap.ema_fast > snap.ema_slow
    assert htf.get_snapshot("AAA", "1h") is snap
    assert client.kline_calls == [("AAA", "1h")]
    clock.now += HigherTimeframeProvider.ttl_seconds("1h")
    htf.get_snapshot("AAA", "1h")
    assert len(client.kline_calls) == 2


def test_htf_provider_wraps_errors():
    htf = HigherTimeframeProvider(FakeClient(), Config())
    with pytest.raises(MarketDataError):
        htf.get_snapshot("ZZZ", "1h")
    with pytest.raises(MarketDataError):
        HigherTimeframeProvider(FakeClient(failing={"AAA"}), Config()).get_snapshot("AAA", "1h")
