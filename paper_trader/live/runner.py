"""
Paper-trading loop. A fixed-period scheduler fires one tick at a time; a tick that is still
running when the next one is due makes the new one skip (counted in ticks_skipped).
Within a tick bars are fetched concurrently, then every symbol is processed on the calling
thread, so the ledger and positions are only ever touched by one thread.
"""

from __future__ import annotations
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd

from paper_trader.core.audit import AuditLog, EventKind
from paper_trader.core.config import Config
from paper_trader.core.types import ClosedTrade, PriceObservation
from paper_trader.execution.base import MarketDataClient, MarketDataError
from paper_trader.execution.mtf import HigherTimeframeProvider
from paper_trader.portfolio.ledger import AccountLedger
from paper_trader.portfolio.lifecycle import advance_position, open_position
from paper_trader.risk.correlation import ReturnsCache
from paper_trader.risk.pipeline import GateContext, run_gate_pipeline
from paper_trader.strategies.edge import EdgeTracker
from paper_trader.strategies.factory import build_model

logger = logging.getLogger("paper_trader.live")

TRADE_GUARD_MAX = 1500
TRADE_GUARD_TRIM = 700


def rank_universe(changes: Dict[str, float], top_n: int, candidates: Sequence[str] = ()) -> List[str]:
    """Symbols by absolute 24h change percent, largest first. Non-empty candidates restrict the pool."""
    pool = set(candidates)
    ranked = sorted(
        ((s, pct) for s, pct in changes.items() if not pool or s in pool),
        key=lambda kv: abs(kv[1]),
        reverse=True,
    )
    return [s for s, _ in ranked[: max(1, top_n)]]


class PaperTradingLoop:
    """Live paper trading over a symbol universe with one in-memory ledger."""

    def __init__(
        self,
        client: MarketDataClient,
        config: Config,
        ledger: Optional[AccountLedger] = None,
        audit: Optional[AuditLog] = None,
        htf_provider=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.config = config
        self.audit = audit
        self.ledger = ledger if ledger is not None else AccountLedger(config.initial_cash, audit=audit)
        self.model = build_model(config.model_type, config)
        self.edge = EdgeTracker(config.edge_window)
        self.returns_cache = ReturnsCache()
        self.htf = htf_provider if htf_provider is not None else HigherTimeframeProvider(client, config)
        self.clock = clock
        self.universe: List[str] = list(config.symbols)
        self._universe_at: Optional[float] = None
        self._trade_guard: "OrderedDict[tuple, None]" = OrderedDict()
        self._tick_lock = threading.Lock()
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.closed_trades: List[ClosedTrade] = []

    # --- universe ----------------------------------------------------------

    def refresh_universe(self, force: bool = False) -> List[str]:
        """TOPN mode re-ranks every best_refresh_min minutes; a failed refresh keeps the stale list."""
        if self.config.universe_mode.upper() != "TOPN":
            self.universe = list(self.config.symbols)
            return self.universe
        now = self.clock()
        due = self._universe_at is None or now - self._universe_at >= self.config.best_refresh_min * 60.0
        if not force and not due:
            return self.universe
        try:
            changes = self.client.fetch_24h_change_percent()
        except MarketDataError as e:
            logger.warning("Universe refresh failed, keeping %s: %s", self.universe, e)
            return self.universe
        ranked = rank_universe(changes or {}, self.config.top_n, self.config.universe_candidates)
        if ranked:
            self.universe = ranked
            self._universe_at = now
            logger.info("Universe: %s", ", ".join(self.universe))
        return self.universe

    # --- trade guard -------------------------------------------------------

    def guard_key(self, signal: str, symbol: str, interval: str, bar_time) -> tuple:
        return (signal, symbol, interval, str(bar_time))

    def can_pass_guard(self, key: tuple) -> bool:
        return key not in self._trade_guard

    def mark_guard(self, key: tuple) -> None:
        self._trade_guard[key] = None
        if len(self._trade_guard) > TRADE_GUARD_MAX:
            for _ in range(TRADE_GUARD_TRIM):
                self._trade_guard.popitem(last=False)

    # --- tick --------------------------------------------------------------

    def fetch_all(self, symbols: List[str]) -> Dict[str, Optional[pd.DataFrame]]:
        """Bars per symbol, fetched with at most fetch_concurrency requests in flight. None on failure."""
        def fetch(symbol: str) -> Optional[pd.DataFrame]:
            try:
                return self.client.get_klines(symbol, self.config.timeframe, self.config.bars_limit)
            except MarketDataError as e:
                logger.warning("Bars unavailable for %s: %s", symbol, e)
                return None

        if not symbols:
            return {}
        with ThreadPoolExecutor(max_workers=self.config.fetch_concurrency) as pool:
            results = list(pool.map(fetch, symbols))
        return dict(zip(symbols, results))

    def tick(self) -> bool:
        """One pass over the universe. Returns False when skipped because a tick is in flight."""
        if not self._tick_lock.acquire(blocking=False):
            self.ticks_skipped += 1
            logger.debug("Tick skipped (busy), total skipped=%d", self.ticks_skipped)
            return False
        started = self.clock()
        try:
            self.ledger.roll_day(datetime.now(timezone.utc).date())
            universe = self.refresh_universe()
            held = sorted({p.symbol for p in self.ledger.positions.values()})
            symbols = list(dict.fromkeys(list(universe) + held))
            for symbol, bars in self.fetch_all(symbols).items():
                try:
                    self.process_symbol(symbol, bars)
                except Exception:
                    logger.exception("Tick failed for %s", symbol)
            self.ticks_run += 1
        finally:
            self._tick_lock.release()
            elapsed = self.clock() - started
            if elapsed > self.config.loop_sec:
                logger.warning("Slow tick: %.2fs > %.2fs", elapsed, self.config.loop_sec)
                if self.audit is not None:
                    self.audit.emit(
                        EventKind.TICK_SLOW, elapsed_ms=round(elapsed * 1000), loop_ms=round(self.config.loop_sec * 1000),
                        skipped=self.ticks_skipped,
                    )
        return True

    def process_symbol(self, symbol: str, bars: Optional[pd.DataFrame]) -> None:
        """
        Manage open positions of `symbol` at the latest price, then evaluate an entry on closed
        bars only (the last kline is still forming).
        """
        if bars is None or len(bars) < 2:
            return
        cfg = self.config
        interval = cfg.timeframe
        last = bars.iloc[-1]
        obs = PriceObservation(price=float(last["close"]), time=pd.Timestamp(last["time"]).to_pydatetime())
        for position in self.ledger.open_positions(symbol):
            out = advance_position(self.ledger, position, obs, cfg)
            if isinstance(out, ClosedTrade):
                self.edge.add_trade(out.net_pnl)
                self.closed_trades.append(out)

        closed = bars.iloc[:-1].reset_index(drop=True)
        self.returns_cache.update(symbol, interval, closed["close"].to_numpy(), cfg.corr_lookback)
        if cfg.no_repeat and self.ledger.open_positions(symbol):
            return

        decision = self.model.evaluate(closed, self.edge)
        if not decision.is_entry:
            logger.debug("%s %s: %s", symbol, decision.signal.value, decision.reason)
            return
        bar_time = pd.Timestamp(closed["time"].iloc[-1]).to_pydatetime()
        key = self.guard_key(decision.signal.value, symbol, interval, bar_time)
        if not self.can_pass_guard(key):
            return
        ctx = GateContext(
            symbol=symbol, interval=interval, now=bar_time, htf=self.htf, returns_cache=self.returns_cache,
        )
        gate = run_gate_pipeline(decision, closed, cfg, self.ledger, ctx)
        if not gate.ok:
            logger.info("%s %s blocked: %s/%s", symbol, decision.signal.value, gate.gate, gate.reason)
            return
        self.mark_guard(key)
        open_position(self.ledger, gate.idea, cfg)

    # --- scheduler ---------------------------------------------------------

    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """
        Fire tick() every loop_sec on a worker thread. A firing that finds the previous tick
        still running is skipped. Audit sinks are flushed every audit_flush_sec.
        """
        cfg = self.config
        fired = 0
        last_flush = self.clock()
        logger.info(
            "Paper trading: model=%s tf=%s universe=%s loop=%.1fs",
            self.model.name, cfg.timeframe, cfg.universe_mode, cfg.loop_sec,
        )
        worker: Optional[threading.Thread] = None
        try:
            while max_ticks is None or fired < max_ticks:
                started = self.clock()
                if worker is not None and worker.is_alive():
                    self.ticks_skipped += 1
                    logger.debug("Tick skipped (busy), total skipped=%d", self.ticks_skipped)
                else:
                    worker = threading.Thread(target=self.tick, name="paper-tick", daemon=True)
                    worker.start()
                fired += 1
                if self.audit is not None and self.clock() - last_flush >= cfg.audit_flush_sec:
                    self.audit.flush()
                    last_flush = self.clock()
                time.sleep(max(0.0, cfg.loop_sec - (self.clock() - started)))
        except KeyboardInterrupt:
            logger.info("Shutdown by user")
        finally:
            if worker is not None:
                worker.join()
            if self.audit is not None:
                self.audit.flush()
            logger.info(
                "Stopped: ticks=%d skipped=%d open=%d %s",
                self.ticks_run, self.ticks_skipped, len(self.ledger.positions), self.ledger.rollup(),
            )
