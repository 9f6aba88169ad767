#!/usr/bin/env python3
"""
Paper Trader CLI: backtest | grid | compare | live
Usage:
  python main.py backtest [--config config.yaml] [--csv bars.csv] [--symbol BTCUSDT] [--model momentum]
  python main.py grid [--config config.yaml] [--csv bars.csv]
  python main.py compare [--config config.yaml] [--csv bars.csv]
  python main.py live [--config config.yaml]
"""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from paper_trader.core.audit import build_audit_log
from paper_trader.core.config import Config, load_config
from paper_trader.core.logger import setup_logging
from paper_trader.execution.base import MarketDataError
from paper_trader.execution.binance_spot import BinanceSpotClient
from paper_trader.backtesting.engine import run_backtest
from paper_trader.backtesting.grid_search import run_grid_search
from paper_trader.strategies.comparator import compare_models
from paper_trader.live.runner import PaperTradingLoop

logger = logging.getLogger("paper_trader")


def load_bars(config: Config, csv_path: Optional[Path], symbol: str) -> pd.DataFrame:
    """Bars from a CSV (time, open, high, low, close, volume) or from Binance Spot public klines."""
    if csv_path is not None:
        df = pd.read_csv(csv_path)
        df["time"] = pd.to_datetime(df["time"])
        return df[["time", "open", "high", "low", "close", "volume"]]
    client = BinanceSpotClient()
    return client.get_klines(symbol, config.timeframe, limit=config.bars_limit)


def _setup(args) -> Config:
    config = load_config(args.config, ROOT)
    overrides = {}
    if getattr(args, "symbol", None):
        overrides["symbol"] = args.symbol
    if getattr(args, "model", None):
        overrides["model_type"] = args.model
    if overrides:
        config = config.with_overrides(overrides)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    return config


def cmd_backtest(args) -> int:
    config = _setup(args)
    audit = build_audit_log(config)
    try:
        bars = load_bars(config, args.csv, config.symbol)
    except (OSError, KeyError, MarketDataError) as e:
        logger.error("Could not load bars: %s", e)
        return 1
    result = run_backtest(config.symbol, config.model_type, bars, config, audit=audit)
    audit.flush()
    if result.error:
        print(f"Backtest error: {result.error}")
        return 1
    m = result.metrics
    print("\n--- Backtest Results ---")
    print(f"Symbol/model: {result.symbol} / {result.model_type}")
    print(f"Total trades: {result.num_trades} (wins: {m.winning_trades}, losses: {m.losing_trades})")
    print(f"Net profit: {result.net_profit:.2f} USD ({m.total_return_pct:.2f}%)")
    print(f"Win rate: {result.win_rate * 100:.1f}%")
    print(f"Expectancy: {result.expectancy:.4f} USD/trade (avg R {m.avg_r:.2f})")
    print(f"Max drawdown: {result.max_drawdown * 100:.2f}%")
    print(f"Profit factor: {m.profit_factor:.2f}")
    print(f"Sharpe ratio: {m.sharpe_ratio:.2f}")
    if result.block_reasons:
        top = sorted(result.block_reasons.items(), key=lambda kv: kv[1], reverse=True)[:5]
        print("Top block reasons: " + ", ".join(f"{k}={v}" for k, v in top))
    return 0


def cmd_grid(args) -> int:
    config = _setup(args)
    audit = build_audit_log(config)
    try:
        bars = load_bars(config, args.csv, config.symbol)
    except (OSError, KeyError, MarketDataError) as e:
        logger.error("Could not load bars: %s", e)
        return 1
    result = run_grid_search(config.symbol, bars, model_type=config.model_type, base_config=config, audit=audit)
    audit.flush()
    print(f"\n--- Grid Search: {result.valid_count}/{result.total_combos} valid ---")
    for row in result.top:
        flag = "REJ" if row.rejected else "OK "
        print(
            f"{flag} exp={row.expectancy:.4f} net={row.net_profit:.2f} mdd={row.max_drawdown * 100:.2f}% "
            f"trades={row.trades} {row.params}" + (f" error={row.error}" if row.error else "")
        )
    if result.best is None:
        print("No combination passed the trade-count and drawdown filters.")
    return 0


def cmd_compare(args) -> int:
    config = _setup(args)
    try:
        bars = load_bars(config, args.csv, config.symbol)
    except (OSError, KeyError, MarketDataError) as e:
        logger.error("Could not load bars: %s", e)
        return 1
    cmp = compare_models(bars, config)
    print("\n--- Model Comparison ---")
    for decision in (cmp.score, cmp.momentum, cmp.probability):
        print(f"{decision.model:<9} {decision.signal.value:<4} conf={decision.confidence:.3f} reason={decision.reason}")
    print(f"Best: {cmp.best}")
    return 0


def cmd_live(args) -> int:
    config = _setup(args)
    audit = build_audit_log(config)
    loop = PaperTradingLoop(BinanceSpotClient(), config, audit=audit)
    loop.run_forever()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Paper Trader CLI")
    parser.add_argument("mode", choices=["backtest", "grid", "compare", "live"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--csv", type=Path, default=None, help="Bars CSV instead of Binance klines")
    parser.add_argument("--symbol", default=None, help="Symbol override")
    parser.add_argument("--model", choices=["score", "momentum", "prob"], default=None, help="Model override")
    args = parser.parse_args()
    commands = {"backtest": cmd_backtest, "grid": cmd_grid, "compare": cmd_compare, "live": cmd_live}
    return commands[args.mode](args)


if __name__ == "__main__":
    sys.exit(main())
