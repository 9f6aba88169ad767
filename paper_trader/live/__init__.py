"""Live paper trading: scheduler, universe ranking, per-symbol isolation."""

from paper_trader.live.runner import PaperTradingLoop, rank_universe

__all__ = ["PaperTradingLoop", "rank_universe"]
