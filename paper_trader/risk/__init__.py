"""Risk: account pre-checks, the ten admission gates, correlation exposure."""

from paper_trader.risk.correlation import ReturnsCache, pearson, returns_vector
from paper_trader.risk.pipeline import GateContext, build_trade_idea, estimate_quantity, run_gate_pipeline

__all__ = [
    "GateContext",
    "ReturnsCache",
    "build_trade_idea",
    "estimate_quantity",
    "pearson",
    "returns_vector",
    "run_gate_pipeline",
]
