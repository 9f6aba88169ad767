"""Decision models: baseline scorer, momentum/regime, historical probability, comparator."""

from paper_trader.strategies.base import BaseModel
from paper_trader.strategies.edge import EdgeTracker
from paper_trader.strategies.score import ScoreModel
from paper_trader.strategies.probability import ProbabilityModel
from paper_trader.strategies.momentum import (
    MomentumModel,
    ScanRow,
    classify_regime,
    detect_regime,
    momentum_score,
    near_breakout,
    scan_rank,
    scan_symbol,
)
from paper_trader.strategies.comparator import Comparison, compare_models, normalized_confidence
from paper_trader.strategies.factory import build_model, evaluate

__all__ = [
    "BaseModel",
    "EdgeTracker",
    "ScoreModel",
    "ProbabilityModel",
    "MomentumModel",
    "ScanRow",
    "classify_regime",
    "detect_regime",
    "momentum_score",
    "near_breakout",
    "scan_rank",
    "scan_symbol",
    "Comparison",
    "compare_models",
    "normalized_confidence",
    "build_model",
    "evaluate",
]
