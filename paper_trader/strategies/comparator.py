"""Runs the three models on the same bars and reports the most confident BUY."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

import pandas as pd

from paper_trader.core.config import Config
from paper_trader.core.types import Decision, Signal
from paper_trader.strategies.momentum import MomentumModel
from paper_trader.strategies.probability import ProbabilityModel
from paper_trader.strategies.score import ScoreModel


@dataclass
class Comparison:
    score: Decision
    momentum: Decision
    probability: Decision
    confidences: Dict[str, float] = field(default_factory=dict)
    best: str = "none"


def normalized_confidence(decision: Decision) -> float:
    """Confidence in [0, 1] of a BUY decision; 0 for anything else."""
    if decision.signal is not Signal.BUY:
        return 0.0
    if decision.model == "score":
        value = decision.score / 10.0
    elif decision.model == "prob":
        value = decision.probability if decision.probability is not None else 0.0
    else:
        value = decision.confidence
    return max(0.0, min(1.0, value))


def compare_models(bars: pd.DataFrame, config: Config, edge=None) -> Comparison:
    prob = ProbabilityModel(config).evaluate(bars)
    decisions = {
        "score": ScoreModel(config).evaluate(bars),
        "momentum": MomentumModel(config).evaluate(bars, edge, probability=prob),
        "prob": prob,
    }
    confidences = {name: normalized_confidence(d) for name, d in decisions.items()}
    best_name, best_conf = max(confidences.items(), key=lambda kv: kv[1])
    return Comparison(
        score=decisions["score"],
        momentum=decisions["momentum"],
        probability=decisions["prob"],
        confidences=confidences,
        best=best_name if best_conf > 0 else "none",
    )
