"""Model selection by name and one-shot evaluate()."""

from __future__ import annotations
from typing import Optional, Union

import pandas as pd

from paper_trader.core.config import Config
from paper_trader.core.types import Decision, ModelType
from paper_trader.strategies.base import BaseModel
from paper_trader.strategies.momentum import MomentumModel
from paper_trader.strategies.probability import ProbabilityModel
from paper_trader.strategies.score import ScoreModel

_MODELS = {
    ModelType.SCORE: ScoreModel,
    ModelType.MOMENTUM: MomentumModel,
    ModelType.PROBABILITY: ProbabilityModel,
}


def build_model(model_type: Union[str, ModelType], config: Config) -> BaseModel:
    """'score' | 'momentum' | 'prob'. Raises ValueError for anything else."""
    try:
        key = ModelType(str(getattr(model_type, "value", model_type)).lower())
    except ValueError:
        raise ValueError(f"Unknown model type: {model_type}") from None
    return _MODELS[key](config)


def evaluate(
    bars: pd.DataFrame,
    config: Config,
    model_type: Optional[Union[str, ModelType]] = None,
    edge=None,
) -> Decision:
    """Decision for the last bar of `bars` with the configured (or given) model."""
    return build_model(model_type or config.model_type, config).evaluate(bars, edge)
