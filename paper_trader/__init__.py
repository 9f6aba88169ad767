"""Paper trader: decision models, risk gates, position lifecycle, backtest replay and grid search."""

__version__ = "0.1.0"
