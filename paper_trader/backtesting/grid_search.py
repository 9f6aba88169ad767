"""
Grid search: one backtest per combination of a Cartesian parameter grid, ranked by
expectancy desc, net profit desc, max drawdown asc. Each run gets its own ledger and
edge tracker; a failing combination is logged and kept as a rejected row.
"""

from __future__ import annotations
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from paper_trader.backtesting.engine import run_backtest
from paper_trader.core.audit import AuditLog, EventKind
from paper_trader.core.config import Config
from paper_trader.strategies.edge import EdgeTracker

logger = logging.getLogger("paper_trader.grid")


def default_grid() -> Dict[str, List[Any]]:
    return {
        "stop_atr_mult": [1.2, 1.5, 1.8, 2.1],
        "r_target": [2.0, 2.5, 3.0],
        "breakout_lookback": [10, 12, 15],
        "chop_slope_norm": [0.03, 0.05, 0.08],
        "bull_slope_norm": [0.08, 0.10, 0.12],
    }


def combinations(grid: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Cartesian product in key order; a scalar value counts as a one-element list."""
    keys = list(grid)
    values = [v if isinstance(v, (list, tuple)) else [v] for v in grid.values()]
    return [dict(zip(keys, combo)) for combo in itertools.product(*values)]


@dataclass
class GridRow:
    params: Dict[str, Any]
    trades: int = 0
    net_profit: float = 0.0
    expectancy: float = 0.0
    max_drawdown: float = 0.0
    rejected: bool = False
    error: Optional[str] = None


@dataclass
class GridSearchResult:
    best: Optional[GridRow]
    top: List[GridRow] = field(default_factory=list)
    ranked: List[GridRow] = field(default_factory=list)
    total_combos: int = 0
    valid_count: int = 0


def rank_rows(rows: Sequence[GridRow]) -> List[GridRow]:
    """Valid rows by (expectancy desc, net profit desc, max drawdown asc), then rejected rows in run order."""
    valid = sorted((r for r in rows if not r.rejected), key=lambda r: (-r.expectancy, -r.net_profit, r.max_drawdown))
    return valid + [r for r in rows if r.rejected]


def run_grid_search(
    symbol: str,
    bars: pd.DataFrame,
    grid: Optional[Mapping[str, Any]] = None,
    model_type: str = "momentum",
    base_config: Optional[Config] = None,
    audit: Optional[AuditLog] = None,
) -> GridSearchResult:
    """
    Rejects combinations with fewer than grid_min_trades trades or max drawdown above
    grid_max_dd, read from each combination's own config so a grid may vary them.
    The base config is never mutated.
    """
    base = base_config or Config()
    combos = combinations(grid if grid is not None else default_grid())
    rows: List[GridRow] = []
    for params in combos:
        try:
            cfg = base.with_overrides(params)
            run = run_backtest(symbol, model_type, bars, cfg, edge=EdgeTracker(cfg.edge_window))
        except Exception as e:
            logger.exception("Grid combination %s failed", params)
            rows.append(GridRow(params=params, rejected=True, error=str(e)))
            continue
        if run.error:
            rows.append(GridRow(params=params, rejected=True, error=run.error))
            continue
        rejected = run.num_trades < cfg.grid_min_trades or run.max_drawdown > cfg.grid_max_dd
        rows.append(GridRow(
            params=params,
            trades=run.num_trades,
            net_profit=run.net_profit,
            expectancy=run.expectancy,
            max_drawdown=run.max_drawdown,
            rejected=rejected,
        ))

    ranked = rank_rows(rows)
    valid_count = sum(1 for r in rows if not r.rejected)
    best = ranked[0] if valid_count else None
    result = GridSearchResult(
        best=best,
        top=ranked[: base.grid_top_k],
        ranked=ranked,
        total_combos=len(combos),
        valid_count=valid_count,
    )
    logger.info(
        "Grid %s %s: combos=%d valid=%d best=%s",
        symbol, model_type, result.total_combos, valid_count, best.params if best else None,
    )
    if audit is not None:
        audit.emit(
            EventKind.GRID, symbol=symbol, model=model_type, combos=result.total_combos, valid=valid_count,
            best_expectancy=best.expectancy if best else None,
        )
    return result
