"""Unit tests for grid search ranking and filtering."""

from paper_trader.backtesting import GridRow, combinations, default_grid, rank_rows, run_grid_search
from paper_trader.core.config import Config


def test_combinations_product_order():
    combos = combinations({"a": [1, 2], "b": [3, 4], "c": 5})
    assert combos == [
        {"a": 1, "b": 3, "c": 5},
        {"a": 1, "b": 4, "c": 5},
        {"a": 2, "b": 3, "c": 5},
        {"a": 2, "b": 4, "c": 5},
    ]
    assert len(combinations(default_grid())) == 4 * 3 * 3 * 3 * 3


def test_rank_rows():
    rows = [
        GridRow(params={"k": 1}, expectancy=0.5, net_profit=5.0, max_drawdown=0.05),
        GridRow(params={"k": 2}, expectancy=0.9, net_profit=1.0, max_drawdown=0.01, rejected=True),
        GridRow(params={"k": 3}, expectancy=0.5, net_profit=5.0, max_drawdown=0.02),
        GridRow(params={"k": 4}, expectancy=0.5, net_profit=7.0, max_drawdown=0.09),
        GridRow(params={"k": 5}, expectancy=0.8, net_profit=0.5, max_drawdown=0.10),
    ]
    assert [r.params["k"] for r in rank_rows(rows)] == [5, 4, 3, 1, 2]


def test_grid_ranks_every_combination(rising_bars):
    base = Config(grid_min_trades=0, grid_max_dd=1.0)
    grid = {"r_target": [2.0, 2.5, 3.0], "stop_atr_mult": [1.5, 1.8, 2.1]}
    result = run_grid_search("BTCUSDT", rising_bars, grid, base_config=base)
    assert result.total_combos == 9
    assert len(result.ranked) == 9
    assert result.valid_count == 9
    assert result.best is result.ranked[0]
    keys = [(-r.expectancy, -r.net_profit, r.max_drawdown) for r in result.ranked]
    assert keys == sorted(keys)
    assert base.r_target == 2.5


def test_min_trades_rejects(flat_bars):
    result = run_grid_search("BTCUSDT", flat_bars, {"r_target": [2.0, 3.0]}, base_config=Config(grid_min_trades=1))
    assert result.valid_count == 0
    assert result.best is None
    assert all(r.rejected and r.trades == 0 for r in result.ranked)


def test_failing_combination_is_isolated(rising_bars):
    base = Config(grid_min_trades=0, grid_max_dd=1.0)
    result = run_grid_search("BTCUSDT", rising_bars, {"r_target": [2.5, "bad"]}, base_config=base)
    assert result.total_combos == 2
    assert result.valid_count == 1
    assert result.ranked[0].params == {"r_target": 2.5}
    assert result.ranked[1].rejected and result.ranked[1].error


def test_short_series_all_rejected(flat_bars):
    result = run_grid_search("BTCUSDT", flat_bars.iloc[:50], {"r_target": [2.0]})
    assert result.best is None
    assert result.ranked[0].error.startswith("INSUFFICIENT_DATA")


def test_grid_can_override_rejection_thresholds(flat_bars):
    base = Config(grid_min_trades=1)
    result = run_grid_search("BTCUSDT", flat_bars, {"grid_min_trades": [0, 1]}, base_config=base)
    assert result.valid_count == 1
    assert result.best.params == {"grid_min_trades": 0}
    assert result.ranked[1].rejected
