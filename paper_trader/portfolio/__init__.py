"""Portfolio: account ledger, cost model and position lifecycle."""

from paper_trader.portfolio.costs import apply_execution, exec_cost_pct_one_way, fee_usd, tax_on_profit
from paper_trader.portfolio.ledger import AccountLedger, RollingEdge
from paper_trader.portfolio.lifecycle import (
    advance_position,
    close_partial,
    close_position,
    open_position,
)

__all__ = [
    "AccountLedger",
    "RollingEdge",
    "apply_execution",
    "exec_cost_pct_one_way",
    "fee_usd",
    "tax_on_profit",
    "open_position",
    "advance_position",
    "close_partial",
    "close_position",
]
