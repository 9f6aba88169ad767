"""
Trading costs: percent fees on notional, execution-price model (half spread + slippage +
latency decay, always against the trader) and tax on positive net profit.
Fee and tax percents are in percent units (0.10 = 0.1%).
"""

from __future__ import annotations
import math

from paper_trader.core.config import Config
from paper_trader.core.types import SignalSide


def fee_usd(notional: float, fee_pct: float) -> float:
    """Fee in quote currency; never negative."""
    if not math.isfinite(notional) or not math.isfinite(fee_pct):
        return 0.0
    return abs(notional) * max(0.0, fee_pct) / 100.0


def execution_shift_bps(config: Config) -> float:
    latency_bps = max(0.0, config.exec_latency_ms) / 1000.0 * max(0.0, config.exec_latency_bps_per_sec)
    return max(0.0, config.exec_spread_bps) / 2.0 + max(0.0, config.exec_slippage_bps) + latency_bps


def exec_cost_pct_one_way(config: Config) -> float:
    """Execution cost of one fill in percent of price."""
    return execution_shift_bps(config) / 100.0


def apply_execution(action: SignalSide, price: float, config: Config) -> float:
    """Fill price for a market action: buys fill higher, sells fill lower. 0 for invalid prices."""
    if not math.isfinite(price) or price <= 0:
        return 0.0
    shift = execution_shift_bps(config) / 10_000.0
    if action is SignalSide.LONG:
        return price * (1 + shift)
    return price * (1 - shift)


def tax_on_profit(taxable: float, tax_pct: float) -> float:
    """Tax owed on a positive taxable amount; 0 otherwise."""
    if not math.isfinite(taxable) or taxable <= 0:
        return 0.0
    return taxable * max(0.0, tax_pct) / 100.0
