"""Core: config, types, logging, audit events."""

from paper_trader.core.config import load_config, Config, PRESETS
from paper_trader.core.types import (
    Signal,
    SignalSide,
    Regime,
    ModelType,
    Decision,
    TradeIdea,
    PriceObservation,
    Position,
    ClosedTrade,
    GateResult,
)
from paper_trader.core.logger import setup_logging
from paper_trader.core.audit import AuditLog, AuditEvent, EventKind, build_audit_log

__all__ = [
    "load_config",
    "Config",
    "PRESETS",
    "Signal",
    "SignalSide",
    "Regime",
    "ModelType",
    "Decision",
    "TradeIdea",
    "PriceObservation",
    "Position",
    "ClosedTrade",
    "GateResult",
    "setup_logging",
    "AuditLog",
    "AuditEvent",
    "EventKind",
    "build_audit_log",
]
