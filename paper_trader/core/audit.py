"""
Structured audit events. The core emits typed events; sinks format or ship them.
Delivery never affects trading: sink failures are logged and swallowed.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Iterable, List, Optional

import requests

logger = logging.getLogger("paper_trader.audit")


class EventKind(str, Enum):
    GATE_VETO = "GATE_VETO"
    ENTRY_CTX = "ENTRY_CTX"
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    CLOSE = "CLOSE"
    ROLLUP = "ROLLUP"
    STOP_MOVED = "STOP_MOVED"
    RISK_CUT = "RISK_CUT"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"
    KILL_SWITCH = "KILL_SWITCH"
    TICK_SLOW = "TICK_SLOW"
    BACKTEST = "BACKTEST"
    GRID = "GRID"


@dataclass(frozen=True)
class AuditEvent:
    kind: EventKind
    payload: dict = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str = ""


def _fmt_value(value: Any) -> str:
    if value is None:
        return "NA"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return f"{value:.6f}".rstrip("0").rstrip(".") or "0"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value).replace(" ", "_")


def format_event(event: AuditEvent) -> str:
    """Text form used at the logging boundary: [AUDIT][KIND] run=.. key=value ..."""
    parts = [f"[AUDIT][{event.kind.value}]", f"run={event.run_id or '-'}"]
    parts.extend(f"{k}={_fmt_value(v)}" for k, v in event.payload.items())
    return " ".join(parts)


class AuditSink:
    """Receives events. Subclasses must not raise."""

    def handle(self, event: AuditEvent) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        pass


class LogAuditSink(AuditSink):
    def __init__(self, level: int = logging.INFO):
        self.level = level

    def handle(self, event: AuditEvent) -> None:
        logger.log(self.level, format_event(event))


class MemoryAuditSink(AuditSink):
    """Keeps the last `maxlen` events in memory (reporting, tests)."""

    def __init__(self, maxlen: int = 5000):
        self.events: Deque[AuditEvent] = deque(maxlen=maxlen)

    def handle(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> List[AuditEvent]:
        return [e for e in self.events if e.kind == kind]


class HttpAuditSink(AuditSink):
    """
    Queues events and posts them in batches to an audit endpoint.
    Failed batches go back to the front of the queue; the queue is bounded.
    """

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        batch_size: int = 100,
        max_queue: int = 2000,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.strip()
        self._token = token.strip()
        self.batch_size = batch_size
        self.timeout = timeout
        self._queue: Deque[AuditEvent] = deque(maxlen=max_queue)
        self._session = session or requests.Session()

    def __len__(self) -> int:
        return len(self._queue)

    def handle(self, event: AuditEvent) -> None:
        self._queue.append(event)

    def flush(self) -> None:
        if not self.endpoint or not self._queue:
            return
        batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
        run_id = next((e.run_id for e in batch if e.run_id), "")
        body = {
            "action": "append",
            "params": {
                "runId": run_id,
                "events": [
                    {
                        "ts": int(e.ts.timestamp() * 1000),
                        "runId": e.run_id or None,
                        "eventType": e.kind.value,
                        "payload": {k: _fmt_value(v) for k, v in e.payload.items()},
                        "raw": format_event(e),
                    }
                    for e in batch
                ],
            },
        }
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["x-audit-token"] = self._token
        try:
            r = self._session.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
            if r.status_code >= 300:
                logger.warning("Audit post failed: %s %s", r.status_code, r.text[:200])
                self._requeue(batch)
        except requests.RequestException as e:
            logger.warning("Audit post error: %s", e)
            self._requeue(batch)

    def _requeue(self, batch: Iterable[AuditEvent]) -> None:
        for event in reversed(list(batch)):
            if len(self._queue) == self._queue.maxlen:
                break
            self._queue.appendleft(event)


class AuditLog:
    """Fan-out of audit events to sinks. One per run."""

    def __init__(self, sinks: Optional[Iterable[AuditSink]] = None, run_id: str = ""):
        self.sinks: List[AuditSink] = list(sinks) if sinks is not None else [LogAuditSink(logging.DEBUG)]
        self.run_id = run_id

    def emit(self, kind: EventKind, **payload: Any) -> AuditEvent:
        event = AuditEvent(kind=kind, payload=payload, run_id=self.run_id)
        for sink in self.sinks:
            try:
                sink.handle(event)
            except Exception:
                logger.exception("Audit sink %s failed", type(sink).__name__)
        return event

    def flush(self) -> None:
        for sink in self.sinks:
            try:
                sink.flush()
            except Exception:
                logger.exception("Audit sink %s flush failed", type(sink).__name__)


def build_audit_log(config, extra_sinks: Optional[Iterable[AuditSink]] = None) -> AuditLog:
    """Log sink always; HTTP sink when audit_on and an endpoint is configured."""
    sinks: List[AuditSink] = [LogAuditSink()]
    if config.audit_on and config.audit_endpoint:
        sinks.append(HttpAuditSink(config.audit_endpoint, config.audit_token))
    sinks.extend(extra_sinks or [])
    return AuditLog(sinks, run_id=config.run_id)
