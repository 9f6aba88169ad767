"""Unit tests for audit events and sinks."""

import logging

import requests

from paper_trader.core.audit import (
    AuditEvent,
    AuditLog,
    AuditSink,
    EventKind,
    HttpAuditSink,
    LogAuditSink,
    MemoryAuditSink,
    build_audit_log,
    format_event,
)
from paper_trader.core.config import Config
from paper_trader.core.types import SignalSide


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append((url, json, headers))
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


class BrokenSink(AuditSink):
    def handle(self, event):
        raise RuntimeError("boom")


def test_format_event():
    event = AuditEvent(
        kind=EventKind.GATE_VETO,
        payload={"gate": "trend", "ratio": 0.5, "flag": True, "missing": None, "side": SignalSide.LONG, "note": "a b"},
        run_id="r1",
    )
    assert format_event(event) == "[AUDIT][GATE_VETO] run=r1 gate=trend ratio=0.5 flag=1 missing=NA side=BUY note=a_b"


def test_format_event_without_run_id():
    assert format_event(AuditEvent(kind=EventKind.UNLOCK)) == "[AUDIT][UNLOCK] run=-"


def test_memory_sink_and_fan_out():
    memory = MemoryAuditSink(maxlen=2)
    log = AuditLog([BrokenSink(), memory], run_id="r2")
    for k in range(3):
        log.emit(EventKind.LOCK, n=k)
    assert [e.payload["n"] for e in memory.events] == [1, 2]
    assert memory.events[0].run_id == "r2"
    assert memory.of_kind(EventKind.UNLOCK) == []


def test_log_sink_writes_text(caplog):
    log = AuditLog([LogAuditSink(logging.INFO)])
    with caplog.at_level(logging.INFO, logger="paper_trader"):
        log.emit(EventKind.KILL_SWITCH, reason="slip")
    assert "[AUDIT][KILL_SWITCH] run=- reason=slip" in caplog.text


def test_http_sink_posts_batches():
    session = FakeSession([FakeResponse(), FakeResponse()])
    sink = HttpAuditSink("https://audit.example/append", token="tok", batch_size=2, session=session)
    log = AuditLog([sink], run_id="run-7")
    for k in range(3):
        log.emit(EventKind.OPEN, k=k)
    sink.flush()
    assert len(sink) == 1
    url, body, headers = session.posts[0]
    assert url == "https://audit.example/append"
    assert headers["x-audit-token"] == "tok"
    assert body["action"] == "append"
    assert body["params"]["runId"] == "run-7"
    events = body["params"]["events"]
    assert [e["eventType"] for e in events] == ["OPEN", "OPEN"]
    assert events[0]["payload"] == {"k": "0"}
    sink.flush()
    assert len(sink) == 0


def test_http_sink_requeues_on_failure():
    session = FakeSession([FakeResponse(500, "down"), requests.ConnectionError("refused"), FakeResponse()])
    sink = HttpAuditSink("https://audit.example/append", batch_size=10, session=session)
    for k in range(3):
        sink.handle(AuditEvent(kind=EventKind.CLOSE, payload={"k": k}))
    sink.flush()
    assert len(sink) == 3
    sink.flush()
    assert len(sink) == 3
    sink.flush()
    assert len(sink) == 0
    sent = session.posts[-1][1]["params"]["events"]
    assert [e["payload"]["k"] for e in sent] == ["0", "1", "2"]
    assert "x-audit-token" not in session.posts[-1][2]


def test_http_sink_without_endpoint_keeps_queue():
    session = FakeSession([])
    sink = HttpAuditSink("", session=session)
    sink.handle(AuditEvent(kind=EventKind.CLOSE))
    sink.flush()
    assert len(sink) == 1
    assert session.posts == []


def test_build_audit_log():
    plain = build_audit_log(Config())
    assert [type(s) for s in plain.sinks] == [LogAuditSink]
    memory = MemoryAuditSink()
    full = build_audit_log(Config(audit_on=True, audit_endpoint="https://audit.example", run_id="x"), [memory])
    assert [type(s) for s in full.sinks] == [LogAuditSink, HttpAuditSink, MemoryAuditSink]
    assert full.run_id == "x"
