"""Tests for credentials, metrics and logging helpers."""

import json
import logging

from conduit.core.credentials import CredentialStore
from conduit.core.logging import PhaseTimer, StructuredFormatter
from conduit.core.metrics import MetricsCollector


# ─── Credentials ──────────────────────────────────────────────


def test_credential_store_set_get_clear():
    store = CredentialStore(use_env=False)
    assert store.get("anthropic") == ""
    store.set("anthropic", "sk-ant")
    assert store.get("anthropic") == "sk-ant"
    store.set("anthropic", "sk-ant-2")
    assert store.get("anthropic") == "sk-ant-2"
    store.clear("anthropic")
    assert store.get("anthropic") == ""


def test_credential_store_falls_back_to_env(monkeypatch):
    monkeypatch.setenv("MY_PROXY_API_KEY", "from-env")
    store = CredentialStore()
    assert store.get("my-proxy") == "from-env"
    store.set("my-proxy", "stored")
    assert store.get("my-proxy") == "stored"
    store.clear()
    assert store.get("my-proxy") == "from-env"


# ─── Metrics ──────────────────────────────────────────────────


def test_counters_are_keyed_by_labels():
    m = MetricsCollector()
    m.inc("llm.calls", labels={"provider": "openai", "model": "gpt-4o"})
    m.inc("llm.calls", labels={"model": "gpt-4o", "provider": "openai"})
    m.inc("llm.calls", value=3)

    assert m.counter("llm.calls", labels={"provider": "openai", "model": "gpt-4o"}) == 2
    assert m.counter("llm.calls") == 3
    assert "llm.calls{model=gpt-4o,provider=openai}" in m.snapshot()["counters"]


def test_histogram_snapshot_and_reset():
    m = MetricsCollector()
    for value in range(1, 101):
        m.observe("llm.ttft_ms", float(value))

    hist = m.snapshot()["histograms"]["llm.ttft_ms"]
    assert hist["count"] == 100
    assert hist["p50"] == 51.0
    assert hist["p95"] == 96.0
    assert hist["max"] == 100.0

    m.reset()
    assert m.snapshot()["counters"] == {}
    assert m.snapshot()["histograms"] == {}


def test_histogram_window_is_bounded():
    m = MetricsCollector()
    for value in range(MetricsCollector.HISTOGRAM_MAX_SAMPLES + 10):
        m.observe("llm.duration_ms", float(value))
    assert m.snapshot()["histograms"]["llm.duration_ms"]["count"] == 500


# ─── Logging ──────────────────────────────────────────────────


def test_phase_timer():
    timer = PhaseTimer()
    timer.mark("building_request")
    timer.mark("invoking")
    assert timer.elapsed("invoking") >= 0
    assert timer.elapsed("streaming") is None
    summary = timer.summary()
    assert summary.startswith("building_request: ")
    assert summary.endswith("s")
    assert "Total:" in summary


def test_structured_formatter_lifts_extras():
    record = logging.LogRecord("conduit.llm", logging.INFO, __file__, 1, "call %s", ("done",), None)
    record.request_id = "abc123"
    record.code = "timeout"

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["msg"] == "call done"
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "abc123"
    assert entry["code"] == "timeout"
    assert "provider" not in entry
