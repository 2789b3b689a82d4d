"""Tests for the Prometheus metrics collector."""

from agent_wake.metrics import PrometheusMetrics


def test_counters_and_gauges():
    m = PrometheusMetrics()
    m.inc("agent_wake_injections_total")
    m.inc("agent_wake_injections_total", 2)
    m.set_gauge("agent_wake_controllers", 3)
    assert m.get("agent_wake_injections_total") == 3
    assert m.get("agent_wake_controllers") == 3
    assert m.get("agent_wake_unknown") == 0


def test_unknown_counter_is_ignored():
    m = PrometheusMetrics()
    m.inc("agent_wake_made_up_total")
    assert "agent_wake_made_up_total" not in m.to_prometheus()


def test_prometheus_text_format():
    m = PrometheusMetrics()
    m.inc("agent_wake_giveups_total")
    text = m.to_prometheus()
    assert "# TYPE agent_wake_giveups_total counter" in text
    assert "agent_wake_giveups_total 1" in text
    assert "# TYPE agent_wake_engine_alive gauge" in text
    assert text.endswith("\n")


def test_reset():
    m = PrometheusMetrics()
    m.inc("agent_wake_signals_total")
    m.set_gauge("agent_wake_pending_signals", 2)
    m.reset()
    assert m.get("agent_wake_signals_total") == 0
    assert m.get("agent_wake_pending_signals") == 0


def test_log_summary():
    m = PrometheusMetrics()
    m.inc("agent_wake_injections_total", 4)
    m.inc("agent_wake_injections_failed_total")
    summary = m.log_summary()
    assert "inj=4/1" in summary
    assert summary.startswith("uptime=")
