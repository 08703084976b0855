"""
Tests for in-memory metrics.
"""

from smartvideo import metrics


def test_counters_and_failure_rate():
    metrics.inc_counter("pipeline.runs", 4)
    metrics.inc_counter("pipeline.failed")

    snapshot = metrics.get_snapshot()

    assert snapshot["counters"]["pipeline.runs"] == 4
    assert snapshot["failure_rate"] == 25.0


def test_latency_percentiles():
    for ms in range(1, 11):
        metrics.record_latency("stage.generating", ms)

    stats = metrics.get_snapshot()["latency"]["stage.generating"]

    assert stats["count"] == 10
    assert stats["p50"] == 6
    assert stats["p95"] == 10
    assert stats["avg"] == 5.5


def test_latency_keeps_last_samples():
    for ms in range(metrics.MAX_SAMPLES + 20):
        metrics.record_latency("pipeline.run", ms)

    assert metrics.get_snapshot()["latency"]["pipeline.run"]["count"] == metrics.MAX_SAMPLES


def test_gauges():
    metrics.add_gauge("active_runs", 2)
    metrics.add_gauge("active_runs", -1)
    metrics.set_gauge("remote_jobs_in_flight", 3)

    gauges = metrics.get_snapshot()["gauges"]

    assert gauges == {"active_runs": 1, "remote_jobs_in_flight": 3}


def test_recent_errors_are_bounded():
    for i in range(metrics.MAX_ERRORS + 5):
        metrics.record_error("generating", "job_failed", f"scene {i} failed", run_id=f"r{i}")

    snapshot = metrics.get_snapshot()

    assert len(snapshot["recent_errors"]) == 10
    assert snapshot["recent_errors"][-1]["run_id"] == f"r{metrics.MAX_ERRORS + 4}"
    assert snapshot["error_patterns"] == {"generating:job_failed": metrics.MAX_ERRORS}
