"""
Thread-safe in-memory metrics for pipeline runs.

Tracks:
  - Traffic:    runs started / succeeded / failed, by stage and error code
  - Latency:    per-stage and per-run duration samples (ms)
  - Saturation: active runs, in-flight remote jobs
  - Errors:     the last 50 failures for root-cause analysis

All data is ephemeral (resets on restart).
"""

import time
import threading
from typing import Dict, List
from collections import defaultdict

_lock = threading.Lock()

# ── Counters ──────────────────────────────────────────────────────────────────
_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per name) ──────────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Gauges ────────────────────────────────────────────────────────────────────
_gauges: Dict[str, float] = defaultdict(float)

# ── Error log (last 50 errors) ────────────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50


def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'pipeline.runs', 'pipeline.errors.timeout')."""
    with _lock:
        _counters[name] += amount


def record_latency(name: str, duration_ms: float):
    """Record a latency sample in milliseconds."""
    with _lock:
        samples = _latency_samples[name]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[name] = samples[-MAX_SAMPLES:]


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_error(stage: str, error_type: str, message: str, run_id: str = ""):
    """Record a failed run for root-cause analysis."""
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "error_type": error_type,
            "message": message[:300],
            "run_id": run_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def reset():
    """Drop all collected data."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()


def get_snapshot() -> dict:
    """Thread-safe read of everything collected so far."""
    now = time.time()

    with _lock:
        latency_stats = {}
        for name, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[name] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        error_patterns: Dict[str, int] = defaultdict(int)
        for err in _recent_errors:
            error_patterns[f"{err['stage']}:{err['error_type']}"] += 1

        runs = _counters.get("pipeline.runs", 0)
        failures = _counters.get("pipeline.failed", 0)

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "failure_rate": round(failures / runs * 100, 2) if runs else 0,
            "recent_errors": list(_recent_errors[-10:]),
            "error_patterns": dict(error_patterns),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }
