"""
In-process counters and gauges for the notification worker.

Intent:
    Give tests and local debugging a view of what the worker did
    (`notification_deliveries_total{status=...}`, `notification_jobs_inflight`)
    without pulling in a metrics client. Values live only in this process.
"""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


class _Registry:
    def __init__(self) -> None:
        self.counters: Dict[str, Dict[LabelKey, int]] = defaultdict(dict)
        self.gauges: Dict[str, Dict[LabelKey, float]] = defaultdict(dict)
        self.lock = Lock()


_registry = _Registry()


def _labels(labels: Dict[str, str]) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    key = _labels(labels)
    with _registry.lock:
        bucket = _registry.counters[name]
        bucket[key] = bucket.get(key, 0) + amount


def adjust_gauge(name: str, delta: float, **labels: str) -> None:
    """Shift a gauge by `delta`; it never drops below zero."""
    key = _labels(labels)
    with _registry.lock:
        bucket = _registry.gauges[name]
        bucket[key] = max(0.0, bucket.get(key, 0.0) + float(delta))


def counter_value(name: str, **labels: str) -> int:
    with _registry.lock:
        return _registry.counters.get(name, {}).get(_labels(labels), 0)


def gauge_value(name: str, **labels: str) -> float:
    with _registry.lock:
        return _registry.gauges.get(name, {}).get(_labels(labels), 0.0)


def reset_for_tests() -> None:
    with _registry.lock:
        _registry.counters.clear()
        _registry.gauges.clear()
