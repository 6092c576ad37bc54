"""
Metrics Collection Module for the Schema Knowledge Engine
Provides in-process metrics collection and export
"""
from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional
import json
import statistics


class Histogram:
    """Histogram for tracking value distributions"""

    DEFAULT_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]

    def __init__(self, name: str, buckets: Optional[List[float]] = None, labels: Optional[Dict[str, str]] = None):
        self.name = name
        self.labels = labels or {}
        self.buckets = sorted(buckets or self.DEFAULT_BUCKETS)
        self._counts = {b: 0 for b in self.buckets}
        self._counts[float('inf')] = 0
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        """Record an observation"""
        self._sum += value
        self._count += 1
        for bucket in self.buckets:
            if value <= bucket:
                self._counts[bucket] += 1
        self._counts[float('inf')] += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": "histogram",
            "labels": self.labels,
            "buckets": {str(k): v for k, v in self._counts.items()},
            "sum": self._sum,
            "count": self._count,
        }


class MetricsCollector:
    """Process-wide metrics collector"""

    _instance: Optional["MetricsCollector"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsCollector":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._timers: Dict[str, List[float]] = defaultdict(list)
        self._data_lock = threading.Lock()
        self._enabled = True
        self._initialized = True

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def counter(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter"""
        if not self._enabled:
            return

        key = self._make_key(name, labels)
        with self._data_lock:
            self._counters[key] += value

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Set a gauge value"""
        if not self._enabled:
            return

        key = self._make_key(name, labels)
        with self._data_lock:
            self._gauges[key] = value

    def histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None, buckets: Optional[List[float]] = None) -> None:
        """Record a histogram observation"""
        if not self._enabled:
            return

        key = self._make_key(name, labels)
        with self._data_lock:
            if key not in self._histograms:
                self._histograms[key] = Histogram(name, buckets, labels)
            self._histograms[key].observe(value)

    def timer(self, name: str, duration: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a timer value"""
        if not self._enabled:
            return

        key = self._make_key(name, labels)
        with self._data_lock:
            self._timers[key].append(duration)

    @contextmanager
    def time_operation(self, name: str, labels: Optional[Dict[str, str]] = None) -> Generator[None, None, None]:
        """Context manager for timing operations"""
        start = time.time()
        try:
            yield
        finally:
            self.timer(name, time.time() - start, labels)

    def _make_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_metrics(self) -> Dict[str, Any]:
        """Get all collected metrics"""
        with self._data_lock:
            metrics = {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {k: v.to_dict() for k, v in self._histograms.items()},
                "timers": {},
            }

            for key, values in self._timers.items():
                if values:
                    metrics["timers"][key] = {
                        "count": len(values),
                        "sum": sum(values),
                        "min": min(values),
                        "max": max(values),
                        "mean": statistics.mean(values),
                    }

            return metrics

    def reset(self) -> None:
        """Reset all metrics"""
        with self._data_lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._timers.clear()

    def export_json(self) -> str:
        """Export metrics as JSON string"""
        return json.dumps(self.get_metrics(), indent=2, default=str)


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance"""
    return MetricsCollector()


def counter(name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().counter(name, value, labels)


def gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().gauge(name, value, labels)


def histogram(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().histogram(name, value, labels)


def timer(name: str, duration: float, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().timer(name, duration, labels)


@contextmanager
def time_operation(name: str, labels: Optional[Dict[str, str]] = None) -> Generator[None, None, None]:
    """Context manager for timing operations"""
    with get_metrics_collector().time_operation(name, labels):
        yield


class SchemaEngineMetrics:
    """Schema engine specific metrics helper"""

    @staticmethod
    def record_learning_task(duration: float, success: bool, changed: bool) -> None:
        labels = {"success": str(success).lower(), "changed": str(changed).lower()}
        timer("learning_task_duration", duration, labels)
        counter("learning_task_total", 1.0, labels)

    @staticmethod
    def record_merge(kind: str, changed: bool) -> None:
        counter("schema_merge_total", 1.0, {"kind": kind, "changed": str(changed).lower()})

    @staticmethod
    def record_extraction(duration: float, success: bool, cached: bool) -> None:
        labels = {"success": str(success).lower(), "cached": str(cached).lower()}
        timer("schema_extraction_duration", duration, labels)
        counter("schema_extraction_total", 1.0, labels)

    @staticmethod
    def record_compression(input_tables: int, output_tables: int, estimated_tokens: int) -> None:
        counter("schema_compression_total")
        histogram(
            "schema_compression_tables_dropped",
            float(max(0, input_tables - output_tables)),
        )
        gauge("schema_compression_last_tokens", float(estimated_tokens))

    @staticmethod
    def set_queue_depth(database_id: str, depth: int) -> None:
        gauge("schema_task_queue_depth", float(depth), {"database_id": database_id})

    @staticmethod
    def record_error(error_type: str, category: str) -> None:
        counter("errors_total", 1.0, {"error_type": error_type, "category": category})
