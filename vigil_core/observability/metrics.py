"""In-process metrics for the job pipeline.

Counters track job outcomes per topic, gauges hold the ledger's per-status
job counts and histograms keep recent job durations. Values are keyed by
name plus sorted labels, e.g. ``jobs{status=dead,topic=moderation}``.
"""

import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from sqlalchemy.orm import Session as DBSession

from vigil_core.domain.models import Topic
from vigil_core.domain.services.jobs import JobQueue

MAX_HISTOGRAM_SAMPLES = 1000

Labels = Optional[dict[str, str]]


def metric_key(name: str, labels: Labels = None) -> str:
    if not labels:
        return name
    pairs = ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
    return f"{name}{{{pairs}}}"


def _percentile(ordered: list[float], fraction: float) -> float:
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


def summarize(samples) -> dict[str, float]:
    """Count, bounds, mean and p50/p95/p99 of ``samples``."""
    ordered = sorted(samples)
    if not ordered:
        return {"count": 0, "min": 0, "max": 0, "avg": 0}

    summary = {
        "count": len(ordered),
        "min": ordered[0],
        "max": ordered[-1],
        "avg": sum(ordered) / len(ordered),
    }
    for label, fraction in (("p50", 0.5), ("p95", 0.95), ("p99", 0.99)):
        summary[label] = _percentile(ordered, fraction)
    return summary


class MetricsCollector:
    """Thread-safe store of counters, gauges and histograms.

    Args:
        max_samples: Samples retained per histogram; the oldest are dropped.
    """

    def __init__(self, max_samples: int = MAX_HISTOGRAM_SAMPLES):
        self._lock = threading.RLock()
        self._counters: defaultdict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: defaultdict[str, deque] = defaultdict(
            partial(deque, maxlen=max_samples)
        )

    def increment(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        with self._lock:
            self._counters[metric_key(name, labels)] += value

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[metric_key(name, labels)] = value

    def record_histogram(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._histograms[metric_key(name, labels)].append(value)

    def get(self, name: str, labels: Labels = None) -> float:
        """Current counter or gauge value; 0 when nothing was recorded."""
        key = metric_key(name, labels)
        with self._lock:
            if key in self._counters:
                return self._counters[key]
            return self._gauges.get(key, 0)

    def get_histogram_stats(self, name: str, labels: Labels = None) -> dict[str, float]:
        key = metric_key(name, labels)
        with self._lock:
            samples = list(self._histograms[key]) if key in self._histograms else []
        return summarize(samples)

    def get_all(self) -> dict[str, Any]:
        """Snapshot of every metric, histograms summarized."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    key: summarize(samples) for key, samples in self._histograms.items()
                },
            }

    def reset(self) -> None:
        with self._lock:
            for store in (self._counters, self._gauges, self._histograms):
                store.clear()


def collect_job_gauges(db: DBSession, collector: Optional[MetricsCollector] = None) -> dict[str, Any]:
    """Refresh the ``jobs{topic,status}`` gauges from the job ledger.

    Args:
        db: Database session.
        collector: Collector to update; the process-wide one by default.

    Returns:
        Per-topic status counts under ``topics``, plus ``collected_at``.
    """
    collector = collector or get_metrics()
    queue = JobQueue(db)

    topics = {topic: queue.count_by_status(topic=topic) for topic in Topic.ALL}
    for topic, counts in topics.items():
        for status, count in counts.items():
            collector.set_gauge("jobs", count, labels={"topic": topic, "status": status})

    return {
        "collected_at": datetime.now(timezone.utc).isoformat(),
        "topics": topics,
    }


_collector = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """The process-wide collector."""
    return _collector
