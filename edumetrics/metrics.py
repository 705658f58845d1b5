# edumetrics/metrics.py
from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

from edumetrics.config import MetricsConfig
from edumetrics.export import render_prometheus
from edumetrics.sweeper import CleanupSweeper
from edumetrics.tags import SeriesKey, Tags

log = logging.getLogger(__name__)

Number = Union[int, float]
_COMPONENT = {"component": "MetricsAggregator"}


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def percentile(sorted_values: List[Number], p: float) -> Number:
    """
    Linear interpolation between closest ranks: index = (n-1)*p.
    `sorted_values` must already be ascending. Empty input gives 0.
    """
    if not sorted_values:
        return 0
    index = (len(sorted_values) - 1) * p
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def _stats(values: List[Number], last_updated: int) -> Optional[Dict[str, Any]]:
    if not values:
        return None
    arr = sorted(values)
    count = len(arr)
    total = sum(arr)
    return {
        "count": count,
        "sum": total,
        "mean": total / count,
        "min": arr[0],
        "max": arr[-1],
        "p50": percentile(arr, 0.5),
        "p90": percentile(arr, 0.9),
        "p95": percentile(arr, 0.95),
        "p99": percentile(arr, 0.99),
        "last_updated": last_updated,
    }


@dataclass
class _Scalar:
    value: Number
    last_updated: int


class MetricPoint(NamedTuple):
    value: Number
    tags: Dict[str, str]
    timestamp: int


class _Histogram:
    """Bounded sample buffer; oldest samples go first once `max_samples` is exceeded."""

    def __init__(self, max_samples: int, now: int):
        self.max_samples = max_samples
        self.samples: Deque[Tuple[Number, int]] = deque(maxlen=max_samples)
        self.last_updated = now

    def observe(self, value: Number, now: int) -> None:
        self.samples.append((value, now))
        self.last_updated = now

    def values(self) -> List[Number]:
        return [v for v, _ in self.samples]


class MetricsAggregator:
    """
    In-process counters, gauges, bounded histograms and pending timers.

    Every mapping is keyed by SeriesKey (name + canonical sorted tags); the three
    value mappings are separate namespaces. Reads of a missing series return
    0 / None, never raise. Construct one per process (see `create_aggregator`)
    and hand it to whatever needs it.
    """

    def __init__(self, config: Optional[MetricsConfig] = None, clock: Optional[Callable[[], int]] = None):
        self.config = config or MetricsConfig()
        self._clock = clock or _now_ms
        self.lock = threading.Lock()
        self.counters: Dict[SeriesKey, _Scalar] = {}
        self.gauges: Dict[SeriesKey, _Scalar] = {}
        self.histograms: Dict[SeriesKey, _Histogram] = {}
        self.timers: Dict[SeriesKey, int] = {}
        self.points: Dict[Tuple[str, str], List[MetricPoint]] = {}
        self.start_time = self._clock()
        self._sweeper = CleanupSweeper(self.cleanup, self.config.cleanup_interval_s)
        log.info("MetricsAggregator initialized", extra=_COMPONENT)

    # ----------------------------- lifecycle -----------------------------

    def start(self) -> "MetricsAggregator":
        """Start the periodic cleanup sweep."""
        self._sweeper.start()
        return self

    def dispose(self) -> None:
        """Stop the cleanup sweep. State is kept; call reset() to drop it."""
        self._sweeper.stop()

    @property
    def sweeping(self) -> bool:
        return self._sweeper.running

    def __enter__(self) -> "MetricsAggregator":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.dispose()

    # ----------------------------- writes -----------------------------

    def increment_counter(self, name: str, tags: Optional[Tags] = None, amount: Number = 1) -> None:
        key = SeriesKey.of(name, tags)
        now = self._clock()
        with self.lock:
            counter = self.counters.get(key)
            if counter is None:
                counter = self.counters[key] = _Scalar(0, now)
            counter.value += amount
            counter.last_updated = now
            total = counter.value
            if self.config.detailed_metrics_enabled:
                self._record_point("counter", key, total, now)

    def set_gauge(self, name: str, value: Number, tags: Optional[Tags] = None) -> None:
        key = SeriesKey.of(name, tags)
        now = self._clock()
        with self.lock:
            self.gauges[key] = _Scalar(value, now)
            if self.config.detailed_metrics_enabled:
                self._record_point("gauge", key, value, now)

    def record_histogram(self, name: str, value: Number, tags: Optional[Tags] = None) -> None:
        self._observe(SeriesKey.of(name, tags), value)

    def start_timer(self, name: str, tags: Optional[Tags] = None) -> SeriesKey:
        """
        Mark the start of a timed operation. The returned handle is the series key,
        so starting the same name+tags twice before ending overwrites the first start.
        """
        key = SeriesKey.of(name, tags)
        now = self._clock()
        with self.lock:
            self.timers[key] = now
        return key

    def end_timer(self, handle: SeriesKey) -> Number:
        """Record elapsed ms as a histogram sample under the timer's name/tags; 0 for unknown handles."""
        now = self._clock()
        with self.lock:
            started = self.timers.pop(handle, None)
        if started is None:
            log.warning("Timer not found", extra={"timer_key": str(handle), **_COMPONENT})
            return 0
        duration = now - started
        self._observe(handle, duration)
        return duration

    @contextmanager
    def timed(self, name: str, tags: Optional[Tags] = None) -> Iterator[SeriesKey]:
        """Time the body of a `with` block; the timer is closed even if the body raises."""
        handle = self.start_timer(name, tags)
        try:
            yield handle
        finally:
            self.end_timer(handle)

    def _observe(self, key: SeriesKey, value: Number) -> None:
        now = self._clock()
        with self.lock:
            hist = self.histograms.get(key)
            if hist is None:
                hist = self.histograms[key] = _Histogram(self.config.max_histogram_samples, now)
            hist.observe(value, now)
            if self.config.detailed_metrics_enabled:
                self._record_point("histogram", key, value, now)

    def _record_point(self, metric_type: str, key: SeriesKey, value: Number, now: int) -> None:
        # caller holds self.lock
        series = (metric_type, key.name)
        cutoff = now - self.config.retention_period_ms
        points = [p for p in self.points.get(series, []) if p.timestamp >= cutoff]
        points.append(MetricPoint(value, key.labels(), now))
        self.points[series] = points

    # ----------------------------- reads -----------------------------

    def get_counter(self, name: str, tags: Optional[Tags] = None) -> Number:
        with self.lock:
            counter = self.counters.get(SeriesKey.of(name, tags))
            return counter.value if counter else 0

    def get_gauge(self, name: str, tags: Optional[Tags] = None) -> Optional[Number]:
        with self.lock:
            gauge = self.gauges.get(SeriesKey.of(name, tags))
            return gauge.value if gauge else None

    def get_histogram_stats(self, name: str, tags: Optional[Tags] = None) -> Optional[Dict[str, Any]]:
        """count/sum/mean/min/max/p50/p90/p95/p99/last_updated, or None if there are no samples."""
        with self.lock:
            hist = self.histograms.get(SeriesKey.of(name, tags))
            if hist is None:
                return None
            values, last_updated = hist.values(), hist.last_updated
        return _stats(values, last_updated)

    def get_metric_points(self, metric_type: str, name: str) -> List[MetricPoint]:
        """Raw detailed points for ("counter" | "gauge" | "histogram", name)."""
        with self.lock:
            return list(self.points.get((metric_type, name), []))

    def get_all_metrics(self) -> Dict[str, Any]:
        now = self._clock()
        with self.lock:
            counters = [(k, c.value, c.last_updated) for k, c in self.counters.items()]
            gauges = [(k, g.value, g.last_updated) for k, g in self.gauges.items()]
            histos = [(k, h.values(), h.last_updated) for k, h in self.histograms.items()]
            start_time = self.start_time

        out: Dict[str, Any] = {"counters": {}, "gauges": {}, "histograms": {}}
        for k, value, ts in counters:
            out["counters"].setdefault(k.name, []).append({"value": value, "tags": k.labels(), "last_updated": ts})
        for k, value, ts in gauges:
            out["gauges"].setdefault(k.name, []).append({"value": value, "tags": k.labels(), "last_updated": ts})
        for k, values, ts in histos:
            out["histograms"].setdefault(k.name, []).append(
                {"stats": _stats(values, ts), "tags": k.labels(), "last_updated": ts}
            )
        out["uptime"] = now - start_time
        out["timestamp"] = now
        return out

    def export_metrics(self, format: str = "json") -> Union[str, Dict[str, Any]]:
        snapshot = self.get_all_metrics()
        if format == "prometheus":
            return render_prometheus(snapshot)
        return snapshot

    # ----------------------------- composites -----------------------------

    def track_request(self, endpoint: str, method: str = "POST", tags: Optional[Tags] = None) -> SeriesKey:
        request_tags = {"endpoint": endpoint, "method": method, **(tags or {})}
        self.increment_counter("api.requests", request_tags)
        return self.start_timer("api.request_duration", request_tags)

    def track_response(self, handle: SeriesKey, status_code: int, success: bool = True) -> Number:
        duration = self.end_timer(handle)
        tags = handle.labels()
        self.increment_counter("api.responses", {**tags, "status": status_code, "success": success})
        if not success:
            self.increment_counter("api.errors", tags)
        return duration

    def track_agent_usage(self, agent_name: str, operation: str, duration_ms: Number, success: bool = True) -> None:
        tags = {"agent": agent_name, "operation": operation}
        self.increment_counter("agent.requests", tags)
        self.record_histogram("agent.duration", duration_ms, tags)
        if not success:
            self.increment_counter("agent.errors", tags)

    def track_user_activity(self, user_id: str, age_group: str, mode: str, subject: str = "general") -> None:
        self.increment_counter("user.activities", {"ageGroup": age_group, "mode": mode, "subject": subject})
        self.set_gauge("user.last_activity", self._clock(), {"userId": user_id})

    # ----------------------------- health -----------------------------

    def get_memory_metrics(self) -> Dict[str, int]:
        with self.lock:
            return {
                "counters": len(self.counters),
                "gauges": len(self.gauges),
                "histograms": len(self.histograms),
                "timers": len(self.timers),
                "metric_points": sum(len(p) for p in self.points.values()),
            }

    def get_health_metrics(self) -> Dict[str, Any]:
        """
        Request totals and mean latency summed over every tag combination of
        api.requests / api.errors / api.request_duration.
        """
        now = self._clock()
        with self.lock:
            total_requests = sum(c.value for k, c in self.counters.items() if k.name == "api.requests")
            total_errors = sum(c.value for k, c in self.counters.items() if k.name == "api.errors")
            durations = [v for k, h in self.histograms.items() if k.name == "api.request_duration" for v in h.values()]
            start_time = self.start_time

        error_rate = (total_errors / total_requests) * 100 if total_requests > 0 else 0
        avg_response_time = sum(durations) / len(durations) if durations else 0
        return {
            "uptime": now - start_time,
            "total_requests": total_requests,
            "total_errors": total_errors,
            "error_rate": error_rate,
            "avg_response_time": avg_response_time,
            "memory_usage": self.get_memory_metrics(),
            "timestamp": now,
        }

    # ----------------------------- maintenance -----------------------------

    def cleanup(self) -> int:
        """
        Drop raw points and histogram samples older than the retention window and
        pending timers older than timer_max_age_ms. Returns the number of points
        and samples removed. The lock is taken per series, not for the whole scan.
        """
        now = self._clock()
        cutoff = now - self.config.retention_period_ms
        timer_cutoff = now - self.config.timer_max_age_ms
        removed = 0

        with self.lock:
            point_keys = list(self.points)
            hist_keys = list(self.histograms)

        for series in point_keys:
            with self.lock:
                points = self.points.get(series)
                if points is None:
                    continue
                recent = [p for p in points if p.timestamp >= cutoff]
                if len(recent) != len(points):
                    self.points[series] = recent
                    removed += len(points) - len(recent)

        for key in hist_keys:
            with self.lock:
                hist = self.histograms.get(key)
                if hist is None:
                    continue
                recent_samples = [s for s in hist.samples if s[1] >= cutoff]
                if len(recent_samples) != len(hist.samples):
                    removed += len(hist.samples) - len(recent_samples)
                    hist.samples = deque(recent_samples, maxlen=hist.max_samples)

        with self.lock:
            stale = [k for k, started in self.timers.items() if started < timer_cutoff]
            for k in stale:
                del self.timers[k]

        if removed > 0:
            log.info(f"Cleaned up {removed} old metric points", extra=_COMPONENT)
        if stale:
            log.info(f"Dropped {len(stale)} stale timers", extra=_COMPONENT)
        return removed

    def reset(self) -> None:
        with self.lock:
            self.points.clear()
            self.counters.clear()
            self.timers.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.start_time = self._clock()
        log.info("All metrics reset", extra=_COMPONENT)


def create_aggregator(
    config: Optional[MetricsConfig] = None, clock: Optional[Callable[[], int]] = None
) -> MetricsAggregator:
    """Build an aggregator and start its hourly (by default) cleanup sweep."""
    return MetricsAggregator(config, clock=clock).start()


def dispose(aggregator: MetricsAggregator) -> None:
    aggregator.dispose()
