# core/metrics.py — in-process metrics and authorization audit logging

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Audit logger for authorization decisions
audit_logger = logging.getLogger("rbac.audit")

DEFAULT_BUCKETS_MS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0]


@dataclass
class MetricCounter:
    """A counter metric that can only increase."""
    name: str
    value: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


@dataclass
class MetricGauge:
    """A gauge metric that can increase or decrease."""
    name: str
    value: float = 0.0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


@dataclass
class MetricHistogram:
    """A histogram metric for tracking distributions."""
    name: str
    buckets: List[float] = field(default_factory=lambda: list(DEFAULT_BUCKETS_MS))
    counts: List[int] = field(default_factory=lambda: [0] * len(DEFAULT_BUCKETS_MS))
    sum: float = 0.0
    count: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, MetricCounter] = {}
        self._gauges: Dict[str, MetricGauge] = {}
        self._histograms: Dict[str, MetricHistogram] = {}
        self._start_time = time.time()

    def _get_metric_key(self, name: str, labels: Dict[str, str] = None) -> str:
        """Generate a unique key for a metric with labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._counters:
                self._counters[key] = MetricCounter(name=name, labels=labels or {})
            self._counters[key].value += value
            self._counters[key].last_updated = time.time()

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge metric value."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._gauges:
                self._gauges[key] = MetricGauge(name=name, labels=labels or {})
            self._gauges[key].value = value
            self._gauges[key].last_updated = time.time()

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a value in a histogram metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._histograms:
                self._histograms[key] = MetricHistogram(name=name, labels=labels or {})

            histogram = self._histograms[key]
            histogram.sum += value
            histogram.count += 1
            histogram.last_updated = time.time()

            for i, bucket in enumerate(histogram.buckets):
                if value <= bucket:
                    histogram.counts[i] += 1
                    break
            else:
                histogram.counts[-1] += 1

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        """Get the current value of a counter."""
        with self._lock:
            counter = self._counters.get(self._get_metric_key(name, labels))
            return counter.value if counter else 0

    def get_gauge(self, name: str, labels: Dict[str, str] = None) -> float:
        """Get the current value of a gauge."""
        with self._lock:
            gauge = self._gauges.get(self._get_metric_key(name, labels))
            return gauge.value if gauge else 0.0

    def get_histogram_stats(self, name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
        """Get histogram statistics."""
        with self._lock:
            histogram = self._histograms.get(self._get_metric_key(name, labels))
            if histogram is None:
                histogram = MetricHistogram(name=name, labels=labels or {})
            return {
                "count": histogram.count,
                "sum": histogram.sum,
                "avg": histogram.sum / histogram.count if histogram.count else 0.0,
                "buckets": dict(zip(histogram.buckets, histogram.counts)),
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics in a structured format."""
        with self._lock:
            metrics = {
                "counters": defaultdict(list),
                "gauges": defaultdict(list),
                "histograms": defaultdict(list),
                "uptime_seconds": time.time() - self._start_time,
                "timestamp": time.time(),
            }
            for counter in self._counters.values():
                metrics["counters"][counter.name].append({
                    "value": counter.value,
                    "labels": counter.labels,
                    "last_updated": counter.last_updated,
                })
            for gauge in self._gauges.values():
                metrics["gauges"][gauge.name].append({
                    "value": gauge.value,
                    "labels": gauge.labels,
                    "last_updated": gauge.last_updated,
                })
            for histogram in self._histograms.values():
                metrics["histograms"][histogram.name].append({
                    "stats": self.get_histogram_stats(histogram.name, histogram.labels),
                    "labels": histogram.labels,
                    "last_updated": histogram.last_updated,
                })
            for section in ("counters", "gauges", "histograms"):
                metrics[section] = dict(metrics[section])
            return metrics

    def reset_metrics(self):
        """Reset all metrics to zero."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics collector instance
_metrics = MetricsCollector()


# Convenience functions for easy access
def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment_counter(name, value, labels)


def set_gauge(name: str, value: float, labels: Dict[str, str] = None):
    """Set a gauge metric value."""
    _metrics.set_gauge(name, value, labels)


def observe_histogram(name: str, value: float, labels: Dict[str, str] = None):
    """Observe a value in a histogram metric."""
    _metrics.observe_histogram(name, value, labels)


def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    """Get the current value of a counter."""
    return _metrics.get_counter(name, labels)


def get_gauge(name: str, labels: Dict[str, str] = None) -> float:
    """Get the current value of a gauge."""
    return _metrics.get_gauge(name, labels)


def get_histogram_stats(name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
    """Get histogram statistics."""
    return _metrics.get_histogram_stats(name, labels)


def get_all_metrics() -> Dict[str, Any]:
    """Get all metrics in a structured format."""
    return _metrics.get_all_metrics()


def reset_metrics():
    """Reset all metrics to zero."""
    _metrics.reset_metrics()


# ============================================================================
# RBAC-Specific Metrics and Auditing
# ============================================================================

def record_authorization_check(allowed: bool, action: str, subject: str, route: str = ""):
    """
    Record an authorization check.

    Args:
        allowed: Whether the check passed
        action: Action being checked
        subject: Subject tag being checked
        route: Route template being accessed (e.g. "/products/{product_id}"),
            if any. Denials are counted per template, never per raw path.
    """
    outcome = "allowed" if allowed else "denied"
    increment_counter(f"rbac.checks.{outcome}")
    increment_counter(f"rbac.checks.{outcome}.by_subject", labels={"subject": subject, "action": action})
    if route and not allowed:
        increment_counter("rbac.checks.denied.by_route", labels={"route": route})


def record_ability_resolution(latency_ms: float, rule_count: int = 0):
    """
    Record an Ability resolution.

    Args:
        latency_ms: Time spent resolving
        rule_count: Number of rules collected
    """
    increment_counter("rbac.resolutions")
    observe_histogram("rbac.resolution_ms", latency_ms)
    if rule_count == 0:
        increment_counter("rbac.resolutions.empty")


def record_registry_swap(generation: int):
    """
    Record a role registry reconfiguration.

    Args:
        generation: Registry generation now in effect
    """
    increment_counter("rbac.registry.swaps")
    set_gauge("rbac.registry.generation", generation)


def audit_authorization_denial(
    action: str,
    subject: str,
    actor_id: Optional[str],
    roles: List[str],
    route: str = "",
    method: str = "unknown",
    metadata: Optional[Dict[str, Any]] = None,
):
    """
    Emit audit log entry for an authorization denial.

    Args:
        action: Action that was denied
        subject: Subject tag the action targeted
        actor_id: Actor denied (None for a guest)
        roles: Actor's roles
        route: Route/endpoint being accessed
        method: HTTP method
        metadata: Additional context
    """
    audit_entry = {
        "event": "rbac_denial",
        "action": action,
        "subject": subject,
        "actor_id": actor_id or "guest",
        "roles": list(roles),
        "route": route,
        "method": method,
        "timestamp": time.time(),
    }
    if metadata:
        audit_entry["metadata"] = metadata

    audit_logger.warning(
        f"RBAC_DENIAL action={action} subject={subject} actor={actor_id or 'guest'} "
        f"roles={','.join(roles)} route={method} {route}",
        extra={"audit": audit_entry},
    )

    increment_counter("rbac.audit.denials")
    increment_counter("rbac.audit.denials.by_subject", labels={"subject": subject})


def get_rbac_metrics() -> Dict[str, Any]:
    """
    Get all RBAC-related metrics grouped by category.

    Returns:
        Dictionary keyed by category (checks, resolutions, registry,
        ability_cache, audit)
    """
    all_metrics = _metrics.get_all_metrics()
    rbac_metrics: Dict[str, Dict[str, Any]] = {
        "checks": {},
        "resolutions": {},
        "registry": {},
        "ability_cache": {},
        "audit": {},
    }
    for section in ("counters", "gauges", "histograms"):
        for metric_name, metric_data in all_metrics.get(section, {}).items():
            if not metric_name.startswith("rbac."):
                continue
            category = metric_name.split(".")[1]
            if category == "resolution_ms":
                category = "resolutions"
            rbac_metrics.setdefault(category, {})[metric_name] = metric_data
    return rbac_metrics


def reset_rbac_metrics():
    """Reset all RBAC-related metrics (useful for testing)."""
    _metrics.reset_metrics()


__all__ = [
    "MetricsCollector", "MetricCounter", "MetricGauge", "MetricHistogram",
    "increment_counter", "set_gauge", "observe_histogram", "get_counter",
    "get_gauge", "get_histogram_stats", "get_all_metrics", "reset_metrics",
    "record_authorization_check", "record_ability_resolution",
    "record_registry_swap", "audit_authorization_denial",
    "get_rbac_metrics", "reset_rbac_metrics", "audit_logger",
]
