"""
Defines the Prometheus metrics exported by the crawler.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Histogram as _OrigHistogram

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Several crawlers may live in one process and the module may be re-imported
# by the test suite, so collectors are looked up before being registered.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race; use the collector that won.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "requests_total": Counter(
            "prowlcore_requests_total",
            "Total number of requests dispatched by crawlers",
        ),
        "responses_total": Counter(
            "prowlcore_responses_total",
            "Total number of HTTP responses received from the transport",
            ["status_class"],
        ),
        "cache_hits": Counter(
            "prowlcore_cache_hits_total",
            "Requests answered from the response cache",
        ),
        "cache_misses": Counter(
            "prowlcore_cache_misses_total",
            "Requests that missed the response cache",
        ),
        "retries": Counter(
            "prowlcore_retries_total",
            "Transport attempts repeated by the retry policy",
        ),
        "proxy_evictions": Counter(
            "prowlcore_proxy_evictions_total",
            "Proxies removed from a pool after a failed attempt",
        ),
        "transport_latency": Histogram(
            "prowlcore_transport_latency_seconds",
            "Latency of a single transport attempt",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def status_class(status_code: int) -> str:
    """Collapse a status code into its ``2xx``-style label."""
    if 100 <= status_code < 600:
        return f"{status_code // 100}xx"
    return "other"
