"""
Helpers for asserting how much a Prometheus metric moved during a test.

Metrics are process-global, so tests compare before/after values instead of
absolute ones.
"""

from contextlib import contextmanager


@contextmanager
def metric_delta(metric, expected_delta=1):
    """
    Assert that a counter (or labelled child) changed by ``expected_delta``.

    Usage:
        with metric_delta(METRICS["cache_hits"], 2):
            ...
    """
    if not hasattr(metric, "_value"):
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")
    initial_value = metric._value.get()

    yield

    actual_delta = metric._value.get() - initial_value
    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected metric to change by {expected_delta}, but it changed by {actual_delta} "
            f"(from {initial_value})"
        )


def get_histogram_count(histogram):
    """Current observation count of a histogram."""
    for metric in histogram.collect():
        for sample in metric.samples:
            if sample.name.endswith("_count"):
                return sample.value
    return 0.0


@contextmanager
def histogram_observes(histogram, min_observations=1):
    """Assert that a histogram recorded at least ``min_observations`` samples."""
    initial_count = get_histogram_count(histogram)

    yield

    observed = get_histogram_count(histogram) - initial_count
    if observed < min_observations:
        raise AssertionError(f"Expected at least {min_observations} histogram observations, got {observed}")
