"""Prometheus metrics for hybrid-cache.

Provides counters and histograms for:
- Tier hits and misses
- Remote-tier errors and latency
- Invalidations published and received

Usage:
    from hybrid_cache.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.cache_hits_total.labels(tier="local").inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

from hybrid_cache.config import settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    cache_hits_total: Any = None
    cache_misses_total: Any = None
    remote_errors_total: Any = None
    remote_duration_seconds: Any = None
    invalidations_total: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = REGISTRY

        self.cache_hits_total = Counter(
            "hybrid_cache_hits_total",
            "Cache hits by tier",
            ["tier"],
        )

        self.cache_misses_total = Counter(
            "hybrid_cache_misses_total",
            "Reads that missed both tiers",
        )

        self.remote_errors_total = Counter(
            "hybrid_cache_remote_errors_total",
            "Failed remote-tier operations",
            ["operation"],
        )

        self.remote_duration_seconds = Histogram(
            "hybrid_cache_remote_duration_seconds",
            "Remote-tier operation latency in seconds",
            ["operation"],
            buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
        )

        self.invalidations_total = Counter(
            "hybrid_cache_invalidations_total",
            "Invalidation messages by direction and outcome",
            ["direction", "outcome"],
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def record_cache_hit(tier: str) -> None:
    """Record a hit in the local or remote tier."""
    metrics = get_metrics()
    if metrics.cache_hits_total:
        metrics.cache_hits_total.labels(tier=tier).inc()


def record_cache_miss() -> None:
    """Record a read that found nothing in either tier."""
    metrics = get_metrics()
    if metrics.cache_misses_total:
        metrics.cache_misses_total.inc()


def record_remote_error(operation: str) -> None:
    metrics = get_metrics()
    if metrics.remote_errors_total:
        metrics.remote_errors_total.labels(operation=operation).inc()


def record_remote_operation(operation: str, duration: float) -> None:
    """Record remote operation duration.

    Args:
        operation: Remote operation (get, set, delete, ttl, publish)
        duration: Operation duration in seconds
    """
    metrics = get_metrics()
    if metrics.remote_duration_seconds:
        metrics.remote_duration_seconds.labels(operation=operation).observe(duration)


def record_invalidation(direction: str, outcome: str) -> None:
    """Record an invalidation message.

    Args:
        direction: "out" for published, "in" for received
        outcome: published, applied, echo, malformed
    """
    metrics = get_metrics()
    if metrics.invalidations_total:
        metrics.invalidations_total.labels(direction=direction, outcome=outcome).inc()
