"""Logging and metrics for hybrid-cache."""

from hybrid_cache.observability.logging import LogContext, configure_logging
from hybrid_cache.observability.metrics import get_metrics

__all__ = ["LogContext", "configure_logging", "get_metrics"]
