"""
Observability Module for the ERP API access layer

Provides:
- Structured logging with request correlation IDs
- In-memory request / refresh metrics
"""

from core.observability.metrics import (
    ApiMetrics,
    get_metrics,
    get_metrics_summary,
)

from core.observability.logging import (
    configure_logging,
    get_logger,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "ApiMetrics",
    "get_metrics",
    "get_metrics_summary",
    # Logging
    "configure_logging",
    "get_logger",
    "CorrelationContext",
    "with_correlation",
]
