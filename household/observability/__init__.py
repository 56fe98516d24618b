"""
Observability module: structured logging, request IDs, metrics.

Usage:
    from household.observability import RequestContext, configure_logging

    configure_logging("INFO", json_format=True)
    with RequestContext() as ctx:
        logger.info("Request started", extra={"request_id": ctx.request_id})

Metrics:
    from household.observability import legacy_null_owner_rows
    legacy_null_owner_rows.inc()
"""

from .context import RequestContext, bind_principal, get_principal_id, get_request_id, set_request_id
from .logging import HumanFormatter, JSONFormatter, configure_logging
from .metrics import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    api_errors,
    api_latency,
    api_requests,
    legacy_null_owner_rows,
    remote_dispatches,
    sync_duration,
    sync_failures,
    sync_runs,
    upstream_errors,
)
from .middleware import CorrelationIdMiddleware, RequestMetricsMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    # Context
    "RequestContext",
    "get_request_id",
    "set_request_id",
    "bind_principal",
    "get_principal_id",
    # Middleware
    "CorrelationIdMiddleware",
    "RequestMetricsMiddleware",
    # Metrics
    "REGISTRY",
    "Counter",
    "Gauge",
    "Histogram",
    "legacy_null_owner_rows",
    "sync_runs",
    "sync_failures",
    "sync_duration",
    "upstream_errors",
    "remote_dispatches",
    "api_requests",
    "api_errors",
    "api_latency",
]
